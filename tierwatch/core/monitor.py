"""
Monitor Loop

Drives the repeating sample cycle for one WatchTarget:

    fetch -> classify -> suppress -> emit -> persist history -> update state

One generic loop serves every watcher kind; what differs per kind (signal
fetch, suppression policies, message text, alert category) is carried by a
WatcherProfile.

Error handling per cycle:
- TransientFetchError: logged, cycle skipped, no state change, loop keeps going
- PersistenceError: logged, in-memory state still advances
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from ..errors import PersistenceError, TransientFetchError
from ..models import AlertRecord, PriceHistoryPoint, WatcherKind, WatchTarget
from ..models.target import utc_now
from .classifier import Classification, classify
from .scheduler import Scheduler
from .suppression import AlertDecision, SuppressionPolicy

logger = logging.getLogger(__name__)

FetchFn = Callable[[str], Awaitable[float]]
FormatFn = Callable[[WatchTarget, AlertDecision, float, float], str]
ErrorCallback = Callable[[WatchTarget, Exception], None]


@dataclass(frozen=True)
class WatcherProfile:
    """Per-kind strategy injected into the generic loop and registry."""
    kind: WatcherKind
    category: str  # AlertRecord category
    fetch: FetchFn
    policies: Tuple[SuppressionPolicy, ...]
    formatter: FormatFn
    # Config field -> preference key written when that field is updated
    preference_keys: Dict[str, str] = field(default_factory=dict)


@dataclass
class CycleResult:
    """Outcome of one successful cycle."""
    target_id: str
    previous_value: float
    current_value: float
    classification: Classification
    alerts: List[AlertRecord] = field(default_factory=list)
    timestamp: Optional[datetime] = None


class MonitorLoop:
    """
    Sampling loop for a single target.

    States: stopped -> running -> stopped. While running, the scheduler calls
    run_cycle() every interval_seconds, measured from the end of the previous
    cycle.
    """

    def __init__(
        self,
        target: WatchTarget,
        profile: WatcherProfile,
        store,
        sink,
        scheduler: Scheduler,
        on_error: Optional[ErrorCallback] = None,
    ):
        self.target = target
        self.profile = profile
        self.store = store
        self.sink = sink
        self.scheduler = scheduler
        self.on_error = on_error

        self.consecutive_failures = 0
        self.last_error: Optional[str] = None
        self.cycles = 0

    @property
    def job_id(self) -> str:
        return f"{self.profile.kind.value}:{self.target.target_id}"

    @property
    def running(self) -> bool:
        return self.scheduler.is_scheduled(self.job_id)

    @property
    def _log_extra(self) -> dict:
        # Picked up by SQLiteLoggingHandler
        return {"target_id": self.target.target_id}

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self, run_immediately: bool = False):
        """Arm the timer. Restarts it if already running."""
        self.scheduler.schedule(
            self.job_id,
            self.target.interval_seconds,
            self.run_cycle,
            run_immediately=run_immediately,
        )
        logger.info(
            f"Started {self.profile.kind.value} loop for {self.target.display_name} "
            f"every {self.target.interval_seconds}s"
        )

    def stop(self):
        """Cancel the timer. An in-flight cycle finishes but discards its result if the target is inactive."""
        if self.scheduler.cancel(self.job_id):
            logger.info(f"Stopped {self.profile.kind.value} loop for {self.target.display_name}")

    def reschedule(self):
        """Restart the timer with the target's current interval."""
        self.scheduler.reschedule(self.job_id, self.target.interval_seconds)

    # -------------------------------------------------------------------------
    # Cycle
    # -------------------------------------------------------------------------

    async def run_cycle(self) -> Optional[CycleResult]:
        """
        Run one sample cycle.

        Returns:
            CycleResult, or None when the fetch failed or the result was discarded
        """
        target = self.target
        self.cycles += 1

        # 1. Fetch
        try:
            current = await self.profile.fetch(target.target_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._record_failure(e)
            return None

        if not target.active:
            logger.debug(
                f"{target.display_name}: deactivated during fetch, discarding {current}",
                extra=self._log_extra,
            )
            return None

        self.consecutive_failures = 0
        self.last_error = None

        previous = target.last_value
        now = utc_now()

        # 2. Classify
        classification = classify(previous, current, target.tiers)
        logger.debug(
            f"{target.display_name}: {previous} -> {current} "
            f"({classification.delta_pct:+.2f}%, {classification.tier.value})",
            extra=self._log_extra,
        )

        # 3-4. Suppress and emit
        alerts = []
        for decision in self._evaluate(classification, current):
            record = AlertRecord(
                category=self.profile.category,
                alert_type=decision.alert_type,
                severity=decision.severity,
                message=self.profile.formatter(target, decision, previous, current),
                target_id=target.target_id,
                timestamp=now,
            )
            self._emit(record)
            alerts.append(record)

        # 5. History
        try:
            self.store.append_price_point(PriceHistoryPoint(
                target_id=target.target_id,
                label=target.display_name,
                value=current,
                timestamp=now,
            ))
        except PersistenceError as e:
            logger.error(f"{target.display_name}: failed to record price history: {e}", extra=self._log_extra)

        # 6. State
        target.last_value = current
        target.last_sample_time = now
        try:
            self.store.update_target_sample(
                target.target_id, current, now, target.threshold_latched
            )
        except PersistenceError as e:
            logger.error(f"{target.display_name}: failed to persist sample state: {e}", extra=self._log_extra)

        return CycleResult(
            target_id=target.target_id,
            previous_value=previous,
            current_value=current,
            classification=classification,
            alerts=alerts,
            timestamp=now,
        )

    def _evaluate(self, classification: Classification, current: float) -> List[AlertDecision]:
        decisions = []
        for policy in self.profile.policies:
            decision = policy.evaluate(self.target, classification, current)
            if decision is not None:
                decisions.append(decision)
        return decisions

    def _emit(self, record: AlertRecord):
        """Hand the alert to the sink, then append it to the alert log."""
        logger.info(
            f"ALERT [{record.severity}] {self.target.display_name}: {record.alert_type}",
            extra=self._log_extra,
        )
        try:
            self.sink.deliver(record)
        except Exception as e:
            logger.error(
                f"Alert sink rejected {record.alert_type} for {self.target.display_name}: {e}",
                extra=self._log_extra,
            )

        try:
            self.store.append_alert(record)
        except PersistenceError as e:
            logger.error(f"{self.target.display_name}: failed to persist alert: {e}", extra=self._log_extra)

    def _record_failure(self, error: Exception):
        self.consecutive_failures += 1
        self.last_error = str(error)

        if isinstance(error, TransientFetchError):
            logger.warning(
                f"{self.target.display_name}: fetch failed "
                f"({self.consecutive_failures} in a row): {error}",
                extra=self._log_extra,
            )
        else:
            logger.exception(
                f"{self.target.display_name}: unexpected fetch error: {error}",
                extra=self._log_extra,
            )

        if self.on_error is not None:
            try:
                self.on_error(self.target, error)
            except Exception as e:
                logger.error(f"Error callback failed for {self.target.display_name}: {e}")

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    def status(self) -> dict:
        target = self.target
        return {
            "target_id": target.target_id,
            "display_name": target.display_name,
            "running": self.running,
            "interval_seconds": target.interval_seconds,
            "last_value": target.last_value,
            "last_sample_time": target.last_sample_time,
            "threshold_latched": target.threshold_latched,
            "consecutive_failures": self.consecutive_failures,
            "last_error": self.last_error,
        }

