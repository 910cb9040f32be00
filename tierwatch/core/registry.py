"""
Watcher Registry

Owns the MonitorLoops of one watcher kind and their targets.

- add_target / remove_target while running (idempotent)
- update_config: validate, merge, persist, reschedule on interval change
- start(): rehydrate active targets from the state store before scheduling

All methods run on the event loop thread; the target map is only mutated
between suspension points, so no locking is needed.
"""

import logging
from typing import Dict, List, Optional

from ..errors import PersistenceError, UnknownTargetError, ValidationError
from ..models import TargetConfig, TargetUpdate, WatchTarget
from ..models.target import validate_interval
from .monitor import ErrorCallback, MonitorLoop, WatcherProfile
from .scheduler import Scheduler

logger = logging.getLogger(__name__)


class WatcherRegistry:
    """
    Collection of monitor loops sharing one WatcherProfile.

    Single-target watchers (portfolio, base token) are registries holding
    exactly one target.
    """

    def __init__(
        self,
        profile: WatcherProfile,
        store,
        sink,
        scheduler: Optional[Scheduler] = None,
        on_error: Optional[ErrorCallback] = None,
    ):
        self.profile = profile
        self.store = store
        self.sink = sink
        self.scheduler = scheduler or Scheduler()
        self.on_error = on_error

        self._loops: Dict[str, MonitorLoop] = {}
        self._running = False

    @property
    def kind(self):
        return self.profile.kind

    @property
    def running(self) -> bool:
        return self._running

    def __len__(self) -> int:
        return len(self._loops)

    def __contains__(self, target_id: str) -> bool:
        return target_id in self._loops

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self):
        """
        Rehydrate active targets from the store and start one loop per target.

        Each loop's first cycle runs immediately against the persisted last
        value, so an unchanged value produces no alert.
        """
        if self._running:
            return

        targets = self.store.load_targets(kind=self.kind, active_only=True)
        for target in targets:
            try:
                target.tiers.validate()
                validate_interval(target.interval_seconds)
            except ValidationError as e:
                logger.warning(f"Skipping stored {self.kind.value} target {target.target_id}: {e}")
                continue
            if target.target_id not in self._loops:
                self._loops[target.target_id] = self._make_loop(target)

        self._running = True
        for loop in self._loops.values():
            loop.start(run_immediately=True)

        logger.info(f"{self.kind.value} watcher started with {len(self._loops)} target(s)")

    async def stop(self):
        """Cancel every loop's timer. Targets stay registered and active."""
        if not self._running:
            return
        for loop in self._loops.values():
            loop.stop()
        self._running = False
        logger.info(f"{self.kind.value} watcher stopped")

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    async def add_target(self, config: TargetConfig, seed_baseline: bool = True) -> WatchTarget:
        """
        Start watching a target.

        Args:
            config: Target configuration (validated here)
            seed_baseline: Fetch the current value before registering

        Returns:
            The registered target (the existing one if already watched)

        Raises:
            ValidationError: bad configuration, nothing registered
            TransientFetchError: baseline fetch failed, nothing registered
        """
        config.validate()

        existing = self._loops.get(config.target_id)
        if existing is not None:
            if existing.target.same_config(config):
                logger.info(f"{config.target_id} is already being watched")
            else:
                logger.info(f"{config.target_id} is already being watched, use update_config to change it")
            return existing.target

        target = WatchTarget.from_config(config, self.kind)

        if seed_baseline:
            target.last_value = await self.profile.fetch(config.target_id)
            logger.info(f"Baseline for {target.display_name}: {target.last_value}")

            # A concurrent add may have won while we were fetching
            existing = self._loops.get(config.target_id)
            if existing is not None:
                return existing.target

        try:
            self.store.upsert_target(target)
        except PersistenceError as e:
            logger.error(f"Failed to persist new target {target.target_id}: {e}")

        loop = self._make_loop(target)
        self._loops[target.target_id] = loop
        if self._running:
            loop.start(run_immediately=not seed_baseline)

        logger.info(f"Now watching {target.display_name} ({self.kind.value})")
        return target

    def ensure_target(self, config: TargetConfig) -> WatchTarget:
        """
        Register a target without a baseline fetch, reusing the stored row.

        Used for the single-target watchers at startup: an existing row keeps
        its last value and latch; its configuration is left as stored.
        """
        existing = self._loops.get(config.target_id)
        if existing is not None:
            return existing.target

        config.validate()
        stored = self.store.get_target(config.target_id)
        if stored is not None and stored.kind == self.kind:
            target = stored
            target.active = True
        else:
            target = WatchTarget.from_config(config, self.kind)

        try:
            self.store.upsert_target(target)
        except PersistenceError as e:
            logger.error(f"Failed to persist target {target.target_id}: {e}")

        loop = self._make_loop(target)
        self._loops[target.target_id] = loop
        if self._running:
            loop.start(run_immediately=True)
        return target

    async def remove_target(self, target_id: str) -> bool:
        """
        Stop watching a target. History is kept.

        Returns:
            False if the target was not being watched
        """
        loop = self._loops.pop(target_id, None)
        if loop is None:
            logger.debug(f"Remove ignored, {target_id} not watched")
            return False

        loop.target.active = False
        loop.stop()

        try:
            self.store.deactivate_target(target_id)
        except PersistenceError as e:
            logger.error(f"Failed to deactivate {target_id} in store: {e}")

        logger.info(f"Stopped watching {loop.target.display_name}")
        return True

    def update_config(self, target_id: str, update: TargetUpdate) -> WatchTarget:
        """
        Merge a partial configuration into a target.

        Raises:
            UnknownTargetError: target_id is not watched
            ValidationError: merged configuration invalid (target unchanged)
        """
        loop = self._loops.get(target_id)
        if loop is None:
            raise UnknownTargetError(target_id)

        target = loop.target
        if update.is_empty():
            return target

        updated = update.apply(target)
        interval_changed = updated.interval_seconds != target.interval_seconds

        target.display_name = updated.display_name
        target.tiers = updated.tiers
        target.alerts = updated.alerts
        target.interval_seconds = updated.interval_seconds
        target.threshold_usd = updated.threshold_usd

        try:
            self.store.upsert_target(target)
        except PersistenceError as e:
            logger.error(f"Failed to persist config for {target_id}: {e}")

        self._save_preferences(target, update)

        if interval_changed and loop.running:
            loop.reschedule()

        logger.info(f"Updated {target.display_name}: {self._describe(target)}")
        return target

    def _save_preferences(self, target: WatchTarget, update: TargetUpdate):
        """Write updated fields that double as process-wide defaults."""
        for name, key in self.profile.preference_keys.items():
            if getattr(update, name) is None:
                continue
            if name in ("minor", "major", "critical"):
                value = getattr(target.tiers, name)
            else:
                value = getattr(target, name)
            try:
                self.store.set_preference(key, str(value))
            except PersistenceError as e:
                logger.error(f"Failed to save preference {key}: {e}")

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get(self, target_id: str) -> Optional[WatchTarget]:
        loop = self._loops.get(target_id)
        return loop.target if loop else None

    def list(self) -> List[WatchTarget]:
        return [loop.target for loop in self._loops.values()]

    def loop_for(self, target_id: str) -> Optional[MonitorLoop]:
        return self._loops.get(target_id)

    async def current_value(self, target_id: str) -> float:
        """
        Fetch the live value of a watched target without touching its state.

        Raises:
            UnknownTargetError: target_id is not watched
            TransientFetchError: fetch failed
        """
        if target_id not in self._loops:
            raise UnknownTargetError(target_id)
        return await self.profile.fetch(target_id)

    def status(self) -> dict:
        return {
            "kind": self.kind.value,
            "running": self._running,
            "target_count": len(self._loops),
            "targets": [loop.status() for loop in self._loops.values()],
        }

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _make_loop(self, target: WatchTarget) -> MonitorLoop:
        return MonitorLoop(
            target,
            self.profile,
            self.store,
            self.sink,
            self.scheduler,
            on_error=self.on_error,
        )

    @staticmethod
    def _describe(target: WatchTarget) -> str:
        tiers = target.tiers
        text = (
            f"tiers {tiers.minor:g}/{tiers.major:g}/{tiers.critical:g}%, "
            f"every {target.interval_seconds}s"
        )
        if target.threshold_usd is not None:
            text += f", milestone ${target.threshold_usd:,.2f}"
        return text
