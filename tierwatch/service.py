"""
Watch Service
=============

Wires the three watchers (portfolio, token prices, base token) onto one
scheduler, one state store and one alert sink.

Startup order:
1. Rehydrate every registry from the state store
2. Ensure the portfolio target (when a wallet is configured) and the base token target
3. Schedule hourly maintenance (history retention, alert/log pruning)
4. Send a "started" status message
"""

import asyncio
import logging
import signal
from typing import Awaitable, Callable, Dict, Optional

from .alerts.messages import (
    format_base_price_alert,
    format_holdings_alert,
    format_price_alert,
)
from .config import Config
from .core import (
    EdgeTriggered,
    LevelTriggered,
    Scheduler,
    WatcherProfile,
    WatcherRegistry,
)
from .errors import PersistenceError, TransientFetchError
from .models import (
    AlertRecord,
    AlertToggles,
    BASE_TOKEN_ID,
    TargetConfig,
    TierConfig,
    WatcherKind,
    WatchTarget,
)

logger = logging.getLogger(__name__)

MAINTENANCE_JOB_ID = "maintenance"


def build_profiles(settings: Config, source) -> Dict[WatcherKind, WatcherProfile]:
    """One profile per watcher kind, bound to the signal source."""
    return {
        WatcherKind.PORTFOLIO: WatcherProfile(
            kind=WatcherKind.PORTFOLIO,
            category="holdings",
            fetch=source.fetch_portfolio_value,
            policies=(EdgeTriggered(), LevelTriggered()),
            formatter=format_holdings_alert,
            preference_keys={
                "threshold_usd": "holdings_threshold",
                "interval_seconds": "holdings_check_interval",
                "minor": "price_change_threshold",
            },
        ),
        WatcherKind.TOKEN: WatcherProfile(
            kind=WatcherKind.TOKEN,
            category="price",
            fetch=source.fetch_token_price,
            policies=(EdgeTriggered(),),
            formatter=format_price_alert,
        ),
        WatcherKind.BASE_TOKEN: WatcherProfile(
            kind=WatcherKind.BASE_TOKEN,
            category="base_price",
            fetch=source.fetch_base_token_price,
            policies=(EdgeTriggered(),),
            formatter=format_base_price_alert,
            preference_keys={
                "minor": "base_minor_threshold",
                "major": "base_major_threshold",
                "critical": "base_critical_threshold",
                "interval_seconds": "base_check_interval",
            },
        ),
    }


class WatchService:
    """
    Top-level service owning the watchers.

    Args:
        settings: Configuration (already overlaid with stored preferences)
        store: StateStore
        source: Signal source (AgentsClient)
        sink: Alert sink (TelegramAlerts)
    """

    def __init__(self, settings: Config, store, source, sink, scheduler: Optional[Scheduler] = None):
        self.settings = settings
        self.store = store
        self.source = source
        self.sink = sink
        self.scheduler = scheduler or Scheduler()

        if hasattr(sink, "on_delivered"):
            sink.on_delivered = self._mark_delivered

        self.profiles = build_profiles(settings, source)
        self.watchers: Dict[WatcherKind, WatcherRegistry] = {
            kind: WatcherRegistry(profile, store, sink, self.scheduler)
            for kind, profile in self.profiles.items()
        }

        self.running = False
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def portfolio(self) -> WatcherRegistry:
        return self.watchers[WatcherKind.PORTFOLIO]

    @property
    def tokens(self) -> WatcherRegistry:
        return self.watchers[WatcherKind.TOKEN]

    @property
    def base_token(self) -> WatcherRegistry:
        return self.watchers[WatcherKind.BASE_TOKEN]

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self):
        """Start every watcher and the maintenance job."""
        if self.running:
            return

        logger.info("=" * 60)
        logger.info("TIERWATCH SERVICE STARTING")
        logger.info("=" * 60)

        # Single-target watchers only follow the configured id
        self._retire_stale_targets(WatcherKind.PORTFOLIO, self.settings.wallet_address)
        self._retire_stale_targets(WatcherKind.BASE_TOKEN, BASE_TOKEN_ID)

        for registry in self.watchers.values():
            await registry.start()

        if self.settings.wallet_address:
            self.portfolio.ensure_target(self._portfolio_config())
        else:
            logger.info("No WALLET_ADDRESS configured, holdings watcher idle")

        self.base_token.ensure_target(self._base_token_config())

        self.scheduler.schedule(
            MAINTENANCE_JOB_ID,
            self.settings.maintenance_interval_sec,
            self.run_maintenance,
        )

        self.running = True
        logger.info(
            f"Watching {len(self.tokens)} token(s), "
            f"portfolio={'on' if len(self.portfolio) else 'off'}, base token on"
        )
        await self._send_status("started", self._status_details())

    async def stop(self):
        """Cancel all timers, let in-flight cycles finish, send "stopped"."""
        if not self.running:
            return

        for registry in self.watchers.values():
            await registry.stop()
        await self.scheduler.shutdown()

        self.running = False
        logger.info("TIERWATCH SERVICE STOPPED")
        await self._send_status("stopped")

    async def run(self, on_started: Optional[Callable[["WatchService"], Awaitable[None]]] = None):
        """
        Start, wait for SIGINT/SIGTERM, stop.

        Args:
            on_started: Awaited once after startup (used by the CLI to apply --watch)
        """
        self._stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self._handle_shutdown, sig)

        try:
            await self.start()
            if on_started is not None:
                await on_started(self)
            await self._stop_event.wait()
        finally:
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)
            await self.stop()

    def request_stop(self):
        if self._stop_event is not None:
            self._stop_event.set()

    def _handle_shutdown(self, signum):
        """Handle shutdown signals gracefully."""
        logger.info(f"Shutdown signal {signal.Signals(signum).name} received, stopping watchers...")
        self.request_stop()

    # -------------------------------------------------------------------------
    # Token watches
    # -------------------------------------------------------------------------

    async def watch_token(
        self,
        token_address: str,
        name: Optional[str] = None,
        minor_threshold: Optional[float] = None,
        interval_seconds: Optional[int] = None,
    ) -> WatchTarget:
        """
        Add a token price watch, labelled with the agent name when none is given.

        Raises:
            ValidationError: bad thresholds or interval
            TransientFetchError: baseline price unavailable
        """
        if name is None and token_address not in self.tokens:
            name = await self._resolve_token_name(token_address)

        tiers = self.settings.default_tiers()
        if minor_threshold is not None:
            tiers = TierConfig.from_base(
                minor_threshold,
                self.settings.major_multiplier,
                self.settings.critical_multiplier,
            )

        config = TargetConfig(
            target_id=token_address,
            display_name=name or token_address,
            tiers=tiers,
            interval_seconds=interval_seconds or self.settings.price_check_interval,
        )
        return await self.tokens.add_target(config)

    async def unwatch_token(self, token_address: str) -> bool:
        return await self.tokens.remove_target(token_address)

    async def _resolve_token_name(self, token_address: str) -> Optional[str]:
        try:
            info = await self.source.get_agent_info(token_address)
            return info.label
        except TransientFetchError as e:
            logger.warning(f"Could not resolve name for {token_address}: {e}")
            return None

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    async def run_maintenance(self):
        """Enforce history retention and prune aged alerts and logs."""
        try:
            deleted = self.store.prune_old_data(
                alert_days=self.settings.alert_retention_days,
                log_days=self.settings.log_retention_days,
            )
        except PersistenceError as e:
            logger.error(f"Maintenance failed: {e}")
            return None
        return deleted

    def _mark_delivered(self, record: AlertRecord):
        if record.id is None:
            return
        try:
            self.store.mark_alert_delivered(record.id)
        except PersistenceError as e:
            logger.error(f"Failed to mark alert {record.id} delivered: {e}")

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    def status(self) -> dict:
        return {
            "running": self.running,
            "watchers": {
                kind.value: registry.status()
                for kind, registry in self.watchers.items()
            },
        }

    def _status_details(self) -> str:
        lines = []
        if self.settings.wallet_address:
            lines.append(
                f"Portfolio: every {self.settings.holdings_check_interval}s, "
                f"milestone ${self.settings.holdings_threshold:,.2f}"
            )
        lines.append(f"Tokens watched: {len(self.tokens)}")
        tiers = self.settings.base_tiers()
        lines.append(
            f"{self.settings.base_token_name}: {tiers.minor:g}/{tiers.major:g}/{tiers.critical:g}% "
            f"every {self.settings.base_token_check_interval}s"
        )
        return "\n".join(lines)

    async def _send_status(self, status: str, details: str = ""):
        send = getattr(self.sink, "send_service_status", None)
        if send is None:
            return
        try:
            await asyncio.get_running_loop().run_in_executor(None, send, status, details)
        except Exception as e:
            logger.warning(f"Failed to send {status} status: {e}")

    # -------------------------------------------------------------------------
    # Default targets
    # -------------------------------------------------------------------------

    def _retire_stale_targets(self, kind: WatcherKind, keep_id: Optional[str]):
        """Deactivate stored targets of a single-target kind other than keep_id."""
        try:
            for target in self.store.load_targets(kind=kind, active_only=True):
                if target.target_id != keep_id:
                    logger.info(f"Retiring {kind.value} target {target.target_id}, no longer configured")
                    self.store.deactivate_target(target.target_id)
        except PersistenceError as e:
            logger.error(f"Failed to retire stale {kind.value} targets: {e}")

    def _portfolio_config(self) -> TargetConfig:
        return TargetConfig(
            target_id=self.settings.wallet_address,
            display_name="Portfolio",
            tiers=self.settings.default_tiers(),
            interval_seconds=self.settings.holdings_check_interval,
            alerts=AlertToggles(),
            threshold_usd=self.settings.holdings_threshold,
        )

    def _base_token_config(self) -> TargetConfig:
        return TargetConfig(
            target_id=BASE_TOKEN_ID,
            display_name=self.settings.base_token_name,
            tiers=self.settings.base_tiers(),
            interval_seconds=self.settings.base_token_check_interval,
        )
