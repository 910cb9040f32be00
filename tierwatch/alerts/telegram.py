"""
Telegram Alerts
===============

Telegram delivery for watcher alerts.

Alert types:
- Tiered change alerts (minor / major / critical)
- Milestone alerts (portfolio value crossed its USD threshold)
- Service status (started / stopped)

deliver() never blocks and never raises: the HTTP call runs on a daemon
thread and failures are logged here.
"""

import asyncio
import logging
import os
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional

import requests

from ..models import AlertRecord, Tier
from .messages import format_timestamp, strip_html

logger = logging.getLogger(__name__)

# Rate limiting constants
MIN_MESSAGE_INTERVAL_SECONDS = 1  # 1 second between any messages (Telegram limit: 30/sec)
MAX_ALERTS_PER_MINUTE = 20  # Global rate limit

# Severities that bypass the per-minute limit
URGENT_SEVERITIES = {Tier.CRITICAL.value, "milestone"}

DeliveredCallback = Callable[[AlertRecord], None]


@dataclass
class AlertConfig:
    """Configuration for alert sending."""
    bot_token: str
    chat_id: str
    dry_run: bool = False
    max_message_length: int = 4000
    min_message_interval: float = MIN_MESSAGE_INTERVAL_SECONDS
    max_alerts_per_minute: int = MAX_ALERTS_PER_MINUTE


class TelegramAlerts:
    """
    Telegram alert sink.

    Includes rate limiting to prevent Telegram API abuse. When an
    on_delivered callback is set and deliver() is called from an event loop,
    the callback runs back on that loop after a successful send.
    """

    def __init__(self, config: AlertConfig, on_delivered: Optional[DeliveredCallback] = None):
        """
        Initialize Telegram alerts.

        Args:
            config: AlertConfig with bot token, chat ID, and settings
            on_delivered: Called with the record after a successful send
        """
        self.config = config
        self.on_delivered = on_delivered
        self._validate()

        # Rate limiting state, shared by sender threads
        self._lock = threading.Lock()
        self._last_message_time: float = 0
        self._alerts_this_minute: List[float] = []  # timestamps of recent alerts

    @classmethod
    def from_env(cls, dry_run: bool = False) -> Optional["TelegramAlerts"]:
        """
        Create TelegramAlerts from environment variables.

        Returns:
            TelegramAlerts instance if configured (or dry run), None otherwise
        """
        bot_token = os.environ.get("TELEGRAM_BOT_TOKEN", "")
        chat_id = os.environ.get("TELEGRAM_CHAT_ID", "")

        if not dry_run and (not bot_token or not chat_id):
            logger.warning(
                "Telegram not configured (set TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID)"
            )
            return None

        return cls(AlertConfig(bot_token=bot_token, chat_id=chat_id, dry_run=dry_run))

    def _validate(self):
        """Validate configuration."""
        if not self.config.dry_run:
            if not self.config.bot_token:
                raise ValueError("TELEGRAM_BOT_TOKEN is required (or use --dry-run)")
            if not self.config.chat_id:
                raise ValueError("TELEGRAM_CHAT_ID is required (or use --dry-run)")

    def _check_rate_limit(self) -> bool:
        """
        Check if we're within rate limits.

        Returns:
            True if we can send, False if rate limited
        """
        now = time.time()

        # Clean up old timestamps (older than 1 minute)
        self._alerts_this_minute = [t for t in self._alerts_this_minute if now - t < 60]

        if len(self._alerts_this_minute) >= self.config.max_alerts_per_minute:
            logger.warning(f"Rate limited: {len(self._alerts_this_minute)} alerts in last minute")
            return False

        return True

    def _enforce_message_interval(self):
        """Enforce minimum interval between messages."""
        elapsed = time.time() - self._last_message_time

        if elapsed < self.config.min_message_interval:
            time.sleep(self.config.min_message_interval - elapsed)

    def _truncate_message(self, text: str) -> str:
        """Truncate message to Telegram's character limit."""
        if len(text) > self.config.max_message_length:
            return text[:self.config.max_message_length - 20] + "\n... (truncated)"
        return text

    def _send_message(self, text: str, skip_rate_limit: bool = False) -> Optional[int]:
        """
        Send a message via Telegram Bot API.

        Args:
            text: Message text (HTML formatted)
            skip_rate_limit: If True, skip the per-minute limit (urgent alerts)

        Returns:
            message_id if successful, None otherwise
        """
        text = self._truncate_message(text)

        if self.config.dry_run:
            logger.info(f"[DRY RUN] Would send Telegram message:\n{strip_html(text)}")
            return 0

        with self._lock:
            if not skip_rate_limit and not self._check_rate_limit():
                logger.warning("Message dropped due to rate limiting")
                return None

            self._enforce_message_interval()

            url = f"https://api.telegram.org/bot{self.config.bot_token}/sendMessage"
            payload = {
                "chat_id": self.config.chat_id,
                "text": text,
                "parse_mode": "HTML",
                "disable_web_page_preview": True,
            }

            try:
                response = requests.post(url, json=payload, timeout=10)
                response.raise_for_status()

                now = time.time()
                self._last_message_time = now
                self._alerts_this_minute.append(now)

                result = response.json()
                message_id = result.get("result", {}).get("message_id")

                logger.info(f"Telegram alert sent successfully (message_id: {message_id})")
                return message_id

            except requests.exceptions.Timeout:
                logger.error("Telegram request timed out")
                return None
            except requests.exceptions.HTTPError as e:
                # Log status code without exposing token in URL
                status_code = e.response.status_code if e.response is not None else "unknown"
                logger.error(f"Telegram HTTP error: {status_code}")
                if status_code == 429:
                    logger.warning("Telegram rate limit hit (429) - backing off")
                return None
            except requests.exceptions.ConnectionError:
                logger.error("Telegram connection error - network issue")
                return None
            except requests.exceptions.RequestException:
                # Don't log exception details which may contain URL/token
                logger.error("Telegram request failed")
                return None
            except ValueError:
                logger.error("Telegram returned an unreadable response")
                return None

    # -------------------------------------------------------------------------
    # Alert sink
    # -------------------------------------------------------------------------

    def deliver(self, record: AlertRecord):
        """
        Send an alert without blocking. Fire and forget.

        Spawns a background thread to send the message so the monitor loop
        continues immediately without waiting for Telegram.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        skip_rate_limit = record.severity in URGENT_SEVERITIES

        def _send():
            try:
                message_id = self._send_message(record.message, skip_rate_limit=skip_rate_limit)
            except Exception as e:
                logger.error(f"Async send failed: {e}")
                return
            # Dry-run messages were only logged, so they stay undelivered
            if message_id is not None and not self.config.dry_run:
                self._notify_delivered(record, loop)

        thread = threading.Thread(target=_send, daemon=True, name="TelegramSender")
        thread.start()

    def _notify_delivered(self, record: AlertRecord, loop: Optional[asyncio.AbstractEventLoop]):
        """Run on_delivered on the caller's event loop (or inline without one)."""
        if self.on_delivered is None:
            return
        if loop is None:
            self.on_delivered(record)
            return
        try:
            loop.call_soon_threadsafe(self.on_delivered, record)
        except RuntimeError:
            logger.debug(f"Event loop closed before delivery of alert {record.id} was recorded")

    # -------------------------------------------------------------------------
    # Operational messages
    # -------------------------------------------------------------------------

    def send_service_status(
        self,
        status: str,
        details: str = "",
        timestamp: datetime = None
    ) -> bool:
        """
        Send service status notification.

        These are operational alerts and skip rate limiting.

        Args:
            status: Status type ("started", "stopped", "error")
            details: Additional details
            timestamp: Timestamp (default: now)

        Returns:
            True if sent successfully
        """
        if timestamp is None:
            timestamp = datetime.now(timezone.utc)

        status_text = {
            "started": "Watcher service started",
            "stopped": "Watcher service stopped",
            "error": "Watcher service error",
        }.get(status, f"Status: {status}")

        lines = [f"<b>{status_text}</b> at {format_timestamp(timestamp)}"]
        if details:
            lines.append("")
            lines.append(details)

        return self._send_message("\n".join(lines), skip_rate_limit=True) is not None

    def send_test_alert(self) -> bool:
        """Send a test message to verify bot token and chat id."""
        message = "\n".join([
            "🧪 <b>Test alert</b>",
            "",
            "Telegram delivery is configured correctly.",
            f"<i>{format_timestamp()}</i>",
        ])
        return self._send_message(message, skip_rate_limit=True) is not None
