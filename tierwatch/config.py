"""
Configuration for tierwatch

All settings in one place. Built once at startup from the environment
(.env supported), overlaid once with preferences persisted in the state
store, and then passed explicitly to the service and registries.
"""

import logging
import os
import re
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Dict, Mapping, Optional

from dotenv import load_dotenv

from .errors import ValidationError
from .models import TierConfig
from .models.target import require_positive_number, validate_interval

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).parent.parent

WALLET_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")
LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

# Preference key -> Config field
PREFERENCE_FIELDS: Dict[str, str] = {
    "holdings_threshold": "holdings_threshold",
    "holdings_check_interval": "holdings_check_interval",
    "price_change_threshold": "price_change_threshold",
    "base_minor_threshold": "base_minor_threshold",
    "base_major_threshold": "base_major_threshold",
    "base_critical_threshold": "base_critical_threshold",
    "base_check_interval": "base_token_check_interval",
}

INTERVAL_FIELDS = {
    "holdings_check_interval",
    "price_check_interval",
    "base_token_check_interval",
}


@dataclass
class Config:
    """All configuration settings."""

    # -------------------------------------------------------------------------
    # Portfolio (holdings watcher)
    # -------------------------------------------------------------------------
    # Wallet to watch; the holdings watcher is skipped when unset
    wallet_address: Optional[str] = None
    holdings_check_interval: int = 300
    # USD milestone for the "threshold reached" alert
    holdings_threshold: float = 1000.0

    # -------------------------------------------------------------------------
    # Token price watcher
    # -------------------------------------------------------------------------
    price_check_interval: int = 60
    # Minor tier for new watches (and the portfolio); major/critical are multiples
    price_change_threshold: float = 2.0
    major_multiplier: float = 3.0
    critical_multiplier: float = 5.0

    # -------------------------------------------------------------------------
    # Base token watcher
    # -------------------------------------------------------------------------
    base_token_name: str = "IQ"
    base_token_check_interval: int = 60
    base_minor_threshold: float = 2.0
    base_major_threshold: float = 10.0
    base_critical_threshold: float = 20.0

    # -------------------------------------------------------------------------
    # Agents API
    # -------------------------------------------------------------------------
    api_base_url: str = "https://app.iqai.com/api"
    max_retries: int = 3
    retry_backoff_sec: float = 1.0
    request_timeout_sec: float = 30.0

    # -------------------------------------------------------------------------
    # Telegram
    # -------------------------------------------------------------------------
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""

    # -------------------------------------------------------------------------
    # Storage / retention
    # -------------------------------------------------------------------------
    data_dir: Path = field(default_factory=lambda: PROJECT_ROOT / "data")
    db_filename: str = "tierwatch.db"
    price_history_limit: int = 1000
    alert_retention_days: int = 90
    log_retention_days: int = 7
    maintenance_interval_sec: int = 3600

    # -------------------------------------------------------------------------
    # Logging
    # -------------------------------------------------------------------------
    log_level: str = "INFO"
    log_dir: Path = field(default_factory=lambda: PROJECT_ROOT / "logs")

    @property
    def db_path(self) -> Path:
        return Path(self.data_dir) / self.db_filename

    @property
    def telegram_configured(self) -> bool:
        return bool(self.telegram_bot_token and self.telegram_chat_id)

    # -------------------------------------------------------------------------
    # Derived tier configs
    # -------------------------------------------------------------------------

    def default_tiers(self) -> TierConfig:
        """Tiers for the portfolio and for new token watches."""
        return TierConfig.from_base(
            self.price_change_threshold,
            self.major_multiplier,
            self.critical_multiplier,
        )

    def base_tiers(self) -> TierConfig:
        return TierConfig(
            self.base_minor_threshold,
            self.base_major_threshold,
            self.base_critical_threshold,
        )

    # -------------------------------------------------------------------------
    # Construction
    # -------------------------------------------------------------------------

    def validate(self) -> "Config":
        """
        Check every setting.

        Raises:
            ValidationError: on the first invalid value
        """
        if self.wallet_address and not WALLET_ADDRESS_RE.match(self.wallet_address):
            raise ValidationError(f"Invalid wallet address format: {self.wallet_address}")

        for name in INTERVAL_FIELDS:
            setattr(self, name, validate_interval(getattr(self, name)))

        self.holdings_threshold = require_positive_number("holdings threshold", self.holdings_threshold)
        self.default_tiers().validate()
        self.base_tiers().validate()

        if not self.api_base_url.startswith(("http://", "https://")):
            raise ValidationError(f"Invalid API base URL: {self.api_base_url}")

        self.log_level = self.log_level.upper()
        if self.log_level not in LOG_LEVELS:
            raise ValidationError(f"Invalid log level: {self.log_level}")

        return self

    @classmethod
    def from_env(cls, env_file: Optional[Path] = None, environ: Optional[Mapping[str, str]] = None) -> "Config":
        """
        Build the configuration from environment variables.

        Args:
            env_file: .env file to load first (default: project root .env)
            environ: Mapping to read instead of os.environ

        Raises:
            ValidationError: if a value is missing its expected type or range
        """
        if environ is None:
            env_path = env_file or PROJECT_ROOT / ".env"
            if Path(env_path).exists():
                load_dotenv(env_path)
            environ = os.environ

        def get(name: str) -> Optional[str]:
            value = environ.get(name)
            if value is None or value.strip() == "":
                return None
            return value.strip()

        def get_int(name: str, default: int) -> int:
            raw = get(name)
            if raw is None:
                return default
            try:
                return int(raw)
            except ValueError:
                raise ValidationError(f"{name} must be an integer, got {raw!r}")

        def get_float(name: str, default: float) -> float:
            raw = get(name)
            if raw is None:
                return default
            try:
                return float(raw)
            except ValueError:
                raise ValidationError(f"{name} must be a number, got {raw!r}")

        defaults = cls()
        config = cls(
            wallet_address=get("WALLET_ADDRESS"),
            api_base_url=get("IQ_API_BASE_URL") or defaults.api_base_url,
            holdings_check_interval=get_int("HOLDINGS_CHECK_INTERVAL", defaults.holdings_check_interval),
            price_check_interval=get_int("PRICE_CHECK_INTERVAL", defaults.price_check_interval),
            base_token_check_interval=get_int("BASE_TOKEN_CHECK_INTERVAL", defaults.base_token_check_interval),
            holdings_threshold=get_float("DEFAULT_HOLDINGS_THRESHOLD", defaults.holdings_threshold),
            price_change_threshold=get_float("DEFAULT_PRICE_CHANGE_THRESHOLD", defaults.price_change_threshold),
            telegram_bot_token=get("TELEGRAM_BOT_TOKEN") or "",
            telegram_chat_id=get("TELEGRAM_CHAT_ID") or "",
            log_level=get("LOG_LEVEL") or defaults.log_level,
        )

        data_dir = get("DATA_DIR")
        if data_dir:
            config.data_dir = Path(data_dir)

        return config.validate()

    def with_preferences(self, preferences: Mapping[str, str]) -> "Config":
        """
        Return a copy overlaid with persisted preferences.

        Unknown keys are ignored; unreadable or invalid values are logged and
        skipped so a bad row never blocks startup.
        """
        known = {f.name: f for f in fields(self)}
        config = self

        for key, raw in preferences.items():
            name = PREFERENCE_FIELDS.get(key)
            if name is None or name not in known:
                continue

            try:
                value = int(float(raw)) if name in INTERVAL_FIELDS else float(raw)
                candidate = replace(config, **{name: value}).validate()
            except ValueError as e:
                logger.warning(f"Ignoring preference {key}={raw!r}: {e}")
                continue

            config = candidate
            logger.debug(f"Preference {key} -> {name}={value}")

        return config


