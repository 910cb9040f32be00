"""
Watch Target Models
===================

Dataclasses for monitored entities and the records they produce.

A WatchTarget is the state + configuration of one monitored entity (the
portfolio, a single token, or the base token). Configuration is validated
when it is set; the sampling state (last value, latch) is mutated by the
monitor loop.
"""

import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from ..errors import ValidationError


# Reserved target id for the base token watcher
BASE_TOKEN_ID = "BASE_TOKEN"

# Sample interval bounds (seconds)
MIN_INTERVAL_SECONDS = 30
MAX_INTERVAL_SECONDS = 3600


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Tier(Enum):
    """Severity bucket for a percentage change."""
    NONE = "none"
    MINOR = "minor"
    MAJOR = "major"
    CRITICAL = "critical"


class WatcherKind(Enum):
    """Which watcher a target belongs to."""
    PORTFOLIO = "portfolio"
    TOKEN = "token"
    BASE_TOKEN = "base_token"


def require_positive_number(name: str, value) -> float:
    """
    Validate a user-supplied number.

    Rejects booleans, non-numeric values, NaN/infinity and values <= 0.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{name} must be a number, got {value!r}")
    value = float(value)
    if math.isnan(value) or math.isinf(value):
        raise ValidationError(f"{name} must be finite, got {value}")
    if value <= 0:
        raise ValidationError(f"{name} must be greater than 0, got {value}")
    return value


def validate_interval(value) -> int:
    """Validate a sample interval and return it as an int."""
    if isinstance(value, bool):
        raise ValidationError(f"Interval must be an integer, got {value!r}")
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if not isinstance(value, int):
        raise ValidationError(f"Interval must be an integer, got {value!r}")
    if not MIN_INTERVAL_SECONDS <= value <= MAX_INTERVAL_SECONDS:
        raise ValidationError(
            f"Interval must be between {MIN_INTERVAL_SECONDS} and "
            f"{MAX_INTERVAL_SECONDS} seconds, got {value}"
        )
    return value


@dataclass(frozen=True)
class TierConfig:
    """Percentage magnitudes for each tier; must satisfy 0 < minor < major < critical."""
    minor: float
    major: float
    critical: float

    @classmethod
    def from_base(
        cls,
        minor: float,
        major_multiplier: float = 3.0,
        critical_multiplier: float = 5.0,
    ) -> "TierConfig":
        """Derive a full tier set from a single minor threshold."""
        minor = require_positive_number("minor threshold", minor)
        return cls(minor, minor * major_multiplier, minor * critical_multiplier)

    def validate(self) -> "TierConfig":
        minor = require_positive_number("minor threshold", self.minor)
        major = require_positive_number("major threshold", self.major)
        critical = require_positive_number("critical threshold", self.critical)
        if not minor < major < critical:
            raise ValidationError(
                f"Thresholds must be strictly increasing (minor < major < critical), "
                f"got {minor} / {major} / {critical}"
            )
        return self

    def threshold_for(self, tier: Tier) -> float:
        if tier == Tier.MINOR:
            return self.minor
        elif tier == Tier.MAJOR:
            return self.major
        elif tier == Tier.CRITICAL:
            return self.critical
        return 0.0


@dataclass(frozen=True)
class AlertToggles:
    """Per-tier alert enable flags."""
    minor: bool = True
    major: bool = True
    critical: bool = True

    def enabled(self, tier: Tier) -> bool:
        if tier == Tier.MINOR:
            return self.minor
        elif tier == Tier.MAJOR:
            return self.major
        elif tier == Tier.CRITICAL:
            return self.critical
        return False


@dataclass
class TargetConfig:
    """Configuration supplied when a watch is added."""
    target_id: str
    display_name: str
    tiers: TierConfig
    interval_seconds: int
    alerts: AlertToggles = field(default_factory=AlertToggles)
    threshold_usd: Optional[float] = None  # portfolio milestone only

    def validate(self) -> "TargetConfig":
        if not self.target_id:
            raise ValidationError("Target id is required")
        self.tiers.validate()
        self.interval_seconds = validate_interval(self.interval_seconds)
        if self.threshold_usd is not None:
            self.threshold_usd = require_positive_number("USD threshold", self.threshold_usd)
        return self


@dataclass
class WatchTarget:
    """
    State + configuration for one monitored entity.

    Sampling state:
    - last_value: last sampled value (0 until the first sample)
    - last_sample_time: time of the last successful sample
    - threshold_latched: milestone hysteresis flag (portfolio only)
    """
    target_id: str
    kind: WatcherKind
    display_name: str
    tiers: TierConfig
    interval_seconds: int
    alerts: AlertToggles = field(default_factory=AlertToggles)
    threshold_usd: Optional[float] = None

    last_value: float = 0.0
    last_sample_time: Optional[datetime] = None
    active: bool = True
    threshold_latched: bool = False

    @classmethod
    def from_config(
        cls,
        config: TargetConfig,
        kind: WatcherKind,
        last_value: float = 0.0,
        last_sample_time: Optional[datetime] = None,
    ) -> "WatchTarget":
        config.validate()
        return cls(
            target_id=config.target_id,
            kind=kind,
            display_name=config.display_name or config.target_id,
            tiers=config.tiers,
            interval_seconds=config.interval_seconds,
            alerts=config.alerts,
            threshold_usd=config.threshold_usd,
            last_value=last_value,
            last_sample_time=last_sample_time,
        )

    def same_config(self, config: TargetConfig) -> bool:
        """True if the target already carries exactly this configuration."""
        return (
            self.display_name == (config.display_name or config.target_id)
            and self.tiers == config.tiers
            and self.interval_seconds == config.interval_seconds
            and self.alerts == config.alerts
            and self.threshold_usd == config.threshold_usd
        )


@dataclass
class TargetUpdate:
    """Partial configuration change; None means "leave as is"."""
    display_name: Optional[str] = None
    minor: Optional[float] = None
    major: Optional[float] = None
    critical: Optional[float] = None
    interval_seconds: Optional[int] = None
    enable_minor: Optional[bool] = None
    enable_major: Optional[bool] = None
    enable_critical: Optional[bool] = None
    threshold_usd: Optional[float] = None

    def is_empty(self) -> bool:
        return all(value is None for value in vars(self).values())

    def apply(self, target: WatchTarget) -> WatchTarget:
        """
        Return a validated copy of target with this update merged in.

        The original target is never touched, so a rejected update leaves
        it unchanged.

        Raises:
            ValidationError: if the merged configuration is invalid
        """
        for name in ("enable_minor", "enable_major", "enable_critical"):
            value = getattr(self, name)
            if value is not None and not isinstance(value, bool):
                raise ValidationError(f"{name} must be a boolean, got {value!r}")

        tiers = TierConfig(
            minor=self.minor if self.minor is not None else target.tiers.minor,
            major=self.major if self.major is not None else target.tiers.major,
            critical=self.critical if self.critical is not None else target.tiers.critical,
        ).validate()

        alerts = AlertToggles(
            minor=self.enable_minor if self.enable_minor is not None else target.alerts.minor,
            major=self.enable_major if self.enable_major is not None else target.alerts.major,
            critical=self.enable_critical if self.enable_critical is not None else target.alerts.critical,
        )

        interval = target.interval_seconds
        if self.interval_seconds is not None:
            interval = validate_interval(self.interval_seconds)

        threshold_usd = target.threshold_usd
        if self.threshold_usd is not None:
            threshold_usd = require_positive_number("USD threshold", self.threshold_usd)

        return replace(
            target,
            display_name=self.display_name or target.display_name,
            tiers=tiers,
            alerts=alerts,
            interval_seconds=interval,
            threshold_usd=threshold_usd,
        )


@dataclass
class AlertRecord:
    """An emitted alert. Append-only; only `delivered` changes after creation."""
    category: str  # "holdings", "price", "base_price"
    alert_type: str  # "minor_change", ..., "threshold_reached"
    severity: str  # tier name or "milestone"
    message: str
    target_id: Optional[str] = None
    timestamp: datetime = field(default_factory=utc_now)
    delivered: bool = False
    id: Optional[int] = None


@dataclass(frozen=True)
class PriceHistoryPoint:
    """One persisted sample."""
    target_id: str
    label: str
    value: float
    timestamp: datetime
