"""
Shared Data Models
==================

This package contains dataclasses used across the project.
"""

from .target import (
    BASE_TOKEN_ID,
    MAX_INTERVAL_SECONDS,
    MIN_INTERVAL_SECONDS,
    AlertRecord,
    AlertToggles,
    PriceHistoryPoint,
    TargetConfig,
    TargetUpdate,
    Tier,
    TierConfig,
    WatcherKind,
    WatchTarget,
)

__all__ = [
    "BASE_TOKEN_ID",
    "MAX_INTERVAL_SECONDS",
    "MIN_INTERVAL_SECONDS",
    "AlertRecord",
    "AlertToggles",
    "PriceHistoryPoint",
    "TargetConfig",
    "TargetUpdate",
    "Tier",
    "TierConfig",
    "WatcherKind",
    "WatchTarget",
]
