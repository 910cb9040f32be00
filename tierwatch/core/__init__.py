"""
Monitoring engine: classification, suppression, scheduling, loops, registries.
"""

from .classifier import Classification, classify, percentage_change
from .suppression import AlertDecision, EdgeTriggered, LevelTriggered, SuppressionPolicy
from .scheduler import Scheduler
from .monitor import CycleResult, MonitorLoop, WatcherProfile
from .registry import WatcherRegistry

__all__ = [
    "Classification",
    "classify",
    "percentage_change",
    "AlertDecision",
    "EdgeTriggered",
    "LevelTriggered",
    "SuppressionPolicy",
    "Scheduler",
    "CycleResult",
    "MonitorLoop",
    "WatcherProfile",
    "WatcherRegistry",
]
