"""
Suppression Policies

Decide whether a classified sample produces an alert.

Two disciplines, selected per watcher kind:
- EdgeTriggered: sample-to-sample percentage change. Fires whenever the
  classification has a tier and that tier's alert flag is enabled.
  Self-resetting, since the next comparison is always against the
  immediately preceding sample.
- LevelTriggered: absolute USD milestone. Fires once on the upward crossing
  (latch false -> true), stays quiet while latched, and re-arms when the
  value falls back below the line.
"""

import logging
from dataclasses import dataclass
from typing import ClassVar, Optional

from ..models import WatchTarget
from .classifier import Classification

logger = logging.getLogger(__name__)

MILESTONE_SEVERITY = "milestone"
MILESTONE_ALERT_TYPE = "threshold_reached"


@dataclass(frozen=True)
class AlertDecision:
    """A policy's verdict that an alert should be emitted."""
    policy: str
    alert_type: str
    severity: str
    threshold: float
    classification: Classification


class SuppressionPolicy:
    """Base class; `kind` tags the variant."""
    kind: ClassVar[str] = ""

    def evaluate(
        self,
        target: WatchTarget,
        classification: Classification,
        current_value: float,
    ) -> Optional[AlertDecision]:
        raise NotImplementedError


@dataclass(frozen=True)
class EdgeTriggered(SuppressionPolicy):
    """Tiered percentage-change alerts."""
    kind: ClassVar[str] = "edge"

    def evaluate(
        self,
        target: WatchTarget,
        classification: Classification,
        current_value: float,
    ) -> Optional[AlertDecision]:
        if not classification.is_alertable:
            return None

        tier = classification.tier
        if not target.alerts.enabled(tier):
            logger.debug(f"{target.display_name}: {tier.value} alerts disabled, skipping")
            return None

        return AlertDecision(
            policy=self.kind,
            alert_type=f"{tier.value}_change",
            severity=tier.value,
            threshold=target.tiers.threshold_for(tier),
            classification=classification,
        )


@dataclass(frozen=True)
class LevelTriggered(SuppressionPolicy):
    """
    Absolute milestone alerts with hysteresis.

    Reads the threshold from target.threshold_usd and updates
    target.threshold_latched in place.
    """
    kind: ClassVar[str] = "level"

    def evaluate(
        self,
        target: WatchTarget,
        classification: Classification,
        current_value: float,
    ) -> Optional[AlertDecision]:
        threshold = target.threshold_usd
        if threshold is None:
            return None

        if current_value >= threshold and not target.threshold_latched:
            target.threshold_latched = True
            return AlertDecision(
                policy=self.kind,
                alert_type=MILESTONE_ALERT_TYPE,
                severity=MILESTONE_SEVERITY,
                threshold=threshold,
                classification=classification,
            )

        if current_value < threshold and target.threshold_latched:
            target.threshold_latched = False
            logger.info(
                f"{target.display_name}: value back below {threshold:,.2f}, milestone re-armed"
            )

        return None
