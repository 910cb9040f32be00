"""
Threshold Classifier

Pure mapping from (previous value, current value, tier config) to a severity
tier. No I/O, no state.

Rules:
- No classification before a baseline exists (previous <= 0)
- No classification for a zero change
- Otherwise the highest tier whose threshold is met wins
  (critical > major > minor), so one change yields at most one tier
"""

from dataclasses import dataclass

from ..models import Tier, TierConfig


@dataclass(frozen=True)
class Classification:
    """Result of classifying one sample against the previous one."""
    tier: Tier
    delta: float
    delta_pct: float

    @property
    def is_alertable(self) -> bool:
        return self.tier != Tier.NONE

    @property
    def direction(self) -> str:
        """'up', 'down' or 'flat'."""
        if self.delta > 0:
            return "up"
        elif self.delta < 0:
            return "down"
        return "flat"


def percentage_change(previous: float, current: float) -> float:
    """Percentage change from previous to current; 0 when previous is 0."""
    if previous == 0:
        return 0.0
    return (current - previous) / previous * 100


def classify(previous: float, current: float, tiers: TierConfig) -> Classification:
    """
    Classify a sample.

    Args:
        previous: Last observed value (0 if no baseline yet)
        current: Newly sampled value
        tiers: Tier thresholds in percent

    Returns:
        Classification with tier NONE when no threshold is met
    """
    delta = current - previous
    delta_pct = percentage_change(previous, current)

    # Baseline sample - only seeds state
    if previous <= 0:
        return Classification(Tier.NONE, delta, delta_pct)

    magnitude = abs(delta_pct)
    if magnitude == 0:
        return Classification(Tier.NONE, delta, delta_pct)

    if magnitude >= tiers.critical:
        tier = Tier.CRITICAL
    elif magnitude >= tiers.major:
        tier = Tier.MAJOR
    elif magnitude >= tiers.minor:
        tier = Tier.MINOR
    else:
        tier = Tier.NONE

    return Classification(tier, delta, delta_pct)
