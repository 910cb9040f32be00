import pytest

from tierwatch.core import classify, percentage_change
from tierwatch.models import Tier, TierConfig

TIERS = TierConfig(minor=2, major=10, critical=20)
TIER_RANK = {Tier.NONE: 0, Tier.MINOR: 1, Tier.MAJOR: 2, Tier.CRITICAL: 3}


def test_critical_wins_over_major():
    result = classify(100, 121, TIERS)
    assert result.tier == Tier.CRITICAL
    assert result.delta == pytest.approx(21)
    assert result.delta_pct == pytest.approx(21)


def test_small_rise_is_minor():
    result = classify(100, 103, TIERS)
    assert result.tier == Tier.MINOR
    assert result.delta_pct == pytest.approx(3)


def test_drop_uses_magnitude():
    result = classify(100, 85, TIERS)
    assert result.tier == Tier.MAJOR
    assert result.direction == "down"


def test_below_minor_is_none():
    assert classify(100, 101.5, TIERS).tier == Tier.NONE


def test_thresholds_are_inclusive():
    assert classify(100, 102, TIERS).tier == Tier.MINOR
    assert classify(100, 110, TIERS).tier == Tier.MAJOR
    assert classify(100, 80, TIERS).tier == Tier.CRITICAL


def test_zero_change_is_none():
    result = classify(100, 100, TIERS)
    assert result.tier == Tier.NONE
    assert result.direction == "flat"
    assert not result.is_alertable


@pytest.mark.parametrize("previous", [0, -1, -100.5])
@pytest.mark.parametrize("current", [0, 1, 500, -3])
def test_no_baseline_never_classifies(previous, current):
    assert classify(previous, current, TIERS).tier == Tier.NONE


def test_percentage_change_zero_previous():
    assert percentage_change(0, 50) == 0


def test_tier_is_monotonic_in_magnitude():
    previous = 100.0
    magnitudes = [i * 0.5 for i in range(0, 80)]
    for sign in (1, -1):
        ranks = [TIER_RANK[classify(previous, previous + sign * m, TIERS).tier] for m in magnitudes]
        assert ranks == sorted(ranks)
