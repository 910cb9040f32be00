import pytest

from tierwatch.errors import ValidationError
from tierwatch.models import (
    AlertToggles,
    TargetConfig,
    TargetUpdate,
    TierConfig,
    WatcherKind,
    WatchTarget,
)


def make_target():
    config = TargetConfig("0xtoken", "Token", TierConfig(2, 10, 20), 60)
    return WatchTarget.from_config(config, WatcherKind.TOKEN)


def test_tiers_from_base():
    tiers = TierConfig.from_base(2)
    assert (tiers.minor, tiers.major, tiers.critical) == (2, 6, 10)


@pytest.mark.parametrize("tiers", [
    TierConfig(2, 2, 20),
    TierConfig(10, 5, 20),
    TierConfig(0, 5, 20),
    TierConfig(-1, 5, 20),
    TierConfig(True, 5, 20),
    TierConfig("2", 5, 20),
    TierConfig(2, 5, float("inf")),
])
def test_invalid_tiers_rejected(tiers):
    with pytest.raises(ValidationError):
        tiers.validate()


@pytest.mark.parametrize("interval", [29, 3601, 45.5, True, "60"])
def test_invalid_intervals_rejected(interval):
    config = TargetConfig("0xtoken", "Token", TierConfig(2, 10, 20), interval)
    with pytest.raises(ValidationError):
        config.validate()


def test_interval_bounds_inclusive():
    for interval in (30, 3600, 60.0):
        config = TargetConfig("0xtoken", "Token", TierConfig(2, 10, 20), interval).validate()
        assert isinstance(config.interval_seconds, int)


def test_milestone_must_be_positive():
    config = TargetConfig("0xw", "W", TierConfig(2, 10, 20), 60, threshold_usd=0)
    with pytest.raises(ValidationError):
        config.validate()


def test_from_config_defaults_display_name():
    config = TargetConfig("0xtoken", "", TierConfig(2, 10, 20), 60)
    target = WatchTarget.from_config(config, WatcherKind.TOKEN)
    assert target.display_name == "0xtoken"
    assert target.last_value == 0.0
    assert target.active is True
    assert target.same_config(config)


def test_update_apply_returns_copy():
    target = make_target()
    updated = TargetUpdate(critical=30, enable_critical=False, interval_seconds=90).apply(target)

    assert updated is not target
    assert updated.tiers.critical == 30
    assert updated.alerts == AlertToggles(critical=False)
    assert updated.interval_seconds == 90
    assert target.tiers.critical == 20
    assert target.interval_seconds == 60


def test_update_apply_rejects_without_touching_target():
    target = make_target()
    with pytest.raises(ValidationError):
        TargetUpdate(minor=15).apply(target)
    assert target.tiers == TierConfig(2, 10, 20)


def test_update_is_empty():
    assert TargetUpdate().is_empty()
    assert not TargetUpdate(minor=1).is_empty()
