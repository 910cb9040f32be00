from tierwatch.core import EdgeTriggered, LevelTriggered, classify
from tierwatch.models import AlertToggles, TierConfig, WatcherKind, WatchTarget


def make_target(**kwargs):
    defaults = dict(
        target_id="0xwallet",
        kind=WatcherKind.PORTFOLIO,
        display_name="Portfolio",
        tiers=TierConfig(2, 10, 20),
        interval_seconds=300,
    )
    defaults.update(kwargs)
    return WatchTarget(**defaults)


def run_values(policy, target, values):
    alerts = []
    for value in values:
        classification = classify(target.last_value, value, target.tiers)
        decision = policy.evaluate(target, classification, value)
        if decision is not None:
            alerts.append((target.last_value, value, decision))
        target.last_value = value
    return alerts


def test_milestone_latch_alerts_once_per_crossing():
    target = make_target(threshold_usd=1000)
    alerts = run_values(LevelTriggered(), target, [900, 1050, 1100, 950, 1200])

    assert [(prev, cur) for prev, cur, _ in alerts] == [(900, 1050), (950, 1200)]
    assert all(d.alert_type == "threshold_reached" for _, _, d in alerts)
    assert all(d.severity == "milestone" for _, _, d in alerts)
    assert target.threshold_latched is True


def test_milestone_at_exact_threshold_latches():
    target = make_target(threshold_usd=1000)
    alerts = run_values(LevelTriggered(), target, [1000, 1000])
    assert len(alerts) == 1


def test_milestone_without_threshold_is_silent():
    target = make_target(threshold_usd=None)
    assert run_values(LevelTriggered(), target, [900, 5000]) == []


def test_latch_resets_below_threshold():
    target = make_target(threshold_usd=1000, threshold_latched=True)
    run_values(LevelTriggered(), target, [999])
    assert target.threshold_latched is False


def test_edge_alerts_every_qualifying_sample():
    target = make_target(kind=WatcherKind.TOKEN)
    alerts = run_values(EdgeTriggered(), target, [100, 103, 106.5, 106.6])
    types = [d.alert_type for _, _, d in alerts]
    assert types == ["minor_change", "minor_change"]


def test_edge_respects_disabled_tier():
    target = make_target(kind=WatcherKind.TOKEN, alerts=AlertToggles(minor=False))
    target.last_value = 100
    decision = EdgeTriggered().evaluate(target, classify(100, 103, target.tiers), 103)
    assert decision is None

    decision = EdgeTriggered().evaluate(target, classify(100, 125, target.tiers), 125)
    assert decision.severity == "critical"
    assert decision.threshold == 20


def test_edge_silent_on_baseline():
    target = make_target(kind=WatcherKind.TOKEN)
    decision = EdgeTriggered().evaluate(target, classify(0, 100, target.tiers), 100)
    assert decision is None
