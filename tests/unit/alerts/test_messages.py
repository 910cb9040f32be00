from tierwatch.alerts.messages import (
    format_base_price_alert,
    format_holdings_alert,
    format_price_alert,
    strip_html,
)
from tierwatch.core import EdgeTriggered, LevelTriggered, classify
from tierwatch.models import TierConfig, WatcherKind, WatchTarget


def make_target(kind=WatcherKind.TOKEN, display_name="Sophia <AI>", **kwargs):
    return WatchTarget(
        target_id="0x1234567890abcdef1234567890abcdef12345678",
        kind=kind,
        display_name=display_name,
        tiers=TierConfig(2, 10, 20),
        interval_seconds=60,
        **kwargs,
    )


def edge_decision(target, previous, current):
    return EdgeTriggered().evaluate(target, classify(previous, current, target.tiers), current)


def test_price_alert_contents():
    target = make_target()
    text = format_price_alert(target, edge_decision(target, 100, 103), 100, 103)

    assert "Sophia &lt;AI&gt; price alert!" in text
    assert "$103.00" in text
    assert "$100.00" in text
    assert "+$3.00" in text
    assert "(+3.00%)" in text
    assert "Threshold: 2% (minor)" in text
    assert "going up" in text


def test_base_price_alert_mentions_all_agents():
    target = make_target(kind=WatcherKind.BASE_TOKEN, display_name="IQ")
    text = format_base_price_alert(target, edge_decision(target, 0.005, 0.004), 0.005, 0.004)

    assert "-$0.001" in text
    assert "(-20.00%)" in text
    assert "all agent prices" in text
    assert "price decreases" in text


def test_holdings_milestone_alert():
    target = make_target(kind=WatcherKind.PORTFOLIO, threshold_usd=1000.0)
    decision = LevelTriggered().evaluate(target, classify(900, 1050, target.tiers), 1050)
    text = format_holdings_alert(target, decision, 900, 1050)

    assert "threshold reached" in text
    assert "$1,050.00" in text
    assert "$1,000.00" in text


def test_holdings_change_alert():
    target = make_target(kind=WatcherKind.PORTFOLIO)
    text = format_holdings_alert(target, edge_decision(target, 1000, 1250), 1000, 1250)

    assert "portfolio change" in text
    assert "0x1234...5678" in text


def test_strip_html():
    assert strip_html("<b>A &amp; B</b>") == "A & B"
