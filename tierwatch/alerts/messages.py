"""
Alert Message Formatting
========================

Builds the HTML (Telegram parse mode) text for each watcher kind.

All formatters share one signature so a watcher profile can carry any of
them: (target, decision, previous_value, current_value) -> str
"""

import html
import re
from datetime import datetime, timezone
from typing import List, Optional

import pytz

from ..core.suppression import AlertDecision, MILESTONE_ALERT_TYPE
from ..models import Tier, WatchTarget
from ..utils import format_currency, format_percent, format_signed_currency, short_address

EST = pytz.timezone('America/New_York')

TAG_RE = re.compile(r"<[^>]+>")

SEVERITY_EMOJI = {
    Tier.MINOR.value: "🟡",
    Tier.MAJOR.value: "🟠",
    Tier.CRITICAL.value: "🔴",
    "milestone": "🎯",
}


def strip_html(text: str) -> str:
    """Plain-text rendering of an HTML alert (console output)."""
    return html.unescape(TAG_RE.sub("", text))


def format_timestamp(timestamp: Optional[datetime] = None) -> str:
    """Eastern-time clock string used at the foot of every alert."""
    if timestamp is None:
        timestamp = datetime.now(timezone.utc)
    return timestamp.astimezone(EST).strftime('%Y-%m-%d %H:%M:%S %Z')


def _change_lines(
    decision: AlertDecision,
    previous_value: float,
    current_value: float,
    noun: str,
) -> List[str]:
    classification = decision.classification
    return [
        f"💰 Current {noun}: <code>{format_currency(current_value)}</code>",
        f"📊 Previous {noun}: <code>{format_currency(previous_value)}</code>",
        f"🔄 Change: <code>{format_signed_currency(classification.delta)}</code> "
        f"({format_percent(classification.delta_pct)})",
        f"🚨 Threshold: {decision.threshold:g}% ({decision.severity})",
    ]


def _header(decision: AlertDecision, title: str) -> str:
    emoji = SEVERITY_EMOJI.get(decision.severity, "")
    arrow = "📈" if decision.classification.direction == "up" else "📉"
    return f"{emoji} {arrow} <b>{html.escape(title)}</b>"


def format_milestone_alert(target: WatchTarget, decision: AlertDecision, current_value: float) -> str:
    lines = [
        "🎯 <b>Holdings threshold reached!</b>",
        "",
        f"💰 Current value: <code>{format_currency(current_value)}</code>",
        f"🎯 Threshold: <code>{format_currency(decision.threshold)}</code>",
        "",
        "Consider reviewing your positions!",
        f"<i>{format_timestamp()}</i>",
    ]
    return "\n".join(lines)


def format_holdings_alert(
    target: WatchTarget,
    decision: AlertDecision,
    previous_value: float,
    current_value: float,
) -> str:
    """Portfolio watcher: tiered value change or USD milestone."""
    if decision.alert_type == MILESTONE_ALERT_TYPE:
        return format_milestone_alert(target, decision, current_value)

    lines = [
        _header(decision, "Significant portfolio change detected!"),
        f"Wallet: <code>{html.escape(short_address(target.target_id))}</code>",
        "",
        *_change_lines(decision, previous_value, current_value, "value"),
        "",
        "Time to review your positions!",
        f"<i>{format_timestamp()}</i>",
    ]
    return "\n".join(lines)


def format_price_alert(
    target: WatchTarget,
    decision: AlertDecision,
    previous_value: float,
    current_value: float,
) -> str:
    """Token price watcher."""
    going_up = decision.classification.direction == "up"
    lines = [
        _header(decision, f"{target.display_name} price alert!"),
        f"Token: <code>{html.escape(short_address(target.target_id))}</code>",
        "",
        *_change_lines(decision, previous_value, current_value, "price"),
        "",
        "Price is going up! 🚀" if going_up else "Price is going down! 📉",
        f"<i>{format_timestamp()}</i>",
    ]
    return "\n".join(lines)


def format_base_price_alert(
    target: WatchTarget,
    decision: AlertDecision,
    previous_value: float,
    current_value: float,
) -> str:
    """Base token watcher; every agent is priced against this token."""
    going_up = decision.classification.direction == "up"
    lines = [
        _header(decision, f"{target.display_name} price alert!"),
        "",
        *_change_lines(decision, previous_value, current_value, "price"),
        "",
        "🪙 This is the base token, so all agent prices may move with it!",
        "🚀 All agents may see price increases!" if going_up else "📉 All agents may see price decreases!",
        f"<i>{format_timestamp()}</i>",
    ]
    return "\n".join(lines)
