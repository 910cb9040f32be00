"""
Number formatting helpers for alert messages and the view scripts.
"""

import math


def format_currency(value: float) -> str:
    """
    Format a USD amount with thousands separators and 2-6 fraction digits.

    Examples:
        1234.5      -> $1,234.50
        0.00012345  -> $0.000123
        -42         -> -$42.00
    """
    if value is None or math.isnan(value):
        return "$-"

    sign = "-" if value < 0 else ""
    text = f"{abs(value):,.6f}"
    whole, _, fraction = text.partition(".")
    fraction = fraction.rstrip("0").ljust(2, "0")
    return f"{sign}${whole}.{fraction}"


def format_signed_currency(value: float) -> str:
    """Like format_currency but always carries a sign (+$5.00 / -$5.00)."""
    if value > 0:
        return "+" + format_currency(value)
    return format_currency(value)


def format_percent(value: float, signed: bool = True) -> str:
    """Percentage with two decimals (+3.00%)."""
    if signed:
        return f"{value:+.2f}%"
    return f"{value:.2f}%"


def short_address(address: str) -> str:
    """0x1234...abcd"""
    if not address or len(address) <= 12:
        return address
    return f"{address[:6]}...{address[-4:]}"
