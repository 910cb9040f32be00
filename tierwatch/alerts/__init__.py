from .telegram import AlertConfig, TelegramAlerts
from .messages import (
    format_base_price_alert,
    format_holdings_alert,
    format_price_alert,
)

__all__ = [
    "AlertConfig",
    "TelegramAlerts",
    "format_base_price_alert",
    "format_holdings_alert",
    "format_price_alert",
]
