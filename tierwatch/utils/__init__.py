from .formatting import (
    format_currency,
    format_percent,
    format_signed_currency,
    short_address,
)

__all__ = ["format_currency", "format_percent", "format_signed_currency", "short_address"]
