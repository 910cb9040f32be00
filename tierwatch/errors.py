"""
Error Taxonomy
==============

Exceptions raised by the monitoring engine.

- ValidationError: bad configuration, rejected before any state changes
- TransientFetchError: signal source unavailable for one cycle
- PersistenceError: state store read/write failure
"""

from typing import Optional


class TierwatchError(Exception):
    """Base class for all tierwatch errors."""


class ValidationError(TierwatchError, ValueError):
    """Configuration rejected at the boundary (tier ordering, interval bounds, bad numbers)."""


class UnknownTargetError(ValidationError):
    """A configuration command referenced a target id that is not being watched."""

    def __init__(self, target_id: str):
        super().__init__(f"Target {target_id} is not being watched")
        self.target_id = target_id


class TransientFetchError(TierwatchError):
    """The signal source could not produce a value (after its own retries)."""

    def __init__(self, message: str, target_id: Optional[str] = None):
        super().__init__(message)
        self.target_id = target_id


class PersistenceError(TierwatchError):
    """The state store failed to read or write."""
