"""Utility functions and helpers for SnapFlow."""

from snapflow.utils.datetime import (
    ensure_utc,
    get_current_timestamp,
)
from snapflow.utils.decorators import (
    retry_with_backoff,
    traced,
)

__all__ = [
    # DateTime utilities
    "ensure_utc",
    "get_current_timestamp",
    # Decorators
    "retry_with_backoff",
    "traced",
]
