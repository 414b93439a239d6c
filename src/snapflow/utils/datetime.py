"""DateTime utilities for run timestamps and validity intervals.

Snapshot rows carry timezone-aware UTC timestamps. Backends that drop the
offset (SQLite, some warehouse drivers) hand back naive values, which are
interpreted as UTC.
"""

from datetime import datetime, timezone
from typing import Optional


def get_current_timestamp() -> datetime:
    """Get current UTC timestamp.

    Returns:
        Current timezone-aware UTC datetime
    """
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Return ``value`` as an aware UTC datetime.

    Naive datetimes are assumed to already be in UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
