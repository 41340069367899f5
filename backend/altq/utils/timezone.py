"""
Time utilities.

All database timestamps are stored as timezone-naive UTC. Services take a
``Clock`` (any zero-argument callable returning such a datetime) so that
timeouts can be tested without waiting on real time.
"""

from datetime import datetime, timezone
from typing import Callable, Optional

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Get current time in UTC, timezone-naive (for database storage)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(dt: datetime) -> datetime:
    """
    Normalize a datetime to timezone-naive UTC.

    Naive datetimes are assumed to already be UTC.
    """
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def isoformat_utc(dt: Optional[datetime]) -> Optional[str]:
    """Format a stored UTC datetime as ISO-8601 with an explicit offset."""
    if dt is None:
        return None
    return dt.replace(tzinfo=timezone.utc).isoformat()
