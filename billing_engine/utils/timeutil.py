"""
UTC time helpers.
All timestamps are stored as naive UTC datetimes; calendar days are UTC days.
"""
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def utctoday() -> date:
    return utcnow().date()


def from_epoch(value) -> Optional[datetime]:
    """Convert a Unix timestamp (seconds) to a naive UTC datetime. None stays None."""
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)


def to_epoch(value: Optional[datetime]) -> Optional[int]:
    if value is None:
        return None
    return int(value.replace(tzinfo=timezone.utc).timestamp())


def next_utc_midnight(day: date) -> datetime:
    """Start of the UTC day following `day` (when a daily quota resets)."""
    return datetime.combine(day + timedelta(days=1), time.min)


def isoformat_utc(value: Optional[datetime]) -> Optional[str]:
    """ISO-8601 with an explicit Z suffix."""
    if value is None:
        return None
    return value.replace(microsecond=0).isoformat() + 'Z'
