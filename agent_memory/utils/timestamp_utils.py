"""
Timestamp utilities for consistent time handling across the memory engine.

All timestamps are timezone-aware UTC datetimes internally; the graph projection
additionally stores epoch milliseconds for range filtering.
"""

import os
import time
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Tuple

DAY_MS = 24 * 60 * 60 * 1000


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (as returned by SQLite) and convert aware ones to UTC.

    Args:
        value: datetime, naive or aware

    Returns:
        Aware UTC datetime
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_millis(value: datetime) -> int:
    """Convert datetime to epoch milliseconds."""
    return int(ensure_utc(value).timestamp() * 1000)


def from_millis(value: int) -> datetime:
    """Convert epoch milliseconds to an aware UTC datetime."""
    return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)


def to_iso(value: datetime) -> str:
    """ISO 8601 representation in UTC."""
    return ensure_utc(value).isoformat()


def day_key(value: datetime) -> str:
    """Calendar day (UTC) as YYYY-MM-DD."""
    return ensure_utc(value).strftime('%Y-%m-%d')


def local_day_window(day: Optional[date] = None) -> Tuple[datetime, datetime]:
    """Local midnight-to-midnight window for a calendar day.

    The end is one millisecond before the next local midnight so that inclusive
    range filters do not pick up memories from the following day.

    Args:
        day: Calendar day (defaults to today, local time)

    Returns:
        Tuple of (start, end) as aware datetimes
    """
    day = day or datetime.now().astimezone().date()
    next_day = day + timedelta(days=1)
    start = datetime(day.year, day.month, day.day).astimezone()
    end = datetime(next_day.year, next_day.month, next_day.day).astimezone() - timedelta(milliseconds=1)
    return start, end


def recent_days_window(days: int, now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """Window covering the last `days` UTC calendar days, today included."""
    now = ensure_utc(now or utc_now())
    start_day = now.date() - timedelta(days=max(days, 1) - 1)
    start = datetime(start_day.year, start_day.month, start_day.day, tzinfo=timezone.utc)
    return start, now


def new_memory_id(prefix: str = 'mem') -> str:
    """Generate a time-ordered unique identifier.

    Epoch nanoseconds (zero padded so that lexical order matches creation order)
    followed by random hex to keep ids unique within the same tick.
    """
    return f'{prefix}_{time.time_ns():020d}_{os.urandom(5).hex()}'
