"""
Local-day boundaries for client-supplied timezone offsets.

Clients send the browser's `Date.getTimezoneOffset()` value: minutes to
ADD to a local wall-clock time to reach UTC (300 for US Eastern winter,
-60 for Central Europe). Every conversion between a user's calendar day
and stored UTC timestamps goes through this module so the offset is
applied exactly once.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple

# Offsets outside this range do not exist anywhere on Earth
MIN_OFFSET_MINUTES = -14 * 60
MAX_OFFSET_MINUTES = 12 * 60


def utcnow() -> datetime:
    """Naive UTC now."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def clamp_offset(timezone_offset: Optional[int]) -> int:
    if timezone_offset is None:
        return 0
    return max(MIN_OFFSET_MINUTES, min(MAX_OFFSET_MINUTES, int(timezone_offset)))


def local_now(now_utc: datetime, timezone_offset: int) -> datetime:
    """The user's wall-clock time for a naive UTC instant."""
    return now_utc - timedelta(minutes=timezone_offset)


def local_day_start(now_utc: datetime, timezone_offset: int) -> datetime:
    """
    UTC instant at which the user's current local day began.

    This is the single day-boundary computation shared by the recurrence
    and gamification engines.
    """
    local_midnight = local_now(now_utc, timezone_offset).replace(
        hour=0, minute=0, second=0, microsecond=0
    )
    return local_midnight + timedelta(minutes=timezone_offset)


def local_date(now_utc: datetime, timezone_offset: int) -> date:
    """The user's local calendar date."""
    return local_now(now_utc, timezone_offset).date()


def day_bounds(day: date, timezone_offset: int) -> Tuple[datetime, datetime]:
    """[start, end) of a local calendar day, as naive UTC instants."""
    start = local_to_utc(day, time(0, 0), timezone_offset)
    return start, start + timedelta(days=1)


def local_to_utc(day: date, at: time, timezone_offset: int) -> datetime:
    """Convert a local date + wall-clock time to a naive UTC timestamp."""
    return datetime.combine(day, at) + timedelta(minutes=timezone_offset)


def date_key(day: date) -> str:
    return day.isoformat()


def parse_date_key(key: str) -> date:
    return date.fromisoformat(key)


def year_month(day: date) -> str:
    return f"{day.year:04d}-{day.month:02d}"


def parse_clock(value: Optional[str], default: time) -> time:
    """Parse "HH:MM" into a time, falling back to `default` when empty."""
    if not value:
        return default
    hours, _, minutes = value.partition(":")
    return time(int(hours), int(minutes or 0))
