"""Date and time-of-day helpers.

Every "what day is it" decision goes through :func:`business_today` so the
calendar boundary is always the business timezone's, never the caller's.
"""

from datetime import date, datetime, time, timezone
from typing import Optional, Union
from zoneinfo import ZoneInfo

TimeLike = Union[str, time]


def business_date_parts(moment: datetime, tz_name: str) -> tuple[int, int, int]:
    """Return (year, month, day) of ``moment`` as seen in ``tz_name``.

    Naive datetimes are taken to be UTC.
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    local = moment.astimezone(ZoneInfo(tz_name))
    return local.year, local.month, local.day


def business_today(tz_name: str, now: Optional[datetime] = None) -> date:
    """Calendar date in the business timezone, truncated to the day."""
    if now is None:
        now = datetime.now(timezone.utc)
    return date(*business_date_parts(now, tz_name))


def parse_time(value: TimeLike) -> time:
    """Accept ``HH:MM``, ``HH:MM:SS`` or a ``time``."""
    if isinstance(value, time):
        return value.replace(microsecond=0, tzinfo=None)
    parts = value.strip().split(":")
    if len(parts) not in (2, 3):
        raise ValueError(f"Invalid time of day: {value!r}")
    try:
        hour, minute = int(parts[0]), int(parts[1])
        second = int(parts[2]) if len(parts) == 3 else 0
        return time(hour, minute, second)
    except ValueError as e:
        raise ValueError(f"Invalid time of day: {value!r}") from e


def format_time(value: TimeLike) -> str:
    """Canonical ``HH:MM:SS`` form."""
    return parse_time(value).strftime("%H:%M:%S")


def to_minutes(value: TimeLike) -> int:
    t = parse_time(value)
    return t.hour * 60 + t.minute


def from_minutes(minutes: int) -> time:
    if not 0 <= minutes < 24 * 60:
        raise ValueError(f"Minutes out of range for a single day: {minutes}")
    return time(minutes // 60, minutes % 60)
