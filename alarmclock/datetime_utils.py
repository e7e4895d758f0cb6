"""Shared datetime helpers: local time, epoch milliseconds and time-of-day parsing."""

from __future__ import annotations

import re
from datetime import UTC, datetime, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

MS_PER_MINUTE = 60 * 1000
MS_PER_HOUR = 60 * MS_PER_MINUTE
MS_PER_DAY = 24 * MS_PER_HOUR

_TIME_RE = re.compile(r"^(\d{1,2})(?::(\d{2}))?\s*(am|pm)?$")
_RELATIVE_RE = re.compile(r"^\+\s*(\d{1,2})(?::(\d{2}))?$")


def utc_now() -> datetime:
    """Get current datetime in UTC."""
    return datetime.now(UTC)


def local_now(tz: tzinfo | None = None) -> datetime:
    """Get current datetime in the given (or system local) timezone."""
    if tz is None:
        return datetime.now().astimezone()
    return datetime.now(tz)


def resolve_timezone(name: str | None) -> tzinfo | None:
    """Return a ZoneInfo for an IANA name, or None for the system zone."""
    if not name:
        return None
    try:
        return ZoneInfo(name.strip())
    except (ZoneInfoNotFoundError, ValueError):
        return None


def to_epoch_ms(dt: datetime) -> int:
    if dt.tzinfo is None:
        dt = dt.astimezone()
    return int(round(dt.timestamp() * 1000))


def from_epoch_ms(value: int, tz: tzinfo | None = None) -> datetime:
    dt = datetime.fromtimestamp(value / 1000, UTC)
    if tz is None:
        return dt.astimezone()
    return dt.astimezone(tz)


def utc_offset_ms(value: int, tz: tzinfo | None) -> int:
    """UTC offset (local minus UTC) in effect at the given epoch instant."""
    offset = from_epoch_ms(value, tz).utcoffset()
    if offset is None:
        return 0
    return int(offset.total_seconds() * 1000)


def js_weekday(dt: datetime) -> int:
    """Weekday index with Sunday = 0 .. Saturday = 6."""
    return (dt.weekday() + 1) % 7


def parse_time_of_day(phrase: str | None) -> tuple[int, int, str | None] | None:
    """Parse '7', '07:30' or '7:30 pm' into (hour, minute, ampm). Returns None if invalid."""
    if not phrase:
        return None
    cleaned = phrase.strip().lower()
    match = _TIME_RE.match(cleaned)
    if not match:
        return None
    hour = int(match.group(1))
    minute = int(match.group(2) or 0)
    suffix = match.group(3)
    if suffix and not 1 <= hour <= 12:
        return None
    if hour >= 24 or minute >= 60:
        return None
    return hour, minute, suffix


def parse_relative_time(phrase: str | None) -> tuple[int, int] | None:
    """Parse '+hh:mm' offsets into (hours, minutes)."""
    if not phrase:
        return None
    match = _RELATIVE_RE.match(phrase.strip())
    if not match:
        return None
    minutes = int(match.group(2) or 0)
    if minutes >= 60:
        return None
    return int(match.group(1)), minutes
