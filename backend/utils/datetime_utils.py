from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Iterator
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from utils.errors import InvalidDateError, InvalidTimeZoneError

# Index matches date.weekday(): Monday == 0.
WEEKDAY_TOKENS: tuple[str, ...] = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")

_LAST_MILLISECOND = timedelta(milliseconds=1)


@dataclass(frozen=True)
class DayBounds:
    """UTC instants of 00:00:00.000 and 23:59:59.999 of one local calendar day.

    Range checks run half-open against ``next_start`` so instants inside the
    last millisecond still belong to the day.
    """

    start: datetime
    end: datetime
    next_start: datetime

    def contains(self, instant: datetime) -> bool:
        return self.start <= as_utc(instant) < self.next_start


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def resolve_timezone(tz_name: str | None) -> ZoneInfo:
    """Return the ZoneInfo for an IANA name or raise InvalidTimeZoneError."""
    name = (tz_name or "").strip()
    if not name:
        raise InvalidTimeZoneError("Time zone is required")
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, OSError):
        raise InvalidTimeZoneError(f"Invalid time zone: {tz_name}")


def as_utc(instant: datetime) -> datetime:
    """Naive datetimes (as stored by SQLite) are UTC."""
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)


def to_db_utc(instant: datetime) -> datetime:
    return as_utc(instant).replace(tzinfo=None)


def parse_instant(value: str | datetime) -> datetime:
    """Parse an ISO-8601 instant (``Z`` suffix accepted) into an aware UTC datetime."""
    if isinstance(value, datetime):
        return as_utc(value)
    raw = (value or "").strip()
    if not raw:
        raise InvalidDateError("Timestamp is required")
    if raw.endswith(("Z", "z")):
        raw = raw[:-1] + "+00:00"
    try:
        return as_utc(datetime.fromisoformat(raw))
    except ValueError:
        raise InvalidDateError(f"Invalid timestamp: {value}")


def parse_day(value: str | date) -> date:
    """Parse a ``YYYY-MM-DD`` calendar day."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    raw = (value or "").strip()
    try:
        return date.fromisoformat(raw[:10])
    except ValueError:
        raise InvalidDateError(f"Invalid date: {value}")


def local_date(instant: datetime, tz_name: str) -> date:
    return as_utc(instant).astimezone(resolve_timezone(tz_name)).date()


def local_day_key(instant: datetime, tz_name: str) -> str:
    """Calendar date (``YYYY-MM-DD``) that ``instant`` falls on in ``tz_name``."""
    return local_date(instant, tz_name).isoformat()


def weekday_token(d: date) -> str:
    return WEEKDAY_TOKENS[d.weekday()]


def day_of_week(instant: datetime, tz_name: str) -> str:
    return weekday_token(local_date(instant, tz_name))


def start_of_day(d: date, tz_name: str) -> datetime:
    """UTC instant of local midnight.

    Midnights skipped by a DST gap resolve to the first instant that exists on
    that local day.
    """
    tz = resolve_timezone(tz_name)
    local = datetime(d.year, d.month, d.day, tzinfo=tz)
    return local.astimezone(timezone.utc)


def day_bounds(d: date, tz_name: str) -> DayBounds:
    start = start_of_day(d, tz_name)
    next_start = start_of_day(d + timedelta(days=1), tz_name)
    return DayBounds(start=start, end=next_start - _LAST_MILLISECOND, next_start=next_start)


def local_day_bounds(instant: datetime, tz_name: str) -> DayBounds:
    return day_bounds(local_date(instant, tz_name), tz_name)


def today_for_tz(tz_name: str, now: datetime | None = None) -> date:
    """Return today's date in the given timezone, from the server clock unless ``now`` is given."""
    return local_date(now or utcnow(), tz_name)


def iter_days(start: date, end: date) -> Iterator[date]:
    cursor = start
    while cursor <= end:
        yield cursor
        cursor += timedelta(days=1)
