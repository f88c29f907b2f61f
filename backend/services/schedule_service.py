from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable

from utils.datetime_utils import WEEKDAY_TOKENS, iter_days, local_date, weekday_token
from utils.errors import BadRequestError

VALID_WEEKDAYS = frozenset(WEEKDAY_TOKENS)


@dataclass(frozen=True)
class HabitSchedule:
    frequency: frozenset[str]
    start_date: date
    end_date: date | None = None


def normalize_frequency(raw: str | Iterable[str] | None) -> frozenset[str]:
    """Canonicalize a frequency given as ``"Mon,Wed"`` or ``["Mon", "Wed"]``.

    Older rows stored the comma-joined form; everything past the ORM boundary
    sees a frozenset of weekday tokens.
    """
    if raw is None:
        raise BadRequestError("Frequency is required and must be a non-empty list")
    if isinstance(raw, str):
        tokens = [part.strip() for part in raw.split(",") if part.strip()]
    else:
        tokens = [str(part).strip() for part in raw]
    if not tokens:
        raise BadRequestError("Frequency is required and must be a non-empty list")
    unknown = [t for t in tokens if t not in VALID_WEEKDAYS]
    if unknown:
        raise BadRequestError(
            f"Frequency must only contain valid days: {', '.join(WEEKDAY_TOKENS)}",
            context={"unknown": unknown},
        )
    if len(set(tokens)) != len(tokens):
        raise BadRequestError("Frequency cannot contain duplicate days")
    return frozenset(tokens)


def serialize_frequency(frequency: Iterable[str]) -> str:
    """Comma-joined storage form in Mon..Sun order."""
    days = set(frequency)
    return ",".join(token for token in WEEKDAY_TOKENS if token in days)


def validate_active_window(start_date: date, end_date: date | None) -> None:
    if end_date is not None and end_date < start_date:
        raise BadRequestError("end_date cannot be earlier than start_date")


def _as_calendar_day(day: date | datetime, tz_name: str | None) -> date:
    if isinstance(day, datetime):
        return local_date(day, tz_name or "UTC")
    return day


def is_scheduled(schedule: HabitSchedule, day: date | datetime, tz_name: str | None = None) -> bool:
    """True when ``day`` is inside the active window and its weekday is in the frequency.

    ``day`` may be a calendar date or an absolute instant; instants are mapped to
    their local day in ``tz_name`` first.
    """
    calendar_day = _as_calendar_day(day, tz_name)
    if calendar_day < schedule.start_date:
        return False
    if schedule.end_date is not None and calendar_day > schedule.end_date:
        return False
    return weekday_token(calendar_day) in schedule.frequency


def count_scheduled_days_in_range(
    schedule: HabitSchedule,
    start_day: date | datetime,
    end_day: date | datetime,
    tz_name: str | None = None,
) -> int:
    first = _as_calendar_day(start_day, tz_name)
    last = _as_calendar_day(end_day, tz_name)
    return sum(1 for d in iter_days(first, last) if is_scheduled(schedule, d))
