"""Per-day completion rates and perfect-day streaks across all of a user's habits.

Everything is computed over a fixed trailing window ending today in the
requested timezone. Caller-supplied date ranges only filter what is returned,
so the same streak comes back whichever slice of history a client asks for.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from sqlalchemy.orm import Session

from config import settings
from db import habit_repository, tracker_repository
from services.schedule_service import HabitSchedule, count_scheduled_days_in_range, is_scheduled
from utils.datetime_utils import day_bounds, iter_days, local_date, parse_day, resolve_timezone, today_for_tz
from utils.errors import BadRequestError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProgressDay:
    date: str
    completion_rate: int


@dataclass(frozen=True)
class UserStreaks:
    current_streak: int = 0
    longest_streak: int = 0


@dataclass
class ProgressSnapshot:
    today: date
    window_start: date
    schedules: dict[int, HabitSchedule] = field(default_factory=dict)
    names: dict[int, str] = field(default_factory=dict)
    completed: dict[int, set[date]] = field(default_factory=dict)


def completion_percent(done: int, due: int) -> int:
    """Integer percentage rounded half up; 0 when nothing was due."""
    if due <= 0:
        return 0
    return (200 * done + due) // (2 * due)


def compute_daily_rates(
    schedules: dict[int, HabitSchedule],
    completed: dict[int, set[date]],
    window_start: date,
    window_end: date,
) -> dict[date, int]:
    """Completion rate for every day in the window that had at least one habit due."""
    rates: dict[date, int] = {}
    for day in iter_days(window_start, window_end):
        due = [habit_id for habit_id, schedule in schedules.items() if is_scheduled(schedule, day)]
        if not due:
            continue
        done = sum(1 for habit_id in due if day in completed.get(habit_id, ()))
        rates[day] = completion_percent(done, len(due))
    return rates


def calculate_user_streaks(rates: dict[date, int], today: date) -> UserStreaks:
    if not rates:
        return UserStreaks()

    current = 0
    earliest = min(rates)
    cursor = today
    while cursor >= earliest:
        rate = rates.get(cursor)
        if rate is not None:
            if rate == 100:
                current += 1
            elif cursor != today:
                break
        cursor -= timedelta(days=1)

    longest = 0
    run = 0
    previous: date | None = None
    for day in sorted(d for d, rate in rates.items() if rate == 100):
        if previous is not None and (day - previous).days == 1:
            run += 1
        else:
            run = 1
        longest = max(longest, run)
        previous = day

    return UserStreaks(current_streak=current, longest_streak=max(longest, current))


def filter_history(rates: dict[date, int], start_day: date | None, end_day: date | None) -> list[ProgressDay]:
    return [
        ProgressDay(date=day.isoformat(), completion_rate=rate)
        for day, rate in sorted(rates.items())
        if (start_day is None or day >= start_day) and (end_day is None or day <= end_day)
    ]


def _parse_range(start_day: date | str | None, end_day: date | str | None) -> tuple[date | None, date | None]:
    first = parse_day(start_day) if start_day else None
    last = parse_day(end_day) if end_day else None
    if first is not None and last is not None and last < first:
        raise BadRequestError("end_date cannot be earlier than start_date")
    return first, last


def load_snapshot(
    db: Session,
    owner_id: int,
    time_zone: str = "UTC",
    now: datetime | None = None,
) -> ProgressSnapshot:
    resolve_timezone(time_zone)
    today = today_for_tz(time_zone, now)
    window_start = today - timedelta(days=max(settings.PROGRESS_WINDOW_DAYS, 1) - 1)
    snapshot = ProgressSnapshot(today=today, window_start=window_start)

    habits = habit_repository.find_habits_for_owner(db, owner_id)
    for habit in habits:
        snapshot.schedules[habit.id] = habit.schedule
        snapshot.names[habit.id] = habit.name
        snapshot.completed[habit.id] = set()
    if not habits:
        return snapshot

    trackers = tracker_repository.find_active_trackers_in_instant_range(
        db,
        owner_id,
        list(snapshot.schedules),
        day_bounds(window_start, time_zone).start,
        day_bounds(today, time_zone).next_start,
    )
    for tracker in trackers:
        snapshot.completed[tracker.habit_id].add(local_date(tracker_repository.tracker_instant(tracker), time_zone))
    return snapshot


def _rates_for(snapshot: ProgressSnapshot) -> dict[date, int]:
    return compute_daily_rates(snapshot.schedules, snapshot.completed, snapshot.window_start, snapshot.today)


def get_user_progress_history(
    db: Session,
    owner_id: int,
    start_day: date | str | None = None,
    end_day: date | str | None = None,
    time_zone: str = "UTC",
    now: datetime | None = None,
) -> list[ProgressDay]:
    first, last = _parse_range(start_day, end_day)
    snapshot = load_snapshot(db, owner_id, time_zone, now)
    return filter_history(_rates_for(snapshot), first, last)


def get_user_streaks(
    db: Session,
    owner_id: int,
    time_zone: str = "UTC",
    now: datetime | None = None,
) -> UserStreaks:
    snapshot = load_snapshot(db, owner_id, time_zone, now)
    return calculate_user_streaks(_rates_for(snapshot), snapshot.today)


def summarize_habits(snapshot: ProgressSnapshot, first: date, last: date) -> list[dict]:
    rows = []
    for habit_id, schedule in snapshot.schedules.items():
        due = count_scheduled_days_in_range(schedule, first, last) if first <= last else 0
        done = sum(
            1
            for day in snapshot.completed.get(habit_id, ())
            if first <= day <= last and is_scheduled(schedule, day)
        )
        rows.append(
            {
                "habit_id": habit_id,
                "name": snapshot.names.get(habit_id, ""),
                "scheduled_days": due,
                "completed_days": done,
                "completion_rate": completion_percent(done, due),
            }
        )
    return rows


def get_user_progress_overview(
    db: Session,
    owner_id: int,
    start_day: date | str | None = None,
    end_day: date | str | None = None,
    time_zone: str = "UTC",
    now: datetime | None = None,
) -> dict:
    """History, user streaks and a per-habit summary from a single snapshot."""
    first, last = _parse_range(start_day, end_day)
    snapshot = load_snapshot(db, owner_id, time_zone, now)
    rates = _rates_for(snapshot)
    streaks = calculate_user_streaks(rates, snapshot.today)

    summary_start = max(first or snapshot.window_start, snapshot.window_start)
    summary_end = min(last or snapshot.today, snapshot.today)
    logger.info("Computed progress overview for owner=%s over %d due days", owner_id, len(rates))
    return {
        "history": filter_history(rates, first, last),
        "current_streak": streaks.current_streak,
        "longest_streak": streaks.longest_streak,
        "total_habits": len(snapshot.schedules),
        "habit_stats": summarize_habits(snapshot, summary_start, summary_end),
    }
