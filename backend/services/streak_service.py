from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable

from services.schedule_service import HabitSchedule, is_scheduled
from utils.datetime_utils import iter_days, local_date, resolve_timezone, today_for_tz


@dataclass(frozen=True)
class StreakResult:
    streak: int = 0
    longest_streak: int = 0


def completed_days(instants: Iterable[datetime], tz_name: str) -> set[date]:
    """Collapse completion instants to the set of local calendar days they fall on."""
    return {local_date(instant, tz_name) for instant in instants}


def calculate_current_streak(done: set[date], schedule: HabitSchedule, today: date) -> int:
    """Count completed scheduled days walking back from ``today``.

    Unscheduled days are skipped. A missed scheduled day ends the walk, except
    today, which is still open.
    """
    if not done:
        return 0
    streak = 0
    cursor = today
    while cursor >= schedule.start_date:
        if is_scheduled(schedule, cursor):
            if cursor in done:
                streak += 1
            elif cursor != today:
                break
        cursor -= timedelta(days=1)
    return streak


def calculate_longest_streak(done: set[date], schedule: HabitSchedule) -> int:
    if not done:
        return 0
    longest = 0
    run = 0
    for day in iter_days(min(done), max(done)):
        if not is_scheduled(schedule, day):
            continue
        if day in done:
            run += 1
            longest = max(longest, run)
        else:
            run = 0
    return longest


def calculate_streaks(
    instants: Iterable[datetime],
    schedule: HabitSchedule,
    tz_name: str,
    today: date | None = None,
) -> StreakResult:
    resolve_timezone(tz_name)
    done = completed_days(instants, tz_name)
    if not done:
        return StreakResult(0, 0)
    today = today or today_for_tz(tz_name)
    streak = calculate_current_streak(done, schedule, today)
    longest = calculate_longest_streak(done, schedule)
    return StreakResult(streak=streak, longest_streak=max(longest, streak))
