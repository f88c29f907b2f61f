from __future__ import annotations

import sys
from datetime import date, datetime, timezone
from pathlib import Path

import pytest


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from services.schedule_service import HabitSchedule, normalize_frequency  # noqa: E402
from services.streak_service import calculate_streaks, completed_days  # noqa: E402
from utils.errors import InvalidTimeZoneError  # noqa: E402

DAILY = HabitSchedule(frequency=normalize_frequency("Mon,Tue,Wed,Thu,Fri,Sat,Sun"), start_date=date(2024, 1, 1))
MWF = HabitSchedule(frequency=normalize_frequency("Mon,Wed,Fri"), start_date=date(2024, 1, 1))


def _noon(day: int, month: int = 1) -> datetime:
    return datetime(2024, month, day, 12, 0, tzinfo=timezone.utc)


def test_three_consecutive_days_ending_today():
    result = calculate_streaks([_noon(7), _noon(6), _noon(5)], DAILY, "UTC", today=date(2024, 1, 7))
    assert result.streak == 3
    assert result.longest_streak == 3


def test_today_not_done_yet_does_not_break_streak():
    result = calculate_streaks([_noon(6), _noon(5)], DAILY, "UTC", today=date(2024, 1, 7))
    assert result.streak == 2


def test_missed_yesterday_breaks_streak():
    result = calculate_streaks([_noon(5), _noon(4)], DAILY, "UTC", today=date(2024, 1, 7))
    assert result.streak == 0
    assert result.longest_streak == 2


def test_gap_before_run_only_limits_current_streak():
    result = calculate_streaks([_noon(10), _noon(9), _noon(8), _noon(6)], DAILY, "UTC", today=date(2024, 1, 10))
    assert result.streak == 3
    assert result.longest_streak == 3


def test_longest_streak_comes_from_history():
    instants = [_noon(d) for d in (1, 2, 3, 4, 5)] + [_noon(9), _noon(10)]
    result = calculate_streaks(instants, DAILY, "UTC", today=date(2024, 1, 10))
    assert result.streak == 2
    assert result.longest_streak == 5


def test_unscheduled_days_do_not_break_streak():
    # Mon 8, Wed 10, Fri 12; today is Saturday 13.
    result = calculate_streaks([_noon(8), _noon(10), _noon(12)], MWF, "UTC", today=date(2024, 1, 13))
    assert result.streak == 3
    assert result.longest_streak == 3


def test_several_trackers_on_one_day_count_once():
    instants = [_noon(7), datetime(2024, 1, 7, 18, 0, tzinfo=timezone.utc)]
    result = calculate_streaks(instants, DAILY, "UTC", today=date(2024, 1, 7))
    assert result.streak == 1
    assert result.longest_streak == 1


def test_no_completions_means_zero():
    result = calculate_streaks([], DAILY, "UTC", today=date(2024, 1, 7))
    assert (result.streak, result.longest_streak) == (0, 0)


def test_streak_depends_on_local_day():
    instants = [
        datetime(2024, 1, 6, 2, 0, tzinfo=timezone.utc),  # Jan 5 evening in New York
        datetime(2024, 1, 6, 20, 0, tzinfo=timezone.utc),
    ]
    assert completed_days(instants, "UTC") == {date(2024, 1, 6)}
    assert completed_days(instants, "America/New_York") == {date(2024, 1, 5), date(2024, 1, 6)}
    assert calculate_streaks(instants, DAILY, "UTC", today=date(2024, 1, 6)).streak == 1
    assert calculate_streaks(instants, DAILY, "America/New_York", today=date(2024, 1, 6)).streak == 2


def test_days_before_start_date_are_not_counted():
    schedule = HabitSchedule(frequency=DAILY.frequency, start_date=date(2024, 1, 6))
    result = calculate_streaks([_noon(4), _noon(5), _noon(6)], schedule, "UTC", today=date(2024, 1, 6))
    assert result.streak == 1
    assert result.longest_streak == 1


def test_longest_is_never_below_current():
    instants = [_noon(d) for d in range(1, 8)]
    result = calculate_streaks(instants, DAILY, "UTC", today=date(2024, 1, 7))
    assert result.longest_streak >= result.streak == 7


def test_invalid_timezone_raises():
    with pytest.raises(InvalidTimeZoneError):
        calculate_streaks([_noon(7)], DAILY, "Nowhere/Special", today=date(2024, 1, 7))
