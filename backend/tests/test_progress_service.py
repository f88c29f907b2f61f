from __future__ import annotations

import sys
import uuid
from datetime import date, datetime, timezone
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from db import tracker_repository  # noqa: E402
from db.database import Base  # noqa: E402
from db.models import User  # noqa: E402
from services import habit_service, progress_service  # noqa: E402
from services.schedule_service import HabitSchedule, normalize_frequency  # noqa: E402
from utils.errors import BadRequestError, InvalidTimeZoneError  # noqa: E402

EVERY_DAY = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
NOW = datetime(2024, 1, 7, 18, 0, tzinfo=timezone.utc)


def _new_db():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine)()


def _new_owner(db) -> int:
    user = User(external_id=f"test:{uuid.uuid4().hex}", display_name="Tester")
    db.add(user)
    db.commit()
    return user.id


def _complete(db, owner: int, habit_id: int, days: list[int]) -> None:
    for day in days:
        tracker_repository.insert_tracker(db, habit_id, owner, datetime(2024, 1, day, 12, 0, tzinfo=timezone.utc))
    db.commit()


def _two_daily_habits(db, owner: int):
    a = habit_service.create_habit(db, owner, name="Water", frequency=EVERY_DAY, start_date="2024-01-01")
    b = habit_service.create_habit(db, owner, name="Walk", frequency=EVERY_DAY, start_date="2024-01-01")
    return a, b


def test_completion_percent_rounds_half_up():
    assert progress_service.completion_percent(0, 0) == 0
    assert progress_service.completion_percent(1, 2) == 50
    assert progress_service.completion_percent(1, 8) == 13
    assert progress_service.completion_percent(2, 3) == 67
    assert progress_service.completion_percent(1, 3) == 33
    assert progress_service.completion_percent(3, 3) == 100


def test_daily_rates_skip_days_with_nothing_due():
    schedules = {1: HabitSchedule(frequency=normalize_frequency("Mon,Wed,Fri"), start_date=date(2024, 1, 1))}
    completed = {1: {date(2024, 1, 1), date(2024, 1, 2)}}
    rates = progress_service.compute_daily_rates(schedules, completed, date(2024, 1, 1), date(2024, 1, 7))
    assert rates == {date(2024, 1, 1): 100, date(2024, 1, 3): 0, date(2024, 1, 5): 0}


def test_user_streak_treats_empty_days_as_transparent():
    rates = {date(2024, 1, 1): 100, date(2024, 1, 3): 100, date(2024, 1, 5): 100}
    streaks = progress_service.calculate_user_streaks(rates, date(2024, 1, 5))
    assert streaks.current_streak == 3
    assert streaks.longest_streak == 3


def test_user_longest_streak_needs_adjacent_days():
    rates = {date(2024, 1, 1): 100, date(2024, 1, 2): 100, date(2024, 1, 3): 50, date(2024, 1, 4): 100}
    streaks = progress_service.calculate_user_streaks(rates, date(2024, 1, 4))
    assert streaks.current_streak == 1
    assert streaks.longest_streak == 2


def test_user_streak_today_exemption():
    rates = {date(2024, 1, 5): 100, date(2024, 1, 6): 100, date(2024, 1, 7): 50}
    assert progress_service.calculate_user_streaks(rates, date(2024, 1, 7)).current_streak == 2
    assert progress_service.calculate_user_streaks({}, date(2024, 1, 7)).current_streak == 0


def test_history_and_streaks_from_database():
    db = _new_db()
    owner = _new_owner(db)
    a, b = _two_daily_habits(db, owner)
    _complete(db, owner, a.id, [1, 2, 3, 4, 5, 6, 7])
    _complete(db, owner, b.id, [5, 6, 7])

    history = progress_service.get_user_progress_history(db, owner, time_zone="UTC", now=NOW)
    assert [d.date for d in history] == [f"2024-01-0{d}" for d in range(1, 8)]
    assert [d.completion_rate for d in history] == [50, 50, 50, 50, 100, 100, 100]
    assert all(0 <= d.completion_rate <= 100 for d in history)

    streaks = progress_service.get_user_streaks(db, owner, "UTC", now=NOW)
    assert streaks.current_streak == 3
    assert streaks.longest_streak == 3


def test_history_range_filters_output_only():
    db = _new_db()
    owner = _new_owner(db)
    a, b = _two_daily_habits(db, owner)
    _complete(db, owner, a.id, [5, 6, 7])
    _complete(db, owner, b.id, [5, 6, 7])

    sliced = progress_service.get_user_progress_history(db, owner, "2024-01-06", "2024-01-07", "UTC", now=NOW)
    assert [(d.date, d.completion_rate) for d in sliced] == [("2024-01-06", 100), ("2024-01-07", 100)]
    with pytest.raises(BadRequestError):
        progress_service.get_user_progress_history(db, owner, "2024-01-07", "2024-01-06", "UTC", now=NOW)
    with pytest.raises(InvalidTimeZoneError):
        progress_service.get_user_progress_history(db, owner, time_zone="Bogus/Zone", now=NOW)


def test_deleted_habits_and_trackers_are_ignored():
    db = _new_db()
    owner = _new_owner(db)
    a, b = _two_daily_habits(db, owner)
    _complete(db, owner, a.id, [6, 7])
    habit_service.delete_habit(db, owner, b.id)

    streaks = progress_service.get_user_streaks(db, owner, "UTC", now=NOW)
    assert streaks.current_streak == 2


def test_overview_includes_habit_summary():
    db = _new_db()
    owner = _new_owner(db)
    a, b = _two_daily_habits(db, owner)
    _complete(db, owner, a.id, [1, 2, 3, 4, 5, 6, 7])
    _complete(db, owner, b.id, [7])

    overview = progress_service.get_user_progress_overview(
        db, owner, start_day="2024-01-01", end_day="2024-01-07", time_zone="UTC", now=NOW
    )
    assert overview["total_habits"] == 2
    assert overview["current_streak"] == 1
    by_name = {row["name"]: row for row in overview["habit_stats"]}
    assert by_name["Water"]["scheduled_days"] == 7
    assert by_name["Water"]["completion_rate"] == 100
    assert by_name["Walk"]["completed_days"] == 1
    assert by_name["Walk"]["completion_rate"] == 14


def test_no_habits_means_empty_progress():
    db = _new_db()
    owner = _new_owner(db)
    assert progress_service.get_user_progress_history(db, owner, now=NOW) == []
    streaks = progress_service.get_user_streaks(db, owner, now=NOW)
    assert (streaks.current_streak, streaks.longest_streak) == (0, 0)
