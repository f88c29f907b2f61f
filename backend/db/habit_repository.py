"""Habit persistence. Functions flush but never commit; callers own the transaction."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from sqlalchemy import or_
from sqlalchemy.orm import Session

from db.models import Habit, Tracker
from services.schedule_service import serialize_frequency
from utils.datetime_utils import to_db_utc, utcnow


@dataclass(frozen=True)
class HabitStats:
    streak: int
    longest_streak: int
    total_completions: int
    last_completed: datetime | None


def _active(query):
    return query.filter(Habit.deleted_at.is_(None))


def find_habit_by_id(db: Session, habit_id: int, owner_id: int, include_deleted: bool = False) -> Habit | None:
    query = db.query(Habit).filter(Habit.id == habit_id, Habit.user_id == owner_id)
    if not include_deleted:
        query = _active(query)
    return query.first()


def find_habits_for_owner(db: Session, owner_id: int) -> list[Habit]:
    return (
        _active(db.query(Habit).filter(Habit.user_id == owner_id))
        .order_by(Habit.created_at.desc(), Habit.id.desc())
        .all()
    )


def find_habits_scheduled_on_weekday(db: Session, owner_id: int, weekday: str, day: date) -> list[Habit]:
    """Habits whose stored frequency contains ``weekday`` and whose window covers ``day``."""
    return (
        _active(db.query(Habit).filter(Habit.user_id == owner_id))
        .filter(
            Habit.start_date <= day,
            or_(Habit.end_date.is_(None), Habit.end_date >= day),
            or_(
                Habit.frequency == weekday,
                Habit.frequency.like(f"{weekday},%"),
                Habit.frequency.like(f"%,{weekday},%"),
                Habit.frequency.like(f"%,{weekday}"),
            ),
        )
        .order_by(Habit.id.asc())
        .all()
    )


def insert_habit(
    db: Session,
    owner_id: int,
    *,
    name: str,
    frequency: frozenset[str],
    start_date: date,
    end_date: date | None = None,
    icon: str | None = None,
) -> Habit:
    habit = Habit(
        user_id=owner_id,
        name=name,
        icon=icon or None,
        frequency=serialize_frequency(frequency),
        start_date=start_date,
        end_date=end_date,
        streak=0,
        longest_streak=0,
        total_completions=0,
    )
    db.add(habit)
    db.flush()
    return habit


def update_habit_fields(db: Session, habit_id: int, owner_id: int, fields: dict[str, Any]) -> int:
    values = dict(fields)
    if "frequency" in values and not isinstance(values["frequency"], str):
        values["frequency"] = serialize_frequency(values["frequency"])
    values["updated_at"] = to_db_utc(utcnow())
    count = (
        _active(db.query(Habit).filter(Habit.id == habit_id, Habit.user_id == owner_id))
        .update(values, synchronize_session="fetch")
    )
    db.flush()
    return int(count or 0)


def update_habit_stats(db: Session, habit_id: int, owner_id: int, stats: HabitStats) -> int:
    count = (
        db.query(Habit)
        .filter(Habit.id == habit_id, Habit.user_id == owner_id)
        .update(
            {
                "streak": stats.streak,
                "longest_streak": stats.longest_streak,
                "total_completions": stats.total_completions,
                "last_completed": to_db_utc(stats.last_completed) if stats.last_completed else None,
                "updated_at": to_db_utc(utcnow()),
            },
            synchronize_session="fetch",
        )
    )
    db.flush()
    return int(count or 0)


def soft_delete_habit(db: Session, habit_id: int, owner_id: int) -> int:
    """Mark the habit and its active trackers deleted. Returns the habit row count."""
    now = to_db_utc(utcnow())
    count = (
        _active(db.query(Habit).filter(Habit.id == habit_id, Habit.user_id == owner_id))
        .update({"deleted_at": now}, synchronize_session="fetch")
    )
    db.query(Tracker).filter(
        Tracker.habit_id == habit_id,
        Tracker.user_id == owner_id,
        Tracker.deleted_at.is_(None),
    ).update({"deleted_at": now}, synchronize_session="fetch")
    db.flush()
    return int(count or 0)


def restore_habit(db: Session, habit_id: int, owner_id: int) -> int:
    """Undo a soft delete. Only trackers stamped by that delete come back, not earlier toggle-offs."""
    deleted_at = (
        db.query(Habit.deleted_at)
        .filter(Habit.id == habit_id, Habit.user_id == owner_id, Habit.deleted_at.isnot(None))
        .scalar()
    )
    if deleted_at is None:
        return 0
    count = (
        db.query(Habit)
        .filter(Habit.id == habit_id, Habit.user_id == owner_id, Habit.deleted_at == deleted_at)
        .update({"deleted_at": None}, synchronize_session="fetch")
    )
    if count:
        db.query(Tracker).filter(
            Tracker.habit_id == habit_id,
            Tracker.user_id == owner_id,
            Tracker.deleted_at == deleted_at,
        ).update({"deleted_at": None}, synchronize_session="fetch")
    db.flush()
    return int(count or 0)


def delete_habit_cascade(db: Session, habit_id: int, owner_id: int) -> tuple[int, int]:
    """Hard-delete trackers first, then the habit. Returns (trackers, habits) removed."""
    trackers = (
        db.query(Tracker)
        .filter(Tracker.habit_id == habit_id, Tracker.user_id == owner_id)
        .delete(synchronize_session=False)
    )
    habits = (
        db.query(Habit)
        .filter(Habit.id == habit_id, Habit.user_id == owner_id)
        .delete(synchronize_session=False)
    )
    db.flush()
    return int(trackers or 0), int(habits or 0)
