"""Tracker persistence. Instants go in as aware datetimes and come back as aware UTC."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable

from sqlalchemy import func
from sqlalchemy.orm import Session

from db.models import Tracker
from utils.datetime_utils import as_utc, to_db_utc, utcnow


def _active_for_owner(db: Session, owner_id: int):
    return db.query(Tracker).filter(Tracker.user_id == owner_id, Tracker.deleted_at.is_(None))


def find_active_trackers_in_instant_range(
    db: Session,
    owner_id: int,
    habit_ids: Iterable[int],
    start: datetime,
    end: datetime,
) -> list[Tracker]:
    """Active trackers with ``start <= timestamp < end``."""
    ids = list(habit_ids)
    if not ids:
        return []
    return (
        _active_for_owner(db, owner_id)
        .filter(
            Tracker.habit_id.in_(ids),
            Tracker.timestamp >= to_db_utc(start),
            Tracker.timestamp < to_db_utc(end),
        )
        .order_by(Tracker.timestamp.desc())
        .all()
    )


def find_active_trackers_for_habit_in_range(
    db: Session,
    habit_id: int,
    owner_id: int,
    start: datetime,
    end: datetime,
) -> list[Tracker]:
    return find_active_trackers_in_instant_range(db, owner_id, [habit_id], start, end)


def find_all_active_trackers_for_habit(db: Session, habit_id: int, owner_id: int) -> list[Tracker]:
    return (
        _active_for_owner(db, owner_id)
        .filter(Tracker.habit_id == habit_id)
        .order_by(Tracker.timestamp.desc())
        .all()
    )


def earliest_active_timestamp(db: Session, habit_id: int, owner_id: int) -> datetime | None:
    value = (
        db.query(func.min(Tracker.timestamp))
        .filter(
            Tracker.habit_id == habit_id,
            Tracker.user_id == owner_id,
            Tracker.deleted_at.is_(None),
        )
        .scalar()
    )
    return as_utc(value) if value is not None else None


def insert_tracker(
    db: Session,
    habit_id: int,
    owner_id: int,
    instant: datetime,
    notes: str | None = None,
) -> int:
    tracker = Tracker(
        habit_id=habit_id,
        user_id=owner_id,
        timestamp=to_db_utc(instant),
        notes=notes or None,
    )
    db.add(tracker)
    db.flush()
    return int(tracker.id)


def soft_delete_trackers(db: Session, tracker_ids: Iterable[int]) -> int:
    ids = list(tracker_ids)
    if not ids:
        return 0
    count = (
        db.query(Tracker)
        .filter(Tracker.id.in_(ids), Tracker.deleted_at.is_(None))
        .update({"deleted_at": to_db_utc(utcnow())}, synchronize_session="fetch")
    )
    db.flush()
    return int(count or 0)


def tracker_instant(tracker: Tracker) -> datetime:
    return as_utc(tracker.timestamp)
