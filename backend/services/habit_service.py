from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable

from sqlalchemy.orm import Session

from db import habit_repository, tracker_repository
from db.database import transaction
from db.habit_repository import HabitStats
from db.models import Habit, Tracker
from services.schedule_service import is_scheduled, normalize_frequency, validate_active_window
from services.streak_service import calculate_streaks
from utils.datetime_utils import (
    day_bounds,
    local_date,
    local_day_bounds,
    parse_day,
    parse_instant,
    resolve_timezone,
    today_for_tz,
    utcnow,
    weekday_token,
)
from utils.errors import BadRequestError, InconsistentStateError, NotFoundOrUnauthorized

logger = logging.getLogger(__name__)

TRACKER_ADDED = "added"
TRACKER_REMOVED = "removed"


@dataclass(frozen=True)
class HabitForDay:
    habit: Habit
    completed: bool


@dataclass(frozen=True)
class TrackerToggleResult:
    status: str  # added | removed
    message: str
    tracker_id: int | None = None
    removed_count: int = 0


def _inconsistent(message: str, **context) -> InconsistentStateError:
    logger.error(message, extra={"context": context})
    return InconsistentStateError(message, context=context)


def require_habit(db: Session, owner_id: int, habit_id: int, include_deleted: bool = False) -> Habit:
    habit = habit_repository.find_habit_by_id(db, habit_id, owner_id, include_deleted=include_deleted)
    if habit is None:
        raise NotFoundOrUnauthorized(f"Habit with ID {habit_id} not found")
    return habit


def list_habits(db: Session, owner_id: int) -> list[Habit]:
    return habit_repository.find_habits_for_owner(db, owner_id)


def get_habits_for_date(
    db: Session,
    owner_id: int,
    date_value: str | datetime | None = None,
    time_zone: str = "UTC",
    now: datetime | None = None,
) -> list[HabitForDay]:
    """Habits due on the local day containing ``date_value``, each with its completion flag."""
    resolve_timezone(time_zone)
    instant = parse_instant(date_value) if date_value else (now or utcnow())
    day = local_date(instant, time_zone)

    candidates = habit_repository.find_habits_scheduled_on_weekday(db, owner_id, weekday_token(day), day)
    habits = [h for h in candidates if is_scheduled(h.schedule, day)]
    if not habits:
        return []

    bounds = day_bounds(day, time_zone)
    trackers = tracker_repository.find_active_trackers_in_instant_range(
        db, owner_id, [h.id for h in habits], bounds.start, bounds.next_start
    )
    completed_ids = {t.habit_id for t in trackers}
    return [HabitForDay(habit=h, completed=h.id in completed_ids) for h in habits]


def create_habit(
    db: Session,
    owner_id: int,
    *,
    name: str,
    frequency: Iterable[str] | str,
    start_date: date | str,
    end_date: date | str | None = None,
    icon: str | None = None,
) -> Habit:
    clean_name = (name or "").strip()
    if not clean_name:
        raise BadRequestError("Habit name is required")
    days = normalize_frequency(frequency)
    start = parse_day(start_date)
    end = parse_day(end_date) if end_date else None
    validate_active_window(start, end)

    with transaction(db):
        habit = habit_repository.insert_habit(
            db,
            owner_id,
            name=clean_name,
            frequency=days,
            start_date=start,
            end_date=end,
            icon=icon,
        )
    logger.info("Created habit id=%s for owner=%s", habit.id, owner_id)
    return habit


def update_habit(
    db: Session,
    owner_id: int,
    habit_id: int,
    *,
    name: str | None = None,
    icon: str | None = None,
    frequency: Iterable[str] | str | None = None,
    start_date: date | str | None = None,
    end_date: date | str | None = None,
    time_zone: str = "UTC",
    now: datetime | None = None,
) -> Habit:
    """Update a habit. ``end_date`` is always written, so leaving it out clears it."""
    resolve_timezone(time_zone)
    habit = require_habit(db, owner_id, habit_id)

    fields: dict = {}
    if name is not None:
        clean_name = name.strip()
        if not clean_name:
            raise BadRequestError("Habit name cannot be empty")
        fields["name"] = clean_name
    if icon is not None:
        fields["icon"] = icon or None
    if frequency is not None:
        fields["frequency"] = normalize_frequency(frequency)

    new_start = parse_day(start_date) if start_date else habit.start_date
    new_end = parse_day(end_date) if end_date else None
    validate_active_window(new_start, new_end)

    if start_date:
        earliest = tracker_repository.earliest_active_timestamp(db, habit_id, owner_id)
        if earliest is not None and new_start > local_date(earliest, time_zone):
            raise BadRequestError("Cannot set start date after existing tracker entries")
        fields["start_date"] = new_start
    fields["end_date"] = new_end

    with transaction(db):
        count = habit_repository.update_habit_fields(db, habit_id, owner_id, fields)
        if count == 0:
            raise _inconsistent("Habit update affected no rows", habit_id=habit_id, owner_id=owner_id)
        db.refresh(habit)
        # Schedule edits change which days count toward the streak.
        recompute_habit_stats(db, habit, time_zone, now=now)
    logger.info("Updated habit id=%s fields=%s", habit_id, sorted(fields))
    return habit


def delete_habit(db: Session, owner_id: int, habit_id: int) -> None:
    """Soft delete the habit together with its trackers."""
    require_habit(db, owner_id, habit_id)
    with transaction(db):
        count = habit_repository.soft_delete_habit(db, habit_id, owner_id)
        if count == 0:
            raise _inconsistent("Habit soft delete affected no rows", habit_id=habit_id, owner_id=owner_id)
    logger.info("Soft deleted habit id=%s", habit_id)


def restore_habit(
    db: Session,
    owner_id: int,
    habit_id: int,
    time_zone: str = "UTC",
    now: datetime | None = None,
) -> Habit:
    resolve_timezone(time_zone)
    habit = require_habit(db, owner_id, habit_id, include_deleted=True)
    if habit.deleted_at is None:
        raise BadRequestError("Habit is not deleted")
    with transaction(db):
        count = habit_repository.restore_habit(db, habit_id, owner_id)
        if count == 0:
            raise _inconsistent("Habit restore affected no rows", habit_id=habit_id, owner_id=owner_id)
        recompute_habit_stats(db, habit, time_zone, now=now)
    db.refresh(habit)
    logger.info("Restored habit id=%s", habit_id)
    return habit


def permanently_delete_habit(db: Session, owner_id: int, habit_id: int) -> int:
    """Hard delete the habit and all of its trackers. Returns the tracker count removed."""
    require_habit(db, owner_id, habit_id, include_deleted=True)
    with transaction(db):
        trackers, habits = habit_repository.delete_habit_cascade(db, habit_id, owner_id)
        if habits == 0:
            raise _inconsistent("Habit delete affected no rows", habit_id=habit_id, owner_id=owner_id)
    logger.info("Permanently deleted habit id=%s with %d trackers", habit_id, trackers)
    return trackers


def get_trackers_for_habit(
    db: Session,
    owner_id: int,
    habit_id: int,
    start_day: date | str,
    end_day: date | str,
    time_zone: str = "UTC",
) -> list[Tracker]:
    resolve_timezone(time_zone)
    first = parse_day(start_day)
    last = parse_day(end_day)
    if last < first:
        raise BadRequestError("end_date cannot be earlier than start_date")
    require_habit(db, owner_id, habit_id)
    return tracker_repository.find_active_trackers_for_habit_in_range(
        db,
        habit_id,
        owner_id,
        day_bounds(first, time_zone).start,
        day_bounds(last, time_zone).next_start,
    )


def recompute_habit_stats(
    db: Session,
    habit: Habit,
    time_zone: str,
    now: datetime | None = None,
) -> HabitStats:
    """Recompute streak stats from every active tracker and persist them."""
    trackers = tracker_repository.find_all_active_trackers_for_habit(db, habit.id, habit.user_id)
    instants = sorted((tracker_repository.tracker_instant(t) for t in trackers), reverse=True)
    result = calculate_streaks(instants, habit.schedule, time_zone, today=today_for_tz(time_zone, now))
    stats = HabitStats(
        streak=result.streak,
        longest_streak=result.longest_streak,
        total_completions=len(instants),
        last_completed=instants[0] if instants else None,
    )
    count = habit_repository.update_habit_stats(db, habit.id, habit.user_id, stats)
    if count == 0:
        raise _inconsistent("Habit stats update affected no rows", habit_id=habit.id, owner_id=habit.user_id)
    return stats


def manage_tracker(
    db: Session,
    owner_id: int,
    habit_id: int,
    timestamp: str | datetime,
    time_zone: str = "UTC",
    notes: str | None = None,
    now: datetime | None = None,
) -> TrackerToggleResult:
    """Toggle completion of a habit for the local day containing ``timestamp``.

    Every active tracker found on that day is removed, so duplicates left by
    racing inserts are cleaned up on the next toggle-off.
    """
    resolve_timezone(time_zone)
    instant = parse_instant(timestamp)
    habit = require_habit(db, owner_id, habit_id)
    bounds = local_day_bounds(instant, time_zone)

    with transaction(db):
        existing = tracker_repository.find_active_trackers_for_habit_in_range(
            db, habit_id, owner_id, bounds.start, bounds.next_start
        )
        if existing:
            removed = tracker_repository.soft_delete_trackers(db, [t.id for t in existing])
            if removed == 0:
                raise _inconsistent(
                    "Tracker soft delete affected no rows",
                    habit_id=habit_id,
                    owner_id=owner_id,
                    tracker_ids=[t.id for t in existing],
                )
            if removed > 1:
                logger.warning("Collapsed %d duplicate trackers for habit id=%s", removed, habit_id)
            result = TrackerToggleResult(
                status=TRACKER_REMOVED,
                message="Habit marked as not completed",
                removed_count=removed,
            )
        else:
            tracker_id = tracker_repository.insert_tracker(db, habit_id, owner_id, instant, notes)
            result = TrackerToggleResult(
                status=TRACKER_ADDED,
                message="Habit marked as completed",
                tracker_id=tracker_id,
            )
        recompute_habit_stats(db, habit, time_zone, now=now)

    logger.info("Tracker %s for habit id=%s on %s", result.status, habit_id, local_date(instant, time_zone))
    return result


def get_habit_stats(
    db: Session,
    owner_id: int,
    habit_id: int,
    time_zone: str = "UTC",
    now: datetime | None = None,
) -> HabitStats:
    """Stats as of today in ``time_zone``; the cached columns are refreshed on the way."""
    resolve_timezone(time_zone)
    habit = require_habit(db, owner_id, habit_id)
    with transaction(db):
        return recompute_habit_stats(db, habit, time_zone, now=now)
