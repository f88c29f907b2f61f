from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, Field, field_validator, model_validator
from sqlalchemy.orm import Session

from auth.utils import get_current_user
from config import settings
from db.database import get_db
from db.habit_repository import HabitStats
from db.models import Habit, Tracker, User
from services import habit_service
from services.rate_limit_service import RateLimiter, RateLimitRule, enforce_rate_limit, get_rate_limiter
from services.schedule_service import VALID_WEEKDAYS
from utils.datetime_utils import WEEKDAY_TOKENS, as_utc

router = APIRouter(prefix="/habits", tags=["habits"])


def _iso(value) -> Optional[str]:
    return as_utc(value).isoformat() if value else None


def _habit_to_dict(habit: Habit, completed: Optional[bool] = None) -> dict:
    payload = {
        "id": habit.id,
        "name": habit.name,
        "icon": habit.icon,
        "frequency": [day for day in WEEKDAY_TOKENS if day in habit.frequency_days],
        "start_date": habit.start_date.isoformat() if habit.start_date else None,
        "end_date": habit.end_date.isoformat() if habit.end_date else None,
        "streak": habit.streak or 0,
        "longest_streak": habit.longest_streak or 0,
        "total_completions": habit.total_completions or 0,
        "last_completed": _iso(habit.last_completed),
    }
    if completed is not None:
        payload["completed"] = completed
    return payload


def _tracker_to_dict(tracker: Tracker) -> dict:
    return {
        "id": tracker.id,
        "habit_id": tracker.habit_id,
        "timestamp": _iso(tracker.timestamp),
        "notes": tracker.notes,
    }


def _stats_to_dict(stats: HabitStats) -> dict:
    return {
        "streak": stats.streak,
        "longest_streak": stats.longest_streak,
        "total_completions": stats.total_completions,
        "last_completed": _iso(stats.last_completed),
    }


def _check_frequency(days: list[str]) -> list[str]:
    if not days:
        raise ValueError("Frequency is required and must be a non-empty list.")
    unknown = [d for d in days if d not in VALID_WEEKDAYS]
    if unknown:
        raise ValueError(f"Frequency must only contain valid days: {', '.join(WEEKDAY_TOKENS)}")
    if len(set(days)) != len(days):
        raise ValueError("Frequency cannot contain duplicate days.")
    return days


class HabitCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    icon: Optional[str] = None
    frequency: list[str]
    start_date: date
    end_date: Optional[date] = None

    @field_validator("frequency")
    @classmethod
    def _frequency(cls, value: list[str]) -> list[str]:
        return _check_frequency(value)

    @model_validator(mode="after")
    def _window(self):
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date cannot be earlier than start_date.")
        return self


class HabitUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    icon: Optional[str] = None
    frequency: Optional[list[str]] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    time_zone: str = settings.DEFAULT_TIMEZONE

    @field_validator("frequency")
    @classmethod
    def _frequency(cls, value: Optional[list[str]]) -> Optional[list[str]]:
        return _check_frequency(value) if value is not None else value

    @model_validator(mode="after")
    def _window(self):
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date cannot be earlier than start_date.")
        return self


class TrackerToggleRequest(BaseModel):
    timestamp: str = Field(min_length=1)
    time_zone: str = settings.DEFAULT_TIMEZONE
    notes: Optional[str] = Field(default=None, max_length=500)


@router.get("")
def get_habits_for_date(
    date_value: Optional[str] = Query(default=None, alias="date"),
    time_zone: str = settings.DEFAULT_TIMEZONE,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    rows = habit_service.get_habits_for_date(db, user.id, date_value, time_zone)
    return [_habit_to_dict(row.habit, completed=row.completed) for row in rows]


@router.get("/all")
def list_habits(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return [_habit_to_dict(h) for h in habit_service.list_habits(db, user.id)]


@router.post("", status_code=201)
def create_habit(
    req: HabitCreateRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    habit = habit_service.create_habit(
        db,
        user.id,
        name=req.name,
        frequency=req.frequency,
        start_date=req.start_date,
        end_date=req.end_date,
        icon=req.icon,
    )
    return {"message": "Habit created successfully", "habit_id": habit.id, "habit": _habit_to_dict(habit)}


@router.put("/{habit_id}")
def update_habit(
    habit_id: int,
    req: HabitUpdateRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    habit = habit_service.update_habit(
        db,
        user.id,
        habit_id,
        name=req.name,
        icon=req.icon,
        frequency=req.frequency,
        start_date=req.start_date,
        end_date=req.end_date,
        time_zone=req.time_zone,
    )
    return {"message": "Habit updated successfully", "habit": _habit_to_dict(habit)}


@router.delete("/{habit_id}")
def delete_habit(
    habit_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    habit_service.delete_habit(db, user.id, habit_id)
    return {"message": "Habit deleted successfully"}


@router.post("/{habit_id}/restore")
def restore_habit(
    habit_id: int,
    time_zone: str = settings.DEFAULT_TIMEZONE,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    habit = habit_service.restore_habit(db, user.id, habit_id, time_zone)
    return {"message": "Habit restored successfully", "habit": _habit_to_dict(habit)}


@router.delete("/{habit_id}/permanent")
def permanently_delete_habit(
    habit_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    removed = habit_service.permanently_delete_habit(db, user.id, habit_id)
    return {"message": "Habit permanently deleted", "trackers_removed": removed}


@router.get("/{habit_id}/trackers")
def get_trackers(
    habit_id: int,
    start_date: date,
    end_date: date,
    time_zone: str = settings.DEFAULT_TIMEZONE,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    trackers = habit_service.get_trackers_for_habit(db, user.id, habit_id, start_date, end_date, time_zone)
    return {"trackers": [_tracker_to_dict(t) for t in trackers]}


@router.post("/{habit_id}/trackers")
def manage_tracker(
    habit_id: int,
    req: TrackerToggleRequest,
    response: Response,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    enforce_rate_limit(
        limiter,
        rule=RateLimitRule(
            endpoint="/api/habits/trackers",
            limit=settings.RATE_LIMIT_TRACKER_TOGGLES,
            window_seconds=settings.RATE_LIMIT_TRACKER_WINDOW_SECONDS,
        ),
        scope_key=f"user:{user.id}",
    )
    result = habit_service.manage_tracker(db, user.id, habit_id, req.timestamp, req.time_zone, req.notes)
    body = {"status": result.status, "message": result.message}
    if result.status == habit_service.TRACKER_ADDED:
        response.status_code = status.HTTP_201_CREATED
        body["tracker_id"] = result.tracker_id
    return body


@router.get("/{habit_id}/stats")
def get_habit_stats(
    habit_id: int,
    time_zone: str = settings.DEFAULT_TIMEZONE,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    stats = habit_service.get_habit_stats(db, user.id, habit_id, time_zone)
    return _stats_to_dict(stats)
