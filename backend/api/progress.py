from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from auth.utils import get_current_user
from config import settings
from db.database import get_db
from db.models import User
from services.progress_service import (
    ProgressDay,
    get_user_progress_history,
    get_user_progress_overview,
    get_user_streaks,
)

router = APIRouter(prefix="/progress", tags=["progress"])


def _day_to_dict(day: ProgressDay) -> dict:
    return {"date": day.date, "completion_rate": day.completion_rate}


@router.get("/history")
def progress_history(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    time_zone: str = settings.DEFAULT_TIMEZONE,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    history = get_user_progress_history(db, user.id, start_date, end_date, time_zone)
    return {"history": [_day_to_dict(d) for d in history]}


@router.get("/streaks")
def progress_streaks(
    time_zone: str = settings.DEFAULT_TIMEZONE,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    streaks = get_user_streaks(db, user.id, time_zone)
    return {"current_streak": streaks.current_streak, "longest_streak": streaks.longest_streak}


@router.get("/overview")
def progress_overview(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    time_zone: str = settings.DEFAULT_TIMEZONE,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    overview = get_user_progress_overview(db, user.id, start_date, end_date, time_zone)
    overview["history"] = [_day_to_dict(d) for d in overview["history"]]
    return overview
