from datetime import datetime, timezone
from sqlalchemy import (
    Column, Integer, Text, Date, ForeignKey, Index,
    DateTime,
)
from sqlalchemy.orm import relationship
from db.database import Base
from services.schedule_service import HabitSchedule, normalize_frequency


def _utcnow() -> datetime:
    # Stored naive; SQLite has no tz-aware column type.
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    external_id = Column(Text, unique=True, nullable=False)  # identity subject from the auth layer
    username = Column(Text, unique=True)
    password_hash = Column(Text)
    display_name = Column(Text, nullable=False, default="")
    token_version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    habits = relationship("Habit", back_populates="user", cascade="all, delete-orphan")


class Habit(Base):
    __tablename__ = "habits"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    name = Column(Text, nullable=False)
    icon = Column(Text)
    frequency = Column(Text, nullable=False)  # comma-joined weekday tokens, e.g. "Mon,Wed,Fri"
    start_date = Column(Date, nullable=False)
    end_date = Column(Date)
    streak = Column(Integer, nullable=False, default=0)
    longest_streak = Column(Integer, nullable=False, default=0)
    total_completions = Column(Integer, nullable=False, default=0)
    last_completed = Column(DateTime)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)
    deleted_at = Column(DateTime)

    user = relationship("User", back_populates="habits")
    trackers = relationship("Tracker", back_populates="habit", passive_deletes=True)

    @property
    def frequency_days(self) -> frozenset[str]:
        return normalize_frequency(self.frequency)

    @property
    def schedule(self) -> HabitSchedule:
        return HabitSchedule(
            frequency=self.frequency_days,
            start_date=self.start_date,
            end_date=self.end_date,
        )


class Tracker(Base):
    __tablename__ = "trackers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    habit_id = Column(Integer, ForeignKey("habits.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    timestamp = Column(DateTime, nullable=False)  # UTC
    notes = Column(Text)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)
    deleted_at = Column(DateTime)

    habit = relationship("Habit", back_populates="trackers")


Index("idx_habits_user_frequency", Habit.user_id, Habit.frequency)
Index("idx_habits_user_deleted", Habit.user_id, Habit.deleted_at)
Index("idx_trackers_habit_user_ts", Tracker.habit_id, Tracker.user_id, Tracker.timestamp)
Index("idx_trackers_user_ts", Tracker.user_id, Tracker.timestamp)
