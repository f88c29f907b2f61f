import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event, inspect, text
from sqlalchemy.orm import Session, sessionmaker, DeclarativeBase

from config import settings

logger = logging.getLogger(__name__)


engine = create_engine(
    settings.DATABASE_URL,
    connect_args={"check_same_thread": False},
    echo=False,
)


# Enable WAL mode for better concurrent read performance
@event.listens_for(engine, "connect")
def set_sqlite_pragma(dbapi_connection, connection_record):
    _ = connection_record
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    pass


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaction(db: Session) -> Iterator[Session]:
    """Commit everything done inside the block, or roll all of it back and re-raise."""
    try:
        yield db
        db.commit()
    except Exception:
        logger.warning("Transaction failed, rolling back", exc_info=True)
        db.rollback()
        raise


def run_startup_migrations(bind=None) -> None:
    """Apply lightweight schema fixes for existing SQLite databases."""
    bind = bind or engine
    inspector = inspect(bind)

    def _table_columns(table_name: str) -> set[str]:
        if not inspector.has_table(table_name):
            return set()
        return {col["name"] for col in inspector.get_columns(table_name)}

    habit_columns = _table_columns("habits")
    tracker_columns = _table_columns("trackers")
    if not habit_columns and not tracker_columns:
        # Tables may not exist yet on first boot.
        return

    alter_statements: list[str] = []
    if habit_columns:
        if "start_date" not in habit_columns:
            alter_statements.append("ALTER TABLE habits ADD COLUMN start_date DATE")
        if "end_date" not in habit_columns:
            alter_statements.append("ALTER TABLE habits ADD COLUMN end_date DATE")
        if "longest_streak" not in habit_columns:
            alter_statements.append("ALTER TABLE habits ADD COLUMN longest_streak INTEGER DEFAULT 0")
        if "created_at" not in habit_columns:
            alter_statements.append("ALTER TABLE habits ADD COLUMN created_at DATETIME")
        if "updated_at" not in habit_columns:
            alter_statements.append("ALTER TABLE habits ADD COLUMN updated_at DATETIME")
        if "deleted_at" not in habit_columns:
            alter_statements.append("ALTER TABLE habits ADD COLUMN deleted_at DATETIME")
    if tracker_columns:
        if "created_at" not in tracker_columns:
            alter_statements.append("ALTER TABLE trackers ADD COLUMN created_at DATETIME")
        if "updated_at" not in tracker_columns:
            alter_statements.append("ALTER TABLE trackers ADD COLUMN updated_at DATETIME")
        if "deleted_at" not in tracker_columns:
            alter_statements.append("ALTER TABLE trackers ADD COLUMN deleted_at DATETIME")

    with bind.begin() as conn:
        for stmt in alter_statements:
            conn.execute(text(stmt))

        if habit_columns:
            # Rows created before start dates existed are active from creation.
            conn.execute(text(
                """
                UPDATE habits
                SET start_date = COALESCE(start_date, DATE(created_at), DATE('now')),
                    longest_streak = MAX(COALESCE(longest_streak, 0), COALESCE(streak, 0))
                WHERE start_date IS NULL OR longest_streak IS NULL OR longest_streak < streak
                """
            ))
        if tracker_columns:
            conn.execute(text(
                """
                CREATE INDEX IF NOT EXISTS idx_trackers_active_habit
                ON trackers (habit_id, user_id, deleted_at, timestamp)
                """
            ))

    if alter_statements:
        logger.info("Applied %d startup schema fixes", len(alter_statements))
