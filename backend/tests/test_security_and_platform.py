from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

import pytest
from fastapi import HTTPException
from sqlalchemy import create_engine, inspect, text


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from config import Settings  # noqa: E402
from db.database import run_startup_migrations  # noqa: E402
from services.rate_limit_service import (  # noqa: E402
    InMemoryRateLimitStore,
    RateLimiter,
    RateLimitRule,
    enforce_rate_limit,
)
from utils.errors import InconsistentStateError, InvalidTimeZoneError, NotFoundOrUnauthorized  # noqa: E402
from utils.logging_config import JSONFormatter  # noqa: E402


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_production_security_gate_rejects_default_secret_values():
    settings = Settings(
        ENVIRONMENT="production",
        SECRET_KEY="change-me-in-production",
        AUTH_COOKIE_SECURE=False,
    )
    with pytest.raises(RuntimeError):
        settings.validate_security_configuration()


def test_production_security_gate_accepts_hardened_values():
    settings = Settings(
        ENVIRONMENT="production",
        SECRET_KEY="a-long-random-secret-value-1234",
        AUTH_COOKIE_SECURE=True,
    )
    settings.validate_security_configuration()


def test_development_skips_security_gate():
    Settings(ENVIRONMENT="development").validate_security_configuration()


def test_rate_limiter_blocks_then_recovers_after_window():
    clock = FakeClock()
    limiter = RateLimiter(InMemoryRateLimitStore(clock=clock), clock=clock)

    assert limiter.check(key="k", limit=2, window_seconds=60) == (True, 0, 1)
    assert limiter.check(key="k", limit=2, window_seconds=60) == (True, 0, 0)
    allowed, retry_after, remaining = limiter.check(key="k", limit=2, window_seconds=60)
    assert not allowed
    assert retry_after == 60
    assert remaining == 0

    clock.now += 61
    assert limiter.check(key="k", limit=2, window_seconds=60)[0]
    assert limiter.check(key="other", limit=2, window_seconds=60)[0]


def test_memory_store_drops_expired_keys_on_write():
    clock = FakeClock()
    store = InMemoryRateLimitStore(clock=clock)
    store.set("ip:one-off", [clock.now], ttl_seconds=10)
    store.set("ip:regular", [clock.now], ttl_seconds=60)
    assert len(store) == 2

    clock.now += 11
    store.set("ip:new", [clock.now], ttl_seconds=10)
    assert len(store) == 2
    assert store.get("ip:one-off") == []
    assert store.get("ip:regular") == [1_000.0]


def test_enforce_rate_limit_raises_429_with_retry_after():
    clock = FakeClock()
    limiter = RateLimiter(InMemoryRateLimitStore(clock=clock), clock=clock)
    rule = RateLimitRule(endpoint="/api/test", limit=1, window_seconds=30)

    enforce_rate_limit(limiter, rule=rule, scope_key="user:1")
    with pytest.raises(HTTPException) as exc_info:
        enforce_rate_limit(limiter, rule=rule, scope_key="user:1")
    assert exc_info.value.status_code == 429
    assert exc_info.value.headers["Retry-After"] == "30"
    enforce_rate_limit(limiter, rule=rule, scope_key="user:2")


def test_error_types_carry_status_and_public_message():
    assert InvalidTimeZoneError().status_code == 400
    assert InvalidTimeZoneError("Unknown time zone: X").public_message == "Unknown time zone: X"
    assert NotFoundOrUnauthorized().public_message == "Habit not found"
    hidden = InconsistentStateError("update affected no rows", context={"habit_id": 3})
    assert hidden.status_code == 500
    assert hidden.context == {"habit_id": 3}
    assert "no rows" not in hidden.public_message


def test_startup_migrations_upgrade_legacy_tables():
    engine = create_engine("sqlite:///:memory:")
    with engine.begin() as conn:
        conn.execute(text(
            "CREATE TABLE habits (id INTEGER PRIMARY KEY, user_id INTEGER NOT NULL, name TEXT NOT NULL, "
            "frequency TEXT NOT NULL, streak INTEGER DEFAULT 0, total_completions INTEGER DEFAULT 0, "
            "last_completed DATETIME)"
        ))
        conn.execute(text(
            "CREATE TABLE trackers (id INTEGER PRIMARY KEY, habit_id INTEGER NOT NULL, "
            "user_id INTEGER NOT NULL, timestamp DATETIME NOT NULL, notes TEXT)"
        ))
        conn.execute(text(
            "INSERT INTO habits (id, user_id, name, frequency, streak) VALUES (1, 1, 'Read', 'Mon,Tue', 4)"
        ))

    run_startup_migrations(bind=engine)
    run_startup_migrations(bind=engine)

    inspector = inspect(engine)
    habit_columns = {c["name"] for c in inspector.get_columns("habits")}
    tracker_columns = {c["name"] for c in inspector.get_columns("trackers")}
    assert {"start_date", "end_date", "longest_streak", "deleted_at"} <= habit_columns
    assert {"created_at", "updated_at", "deleted_at"} <= tracker_columns
    with engine.connect() as conn:
        row = conn.execute(text("SELECT start_date, longest_streak FROM habits WHERE id = 1")).one()
    assert row.start_date is not None
    assert row.longest_streak == 4


def test_json_formatter_includes_extra_context():
    record = logging.LogRecord("habits", logging.ERROR, __file__, 1, "Stats update failed", (), None)
    record.context = {"habit_id": 7}
    payload = json.loads(JSONFormatter().format(record))
    assert payload["level"] == "ERROR"
    assert payload["message"] == "Stats update failed"
    assert payload["extra"]["context"] == {"habit_id": 7}
