from __future__ import annotations

import logging

from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from db.models import User
from utils.datetime_utils import to_db_utc, utcnow

logger = logging.getLogger(__name__)


def find_user_by_external_id(db: Session, external_id: str) -> User | None:
    return db.query(User).filter(User.external_id == external_id).first()


def find_user_by_username(db: Session, username: str) -> User | None:
    return db.query(User).filter(User.username == username).first()


def resolve_owner_id(db: Session, external_id: str) -> int:
    """Map an identity subject to the internal owner id, creating the row on first sight.

    INSERT ... ON CONFLICT DO NOTHING keeps concurrent first requests for the
    same subject from racing into a unique-constraint error.
    """
    subject = (external_id or "").strip()
    if not subject:
        raise ValueError("external_id is required")
    existing = find_user_by_external_id(db, subject)
    if existing is not None:
        return int(existing.id)
    now = to_db_utc(utcnow())
    stmt = (
        sqlite_insert(User)
        .values(external_id=subject, display_name="", token_version=0, created_at=now, updated_at=now)
        .on_conflict_do_nothing(index_elements=["external_id"])
    )
    db.execute(stmt)
    db.flush()
    user = find_user_by_external_id(db, subject)
    if user is None:
        raise RuntimeError(f"Failed to resolve owner for subject {subject}")
    logger.info("Resolved new owner id=%s for subject", user.id)
    return int(user.id)
