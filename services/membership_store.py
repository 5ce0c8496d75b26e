"""Record store and user pointer access for the membership engine.

Every write commits on its own so that a later failure never rolls back an
earlier, already-safe step. ``SQLAlchemyError`` is translated into
``MembershipStoreError`` after the session is rolled back.
"""

from __future__ import annotations

import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.logging import get_logger
from core.membership_constants import MembershipState
from models.membership import MembershipRecord
from models.user import User
from services.membership_errors import MembershipStoreError

logger = get_logger(__name__)

_ACTIVE = MembershipState.ACTIVE.value
_INACTIVE = MembershipState.INACTIVE.value
_EXPIRED = MembershipState.EXPIRED.value


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Backends without timezone support hand back naive values; those are UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_unexpired(record: MembershipRecord, now: datetime) -> bool:
    return as_utc(record.ends_at) > now


def is_valid_current(record: Optional[MembershipRecord], user_id: uuid.UUID, now: datetime) -> bool:
    """Whether ``record`` may legitimately be the user's pointer target."""
    return (
        record is not None
        and record.user_id == user_id
        and record.state == _ACTIVE
        and is_unexpired(record, now)
    )


@contextmanager
def store_step(db: Session, step: str, *, user_id: Optional[uuid.UUID] = None) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Membership store step failed (step=%s user=%s).", step, user_id)
        raise MembershipStoreError(f"Store rejected step '{step}': {exc}", user_id=user_id, step=step) from exc


def get_user(db: Session, user_id: uuid.UUID) -> Optional[User]:
    with store_step(db, "get_user", user_id=user_id):
        return db.get(User, user_id)


def get_record(db: Session, record_id: uuid.UUID) -> Optional[MembershipRecord]:
    with store_step(db, "get_record"):
        return db.get(MembershipRecord, record_id)


def list_records_for_user(db: Session, user_id: uuid.UUID) -> List[MembershipRecord]:
    """Return every record of the user, most recently started first."""
    with store_step(db, "list_records", user_id=user_id):
        stmt = (
            select(MembershipRecord)
            .where(MembershipRecord.user_id == user_id)
            .order_by(MembershipRecord.starts_at.desc(), MembershipRecord.created_at.desc())
        )
        return list(db.execute(stmt).scalars().all())


def iter_user_ids(db: Session, *, limit: Optional[int] = None) -> List[uuid.UUID]:
    with store_step(db, "list_users"):
        stmt = select(User.id).order_by(User.id)
        if limit:
            stmt = stmt.limit(limit)
        return list(db.execute(stmt).scalars().all())


def insert_record(
    db: Session,
    *,
    user_id: uuid.UUID,
    membership_type_id: uuid.UUID,
    starts_at: datetime,
    ends_at: datetime,
    source: Optional[str] = None,
    external_reference: Optional[str] = None,
) -> MembershipRecord:
    with store_step(db, "insert_record", user_id=user_id):
        record = MembershipRecord(
            user_id=user_id,
            membership_type_id=membership_type_id,
            starts_at=starts_at,
            ends_at=ends_at,
            state=_ACTIVE,
            source=source,
            external_reference=external_reference,
        )
        db.add(record)
        db.commit()
        db.refresh(record)
    return record


def renew_record(
    db: Session,
    record: MembershipRecord,
    *,
    starts_at: datetime,
    ends_at: datetime,
    source: Optional[str] = None,
    external_reference: Optional[str] = None,
) -> MembershipRecord:
    """Renewal-in-place: move the window and reactivate an existing record."""
    with store_step(db, "renew_record", user_id=record.user_id):
        record.starts_at = starts_at
        record.ends_at = ends_at
        record.state = _ACTIVE
        if source:
            record.source = source
        if external_reference:
            record.external_reference = external_reference
        db.add(record)
        db.commit()
        db.refresh(record)
    return record


def update_record_state(db: Session, record: MembershipRecord, state: MembershipState) -> MembershipRecord:
    with store_step(db, "update_record_state", user_id=record.user_id):
        record.state = MembershipState(state).value
        db.add(record)
        db.commit()
        db.refresh(record)
    return record


def _bulk_set_state(db: Session, record_ids: Sequence[uuid.UUID], state: str) -> int:
    if not record_ids:
        return 0
    stmt = (
        update(MembershipRecord)
        .where(MembershipRecord.id.in_(list(record_ids)), MembershipRecord.state == _ACTIVE)
        .values(state=state, updated_at=utcnow())
    )
    result = db.execute(stmt)
    return int(result.rowcount or 0)


def deactivate_active_records(
    db: Session,
    user_id: uuid.UUID,
    *,
    keep_id: Optional[uuid.UUID] = None,
    now: Optional[datetime] = None,
) -> int:
    """Demote every active record of the user except ``keep_id``.

    Without ``now`` every match becomes ``inactive`` in one statement. With
    ``now``, matches already past their end become ``expired`` instead.
    """
    with store_step(db, "deactivate_active", user_id=user_id):
        conditions = [MembershipRecord.user_id == user_id, MembershipRecord.state == _ACTIVE]
        if keep_id is not None:
            conditions.append(MembershipRecord.id != keep_id)

        if now is None:
            result = db.execute(
                update(MembershipRecord).where(*conditions).values(state=_INACTIVE, updated_at=utcnow())
            )
            db.commit()
            return int(result.rowcount or 0)

        rows = db.execute(select(MembershipRecord.id, MembershipRecord.ends_at).where(*conditions)).all()
        overdue = [row.id for row in rows if as_utc(row.ends_at) <= now]
        superseded = [row.id for row in rows if as_utc(row.ends_at) > now]
        count = _bulk_set_state(db, overdue, _EXPIRED) + _bulk_set_state(db, superseded, _INACTIVE)
        db.commit()
        return count


def expire_overdue_records(db: Session, now: datetime) -> Tuple[int, List[uuid.UUID]]:
    """Set-based ``active -> expired`` for every record whose end has passed.

    Returns the number of records expired and the distinct affected user ids.
    """
    with store_step(db, "expire_overdue"):
        rows = db.execute(
            select(MembershipRecord.id, MembershipRecord.user_id).where(
                MembershipRecord.state == _ACTIVE,
                MembershipRecord.ends_at <= now,
            )
        ).all()
        if not rows:
            return 0, []
        count = _bulk_set_state(db, [row.id for row in rows], _EXPIRED)
        db.commit()

    affected: List[uuid.UUID] = []
    for row in rows:
        if row.user_id not in affected:
            affected.append(row.user_id)
    return count, affected


def set_active_membership_pointer(db: Session, user_id: uuid.UUID, record_id: Optional[uuid.UUID]) -> None:
    with store_step(db, "set_pointer", user_id=user_id):
        result = db.execute(update(User).where(User.id == user_id).values(active_membership_id=record_id))
        if not result.rowcount:
            db.rollback()
            raise MembershipStoreError("User row vanished while updating pointer.", user_id=user_id, step="set_pointer")
        db.commit()


def active_records(records: Iterable[MembershipRecord]) -> List[MembershipRecord]:
    return [record for record in records if record.state == _ACTIVE]


__all__ = [
    "active_records",
    "as_utc",
    "deactivate_active_records",
    "expire_overdue_records",
    "get_record",
    "get_user",
    "insert_record",
    "is_unexpired",
    "is_valid_current",
    "iter_user_ids",
    "list_records_for_user",
    "renew_record",
    "set_active_membership_pointer",
    "store_step",
    "update_record_state",
    "utcnow",
]
