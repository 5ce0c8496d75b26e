"""Read-only invariant checks for membership state."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterator, List, Optional

from sqlalchemy.orm import Session

from core.membership_constants import MembershipState
from models.membership import MembershipRecord
from models.user import User
from services import membership_store as store
from services.membership_errors import MembershipValidationError

ISSUE_POINTER_MISSING = "pointer_missing"
ISSUE_POINTER_DANGLING = "pointer_dangling"
ISSUE_POINTER_FOREIGN = "pointer_foreign"
ISSUE_POINTER_NOT_ACTIVE = "pointer_not_active"
ISSUE_POINTER_EXPIRED = "pointer_expired"
ISSUE_MULTIPLE_ACTIVE = "multiple_active"
ISSUE_ACTIVE_OVERDUE = "active_overdue"


@dataclass
class MembershipDiagnosis:
    user: User
    records: List[MembershipRecord]
    pointer_record: Optional[MembershipRecord]
    issues: List[str] = field(default_factory=list)

    @property
    def healthy(self) -> bool:
        return not self.issues

    @property
    def active_records(self) -> List[MembershipRecord]:
        return store.active_records(self.records)


def _pointer_issues(user: User, pointer_record: Optional[MembershipRecord], now: datetime) -> List[str]:
    if user.active_membership_id is None:
        return []
    if pointer_record is None:
        return [ISSUE_POINTER_DANGLING]
    issues: List[str] = []
    if pointer_record.user_id != user.id:
        issues.append(ISSUE_POINTER_FOREIGN)
    if pointer_record.state != MembershipState.ACTIVE.value:
        issues.append(ISSUE_POINTER_NOT_ACTIVE)
    if not store.is_unexpired(pointer_record, now):
        issues.append(ISSUE_POINTER_EXPIRED)
    return issues


def diagnose(db: Session, user_id: uuid.UUID, *, now: Optional[datetime] = None) -> MembershipDiagnosis:
    now = store.as_utc(now) if now is not None else store.utcnow()
    user = store.get_user(db, user_id)
    if user is None:
        raise MembershipValidationError(f"Unknown user {user_id}.", user_id=user_id, step="load_user")

    records = store.list_records_for_user(db, user_id)
    pointer_record = store.get_record(db, user.active_membership_id) if user.active_membership_id else None
    issues = _pointer_issues(user, pointer_record, now)

    active = store.active_records(records)
    if len(active) > 1:
        issues.append(ISSUE_MULTIPLE_ACTIVE)
    if any(not store.is_unexpired(record, now) for record in active):
        issues.append(ISSUE_ACTIVE_OVERDUE)
    if user.active_membership_id is None and any(store.is_unexpired(record, now) for record in active):
        issues.append(ISSUE_POINTER_MISSING)

    return MembershipDiagnosis(user=user, records=records, pointer_record=pointer_record, issues=issues)


def audit_users(
    db: Session,
    *,
    now: Optional[datetime] = None,
    limit: Optional[int] = None,
) -> Iterator[MembershipDiagnosis]:
    """Yield diagnoses for users whose membership state violates an invariant."""
    now = store.as_utc(now) if now is not None else store.utcnow()
    for user_id in store.iter_user_ids(db, limit=limit):
        diagnosis = diagnose(db, user_id, now=now)
        if not diagnosis.healthy:
            yield diagnosis


__all__ = [
    "ISSUE_ACTIVE_OVERDUE",
    "ISSUE_MULTIPLE_ACTIVE",
    "ISSUE_POINTER_DANGLING",
    "ISSUE_POINTER_EXPIRED",
    "ISSUE_POINTER_FOREIGN",
    "ISSUE_POINTER_MISSING",
    "ISSUE_POINTER_NOT_ACTIVE",
    "MembershipDiagnosis",
    "audit_users",
    "diagnose",
]
