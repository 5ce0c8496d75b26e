"""Expiry sweeper: demote time-expired records and re-point affected users.

Expiry degrades the service tier; it never leaves a user without a
membership. Users are processed in isolation so one failure does not abort
the batch.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.logging import get_logger
from core.membership_constants import MembershipSource
from models.membership import MembershipRecord
from services import membership_store as store
from services.membership_engine import grant_default_plan
from services.membership_errors import MembershipError
from services.membership_metrics import record_sweep
from services.membership_settings import MembershipSettings, get_membership_settings

logger = get_logger(__name__)

OUTCOME_UNCHANGED = "unchanged"
OUTCOME_ADOPTED = "adopted"
OUTCOME_FALLBACK = "fallback"


@dataclass
class SweepResult:
    expired_count: int = 0
    affected_users: int = 0
    repointed_users: int = 0
    failed_user_ids: List[str] = field(default_factory=list)
    outcomes: Dict[str, str] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "expiredCount": self.expired_count,
            "affectedUsers": self.affected_users,
            "repointedUsers": self.repointed_users,
            "failedUserIds": list(self.failed_user_ids),
        }


def _most_recent_valid(records: List[MembershipRecord], user_id: uuid.UUID, now: datetime) -> Optional[MembershipRecord]:
    candidates = [record for record in records if store.is_valid_current(record, user_id, now)]
    if not candidates:
        return None
    return max(candidates, key=lambda record: (store.as_utc(record.starts_at), store.as_utc(record.created_at)))


def reconcile_user_after_expiry(
    db: Session,
    user_id: uuid.UUID,
    *,
    now: datetime,
    settings: MembershipSettings,
) -> str:
    """Fix one user's pointer after the bulk expiry; returns the outcome label."""
    user = store.get_user(db, user_id)
    if user is None:
        logger.warning("Sweeper skipped user %s: user row not found.", user_id)
        return OUTCOME_UNCHANGED

    current = store.get_record(db, user.active_membership_id) if user.active_membership_id else None
    if store.is_valid_current(current, user_id, now):
        return OUTCOME_UNCHANGED

    records = store.list_records_for_user(db, user_id)
    replacement = _most_recent_valid(records, user_id, now)
    if replacement is not None:
        store.set_active_membership_pointer(db, user_id, replacement.id)
        logger.info("Sweeper re-pointed user %s to active membership %s.", user_id, replacement.id)
        return OUTCOME_ADOPTED

    fallback = grant_default_plan(db, user_id, source=MembershipSource.SWEEP, settings=settings, now=now)
    logger.info("Sweeper granted fallback membership %s to user %s.", fallback.id, user_id)
    return OUTCOME_FALLBACK


def sweep_expired(
    db: Session,
    *,
    settings: Optional[MembershipSettings] = None,
    now: Optional[datetime] = None,
) -> SweepResult:
    """Expire overdue records in one statement, then reconcile each affected user."""
    settings = settings or get_membership_settings()
    now = store.as_utc(now) if now is not None else store.utcnow()

    expired_count, affected = store.expire_overdue_records(db, now)
    result = SweepResult(expired_count=expired_count, affected_users=len(affected))

    adopted = 0
    fallback = 0
    for user_id in affected:
        try:
            outcome = reconcile_user_after_expiry(db, user_id, now=now, settings=settings)
        except (MembershipError, SQLAlchemyError) as exc:
            db.rollback()
            result.failed_user_ids.append(str(user_id))
            logger.error("Sweeper failed for user %s (step=%s): %s", user_id, getattr(exc, "step", None), exc)
            continue
        result.outcomes[str(user_id)] = outcome
        if outcome == OUTCOME_ADOPTED:
            adopted += 1
        elif outcome == OUTCOME_FALLBACK:
            fallback += 1

    result.repointed_users = adopted + fallback
    record_sweep(expired=expired_count, adopted=adopted, fallback=fallback, failed=len(result.failed_user_ids))
    logger.info(
        "Membership sweep finished: expired=%d affected=%d repointed=%d failed=%d.",
        result.expired_count,
        result.affected_users,
        result.repointed_users,
        len(result.failed_user_ids),
    )
    return result


__all__ = ["SweepResult", "reconcile_user_after_expiry", "sweep_expired"]
