"""Repair procedure restoring single-active and pointer consistency for one user.

Candidate priority ("best plan wins", unlike the sweeper's "most recent
wins"):

a. active, unexpired, plan in catalog -> highest tier
b. any other active, unexpired record (plan no longer resolvable)
c. any unexpired record regardless of state -> highest tier
d. a freshly created record of the default free plan
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from core.logging import get_logger
from core.membership_constants import MembershipSource, MembershipState
from models.membership import MembershipRecord, MembershipType
from services import membership_store as store
from services.membership_catalog import get_membership_type, resolve_default_plan, tier_rank
from services.membership_errors import MembershipError, MembershipNotFoundError, MembershipValidationError
from services.membership_metrics import record_repair
from services.membership_settings import MembershipSettings, get_membership_settings

logger = get_logger(__name__)

PATH_BEST_ACTIVE = "best_active"
PATH_ANY_ACTIVE = "any_active"
PATH_HISTORICAL = "historical"
PATH_SYNTHESIZED = "synthesized"


@dataclass(frozen=True)
class RepairResult:
    membership: MembershipRecord
    deactivated_count: int
    path: str


def _recency(record: MembershipRecord) -> Tuple[datetime, datetime]:
    return store.as_utc(record.starts_at), store.as_utc(record.created_at)


def _load_types(db: Session, records: List[MembershipRecord]) -> Dict[uuid.UUID, Optional[MembershipType]]:
    types: Dict[uuid.UUID, Optional[MembershipType]] = {}
    for record in records:
        if record.membership_type_id not in types:
            types[record.membership_type_id] = get_membership_type(db, record.membership_type_id)
    return types


def choose_candidate(
    records: List[MembershipRecord],
    types: Dict[uuid.UUID, Optional[MembershipType]],
    *,
    now: datetime,
) -> Tuple[Optional[MembershipRecord], Optional[str]]:
    """Pick the record repair should make current; ``(None, None)`` means synthesize."""
    unexpired = [record for record in records if store.is_unexpired(record, now)]
    active = [record for record in unexpired if record.state == MembershipState.ACTIVE.value]

    ranked_active = [record for record in active if types.get(record.membership_type_id) is not None]
    if ranked_active:
        best = max(ranked_active, key=lambda record: (tier_rank(types[record.membership_type_id]), _recency(record)))
        return best, PATH_BEST_ACTIVE

    if active:
        return max(active, key=_recency), PATH_ANY_ACTIVE

    if unexpired:
        best = max(unexpired, key=lambda record: (tier_rank(types.get(record.membership_type_id)), _recency(record)))
        return best, PATH_HISTORICAL

    return None, None


def _synthesize_default(
    db: Session,
    user_id: uuid.UUID,
    *,
    now: datetime,
    settings: MembershipSettings,
) -> MembershipRecord:
    try:
        default_plan = resolve_default_plan(db, settings)
    except MembershipNotFoundError as exc:
        exc.user_id = str(user_id)
        raise
    return store.insert_record(
        db,
        user_id=user_id,
        membership_type_id=default_plan.id,
        starts_at=now,
        ends_at=now + settings.default_validity,
        source=MembershipSource.REPAIR.value,
    )


def repair(
    db: Session,
    user_id: uuid.UUID,
    *,
    settings: Optional[MembershipSettings] = None,
    now: Optional[datetime] = None,
) -> RepairResult:
    """Re-establish a single valid active record and point the user at it.

    Idempotent: a second run picks the same record and deactivates nothing.
    """
    settings = settings or get_membership_settings()
    now = store.as_utc(now) if now is not None else store.utcnow()

    user = store.get_user(db, user_id)
    if user is None:
        raise MembershipValidationError(f"Unknown user {user_id}.", user_id=user_id, step="load_user")
    previous_pointer = user.active_membership_id

    try:
        records = store.list_records_for_user(db, user_id)
        candidate, path = choose_candidate(records, _load_types(db, records), now=now)

        if candidate is None:
            # Insert lands active; nothing else is active-and-unexpired here,
            # but overdue actives must still be demoted first.
            deactivated = store.deactivate_active_records(db, user_id, now=now)
            candidate = _synthesize_default(db, user_id, now=now, settings=settings)
            path = PATH_SYNTHESIZED
        else:
            deactivated = store.deactivate_active_records(db, user_id, keep_id=candidate.id, now=now)
            if candidate.state != MembershipState.ACTIVE.value:
                candidate = store.update_record_state(db, candidate, MembershipState.ACTIVE)

        if previous_pointer != candidate.id:
            store.set_active_membership_pointer(db, user_id, candidate.id)
    except MembershipError as exc:
        logger.error("Repair failed for user %s at step=%s: %s", user_id, exc.step, exc.message)
        raise

    record_repair(path or PATH_SYNTHESIZED)
    if deactivated or previous_pointer != candidate.id:
        logger.info(
            "Repaired membership for user %s: path=%s record=%s previous_pointer=%s deactivated=%d.",
            user_id,
            path,
            candidate.id,
            previous_pointer,
            deactivated,
        )
    return RepairResult(membership=candidate, deactivated_count=deactivated, path=path or PATH_SYNTHESIZED)


__all__ = ["RepairResult", "choose_candidate", "repair"]
