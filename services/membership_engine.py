"""Membership reconciliation engine: the single writer of membership state.

Every trigger (checkout webhook, admin assignment, self-service grant, expiry
sweep, repair) ends up here. Steps always re-read the store and always demote
existing active records *before* activating the target, so an interrupted
call can leave zero active records but never two.
"""

from __future__ import annotations

import calendar
import uuid
from datetime import datetime, timedelta
from typing import Optional, Tuple, Union

from sqlalchemy.orm import Session

from core.logging import format_context, get_logger
from core.membership_constants import MembershipSource
from models.membership import MembershipRecord, MembershipType
from services import membership_store as store
from services.membership_catalog import feature_enabled, get_membership_type, resolve_default_plan
from services.membership_errors import MembershipError, MembershipValidationError
from services.membership_metrics import record_assignment
from services.membership_repair import repair
from services.membership_settings import MembershipSettings, get_membership_settings

logger = get_logger(__name__)

SourceLike = Union[MembershipSource, str]


def add_months(value: datetime, months: int) -> datetime:
    """Calendar-month arithmetic, clamping to the last day of the target month."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def resolve_window(
    membership_type: MembershipType,
    *,
    starts_at: Optional[datetime],
    ends_at: Optional[datetime],
    now: datetime,
    settings: MembershipSettings,
) -> tuple[datetime, datetime]:
    """Default start is now; default end is start plus the plan duration.

    The window must end after it starts and after ``now``, otherwise the
    record would be activated already expired.
    """
    start = store.as_utc(starts_at) if starts_at is not None else now
    if ends_at is not None:
        end = store.as_utc(ends_at)
    elif (membership_type.duration_months or 0) > 0:
        end = add_months(start, int(membership_type.duration_months))
    else:
        end = start + settings.default_validity
    if end <= start:
        raise MembershipValidationError(
            f"Membership window must end after it starts (start={start.isoformat()}, end={end.isoformat()}).",
            step="validate",
        )
    if end <= now:
        raise MembershipValidationError(
            f"Membership window already ended (end={end.isoformat()}, now={now.isoformat()}).",
            step="validate",
        )
    return start, end


def _pick_renewable(records: list[MembershipRecord], membership_type_id: uuid.UUID) -> Optional[MembershipRecord]:
    # ``records`` arrive most recently started first.
    for record in records:
        if record.membership_type_id == membership_type_id:
            return record
    return None


def assign(
    db: Session,
    user_id: uuid.UUID,
    membership_type_id: uuid.UUID,
    starts_at: Optional[datetime] = None,
    ends_at: Optional[datetime] = None,
    *,
    source: SourceLike = MembershipSource.ADMIN,
    external_reference: Optional[str] = None,
    settings: Optional[MembershipSettings] = None,
    now: Optional[datetime] = None,
) -> MembershipRecord:
    """Make ``membership_type_id`` the user's single active membership.

    Safe to re-run: a retry demotes whatever the previous attempt activated
    and renews the same record in place.
    """
    settings = settings or get_membership_settings()
    now = store.as_utc(now) if now is not None else store.utcnow()
    source_value = MembershipSource(source).value
    context = format_context(user=user_id, plan=membership_type_id, source=source_value)

    if store.get_user(db, user_id) is None:
        record_assignment(source_value, "invalid")
        raise MembershipValidationError(f"Unknown user {user_id}.", user_id=user_id, step="validate")
    membership_type = get_membership_type(db, membership_type_id)
    if membership_type is None:
        record_assignment(source_value, "invalid")
        raise MembershipValidationError(
            f"Unknown membership type {membership_type_id}.", user_id=user_id, step="validate"
        )
    try:
        window_start, window_end = resolve_window(
            membership_type, starts_at=starts_at, ends_at=ends_at, now=now, settings=settings
        )
    except MembershipValidationError as exc:
        exc.user_id = str(user_id)
        record_assignment(source_value, "invalid")
        raise

    try:
        records = store.list_records_for_user(db, user_id)

        demoted = store.deactivate_active_records(db, user_id)
        logger.debug("assign step=deactivate_active demoted=%d %s", demoted, context)

        existing = _pick_renewable(records, membership_type_id)
        if existing is not None:
            record = store.renew_record(
                db,
                existing,
                starts_at=window_start,
                ends_at=window_end,
                source=source_value,
                external_reference=external_reference,
            )
            logger.info("Renewed membership %s in place (%s).", record.id, context)
        else:
            record = store.insert_record(
                db,
                user_id=user_id,
                membership_type_id=membership_type_id,
                starts_at=window_start,
                ends_at=window_end,
                source=source_value,
                external_reference=external_reference,
            )
            logger.info("Created membership %s (%s).", record.id, context)

        store.set_active_membership_pointer(db, user_id, record.id)
    except MembershipError as exc:
        record_assignment(source_value, "failed")
        logger.error("assign failed at step=%s; user may need repair (%s).", exc.step, context)
        raise

    record_assignment(source_value, "ok")
    return record


def grant_default_plan(
    db: Session,
    user_id: uuid.UUID,
    *,
    source: SourceLike,
    settings: Optional[MembershipSettings] = None,
    now: Optional[datetime] = None,
) -> MembershipRecord:
    """Assign the designated free plan for the long default validity window."""
    settings = settings or get_membership_settings()
    now = store.as_utc(now) if now is not None else store.utcnow()
    default_plan = resolve_default_plan(db, settings)
    return assign(
        db,
        user_id,
        default_plan.id,
        starts_at=now,
        ends_at=now + settings.default_validity,
        source=source,
        settings=settings,
        now=now,
    )


def grant_free_membership(
    db: Session,
    user_id: uuid.UUID,
    *,
    settings: Optional[MembershipSettings] = None,
    now: Optional[datetime] = None,
) -> Tuple[MembershipRecord, bool]:
    """Self-service free grant; returns ``(record, granted)``.

    A user who already holds an active, unexpired membership keeps it. When
    only the pointer is stale the user is repaired instead of downgraded.
    """
    settings = settings or get_membership_settings()
    now = store.as_utc(now) if now is not None else store.utcnow()
    current = get_active_membership(db, user_id, now=now)
    if current is not None:
        return current, False

    records = store.list_records_for_user(db, user_id)
    held = [record for record in store.active_records(records) if store.is_unexpired(record, now)]
    if held:
        logger.warning(
            "Free grant for user %s found %d valid membership(s) behind a stale pointer; repairing instead.",
            user_id,
            len(held),
        )
        return repair(db, user_id, settings=settings, now=now).membership, False

    record = grant_default_plan(db, user_id, source=MembershipSource.SELF_SERVICE, settings=settings, now=now)
    return record, True


def get_active_membership(
    db: Session,
    user_id: uuid.UUID,
    *,
    now: Optional[datetime] = None,
) -> Optional[MembershipRecord]:
    """Read-only view for limit checks: the pointer's record, only if it is valid."""
    now = store.as_utc(now) if now is not None else store.utcnow()
    user = store.get_user(db, user_id)
    if user is None or user.active_membership_id is None:
        return None
    record = store.get_record(db, user.active_membership_id)
    if not store.is_valid_current(record, user_id, now):
        logger.warning(
            "Pointer for user %s references an invalid membership %s.", user_id, user.active_membership_id
        )
        return None
    return record


def has_feature(db: Session, user_id: uuid.UUID, flag: str, *, now: Optional[datetime] = None) -> bool:
    """Whether the user's current plan enables ``flag`` (e.g. ``"ai"``)."""
    record = get_active_membership(db, user_id, now=now)
    if record is None:
        return False
    return feature_enabled(get_membership_type(db, record.membership_type_id), flag)


def remaining_days(record: MembershipRecord, *, now: Optional[datetime] = None) -> int:
    now = store.as_utc(now) if now is not None else store.utcnow()
    delta: timedelta = store.as_utc(record.ends_at) - now
    return max(delta.days, 0)


__all__ = [
    "add_months",
    "assign",
    "get_active_membership",
    "grant_default_plan",
    "grant_free_membership",
    "has_feature",
    "remaining_days",
    "resolve_window",
]
