"""Tests for the single-user repair procedure."""

from __future__ import annotations

import uuid
from datetime import timedelta

import pytest
from sqlalchemy import select

from core.membership_constants import MembershipState
from models.membership import MembershipRecord
from services.membership_errors import MembershipNotFoundError, MembershipValidationError
from services.membership_repair import (
    PATH_ANY_ACTIVE,
    PATH_BEST_ACTIVE,
    PATH_HISTORICAL,
    PATH_SYNTHESIZED,
    repair,
)
from services.membership_settings import MembershipSettings


def _records(db_session, user_id):
    stmt = select(MembershipRecord).where(MembershipRecord.user_id == user_id)
    return list(db_session.execute(stmt).scalars().all())


def _active_ids(db_session, user_id):
    return {record.id for record in _records(db_session, user_id) if record.state == MembershipState.ACTIVE.value}


def test_repair_dangling_pointer_prefers_best_plan(
    db_session, make_user, make_record, basic_plan, premium_plan, settings, now
):
    user = make_user(active_membership_id=uuid.uuid4())
    premium = make_record(user, premium_plan, starts_at=now - timedelta(days=15), ends_at=now + timedelta(days=15))
    basic = make_record(user, basic_plan, starts_at=now - timedelta(days=2), ends_at=now + timedelta(days=28))

    result = repair(db_session, user.id, settings=settings, now=now)

    assert result.path == PATH_BEST_ACTIVE
    assert result.membership.id == premium.id
    assert result.deactivated_count == 1
    db_session.refresh(basic)
    assert basic.state == MembershipState.INACTIVE.value
    assert _active_ids(db_session, user.id) == {premium.id}
    db_session.refresh(user)
    assert user.active_membership_id == premium.id


def test_repair_is_idempotent(db_session, make_user, make_record, basic_plan, premium_plan, settings, now):
    user = make_user()
    make_record(user, premium_plan, starts_at=now - timedelta(days=15), ends_at=now + timedelta(days=15))
    make_record(user, basic_plan, starts_at=now - timedelta(days=2), ends_at=now + timedelta(days=28))

    first = repair(db_session, user.id, settings=settings, now=now)
    second = repair(db_session, user.id, settings=settings, now=now)

    assert second.membership.id == first.membership.id
    assert second.deactivated_count == 0
    assert second.path == first.path


def test_repair_foreign_pointer_is_replaced(db_session, make_user, make_record, basic_plan, settings, now):
    stranger = make_user()
    foreign = make_record(stranger, basic_plan, starts_at=now - timedelta(days=1), ends_at=now + timedelta(days=29), point=True)
    user = make_user(active_membership_id=foreign.id)
    own = make_record(user, basic_plan, starts_at=now - timedelta(days=3), ends_at=now + timedelta(days=27))

    result = repair(db_session, user.id, settings=settings, now=now)

    assert result.membership.id == own.id
    assert result.deactivated_count == 0
    db_session.refresh(user)
    assert user.active_membership_id == own.id
    db_session.refresh(foreign)
    assert foreign.state == MembershipState.ACTIVE.value


def test_repair_keeps_active_record_whose_plan_was_removed(db_session, make_user, settings, now):
    user = make_user()
    orphan = MembershipRecord(
        id=uuid.uuid4(),
        user_id=user.id,
        membership_type_id=uuid.uuid4(),
        starts_at=now - timedelta(days=5),
        ends_at=now + timedelta(days=25),
        state=MembershipState.ACTIVE.value,
        created_at=now - timedelta(days=5),
    )
    db_session.add(orphan)
    db_session.commit()

    result = repair(db_session, user.id, settings=settings, now=now)

    assert result.path == PATH_ANY_ACTIVE
    assert result.membership.id == orphan.id


def test_repair_reactivates_best_unexpired_historical_record(
    db_session, make_user, make_record, basic_plan, premium_plan, settings, now
):
    user = make_user()
    make_record(
        user,
        basic_plan,
        starts_at=now - timedelta(days=1),
        ends_at=now + timedelta(days=29),
        state=MembershipState.INACTIVE,
    )
    premium = make_record(
        user,
        premium_plan,
        starts_at=now - timedelta(days=10),
        ends_at=now + timedelta(days=20),
        state=MembershipState.INACTIVE,
    )

    result = repair(db_session, user.id, settings=settings, now=now)

    assert result.path == PATH_HISTORICAL
    assert result.membership.id == premium.id
    assert result.membership.state == MembershipState.ACTIVE.value
    assert result.deactivated_count == 0
    assert _active_ids(db_session, user.id) == {premium.id}


def test_repair_synthesizes_free_plan_and_expires_overdue(
    db_session, make_user, make_record, premium_plan, free_plan, settings, now
):
    user = make_user()
    overdue = make_record(user, premium_plan, starts_at=now - timedelta(days=40), ends_at=now - timedelta(days=10), point=True)

    result = repair(db_session, user.id, settings=settings, now=now)

    assert result.path == PATH_SYNTHESIZED
    assert result.deactivated_count == 1
    assert result.membership.membership_type_id == free_plan.id
    assert result.membership.source == "repair"
    db_session.refresh(overdue)
    assert overdue.state == MembershipState.EXPIRED.value
    assert len(_records(db_session, user.id)) == 2
    db_session.refresh(user)
    assert user.active_membership_id == result.membership.id


def test_repair_synthesizes_for_user_without_records(db_session, make_user, free_plan, settings, now):
    user = make_user()

    result = repair(db_session, user.id, settings=settings, now=now)

    assert result.path == PATH_SYNTHESIZED
    assert result.deactivated_count == 0
    assert result.membership.membership_type_id == free_plan.id


def test_repair_without_catalog_default_raises_not_found(db_session, make_user, now):
    user = make_user()

    with pytest.raises(MembershipNotFoundError) as excinfo:
        repair(db_session, user.id, settings=MembershipSettings(), now=now)

    assert excinfo.value.user_id == str(user.id)
    assert "No default plan" in excinfo.value.message
    assert _records(db_session, user.id) == []


def test_repair_unknown_user_is_rejected(db_session, settings, now):
    with pytest.raises(MembershipValidationError):
        repair(db_session, uuid.uuid4(), settings=settings, now=now)
