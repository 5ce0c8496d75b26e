"""Shared helpers for serialising membership records and catalog entries."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from models.membership import MembershipRecord, MembershipType
from schemas.api.memberships import (
    ActiveMembershipResponse,
    MembershipDiagnosisResponse,
    MembershipLimitsSchema,
    MembershipRecordSchema,
    MembershipTypeSchema,
)
from services.membership_catalog import membership_limits
from services.membership_diagnostics import MembershipDiagnosis
from services.membership_engine import remaining_days
from services.membership_store import as_utc


def serialize_membership_record(record: MembershipRecord) -> MembershipRecordSchema:
    return MembershipRecordSchema(
        id=record.id,
        userId=record.user_id,
        membershipTypeId=record.membership_type_id,
        startDate=as_utc(record.starts_at),
        endDate=as_utc(record.ends_at),
        state=record.state,
        source=record.source,
        externalReference=record.external_reference,
    )


def serialize_membership_type(membership_type: MembershipType) -> MembershipTypeSchema:
    return MembershipTypeSchema(
        id=membership_type.id,
        name=membership_type.name,
        description=membership_type.description,
        price=float(membership_type.price or 0),
        currency=membership_type.currency or "EUR",
        durationMonths=int(membership_type.duration_months or 0),
        limits=MembershipLimitsSchema(**membership_limits(membership_type)),
        featureFlags=dict(membership_type.feature_flags or {}),
        premium=membership_type.is_premium,
    )


def serialize_active_membership(
    user_id,
    record: Optional[MembershipRecord],
    membership_type: Optional[MembershipType],
    *,
    now: Optional[datetime] = None,
) -> ActiveMembershipResponse:
    """Convert the read-only active view into the API response schema."""
    if record is None:
        return ActiveMembershipResponse(userId=user_id)
    return ActiveMembershipResponse(
        userId=user_id,
        membership=serialize_membership_record(record),
        membershipType=serialize_membership_type(membership_type) if membership_type is not None else None,
        remainingDays=remaining_days(record, now=now),
    )


def serialize_diagnosis(diagnosis: MembershipDiagnosis) -> MembershipDiagnosisResponse:
    return MembershipDiagnosisResponse(
        userId=diagnosis.user.id,
        healthy=diagnosis.healthy,
        issues=list(diagnosis.issues),
        activeMembershipId=diagnosis.user.active_membership_id,
        activeCount=len(diagnosis.active_records),
        records=[serialize_membership_record(record) for record in diagnosis.records],
    )


__all__ = [
    "serialize_active_membership",
    "serialize_diagnosis",
    "serialize_membership_record",
    "serialize_membership_type",
]
