"""SQLAlchemy models for the membership catalog and granted membership records."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func

from database import Base
from core.membership_constants import MembershipState


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MembershipType(Base):
    """Plan catalog entry (price, duration, resource limits, feature flags)."""

    __tablename__ = "membership_types"
    __table_args__ = {"extend_existing": True}

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(120), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    price = Column(Numeric(10, 2), nullable=False, default=0)
    currency = Column(String(8), nullable=False, default="EUR")
    duration_months = Column(Integer, nullable=False, default=1)
    # NULL limits mean "unlimited".
    provider_limit = Column(Integer, nullable=True)
    item_limit = Column(Integer, nullable=True)
    list_limit = Column(Integer, nullable=True)
    feature_flags = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now())

    @property
    def is_premium(self) -> bool:
        flags = self.feature_flags or {}
        return any(bool(value) for value in flags.values())

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<MembershipType {self.name!r} id={self.id}>"


class MembershipRecord(Base):
    """One granted instance of a plan, with its own window and lifecycle state."""

    __tablename__ = "membership_records"
    __table_args__ = (
        Index("ix_membership_records_user_state", "user_id", "state"),
        Index("ix_membership_records_state_ends_at", "state", "ends_at"),
        {"extend_existing": True},
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    membership_type_id = Column(
        UUID(as_uuid=True),
        ForeignKey("membership_types.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    starts_at = Column(DateTime(timezone=True), nullable=False)
    ends_at = Column(DateTime(timezone=True), nullable=False)
    state = Column(String(16), nullable=False, default=MembershipState.ACTIVE.value)
    source = Column(String(32), nullable=True)
    external_reference = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.now(),
        onupdate=_utcnow,
    )

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<MembershipRecord id={self.id} user={self.user_id} state={self.state}>"


__all__ = ["MembershipRecord", "MembershipType"]
