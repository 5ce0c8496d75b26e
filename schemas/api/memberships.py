"""Pydantic schemas for membership reconciliation routes."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

MembershipStateLiteral = Literal["active", "inactive", "expired"]


class MembershipAssignRequest(BaseModel):
    userId: uuid.UUID = Field(..., description="Pre-validated user identifier.")
    membershipTypeId: uuid.UUID = Field(..., description="Catalog plan to activate.")
    startDate: Optional[datetime] = Field(default=None, description="Window start; defaults to now.")
    endDate: Optional[datetime] = Field(
        default=None,
        description="Window end; defaults to start plus the plan duration.",
    )


class MembershipUserRequest(BaseModel):
    userId: uuid.UUID = Field(..., description="Pre-validated user identifier.")


class MembershipLimitsSchema(BaseModel):
    providers: Optional[int] = Field(default=None, description="Null means unlimited.")
    items: Optional[int] = Field(default=None, description="Null means unlimited.")
    lists: Optional[int] = Field(default=None, description="Null means unlimited.")


class MembershipTypeSchema(BaseModel):
    id: uuid.UUID
    name: str
    description: Optional[str] = None
    price: float = 0.0
    currency: str = "EUR"
    durationMonths: int = 0
    limits: MembershipLimitsSchema = Field(default_factory=MembershipLimitsSchema)
    featureFlags: Dict[str, Any] = Field(default_factory=dict)
    premium: bool = False


class MembershipRecordSchema(BaseModel):
    id: uuid.UUID
    userId: uuid.UUID
    membershipTypeId: uuid.UUID
    startDate: datetime
    endDate: datetime
    state: MembershipStateLiteral
    source: Optional[str] = None
    externalReference: Optional[str] = None


class MembershipAssignResponse(BaseModel):
    success: bool = True
    membership: MembershipRecordSchema


class MembershipRepairResponse(BaseModel):
    success: bool = True
    membership: MembershipRecordSchema
    deactivatedCount: int = Field(..., ge=0)
    path: str = Field(..., description="Which candidate rule produced the membership.")


class MembershipSweepResponse(BaseModel):
    expiredCount: int = Field(..., ge=0)
    affectedUsers: int = Field(..., ge=0)
    repointedUsers: int = Field(..., ge=0)
    failedUserIds: List[str] = Field(default_factory=list)


class MembershipFreeGrantResponse(BaseModel):
    success: bool = True
    granted: bool = Field(..., description="False when the user already held a valid membership.")
    membership: MembershipRecordSchema


class ActiveMembershipResponse(BaseModel):
    userId: uuid.UUID
    membership: Optional[MembershipRecordSchema] = None
    membershipType: Optional[MembershipTypeSchema] = None
    remainingDays: Optional[int] = None


class MembershipDiagnosisResponse(BaseModel):
    userId: uuid.UUID
    healthy: bool
    issues: List[str] = Field(default_factory=list)
    activeMembershipId: Optional[uuid.UUID] = None
    activeCount: int = 0
    records: List[MembershipRecordSchema] = Field(default_factory=list)


class MembershipTypeListResponse(BaseModel):
    types: List[MembershipTypeSchema] = Field(default_factory=list)


class MembershipErrorResponse(BaseModel):
    success: Literal[False] = False
    error: str
    code: str
    step: Optional[str] = None


class CheckoutMetadata(BaseModel):
    model_config = ConfigDict(extra="allow")

    userId: Optional[str] = None
    membershipTypeId: Optional[str] = None


class CheckoutSessionObject(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    subscription: Optional[str] = None
    metadata: CheckoutMetadata = Field(default_factory=CheckoutMetadata)


class CheckoutEventData(BaseModel):
    model_config = ConfigDict(extra="allow")

    object: CheckoutSessionObject = Field(default_factory=CheckoutSessionObject)


class CheckoutWebhookEvent(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    type: str
    data: CheckoutEventData = Field(default_factory=CheckoutEventData)


class CheckoutWebhookResponse(BaseModel):
    received: bool = True
    handled: bool = False
    membership: Optional[MembershipRecordSchema] = None


__all__ = [
    "ActiveMembershipResponse",
    "CheckoutWebhookEvent",
    "CheckoutWebhookResponse",
    "MembershipAssignRequest",
    "MembershipAssignResponse",
    "MembershipDiagnosisResponse",
    "MembershipErrorResponse",
    "MembershipFreeGrantResponse",
    "MembershipLimitsSchema",
    "MembershipRecordSchema",
    "MembershipRepairResponse",
    "MembershipSweepResponse",
    "MembershipTypeListResponse",
    "MembershipTypeSchema",
    "MembershipUserRequest",
]
