"""Membership reconciliation routes: assign, sweep, repair and read views."""

from __future__ import annotations

import uuid
from typing import Union

from fastapi import APIRouter, BackgroundTasks, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from core.logging import get_logger
from core.membership_constants import MembershipSource
from database import get_db
from schemas.api.memberships import (
    ActiveMembershipResponse,
    MembershipAssignRequest,
    MembershipAssignResponse,
    MembershipDiagnosisResponse,
    MembershipFreeGrantResponse,
    MembershipRepairResponse,
    MembershipSweepResponse,
    MembershipTypeListResponse,
    MembershipUserRequest,
)
from services import membership_store as store
from services.membership_catalog import get_membership_type, list_membership_types
from services.membership_diagnostics import diagnose
from services.membership_engine import assign, get_active_membership, grant_free_membership
from services.membership_errors import (
    MembershipError,
    MembershipNotFoundError,
    MembershipStoreError,
    MembershipValidationError,
)
from services.membership_notifications import build_notification_payload, deliver_notification
from services.membership_repair import repair
from services.membership_serializers import (
    serialize_active_membership,
    serialize_diagnosis,
    serialize_membership_record,
    serialize_membership_type,
)
from services.membership_settings import MembershipSettings
from services.membership_sweeper import sweep_expired
from web.deps import get_settings
from web.deps_admin import require_admin_session

router = APIRouter(prefix="/memberships", tags=["Memberships"])

logger = get_logger(__name__)


def membership_error_response(
    exc: MembershipError,
    *,
    unknown_user_status: int = status.HTTP_400_BAD_REQUEST,
) -> JSONResponse:
    """Map engine errors onto ``{success: false, error, code}`` responses."""
    if isinstance(exc, MembershipStoreError):
        status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    elif isinstance(exc, MembershipNotFoundError):
        status_code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, MembershipValidationError):
        status_code = unknown_user_status if exc.step == "load_user" else status.HTTP_400_BAD_REQUEST
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    content = {"success": False, "error": exc.message, "code": exc.code}
    if exc.step:
        content["step"] = exc.step
    return JSONResponse(status_code=status_code, content=content)


def _unknown_user(user_id: uuid.UUID) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"success": False, "error": f"Unknown user {user_id}.", "code": MembershipValidationError.code},
    )


@router.post(
    "/assign",
    response_model=MembershipAssignResponse,
    summary="Make a plan the user's single active membership.",
)
def assign_membership_route(
    payload: MembershipAssignRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    settings: MembershipSettings = Depends(get_settings),
    _admin=Depends(require_admin_session),
) -> Union[MembershipAssignResponse, JSONResponse]:
    try:
        record = assign(
            db,
            payload.userId,
            payload.membershipTypeId,
            starts_at=payload.startDate,
            ends_at=payload.endDate,
            source=MembershipSource.ADMIN,
            settings=settings,
        )
    except MembershipError as exc:
        return membership_error_response(exc)
    background_tasks.add_task(deliver_notification, build_notification_payload(record, event="membership.assigned"))
    return MembershipAssignResponse(membership=serialize_membership_record(record))


@router.post(
    "/sweep-expired",
    response_model=MembershipSweepResponse,
    summary="Expire overdue memberships and re-point affected users.",
)
def sweep_expired_route(
    db: Session = Depends(get_db),
    settings: MembershipSettings = Depends(get_settings),
    _admin=Depends(require_admin_session),
) -> Union[MembershipSweepResponse, JSONResponse]:
    try:
        result = sweep_expired(db, settings=settings)
    except MembershipError as exc:
        return membership_error_response(exc)
    return MembershipSweepResponse(**result.to_payload())


@router.post(
    "/repair",
    response_model=MembershipRepairResponse,
    summary="Restore a single valid active membership for one user.",
)
def repair_membership_route(
    payload: MembershipUserRequest,
    db: Session = Depends(get_db),
    settings: MembershipSettings = Depends(get_settings),
    _admin=Depends(require_admin_session),
) -> Union[MembershipRepairResponse, JSONResponse]:
    try:
        result = repair(db, payload.userId, settings=settings)
    except MembershipError as exc:
        return membership_error_response(exc)
    return MembershipRepairResponse(
        membership=serialize_membership_record(result.membership),
        deactivatedCount=result.deactivated_count,
        path=result.path,
    )


@router.post(
    "/free",
    response_model=MembershipFreeGrantResponse,
    summary="Grant the free plan to a user without a valid membership.",
)
def grant_free_membership_route(
    payload: MembershipUserRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    settings: MembershipSettings = Depends(get_settings),
) -> Union[MembershipFreeGrantResponse, JSONResponse]:
    try:
        record, granted = grant_free_membership(db, payload.userId, settings=settings)
    except MembershipError as exc:
        return membership_error_response(exc)
    if not granted:
        return MembershipFreeGrantResponse(granted=False, membership=serialize_membership_record(record))
    background_tasks.add_task(deliver_notification, build_notification_payload(record, event="membership.granted"))
    return MembershipFreeGrantResponse(granted=True, membership=serialize_membership_record(record))


@router.get(
    "/types",
    response_model=MembershipTypeListResponse,
    summary="List the membership catalog.",
)
def list_membership_types_route(db: Session = Depends(get_db)) -> Union[MembershipTypeListResponse, JSONResponse]:
    try:
        types = list_membership_types(db)
    except MembershipError as exc:
        return membership_error_response(exc)
    return MembershipTypeListResponse(types=[serialize_membership_type(item) for item in types])


@router.get(
    "/{user_id}/active",
    response_model=ActiveMembershipResponse,
    summary="Return the user's current membership, if valid.",
)
def read_active_membership_route(
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
) -> Union[ActiveMembershipResponse, JSONResponse]:
    try:
        if store.get_user(db, user_id) is None:
            return _unknown_user(user_id)
        record = get_active_membership(db, user_id)
        membership_type = get_membership_type(db, record.membership_type_id) if record is not None else None
    except MembershipError as exc:
        return membership_error_response(exc)
    return serialize_active_membership(user_id, record, membership_type)


@router.get(
    "/{user_id}/diagnosis",
    response_model=MembershipDiagnosisResponse,
    summary="Report invariant violations in the user's membership state.",
)
def read_membership_diagnosis_route(
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    _admin=Depends(require_admin_session),
) -> Union[MembershipDiagnosisResponse, JSONResponse]:
    try:
        diagnosis = diagnose(db, user_id)
    except MembershipError as exc:
        return membership_error_response(exc, unknown_user_status=status.HTTP_404_NOT_FOUND)
    if not diagnosis.healthy:
        logger.info("Membership diagnosis for user %s: %s", user_id, ", ".join(diagnosis.issues))
    return serialize_diagnosis(diagnosis)


__all__ = ["membership_error_response", "router"]
