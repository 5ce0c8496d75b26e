"""Payment provider webhook: completed checkouts become membership assignments."""

from __future__ import annotations

import uuid
from typing import Optional, Union

from fastapi import APIRouter, BackgroundTasks, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from core.logging import get_logger
from core.membership_constants import MembershipSource
from database import get_db
from schemas.api.memberships import CheckoutWebhookEvent, CheckoutWebhookResponse
from services.membership_engine import assign
from services.membership_errors import MembershipError
from services.membership_notifications import build_notification_payload, deliver_notification
from services.membership_serializers import serialize_membership_record
from services.membership_settings import MembershipSettings
from web.deps import get_settings
from web.routers.memberships import membership_error_response

router = APIRouter(prefix="/payments", tags=["Payments"])

logger = get_logger(__name__)

CHECKOUT_COMPLETED_EVENT = "checkout.session.completed"


def _parse_uuid(value: Optional[str]) -> Optional[uuid.UUID]:
    if not value:
        return None
    try:
        return uuid.UUID(str(value).strip())
    except ValueError:
        return None


def _bad_metadata(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"success": False, "error": message, "code": "payments.invalid_metadata"},
    )


@router.post(
    "/webhook",
    response_model=CheckoutWebhookResponse,
    summary="Receive checkout events from the payment provider.",
)
def handle_checkout_webhook(
    event: CheckoutWebhookEvent,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    settings: MembershipSettings = Depends(get_settings),
) -> Union[CheckoutWebhookResponse, JSONResponse]:
    if event.type != CHECKOUT_COMPLETED_EVENT:
        logger.info("Ignoring payment webhook event type=%s id=%s.", event.type, event.id)
        return CheckoutWebhookResponse(received=True, handled=False)

    session = event.data.object
    user_id = _parse_uuid(session.metadata.userId)
    membership_type_id = _parse_uuid(session.metadata.membershipTypeId)
    if user_id is None or membership_type_id is None:
        logger.warning("Checkout webhook %s is missing userId/membershipTypeId metadata.", event.id)
        return _bad_metadata("Checkout metadata must carry a valid userId and membershipTypeId.")

    try:
        record = assign(
            db,
            user_id,
            membership_type_id,
            source=MembershipSource.CHECKOUT,
            external_reference=session.subscription or session.id,
            settings=settings,
        )
    except MembershipError as exc:
        logger.error("Checkout webhook %s could not assign membership for user %s: %s", event.id, user_id, exc.message)
        return membership_error_response(exc)

    background_tasks.add_task(deliver_notification, build_notification_payload(record, event="membership.purchased"))
    return CheckoutWebhookResponse(received=True, handled=True, membership=serialize_membership_record(record))


__all__ = ["CHECKOUT_COMPLETED_EVENT", "router"]
