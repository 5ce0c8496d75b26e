"""Fire-and-forget membership change notifications.

Delivery (email, push) is owned by an external service; this module only
hands it the final record over a webhook.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from core.env import env_float, env_int, env_str
from core.logging import get_logger
from models.membership import MembershipRecord
from services.membership_store import as_utc

logger = get_logger(__name__)

NOTIFY_WEBHOOK_URL = env_str("MEMBERSHIP_NOTIFY_WEBHOOK_URL")
NOTIFY_TIMEOUT = env_float("MEMBERSHIP_NOTIFY_TIMEOUT", 5.0, minimum=0.5)
NOTIFY_RETRIES = env_int("MEMBERSHIP_NOTIFY_RETRIES", 3, minimum=1)


@dataclass
class NotificationResult:
    status: str
    error: Optional[str] = None
    attempts: int = 0


def build_notification_payload(record: MembershipRecord, *, event: str) -> Dict[str, Any]:
    return {
        "event": event,
        "userId": str(record.user_id),
        "membershipId": str(record.id),
        "membershipTypeId": str(record.membership_type_id),
        "state": record.state,
        "startDate": as_utc(record.starts_at).isoformat(),
        "endDate": as_utc(record.ends_at).isoformat(),
        "source": record.source,
    }


def _post_with_backoff(url: str, payload: Dict[str, Any], *, timeout: float, max_attempts: int) -> NotificationResult:
    delay = 0.5
    attempts = max(1, max_attempts)
    error_message = "unknown error"
    for attempt in range(1, attempts + 1):
        try:
            with httpx.Client(timeout=timeout) as client:
                response = client.post(url, json=payload)
                response.raise_for_status()
            return NotificationResult(status="delivered", attempts=attempt)
        except httpx.HTTPStatusError as exc:
            logger.warning("Membership notification HTTP error (attempt %s/%s): %s", attempt, attempts, exc.response.text)
            error_message = exc.response.text
        except httpx.RequestError as exc:
            logger.warning("Membership notification request error (attempt %s/%s): %s", attempt, attempts, exc)
            error_message = str(exc)
        if attempt < attempts:
            time.sleep(delay)
            delay *= 2
    return NotificationResult(status="failed", error=error_message, attempts=attempts)


def deliver_notification(payload: Dict[str, Any], *, webhook_url: Optional[str] = None) -> NotificationResult:
    """Post a prepared payload to the notification sink. Never raises."""
    url = webhook_url or NOTIFY_WEBHOOK_URL
    if not url:
        logger.info("Membership notification (no sink configured): %s", payload)
        return NotificationResult(status="skipped")
    result = _post_with_backoff(url, payload, timeout=NOTIFY_TIMEOUT, max_attempts=NOTIFY_RETRIES)
    if result.status != "delivered":
        logger.error("Membership notification for user %s dropped: %s", payload["userId"], result.error)
    return result


def notify_membership_change(
    record: MembershipRecord,
    *,
    event: str,
    webhook_url: Optional[str] = None,
) -> NotificationResult:
    return deliver_notification(build_notification_payload(record, event=event), webhook_url=webhook_url)


__all__ = ["NotificationResult", "build_notification_payload", "deliver_notification", "notify_membership_change"]
