"""Celery tasks for periodic membership maintenance."""

from __future__ import annotations

from typing import Any, Dict

from celery import shared_task

from core.logging import get_logger
from database import session_scope
from services.membership_errors import MembershipError
from services.membership_sweeper import sweep_expired

logger = get_logger(__name__)


@shared_task(name="memberships.sweep_expired")
def sweep_expired_memberships() -> Dict[str, Any]:
    """Run one expiry sweep; per-user failures are reported, not raised."""
    with session_scope() as db:
        try:
            result = sweep_expired(db)
        except MembershipError as exc:
            logger.error("Scheduled membership sweep aborted at step=%s: %s", exc.step, exc.message)
            raise
    if result.failed_user_ids:
        logger.warning(
            "Scheduled membership sweep left %d user(s) for repair: %s",
            len(result.failed_user_ids),
            ", ".join(result.failed_user_ids),
        )
    return result.to_payload()


__all__ = ["sweep_expired_memberships"]
