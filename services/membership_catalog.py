"""Read-only access to the membership type catalog."""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from core.logging import get_logger
from core.membership_constants import FREE_PLAN_NAME_HINTS
from models.membership import MembershipType
from services.membership_errors import MembershipNotFoundError
from services.membership_settings import MembershipSettings
from services.membership_store import store_step

logger = get_logger(__name__)

LIMIT_FIELDS: Dict[str, str] = {
    "providers": "provider_limit",
    "items": "item_limit",
    "lists": "list_limit",
}


def get_membership_type(db: Session, membership_type_id: uuid.UUID) -> Optional[MembershipType]:
    with store_step(db, "get_membership_type"):
        return db.get(MembershipType, membership_type_id)


def list_membership_types(db: Session) -> List[MembershipType]:
    """Return the catalog ordered by price, then name."""
    with store_step(db, "list_membership_types"):
        stmt = select(MembershipType).order_by(MembershipType.price.asc(), MembershipType.name.asc())
        return list(db.execute(stmt).scalars().all())


def _price(membership_type: MembershipType) -> Decimal:
    try:
        return Decimal(str(membership_type.price or 0))
    except (ArithmeticError, ValueError):
        return Decimal(0)


def tier_rank(membership_type: Optional[MembershipType]) -> Tuple[int, Decimal]:
    """Sort key for "best plan wins": feature-flagged plans first, then price."""
    if membership_type is None:
        return (-1, Decimal(-1))
    return (1 if membership_type.is_premium else 0, _price(membership_type))


def membership_limits(membership_type: MembershipType) -> Dict[str, Optional[int]]:
    """Resource limits keyed by resource; ``None`` means unlimited."""
    limits: Dict[str, Optional[int]] = {}
    for key, attr in LIMIT_FIELDS.items():
        value = getattr(membership_type, attr, None)
        limits[key] = int(value) if value is not None and int(value) > 0 else None
    return limits


def feature_enabled(membership_type: Optional[MembershipType], flag: str) -> bool:
    if membership_type is None:
        return False
    flags: Dict[str, Any] = membership_type.feature_flags or {}
    return bool(flags.get(flag))


def _guess_free_plan(types: Sequence[MembershipType]) -> Optional[MembershipType]:
    """Migration aid for catalogs predating ``MEMBERSHIP_DEFAULT_PLAN_ID``.

    Order: exact/partial name hints, then the cheapest plan without feature
    flags, then the cheapest plan overall.
    """
    if not types:
        return None
    for hint in FREE_PLAN_NAME_HINTS:
        for membership_type in types:
            if hint in (membership_type.name or "").strip().lower():
                return membership_type
    base_types = [membership_type for membership_type in types if not membership_type.is_premium]
    pool = base_types or list(types)
    return min(pool, key=_price)


def resolve_default_plan(db: Session, settings: MembershipSettings) -> MembershipType:
    """Return the designated free plan, or raise when the catalog cannot supply one."""
    if settings.default_plan_id is not None:
        configured = get_membership_type(db, settings.default_plan_id)
        if configured is not None:
            return configured
        logger.warning(
            "Configured default plan %s is not in the catalog; falling back to heuristics.",
            settings.default_plan_id,
        )

    guessed = _guess_free_plan(list_membership_types(db))
    if guessed is None:
        raise MembershipNotFoundError(
            "No default plan available: MEMBERSHIP_DEFAULT_PLAN_ID is unset or unknown and the catalog is empty.",
            step="resolve_default_plan",
        )
    logger.info("Resolved default plan by catalog heuristics: %s (%s).", guessed.name, guessed.id)
    return guessed


__all__ = [
    "LIMIT_FIELDS",
    "feature_enabled",
    "get_membership_type",
    "list_membership_types",
    "membership_limits",
    "resolve_default_plan",
    "tier_rank",
]
