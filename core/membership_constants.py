"""Shared membership lifecycle constants used across services and routers."""

from __future__ import annotations

from enum import Enum
from typing import Sequence


class MembershipState(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    EXPIRED = "expired"

    def __str__(self) -> str:  # pragma: no cover - convenience
        return self.value


class MembershipSource(str, Enum):
    """Which trigger granted or last renewed a record."""

    CHECKOUT = "checkout"
    ADMIN = "admin"
    SELF_SERVICE = "self_service"
    SWEEP = "sweep"
    REPAIR = "repair"

    def __str__(self) -> str:  # pragma: no cover - convenience
        return self.value


# Open-ended grants (free plan, repair fallback) run for ten years.
DEFAULT_VALIDITY_DAYS = 3650

# Last-resort name fragments for locating the free plan in legacy catalogs.
FREE_PLAN_NAME_HINTS: Sequence[str] = ("plan gratuito", "gratuito", "gratis", "free", "básico", "basico", "basic")

__all__ = [
    "DEFAULT_VALIDITY_DAYS",
    "FREE_PLAN_NAME_HINTS",
    "MembershipSource",
    "MembershipState",
]
