"""Startup-resolved configuration for the membership engine."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import timedelta
from functools import lru_cache
from typing import Optional

from core.env import env_int, env_uuid
from core.logging import get_logger
from core.membership_constants import DEFAULT_VALIDITY_DAYS

logger = get_logger(__name__)


@dataclass(frozen=True)
class MembershipSettings:
    """Values the engine needs but must not re-derive per call."""

    default_plan_id: Optional[uuid.UUID] = None
    default_validity_days: int = DEFAULT_VALIDITY_DAYS

    @property
    def default_validity(self) -> timedelta:
        return timedelta(days=self.default_validity_days)


def load_membership_settings() -> MembershipSettings:
    """Read ``MEMBERSHIP_*`` variables once; callers keep and pass the result."""
    default_plan_id = env_uuid("MEMBERSHIP_DEFAULT_PLAN_ID")
    if default_plan_id is None:
        logger.warning(
            "MEMBERSHIP_DEFAULT_PLAN_ID is not configured; free-plan fallback will use catalog heuristics."
        )
    validity_days = env_int("MEMBERSHIP_DEFAULT_VALIDITY_DAYS", DEFAULT_VALIDITY_DAYS, minimum=1)
    return MembershipSettings(default_plan_id=default_plan_id, default_validity_days=validity_days)


@lru_cache(maxsize=1)
def get_membership_settings() -> MembershipSettings:
    """Process-wide settings, resolved once on first use at startup."""
    return load_membership_settings()


__all__ = ["MembershipSettings", "get_membership_settings", "load_membership_settings"]
