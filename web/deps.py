"""Shared FastAPI dependencies."""

from __future__ import annotations

from services.membership_settings import MembershipSettings, get_membership_settings


def get_settings() -> MembershipSettings:
    """Startup-resolved membership settings; overridable in tests."""
    return get_membership_settings()


__all__ = ["get_settings"]
