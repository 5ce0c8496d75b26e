"""Exception types raised by the membership reconciliation services."""

from __future__ import annotations

import uuid
from typing import Any, Dict, Optional, Union

UserRef = Optional[Union[str, uuid.UUID]]


class MembershipError(RuntimeError):
    """Base error carrying enough context (user, step) to support manual repair."""

    code = "membership.error"

    def __init__(self, message: str, *, user_id: UserRef = None, step: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.user_id = str(user_id) if user_id is not None else None
        self.step = step

    def to_detail(self) -> Dict[str, Any]:
        detail: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.step:
            detail["step"] = self.step
        return detail


class MembershipValidationError(MembershipError):
    """Raised for unknown users/plans or invalid windows, before any mutation."""

    code = "membership.invalid_request"


class MembershipStoreError(MembershipError):
    """Raised when the persistence layer rejects a read or write.

    Steps committed before the failure are kept; the user may need a repair.
    """

    code = "membership.store_unavailable"


class MembershipNotFoundError(MembershipError):
    """Raised when no recoverable record exists and the catalog offers no default plan."""

    code = "membership.not_found"


__all__ = [
    "MembershipError",
    "MembershipNotFoundError",
    "MembershipStoreError",
    "MembershipValidationError",
]
