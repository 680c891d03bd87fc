from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Optional

from hearth.auth.permissions import Permission


class DenyReason(str, enum.Enum):
    MEMBERSHIP_REQUIRED = "MEMBERSHIP_REQUIRED"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    INSUFFICIENT_HIERARCHY = "INSUFFICIENT_HIERARCHY"
    PROTECTED_INVARIANT = "PROTECTED_INVARIANT"
    NOT_FOUND = "NOT_FOUND"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INFRASTRUCTURE_ERROR = "INFRASTRUCTURE_ERROR"


class ProtectedInvariant(str, enum.Enum):
    DEFAULT_ROLE_IMMUTABLE = "DEFAULT_ROLE_IMMUTABLE"
    DEFAULT_ROLE_UNDELETABLE = "DEFAULT_ROLE_UNDELETABLE"
    DEFAULT_ROLE_REQUIRED = "DEFAULT_ROLE_REQUIRED"
    OWNER_PROTECTED = "OWNER_PROTECTED"
    ROLE_ABOVE_AUTHORITY = "ROLE_ABOVE_AUTHORITY"
    PERMISSION_ESCALATION = "PERMISSION_ESCALATION"


STATUS_BY_REASON = {
    DenyReason.MEMBERSHIP_REQUIRED: 403,
    DenyReason.PERMISSION_DENIED: 403,
    DenyReason.INSUFFICIENT_HIERARCHY: 403,
    DenyReason.PROTECTED_INVARIANT: 403,
    DenyReason.NOT_FOUND: 404,
    DenyReason.VALIDATION_ERROR: 422,
    DenyReason.INFRASTRUCTURE_ERROR: 500,
}


@dataclass(frozen=True)
class Decision:
    allow: bool
    reason: Optional[DenyReason] = None
    permission: Optional[Permission] = None
    invariant: Optional[ProtectedInvariant] = None
    message: Optional[str] = None

    @classmethod
    def allowed(cls) -> "Decision":
        return cls(allow=True)

    @classmethod
    def deny(
        cls,
        reason: DenyReason,
        message: str,
        *,
        permission: Optional[Permission] = None,
        invariant: Optional[ProtectedInvariant] = None,
    ) -> "Decision":
        return cls(allow=False, reason=reason, permission=permission, invariant=invariant, message=message)

    @property
    def retryable(self) -> bool:
        return self.reason is DenyReason.INFRASTRUCTURE_ERROR

    @property
    def status_code(self) -> int:
        if self.allow:
            return 200
        return STATUS_BY_REASON.get(self.reason, 403)

    def to_detail(self) -> dict[str, Any]:
        """Machine-readable body for error responses."""
        detail: dict[str, Any] = {
            "code": (self.reason.value if self.reason else "ALLOWED").lower(),
            "message": self.message or "",
        }
        if self.permission is not None:
            detail["permission"] = self.permission.value
        if self.invariant is not None:
            detail["invariant"] = self.invariant.value
        return detail

    def __bool__(self) -> bool:
        return self.allow
