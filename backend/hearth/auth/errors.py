from __future__ import annotations

from typing import Optional


class AuthzError(Exception):
    """Base class for authorization-core failures."""


class ValidationError(AuthzError):
    """Malformed identifier or request shape."""


class NotFoundError(AuthzError):
    """Tenant, role or member is absent."""

    def __init__(self, kind: str, ref: object):
        self.kind = kind
        self.ref = ref
        super().__init__(f"{kind} not found: {ref}")


class StoreError(AuthzError):
    """Raised by Store implementations when the backing store fails."""


class InfrastructureError(AuthzError):
    """Store unreachable, timed out or failed mid-read. Eligible for retry."""

    def __init__(self, cause: Optional[BaseException] = None, message: Optional[str] = None):
        self.cause = cause
        super().__init__(message or f"store failure: {cause!r}")


class ConflictError(AuthzError):
    """A write lost a race against a concurrent write (unique constraint)."""
