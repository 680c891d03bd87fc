"""
Maps authorization-core errors raised by store writes onto HTTP responses.

Bodies use the same {"detail": {"code", "message"}} shape as the
HTTPExceptions raised for denied decisions.
"""

from __future__ import annotations

import logging

from fastapi import Request, status
from fastapi.responses import JSONResponse

from hearth.auth.errors import (
    AuthzError,
    ConflictError,
    InfrastructureError,
    NotFoundError,
    StoreError,
    ValidationError,
)

logger = logging.getLogger(__name__)


def status_for(exc: AuthzError) -> int:
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, ConflictError):
        return status.HTTP_409_CONFLICT
    if isinstance(exc, ValidationError):
        return status.HTTP_422_UNPROCESSABLE_ENTITY
    if isinstance(exc, (StoreError, InfrastructureError)):
        return status.HTTP_500_INTERNAL_SERVER_ERROR
    return status.HTTP_400_BAD_REQUEST


def code_for(exc: AuthzError) -> str:
    if isinstance(exc, NotFoundError):
        return "not_found"
    if isinstance(exc, ConflictError):
        return "conflict"
    if isinstance(exc, ValidationError):
        return "validation_error"
    if isinstance(exc, (StoreError, InfrastructureError)):
        return "infrastructure_error"
    return "authz_error"


async def authz_error_handler(request: Request, exc: AuthzError) -> JSONResponse:
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error("store failure on %s %s: %s", request.method, request.url.path, exc)
        message = "Internal server error"
    else:
        message = str(exc)
    return JSONResponse(
        status_code=status_code,
        content={"detail": {"code": code_for(exc), "message": message}},
    )
