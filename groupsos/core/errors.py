"""
Centralised error handling — exception hierarchy + FastAPI handlers.

Provides:
    • Domain-specific exception classes
    • Consistent JSON error response format
    • Automatic logging of unhandled errors
    • Request context in error responses (non-production)

Usage:
    from groupsos.core.errors import (
        GroupSOSError,
        NoGroupsError,
        NotFoundOrForbidden,
        AlreadyAnswered,
        register_error_handlers,
    )

    raise NotFoundOrForbidden("Alert", alert_id=42)

Rejections (precondition failures and conflicts) are raised before any
side effect happens. Per-recipient delivery failures never surface here;
they are logged by the fan-out engine and reported in its BroadcastReport.
"""

from __future__ import annotations

import logging
import traceback
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from groupsos.core.config import settings

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class GroupSOSError(Exception):
    """Base exception for all application errors."""

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        *,
        status_code: int = 500,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}


class AuthenticationError(GroupSOSError):
    """Missing or unknown session (401)."""

    def __init__(self, message: str = "Session ID required"):
        super().__init__(
            message=message,
            status_code=401,
            error_code="AUTHENTICATION_FAILED",
        )


class NotFoundError(GroupSOSError):
    """Resource not found (404)."""

    def __init__(self, resource: str, **identifiers: Any):
        details = {"resource": resource, **identifiers}
        super().__init__(
            message=f"{resource} not found",
            status_code=404,
            error_code="NOT_FOUND",
            details=details,
        )


class NotFoundOrForbidden(GroupSOSError):
    """
    Resource missing, or outside every group of the acting user (404).

    Both cases share one response so callers cannot probe for alerts
    belonging to groups they are not part of.
    """

    def __init__(self, resource: str, **identifiers: Any):
        super().__init__(
            message=f"{resource} not found",
            status_code=404,
            error_code="NOT_FOUND_OR_FORBIDDEN",
            details={"resource": resource, **identifiers},
        )


class ValidationError(GroupSOSError):
    """Input validation failed (422)."""

    def __init__(self, message: str, *, field: Optional[str] = None, **details: Any):
        d = {**details}
        if field:
            d["field"] = field
        super().__init__(
            message=message,
            status_code=422,
            error_code="VALIDATION_ERROR",
            details=d,
        )


class PreconditionError(GroupSOSError):
    """The caller's state does not allow the action (400)."""

    def __init__(self, message: str, *, error_code: str = "PRECONDITION_FAILED", **details: Any):
        super().__init__(
            message=message,
            status_code=400,
            error_code=error_code,
            details=details,
        )


class NoGroupsError(PreconditionError):
    """Emergency triggered by a user who belongs to no group."""

    def __init__(self, user_id: int):
        super().__init__(
            "You must be a member of at least one group to send alerts",
            error_code="NO_GROUPS",
            user_id=user_id,
        )


class ConflictError(GroupSOSError):
    """The write was already made; existing state left untouched (409)."""

    def __init__(self, message: str, *, error_code: str = "CONFLICT", **details: Any):
        super().__init__(
            message=message,
            status_code=409,
            error_code=error_code,
            details=details,
        )


class AlreadyAnswered(ConflictError):
    def __init__(self, alert_id: int):
        super().__init__(
            f"Alert {alert_id} has already been answered",
            error_code="ALREADY_ANSWERED",
            alert_id=alert_id,
        )


class AlreadyArchived(ConflictError):
    def __init__(self, alert_id: int):
        super().__init__(
            f"Alert {alert_id} is already archived",
            error_code="ALREADY_ARCHIVED",
            alert_id=alert_id,
        )


class AlreadyMember(ConflictError):
    def __init__(self, group_id: int):
        super().__init__(
            "Already a member of this group",
            error_code="ALREADY_MEMBER",
            group_id=group_id,
        )


class PushConfigurationError(GroupSOSError):
    """Web Push requested but VAPID keys are not configured (503)."""

    def __init__(self, message: str = "Push notifications are not configured"):
        super().__init__(
            message=message,
            status_code=503,
            error_code="PUSH_NOT_CONFIGURED",
        )


# ═══════════════════════════════════════════════════════════════════════════
# Error Response Builder
# ═══════════════════════════════════════════════════════════════════════════

def _build_error_response(
    status_code: int,
    error_code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    request: Optional[Request] = None,
) -> JSONResponse:
    """Build a consistent JSON error response."""
    body: Dict[str, Any] = {
        "error": {
            "code": error_code,
            "message": message,
            "status": status_code,
        }
    }

    if details:
        body["error"]["details"] = details

    # Include request path in non-production
    if request and not settings.is_production:
        body["error"]["path"] = str(request.url.path)
        body["error"]["method"] = request.method

    return JSONResponse(status_code=status_code, content=body)


# ═══════════════════════════════════════════════════════════════════════════
# FastAPI Exception Handlers
# ═══════════════════════════════════════════════════════════════════════════

def register_error_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the FastAPI app."""

    @app.exception_handler(GroupSOSError)
    async def handle_app_error(request: Request, exc: GroupSOSError):
        level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
        logger.log(
            level,
            "API Error [%s]: %s | details=%s",
            exc.error_code, exc.message, exc.details,
        )
        return _build_error_response(
            exc.status_code, exc.error_code, exc.message,
            exc.details, request,
        )

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception):
        logger.critical(
            "Unhandled exception: %s\n%s",
            exc, traceback.format_exc(),
        )
        message = str(exc) if settings.DEBUG else "Internal server error"
        return _build_error_response(
            500, "INTERNAL_ERROR", message, request=request,
        )
