"""Application errors and the JSON error envelope shared by every endpoint."""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
import logging
from typing import Any, ClassVar
from uuid import uuid4

from fastapi import status
from fastapi.responses import JSONResponse

from listenlog.config import get_env
from listenlog.logging import get_logger
from listenlog.logging_events import log_event

_logger = get_logger(__name__)


class ErrorCode(str, Enum):
    """Error codes exposed in the ``error.code`` field of failed responses."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    AUTH_REQUIRED = "AUTH_REQUIRED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    RATE_LIMITED = "RATE_LIMITED"
    DEPENDENCY_ERROR = "DEPENDENCY_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class AppError(Exception):
    """Base class for errors that map onto a public error response.

    Subclasses pick the code, the HTTP status and the default message; callers
    may override the status for a single raise (``409`` for a conflicting
    signup, ``502`` for a failed upstream exchange).
    """

    code: ClassVar[ErrorCode] = ErrorCode.INTERNAL_ERROR
    default_status: ClassVar[int] = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: ClassVar[str] = "An unexpected error occurred."

    def __init__(
        self,
        message: str | None = None,
        *,
        status_code: int | None = None,
        meta: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)
        self.http_status = status_code or self.default_status
        self.meta = dict(meta) if meta is not None else None
        self.headers = dict(headers) if headers is not None else None


class ValidationAppError(AppError):
    code = ErrorCode.VALIDATION_ERROR
    default_status = status.HTTP_400_BAD_REQUEST
    default_message = "Request validation failed."


class AuthenticationRequiredError(AppError):
    code = ErrorCode.AUTH_REQUIRED
    default_status = status.HTTP_401_UNAUTHORIZED
    default_message = "Authentication credentials are required."

    def __init__(self, message: str | None = None, *, meta: Mapping[str, Any] | None = None) -> None:
        super().__init__(message, meta=meta, headers={"WWW-Authenticate": "Bearer"})


class PermissionDeniedError(AppError):
    code = ErrorCode.FORBIDDEN
    default_status = status.HTTP_403_FORBIDDEN
    default_message = "Access denied"


class NotFoundError(AppError):
    code = ErrorCode.NOT_FOUND
    default_status = status.HTTP_404_NOT_FOUND
    default_message = "Resource not found."


class DependencyError(AppError):
    """Spotify or another upstream is unconfigured or failing."""

    code = ErrorCode.DEPENDENCY_ERROR
    default_status = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Upstream service is unavailable."


class InternalServerError(AppError):
    pass


def _debug_details_enabled() -> bool:
    raw = get_env("ERRORS_DEBUG_DETAILS") or ""
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _log_level(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code in {status.HTTP_429_TOO_MANY_REQUESTS, 502, 503, 504}:
        return logging.WARNING
    return logging.INFO


def error_response(
    *,
    code: ErrorCode,
    message: str,
    status_code: int,
    path: str,
    method: str,
    meta: Mapping[str, Any] | None = None,
    headers: Mapping[str, str] | None = None,
) -> JSONResponse:
    """Render ``{"ok": false, "error": {...}}`` with an ``X-Debug-Id`` header."""

    debug_id = uuid4().hex
    details = dict(meta or {})
    if _debug_details_enabled():
        details.setdefault("debug_id", debug_id)

    error: dict[str, Any] = {"code": code.value, "message": message}
    if details:
        error["meta"] = details

    response = JSONResponse(status_code=status_code, content={"ok": False, "error": error})
    response.headers["X-Debug-Id"] = debug_id
    for name, value in (headers or {}).items():
        response.headers[name] = value

    log_event(
        _logger,
        "api.error",
        level=_log_level(status_code),
        code=code.value,
        status_code=status_code,
        path=path,
        method=method,
        debug_id=debug_id,
    )
    return response


def render_error(exc: AppError, *, path: str, method: str) -> JSONResponse:
    return error_response(
        code=exc.code,
        message=exc.message,
        status_code=exc.http_status,
        path=path,
        method=method,
        meta=exc.meta,
        headers=exc.headers,
    )


__all__ = [
    "AppError",
    "AuthenticationRequiredError",
    "DependencyError",
    "ErrorCode",
    "InternalServerError",
    "NotFoundError",
    "PermissionDeniedError",
    "ValidationAppError",
    "error_response",
    "render_error",
]
