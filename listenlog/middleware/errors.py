"""Exception handlers that turn every failure into the error envelope."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from listenlog.errors import AppError, ErrorCode, InternalServerError, error_response, render_error
from listenlog.logging import get_logger

_logger = get_logger(__name__)

_LOCATION_PREFIXES = frozenset({"body", "query", "path", "header", "cookie"})

_HTTP_STATUS_ERRORS: dict[int, tuple[ErrorCode, str]] = {
    status.HTTP_401_UNAUTHORIZED: (ErrorCode.AUTH_REQUIRED, "Authentication credentials are required."),
    status.HTTP_403_FORBIDDEN: (ErrorCode.FORBIDDEN, "Access denied"),
    status.HTTP_404_NOT_FOUND: (ErrorCode.NOT_FOUND, "Resource not found."),
    status.HTTP_405_METHOD_NOT_ALLOWED: (ErrorCode.VALIDATION_ERROR, "Method not allowed."),
    status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: (ErrorCode.VALIDATION_ERROR, "Request body is too large."),
    status.HTTP_429_TOO_MANY_REQUESTS: (ErrorCode.RATE_LIMITED, "Too many requests."),
}


def _http_error(status_code: int) -> tuple[ErrorCode, str]:
    if status_code in _HTTP_STATUS_ERRORS:
        return _HTTP_STATUS_ERRORS[status_code]
    if status_code in {502, 503, 504}:
        return ErrorCode.DEPENDENCY_ERROR, "Upstream service is unavailable."
    if status_code >= 500:
        return ErrorCode.INTERNAL_ERROR, "An unexpected error occurred."
    return ErrorCode.VALIDATION_ERROR, "Request could not be completed."


def field_name(loc: Sequence[Any]) -> str:
    """``("query", "timeframe")`` becomes ``"timeframe"``; nested parts are dotted."""

    parts = [str(part) for part in loc]
    if parts and parts[0] in _LOCATION_PREFIXES:
        parts = parts[1:]
    return ".".join(parts) or "?"


async def _on_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = []
    for item in exc.errors():
        loc = item.get("loc", ())
        if not isinstance(loc, (list, tuple)):
            loc = (loc,)
        fields.append({"name": field_name(loc), "message": str(item.get("msg", "Invalid input."))})
    return error_response(
        code=ErrorCode.VALIDATION_ERROR,
        message="Request validation failed.",
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        path=request.url.path,
        method=request.method,
        meta={"fields": fields} if fields else None,
    )


async def _on_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code, message = _http_error(exc.status_code)
    if isinstance(exc.detail, str) and exc.detail.strip():
        message = exc.detail
    elif isinstance(exc.detail, Mapping) and isinstance(exc.detail.get("message"), str):
        message = exc.detail["message"]
    return error_response(
        code=code,
        message=message,
        status_code=exc.status_code,
        path=request.url.path,
        method=request.method,
        headers=exc.headers,
    )


async def _on_app_error(request: Request, exc: AppError) -> JSONResponse:
    return render_error(exc, path=request.url.path, method=request.method)


async def _on_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    _logger.exception("Unhandled application error", exc_info=exc)
    return render_error(InternalServerError(), path=request.url.path, method=request.method)


def setup_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RequestValidationError, _on_request_validation)
    app.add_exception_handler(StarletteHTTPException, _on_http_exception)
    app.add_exception_handler(AppError, _on_app_error)
    app.add_exception_handler(Exception, _on_unexpected_error)


__all__ = ["field_name", "setup_exception_handlers"]
