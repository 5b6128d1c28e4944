"""Request-level structured logging shared by the API routers."""

from __future__ import annotations

from typing import Any

from fastapi import Request

from listenlog.logging import get_logger
from listenlog.logging_events import log_event

_logger = get_logger("listenlog.api")


def emit_api_event(
    request: Request,
    *,
    component: str,
    status_code: int,
    status: str,
    duration_ms: float,
    error: str | None = None,
    meta: dict[str, Any] | None = None,
) -> None:
    payload: dict[str, Any] = {
        "component": component,
        "status": status,
        "method": request.method,
        "path": request.url.path,
        "status_code": status_code,
        "duration_ms": round(duration_ms, 3),
        "entity_id": getattr(request.state, "request_id", None),
        "user_id": getattr(request.state, "user_id", None),
    }
    if error:
        payload["error"] = error
    if meta:
        payload["meta"] = meta
    log_event(_logger, "api.request", **payload)


__all__ = ["emit_api_event"]
