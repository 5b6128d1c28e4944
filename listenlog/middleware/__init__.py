"""Application middleware registration helpers."""

from __future__ import annotations

from fastapi import FastAPI

from .errors import setup_exception_handlers
from .request_id import RequestIDMiddleware


def install_middleware(app: FastAPI) -> None:
    """Install the middleware stack and the exception handlers on ``app``."""

    app.add_middleware(RequestIDMiddleware, header_name="X-Request-ID")
    setup_exception_handlers(app)


__all__ = ["install_middleware"]
