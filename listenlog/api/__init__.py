"""HTTP API routers."""

from __future__ import annotations

from fastapi import APIRouter

from listenlog.api import analytics, auth, health, spotify, uploads

api_router = APIRouter()
for module in (health, auth, uploads, analytics, spotify):
    api_router.include_router(module.router)

__all__ = ["api_router"]
