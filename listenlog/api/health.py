"""Health endpoints exposing liveness and database/worker status."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from listenlog import __version__
from listenlog.dependencies import get_db, get_file_worker
from listenlog.logging import get_logger
from listenlog.services.job_queue import queue_stats

router = APIRouter(tags=["Health"])
_logger = get_logger(__name__)


@router.get("/live", include_in_schema=False)
async def live() -> dict[str, str]:
    """Return a lightweight liveness response without dependency checks."""

    return {"status": "ok"}


@router.get("/api/health")
def health(request: Request, session: Session = Depends(get_db)) -> JSONResponse:
    """Report database reachability, worker state and queue depth."""

    worker = get_file_worker(request)
    payload: dict[str, Any] = {
        "version": __version__,
        "database": "up",
        "worker": {"running": bool(worker is not None and worker.running)},
        "queue": {},
    }
    try:
        session.execute(text("SELECT 1"))
        payload["queue"] = queue_stats(session)
    except SQLAlchemyError:
        _logger.warning("Database health check failed", exc_info=True)
        payload["database"] = "down"

    ok = payload["database"] == "up"
    status_code = status.HTTP_200_OK if ok else status.HTTP_503_SERVICE_UNAVAILABLE
    return JSONResponse(
        status_code=status_code,
        content={"ok": ok, "data": payload, "error": None},
    )
