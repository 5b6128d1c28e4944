"""Entry point for the listenlog FastAPI application."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles
from starlette.responses import Response
from starlette.types import Scope

from listenlog import __version__
from listenlog.api import api_router
from listenlog.config import AppConfig
from listenlog.db import init_db
from listenlog.dependencies import get_app_config
from listenlog.logging import configure_logging, get_logger
from listenlog.middleware import install_middleware
from listenlog.ui.assets import STATIC_DIR
from listenlog.ui.routes import router as ui_router
from listenlog.workers.file_worker import FileProcessingWorker, build_file_worker

logger = get_logger(__name__)


class ImmutableStaticFiles(StaticFiles):
    cache_control_header = "max-age=86400, immutable"

    async def get_response(self, path: str, scope: Scope) -> Response:  # type: ignore[override]
        response = await super().get_response(path, scope)
        if response.status_code < 400:
            response.headers.setdefault("Cache-Control", self.cache_control_header)
        return response


def _should_initialize_database(config: AppConfig) -> bool:
    override = config.environment.init_db_override
    if override is not None:
        return override
    return not config.environment.is_test


def _should_start_workers(config: AppConfig) -> bool:
    return not config.environment.disable_workers


def _configure_application(config: AppConfig) -> None:
    configure_logging(config.logging.level, config.logging.log_file)
    if _should_initialize_database(config):
        init_db()
        logger.info("Database initialised")
    else:
        logger.info(
            "Skipping database initialisation",
            extra={"event": "database.init_skipped", "profile": config.environment.profile},
        )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    config = get_app_config()
    _configure_application(config)
    app.state.config_snapshot = config

    worker: FileProcessingWorker | None = None
    if _should_start_workers(config):
        worker = build_file_worker(config)
        await worker.start()
    app.state.file_worker = worker
    logger.info(
        "Worker configuration resolved",
        extra={
            "event": "worker.config",
            "workers_enabled": worker is not None,
            "poll_interval_s": config.worker.poll_interval_s,
            "batch_size": config.worker.batch_size,
        },
    )

    try:
        yield
    finally:
        if worker is not None:
            await worker.stop()
        app.state.file_worker = None


def create_app() -> FastAPI:
    application = FastAPI(
        title="listenlog",
        version=__version__,
        description="Spotify listening-history dashboard API.",
        lifespan=lifespan,
    )
    application.state.file_worker = None
    install_middleware(application)
    application.include_router(api_router)
    application.include_router(ui_router)
    application.mount("/static", ImmutableStaticFiles(directory=STATIC_DIR), name="static")
    return application


app = create_app()


def run() -> None:
    """Serve the application with uvicorn."""

    import uvicorn

    from listenlog.config import get_env

    host = get_env("LISTENLOG_HOST", "127.0.0.1") or "127.0.0.1"
    port = int(get_env("LISTENLOG_PORT", "8000") or "8000")
    uvicorn.run("listenlog.main:app", host=host, port=port)


__all__ = ["app", "create_app", "lifespan"]
