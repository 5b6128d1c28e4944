"""FastAPI dependency providers."""

from __future__ import annotations

import asyncio
from collections.abc import Generator
from functools import lru_cache
from pathlib import Path
from typing import TYPE_CHECKING

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from listenlog.config import AppConfig, load_config
from listenlog.core.spotify_client import SpotifyClient
from listenlog.db import get_session
from listenlog.errors import AuthenticationRequiredError, DependencyError
from listenlog.logging import get_logger
from listenlog.services.analytics_cache import AnalyticsCache
from listenlog.services.analytics_service import AnalyticsService
from listenlog.services.auth_service import AuthenticatedUser, AuthService
from listenlog.services.enrichment_service import EnrichmentService
from listenlog.services.spotify_connect_service import SpotifyConnectService
from listenlog.services.storage import FileStorage
from listenlog.services.upload_service import UploadService

if TYPE_CHECKING:  # pragma: no cover - import hints only for static analysis
    from listenlog.workers.file_worker import FileProcessingWorker

logger = get_logger(__name__)


@lru_cache
def get_app_config() -> AppConfig:
    return load_config()


@lru_cache
def get_file_storage() -> FileStorage:
    return FileStorage(Path(get_app_config().storage.root))


@lru_cache
def get_analytics_cache() -> AnalyticsCache:
    config = get_app_config().analytics
    return AnalyticsCache(max_items=config.cache_max_items, ttl=config.cache_ttl_s)


@lru_cache
def get_analytics_service() -> AnalyticsService:
    return AnalyticsService(cache=get_analytics_cache())


@lru_cache
def get_auth_service() -> AuthService:
    return AuthService(get_app_config().security)


@lru_cache
def get_spotify_client() -> SpotifyClient | None:
    config = get_app_config().spotify
    if not config.has_client_credentials:
        logger.info(
            "Spotify client is disabled due to missing credentials",
            extra={"event": "spotify.client_disabled"},
        )
        return None
    try:
        return SpotifyClient(config)
    except ValueError:
        logger.warning(
            "Spotify client initialisation failed due to incomplete credentials",
            extra={"event": "spotify.client_invalid_config"},
        )
        return None


def get_enrichment_service() -> EnrichmentService:
    client = get_spotify_client()
    if client is None:
        raise DependencyError("Spotify credentials are not configured")
    return EnrichmentService(
        client=client,
        analytics=get_analytics_service(),
        delay_ms=get_app_config().spotify.enrichment_delay_ms,
    )


def get_spotify_connect_service() -> SpotifyConnectService:
    return SpotifyConnectService(get_app_config().spotify)


def get_file_worker(request: Request) -> FileProcessingWorker | None:
    return getattr(request.app.state, "file_worker", None)


def get_upload_service(request: Request) -> UploadService:
    config = get_app_config()
    worker = get_file_worker(request)
    return UploadService(
        storage=get_file_storage(),
        limits=config.upload,
        max_retries=config.worker.max_retries,
        notifier=worker.notify if worker is not None else None,
    )


def get_db() -> Generator[Session, None, None]:
    session = get_session()
    try:
        yield session
    finally:
        session.close()


def get_session_token(request: Request) -> str | None:
    """Return the presented session token from the bearer header or cookie."""

    header = request.headers.get("Authorization")
    if header:
        scheme, _, value = header.partition(" ")
        if scheme.lower() == "bearer" and value.strip():
            return value.strip()
    cookie = request.cookies.get(get_app_config().security.session_cookie_name)
    if cookie and cookie.strip():
        return cookie.strip()
    return None


async def get_current_user(
    request: Request,
    auth: AuthService = Depends(get_auth_service),
) -> AuthenticatedUser:
    token = get_session_token(request)
    if token is None:
        raise AuthenticationRequiredError()
    user = await asyncio.to_thread(auth.resolve_token, token)
    request.state.user_id = user.id
    return user


_CACHED_PROVIDERS = (
    get_app_config,
    get_file_storage,
    get_analytics_cache,
    get_analytics_service,
    get_auth_service,
    get_spotify_client,
)


def clear_dependency_caches() -> None:
    """Drop memoised providers so the next call re-reads configuration."""

    for provider in _CACHED_PROVIDERS:
        provider.cache_clear()


__all__ = [
    "clear_dependency_caches",
    "get_analytics_service",
    "get_app_config",
    "get_auth_service",
    "get_current_user",
    "get_db",
    "get_enrichment_service",
    "get_file_storage",
    "get_file_worker",
    "get_session_token",
    "get_spotify_client",
    "get_spotify_connect_service",
    "get_upload_service",
]
