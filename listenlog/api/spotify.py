"""Spotify enrichment and account-connection endpoints."""

from __future__ import annotations

from time import perf_counter
from typing import Any

from fastapi import APIRouter, Body, Depends, Query, Request, status
from fastapi.responses import RedirectResponse

from listenlog.api._events import emit_api_event
from listenlog.config import AppConfig
from listenlog.dependencies import (
    get_analytics_service,
    get_app_config,
    get_current_user,
    get_enrichment_service,
    get_session_token,
    get_spotify_connect_service,
)
from listenlog.errors import AppError, ValidationAppError
from listenlog.schemas.common import ApiResponse, envelope
from listenlog.schemas.spotify import (
    ConnectionStatusResponse,
    ConnectResponse,
    DisconnectResponse,
    EnrichmentProgressResponse,
    EnrichmentStatsResponse,
    EnrichRequest,
    EnrichResponse,
)
from listenlog.services.analytics_service import AnalyticsService
from listenlog.services.auth_service import AuthenticatedUser
from listenlog.services.spotify_connect_service import SpotifyConnectService

router = APIRouter(prefix="/api/spotify", tags=["Spotify"])

MIN_ENRICH_LIMIT = 1
MAX_ENRICH_LIMIT = 500


def _emit(
    request: Request,
    started: float,
    status_code: int,
    *,
    error: str | None = None,
    meta: dict[str, Any] | None = None,
) -> None:
    emit_api_event(
        request,
        component="api.spotify",
        status_code=status_code,
        status="ok" if error is None else "error",
        duration_ms=(perf_counter() - started) * 1000,
        error=error,
        meta=meta,
    )


@router.post("/enrich", response_model=ApiResponse[EnrichResponse])
def enrich(
    request: Request,
    payload: EnrichRequest | None = Body(default=None),
    user: AuthenticatedUser = Depends(get_current_user),
    config: AppConfig = Depends(get_app_config),
) -> ApiResponse[EnrichResponse]:
    started = perf_counter()
    limit = config.spotify.enrichment_default_limit
    if payload is not None and payload.limit is not None:
        limit = payload.limit
    try:
        if not MIN_ENRICH_LIMIT <= limit <= MAX_ENRICH_LIMIT:
            raise ValidationAppError(
                f"Limit must be between {MIN_ENRICH_LIMIT} and {MAX_ENRICH_LIMIT}",
                meta={"limit": limit},
            )
        service = get_enrichment_service()
        stats = service.enrich_listens(user_id=user.id, limit=limit)
    except AppError as exc:
        _emit(request, started, exc.http_status, error=exc.code.value, meta={"limit": limit})
        raise

    _emit(request, started, status.HTTP_200_OK, meta={"limit": limit, "enriched": stats.enriched})
    return envelope(
        EnrichResponse(
            success=True,
            stats=EnrichmentStatsResponse.model_validate(stats),
            message=f"Enriched {stats.enriched} of {stats.total} listens",
        )
    )


@router.get("/enrich", response_model=ApiResponse[EnrichmentProgressResponse])
def enrichment_progress(
    user: AuthenticatedUser = Depends(get_current_user),
    service: AnalyticsService = Depends(get_analytics_service),
) -> ApiResponse[EnrichmentProgressResponse]:
    progress = service.enrichment_progress(user.id)
    return envelope(EnrichmentProgressResponse.model_validate(progress))


@router.get("/connect", response_model=ApiResponse[ConnectResponse])
def connect(
    request: Request,
    user: AuthenticatedUser = Depends(get_current_user),
    service: SpotifyConnectService = Depends(get_spotify_connect_service),
) -> ApiResponse[ConnectResponse]:
    started = perf_counter()
    token = get_session_token(request) or ""
    try:
        url = service.authorize_url(user_id=user.id, session_token=token)
    except AppError as exc:
        _emit(request, started, exc.http_status, error=exc.code.value)
        raise
    _emit(request, started, status.HTTP_200_OK)
    return envelope(ConnectResponse(authorize_url=url))


@router.get("/callback")
def callback(
    request: Request,
    code: str | None = Query(None),
    state: str | None = Query(None),
    error: str | None = Query(None),
    user: AuthenticatedUser = Depends(get_current_user),
    service: SpotifyConnectService = Depends(get_spotify_connect_service),
) -> RedirectResponse:
    started = perf_counter()
    if error:
        _emit(request, started, status.HTTP_303_SEE_OTHER, error=error)
        return RedirectResponse("/dashboard?spotify=denied", status_code=status.HTTP_303_SEE_OTHER)
    token = get_session_token(request) or ""
    try:
        service.complete(user_id=user.id, session_token=token, code=code, state=state)
    except AppError as exc:
        _emit(request, started, exc.http_status, error=exc.code.value)
        raise
    _emit(request, started, status.HTTP_303_SEE_OTHER)
    return RedirectResponse("/dashboard?spotify=connected", status_code=status.HTTP_303_SEE_OTHER)


@router.get("/status", response_model=ApiResponse[ConnectionStatusResponse])
def connection_status(
    user: AuthenticatedUser = Depends(get_current_user),
    service: SpotifyConnectService = Depends(get_spotify_connect_service),
) -> ApiResponse[ConnectionStatusResponse]:
    return envelope(ConnectionStatusResponse.model_validate(service.status(user_id=user.id)))


@router.delete("/connect", response_model=ApiResponse[DisconnectResponse])
def disconnect(
    user: AuthenticatedUser = Depends(get_current_user),
    service: SpotifyConnectService = Depends(get_spotify_connect_service),
) -> ApiResponse[DisconnectResponse]:
    return envelope(DisconnectResponse(disconnected=service.disconnect(user_id=user.id)))
