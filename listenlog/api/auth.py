"""Account signup, signin and session endpoints."""

from __future__ import annotations

from time import perf_counter

from fastapi import APIRouter, Depends, Request, Response, status

from listenlog.api._events import emit_api_event
from listenlog.config import AppConfig
from listenlog.dependencies import (
    get_app_config,
    get_auth_service,
    get_current_user,
    get_session_token,
)
from listenlog.errors import AppError
from listenlog.schemas.auth import Credentials, SessionResponse, SignoutResponse, UserResponse
from listenlog.schemas.common import ApiResponse, envelope
from listenlog.services.auth_service import AuthenticatedUser, AuthService

router = APIRouter(prefix="/api/auth", tags=["Auth"])


def _emit(request: Request, started: float, status_code: int, *, error: str | None = None) -> None:
    emit_api_event(
        request,
        component="api.auth",
        status_code=status_code,
        status="ok" if error is None else "error",
        duration_ms=(perf_counter() - started) * 1000,
        error=error,
    )


@router.post(
    "/signup",
    response_model=ApiResponse[UserResponse],
    status_code=status.HTTP_201_CREATED,
)
def signup(
    payload: Credentials,
    request: Request,
    service: AuthService = Depends(get_auth_service),
) -> ApiResponse[UserResponse]:
    started = perf_counter()
    try:
        user = service.signup(email=payload.email, password=payload.password)
    except AppError as exc:
        _emit(request, started, exc.http_status, error=exc.code.value)
        raise
    _emit(request, started, status.HTTP_201_CREATED)
    return envelope(UserResponse.model_validate(user))


@router.post("/signin", response_model=ApiResponse[SessionResponse])
def signin(
    payload: Credentials,
    request: Request,
    response: Response,
    service: AuthService = Depends(get_auth_service),
    config: AppConfig = Depends(get_app_config),
) -> ApiResponse[SessionResponse]:
    started = perf_counter()
    try:
        issued = service.signin(email=payload.email, password=payload.password)
    except AppError as exc:
        _emit(request, started, exc.http_status, error=exc.code.value)
        raise
    response.set_cookie(
        config.security.session_cookie_name,
        issued.token,
        max_age=config.security.session_ttl_hours * 3600,
        httponly=True,
        samesite="lax",
        secure=config.security.cookie_secure,
        path="/",
    )
    _emit(request, started, status.HTTP_200_OK)
    return envelope(SessionResponse.model_validate(issued))


@router.post("/signout", response_model=ApiResponse[SignoutResponse])
def signout(
    request: Request,
    response: Response,
    service: AuthService = Depends(get_auth_service),
    config: AppConfig = Depends(get_app_config),
) -> ApiResponse[SignoutResponse]:
    started = perf_counter()
    token = get_session_token(request)
    removed = service.signout(token) if token else False
    response.delete_cookie(config.security.session_cookie_name, path="/")
    _emit(request, started, status.HTTP_200_OK)
    return envelope(SignoutResponse(signed_out=removed))


@router.get("/me", response_model=ApiResponse[UserResponse])
def me(user: AuthenticatedUser = Depends(get_current_user)) -> ApiResponse[UserResponse]:
    return envelope(UserResponse.model_validate(user))
