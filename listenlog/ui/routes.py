from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

from fastapi import APIRouter, Request, Response, status
from fastapi.responses import RedirectResponse
from fastapi.templating import Jinja2Templates

from listenlog import __version__
from listenlog.dependencies import get_app_config, get_auth_service, get_session_token
from listenlog.errors import AuthenticationRequiredError
from listenlog.logging import get_logger
from listenlog.services.auth_service import AuthenticatedUser
from listenlog.ui.assets import asset_url

logger = get_logger("listenlog.ui.router")

templates = Jinja2Templates(directory=str(Path(__file__).resolve().parent / "templates"))
templates.env.globals["asset_url"] = asset_url
templates.env.globals["app_version"] = __version__

router = APIRouter(include_in_schema=False)


async def _session_user(request: Request) -> AuthenticatedUser | None:
    token = get_session_token(request)
    if token is None:
        return None
    try:
        return await asyncio.to_thread(get_auth_service().resolve_token, token)
    except AuthenticationRequiredError:
        return None


def _context(user: AuthenticatedUser | None, **extra: Any) -> dict[str, Any]:
    upload = get_app_config().upload
    context: dict[str, Any] = {
        "user": user,
        "max_file_mb": upload.max_file_mb,
        "max_zip_mb": upload.max_zip_mb,
    }
    context.update(extra)
    return context


def _to_login() -> RedirectResponse:
    return RedirectResponse("/login", status_code=status.HTTP_303_SEE_OTHER)


@router.get("/")
async def index(request: Request) -> Response:
    user = await _session_user(request)
    target = "/dashboard" if user is not None else "/login"
    return RedirectResponse(target, status_code=status.HTTP_303_SEE_OTHER)


@router.get("/login")
async def login_page(request: Request) -> Response:
    if await _session_user(request) is not None:
        return RedirectResponse("/dashboard", status_code=status.HTTP_303_SEE_OTHER)
    return templates.TemplateResponse(request, "pages/login.j2", _context(None, page="login"))


@router.get("/signup")
async def signup_page(request: Request) -> Response:
    if await _session_user(request) is not None:
        return RedirectResponse("/dashboard", status_code=status.HTTP_303_SEE_OTHER)
    return templates.TemplateResponse(request, "pages/signup.j2", _context(None, page="signup"))


@router.get("/upload")
async def upload_page(request: Request) -> Response:
    user = await _session_user(request)
    if user is None:
        return _to_login()
    return templates.TemplateResponse(request, "pages/upload.j2", _context(user, page="upload"))


@router.get("/dashboard")
async def dashboard_page(request: Request) -> Response:
    user = await _session_user(request)
    if user is None:
        return _to_login()
    spotify_state = request.query_params.get("spotify")
    return templates.TemplateResponse(
        request,
        "pages/dashboard.j2",
        _context(user, page="dashboard", spotify_state=spotify_state),
    )


__all__ = ["router", "templates"]
