"""Link a listenlog account to a Spotify account through OAuth."""

from __future__ import annotations

from collections.abc import Callable
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from datetime import datetime
import hashlib
import hmac
from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session
from spotipy.oauth2 import SpotifyOauthError

from listenlog.config import SpotifyConfig
from listenlog.core.spotify_cache import UserTokenCacheHandler, needs_refresh
from listenlog.core.spotify_client import build_oauth_manager
from listenlog.db import session_scope
from listenlog.errors import DependencyError, ValidationAppError
from listenlog.logging import get_logger
from listenlog.logging_events import log_event
from listenlog.models import SpotifyToken

SessionFactory = Callable[[], AbstractContextManager[Session]]

logger = get_logger(__name__)

_STATE_CONTEXT = b"listenlog.spotify.connect"


class OAuthManager(Protocol):
    def get_authorize_url(self, state: str | None = None) -> str: ...

    def get_access_token(self, code: str | None = None, as_dict: bool = True, check_cache: bool = True) -> Any: ...


OAuthFactory = Callable[[SpotifyConfig, int], OAuthManager]


def sign_state(session_token: str) -> str:
    """Derive the OAuth ``state`` value from the caller's session token."""

    return hmac.new(session_token.encode("utf-8"), _STATE_CONTEXT, hashlib.sha256).hexdigest()


def verify_state(state: str | None, session_token: str) -> bool:
    if not state:
        return False
    return hmac.compare_digest(state, sign_state(session_token))


@dataclass(slots=True)
class ConnectionStatus:
    connected: bool
    expires_at: datetime | None = None
    needs_refresh: bool = False
    scope: str | None = None


@dataclass(slots=True)
class SpotifyConnectService:
    config: SpotifyConfig
    session_factory: SessionFactory = field(default=session_scope, repr=False)
    oauth_factory: OAuthFactory = field(default=build_oauth_manager, repr=False)

    def _manager(self, user_id: int) -> OAuthManager:
        if not self.config.has_oauth_credentials:
            raise DependencyError("Spotify OAuth is not configured")
        return self.oauth_factory(self.config, user_id)

    def authorize_url(self, *, user_id: int, session_token: str) -> str:
        return self._manager(user_id).get_authorize_url(state=sign_state(session_token))

    def complete(self, *, user_id: int, session_token: str, code: str | None, state: str | None) -> None:
        """Exchange ``code`` for tokens; the cache handler persists them."""

        if not verify_state(state, session_token):
            raise ValidationAppError("Invalid OAuth state")
        if not code:
            raise ValidationAppError("Missing authorization code")
        manager = self._manager(user_id)
        try:
            manager.get_access_token(code, as_dict=False, check_cache=False)
        except SpotifyOauthError as exc:
            log_event(
                logger,
                "service.call",
                component="service.spotify_connect",
                operation="exchange_code",
                status="error",
                entity_id=str(user_id),
                error=str(exc),
            )
            raise DependencyError("Spotify authorization failed", status_code=502) from exc
        log_event(
            logger,
            "service.call",
            component="service.spotify_connect",
            operation="exchange_code",
            status="ok",
            entity_id=str(user_id),
        )

    def status(self, *, user_id: int) -> ConnectionStatus:
        with self.session_factory() as session:
            record = session.execute(
                select(SpotifyToken).where(SpotifyToken.user_id == user_id)
            ).scalar_one_or_none()
            if record is None:
                return ConnectionStatus(connected=False)
            return ConnectionStatus(
                connected=True,
                expires_at=record.expires_at,
                needs_refresh=needs_refresh(record.expires_at),
                scope=record.scope,
            )

    def disconnect(self, *, user_id: int) -> bool:
        removed = UserTokenCacheHandler(user_id, session_factory=self.session_factory).clear()
        log_event(
            logger,
            "service.call",
            component="service.spotify_connect",
            operation="disconnect",
            status="ok",
            entity_id=str(user_id),
            removed=removed,
        )
        return removed


__all__ = [
    "ConnectionStatus",
    "SpotifyConnectService",
    "sign_state",
    "verify_state",
]
