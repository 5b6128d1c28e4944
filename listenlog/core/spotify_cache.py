"""Cache handler storing Spotify OAuth tokens per user in ``spotify_tokens``."""

from __future__ import annotations

from collections.abc import Callable
from contextlib import AbstractContextManager
from datetime import UTC, datetime, timedelta
from typing import Any, Mapping

from sqlalchemy import delete, select
from sqlalchemy.orm import Session
from spotipy.oauth2 import CacheHandler

from listenlog.db import session_scope
from listenlog.logging import get_logger
from listenlog.models import SpotifyToken
from listenlog.utils.time import utcnow

__all__ = ["REFRESH_MARGIN", "UserTokenCacheHandler", "needs_refresh"]

_logger = get_logger(__name__)

REFRESH_MARGIN = timedelta(minutes=5)

SessionFactory = Callable[[], AbstractContextManager[Session]]


def needs_refresh(expires_at: datetime, *, now: datetime | None = None) -> bool:
    """Return ``True`` when the token expires within :data:`REFRESH_MARGIN`."""

    current = now or utcnow()
    return expires_at - current <= REFRESH_MARGIN


def _to_epoch(value: datetime) -> int:
    return int(value.replace(tzinfo=UTC).timestamp())


def _from_epoch(value: Any) -> datetime | None:
    try:
        seconds = int(value)
    except (TypeError, ValueError):
        return None
    return datetime.fromtimestamp(seconds, UTC).replace(tzinfo=None)


class UserTokenCacheHandler(CacheHandler):
    """Persist Spotipy token information for a single listenlog user."""

    def __init__(self, user_id: int, *, session_factory: SessionFactory = session_scope) -> None:
        self._user_id = user_id
        self._session_factory = session_factory

    @property
    def user_id(self) -> int:
        return self._user_id

    def get_cached_token(self) -> Mapping[str, Any] | None:
        with self._session_factory() as session:
            record = session.execute(
                select(SpotifyToken).where(SpotifyToken.user_id == self._user_id)
            ).scalar_one_or_none()
            if record is None or not record.access_token:
                return None
            return {
                "access_token": record.access_token,
                "refresh_token": record.refresh_token,
                "expires_at": _to_epoch(record.expires_at),
                "scope": record.scope or "",
                "token_type": "Bearer",
            }

    def save_token_to_cache(self, token_info: Mapping[str, Any]) -> None:
        access_token = token_info.get("access_token")
        if not access_token:
            _logger.warning(
                "Ignoring Spotify token without access_token",
                extra={"event": "spotify.token_cache.invalid"},
            )
            return
        expires_at = _from_epoch(token_info.get("expires_at"))
        if expires_at is None:
            try:
                expires_in = int(token_info.get("expires_in", 0))
            except (TypeError, ValueError):
                expires_in = 0
            expires_at = utcnow() + timedelta(seconds=max(0, expires_in))

        now = utcnow()
        with self._session_factory() as session:
            record = session.execute(
                select(SpotifyToken).where(SpotifyToken.user_id == self._user_id)
            ).scalar_one_or_none()
            if record is None:
                session.add(
                    SpotifyToken(
                        user_id=self._user_id,
                        access_token=str(access_token),
                        refresh_token=token_info.get("refresh_token"),
                        expires_at=expires_at,
                        scope=token_info.get("scope"),
                        created_at=now,
                        updated_at=now,
                    )
                )
            else:
                record.access_token = str(access_token)
                # Refresh responses may omit the refresh token.
                if token_info.get("refresh_token"):
                    record.refresh_token = token_info["refresh_token"]
                record.expires_at = expires_at
                record.scope = token_info.get("scope") or record.scope
                record.updated_at = now

    def clear(self) -> bool:
        with self._session_factory() as session:
            result = session.execute(
                delete(SpotifyToken).where(SpotifyToken.user_id == self._user_id)
            )
            return bool(result.rowcount)
