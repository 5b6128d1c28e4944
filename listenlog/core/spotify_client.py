"""Spotify client wrapper used by listenlog."""

from __future__ import annotations

import threading
import time
from typing import Any, Callable, Dict, List, Optional

import spotipy
from spotipy import Spotify
from spotipy.exceptions import SpotifyException
from spotipy.oauth2 import SpotifyClientCredentials, SpotifyOAuth

from listenlog.config import SpotifyConfig
from listenlog.core.spotify_cache import UserTokenCacheHandler
from listenlog.logging import get_logger

logger = get_logger(__name__)

_RETRY_STATUSES = {429, 502, 503}
MAX_ARTIST_IDS = 50
MAX_RECENTLY_PLAYED = 50


def build_oauth_manager(config: SpotifyConfig, user_id: int) -> SpotifyOAuth:
    """Return an OAuth manager whose tokens are cached for ``user_id``."""

    if not config.has_oauth_credentials:
        raise ValueError("Spotify OAuth configuration is incomplete")
    return SpotifyOAuth(
        client_id=config.client_id,
        client_secret=config.client_secret,
        redirect_uri=config.redirect_uri,
        scope=config.scope,
        cache_handler=UserTokenCacheHandler(user_id),
        open_browser=False,
    )


class SpotifyClient:
    """High level client around Spotipy with rate limiting and retries."""

    def __init__(
        self,
        config: SpotifyConfig,
        client: Optional[Spotify] = None,
        rate_limit_seconds: float = 0.2,
        max_retries: int = 3,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._config = config
        self._rate_limit_seconds = rate_limit_seconds
        self._max_retries = max(1, max_retries)
        self._sleep = sleep
        self._lock = threading.Lock()
        self._last_request_time = 0.0

        if client is not None:
            self._client = client
        else:
            if not config.has_client_credentials:
                raise ValueError("Spotify configuration is incomplete")
            auth_manager = SpotifyClientCredentials(
                client_id=config.client_id,
                client_secret=config.client_secret,
            )
            self._client = spotipy.Spotify(auth_manager=auth_manager)

    @classmethod
    def for_user(cls, config: SpotifyConfig, user_id: int, **kwargs: Any) -> "SpotifyClient":
        """Build a client that acts on behalf of a connected user."""

        auth_manager = build_oauth_manager(config, user_id)
        return cls(config, client=spotipy.Spotify(auth_manager=auth_manager), **kwargs)

    def _respect_rate_limit(self) -> None:
        with self._lock:
            now = time.monotonic()
            elapsed = now - self._last_request_time
            if elapsed < self._rate_limit_seconds:
                self._sleep(self._rate_limit_seconds - elapsed)
            self._last_request_time = time.monotonic()

    def _execute(self, func, *args, **kwargs):
        backoff = 0.5
        for attempt in range(1, self._max_retries + 1):
            self._respect_rate_limit()
            try:
                return func(*args, **kwargs)
            except SpotifyException as exc:
                status = getattr(exc, "http_status", None)
                if status not in _RETRY_STATUSES or attempt == self._max_retries:
                    logger.error("Spotify API request failed", exc_info=exc)
                    raise
                logger.warning("Retrying Spotify API request due to status %s", status)
                self._sleep(backoff)
                backoff *= 2

    def search_track(self, artist: str, track: str) -> Dict[str, Any] | None:
        """Return the best search hit for ``artist`` and ``track`` or ``None``."""

        query = f"artist:{artist} track:{track}"
        payload = self._execute(self._client.search, q=query, type="track", limit=1)
        items = ((payload or {}).get("tracks") or {}).get("items") or []
        return items[0] if items else None

    def get_track(self, track_id: str) -> Dict[str, Any] | None:
        return self._execute(self._client.track, track_id)

    def get_artist(self, artist_id: str) -> Dict[str, Any] | None:
        return self._execute(self._client.artist, artist_id)

    def get_artists(self, artist_ids: List[str]) -> List[Dict[str, Any]]:
        if not artist_ids:
            return []
        if len(artist_ids) > MAX_ARTIST_IDS:
            raise ValueError(f"At most {MAX_ARTIST_IDS} artist ids can be requested at once")
        payload = self._execute(self._client.artists, artist_ids)
        return [item for item in (payload or {}).get("artists") or [] if item]

    def recently_played(self, limit: int = MAX_RECENTLY_PLAYED) -> List[Dict[str, Any]]:
        bounded = max(1, min(int(limit), MAX_RECENTLY_PLAYED))
        payload = self._execute(self._client.current_user_recently_played, limit=bounded)
        return list((payload or {}).get("items") or [])


__all__ = ["SpotifyClient", "build_oauth_manager"]
