"""Enrich stored listens with Spotify catalogue metadata."""

from __future__ import annotations

from collections.abc import Callable
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
import time
from typing import Any, Protocol

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from listenlog.db import session_scope
from listenlog.logging import get_logger
from listenlog.logging_events import log_event
from listenlog.models import Listen
from listenlog.services.analytics_service import AnalyticsService
from listenlog.utils.time import utcnow

SessionFactory = Callable[[], AbstractContextManager[Session]]

logger = get_logger(__name__)

DEFAULT_DELAY_MS = 350


class TrackLookupClient(Protocol):
    def search_track(self, artist: str, track: str) -> dict[str, Any] | None: ...

    def get_artist(self, artist_id: str) -> dict[str, Any] | None: ...


@dataclass(slots=True)
class EnrichmentStats:
    total: int = 0
    enriched: int = 0
    failed: int = 0
    skipped: int = 0


@dataclass(slots=True)
class _PendingListen:
    id: int
    user_id: int
    artist: str
    track: str


def _first_image_url(album: dict[str, Any]) -> str | None:
    images = album.get("images")
    if not isinstance(images, list) or not images:
        return None
    first = images[0]
    if isinstance(first, dict) and first.get("url"):
        return str(first["url"])
    return None


def _clean_genres(payload: Any) -> list[str]:
    if not isinstance(payload, list):
        return []
    return [str(item) for item in payload if isinstance(item, str) and item.strip()]


def build_enrichment_values(
    track: dict[str, Any], artist: dict[str, Any] | None
) -> dict[str, Any]:
    """Map Spotify track/artist payloads onto ``Listen`` enrichment columns."""

    album = track.get("album") if isinstance(track.get("album"), dict) else {}
    artists = track.get("artists") if isinstance(track.get("artists"), list) else []
    first_artist = artists[0] if artists and isinstance(artists[0], dict) else {}
    artist = artist or {}
    return {
        "spotify_track_id": track.get("id"),
        "spotify_artist_id": first_artist.get("id"),
        "album_name": album.get("name"),
        "release_date": album.get("release_date"),
        "popularity": track.get("popularity"),
        "explicit": track.get("explicit"),
        "artist_genres": _clean_genres(artist.get("genres")),
        "artist_popularity": artist.get("popularity"),
        "album_image_url": _first_image_url(album),
        "enriched_at": utcnow(),
    }


@dataclass(slots=True)
class EnrichmentService:
    """Look up unenriched listens on Spotify and store what was found."""

    client: TrackLookupClient
    session_factory: SessionFactory = field(default=session_scope, repr=False)
    analytics: AnalyticsService | None = field(default=None, repr=False)
    delay_ms: int = DEFAULT_DELAY_MS
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def enrich_listens(self, *, user_id: int | None = None, limit: int = 100) -> EnrichmentStats:
        pending = self._load_pending(user_id, limit)
        stats = EnrichmentStats(total=len(pending))
        tracks: dict[tuple[str, str], dict[str, Any] | None] = {}
        artists: dict[str, dict[str, Any] | None] = {}
        touched_users: set[int] = set()
        started = time.perf_counter()

        api_calls = 0

        def lookup(method: Callable[..., Any], *args: Any) -> Any:
            nonlocal api_calls
            # Throttle real Spotify calls only; memoised hits go straight through.
            if api_calls and self.delay_ms > 0:
                self.sleep(self.delay_ms / 1000)
            api_calls += 1
            return method(*args)

        for listen in pending:
            try:
                key = (listen.artist, listen.track)
                if key not in tracks:
                    tracks[key] = lookup(self.client.search_track, listen.artist, listen.track)
                track = tracks[key]
                if not track or not track.get("id"):
                    stats.skipped += 1
                    continue

                artist_payload: dict[str, Any] | None = None
                track_artists = track.get("artists") or []
                artist_id = track_artists[0].get("id") if track_artists else None
                if artist_id:
                    if artist_id not in artists:
                        artists[artist_id] = lookup(self.client.get_artist, artist_id)
                    artist_payload = artists[artist_id]

                values = build_enrichment_values(track, artist_payload)
                with self.session_factory() as session:
                    session.execute(update(Listen).where(Listen.id == listen.id).values(**values))
            except Exception as exc:
                stats.failed += 1
                logger.warning(
                    "Failed to enrich listen %s (%s - %s): %s",
                    listen.id,
                    listen.artist,
                    listen.track,
                    exc,
                )
                continue
            stats.enriched += 1
            touched_users.add(listen.user_id)

        if self.analytics is not None:
            for touched in touched_users:
                self.analytics.invalidate(touched)

        log_event(
            logger,
            "spotify.enrich",
            component="service.enrichment",
            status="ok" if not stats.failed else "partial",
            entity_id=str(user_id) if user_id is not None else None,
            total=stats.total,
            enriched=stats.enriched,
            failed=stats.failed,
            skipped=stats.skipped,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return stats

    def _load_pending(self, user_id: int | None, limit: int) -> list[_PendingListen]:
        conditions = [
            Listen.spotify_track_id.is_(None),
            Listen.artist.is_not(None),
            Listen.track.is_not(None),
        ]
        if user_id is not None:
            conditions.append(Listen.user_id == user_id)
        with self.session_factory() as session:
            rows = session.execute(
                select(Listen.id, Listen.user_id, Listen.artist, Listen.track)
                .where(*conditions)
                .order_by(Listen.ts.desc(), Listen.id.desc())
                .limit(max(1, limit))
            ).all()
        return [
            _PendingListen(id=row.id, user_id=row.user_id, artist=row.artist, track=row.track)
            for row in rows
        ]


__all__ = ["EnrichmentService", "EnrichmentStats", "build_enrichment_values"]
