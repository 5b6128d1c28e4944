from datetime import datetime
from typing import Any

from sqlalchemy import select

from listenlog.db import session_scope
from listenlog.models import Listen
from listenlog.services.analytics_cache import AnalyticsCache
from listenlog.services.analytics_service import AnalyticsService
from listenlog.services.enrichment_service import EnrichmentService, build_enrichment_values


def _track(track_id: str, artist_id: str = "artist-1") -> dict[str, Any]:
    return {
        "id": track_id,
        "popularity": 55,
        "explicit": False,
        "artists": [{"id": artist_id, "name": "Artist"}],
        "album": {
            "name": "Album",
            "release_date": "2019-04-05",
            "images": [{"url": "https://img.example/cover.jpg"}],
        },
    }


class FakeSpotify:
    def __init__(self, tracks: dict[tuple[str, str], dict[str, Any] | None]) -> None:
        self.tracks = tracks
        self.search_calls: list[tuple[str, str]] = []
        self.artist_calls: list[str] = []

    def search_track(self, artist: str, track: str) -> dict[str, Any] | None:
        self.search_calls.append((artist, track))
        result = self.tracks.get((artist, track))
        if isinstance(result, Exception):
            raise result
        return result

    def get_artist(self, artist_id: str) -> dict[str, Any] | None:
        self.artist_calls.append(artist_id)
        return {"id": artist_id, "genres": ["dream pop", "shoegaze"], "popularity": 61}


def _listens(user_id: int) -> list[Listen]:
    with session_scope() as session:
        rows = (
            session.execute(select(Listen).where(Listen.user_id == user_id).order_by(Listen.ts))
            .scalars()
            .all()
        )
        for row in rows:
            session.expunge(row)
        return list(rows)


def test_build_enrichment_values_maps_payloads() -> None:
    values = build_enrichment_values(_track("t-1"), {"genres": ["indie", ""], "popularity": 40})

    assert values["spotify_track_id"] == "t-1"
    assert values["spotify_artist_id"] == "artist-1"
    assert values["album_name"] == "Album"
    assert values["release_date"] == "2019-04-05"
    assert values["album_image_url"] == "https://img.example/cover.jpg"
    assert values["artist_genres"] == ["indie"]
    assert values["artist_popularity"] == 40
    assert values["enriched_at"] is not None


def test_enrich_listens_updates_rows_and_reuses_lookups(create_user, add_listens, log_events) -> None:
    user_id = create_user()
    add_listens(
        user_id,
        [
            {"ts": datetime(2024, 1, 1, 9), "artist": "Artist", "track": "Song"},
            {"ts": datetime(2024, 1, 1, 10), "artist": "Artist", "track": "Song"},
            {"ts": datetime(2024, 1, 1, 11), "artist": "Artist", "track": "Unknown"},
            {"ts": datetime(2024, 1, 1, 12), "artist": None, "track": None},
        ],
    )
    client = FakeSpotify({("Artist", "Song"): _track("t-1"), ("Artist", "Unknown"): None})
    sleeps: list[float] = []
    events = log_events("listenlog.services.enrichment_service")

    stats = EnrichmentService(client=client, delay_ms=100, sleep=sleeps.append).enrich_listens(
        user_id=user_id, limit=10
    )

    assert (stats.total, stats.enriched, stats.skipped, stats.failed) == (3, 2, 1, 0)
    assert sorted(client.search_calls) == [("Artist", "Song"), ("Artist", "Unknown")]
    assert client.artist_calls == ["artist-1"]
    assert sleeps == [0.1, 0.1]
    listens = _listens(user_id)
    assert [listen.spotify_track_id for listen in listens] == ["t-1", "t-1", None, None]
    assert listens[0].artist_genres == ["dream pop", "shoegaze"]
    assert events[-1][0] == "spotify.enrich"
    assert events[-1][1]["status"] == "ok"


def test_enrich_listens_only_waits_between_spotify_calls(create_user, add_listens) -> None:
    user_id = create_user()
    add_listens(
        user_id,
        [
            {"ts": datetime(2024, 1, 1, hour), "artist": "Artist", "track": "Song"}
            for hour in range(9, 14)
        ],
    )
    client = FakeSpotify({("Artist", "Song"): _track("t-1")})
    sleeps: list[float] = []

    stats = EnrichmentService(client=client, delay_ms=250, sleep=sleeps.append).enrich_listens(
        user_id=user_id
    )

    assert stats.enriched == 5
    assert len(client.search_calls) == 1
    assert client.artist_calls == ["artist-1"]
    assert sleeps == [0.25]


def test_enrich_listens_counts_failures_and_continues(create_user, add_listens) -> None:
    user_id = create_user()
    add_listens(
        user_id,
        [
            {"ts": datetime(2024, 1, 1, 9), "artist": "Broken", "track": "Song"},
            {"ts": datetime(2024, 1, 1, 10), "artist": "Artist", "track": "Song"},
        ],
    )
    client = FakeSpotify(
        {("Broken", "Song"): RuntimeError("upstream down"), ("Artist", "Song"): _track("t-1")}
    )

    stats = EnrichmentService(client=client, delay_ms=0).enrich_listens(user_id=user_id)

    assert stats.failed == 1
    assert stats.enriched == 1


def test_enrich_listens_only_touches_requested_user(create_user, add_listens) -> None:
    owner = create_user()
    other = create_user()
    add_listens(owner, [{"ts": datetime(2024, 1, 1), "artist": "Artist", "track": "Song"}])
    add_listens(other, [{"ts": datetime(2024, 1, 1), "artist": "Artist", "track": "Song"}])
    client = FakeSpotify({("Artist", "Song"): _track("t-1")})

    EnrichmentService(client=client, delay_ms=0).enrich_listens(user_id=owner)

    assert _listens(owner)[0].spotify_track_id == "t-1"
    assert _listens(other)[0].spotify_track_id is None


def test_enrich_listens_respects_limit_and_invalidates_cache(create_user, add_listens) -> None:
    user_id = create_user()
    add_listens(
        user_id,
        [
            {"ts": datetime(2024, 1, day), "artist": "Artist", "track": "Song"}
            for day in range(1, 4)
        ],
    )
    cache = AnalyticsCache(max_items=8, ttl=60)
    cache.get_or_compute(user_id, "genres", None, lambda: [])
    service = EnrichmentService(
        client=FakeSpotify({("Artist", "Song"): _track("t-1")}),
        analytics=AnalyticsService(cache=cache),
        delay_ms=0,
    )

    stats = service.enrich_listens(user_id=user_id, limit=2)

    assert stats.total == 2
    assert len(cache) == 0
    assert [listen.spotify_track_id for listen in _listens(user_id)] == [None, "t-1", "t-1"]
