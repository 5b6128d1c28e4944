from datetime import date, datetime

import pytest

from listenlog.errors import ValidationAppError
from listenlog.services.analytics_cache import AnalyticsCache
from listenlog.services.analytics_service import AnalyticsService, compute_streaks
from listenlog.utils.timeframes import timeframe_to_params

ALL = timeframe_to_params("all")
YEAR_2024 = timeframe_to_params("year", 2024)
JAN_2024 = timeframe_to_params("month", 2024, 1)


@pytest.fixture()
def listener(create_user, add_listens) -> int:
    user_id = create_user()
    add_listens(
        user_id,
        [
            {"ts": datetime(2023, 12, 31, 23, 0), "artist": "A", "track": "T1", "ms_played": 3_600_000},
            {"ts": datetime(2024, 1, 1, 10, 0), "artist": "A", "track": "T1", "ms_played": 1_800_000},
            {"ts": datetime(2024, 1, 2, 10, 0), "artist": "B", "track": "T2", "ms_played": 1_800_000},
            {"ts": datetime(2024, 1, 3, 20, 0), "artist": "B", "track": "T3", "ms_played": 600_000},
            {"ts": datetime(2024, 1, 3, 21, 0), "artist": None, "track": None, "ms_played": 5_000_000},
        ],
    )
    return user_id


@pytest.fixture()
def enriched_listener(create_user, add_listens) -> int:
    user_id = create_user()
    add_listens(
        user_id,
        [
            {
                "ts": datetime(2024, 6, 1, 10, 0),
                "artist": "X",
                "track": "S1",
                "ms_played": 3_600_000,
                "spotify_track_id": "t1",
                "artist_genres": ["rock", "indie"],
                "release_date": "2024-05-01",
            },
            {
                "ts": datetime(2024, 6, 2, 10, 0),
                "artist": "Y",
                "track": "S2",
                "ms_played": 1_800_000,
                "spotify_track_id": "t2",
                "artist_genres": ["rock"],
                "release_date": "1999",
            },
            {"ts": datetime(2024, 6, 3, 10, 0), "artist": "Z", "track": "S3", "ms_played": 1_800_000},
        ],
    )
    return user_id


@pytest.fixture()
def service() -> AnalyticsService:
    return AnalyticsService()


def test_dashboard_summary_all_time(service, listener) -> None:
    summary = service.dashboard_summary(listener, ALL)

    assert summary.total_hours == 2.2
    assert summary.total_listens == 4
    assert summary.unique_artists == 2
    assert summary.unique_tracks == 3
    assert summary.top_artist == "A"
    assert summary.most_active_year == 2024


def test_dashboard_summary_respects_timeframe(service, listener) -> None:
    summary = service.dashboard_summary(listener, YEAR_2024)

    assert summary.total_listens == 3
    assert summary.total_hours == 1.2
    assert summary.top_artist == "B"


def test_dashboard_summary_for_empty_history(service, create_user) -> None:
    summary = service.dashboard_summary(create_user(), ALL)

    assert summary.total_hours == 0.0
    assert summary.total_listens == 0
    assert summary.top_artist is None
    assert summary.most_active_year is None


def test_analytics_are_scoped_per_user(service, listener, enriched_listener) -> None:
    assert service.dashboard_summary(listener, ALL).total_listens == 4
    assert service.dashboard_summary(enriched_listener, ALL).total_listens == 3


def test_top_artists_and_tracks(service, listener) -> None:
    artists = service.top_artists(listener, ALL, limit=5)
    tracks = service.top_tracks(listener, ALL, limit=2)

    assert [(item.artist, item.hours, item.play_count) for item in artists] == [
        ("A", 1.5, 2),
        ("B", 0.7, 2),
    ]
    assert [(item.track, item.artist) for item in tracks] == [("T1", "A"), ("T2", "B")]
    assert service.top_artists(listener, ALL, limit=1, offset=1)[0].artist == "B"


def test_monthly_and_weekly_trends(service, listener) -> None:
    monthly = service.monthly_trends(listener, ALL)
    weekly = service.weekly_trends(listener, ALL)

    assert [(item.month, item.hours, item.play_count, item.unique_artists) for item in monthly] == [
        ("2023-12", 1.0, 1, 1),
        ("2024-01", 1.2, 3, 2),
    ]
    assert [(item.week_start, item.week_number, item.year) for item in weekly] == [
        (date(2023, 12, 25), 52, 2023),
        (date(2024, 1, 1), 1, 2024),
    ]
    assert weekly[1].week_end == date(2024, 1, 7)


def test_listening_clock_uses_sunday_first_weekdays(service, listener) -> None:
    cells = {(cell.day_of_week, cell.hour): cell for cell in service.listening_clock(listener, ALL)}

    assert cells[(0, 23)].play_count == 1
    assert cells[(1, 10)].hours == 0.5
    assert cells[(3, 20)].play_count == 1
    assert len(cells) == 4


def test_listening_history_search_and_paging(service, listener) -> None:
    page = service.listening_history(listener, ALL, limit=2)
    searched = service.listening_history(listener, ALL, search="t2")

    assert page.total_count == 4
    assert [row.track for row in page.items] == ["T3", "T2"]
    assert searched.total_count == 1
    assert searched.items[0].artist == "B"


def test_available_timeframes_newest_first(service, listener) -> None:
    options = service.available_timeframes(listener)

    assert [(option.year, option.month) for option in options] == [(2024, 1), (2023, 12)]


def test_discovery_tracker_uses_full_history(service, listener) -> None:
    points = service.discovery_tracker(listener, YEAR_2024)

    assert [(point.month, point.new_artists, point.new_tracks) for point in points] == [
        ("2024-01", 1, 2)
    ]


def test_loyalty_gauge(service, listener) -> None:
    gauge = service.loyalty_gauge(listener, ALL, threshold=2)

    assert gauge.threshold == 2
    assert [(month.month, month.total_plays, month.repeat_plays) for month in gauge.months] == [
        ("2023-12", 1, 0),
        ("2024-01", 3, 0),
    ]
    assert [(item.track, item.play_count) for item in gauge.top_repeat_tracks] == [("T1", 2)]


def test_listening_streaks(service, listener) -> None:
    streaks = service.listening_streaks(listener, ALL)

    assert streaks.longest.length == 4
    assert streaks.longest.start == date(2023, 12, 31)
    assert streaks.current.end == date(2024, 1, 3)
    assert streaks.total_days == 4


def test_compute_streaks_prefers_later_run_on_tie() -> None:
    days = [date(2024, 1, 1), date(2024, 1, 2), date(2024, 1, 5), date(2024, 1, 6), date(2024, 1, 9)]

    summary = compute_streaks(days)

    assert summary.longest.length == 2
    assert summary.longest.start == date(2024, 1, 5)
    assert summary.current.length == 1
    assert summary.current.start == date(2024, 1, 9)
    assert compute_streaks([]).longest.length == 0


def test_genre_insights(service, enriched_listener) -> None:
    genres = service.top_genres(enriched_listener, ALL)
    timeline = service.genre_timeline(enriched_listener, ALL)

    assert [(item.genre, item.hours, item.play_count, item.unique_artists) for item in genres] == [
        ("rock", 1.5, 2, 2),
        ("indie", 1.0, 1, 1),
    ]
    assert len(timeline) == 1
    assert timeline[0].month == "2024-06"
    assert timeline[0].genres == {"rock": 1.5, "indie": 1.0}


def test_listening_by_decade_and_discovery_score(service, enriched_listener) -> None:
    decades = service.listening_by_decade(enriched_listener, ALL)
    score = service.discovery_score(enriched_listener, ALL)

    assert [(item.decade, item.hours, item.percentage) for item in decades] == [
        ("1990s", 0.5, 33.3),
        ("2020s", 1.0, 66.7),
    ]
    assert score.score == 50.0
    assert score.new_release_plays == 1
    assert score.total_plays == 2


def test_daypart_share(service, listener) -> None:
    days = service.daypart_share(listener, ALL)

    assert len(days) == 7
    monday = days[1]
    assert monday.morning_hours == 0.5
    assert monday.morning_pct == 100.0
    assert days[3].evening_pct == 100.0
    assert days[5].morning_pct == 0.0


def test_year_over_year(service, listener) -> None:
    years = service.year_over_year(listener)

    assert [(item.year, item.hours, item.unique_artists, item.sessions) for item in years] == [
        (2023, 1.0, 1, 1),
        (2024, 1.2, 2, 3),
    ]
    assert years[0].hours_change is None
    assert years[1].hours_change == 16.7
    assert years[1].artists_change == 100.0
    assert years[1].sessions_change == 200.0


def test_timeframe_benchmark(service, listener) -> None:
    benchmark = service.timeframe_benchmark(listener, JAN_2024)

    assert benchmark.period == "2024-01"
    assert benchmark.periods == 2
    assert benchmark.hours == 1.2
    assert benchmark.hours_rank == 1
    assert benchmark.artists_rank == 1
    assert benchmark.hours_leader == "2024-01"
    assert benchmark.artists_leader_value == 2


def test_timeframe_benchmark_requires_window(service, listener) -> None:
    with pytest.raises(ValidationAppError):
        service.timeframe_benchmark(listener, ALL)


def test_enrichment_progress(service, enriched_listener) -> None:
    progress = service.enrichment_progress(enriched_listener)

    assert progress.total_listens == 3
    assert progress.enriched_listens == 2
    assert progress.percentage == 67


def test_cached_results_refresh_after_invalidate(listener, add_listens) -> None:
    service = AnalyticsService(cache=AnalyticsCache(max_items=16, ttl=60))
    assert service.dashboard_summary(listener, ALL).total_listens == 4

    add_listens(listener, [{"ts": datetime(2024, 2, 1), "artist": "C", "track": "T4"}])

    assert service.dashboard_summary(listener, ALL).total_listens == 4
    service.invalidate(listener)
    assert service.dashboard_summary(listener, ALL).total_listens == 5
