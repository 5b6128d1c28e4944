"""Pydantic schemas for the analytics API."""

from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict


class _FromAttributes(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class DashboardSummaryResponse(_FromAttributes):
    total_hours: float
    unique_artists: int
    unique_tracks: int
    total_listens: int
    top_artist: str | None = None
    most_active_year: int | None = None


class ArtistStatResponse(_FromAttributes):
    artist: str
    total_ms: int
    hours: float
    play_count: int


class TrackStatResponse(_FromAttributes):
    track: str
    artist: str
    total_ms: int
    hours: float
    play_count: int


class MonthlyTrendResponse(_FromAttributes):
    month: str
    hours: float
    play_count: int
    unique_artists: int


class WeeklyTrendResponse(_FromAttributes):
    week_start: date
    week_end: date
    week_number: int
    year: int
    hours: float
    play_count: int


class ClockCellResponse(_FromAttributes):
    day_of_week: int
    hour: int
    hours: float
    play_count: int


class HistoryRowResponse(_FromAttributes):
    id: int
    ts: datetime
    artist: str
    track: str
    album: str | None = None
    ms_played: int
    album_image_url: str | None = None


class HistoryPageResponse(_FromAttributes):
    items: list[HistoryRowResponse]
    total_count: int
    limit: int
    offset: int


class TimeframeOptionResponse(_FromAttributes):
    year: int
    month: int


class DiscoveryPointResponse(_FromAttributes):
    month: str
    new_artists: int
    new_tracks: int


class LoyaltyMonthResponse(_FromAttributes):
    month: str
    total_plays: int
    repeat_plays: int
    repeat_share: float


class RepeatTrackResponse(_FromAttributes):
    track: str
    artist: str
    play_count: int


class LoyaltyGaugeResponse(_FromAttributes):
    threshold: int
    months: list[LoyaltyMonthResponse]
    top_repeat_tracks: list[RepeatTrackResponse]


class StreakResponse(_FromAttributes):
    length: int
    start: date | None = None
    end: date | None = None


class StreakSummaryResponse(_FromAttributes):
    longest: StreakResponse
    current: StreakResponse
    total_days: int


class GenreStatResponse(_FromAttributes):
    genre: str
    hours: float
    play_count: int
    unique_artists: int


class GenreTimelinePointResponse(_FromAttributes):
    month: str
    genres: dict[str, float]


class DecadeStatResponse(_FromAttributes):
    decade: str
    hours: float
    play_count: int
    percentage: float


class DiscoveryScoreResponse(_FromAttributes):
    score: float
    new_release_plays: int
    total_plays: int


class DaypartDayResponse(_FromAttributes):
    day_of_week: int
    morning_hours: float
    afternoon_hours: float
    evening_hours: float
    morning_pct: float
    afternoon_pct: float
    evening_pct: float


class YearOverYearResponse(_FromAttributes):
    year: int
    hours: float
    unique_artists: int
    sessions: int
    hours_change: float | None = None
    artists_change: float | None = None
    sessions_change: float | None = None


class TimeframeBenchmarkResponse(_FromAttributes):
    kind: str
    period: str
    periods: int
    hours: float
    hours_rank: int
    unique_artists: int
    artists_rank: int
    hours_leader: str | None = None
    hours_leader_value: float
    artists_leader: str | None = None
    artists_leader_value: int
