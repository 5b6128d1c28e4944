"""Listening analytics computed from a user's stored listens.

Every query is scoped to one user, to the half-open timeframe window
``start <= ts < end`` and to listens that carry both an artist and a track
(podcast episodes are stored but never counted).  Durations are summed in
milliseconds and reported as hours rounded to one decimal.

Aggregations that map onto portable SQL (sums and counts grouped by artist or
track) run in the database; calendar bucketing (weeks, weekdays, hours,
streaks, sessions) runs in Python over ``(ts, ms_played)`` rows so that
SQLite and PostgreSQL behave identically.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from collections.abc import Callable, Hashable, Iterable, Sequence
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, TypeVar

from sqlalchemy import extract, func, select
from sqlalchemy.orm import Session

from listenlog.db import session_scope
from listenlog.errors import ValidationAppError
from listenlog.logging import get_logger
from listenlog.models import Listen
from listenlog.services.analytics_cache import AnalyticsCache
from listenlog.utils.timeframes import Timeframe, timeframe_to_params

SessionFactory = Callable[[], AbstractContextManager[Session]]
T = TypeVar("T")

MS_PER_HOUR = 3_600_000
SESSION_GAP = timedelta(minutes=30)
DEFAULT_LOYALTY_THRESHOLD = 5

logger = get_logger(__name__)


def ms_to_hours(total_ms: int | float | None) -> float:
    return round((total_ms or 0) / MS_PER_HOUR, 1)


def _month_key(value: datetime) -> str:
    return f"{value.year:04d}-{value.month:02d}"


def _sunday_first_weekday(value: datetime | date) -> int:
    return (value.weekday() + 1) % 7


def _daypart(hour: int) -> str:
    if 5 <= hour < 12:
        return "morning"
    if 12 <= hour < 17:
        return "afternoon"
    return "evening"


def _percent_change(current: float, previous: float | None) -> float | None:
    if previous is None or previous == 0:
        return None
    return round((current - previous) / previous * 100, 1)


def _release_year(value: str | None) -> int | None:
    if not value:
        return None
    head = value.strip()[:4]
    if len(head) != 4 or not head.isdigit():
        return None
    year = int(head)
    return year if year > 0 else None


# ----------------------------------------------------------------------
# Result types
# ----------------------------------------------------------------------


@dataclass(slots=True)
class DashboardSummary:
    total_hours: float
    unique_artists: int
    unique_tracks: int
    total_listens: int
    top_artist: str | None
    most_active_year: int | None


@dataclass(slots=True)
class ArtistStat:
    artist: str
    total_ms: int
    hours: float
    play_count: int


@dataclass(slots=True)
class TrackStat:
    track: str
    artist: str
    total_ms: int
    hours: float
    play_count: int


@dataclass(slots=True)
class MonthlyTrend:
    month: str
    hours: float
    play_count: int
    unique_artists: int


@dataclass(slots=True)
class WeeklyTrend:
    week_start: date
    week_end: date
    week_number: int
    year: int
    hours: float
    play_count: int


@dataclass(slots=True)
class ClockCell:
    day_of_week: int
    hour: int
    hours: float
    play_count: int


@dataclass(slots=True)
class HistoryRow:
    id: int
    ts: datetime
    artist: str
    track: str
    album: str | None
    ms_played: int
    album_image_url: str | None


@dataclass(slots=True)
class HistoryPage:
    items: list[HistoryRow]
    total_count: int
    limit: int
    offset: int


@dataclass(slots=True)
class TimeframeOption:
    year: int
    month: int


@dataclass(slots=True)
class DiscoveryPoint:
    month: str
    new_artists: int
    new_tracks: int


@dataclass(slots=True)
class LoyaltyMonth:
    month: str
    total_plays: int
    repeat_plays: int
    repeat_share: float


@dataclass(slots=True)
class RepeatTrack:
    track: str
    artist: str
    play_count: int


@dataclass(slots=True)
class LoyaltyGauge:
    threshold: int
    months: list[LoyaltyMonth]
    top_repeat_tracks: list[RepeatTrack]


@dataclass(slots=True)
class Streak:
    length: int = 0
    start: date | None = None
    end: date | None = None


@dataclass(slots=True)
class StreakSummary:
    longest: Streak
    current: Streak
    total_days: int


@dataclass(slots=True)
class GenreStat:
    genre: str
    hours: float
    play_count: int
    unique_artists: int


@dataclass(slots=True)
class GenreTimelinePoint:
    month: str
    genres: dict[str, float]


@dataclass(slots=True)
class DecadeStat:
    decade: str
    hours: float
    play_count: int
    percentage: float


@dataclass(slots=True)
class DiscoveryScore:
    score: float
    new_release_plays: int
    total_plays: int


@dataclass(slots=True)
class DaypartDay:
    day_of_week: int
    morning_hours: float = 0.0
    afternoon_hours: float = 0.0
    evening_hours: float = 0.0
    morning_pct: float = 0.0
    afternoon_pct: float = 0.0
    evening_pct: float = 0.0


@dataclass(slots=True)
class YearOverYear:
    year: int
    hours: float
    unique_artists: int
    sessions: int
    hours_change: float | None
    artists_change: float | None
    sessions_change: float | None


@dataclass(slots=True)
class TimeframeBenchmark:
    kind: str
    period: str
    periods: int
    hours: float
    hours_rank: int
    unique_artists: int
    artists_rank: int
    hours_leader: str | None
    hours_leader_value: float
    artists_leader: str | None
    artists_leader_value: int


@dataclass(slots=True)
class EnrichmentProgress:
    total_listens: int
    enriched_listens: int
    percentage: int


# ----------------------------------------------------------------------
# Service
# ----------------------------------------------------------------------


@dataclass(slots=True)
class AnalyticsService:
    """Compute dashboard analytics for a single user."""

    session_factory: SessionFactory = field(default=session_scope, repr=False)
    cache: AnalyticsCache | None = field(default=None, repr=False)

    def invalidate(self, user_id: int) -> None:
        if self.cache is not None:
            self.cache.invalidate_user(user_id)

    def _cached(
        self, user_id: int, operation: str, params: Hashable, compute: Callable[[], T]
    ) -> T:
        if self.cache is None:
            return compute()
        return self.cache.get_or_compute(user_id, operation, params, compute)

    @staticmethod
    def _filters(user_id: int, timeframe: Timeframe | None) -> list[Any]:
        conditions: list[Any] = [
            Listen.user_id == user_id,
            Listen.artist.is_not(None),
            Listen.track.is_not(None),
        ]
        if timeframe is not None:
            if timeframe.start is not None:
                conditions.append(Listen.ts >= timeframe.start)
            if timeframe.end is not None:
                conditions.append(Listen.ts < timeframe.end)
        return conditions

    def _rows(
        self, session: Session, user_id: int, timeframe: Timeframe | None, *columns: Any
    ) -> Sequence[Any]:
        return session.execute(
            select(*columns).where(*self._filters(user_id, timeframe)).order_by(Listen.ts.asc())
        ).all()

    # ------------------------------------------------------------------
    # Totals and rankings
    # ------------------------------------------------------------------

    def dashboard_summary(self, user_id: int, timeframe: Timeframe) -> DashboardSummary:
        def compute() -> DashboardSummary:
            conditions = self._filters(user_id, timeframe)
            with self.session_factory() as session:
                total_ms, total_listens, unique_artists = session.execute(
                    select(
                        func.coalesce(func.sum(Listen.ms_played), 0),
                        func.count(Listen.id),
                        func.count(func.distinct(Listen.artist)),
                    ).where(*conditions)
                ).one()
                distinct_tracks = (
                    select(Listen.track, Listen.artist).where(*conditions).distinct().subquery()
                )
                unique_tracks = session.execute(
                    select(func.count()).select_from(distinct_tracks)
                ).scalar_one()

                artist_ms = func.sum(Listen.ms_played)
                top_artist = session.execute(
                    select(Listen.artist)
                    .where(*conditions)
                    .group_by(Listen.artist)
                    .order_by(artist_ms.desc(), Listen.artist.asc())
                    .limit(1)
                ).scalar_one_or_none()

                year_expr = extract("year", Listen.ts)
                year_ms = func.sum(Listen.ms_played)
                most_active_year = session.execute(
                    select(year_expr)
                    .where(*conditions)
                    .group_by(year_expr)
                    .order_by(year_ms.desc(), year_expr.asc())
                    .limit(1)
                ).scalar_one_or_none()

            return DashboardSummary(
                total_hours=ms_to_hours(int(total_ms or 0)),
                unique_artists=int(unique_artists or 0),
                unique_tracks=int(unique_tracks or 0),
                total_listens=int(total_listens or 0),
                top_artist=top_artist,
                most_active_year=int(most_active_year) if most_active_year is not None else None,
            )

        return self._cached(user_id, "summary", timeframe, compute)

    def top_artists(
        self, user_id: int, timeframe: Timeframe, *, limit: int = 5, offset: int = 0
    ) -> list[ArtistStat]:
        def compute() -> list[ArtistStat]:
            total_ms = func.sum(Listen.ms_played)
            with self.session_factory() as session:
                rows = session.execute(
                    select(Listen.artist, total_ms, func.count(Listen.id))
                    .where(*self._filters(user_id, timeframe))
                    .group_by(Listen.artist)
                    .order_by(total_ms.desc(), Listen.artist.asc())
                    .limit(max(1, limit))
                    .offset(max(0, offset))
                ).all()
            return [
                ArtistStat(
                    artist=artist,
                    total_ms=int(ms or 0),
                    hours=ms_to_hours(ms),
                    play_count=int(plays),
                )
                for artist, ms, plays in rows
            ]

        return self._cached(user_id, "top_artists", (timeframe, limit, offset), compute)

    def top_tracks(
        self, user_id: int, timeframe: Timeframe, *, limit: int = 5, offset: int = 0
    ) -> list[TrackStat]:
        def compute() -> list[TrackStat]:
            total_ms = func.sum(Listen.ms_played)
            with self.session_factory() as session:
                rows = session.execute(
                    select(Listen.track, Listen.artist, total_ms, func.count(Listen.id))
                    .where(*self._filters(user_id, timeframe))
                    .group_by(Listen.track, Listen.artist)
                    .order_by(total_ms.desc(), Listen.track.asc(), Listen.artist.asc())
                    .limit(max(1, limit))
                    .offset(max(0, offset))
                ).all()
            return [
                TrackStat(
                    track=track,
                    artist=artist,
                    total_ms=int(ms or 0),
                    hours=ms_to_hours(ms),
                    play_count=int(plays),
                )
                for track, artist, ms, plays in rows
            ]

        return self._cached(user_id, "top_tracks", (timeframe, limit, offset), compute)

    # ------------------------------------------------------------------
    # Trends
    # ------------------------------------------------------------------

    def monthly_trends(self, user_id: int, timeframe: Timeframe) -> list[MonthlyTrend]:
        def compute() -> list[MonthlyTrend]:
            with self.session_factory() as session:
                rows = self._rows(session, user_id, timeframe, Listen.ts, Listen.ms_played, Listen.artist)
            totals: dict[str, int] = defaultdict(int)
            plays: Counter[str] = Counter()
            artists: dict[str, set[str]] = defaultdict(set)
            for ts, ms_played, artist in rows:
                key = _month_key(ts)
                totals[key] += ms_played
                plays[key] += 1
                artists[key].add(artist)
            return [
                MonthlyTrend(
                    month=key,
                    hours=ms_to_hours(totals[key]),
                    play_count=plays[key],
                    unique_artists=len(artists[key]),
                )
                for key in sorted(totals)
            ]

        return self._cached(user_id, "monthly", timeframe, compute)

    def weekly_trends(self, user_id: int, timeframe: Timeframe) -> list[WeeklyTrend]:
        def compute() -> list[WeeklyTrend]:
            with self.session_factory() as session:
                rows = self._rows(session, user_id, timeframe, Listen.ts, Listen.ms_played)
            totals: dict[date, int] = defaultdict(int)
            plays: Counter[date] = Counter()
            for ts, ms_played in rows:
                week_start = ts.date() - timedelta(days=ts.weekday())
                totals[week_start] += ms_played
                plays[week_start] += 1
            trends: list[WeeklyTrend] = []
            for week_start in sorted(totals):
                iso_year, iso_week, _ = week_start.isocalendar()
                trends.append(
                    WeeklyTrend(
                        week_start=week_start,
                        week_end=week_start + timedelta(days=6),
                        week_number=iso_week,
                        year=iso_year,
                        hours=ms_to_hours(totals[week_start]),
                        play_count=plays[week_start],
                    )
                )
            return trends

        return self._cached(user_id, "weekly", timeframe, compute)

    def listening_clock(self, user_id: int, timeframe: Timeframe) -> list[ClockCell]:
        def compute() -> list[ClockCell]:
            with self.session_factory() as session:
                rows = self._rows(session, user_id, timeframe, Listen.ts, Listen.ms_played)
            totals: dict[tuple[int, int], int] = defaultdict(int)
            plays: Counter[tuple[int, int]] = Counter()
            for ts, ms_played in rows:
                key = (_sunday_first_weekday(ts), ts.hour)
                totals[key] += ms_played
                plays[key] += 1
            return [
                ClockCell(
                    day_of_week=day,
                    hour=hour,
                    hours=ms_to_hours(totals[(day, hour)]),
                    play_count=plays[(day, hour)],
                )
                for day, hour in sorted(totals)
            ]

        return self._cached(user_id, "clock", timeframe, compute)

    # ------------------------------------------------------------------
    # History browsing
    # ------------------------------------------------------------------

    def listening_history(
        self,
        user_id: int,
        timeframe: Timeframe,
        *,
        search: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> HistoryPage:
        limit = max(1, limit)
        offset = max(0, offset)
        conditions = self._filters(user_id, timeframe)
        term = (search or "").strip().lower()
        if term:
            conditions.append(
                func.lower(Listen.track).contains(term, autoescape=True)
                | func.lower(Listen.artist).contains(term, autoescape=True)
            )
        with self.session_factory() as session:
            total = session.execute(
                select(func.count(Listen.id)).where(*conditions)
            ).scalar_one()
            records = (
                session.execute(
                    select(Listen)
                    .where(*conditions)
                    .order_by(Listen.ts.desc(), Listen.id.desc())
                    .limit(limit)
                    .offset(offset)
                )
                .scalars()
                .all()
            )
            items = [
                HistoryRow(
                    id=record.id,
                    ts=record.ts,
                    artist=record.artist,
                    track=record.track,
                    album=record.album or record.album_name,
                    ms_played=record.ms_played,
                    album_image_url=record.album_image_url,
                )
                for record in records
            ]
        return HistoryPage(items=items, total_count=int(total or 0), limit=limit, offset=offset)

    def available_timeframes(self, user_id: int) -> list[TimeframeOption]:
        def compute() -> list[TimeframeOption]:
            year_expr = extract("year", Listen.ts)
            month_expr = extract("month", Listen.ts)
            with self.session_factory() as session:
                rows = session.execute(
                    select(year_expr, month_expr)
                    .where(*self._filters(user_id, None))
                    .group_by(year_expr, month_expr)
                ).all()
            options = {(int(year), int(month)) for year, month in rows}
            return [
                TimeframeOption(year=year, month=month)
                for year, month in sorted(options, reverse=True)
            ]

        return self._cached(user_id, "timeframes", None, compute)

    # ------------------------------------------------------------------
    # Discovery and loyalty
    # ------------------------------------------------------------------

    def discovery_tracker(self, user_id: int, timeframe: Timeframe) -> list[DiscoveryPoint]:
        """Count artists and tracks heard for the first time, per month.

        First listens are determined over the full history, so an artist
        first heard before the selected window is never "new" inside it.
        """

        def compute() -> list[DiscoveryPoint]:
            with self.session_factory() as session:
                rows = self._rows(session, user_id, None, Listen.ts, Listen.artist, Listen.track)
            seen_artists: set[str] = set()
            seen_tracks: set[tuple[str, str]] = set()
            new_artists: Counter[str] = Counter()
            new_tracks: Counter[str] = Counter()
            months: set[str] = set()
            for ts, artist, track in rows:
                month = _month_key(ts)
                in_window = (timeframe.start is None or ts >= timeframe.start) and (
                    timeframe.end is None or ts < timeframe.end
                )
                if in_window:
                    months.add(month)
                if artist not in seen_artists:
                    seen_artists.add(artist)
                    if in_window:
                        new_artists[month] += 1
                track_key = (track, artist)
                if track_key not in seen_tracks:
                    seen_tracks.add(track_key)
                    if in_window:
                        new_tracks[month] += 1
            return [
                DiscoveryPoint(month=month, new_artists=new_artists[month], new_tracks=new_tracks[month])
                for month in sorted(months)
            ]

        return self._cached(user_id, "discovery", timeframe, compute)

    def loyalty_gauge(
        self,
        user_id: int,
        timeframe: Timeframe,
        *,
        threshold: int = DEFAULT_LOYALTY_THRESHOLD,
    ) -> LoyaltyGauge:
        threshold = max(1, threshold)

        def compute() -> LoyaltyGauge:
            with self.session_factory() as session:
                rows = self._rows(session, user_id, timeframe, Listen.ts, Listen.track, Listen.artist)
            per_month: dict[str, Counter[tuple[str, str]]] = defaultdict(Counter)
            overall: Counter[tuple[str, str]] = Counter()
            for ts, track, artist in rows:
                per_month[_month_key(ts)][(track, artist)] += 1
                overall[(track, artist)] += 1

            months: list[LoyaltyMonth] = []
            for month in sorted(per_month):
                counts = per_month[month]
                total = sum(counts.values())
                repeat = sum(count for count in counts.values() if count >= threshold)
                months.append(
                    LoyaltyMonth(
                        month=month,
                        total_plays=total,
                        repeat_plays=repeat,
                        repeat_share=round(repeat / total, 4) if total else 0.0,
                    )
                )

            repeats = sorted(
                ((key, count) for key, count in overall.items() if count >= threshold),
                key=lambda item: (-item[1], item[0][0], item[0][1]),
            )[:5]
            return LoyaltyGauge(
                threshold=threshold,
                months=months,
                top_repeat_tracks=[
                    RepeatTrack(track=track, artist=artist, play_count=count)
                    for (track, artist), count in repeats
                ],
            )

        return self._cached(user_id, "loyalty", (timeframe, threshold), compute)

    def listening_streaks(self, user_id: int, timeframe: Timeframe) -> StreakSummary:
        def compute() -> StreakSummary:
            with self.session_factory() as session:
                rows = self._rows(session, user_id, timeframe, Listen.ts)
            days = sorted({ts.date() for (ts,) in rows})
            return compute_streaks(days)

        return self._cached(user_id, "streaks", timeframe, compute)

    # ------------------------------------------------------------------
    # Enrichment-backed insights
    # ------------------------------------------------------------------

    def _enriched_rows(
        self, session: Session, user_id: int, timeframe: Timeframe, *columns: Any
    ) -> Sequence[Any]:
        return session.execute(
            select(*columns)
            .where(*self._filters(user_id, timeframe), Listen.spotify_track_id.is_not(None))
            .order_by(Listen.ts.asc())
        ).all()

    def top_genres(self, user_id: int, timeframe: Timeframe, *, limit: int = 10) -> list[GenreStat]:
        def compute() -> list[GenreStat]:
            with self.session_factory() as session:
                rows = self._enriched_rows(
                    session, user_id, timeframe, Listen.artist_genres, Listen.ms_played, Listen.artist
                )
            totals, plays, artists = _genre_totals(rows)
            ranked = sorted(totals, key=lambda genre: (-totals[genre], genre))[: max(1, limit)]
            return [
                GenreStat(
                    genre=genre,
                    hours=ms_to_hours(totals[genre]),
                    play_count=plays[genre],
                    unique_artists=len(artists[genre]),
                )
                for genre in ranked
            ]

        return self._cached(user_id, "genres", (timeframe, limit), compute)

    def genre_timeline(
        self, user_id: int, timeframe: Timeframe, *, limit: int = 5
    ) -> list[GenreTimelinePoint]:
        def compute() -> list[GenreTimelinePoint]:
            with self.session_factory() as session:
                rows = self._enriched_rows(
                    session, user_id, timeframe, Listen.ts, Listen.artist_genres, Listen.ms_played
                )
            overall: dict[str, int] = defaultdict(int)
            monthly: dict[str, dict[str, int]] = defaultdict(lambda: defaultdict(int))
            for ts, genres, ms_played in rows:
                for genre in _clean_genres(genres):
                    overall[genre] += ms_played
                    monthly[_month_key(ts)][genre] += ms_played
            top = sorted(overall, key=lambda genre: (-overall[genre], genre))[: max(1, limit)]
            return [
                GenreTimelinePoint(
                    month=month,
                    genres={genre: ms_to_hours(monthly[month].get(genre, 0)) for genre in top},
                )
                for month in sorted(monthly)
            ]

        return self._cached(user_id, "genre_timeline", (timeframe, limit), compute)

    def listening_by_decade(self, user_id: int, timeframe: Timeframe) -> list[DecadeStat]:
        def compute() -> list[DecadeStat]:
            with self.session_factory() as session:
                rows = self._enriched_rows(
                    session, user_id, timeframe, Listen.release_date, Listen.ms_played
                )
            totals: dict[int, int] = defaultdict(int)
            plays: Counter[int] = Counter()
            for release_date, ms_played in rows:
                year = _release_year(release_date)
                if year is None:
                    continue
                decade = year // 10 * 10
                totals[decade] += ms_played
                plays[decade] += 1
            grand_total = sum(totals.values())
            return [
                DecadeStat(
                    decade=f"{decade}s",
                    hours=ms_to_hours(totals[decade]),
                    play_count=plays[decade],
                    percentage=round(totals[decade] / grand_total * 100, 1) if grand_total else 0.0,
                )
                for decade in sorted(totals)
            ]

        return self._cached(user_id, "decades", timeframe, compute)

    def discovery_score(self, user_id: int, timeframe: Timeframe) -> DiscoveryScore:
        """Share of plays that went to music released in the year it was heard."""

        def compute() -> DiscoveryScore:
            with self.session_factory() as session:
                rows = self._enriched_rows(session, user_id, timeframe, Listen.ts, Listen.release_date)
            total = 0
            fresh = 0
            for ts, release_date in rows:
                year = _release_year(release_date)
                if year is None:
                    continue
                total += 1
                if year == ts.year:
                    fresh += 1
            score = round(fresh / total * 100, 1) if total else 0.0
            return DiscoveryScore(score=score, new_release_plays=fresh, total_plays=total)

        return self._cached(user_id, "discovery_score", timeframe, compute)

    # ------------------------------------------------------------------
    # Time-based insights
    # ------------------------------------------------------------------

    def daypart_share(self, user_id: int, timeframe: Timeframe) -> list[DaypartDay]:
        def compute() -> list[DaypartDay]:
            with self.session_factory() as session:
                rows = self._rows(session, user_id, timeframe, Listen.ts, Listen.ms_played)
            totals: dict[int, dict[str, int]] = {
                day: {"morning": 0, "afternoon": 0, "evening": 0} for day in range(7)
            }
            for ts, ms_played in rows:
                totals[_sunday_first_weekday(ts)][_daypart(ts.hour)] += ms_played
            days: list[DaypartDay] = []
            for day in range(7):
                parts = totals[day]
                day_total = sum(parts.values())
                entry = DaypartDay(
                    day_of_week=day,
                    morning_hours=ms_to_hours(parts["morning"]),
                    afternoon_hours=ms_to_hours(parts["afternoon"]),
                    evening_hours=ms_to_hours(parts["evening"]),
                )
                if day_total:
                    entry.morning_pct = round(parts["morning"] / day_total * 100, 1)
                    entry.afternoon_pct = round(parts["afternoon"] / day_total * 100, 1)
                    entry.evening_pct = round(parts["evening"] / day_total * 100, 1)
                days.append(entry)
            return days

        return self._cached(user_id, "dayparts", timeframe, compute)

    def year_over_year(self, user_id: int) -> list[YearOverYear]:
        def compute() -> list[YearOverYear]:
            with self.session_factory() as session:
                rows = self._rows(session, user_id, None, Listen.ts, Listen.ms_played, Listen.artist)
            totals: dict[int, int] = defaultdict(int)
            artists: dict[int, set[str]] = defaultdict(set)
            sessions: Counter[int] = Counter()
            previous_ts: datetime | None = None
            for ts, ms_played, artist in rows:
                totals[ts.year] += ms_played
                artists[ts.year].add(artist)
                if previous_ts is None or ts - previous_ts > SESSION_GAP:
                    sessions[ts.year] += 1
                previous_ts = ts

            results: list[YearOverYear] = []
            for year in sorted(totals):
                hours = ms_to_hours(totals[year])
                prior = year - 1
                has_prior = prior in totals
                results.append(
                    YearOverYear(
                        year=year,
                        hours=hours,
                        unique_artists=len(artists[year]),
                        sessions=sessions[year],
                        hours_change=_percent_change(totals[year], totals[prior] if has_prior else None),
                        artists_change=_percent_change(
                            len(artists[year]), len(artists[prior]) if has_prior else None
                        ),
                        sessions_change=_percent_change(
                            sessions[year], sessions[prior] if has_prior else None
                        ),
                    )
                )
            return results

        return self._cached(user_id, "year_over_year", None, compute)

    def timeframe_benchmark(self, user_id: int, timeframe: Timeframe) -> TimeframeBenchmark:
        """Rank the selected year or month against every other one of the user's."""

        if timeframe.kind == "all" or timeframe.year is None:
            raise ValidationAppError(
                "Benchmarks require a year or month timeframe.",
                meta={"timeframe": timeframe.kind},
            )

        def period_of(ts: datetime) -> str:
            return str(ts.year) if timeframe.kind == "year" else _month_key(ts)

        selected = (
            str(timeframe.year)
            if timeframe.kind == "year"
            else f"{timeframe.year:04d}-{timeframe.month or 1:02d}"
        )

        def compute() -> TimeframeBenchmark:
            with self.session_factory() as session:
                rows = self._rows(session, user_id, None, Listen.ts, Listen.ms_played, Listen.artist)
            totals: dict[str, int] = defaultdict(int)
            artists: dict[str, set[str]] = defaultdict(set)
            for ts, ms_played, artist in rows:
                period = period_of(ts)
                totals[period] += ms_played
                artists[period].add(artist)
            totals.setdefault(selected, 0)
            artist_counts = {period: len(artists.get(period, ())) for period in totals}

            hours_leader = _leader(totals)
            artists_leader = _leader(artist_counts)
            return TimeframeBenchmark(
                kind=timeframe.kind,
                period=selected,
                periods=len(totals),
                hours=ms_to_hours(totals[selected]),
                hours_rank=_rank(totals, selected),
                unique_artists=artist_counts[selected],
                artists_rank=_rank(artist_counts, selected),
                hours_leader=hours_leader,
                hours_leader_value=ms_to_hours(totals[hours_leader]) if hours_leader else 0.0,
                artists_leader=artists_leader,
                artists_leader_value=artist_counts[artists_leader] if artists_leader else 0,
            )

        return self._cached(user_id, "benchmark", timeframe, compute)

    def enrichment_progress(self, user_id: int | None = None) -> EnrichmentProgress:
        conditions: list[Any] = []
        if user_id is not None:
            conditions.append(Listen.user_id == user_id)
        with self.session_factory() as session:
            total = session.execute(select(func.count(Listen.id)).where(*conditions)).scalar_one()
            enriched = session.execute(
                select(func.count(Listen.id)).where(
                    *conditions, Listen.spotify_track_id.is_not(None)
                )
            ).scalar_one()
        total = int(total or 0)
        enriched = int(enriched or 0)
        percentage = round(enriched / total * 100) if total else 0
        return EnrichmentProgress(total_listens=total, enriched_listens=enriched, percentage=percentage)


def compute_streaks(days: Sequence[date]) -> StreakSummary:
    """Compute longest and current runs of consecutive listening days.

    ``days`` must be sorted and distinct.  When two runs share the longest
    length the later one wins; the current run is the one ending on the most
    recent listening day.
    """

    if not days:
        return StreakSummary(longest=Streak(), current=Streak(), total_days=0)

    longest = Streak()
    run_start = days[0]
    run_length = 1
    for previous, day in zip(days, days[1:]):
        if day - previous == timedelta(days=1):
            run_length += 1
            continue
        if run_length >= longest.length:
            longest = Streak(length=run_length, start=run_start, end=previous)
        run_start = day
        run_length = 1
    current = Streak(length=run_length, start=run_start, end=days[-1])
    if run_length >= longest.length:
        longest = Streak(length=run_length, start=run_start, end=days[-1])
    return StreakSummary(longest=longest, current=current, total_days=len(days))


def _clean_genres(raw: Any) -> list[str]:
    if not isinstance(raw, list):
        return []
    genres: list[str] = []
    for value in raw:
        if isinstance(value, str) and value.strip() and value.strip() not in genres:
            genres.append(value.strip())
    return genres


def _genre_totals(
    rows: Iterable[Any],
) -> tuple[dict[str, int], Counter[str], dict[str, set[str]]]:
    totals: dict[str, int] = defaultdict(int)
    plays: Counter[str] = Counter()
    artists: dict[str, set[str]] = defaultdict(set)
    for genres, ms_played, artist in rows:
        for genre in _clean_genres(genres):
            totals[genre] += ms_played
            plays[genre] += 1
            artists[genre].add(artist)
    return totals, plays, artists


def _rank(values: dict[str, int], key: str) -> int:
    target = values[key]
    return 1 + sum(1 for value in values.values() if value > target)


def _leader(values: dict[str, int]) -> str | None:
    if not values:
        return None
    return min(values, key=lambda period: (-values[period], period))


__all__ = [
    "AnalyticsService",
    "DashboardSummary",
    "EnrichmentProgress",
    "Streak",
    "StreakSummary",
    "compute_streaks",
    "ms_to_hours",
    "timeframe_to_params",
]
