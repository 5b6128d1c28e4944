"""Read-only analytics endpoints for the dashboard."""

from __future__ import annotations

from collections.abc import Callable
from time import perf_counter
from typing import Any, Literal, TypeVar

from fastapi import APIRouter, Depends, Query, Request, status

from listenlog.api._events import emit_api_event
from listenlog.dependencies import get_analytics_service, get_current_user
from listenlog.errors import AppError, InternalServerError
from listenlog.schemas.analytics import (
    ArtistStatResponse,
    ClockCellResponse,
    DashboardSummaryResponse,
    DaypartDayResponse,
    DecadeStatResponse,
    DiscoveryPointResponse,
    DiscoveryScoreResponse,
    GenreStatResponse,
    GenreTimelinePointResponse,
    HistoryPageResponse,
    LoyaltyGaugeResponse,
    MonthlyTrendResponse,
    StreakSummaryResponse,
    TimeframeBenchmarkResponse,
    TimeframeOptionResponse,
    TrackStatResponse,
    WeeklyTrendResponse,
    YearOverYearResponse,
)
from listenlog.schemas.common import ApiResponse, envelope
from listenlog.services.analytics_service import AnalyticsService
from listenlog.services.auth_service import AuthenticatedUser
from listenlog.utils.timeframes import Timeframe, timeframe_to_params

router = APIRouter(prefix="/api/analytics", tags=["Analytics"])

T = TypeVar("T")


def get_timeframe(
    timeframe: Literal["all", "year", "month"] = Query("all"),
    year: int | None = Query(None),
    month: int | None = Query(None),
) -> Timeframe:
    return timeframe_to_params(timeframe, year, month)


def _run(request: Request, operation: str, compute: Callable[[], T]) -> T:
    started = perf_counter()
    try:
        result = compute()
    except AppError as exc:
        emit_api_event(
            request,
            component="api.analytics",
            status_code=exc.http_status,
            status="error",
            duration_ms=(perf_counter() - started) * 1000,
            error=exc.code.value,
            meta={"operation": operation},
        )
        raise
    except Exception as exc:
        emit_api_event(
            request,
            component="api.analytics",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            status="error",
            duration_ms=(perf_counter() - started) * 1000,
            error="unexpected_error",
            meta={"operation": operation},
        )
        raise InternalServerError("Failed to compute analytics.") from exc
    emit_api_event(
        request,
        component="api.analytics",
        status_code=status.HTTP_200_OK,
        status="ok",
        duration_ms=(perf_counter() - started) * 1000,
        meta={"operation": operation},
    )
    return result


def _many(schema: Any, items: list[Any]) -> list[Any]:
    return [schema.model_validate(item) for item in items]


@router.get("/summary", response_model=ApiResponse[DashboardSummaryResponse])
def summary(
    request: Request,
    timeframe: Timeframe = Depends(get_timeframe),
    user: AuthenticatedUser = Depends(get_current_user),
    service: AnalyticsService = Depends(get_analytics_service),
) -> ApiResponse[DashboardSummaryResponse]:
    result = _run(request, "summary", lambda: service.dashboard_summary(user.id, timeframe))
    return envelope(DashboardSummaryResponse.model_validate(result))


@router.get("/top-artists", response_model=ApiResponse[list[ArtistStatResponse]])
def top_artists(
    request: Request,
    limit: int = Query(5, ge=1, le=100),
    offset: int = Query(0, ge=0),
    timeframe: Timeframe = Depends(get_timeframe),
    user: AuthenticatedUser = Depends(get_current_user),
    service: AnalyticsService = Depends(get_analytics_service),
) -> ApiResponse[list[ArtistStatResponse]]:
    result = _run(
        request,
        "top_artists",
        lambda: service.top_artists(user.id, timeframe, limit=limit, offset=offset),
    )
    return envelope(_many(ArtistStatResponse, result))


@router.get("/top-tracks", response_model=ApiResponse[list[TrackStatResponse]])
def top_tracks(
    request: Request,
    limit: int = Query(5, ge=1, le=100),
    offset: int = Query(0, ge=0),
    timeframe: Timeframe = Depends(get_timeframe),
    user: AuthenticatedUser = Depends(get_current_user),
    service: AnalyticsService = Depends(get_analytics_service),
) -> ApiResponse[list[TrackStatResponse]]:
    result = _run(
        request,
        "top_tracks",
        lambda: service.top_tracks(user.id, timeframe, limit=limit, offset=offset),
    )
    return envelope(_many(TrackStatResponse, result))


@router.get("/monthly", response_model=ApiResponse[list[MonthlyTrendResponse]])
def monthly(
    request: Request,
    timeframe: Timeframe = Depends(get_timeframe),
    user: AuthenticatedUser = Depends(get_current_user),
    service: AnalyticsService = Depends(get_analytics_service),
) -> ApiResponse[list[MonthlyTrendResponse]]:
    result = _run(request, "monthly", lambda: service.monthly_trends(user.id, timeframe))
    return envelope(_many(MonthlyTrendResponse, result))


@router.get("/weekly", response_model=ApiResponse[list[WeeklyTrendResponse]])
def weekly(
    request: Request,
    timeframe: Timeframe = Depends(get_timeframe),
    user: AuthenticatedUser = Depends(get_current_user),
    service: AnalyticsService = Depends(get_analytics_service),
) -> ApiResponse[list[WeeklyTrendResponse]]:
    result = _run(request, "weekly", lambda: service.weekly_trends(user.id, timeframe))
    return envelope(_many(WeeklyTrendResponse, result))


@router.get("/clock", response_model=ApiResponse[list[ClockCellResponse]])
def clock(
    request: Request,
    timeframe: Timeframe = Depends(get_timeframe),
    user: AuthenticatedUser = Depends(get_current_user),
    service: AnalyticsService = Depends(get_analytics_service),
) -> ApiResponse[list[ClockCellResponse]]:
    result = _run(request, "clock", lambda: service.listening_clock(user.id, timeframe))
    return envelope(_many(ClockCellResponse, result))


@router.get("/history", response_model=ApiResponse[HistoryPageResponse])
def history(
    request: Request,
    search: str | None = Query(None, max_length=200),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    timeframe: Timeframe = Depends(get_timeframe),
    user: AuthenticatedUser = Depends(get_current_user),
    service: AnalyticsService = Depends(get_analytics_service),
) -> ApiResponse[HistoryPageResponse]:
    result = _run(
        request,
        "history",
        lambda: service.listening_history(
            user.id, timeframe, search=search, limit=limit, offset=offset
        ),
    )
    return envelope(HistoryPageResponse.model_validate(result))


@router.get("/timeframes", response_model=ApiResponse[list[TimeframeOptionResponse]])
def timeframes(
    request: Request,
    user: AuthenticatedUser = Depends(get_current_user),
    service: AnalyticsService = Depends(get_analytics_service),
) -> ApiResponse[list[TimeframeOptionResponse]]:
    result = _run(request, "timeframes", lambda: service.available_timeframes(user.id))
    return envelope(_many(TimeframeOptionResponse, result))


@router.get("/discovery", response_model=ApiResponse[list[DiscoveryPointResponse]])
def discovery(
    request: Request,
    timeframe: Timeframe = Depends(get_timeframe),
    user: AuthenticatedUser = Depends(get_current_user),
    service: AnalyticsService = Depends(get_analytics_service),
) -> ApiResponse[list[DiscoveryPointResponse]]:
    result = _run(request, "discovery", lambda: service.discovery_tracker(user.id, timeframe))
    return envelope(_many(DiscoveryPointResponse, result))


@router.get("/loyalty", response_model=ApiResponse[LoyaltyGaugeResponse])
def loyalty(
    request: Request,
    threshold: int = Query(5, ge=1, le=1000),
    timeframe: Timeframe = Depends(get_timeframe),
    user: AuthenticatedUser = Depends(get_current_user),
    service: AnalyticsService = Depends(get_analytics_service),
) -> ApiResponse[LoyaltyGaugeResponse]:
    result = _run(
        request,
        "loyalty",
        lambda: service.loyalty_gauge(user.id, timeframe, threshold=threshold),
    )
    return envelope(LoyaltyGaugeResponse.model_validate(result))


@router.get("/streaks", response_model=ApiResponse[StreakSummaryResponse])
def streaks(
    request: Request,
    timeframe: Timeframe = Depends(get_timeframe),
    user: AuthenticatedUser = Depends(get_current_user),
    service: AnalyticsService = Depends(get_analytics_service),
) -> ApiResponse[StreakSummaryResponse]:
    result = _run(request, "streaks", lambda: service.listening_streaks(user.id, timeframe))
    return envelope(StreakSummaryResponse.model_validate(result))


@router.get("/genres", response_model=ApiResponse[list[GenreStatResponse]])
def genres(
    request: Request,
    limit: int = Query(10, ge=1, le=100),
    timeframe: Timeframe = Depends(get_timeframe),
    user: AuthenticatedUser = Depends(get_current_user),
    service: AnalyticsService = Depends(get_analytics_service),
) -> ApiResponse[list[GenreStatResponse]]:
    result = _run(request, "genres", lambda: service.top_genres(user.id, timeframe, limit=limit))
    return envelope(_many(GenreStatResponse, result))


@router.get("/genres/timeline", response_model=ApiResponse[list[GenreTimelinePointResponse]])
def genre_timeline(
    request: Request,
    limit: int = Query(5, ge=1, le=20),
    timeframe: Timeframe = Depends(get_timeframe),
    user: AuthenticatedUser = Depends(get_current_user),
    service: AnalyticsService = Depends(get_analytics_service),
) -> ApiResponse[list[GenreTimelinePointResponse]]:
    result = _run(
        request,
        "genre_timeline",
        lambda: service.genre_timeline(user.id, timeframe, limit=limit),
    )
    return envelope(_many(GenreTimelinePointResponse, result))


@router.get("/decades", response_model=ApiResponse[list[DecadeStatResponse]])
def decades(
    request: Request,
    timeframe: Timeframe = Depends(get_timeframe),
    user: AuthenticatedUser = Depends(get_current_user),
    service: AnalyticsService = Depends(get_analytics_service),
) -> ApiResponse[list[DecadeStatResponse]]:
    result = _run(request, "decades", lambda: service.listening_by_decade(user.id, timeframe))
    return envelope(_many(DecadeStatResponse, result))


@router.get("/discovery-score", response_model=ApiResponse[DiscoveryScoreResponse])
def discovery_score(
    request: Request,
    timeframe: Timeframe = Depends(get_timeframe),
    user: AuthenticatedUser = Depends(get_current_user),
    service: AnalyticsService = Depends(get_analytics_service),
) -> ApiResponse[DiscoveryScoreResponse]:
    result = _run(
        request, "discovery_score", lambda: service.discovery_score(user.id, timeframe)
    )
    return envelope(DiscoveryScoreResponse.model_validate(result))


@router.get("/dayparts", response_model=ApiResponse[list[DaypartDayResponse]])
def dayparts(
    request: Request,
    timeframe: Timeframe = Depends(get_timeframe),
    user: AuthenticatedUser = Depends(get_current_user),
    service: AnalyticsService = Depends(get_analytics_service),
) -> ApiResponse[list[DaypartDayResponse]]:
    result = _run(request, "dayparts", lambda: service.daypart_share(user.id, timeframe))
    return envelope(_many(DaypartDayResponse, result))


@router.get("/year-over-year", response_model=ApiResponse[list[YearOverYearResponse]])
def year_over_year(
    request: Request,
    user: AuthenticatedUser = Depends(get_current_user),
    service: AnalyticsService = Depends(get_analytics_service),
) -> ApiResponse[list[YearOverYearResponse]]:
    result = _run(request, "year_over_year", lambda: service.year_over_year(user.id))
    return envelope(_many(YearOverYearResponse, result))


@router.get("/benchmark", response_model=ApiResponse[TimeframeBenchmarkResponse])
def benchmark(
    request: Request,
    timeframe: Timeframe = Depends(get_timeframe),
    user: AuthenticatedUser = Depends(get_current_user),
    service: AnalyticsService = Depends(get_analytics_service),
) -> ApiResponse[TimeframeBenchmarkResponse]:
    result = _run(request, "benchmark", lambda: service.timeframe_benchmark(user.id, timeframe))
    return envelope(TimeframeBenchmarkResponse.model_validate(result))
