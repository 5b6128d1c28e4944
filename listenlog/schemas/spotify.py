"""Pydantic schemas for the Spotify API."""

from __future__ import annotations

from datetime import datetime

from pydantic import Field

from listenlog.schemas.common import CamelModel


class EnrichRequest(CamelModel):
    limit: int | None = Field(default=None, description="Maximum listens to enrich (1-500)")


class EnrichmentStatsResponse(CamelModel):
    total: int
    enriched: int
    failed: int
    skipped: int


class EnrichResponse(CamelModel):
    success: bool
    stats: EnrichmentStatsResponse
    message: str


class EnrichmentProgressResponse(CamelModel):
    total_listens: int
    enriched_listens: int
    percentage: int


class ConnectResponse(CamelModel):
    authorize_url: str


class ConnectionStatusResponse(CamelModel):
    connected: bool
    expires_at: datetime | None = None
    needs_refresh: bool = False
    scope: str | None = None


class DisconnectResponse(CamelModel):
    disconnected: bool
