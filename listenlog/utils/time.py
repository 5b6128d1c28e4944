"""Time helpers shared by services and workers."""

from __future__ import annotations

from datetime import UTC, datetime

__all__ = ["utcnow", "to_naive_utc", "isoformat_utc"]


def utcnow() -> datetime:
    """Return the current UTC time as a naive datetime, matching stored values."""

    return datetime.now(UTC).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC."""

    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def isoformat_utc(value: datetime | None) -> str | None:
    """Render a stored naive UTC datetime as an ISO-8601 string with ``Z``."""

    if value is None:
        return None
    return to_naive_utc(value).isoformat() + "Z"
