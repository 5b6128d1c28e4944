"""Resolve dashboard timeframe selections into half-open datetime ranges."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Literal

from listenlog.errors import ValidationAppError

TimeframeKind = Literal["all", "year", "month"]

__all__ = ["Timeframe", "TimeframeKind", "timeframe_to_params"]


@dataclass(slots=True, frozen=True)
class Timeframe:
    """A ``start <= ts < end`` window; ``None`` bounds are open."""

    kind: TimeframeKind
    start: datetime | None
    end: datetime | None
    year: int | None = None
    month: int | None = None


def timeframe_to_params(
    kind: str = "all", year: int | None = None, month: int | None = None
) -> Timeframe:
    if kind == "all":
        return Timeframe(kind="all", start=None, end=None)

    if year is None or not 1 <= year <= 9998:
        raise ValidationAppError("A valid year is required for this timeframe.", meta={"year": year})

    if kind == "year":
        return Timeframe(
            kind="year",
            start=datetime(year, 1, 1),
            end=datetime(year + 1, 1, 1),
            year=year,
        )

    if kind == "month":
        if month is None or not 1 <= month <= 12:
            raise ValidationAppError(
                "A month between 1 and 12 is required for this timeframe.",
                meta={"month": month},
            )
        start = datetime(year, month, 1)
        end = datetime(year + 1, 1, 1) if month == 12 else datetime(year, month + 1, 1)
        return Timeframe(kind="month", start=start, end=end, year=year, month=month)

    raise ValidationAppError("Unsupported timeframe.", meta={"timeframe": kind})
