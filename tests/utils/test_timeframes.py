from datetime import datetime

import pytest

from listenlog.errors import ValidationAppError
from listenlog.utils.timeframes import timeframe_to_params


def test_all_timeframe_is_unbounded() -> None:
    timeframe = timeframe_to_params("all")

    assert timeframe.start is None
    assert timeframe.end is None


def test_year_timeframe() -> None:
    timeframe = timeframe_to_params("year", 2023)

    assert timeframe.start == datetime(2023, 1, 1)
    assert timeframe.end == datetime(2024, 1, 1)
    assert timeframe.year == 2023


def test_month_timeframe_wraps_december() -> None:
    december = timeframe_to_params("month", 2023, 12)
    february = timeframe_to_params("month", 2024, 2)

    assert december.start == datetime(2023, 12, 1)
    assert december.end == datetime(2024, 1, 1)
    assert february.end == datetime(2024, 3, 1)


@pytest.mark.parametrize(
    ("kind", "year", "month"),
    [
        ("year", None, None),
        ("month", 2024, None),
        ("month", 2024, 13),
        ("decade", 2024, None),
    ],
)
def test_invalid_timeframes(kind: str, year: int | None, month: int | None) -> None:
    with pytest.raises(ValidationAppError):
        timeframe_to_params(kind, year, month)


def test_timeframes_are_hashable_cache_keys() -> None:
    assert hash(timeframe_to_params("month", 2024, 1)) == hash(timeframe_to_params("month", 2024, 1))
