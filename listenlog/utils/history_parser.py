"""Parse exported Spotify streaming-history JSON into listen records.

Two export layouts are understood:

* the account-data export (``StreamingHistory*.json``) with ``endTime``,
  ``artistName``, ``trackName`` and ``msPlayed``;
* the extended export (``Streaming_History_Audio*.json`` / ``endsong*.json``)
  with ``ts``, ``master_metadata_album_artist_name``,
  ``master_metadata_track_name`` and ``ms_played`` plus playback details.

When both spellings are present the extended field wins.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
import json
from typing import Any

from listenlog.utils.time import to_naive_utc

__all__ = [
    "HistoryParseError",
    "ListenRecord",
    "ParseResult",
    "chunked",
    "dedupe_key",
    "parse_history",
    "parse_timestamp",
]


class HistoryParseError(Exception):
    """Raised when a history file cannot yield any listen records."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


@dataclass(slots=True)
class ListenRecord:
    """A normalised play event ready for insertion."""

    ts: datetime
    artist: str | None
    track: str | None
    ms_played: int
    album: str | None = None
    reason_start: str | None = None
    reason_end: str | None = None
    shuffle: bool | None = None
    skipped: bool | None = None
    offline: bool | None = None
    incognito_mode: bool | None = None
    spotify_track_uri: str | None = None

    def as_row(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class ParseResult:
    """Outcome of parsing a single history file."""

    records: list[ListenRecord] = field(default_factory=list)
    skipped: int = 0
    duplicates: int = 0


_TIMESTAMP_FIELDS = ("ts", "endTime")
_ARTIST_FIELDS = ("master_metadata_album_artist_name", "artistName")
_TRACK_FIELDS = ("master_metadata_track_name", "trackName")
_DURATION_FIELDS = ("ms_played", "msPlayed")
_BOOLEAN_FIELDS = ("shuffle", "skipped", "offline", "incognito_mode")
_TEXT_DETAIL_FIELDS = {
    "album": "master_metadata_album_album_name",
    "reason_start": "reason_start",
    "reason_end": "reason_end",
    "spotify_track_uri": "spotify_track_uri",
}


def parse_history(text: str) -> ParseResult:
    """Parse a history document and return de-duplicated listen records."""

    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise HistoryParseError(f"Invalid JSON: {exc.msg}") from exc

    if not isinstance(payload, list):
        raise HistoryParseError("Expected an array of listening records in the JSON file.")

    result = ParseResult()
    seen: set[str] = set()

    for entry in payload:
        record = _map_entry(entry)
        if record is None:
            result.skipped += 1
            continue
        key = dedupe_key(record)
        if key in seen:
            result.duplicates += 1
            continue
        seen.add(key)
        result.records.append(record)

    if not result.records:
        raise HistoryParseError("No valid listening records were found in the file.")

    return result


def dedupe_key(record: ListenRecord) -> str:
    """Return the identity used to collapse repeated play events."""

    return "|".join(
        (
            record.ts.isoformat(),
            record.track or "",
            record.artist or "",
            str(record.ms_played),
        )
    )


def parse_timestamp(value: str | int | float) -> datetime | None:
    """Parse an export timestamp into naive UTC, returning ``None`` if invalid."""

    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000, tz=UTC).replace(tzinfo=None)
        except (OverflowError, OSError, ValueError):
            return None

    text = value.strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return to_naive_utc(parsed)


def chunked(records: Sequence[Any], size: int) -> Iterator[Sequence[Any]]:
    """Yield consecutive slices of ``records`` with at most ``size`` items."""

    if size <= 0:
        raise ValueError("size must be positive")
    for start in range(0, len(records), size):
        yield records[start : start + size]


def _map_entry(entry: Any) -> ListenRecord | None:
    if not isinstance(entry, Mapping):
        return None

    raw_ts = _first_value(entry, _TIMESTAMP_FIELDS)
    if raw_ts is None:
        return None
    ts = parse_timestamp(raw_ts)
    if ts is None:
        return None

    artist = _as_text(_first_value(entry, _ARTIST_FIELDS))
    track = _as_text(_first_value(entry, _TRACK_FIELDS))
    ms_played = _as_duration(_first_value(entry, _DURATION_FIELDS))

    details: dict[str, Any] = {}
    for attribute, source in _TEXT_DETAIL_FIELDS.items():
        details[attribute] = _as_text(_scalar(entry.get(source)))
    for name in _BOOLEAN_FIELDS:
        value = entry.get(name)
        details[name] = value if isinstance(value, bool) else None

    return ListenRecord(ts=ts, artist=artist, track=track, ms_played=ms_played, **details)


def _first_value(entry: Mapping[str, Any], names: Iterable[str]) -> str | int | float | None:
    for name in names:
        value = _scalar(entry.get(name))
        if value is not None:
            return value
    return None


def _scalar(value: Any) -> str | int | float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (str, int, float)):
        return value
    return None


def _as_text(value: str | int | float | None) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _as_duration(value: str | int | float | None) -> int:
    if value is None:
        return 0
    try:
        duration = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return 0
    return max(0, duration)
