from __future__ import annotations

import io
import json
from typing import Any
import zipfile


def history_payload(*entries: dict[str, Any]) -> bytes:
    return json.dumps(list(entries)).encode("utf-8")


def extended_entry(
    ts: str = "2024-03-01T12:00:00Z",
    artist: str = "Artist A",
    track: str = "Track A",
    ms_played: int = 180_000,
    **extra: Any,
) -> dict[str, Any]:
    entry: dict[str, Any] = {
        "ts": ts,
        "master_metadata_album_artist_name": artist,
        "master_metadata_track_name": track,
        "master_metadata_album_album_name": "Album A",
        "ms_played": ms_played,
        "spotify_track_uri": "spotify:track:abc",
        "reason_start": "clickrow",
        "reason_end": "trackdone",
        "shuffle": False,
        "skipped": None,
        "offline": False,
        "incognito_mode": False,
    }
    entry.update(extra)
    return entry


def build_zip(files: dict[str, bytes], *, compression: int = zipfile.ZIP_STORED) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=compression) as archive:
        for name, content in files.items():
            archive.writestr(name, content)
    return buffer.getvalue()
