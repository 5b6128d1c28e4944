"""Validation rules for uploaded streaming-history files."""

from __future__ import annotations

import json
import re

__all__ = [
    "HISTORY_FILE_PATTERNS",
    "ZIP_MEMBER_PATTERNS",
    "is_history_filename",
    "validate_json_file",
]

HISTORY_FILE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^Streaming_History_Audio.*\.json$", re.IGNORECASE),
    re.compile(r"^StreamingHistory.*\.json$", re.IGNORECASE),
    re.compile(r"^endsong.*\.json$", re.IGNORECASE),
)

ZIP_MEMBER_PATTERNS = HISTORY_FILE_PATTERNS


def is_history_filename(name: str) -> bool:
    """Return ``True`` if ``name`` looks like a Spotify history export file."""

    return any(pattern.match(name) for pattern in HISTORY_FILE_PATTERNS)


def _format_megabytes(size: int) -> str:
    return f"{size / 1024 / 1024:.1f}"


def validate_json_file(name: str, content: bytes, *, max_bytes: int) -> str | None:
    """Validate an uploaded JSON file, returning a user-facing error or ``None``."""

    if not name.lower().endswith(".json"):
        return f"{name}: Not a JSON file"

    if not is_history_filename(name):
        return f"{name}: Not a recognized Spotify file format"

    if len(content) > max_bytes:
        limit_mb = max_bytes // (1024 * 1024)
        return f"{name}: File too large ({_format_megabytes(len(content))}MB, max {limit_mb}MB)"

    if not content:
        return f"{name}: File is empty"

    try:
        json.loads(content.decode("utf-8-sig"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return f"{name}: Invalid JSON format"

    return None
