"""Versioned URLs for the bundled CSS and JS.

Each URL carries a short content hash (``/static/js/app.js?v=3f9a...``) so the
static mount can serve files as immutable.
"""

from __future__ import annotations

from functools import lru_cache
import hashlib
from pathlib import Path

STATIC_DIR = Path(__file__).resolve().parent / "static"
STATIC_URL_PREFIX = "/static"


@lru_cache(maxsize=1)
def bundled_assets() -> dict[str, str]:
    """Map each file under ``static/`` to the first 12 hex digits of its SHA-256."""

    return {
        path.relative_to(STATIC_DIR).as_posix(): hashlib.sha256(path.read_bytes()).hexdigest()[:12]
        for path in sorted(STATIC_DIR.rglob("*"))
        if path.is_file()
    }


def asset_url(path: str) -> str:
    relative = path.lstrip("/")
    version = bundled_assets().get(relative)
    if version is None:
        raise FileNotFoundError(f"Static asset '{path}' is not bundled")
    return f"{STATIC_URL_PREFIX}/{relative}?v={version}"


__all__ = ["STATIC_DIR", "asset_url", "bundled_assets"]
