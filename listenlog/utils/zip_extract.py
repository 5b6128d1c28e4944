"""Extract streaming-history JSON members from uploaded ZIP archives."""

from __future__ import annotations

from dataclasses import dataclass, field
import io
from pathlib import PurePosixPath
import zipfile

from listenlog.utils.upload_validation import ZIP_MEMBER_PATTERNS, validate_json_file

__all__ = ["ExtractedArchive", "ExtractedFile", "ZipExtractionError", "extract_history_files"]

_MEGABYTE = 1024 * 1024


class ZipExtractionError(Exception):
    """Raised when an archive cannot provide any history files."""

    def __init__(self, message: str, *, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = list(details or [])


@dataclass(slots=True)
class ExtractedFile:
    name: str
    content: str


@dataclass(slots=True)
class ExtractedArchive:
    files: list[ExtractedFile] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


def _too_large(name: str, size: int, limit: int) -> str:
    return f"{name}: File too large ({size / _MEGABYTE:.1f}MB, max {limit // _MEGABYTE}MB)"


def _read_member(archive: zipfile.ZipFile, info: zipfile.ZipInfo, limit: int) -> bytes | None:
    """Read at most ``limit`` bytes; ``None`` when the member is bigger than that.

    The size recorded in the archive header is not trusted on its own.
    """

    with archive.open(info) as member:
        raw = member.read(limit + 1)
    return None if len(raw) > limit else raw


def extract_history_files(
    data: bytes, *, max_bytes: int, max_member_bytes: int
) -> ExtractedArchive:
    """Return the valid Spotify history files found in ``data``.

    Members are matched on their basename so exports nested in folders
    (``MyData/StreamingHistory0.json``) are picked up. History members that
    exceed ``max_member_bytes`` or fail JSON validation are skipped and
    reported in ``errors``.
    """

    if len(data) > max_bytes:
        size_mb = len(data) / _MEGABYTE
        raise ZipExtractionError(
            f"ZIP file too large ({size_mb:.1f}MB, max {max_bytes // _MEGABYTE}MB)"
        )

    result = ExtractedArchive()
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            for info in archive.infolist():
                if info.is_dir():
                    continue
                basename = PurePosixPath(info.filename.replace("\\", "/")).name
                if not any(pattern.match(basename) for pattern in ZIP_MEMBER_PATTERNS):
                    continue
                raw = None
                if info.file_size <= max_member_bytes:
                    raw = _read_member(archive, info, max_member_bytes)
                if raw is None:
                    result.errors.append(_too_large(basename, info.file_size, max_member_bytes))
                    continue
                error = validate_json_file(basename, raw, max_bytes=max_member_bytes)
                if error is not None:
                    result.errors.append(error)
                    continue
                result.files.append(
                    ExtractedFile(name=basename, content=raw.decode("utf-8-sig"))
                )
    except (zipfile.BadZipFile, zipfile.LargeZipFile, OSError, RuntimeError) as exc:
        raise ZipExtractionError(f"Failed to extract ZIP file: {exc}") from exc

    if result.errors and not result.files:
        raise ZipExtractionError(
            "No valid Spotify JSON files found in the ZIP archive", details=result.errors
        )
    if not result.files:
        raise ZipExtractionError(
            "No Spotify JSON files found in the ZIP archive. "
            "Expected files like StreamingHistory*.json or endsong*.json."
        )

    return result
