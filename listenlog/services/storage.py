"""Local filesystem storage for raw upload files awaiting processing."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path, PurePosixPath
import re

from listenlog.errors import ValidationAppError
from listenlog.logging import get_logger

_WINDOWS_DRIVE_PATTERN = re.compile(r"^[a-zA-Z]:[\\/]")
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")

logger = get_logger(__name__)


def _safe_name(name: str) -> str:
    basename = PurePosixPath(name.replace("\\", "/")).name
    cleaned = _UNSAFE_CHARS.sub("_", basename).strip("._")
    return cleaned or "upload.json"


def _is_within(candidate: Path, base: Path) -> bool:
    try:
        candidate.relative_to(base)
        return True
    except ValueError:
        return False


@dataclass(slots=True)
class FileStorage:
    """Store upload files under ``<root>/<user>/<upload job>/``.

    Keys handed to callers are POSIX paths relative to ``root``.
    """

    root: Path

    def __post_init__(self) -> None:
        self.root = Path(self.root).expanduser().resolve(strict=False)

    def build_key(self, *, user_id: int, upload_job_id: str, file_index: int, name: str) -> str:
        return f"{user_id}/{upload_job_id}/{file_index}_{_safe_name(name)}"

    def resolve(self, key: str) -> Path:
        text = (key or "").strip()
        if not text:
            raise ValidationAppError("Storage path must not be empty.")
        if text.startswith(("/", "\\")) or _WINDOWS_DRIVE_PATTERN.match(text):
            raise ValidationAppError("Absolute storage paths are not allowed.")
        relative = PurePosixPath(text.replace("\\", "/"))
        if any(part == ".." for part in relative.parts):
            raise ValidationAppError("Storage path escapes the upload directory.")
        candidate = (self.root / Path(*relative.parts)).resolve(strict=False)
        if not _is_within(candidate, self.root):
            raise ValidationAppError("Storage path escapes the upload directory.")
        return candidate

    def owns_key(self, key: str, *, user_id: int) -> bool:
        """Return ``True`` if ``key`` lives in ``user_id``'s namespace."""

        parts = PurePosixPath((key or "").replace("\\", "/")).parts
        return len(parts) >= 2 and parts[0] == str(user_id)

    def save(self, key: str, content: bytes | str) -> str:
        path = self.resolve(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, str):
            path.write_text(content, encoding="utf-8")
        else:
            path.write_bytes(content)
        return key

    def exists(self, key: str) -> bool:
        return self.resolve(key).is_file()

    def read_text(self, key: str) -> str:
        path = self.resolve(key)
        return path.read_bytes().decode("utf-8-sig")

    def delete(self, key: str) -> None:
        path = self.resolve(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return
        parent = path.parent
        while parent != self.root and _is_within(parent, self.root):
            try:
                parent.rmdir()
            except OSError:
                break
            parent = parent.parent
        logger.debug("Removed stored upload %s", key)


__all__ = ["FileStorage"]
