"""Runtime configuration for listenlog.

Settings come from the process environment, then an optional ``.env`` file in
the working directory, then the defaults below. Every section is a plain
dataclass so services can take just the part they need.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
import os
from pathlib import Path
from typing import Any

from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError

DEFAULT_DATABASE_URL = "sqlite:///./listenlog.db"
DEFAULT_STORAGE_DIR = "./data/uploads"
DEFAULT_SPOTIFY_SCOPE = "user-read-recently-played user-top-read"
DEFAULT_SESSION_COOKIE = "listenlog_session"

_MEGABYTE = 1024 * 1024
_TRUE = frozenset({"1", "true", "yes", "on"})
_FALSE = frozenset({"0", "false", "no", "off"})
_PROFILE_ALIASES = {"development": "dev", "production": "prod", "testing": "test"}

_runtime_env: dict[str, str] | None = None


def _read_dotenv(path: Path) -> dict[str, str]:
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except OSError:
        return {}
    values: dict[str, str] = {}
    for raw in lines:
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        values[key.strip()] = value.strip().strip("\"'")
    return values


def load_runtime_env(
    *,
    env_file: str | os.PathLike[str] | None = None,
    base_env: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Merge ``.env`` values with the environment; the environment wins."""

    path = Path(env_file) if env_file is not None else Path(".env")
    merged = _read_dotenv(path) if path.is_file() else {}
    source = os.environ if base_env is None else base_env
    merged.update({key: str(value) for key, value in source.items() if value is not None})
    return merged


def get_runtime_env() -> Mapping[str, str]:
    global _runtime_env

    if _runtime_env is None:
        _runtime_env = load_runtime_env()
    return _runtime_env


def override_runtime_env(runtime_env: Mapping[str, str] | None) -> None:
    """Pin the runtime environment, or pass ``None`` to re-read it on next use."""

    global _runtime_env

    _runtime_env = dict(runtime_env) if runtime_env is not None else None


def get_env(name: str, default: str | None = None) -> str | None:
    return get_runtime_env().get(name, default)


@dataclass(slots=True)
class DatabaseConfig:
    url: str


@dataclass(slots=True)
class LoggingConfig:
    level: str
    log_file: str | None


@dataclass(slots=True, frozen=True)
class EnvironmentConfig:
    profile: str
    is_dev: bool
    is_test: bool
    is_prod: bool
    disable_workers: bool
    init_db_override: bool | None


@dataclass(slots=True)
class SecurityConfig:
    session_ttl_hours: int
    session_cookie_name: str
    password_min_length: int
    cookie_secure: bool
    password_hash_rounds: int = 12


@dataclass(slots=True)
class UploadConfig:
    max_file_bytes: int
    max_zip_bytes: int

    @property
    def max_file_mb(self) -> int:
        return self.max_file_bytes // _MEGABYTE

    @property
    def max_zip_mb(self) -> int:
        return self.max_zip_bytes // _MEGABYTE


@dataclass(slots=True)
class StorageConfig:
    root: str


@dataclass(slots=True)
class WorkerConfig:
    poll_interval_s: float
    batch_size: int
    max_retries: int
    stale_after_s: int
    stale_check_interval_s: float
    insert_batch_size: int


@dataclass(slots=True)
class AnalyticsConfig:
    cache_ttl_s: float
    cache_max_items: int


@dataclass(slots=True)
class SpotifyConfig:
    client_id: str | None
    client_secret: str | None
    redirect_uri: str | None
    scope: str
    enrichment_delay_ms: int
    enrichment_default_limit: int

    @property
    def has_client_credentials(self) -> bool:
        return bool(self.client_id and self.client_secret)

    @property
    def has_oauth_credentials(self) -> bool:
        return self.has_client_credentials and bool(self.redirect_uri)


@dataclass(slots=True)
class AppConfig:
    database: DatabaseConfig
    logging: LoggingConfig
    environment: EnvironmentConfig
    security: SecurityConfig
    upload: UploadConfig
    storage: StorageConfig
    worker: WorkerConfig
    analytics: AnalyticsConfig
    spotify: SpotifyConfig


class _EnvReader:
    """Typed lookups over a raw env mapping.

    Unparseable numbers fall back to the default; parsed numbers are clamped
    into ``[minimum, maximum]``.
    """

    def __init__(self, env: Mapping[str, Any]) -> None:
        self._env = env

    def text(self, key: str) -> str | None:
        value = self._env.get(key)
        if value is None:
            return None
        return str(value).strip() or None

    def flag(self, key: str) -> bool | None:
        value = (self.text(key) or "").lower()
        if value in _TRUE:
            return True
        if value in _FALSE:
            return False
        return None

    def integer(self, key: str, default: int, *, minimum: int, maximum: int | None = None) -> int:
        try:
            value = int(self.text(key) or default)
        except ValueError:
            value = default
        return _clamp(value, minimum, maximum)

    def number(
        self, key: str, default: float, *, minimum: float, maximum: float | None = None
    ) -> float:
        try:
            value = float(self.text(key) or default)
        except ValueError:
            value = default
        return _clamp(value, minimum, maximum)


def _clamp(value: Any, minimum: Any, maximum: Any) -> Any:
    value = max(minimum, value)
    return min(maximum, value) if maximum is not None else value


def _database_url(read: _EnvReader) -> str:
    from listenlog.errors import ValidationAppError

    candidate = read.text("DATABASE_URL") or DEFAULT_DATABASE_URL
    try:
        return make_url(candidate).render_as_string(hide_password=False)
    except (ArgumentError, ValueError) as exc:
        raise ValidationAppError(
            "DATABASE_URL is not a valid SQLAlchemy connection string.",
            meta={"field": "DATABASE_URL"},
        ) from exc


def _environment(read: _EnvReader) -> EnvironmentConfig:
    raw = (read.text("APP_ENV") or "dev").lower()
    profile = _PROFILE_ALIASES.get(raw, raw)
    if profile not in {"dev", "test", "prod"}:
        profile = "dev"
    return EnvironmentConfig(
        profile=profile,
        is_dev=profile == "dev",
        is_test=profile == "test",
        is_prod=profile == "prod",
        disable_workers=bool(read.flag("LISTENLOG_DISABLE_WORKERS")),
        init_db_override=read.flag("LISTENLOG_INIT_DB"),
    )


def load_config(runtime_env: Mapping[str, Any] | None = None) -> AppConfig:
    """Build an :class:`AppConfig` from ``runtime_env`` or the cached environment."""

    read = _EnvReader(runtime_env or get_runtime_env())
    environment = _environment(read)
    secure_cookie = read.flag("SESSION_COOKIE_SECURE")

    return AppConfig(
        database=DatabaseConfig(url=_database_url(read)),
        logging=LoggingConfig(
            level=(read.text("LOG_LEVEL") or "INFO").upper(),
            log_file=read.text("LOG_FILE"),
        ),
        environment=environment,
        security=SecurityConfig(
            session_ttl_hours=read.integer("SESSION_TTL_HOURS", 336, minimum=1),
            session_cookie_name=read.text("SESSION_COOKIE_NAME") or DEFAULT_SESSION_COOKIE,
            password_min_length=read.integer("PASSWORD_MIN_LENGTH", 8, minimum=1, maximum=72),
            cookie_secure=environment.is_prod if secure_cookie is None else secure_cookie,
            password_hash_rounds=read.integer("PASSWORD_HASH_ROUNDS", 12, minimum=4, maximum=16),
        ),
        upload=UploadConfig(
            max_file_bytes=read.integer("UPLOAD_MAX_FILE_MB", 10, minimum=1) * _MEGABYTE,
            max_zip_bytes=read.integer("UPLOAD_MAX_ZIP_MB", 100, minimum=1) * _MEGABYTE,
        ),
        storage=StorageConfig(root=read.text("STORAGE_DIR") or DEFAULT_STORAGE_DIR),
        worker=WorkerConfig(
            poll_interval_s=read.number("WORKER_POLL_INTERVAL_S", 2.0, minimum=0.05),
            batch_size=read.integer("WORKER_BATCH_SIZE", 5, minimum=1, maximum=100),
            max_retries=read.integer("WORKER_MAX_RETRIES", 3, minimum=0, maximum=20),
            stale_after_s=read.integer("WORKER_STALE_AFTER_S", 600, minimum=1),
            stale_check_interval_s=read.number(
                "WORKER_STALE_CHECK_INTERVAL_S", 60.0, minimum=1.0
            ),
            insert_batch_size=read.integer(
                "WORKER_INSERT_BATCH_SIZE", 500, minimum=1, maximum=5000
            ),
        ),
        analytics=AnalyticsConfig(
            cache_ttl_s=read.number("ANALYTICS_CACHE_TTL_S", 60.0, minimum=0.0),
            cache_max_items=read.integer("ANALYTICS_CACHE_MAX_ITEMS", 512, minimum=1),
        ),
        spotify=SpotifyConfig(
            client_id=read.text("SPOTIFY_CLIENT_ID"),
            client_secret=read.text("SPOTIFY_CLIENT_SECRET"),
            redirect_uri=read.text("SPOTIFY_REDIRECT_URI"),
            scope=read.text("SPOTIFY_SCOPE") or DEFAULT_SPOTIFY_SCOPE,
            enrichment_delay_ms=read.integer("ENRICHMENT_DELAY_MS", 350, minimum=0),
            enrichment_default_limit=read.integer(
                "ENRICHMENT_DEFAULT_LIMIT", 100, minimum=1, maximum=500
            ),
        ),
    )


__all__ = [
    "AnalyticsConfig",
    "AppConfig",
    "DEFAULT_DATABASE_URL",
    "DEFAULT_SESSION_COOKIE",
    "DEFAULT_SPOTIFY_SCOPE",
    "DEFAULT_STORAGE_DIR",
    "DatabaseConfig",
    "EnvironmentConfig",
    "LoggingConfig",
    "SecurityConfig",
    "SpotifyConfig",
    "StorageConfig",
    "UploadConfig",
    "WorkerConfig",
    "get_env",
    "get_runtime_env",
    "load_config",
    "load_runtime_env",
    "override_runtime_env",
]
