"""Engine and session management for the listenlog database."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import AbstractContextManager, contextmanager
from dataclasses import dataclass
import logging
from pathlib import Path

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.engine import URL, make_url
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from listenlog.config import load_config

_logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AbstractContextManager[Session]]


class Base(DeclarativeBase):
    pass


@dataclass(slots=True)
class _Database:
    url: str
    engine: Engine
    sessions: sessionmaker[Session]


_database: _Database | None = None
_bootstrapping = False


def _sqlite_file(url: URL) -> Path | None:
    if not url.drivername.startswith("sqlite"):
        return None
    if not url.database or url.database == ":memory:":
        return None
    path = Path(url.database)
    return path if path.is_absolute() else (Path.cwd() / path).resolve()


def _sqlite_pragmas(dbapi_connection, _record) -> None:  # type: ignore[no-untyped-def]
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _connect(url: URL) -> _Database:
    is_sqlite = url.drivername.startswith("sqlite")
    # Request handlers and the worker share one engine across threads.
    connect_args = {"check_same_thread": False} if is_sqlite else {}
    engine = create_engine(url, connect_args=connect_args, pool_pre_ping=True)
    if is_sqlite:
        event.listen(engine, "connect", _sqlite_pragmas)
    sessions = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return _Database(url=url.render_as_string(hide_password=False), engine=engine, sessions=sessions)


def _current(*, bootstrap: bool = True) -> _Database:
    """Return the database for the configured URL, reconnecting if it changed."""

    global _database

    url = make_url(load_config().database.url)
    if _database is not None and _database.url == url.render_as_string(hide_password=False):
        return _database

    _close()
    _database = _connect(url)
    if bootstrap and not _bootstrapping:
        init_db()
    return _database


def _close() -> None:
    global _database

    if _database is not None:
        _database.engine.dispose()
    _database = None


def get_session() -> Session:
    return _current().sessions()


@contextmanager
def session_scope() -> Iterator[Session]:
    """Yield a session that commits on success and rolls back on error."""

    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db() -> None:
    """Create any missing tables; SQLite files get their directory created first."""

    global _bootstrapping

    if _bootstrapping:
        return
    _bootstrapping = True
    try:
        path = _sqlite_file(make_url(load_config().database.url))
        is_new = path is not None and not path.exists()
        if path is not None:
            path.parent.mkdir(parents=True, exist_ok=True)

        engine = _current(bootstrap=False).engine
        from listenlog import models  # noqa: F401

        Base.metadata.create_all(bind=engine, checkfirst=True)
        if is_new:
            _logger.info("Created database file", extra={"event": "database.bootstrap"})
    finally:
        _bootstrapping = False


def reset_engine_for_tests() -> None:
    global _bootstrapping

    _close()
    _bootstrapping = False


__all__ = [
    "Base",
    "SessionFactory",
    "get_session",
    "init_db",
    "reset_engine_for_tests",
    "session_scope",
]
