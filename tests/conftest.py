import asyncio
from collections.abc import Iterator
from datetime import datetime
import inspect
from pathlib import Path
from typing import Any, Callable

from fastapi.testclient import TestClient
import pytest

from listenlog.config import override_runtime_env
from listenlog.db import init_db, reset_engine_for_tests, session_scope
from listenlog.dependencies import clear_dependency_caches
from listenlog.models import Listen
from listenlog.services.auth_service import AuthService


@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem: pytest.Function) -> bool | None:
    marker = pyfuncitem.get_closest_marker("asyncio")
    if marker is None:
        return None
    test_func = pyfuncitem.obj
    if not inspect.iscoroutinefunction(test_func):
        return None
    fixtureinfo = getattr(pyfuncitem, "_fixtureinfo", None)
    if fixtureinfo is None:
        return None
    kwargs = {name: pyfuncitem.funcargs[name] for name in fixtureinfo.argnames}
    asyncio.run(test_func(**kwargs))
    return True


@pytest.fixture(autouse=True)
def _test_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    data_dir = tmp_path / "data"
    storage_dir = tmp_path / "uploads"
    data_dir.mkdir(parents=True, exist_ok=True)

    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("APP_ENV", "test")
    monkeypatch.setenv("LISTENLOG_DISABLE_WORKERS", "true")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{data_dir / 'listenlog.db'}")
    monkeypatch.setenv("STORAGE_DIR", str(storage_dir))
    monkeypatch.setenv("ANALYTICS_CACHE_TTL_S", "60")
    monkeypatch.setenv("ENRICHMENT_DELAY_MS", "0")
    monkeypatch.setenv("PASSWORD_HASH_ROUNDS", "4")
    for name in ("SPOTIFY_CLIENT_ID", "SPOTIFY_CLIENT_SECRET", "SPOTIFY_REDIRECT_URI"):
        monkeypatch.delenv(name, raising=False)

    override_runtime_env(None)
    clear_dependency_caches()
    reset_engine_for_tests()
    try:
        yield
    finally:
        reset_engine_for_tests()
        clear_dependency_caches()
        override_runtime_env(None)


@pytest.fixture()
def db() -> None:
    init_db()


@pytest.fixture()
def client() -> Iterator[TestClient]:
    from listenlog.main import create_app

    with TestClient(create_app()) as test_client:
        yield test_client


@pytest.fixture()
def create_user(db: None) -> Callable[..., int]:
    from listenlog.dependencies import get_app_config

    service = AuthService(get_app_config().security)
    counter = {"value": 0}

    def _create(email: str | None = None, password: str = "correct-horse") -> int:
        counter["value"] += 1
        address = email or f"listener{counter['value']}@example.com"
        return service.signup(email=address, password=password).id

    return _create


@pytest.fixture()
def auth_headers(client: TestClient) -> dict[str, str]:
    credentials = {"email": "owner@example.com", "password": "correct-horse"}
    assert client.post("/api/auth/signup", json=credentials).status_code == 201
    response = client.post("/api/auth/signin", json=credentials)
    token = response.json()["data"]["token"]
    client.cookies.clear()
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def add_listens() -> Callable[..., None]:
    def _add(user_id: int, rows: list[dict[str, Any]]) -> None:
        with session_scope() as session:
            for row in rows:
                payload = {"ms_played": 60_000, "uploaded_at": datetime(2024, 1, 1)}
                payload.update(row)
                session.add(Listen(user_id=user_id, **payload))

    return _add


@pytest.fixture()
def log_events(monkeypatch: pytest.MonkeyPatch) -> Callable[[str], list[tuple[str, dict[str, Any]]]]:
    """Capture structured log events emitted via ``log_event`` in ``module``."""

    def _install(module: str) -> list[tuple[str, dict[str, Any]]]:
        events: list[tuple[str, dict[str, Any]]] = []

        def _capture(_logger: Any, event: str, /, **fields: Any) -> None:
            events.append((event, dict(fields)))

        monkeypatch.setattr(f"{module}.log_event", _capture)
        return events

    return _install
