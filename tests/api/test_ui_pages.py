import pytest
from fastapi.testclient import TestClient

from listenlog.ui.assets import asset_url

CREDENTIALS = {"email": "viewer@example.com", "password": "correct-horse"}


def test_index_redirects_anonymous_visitors_to_login(client: TestClient) -> None:
    response = client.get("/", follow_redirects=False)

    assert response.status_code == 303
    assert response.headers["location"] == "/login"


@pytest.mark.parametrize("path", ["/login", "/signup"])
def test_public_pages_render(client: TestClient, path: str) -> None:
    response = client.get(path)

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/html")
    assert "listenlog" in response.text


@pytest.mark.parametrize("path", ["/dashboard", "/upload"])
def test_private_pages_require_session(client: TestClient, path: str) -> None:
    response = client.get(path, follow_redirects=False)

    assert response.status_code == 303
    assert response.headers["location"] == "/login"


def test_signed_in_visitor_sees_dashboard(client: TestClient) -> None:
    client.post("/api/auth/signup", json=CREDENTIALS)
    client.post("/api/auth/signin", json=CREDENTIALS)

    index = client.get("/", follow_redirects=False)
    dashboard = client.get("/dashboard?spotify=connected")
    upload = client.get("/upload")
    login = client.get("/login", follow_redirects=False)

    assert index.headers["location"] == "/dashboard"
    assert dashboard.status_code == 200
    assert "Top artists" in dashboard.text
    assert upload.status_code == 200
    assert login.status_code == 303


def test_static_assets_are_versioned_and_cached(client: TestClient) -> None:
    url = asset_url("css/app.css")

    response = client.get(url)

    assert url.startswith("/static/css/app.css?v=")
    assert response.status_code == 200
    assert "immutable" in response.headers["cache-control"]
