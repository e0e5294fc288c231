"""API tests with TestClient: health, owner link management, public reads."""

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from sharegate.auth.jwt import create_access_token
from sharegate.limiter import limiter
from sharegate.main import app
from sharegate.shares.errors import StorageError
from sharegate.shares.repository import InMemoryLinkRepository
from sharegate.shares.routes import get_admin_service
from sharegate.shares.service import LinkAdminService


@pytest.fixture
def client():
    """TestClient for the FastAPI app. Use as context manager so lifespan runs (init_db)."""
    with TestClient(app) as c:
        yield c


@pytest.fixture
def owner_headers():
    """Bearer headers for a fresh owner so tests do not see each other's links."""
    token = create_access_token(f"owner-{uuid.uuid4().hex}")
    return {"Authorization": f"Bearer {token}"}


def _drain(client: TestClient) -> None:
    """Wait for background analytics writes started by previous requests."""
    client.portal.call(app.state.analytics.drain)


def _create(client: TestClient, headers: dict, **fields) -> dict:
    body = {"title": "doc", "content": "hello", "content_type": "text/plain"}
    body.update(fields)
    r = client.post("/api/share", json=body, headers=headers)
    assert r.status_code == 201, r.text
    return r.json()["link"]


def test_health(client: TestClient) -> None:
    """GET /health returns 200 and status ok."""
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


def test_owner_routes_require_auth(client: TestClient) -> None:
    assert client.get("/api/share").status_code == 401
    assert client.post("/api/share", json={}).status_code == 401
    r = client.get("/api/share", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401


def test_create_link(client: TestClient, owner_headers: dict) -> None:
    link = _create(client, owner_headers, description="d", max_views=3, password="secret")
    assert len(link["token"]) == 32
    assert link["current_views"] == 0
    assert link["is_active"] is True
    assert link["has_password"] is True
    assert "password_hash" not in link
    assert "owner_id" not in link


def test_create_link_missing_fields(client: TestClient, owner_headers: dict) -> None:
    r = client.post("/api/share", json={"title": "doc"}, headers=owner_headers)
    assert r.status_code == 400
    assert r.json()["fields"] == ["content", "content_type"]


def test_create_link_negative_max_views(client: TestClient, owner_headers: dict) -> None:
    r = client.post(
        "/api/share",
        json={"title": "doc", "content": "x", "content_type": "text/plain", "max_views": -1},
        headers=owner_headers,
    )
    assert r.status_code == 400


def test_list_links_newest_first(client: TestClient, owner_headers: dict) -> None:
    first = _create(client, owner_headers, title="first")
    second = _create(client, owner_headers, title="second")
    _create(client, {"Authorization": f"Bearer {create_access_token('someone-else')}"})
    r = client.get("/api/share", headers=owner_headers)
    assert r.status_code == 200
    assert [l["id"] for l in r.json()["links"]] == [second["id"], first["id"]]


def test_view_limit_scenario(client: TestClient, owner_headers: dict) -> None:
    """maxViews=1: first read 200 and counts one view, second read 403."""
    link = _create(client, owner_headers, max_views=1)
    r = client.get(f"/api/share/{link['token']}")
    assert r.status_code == 200
    assert r.json() == {
        "content": "hello",
        "title": "doc",
        "description": None,
        "content_type": "text/plain",
    }
    links = client.get("/api/share", headers=owner_headers).json()["links"]
    assert links[0]["current_views"] == 1

    r = client.get(f"/api/share/{link['token']}")
    assert r.status_code == 403
    assert r.json()["detail"] == "View limit exceeded"


def test_password_gate(client: TestClient, owner_headers: dict) -> None:
    link = _create(client, owner_headers, password="secret")
    url = f"/api/share/{link['token']}"

    r = client.get(url)
    assert r.status_code == 401
    assert r.json()["requiresPassword"] is True

    r = client.get(url, params={"password": "wrong"})
    assert r.status_code == 401
    assert r.json()["detail"] == "Incorrect password"
    assert "requiresPassword" not in r.json()

    r = client.get(url, params={"password": "secret"})
    assert r.status_code == 200
    r = client.get(url, headers={"X-Share-Password": "secret"})
    assert r.status_code == 200


def test_missing_disabled_expired_look_identical(client: TestClient, owner_headers: dict) -> None:
    disabled = _create(client, owner_headers)
    client.post(f"/api/share/{disabled['id']}/toggle", headers=owner_headers)
    past = (datetime.now(timezone.utc) - timedelta(hours=1)).isoformat()
    expired = _create(client, owner_headers, expires_at=past)

    responses = [
        client.get("/api/share/" + "0" * 32),
        client.get(f"/api/share/{disabled['token']}"),
        client.get(f"/api/share/{expired['token']}"),
    ]
    assert [r.status_code for r in responses] == [404, 404, 404]
    assert len({r.text for r in responses}) == 1


def test_update_link(client: TestClient, owner_headers: dict) -> None:
    link = _create(client, owner_headers, max_views=1)
    r = client.put(
        f"/api/share/{link['id']}",
        json={"title": "renamed", "max_views": None},
        headers=owner_headers,
    )
    assert r.status_code == 200
    updated = r.json()["link"]
    assert updated["title"] == "renamed"
    assert updated["max_views"] is None
    assert updated["content"] == "hello"


def test_update_quota_below_views_rejected(client: TestClient, owner_headers: dict) -> None:
    link = _create(client, owner_headers, max_views=3)
    client.get(f"/api/share/{link['token']}")
    client.get(f"/api/share/{link['token']}")
    r = client.put(f"/api/share/{link['id']}", json={"max_views": 1}, headers=owner_headers)
    assert r.status_code == 400
    assert r.json()["fields"] == ["max_views"]


def test_toggle_link(client: TestClient, owner_headers: dict) -> None:
    link = _create(client, owner_headers)
    r = client.post(f"/api/share/{link['id']}/toggle", headers=owner_headers)
    assert r.status_code == 200
    assert r.json()["link"]["is_active"] is False
    assert client.get(f"/api/share/{link['token']}").status_code == 404
    r = client.post(f"/api/share/{link['id']}/toggle", headers=owner_headers)
    assert r.json()["link"]["is_active"] is True
    assert client.get(f"/api/share/{link['token']}").status_code == 200


def test_other_owner_sees_404(client: TestClient, owner_headers: dict) -> None:
    link = _create(client, owner_headers)
    intruder = {"Authorization": f"Bearer {create_access_token('intruder')}"}
    lid = link["id"]
    assert client.put(f"/api/share/{lid}", json={"title": "x"}, headers=intruder).status_code == 404
    assert client.post(f"/api/share/{lid}/toggle", headers=intruder).status_code == 404
    assert client.get(f"/api/share/{lid}/analytics", headers=intruder).status_code == 404
    assert client.delete(f"/api/share/{lid}", headers=intruder).status_code == 404
    missing = client.delete("/api/share/999999", headers=intruder)
    assert missing.json() == client.delete(f"/api/share/{lid}", headers=intruder).json()


def test_analytics(client: TestClient, owner_headers: dict) -> None:
    link = _create(client, owner_headers)
    client.get(
        f"/api/share/{link['token']}",
        headers={"Referer": "https://example.org/post", "User-Agent": "pytest-agent"},
    )
    client.get(f"/api/share/{link['token']}")
    _drain(client)
    r = client.get(f"/api/share/{link['id']}/analytics", headers=owner_headers)
    assert r.status_code == 200
    data = r.json()
    assert data["summary"] == {"total_views": 2, "record_count": 2}
    assert data["link"]["id"] == link["id"]
    referrers = {a["referrer"] for a in data["analytics"]}
    assert "https://example.org/post" in referrers
    for record in data["analytics"]:
        assert record["viewer_identity_hash"] != "testclient"


def test_delete_cascades_and_analytics_404(client: TestClient, owner_headers: dict) -> None:
    link = _create(client, owner_headers)
    client.get(f"/api/share/{link['token']}")
    _drain(client)
    r = client.delete(f"/api/share/{link['id']}", headers=owner_headers)
    assert r.status_code == 200
    assert client.get(f"/api/share/{link['id']}/analytics", headers=owner_headers).status_code == 404
    assert client.get(f"/api/share/{link['token']}").status_code == 404


def test_security_headers(client: TestClient) -> None:
    r = client.get("/api/share/" + "0" * 32)
    assert r.headers["X-Content-Type-Options"] == "nosniff"
    assert r.headers["Cache-Control"] == "no-store"


def test_public_read_rate_limited(client: TestClient, owner_headers: dict, monkeypatch) -> None:
    """Sixth read in a minute from one address is refused (limit 5/minute in tests)."""
    link = _create(client, owner_headers, password="secret")
    monkeypatch.setattr(limiter, "enabled", True)
    limiter.reset()
    try:
        codes = [
            client.get(f"/api/share/{link['token']}", params={"password": "guess"}).status_code
            for _ in range(6)
        ]
    finally:
        limiter.reset()
    assert codes[:5] == [401] * 5
    assert codes[5] == 429


class _BrokenRepository(InMemoryLinkRepository):
    async def create(self, owner_id, token, draft):
        raise StorageError("disk on fire: /var/lib/secret/path")


def test_storage_error_is_generic_500(client: TestClient, owner_headers: dict) -> None:
    app.dependency_overrides[get_admin_service] = lambda: LinkAdminService(_BrokenRepository())
    try:
        r = client.post(
            "/api/share",
            json={"title": "doc", "content": "hello", "content_type": "text/plain"},
            headers=owner_headers,
        )
    finally:
        app.dependency_overrides.pop(get_admin_service, None)
    assert r.status_code == 500
    assert r.json() == {"detail": "Internal server error"}
