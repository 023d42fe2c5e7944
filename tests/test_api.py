import base64

import pytest
from fastapi.testclient import TestClient

import api.routes
import config
from api.main import app
from api.routes import get_db
from tests.conftest import make_account, make_reality, store

TOKEN = "test-admin-token"
AUTH = {"Authorization": f"Bearer {TOKEN}"}


@pytest.fixture
def client(session_factory, reloader, monkeypatch):
    monkeypatch.setattr(config, "ADMIN_TOKEN", TOKEN)

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    # без контекстного менеджера lifespan (seed и планировщик) не запускается
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_root(client):
    assert client.get("/").json()["status"] == "ok"


def test_admin_requires_token(client):
    assert client.get("/api/accounts").status_code == 401
    assert client.get("/api/accounts", headers={"Authorization": "Bearer wrong"}).status_code == 401
    assert client.get("/api/accounts", headers=AUTH).status_code == 200


def test_admin_disabled_without_token(client, monkeypatch):
    monkeypatch.setattr(config, "ADMIN_TOKEN", "")
    assert client.get("/api/accounts", headers=AUTH).status_code == 503


def test_account_lifecycle(client, reloader, db):
    store(db, make_reality())

    response = client.post("/api/accounts", json={"username": "alice", "traffic_limit": 1000}, headers=AUTH)
    assert response.status_code == 201
    body = response.json()
    assert body["reload"] == {"status": "written", "error": None}
    account_id = body["account"]["id"]

    assert client.post("/api/accounts", json={"username": "alice"}, headers=AUTH).status_code == 409

    links = client.get(f"/api/accounts/{account_id}/links", headers=AUTH).json()["links"]
    assert len(links) == 1 and links[0].startswith("vless://")

    response = client.put(f"/api/accounts/{account_id}/status", json={"status": "banned"}, headers=AUTH)
    assert response.json()["account"]["status"] == "banned"
    assert client.put(f"/api/accounts/{account_id}/status", json={"status": "nope"}, headers=AUTH).status_code == 400

    assert client.put(f"/api/accounts/{account_id}/limit", json={"limit": -5}, headers=AUTH).status_code == 422

    assert client.delete(f"/api/accounts/{account_id}", headers=AUTH).status_code == 200
    assert client.delete(f"/api/accounts/{account_id}", headers=AUTH).status_code == 404


def test_inbound_endpoints(client, reloader):
    data = {
        "tag": "vless-ws",
        "protocol": "vless",
        "listen_port": 8443,
        "tls_type": "reality",
        "transport": "ws",
        "service_name": "/ws",
        "user_type": "new",
        "reality_private_key": "secret",
        "reality_public_key": "pub",
    }
    response = client.post("/api/inbounds", json=data, headers=AUTH)
    assert response.status_code == 201
    inbound = response.json()["inbound"]
    assert "reality_private_key" not in inbound
    assert inbound["has_private_key"] is True

    assert client.post("/api/inbounds", json=data, headers=AUTH).status_code == 409
    bad = dict(data, tag="hy", listen_port=2056, protocol="hysteria2", tls_type="certificate", user_type="hy2")
    response = client.post("/api/inbounds", json=bad, headers=AUTH)
    assert response.status_code == 400
    assert response.json()["detail"] == "Hysteria2 does not support transport"

    toggled = client.put(f"/api/inbounds/{inbound['id']}/toggle", headers=AUTH).json()["inbound"]
    assert toggled["enabled"] is False

    listed = client.get("/api/inbounds", headers=AUTH).json()
    assert [i["tag"] for i in listed] == ["vless-ws"]
    assert "transports" in client.get("/api/inbounds/rules", headers=AUTH).json()


def test_builtin_delete_forbidden(client, db):
    inbound = store(db, make_reality(is_builtin=True))
    assert client.delete(f"/api/inbounds/{inbound.id}", headers=AUTH).status_code == 403


def test_reload_endpoint_reports_write_failure(client, db):
    store(db, make_reality(reality_private_key=""))
    response = client.post("/api/reload", headers=AUTH)
    assert response.status_code == 500
    assert "private key" in response.json()["detail"]["details"]


def test_stats_endpoint(client, db):
    store(db, make_account(traffic_used=10), make_account(status="banned", traffic_used=5))
    stats = client.get("/api/stats", headers=AUTH).json()
    assert stats["total_users"] == 2
    assert stats["total_traffic_used"] == 15


def test_subscription(client, db):
    store(db, make_reality(), make_reality(tag="off", listen_port=1, enabled=False))
    account = store(db, make_account(username="alice", traffic_used=300, traffic_limit=1000))

    response = client.get(f"/sub/{account.subscription_token}")

    assert response.status_code == 200
    assert response.headers["subscription-userinfo"] == "upload=0; download=300; total=1000"
    links = base64.b64decode(response.text).decode().split("\n")
    assert len(links) == 1
    assert links[0].startswith(f"vless://{account.uuid}@")


def test_subscription_not_found(client, db):
    banned = store(db, make_account(status="banned"))
    assert client.get("/sub/unknown-token").status_code == 404
    assert client.get(f"/sub/{banned.subscription_token}").status_code == 404


def test_validate_sni(client, monkeypatch):
    checked = []

    def fake_check(domain):
        checked.append(domain)
        return domain == "www.microsoft.com"

    monkeypatch.setattr(api.routes, "validate_reality_sni", fake_check)

    assert client.get("/api/inbounds/validate-sni", headers=AUTH).status_code == 400
    assert client.get("/api/inbounds/validate-sni?domain=%20", headers=AUTH).status_code == 400
    assert client.get("/api/inbounds/validate-sni?domain=www.microsoft.com").status_code == 401

    ok = client.get("/api/inbounds/validate-sni?domain=www.microsoft.com", headers=AUTH)
    assert ok.json() == {"domain": "www.microsoft.com", "valid": True}
    bad = client.get("/api/inbounds/validate-sni?domain=example.org", headers=AUTH)
    assert bad.json() == {"domain": "example.org", "valid": False}
    assert checked == ["www.microsoft.com", "example.org"]
