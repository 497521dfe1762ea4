from __future__ import annotations

import json

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from ipguard import EndpointRule, Gatekeeper, Settings
from main import create_app


class FakeClock:
    def __init__(self) -> None:
        self.now = 1_700_000_000_000

    def __call__(self) -> int:
        return self.now


def make_settings(tmp_path, **overrides) -> Settings:
    fields = {
        "data_dir": tmp_path,
        "save_endpoints": (EndpointRule.create("POST", "/api/*"),),
        "rate_limit_window_ms": 1000,
        "rate_limit_requests": 1000,
    }
    fields.update(overrides)
    return Settings(**fields)


def build_client(settings: Settings):
    gatekeeper = Gatekeeper(settings, clock=FakeClock(), locate=lambda address: None)
    app = create_app(settings, gatekeeper)

    @app.post("/api/orders")
    async def create_order(request: Request) -> dict:
        return {"received": await request.json()}

    @app.get("/api/orders")
    def list_orders() -> dict:
        return {"orders": []}

    return TestClient(app), gatekeeper


@pytest.fixture()
def api_client(tmp_path):
    return build_client(make_settings(tmp_path))


def test_banned_address_is_rejected_without_side_effects(api_client, tmp_path):
    client, gatekeeper = api_client
    gatekeeper.ban("6.6.6.6")

    response = client.post(
        "/api/orders", json={"qty": 1}, headers={"X-Forwarded-For": "6.6.6.6"}
    )

    assert response.status_code == 403
    assert response.text == "Your IP is blocked."
    assert gatekeeper.rate_records() == {}
    assert gatekeeper.load_logs() == []


def test_promoting_request_is_forwarded_then_address_blocked(tmp_path):
    client, gatekeeper = build_client(make_settings(tmp_path, rate_limit_requests=3))
    headers = {"X-Forwarded-For": "1.2.3.4"}

    statuses = [client.get("/healthz", headers=headers).status_code for _ in range(4)]

    assert statuses == [200, 200, 200, 200]
    assert gatekeeper.is_banned("1.2.3.4")
    assert "1.2.3.4" not in gatekeeper.rate_records()
    assert client.get("/healthz", headers=headers).status_code == 403
    assert client.get("/healthz", headers={"X-Forwarded-For": "5.5.5.5"}).status_code == 200


def test_matching_request_is_logged_and_body_still_readable(api_client):
    client, gatekeeper = api_client

    response = client.post(
        "/api/orders?source=web",
        json={"qty": 3},
        headers={
            "X-Forwarded-For": "203.0.113.9",
            "User-Agent": "curl/8.4.0",
            "Authorization": "Bearer secret",
            "Referer": "https://shop.example/cart",
        },
    )

    assert response.status_code == 200
    assert response.json() == {"received": {"qty": 3}}
    (entry,) = gatekeeper.load_logs()
    assert entry.ip == "203.0.113.9"
    assert entry.method == "POST"
    assert entry.endpoint == "/api/orders?source=web"
    assert entry.body == {"qty": 3}
    assert entry.geo is None
    assert entry.user_agent["full"] == "curl/8.4.0"
    assert entry.timestamp.endswith("Z")
    assert {key.lower() for key in entry.headers} <= {"host", "referer", "content-type", "accept"}
    assert entry.headers["referer"] == "https://shop.example/cart"


def test_non_matching_requests_are_not_logged(api_client):
    client, gatekeeper = api_client

    client.get("/api/orders")
    client.get("/healthz")

    assert gatekeeper.load_logs() == []
    assert gatekeeper.rate_records()["testclient"].count == 2


def test_storage_failures_never_break_requests(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("")
    client, _ = build_client(make_settings(blocker))

    response = client.post("/api/orders", json={"qty": 1})

    assert response.status_code == 200


def test_rotation_through_middleware(tmp_path):
    client, gatekeeper = build_client(make_settings(tmp_path, max_size=200))

    for qty in range(5):
        client.post("/api/orders", json={"qty": qty})

    assert [entry.body for entry in gatekeeper.load_logs()] == [{"qty": 4}]


def test_admin_ban_and_unban(api_client, tmp_path):
    client, gatekeeper = api_client

    assert client.put("/admin/bans/9.9.9.9").json()["changed"] is True
    assert client.put("/admin/bans/9.9.9.9").json()["changed"] is False
    assert client.get("/admin/bans").json() == {"count": 1, "addresses": ["9.9.9.9"]}
    assert json.loads((tmp_path / "blockedIps.json").read_text()) == ["9.9.9.9"]
    assert client.get("/healthz", headers={"X-Forwarded-For": "9.9.9.9"}).status_code == 403

    assert client.delete("/admin/bans/9.9.9.9").json()["changed"] is True
    assert not gatekeeper.is_banned("9.9.9.9")
    assert client.get("/healthz", headers={"X-Forwarded-For": "9.9.9.9"}).status_code == 200


def test_admin_requests_lists_newest_first(tmp_path):
    client, _ = build_client(make_settings(tmp_path))
    for qty in range(3):
        client.post("/api/orders", json={"qty": qty})

    data = client.get("/admin/requests?limit=2").json()

    assert data["total"] == 3
    assert [entry["body"]["qty"] for entry in data["entries"]] == [2, 1]


def test_admin_token_required_when_configured(tmp_path):
    client, _ = build_client(make_settings(tmp_path, admin_token="s3cret"))

    assert client.get("/admin/bans").status_code == 401
    assert client.get("/admin/bans", headers={"X-Admin-Token": "nope"}).status_code == 401
    assert client.get("/admin/bans", headers={"X-Admin-Token": "s3cret"}).status_code == 200


def test_block_only_hook(tmp_path):
    gatekeeper = Gatekeeper(make_settings(tmp_path), locate=lambda address: None)
    gatekeeper.ban("testclient")
    app = FastAPI()
    app.middleware("http")(gatekeeper.block_only)

    @app.get("/ping")
    def ping() -> dict:
        return {"pong": True}

    client = TestClient(app)

    assert client.get("/ping").status_code == 403
    assert client.get("/ping", headers={"X-Forwarded-For": "1.1.1.1"}).json() == {"pong": True}
    assert gatekeeper.rate_records() == {}


def test_admin_requests_skips_malformed_log_entries(api_client, tmp_path):
    client, _ = api_client
    (tmp_path / "requests.json").write_text(
        json.dumps([{"ip": "1.2.3.4", "headers": "oops"}, {"ip": "5.6.7.8", "method": "GET"}])
    )

    response = client.get("/admin/requests")

    assert response.status_code == 200
    assert [entry["ip"] for entry in response.json()["entries"]] == ["5.6.7.8"]
