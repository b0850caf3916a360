from __future__ import annotations

from fastapi.testclient import TestClient

from pos_backend.core.app_factory import create_app
from pos_backend.main import app


client = TestClient(app)


def test_preserves_incoming_request_id_header():
    incoming_id = "test-request-id-123"
    resp = client.get("/health", headers={"X-Request-ID": incoming_id})

    assert resp.status_code == 200
    assert resp.headers.get("X-Request-ID") == incoming_id


def test_generates_request_id_when_missing():
    resp = client.get("/health")

    assert resp.status_code == 200
    assert resp.headers.get("X-Request-ID")
    assert resp.headers.get("X-Request-Duration-ms") is not None


def test_rate_limited_response_keeps_request_id():
    local = TestClient(app)
    headers = {"X-Request-ID": "req-429"}

    responses = [local.get("/v1/rate-limits", headers=headers) for _ in range(101)]

    assert responses[-1].status_code == 429
    assert responses[-1].headers["X-Request-ID"] == "req-429"
    assert responses[-1].json()["error"]["request_id"] == "req-429"


def test_unhandled_error_response_keeps_request_id():
    failing_app = create_app()

    @failing_app.get("/v1/boom")
    async def boom():
        raise RuntimeError("limiter store unreachable")

    local = TestClient(failing_app, raise_server_exceptions=False)
    resp = local.get("/v1/boom", headers={"X-Request-ID": "req-500"})

    assert resp.status_code == 500
    assert resp.headers["X-Request-ID"] == "req-500"
    body = resp.json()
    assert body["error"]["code"] == "internal_server_error"
    assert body["error"]["request_id"] == "req-500"


def test_unhandled_error_generated_id_matches_header():
    failing_app = create_app()

    @failing_app.get("/v1/boom")
    async def boom():
        raise RuntimeError("limiter store unreachable")

    local = TestClient(failing_app, raise_server_exceptions=False)
    resp = local.get("/v1/boom")

    assert resp.status_code == 500
    assert resp.json()["error"]["request_id"] == resp.headers["X-Request-ID"]
