"""Tests for the rate limiting FastAPI dependency and its 429 translation."""

from types import SimpleNamespace

import pytest
from fastapi import Depends, FastAPI, Response
from fastapi.testclient import TestClient

from pos_backend.adapters.rate_limit.in_memory import InMemoryFixedWindowRateLimiter
from pos_backend.core.app_factory import create_app
from pos_backend.core.config import RateLimitSettings
from pos_backend.core.errors import ConfigurationError, RateLimitExceededError
from pos_backend.core.rate_limit import hash_identity, rate_limit, resolve_identity


def _build_app(clock, **overrides) -> FastAPI:
    cfg = RateLimitSettings(policies="login=2/60000,api=3/60000", **overrides)
    app = create_app(
        rate_limit_settings=cfg,
        limiter=InMemoryFixedWindowRateLimiter(clock=clock),
    )

    @app.post("/v1/auth/login", dependencies=[Depends(rate_limit("login"))])
    async def login() -> dict:
        return {"success": True}

    @app.get("/v1/checkout", dependencies=[Depends(rate_limit("checkout"))])
    async def checkout() -> dict:
        return {"success": True}

    return app


@pytest.fixture
def client(clock) -> TestClient:
    return TestClient(_build_app(clock))


class TestRateLimitDependency:
    def test_allowed_requests_carry_budget_headers(self, client: TestClient) -> None:
        first = client.post("/v1/auth/login")
        second = client.post("/v1/auth/login")

        assert first.status_code == 200
        assert first.headers["X-RateLimit-Limit"] == "2"
        assert first.headers["X-RateLimit-Remaining"] == "1"
        assert second.headers["X-RateLimit-Remaining"] == "0"
        assert second.headers["X-RateLimit-Reset"] == "1060"

    def test_rejected_request_returns_429(self, client: TestClient) -> None:
        client.post("/v1/auth/login")
        client.post("/v1/auth/login")

        response = client.post("/v1/auth/login")

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "60"
        assert response.headers["X-RateLimit-Remaining"] == "0"
        body = response.json()
        assert body["error"]["code"] == "rate_limit_exceeded"
        assert body["error"]["details"]["policy"] == "login"
        assert body["error"]["details"]["retry_after_ms"] == 60_000
        assert "request_id" in body["error"]

    def test_window_elapse_lets_client_back_in(self, clock, client: TestClient) -> None:
        for _ in range(3):
            client.post("/v1/auth/login")

        clock.advance_ms(60_000)
        response = client.post("/v1/auth/login")

        assert response.status_code == 200
        assert response.headers["X-RateLimit-Remaining"] == "1"

    def test_policies_have_separate_budgets(self, client: TestClient) -> None:
        client.post("/v1/auth/login")
        client.post("/v1/auth/login")
        assert client.post("/v1/auth/login").status_code == 429

        response = client.get("/v1/rate-limits")
        assert response.status_code == 200
        assert response.headers["X-RateLimit-Limit"] == "3"

    def test_forwarded_clients_are_limited_independently(self, clock) -> None:
        client = TestClient(_build_app(clock, trust_forwarded_for=True))
        a = {"X-Forwarded-For": "1.2.3.4, 10.0.0.1"}
        b = {"X-Forwarded-For": "5.6.7.8"}

        client.post("/v1/auth/login", headers=a)
        client.post("/v1/auth/login", headers=a)

        assert client.post("/v1/auth/login", headers=a).status_code == 429
        assert client.post("/v1/auth/login", headers=b).status_code == 200

    def test_untrusted_forwarded_header_is_ignored(self, clock) -> None:
        client = TestClient(_build_app(clock, trust_forwarded_for=False))

        client.post("/v1/auth/login", headers={"X-Forwarded-For": "1.1.1.1"})
        client.post("/v1/auth/login", headers={"X-Forwarded-For": "2.2.2.2"})
        response = client.post("/v1/auth/login", headers={"X-Forwarded-For": "3.3.3.3"})

        assert response.status_code == 429

    def test_default_settings_ignore_rotating_forwarded_for(self, clock) -> None:
        cfg = RateLimitSettings()
        assert cfg.trust_forwarded_for is False

        app = create_app(rate_limit_settings=cfg, limiter=InMemoryFixedWindowRateLimiter(clock=clock))

        @app.post("/v1/auth/login", dependencies=[Depends(rate_limit("login"))])
        async def login() -> dict:
            return {"success": True}

        client = TestClient(app)
        responses = [
            client.post("/v1/auth/login", headers={"X-Forwarded-For": f"9.9.9.{i}"})
            for i in range(20)
        ]

        login_policy = app.state.rate_limit_policies.get_policy("login")
        rejected = [r for r in responses if r.status_code == 429]
        assert len(rejected) == 20 - login_policy.max_requests

    def test_disabled_rate_limiting_never_rejects(self, clock) -> None:
        client = TestClient(_build_app(clock, enabled=False))

        responses = [client.post("/v1/auth/login") for _ in range(10)]

        assert all(r.status_code == 200 for r in responses)
        assert "X-RateLimit-Limit" not in responses[0].headers

    def test_headers_can_be_disabled_but_retry_after_remains(self, clock) -> None:
        client = TestClient(_build_app(clock, include_headers=False))
        client.post("/v1/auth/login")
        client.post("/v1/auth/login")

        response = client.post("/v1/auth/login")

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "60"
        assert "X-RateLimit-Limit" not in response.headers

    def test_unknown_policy_is_a_server_error(self, client: TestClient) -> None:
        response = client.get("/v1/checkout")

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "unknown_rate_limit_policy"


class TestCreateApp:
    def test_invalid_policy_config_fails_startup(self) -> None:
        with pytest.raises(ConfigurationError):
            create_app(rate_limit_settings=RateLimitSettings(policies="login=0/60000"))

    def test_empty_policy_config_fails_startup(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            create_app(rate_limit_settings=RateLimitSettings(policies=""))

        assert exc_info.value.code == "no_rate_limit_policies"

    def test_unknown_route_policy_fails_startup(self, clock) -> None:
        app = _build_app(clock)

        with pytest.raises(ConfigurationError) as exc_info:
            with TestClient(app):
                pass

        assert exc_info.value.code == "unknown_rate_limit_policy"
        assert exc_info.value.details["policy"] == "checkout"

    def test_known_route_policies_start_cleanly(self) -> None:
        app = create_app(rate_limit_settings=RateLimitSettings(policies="login=2/60000,api=3/60000"))

        @app.post("/v1/auth/login", dependencies=[Depends(rate_limit("login"))])
        async def login() -> dict:
            return {"success": True}

        with TestClient(app) as client:
            assert client.post("/v1/auth/login").status_code == 200

    def test_disabled_limiting_skips_route_policy_check(self, clock) -> None:
        app = _build_app(clock, enabled=False)

        with TestClient(app) as client:
            assert client.get("/v1/checkout").status_code == 200

    def test_each_app_owns_its_limiter(self) -> None:
        first = create_app()
        second = create_app()

        assert first.state.rate_limiter is not second.state.rate_limiter


class TestResolveIdentity:
    @staticmethod
    def _request(headers=None, host="10.0.0.9", user_id=None):
        return SimpleNamespace(
            headers=headers or {},
            client=SimpleNamespace(host=host) if host else None,
            state=SimpleNamespace(user_id=user_id),
        )

    def test_authenticated_principal_wins(self) -> None:
        request = self._request(headers={"x-forwarded-for": "1.2.3.4"}, user_id="42")
        assert resolve_identity(request) == "user:42"

    def test_first_forwarded_hop(self) -> None:
        request = self._request(headers={"x-forwarded-for": " 1.2.3.4 , 10.0.0.1"})
        assert resolve_identity(request, trust_forwarded_for=True) == "ip:1.2.3.4"

    def test_real_ip_fallback(self) -> None:
        request = self._request(headers={"x-real-ip": "9.9.9.9"})
        assert resolve_identity(request, trust_forwarded_for=True) == "ip:9.9.9.9"

    def test_peer_address_when_proxy_headers_untrusted(self) -> None:
        request = self._request(headers={"x-forwarded-for": "1.2.3.4"})
        assert resolve_identity(request, trust_forwarded_for=False) == "ip:10.0.0.9"

    def test_forwarded_headers_ignored_by_default(self) -> None:
        request = self._request(headers={"x-forwarded-for": "1.2.3.4", "x-real-ip": "9.9.9.9"})
        assert resolve_identity(request) == "ip:10.0.0.9"

    def test_unknown_client(self) -> None:
        request = self._request(host=None)
        assert resolve_identity(request) == "ip:unknown"

    def test_hash_identity_hides_address(self) -> None:
        hashed = hash_identity("ip:1.2.3.4")

        assert len(hashed) == 16
        assert "1.2.3.4" not in hashed
        assert hashed == hash_identity("ip:1.2.3.4")


class TestEnforceRateLimitDirect:
    """Call the dependency without the HTTP stack."""

    @staticmethod
    def _request(app: FastAPI, host: str = "1.2.3.4"):
        return SimpleNamespace(
            app=app,
            headers={},
            client=SimpleNamespace(host=host),
            state=SimpleNamespace(),
        )

    @pytest.mark.asyncio
    async def test_raises_once_budget_is_spent(self, clock) -> None:
        app = _build_app(clock)
        dependency = rate_limit("login")
        request = self._request(app)

        await dependency(request, Response())
        await dependency(request, Response())

        with pytest.raises(RateLimitExceededError) as exc_info:
            await dependency(request, Response())

        assert exc_info.value.policy_name == "login"
        assert exc_info.value.decision.retry_after_ms == 60_000

    @pytest.mark.asyncio
    async def test_sets_budget_headers_on_response(self, clock) -> None:
        app = _build_app(clock)
        response = Response()

        await rate_limit("api")(self._request(app), response)

        assert response.headers["X-RateLimit-Remaining"] == "2"
