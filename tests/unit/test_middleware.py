"""Tests for CORS and rate limiting middleware."""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from starlette.requests import Request

from poll_geo_api.api.middleware import RateLimitMiddleware, get_client_ip, setup_cors
from poll_geo_api.core.config import Settings


def _create_test_app() -> FastAPI:
    """Create a minimal FastAPI app for middleware testing."""
    app = FastAPI()

    @app.get("/test")
    async def test_route() -> dict:
        return {"ok": True}

    @app.get("/api/v1/health")
    async def health_route() -> dict:
        return {"status": "healthy"}

    return app


def _request(headers: dict[str, str], client: tuple[str, int] | None = ("10.0.0.1", 1234)) -> Request:
    scope = {
        "type": "http",
        "headers": [(k.lower().encode(), v.encode()) for k, v in headers.items()],
        "client": client,
    }
    return Request(scope)


class TestGetClientIp:
    """Tests for get_client_ip."""

    def test_socket_peer_without_headers(self) -> None:
        assert get_client_ip(_request({}), ["X-Real-IP"]) == "10.0.0.1"

    def test_forwarded_for_uses_leftmost(self) -> None:
        request = _request({"X-Forwarded-For": "203.0.113.9, 10.0.0.2"})
        assert get_client_ip(request, ["X-Forwarded-For"]) == "203.0.113.9"

    def test_header_priority(self) -> None:
        request = _request({"X-Real-IP": "198.51.100.1", "CF-Connecting-IP": "198.51.100.2"})
        assert get_client_ip(request, ["CF-Connecting-IP", "X-Real-IP"]) == "198.51.100.2"

    def test_untrusted_header_ignored(self) -> None:
        request = _request({"X-Real-IP": "198.51.100.1"})
        assert get_client_ip(request, []) == "10.0.0.1"

    def test_unknown_client(self) -> None:
        assert get_client_ip(_request({}, client=None), []) == "unknown"


class TestRateLimitMiddleware:
    """Tests for RateLimitMiddleware."""

    @pytest.fixture
    def client(self) -> TestClient:
        app = _create_test_app()
        app.add_middleware(RateLimitMiddleware, requests_per_minute=5, trusted_proxy_headers=["X-Real-IP"])
        return TestClient(app)

    def test_requests_within_limit_succeed(self, client: TestClient) -> None:
        for _ in range(5):
            assert client.get("/test").status_code == 200

    def test_request_over_limit_returns_429(self, client: TestClient) -> None:
        for _ in range(5):
            client.get("/test")

        response = client.get("/test")
        assert response.status_code == 429
        assert response.json() == {"detail": "Rate limit exceeded"}
        assert int(response.headers["Retry-After"]) >= 1

    def test_limits_are_per_client(self, client: TestClient) -> None:
        for _ in range(5):
            client.get("/test", headers={"X-Real-IP": "198.51.100.1"})

        assert client.get("/test", headers={"X-Real-IP": "198.51.100.1"}).status_code == 429
        assert client.get("/test", headers={"X-Real-IP": "198.51.100.2"}).status_code == 200

    def test_health_is_exempt(self, client: TestClient) -> None:
        for _ in range(10):
            assert client.get("/api/v1/health").status_code == 200


class TestSetupCors:
    """Tests for setup_cors."""

    def test_allowed_origin_is_echoed(self) -> None:
        app = _create_test_app()
        settings = Settings(
            _env_file=None,
            database_url="sqlite+aiosqlite:///:memory:",
            cors_origins="https://maps.example.org",
        )
        setup_cors(app, settings)
        client = TestClient(app)

        response = client.get("/test", headers={"Origin": "https://maps.example.org"})
        assert response.headers["access-control-allow-origin"] == "https://maps.example.org"

        other = client.get("/test", headers={"Origin": "https://evil.example.com"})
        assert "access-control-allow-origin" not in other.headers
