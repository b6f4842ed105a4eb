"""Tests for shared-secret authentication middleware."""

from __future__ import annotations

import pytest
from aiohttp import web
from aiohttp.test_utils import TestClient, TestServer

from healthsync.service.api.middleware.auth import (
    AUTH_CONFIG_KEY,
    AuthConfig,
    _is_whitelisted,
    setup_auth,
)
from healthsync.service.api.middleware.error import error_middleware

# ---------------------------------------------------------------------------
# Fixtures and helpers
# ---------------------------------------------------------------------------

SECRET = "s3cret-value"


async def _dummy_handler(request: web.Request) -> web.Response:
    return web.json_response({"ok": True})


def _build_app(secret: str | None = SECRET, whitelist: list[str] | None = None) -> web.Application:
    """Build a minimal app with auth + error middleware and test routes."""
    app = web.Application(middlewares=[error_middleware])
    setup_auth(app, secret, whitelist)
    app.router.add_routes(
        [
            web.get("/health", _dummy_handler),
            web.get("/sync/jobs", _dummy_handler),
            web.post("/sync/init", _dummy_handler),
            web.get("/sync/stats", _dummy_handler),
            web.get("/metrics", _dummy_handler),
        ]
    )
    return app


async def _make_client(app: web.Application) -> TestClient:
    server = TestServer(app)
    client = TestClient(server)
    await client.start_server()
    return client


# ---------------------------------------------------------------------------
# Unit tests for helper functions
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestAuthHelpers:
    def test_whitelist_exact(self) -> None:
        assert _is_whitelisted("/health", ["/health"])
        assert not _is_whitelisted("/health/deep", ["/health"])

    def test_whitelist_prefix(self) -> None:
        assert _is_whitelisted("/sync/stats", ["/sync/stats*"])
        assert not _is_whitelisted("/sync/jobs", ["/sync/stats*"])

    def test_auth_config_disabled_without_secret(self) -> None:
        assert not AuthConfig(None).enabled
        assert not AuthConfig("").enabled

    def test_auth_config_check(self) -> None:
        config = AuthConfig(SECRET)
        assert config.enabled
        assert config.check(SECRET)
        assert not config.check("wrong")

    def test_default_whitelist(self) -> None:
        assert AuthConfig(SECRET).whitelist == ["/health"]


# ---------------------------------------------------------------------------
# Middleware behaviour
# ---------------------------------------------------------------------------


class TestAuthMiddleware:
    async def test_bearer_token(self) -> None:
        client = await _make_client(_build_app())
        try:
            resp = await client.get("/sync/jobs", headers={"Authorization": f"Bearer {SECRET}"})
            assert resp.status == 200
        finally:
            await client.close()

    async def test_api_key_header(self) -> None:
        client = await _make_client(_build_app())
        try:
            resp = await client.post("/sync/init", headers={"X-API-Key": SECRET})
            assert resp.status == 200
        finally:
            await client.close()

    async def test_missing_credentials(self) -> None:
        client = await _make_client(_build_app())
        try:
            resp = await client.get("/sync/jobs")
            assert resp.status == 401
            data = await resp.json()
            assert data["error"]["code"] == "UNAUTHORIZED"
            assert "Missing credentials" in data["error"]["message"]
            assert resp.headers["X-Request-ID"] == data["error"]["request_id"]
        finally:
            await client.close()

    async def test_invalid_credentials(self) -> None:
        client = await _make_client(_build_app())
        try:
            resp = await client.get("/sync/jobs", headers={"Authorization": "Bearer other"})
            assert resp.status == 401
            assert (await resp.json())["error"]["message"] == "Invalid credentials"
        finally:
            await client.close()

    async def test_empty_bearer_falls_back_to_api_key(self) -> None:
        client = await _make_client(_build_app())
        try:
            resp = await client.get("/sync/jobs", headers={"Authorization": "Bearer ", "X-API-Key": SECRET})
            assert resp.status == 200
        finally:
            await client.close()

    async def test_health_is_whitelisted(self) -> None:
        client = await _make_client(_build_app())
        try:
            resp = await client.get("/health")
            assert resp.status == 200
        finally:
            await client.close()

    async def test_unprotected_paths_pass(self) -> None:
        client = await _make_client(_build_app())
        try:
            resp = await client.get("/metrics")
            assert resp.status == 200
        finally:
            await client.close()

    async def test_custom_whitelist(self) -> None:
        client = await _make_client(_build_app(whitelist=["/health", "/sync/stats"]))
        try:
            assert (await client.get("/sync/stats")).status == 200
            assert (await client.get("/sync/jobs")).status == 401
        finally:
            await client.close()

    async def test_disabled_without_secret(self) -> None:
        app = _build_app(secret=None)
        assert not app[AUTH_CONFIG_KEY].enabled
        client = await _make_client(app)
        try:
            resp = await client.get("/sync/jobs")
            assert resp.status == 200
        finally:
            await client.close()
