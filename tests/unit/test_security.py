"""Tests for wagateway/security.py: CORS origin filtering and headers."""

import pytest
from httpx import ASGITransport, AsyncClient

from wagateway.main import create_app
from wagateway.security import validate_cors_origins


class TestValidateCorsOrigins:
    """Test filtering of configured CORS origins."""

    def test_accepts_specific_origins(self):
        origins = ["https://app.example.com", "http://localhost:3000"]
        assert validate_cors_origins(origins) == origins

    @pytest.mark.parametrize("origin", [
        "*",
        "null",
        "app.example.com",
        "ftp://app.example.com",
        "https://app.example.com/path",
        "https://user@app.example.com",
        "https://app.example.com?x=1",
        "https://",
    ])
    def test_rejects(self, origin):
        assert validate_cors_origins([origin]) == []

    def test_blank_entries_skipped(self):
        assert validate_cors_origins(["", "  ", " https://a.example.com "]) == ["https://a.example.com"]


class TestSecurityHeaders:
    """Test headers added to every response."""

    @pytest.mark.asyncio
    async def test_hsts_only_over_https(self, config, fake_client):
        app = create_app(config, fake_client)
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            plain = await ac.get("/health")
            forwarded = await ac.get("/health", headers={"x-forwarded-proto": "https"})

        assert "strict-transport-security" not in plain.headers
        assert forwarded.headers["strict-transport-security"].startswith("max-age=")

    @pytest.mark.asyncio
    async def test_docs_csp(self, config, fake_client):
        app = create_app(config, fake_client)
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            response = await ac.get("/docs")

        assert "cdn.jsdelivr.net" in response.headers["content-security-policy"]

    @pytest.mark.asyncio
    async def test_cors_preflight_for_allowed_origin(self, config_factory, fake_client_cls):
        config = config_factory(cors_allowed_origins=["https://app.example.com"])
        app = create_app(config, fake_client_cls(config))
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            response = await ac.options(
                "/instance/status",
                headers={
                    "Origin": "https://app.example.com",
                    "Access-Control-Request-Method": "GET",
                    "Access-Control-Request-Headers": "apikey",
                },
            )

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "https://app.example.com"
