"""Tests for AuthenticationMiddleware.

Covers:
- Missing, malformed, and rejected bearer tokens (401)
- Identity provider not configured (500)
- Public paths and CORS preflight bypass authentication
- Resolved identity is visible to handlers
"""

from __future__ import annotations

import pytest

from proposal_api.middleware.auth import _extract_bearer, _is_public_path


class TestExtractBearer:
    @pytest.mark.parametrize(
        ("header", "expected"),
        [
            ("Bearer abc", "abc"),
            ("bearer abc", "abc"),
            ("Bearer   abc  ", "abc"),
            ("Basic abc", None),
            ("Bearer", None),
            ("Bearer ", None),
            ("", None),
            (None, None),
        ],
    )
    def test_extract(self, header, expected) -> None:
        assert _extract_bearer(header) == expected


class TestPublicPaths:
    @pytest.mark.parametrize("path", ["/api/v1/health", "/ready", "/metrics", "/api/v1/billing/webhooks", "/docs"])
    def test_public(self, path: str) -> None:
        assert _is_public_path(path)

    @pytest.mark.parametrize("path", ["/api/v1/generate", "/api/v1/proposals", "/api/v1/billing/checkout"])
    def test_protected(self, path: str) -> None:
        assert not _is_public_path(path)


class TestMiddleware:
    @pytest.mark.asyncio
    async def test_missing_header(self, client, identity_client) -> None:
        resp = await client.get("/api/v1/proposals")

        assert resp.status_code == 401
        assert resp.json() == {"error": "Unauthorized"}
        identity_client.resolve.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_wrong_scheme(self, client, identity_client) -> None:
        resp = await client.get("/api/v1/proposals", headers={"Authorization": "Token token-alice"})

        assert resp.status_code == 401
        identity_client.resolve.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rejected_token(self, client, identity_client) -> None:
        resp = await client.get("/api/v1/proposals", headers={"Authorization": "Bearer expired"})

        assert resp.status_code == 401
        assert resp.json() == {"error": "Unauthorized"}
        identity_client.resolve.assert_awaited_once_with("expired")

    @pytest.mark.asyncio
    async def test_unconfigured_provider(self, client, identity_client) -> None:
        identity_client.configured = False

        resp = await client.get("/api/v1/proposals", headers={"Authorization": "Bearer token-alice"})

        assert resp.status_code == 500
        assert resp.json() == {"error": "Server is not configured"}
        identity_client.resolve.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_valid_token_reaches_handler(self, client) -> None:
        resp = await client.get("/api/v1/profile", headers={"Authorization": "Bearer token-bob"})

        assert resp.status_code == 200
        assert resp.json()["user_id"] == "user-bob"

    @pytest.mark.asyncio
    async def test_public_path_skips_provider(self, client, identity_client) -> None:
        resp = await client.get("/api/v1/health")

        assert resp.status_code == 200
        identity_client.resolve.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_preflight_skips_auth(self, client, identity_client) -> None:
        resp = await client.options(
            "/api/v1/generate",
            headers={
                "Origin": "http://localhost:3000",
                "Access-Control-Request-Method": "POST",
            },
        )

        assert resp.status_code != 401
        identity_client.resolve.assert_not_awaited()
