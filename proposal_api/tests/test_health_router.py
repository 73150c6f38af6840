"""Tests for /api/v1/health, /ready and /metrics."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from proposal_api import __version__
from proposal_api.dependencies import get_db_session


def _broken_session() -> MagicMock:
    session = MagicMock()
    session.execute = AsyncMock(side_effect=OperationalError("SELECT 1", {}, Exception("refused")))
    return session


class TestHealth:
    @pytest.mark.asyncio
    async def test_healthy(self, client) -> None:
        resp = await client.get("/api/v1/health")

        assert resp.status_code == 200
        assert resp.json() == {"status": "healthy", "version": __version__, "db": "ok"}

    @pytest.mark.asyncio
    async def test_db_down_still_200(self, app, client) -> None:
        app.dependency_overrides[get_db_session] = _broken_session

        resp = await client.get("/api/v1/health")

        assert resp.status_code == 200
        assert resp.json()["db"] == "degraded"


class TestReadiness:
    @pytest.mark.asyncio
    async def test_ready(self, client) -> None:
        resp = await client.get("/ready")

        assert resp.status_code == 200
        assert resp.json()["status"] == "ready"

    @pytest.mark.asyncio
    async def test_not_ready_when_db_down(self, app, client) -> None:
        app.dependency_overrides[get_db_session] = _broken_session

        resp = await client.get("/ready")

        assert resp.status_code == 503
        assert resp.json()["checks"] == {"db": "unavailable"}


class TestMetrics:
    @pytest.mark.asyncio
    async def test_exposes_request_counter(self, client) -> None:
        await client.get("/api/v1/health")

        resp = await client.get("/metrics")

        assert resp.status_code == 200
        assert "proposalhq_http_requests_total" in resp.text


class TestCorrelationId:
    @pytest.mark.asyncio
    async def test_echoes_incoming_id(self, client) -> None:
        resp = await client.get("/api/v1/health", headers={"X-Correlation-ID": "corr-42"})
        assert resp.headers["X-Correlation-ID"] == "corr-42"

    @pytest.mark.asyncio
    async def test_generates_id(self, client) -> None:
        resp = await client.get("/api/v1/health")
        assert len(resp.headers["X-Correlation-ID"]) == 36
