"""Shared fixtures for the ProposalHQ API test suite.

The app runs against a single in-memory SQLite database.  The identity
provider and the LLM are replaced with fakes so tests control who is
calling and what the model returns.

Bearer tokens understood by the fake identity provider:

- ``token-alice`` -> ``user-alice`` (alice@example.com)
- ``token-bob``   -> ``user-bob`` (bob@example.com)
- ``token-carol`` -> ``user-carol`` (no email)
"""

from __future__ import annotations

import hashlib
import hmac
import time
from collections.abc import AsyncGenerator, Callable
from datetime import datetime
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio
from fastapi import Request
from httpx import ASGITransport, AsyncClient
from proposal_core.state.tables import Base, ProfileTable, ProposalTable
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from proposal_api.config import APISettings
from proposal_api.dependencies import get_db_session, get_llm_client, get_settings, get_user_session
from proposal_api.errors import Unauthenticated
from proposal_api.main import create_app
from proposal_api.services.identity_client import Identity
from proposal_api.services.llm_client import LLMClient

_WEBHOOK_SECRET = "whsec_test_secret"

_IDENTITIES: dict[str, Identity] = {
    "token-alice": Identity(user_id="user-alice", email="alice@example.com"),
    "token-bob": Identity(user_id="user-bob", email="bob@example.com"),
    "token-carol": Identity(user_id="user-carol", email=None),
}


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@pytest.fixture
def test_settings() -> APISettings:
    """APISettings with every provider configured."""
    return APISettings(
        database_url="sqlite+aiosqlite:///:memory:",
        site_url="https://app.proposalhq.test",
        identity_url="https://identity.test",
        identity_public_key="anon-key",
        llm_api_key="sk-ant-test",
        stripe_secret_key="sk_test_123",
        stripe_webhook_secret=_WEBHOOK_SECRET,
        stripe_price_id="price_pro_monthly",
        free_monthly_limit=3,
    )


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Session factory over one shared in-memory database."""
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, expire_on_commit=False)

    await engine.dispose()


class Store:
    """Direct access to the test database, outside any request."""

    def __init__(self, factory: async_sessionmaker[AsyncSession]) -> None:
        self._factory = factory

    async def seed_profile(self, user_id: str, plan: str = "free", **values: Any) -> None:
        async with self._factory() as session:
            session.add(ProfileTable(user_id=user_id, plan=plan, **values))
            await session.commit()

    async def seed_proposal(self, user_id: str, proposal_id: str, created_at: datetime | None = None) -> None:
        async with self._factory() as session:
            row = ProposalTable(
                id=proposal_id,
                user_id=user_id,
                client_name="Seeded",
                notes="seeded notes",
                proposal="seeded text",
            )
            if created_at is not None:
                row.created_at = created_at
            session.add(row)
            await session.commit()

    async def profile(self, user_id: str) -> ProfileTable | None:
        async with self._factory() as session:
            return await session.get(ProfileTable, user_id)

    async def profile_count(self) -> int:
        async with self._factory() as session:
            result = await session.execute(select(func.count()).select_from(ProfileTable))
            return int(result.scalar_one())

    async def count_proposals(self, user_id: str) -> int:
        async with self._factory() as session:
            result = await session.execute(
                select(func.count()).select_from(ProposalTable).where(ProposalTable.user_id == user_id)
            )
            return int(result.scalar_one())


@pytest.fixture
def store(session_factory: async_sessionmaker[AsyncSession]) -> Store:
    return Store(session_factory)


# ---------------------------------------------------------------------------
# Provider fakes
# ---------------------------------------------------------------------------


@pytest.fixture
def identity_client() -> MagicMock:
    """Identity provider that accepts the three test tokens."""
    client = MagicMock()
    client.configured = True
    client.resolve = AsyncMock(side_effect=lambda token: _IDENTITIES.get(token))
    return client


@pytest.fixture
def llm_client() -> MagicMock:
    client = MagicMock(spec=LLMClient)
    client.configured = True
    client.generate_proposal = AsyncMock(return_value="## 1. Executive Summary\nAcme needs a faster site.")
    return client


@pytest.fixture
def sign_webhook() -> Callable[..., str]:
    """Return a function building a ``Stripe-Signature`` header for a body."""

    def _sign(payload: bytes, secret: str = _WEBHOOK_SECRET, timestamp: int | None = None) -> str:
        ts = int(time.time()) if timestamp is None else timestamp
        signed = f"{ts}.".encode() + payload
        digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
        return f"t={ts},v1={digest}"

    return _sign


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------


@pytest.fixture
def app(
    test_settings: APISettings,
    session_factory: async_sessionmaker[AsyncSession],
    identity_client: MagicMock,
    llm_client: MagicMock,
):
    """FastAPI app with sessions, settings, and providers overridden."""
    application = create_app()

    async def _user_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
        if getattr(request.state, "user_id", None) is None:
            raise Unauthenticated()
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def _public_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    application.dependency_overrides[get_user_session] = _user_session
    application.dependency_overrides[get_db_session] = _public_session
    application.dependency_overrides[get_settings] = lambda: test_settings
    application.dependency_overrides[get_llm_client] = lambda: llm_client

    with patch("proposal_api.middleware.auth.get_identity_client", return_value=identity_client):
        yield application


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async client with no credentials; tests send their own bearer token."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
