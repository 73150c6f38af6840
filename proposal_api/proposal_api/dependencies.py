"""FastAPI dependency injection for settings, sessions, and provider clients."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Request
from proposal_core.state.database import get_engine, set_user_context
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from proposal_api.config import APISettings, load_api_settings
from proposal_api.errors import Unauthenticated
from proposal_api.services.identity_client import Identity, IdentityClient
from proposal_api.services.llm_client import LLMClient

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

_settings_cache: APISettings | None = None


def get_settings() -> APISettings:
    """Return the cached :class:`APISettings` singleton."""
    global _settings_cache  # noqa: PLW0603
    if _settings_cache is None:
        _settings_cache = load_api_settings()
    return _settings_cache


SettingsDep = Annotated[APISettings, Depends(get_settings)]

# ---------------------------------------------------------------------------
# Database session
# ---------------------------------------------------------------------------

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def init_engine(settings: APISettings) -> AsyncEngine:
    """Create and cache the global async engine."""
    global _engine, _session_factory  # noqa: PLW0603
    _engine = get_engine(settings.database_url)
    _session_factory = async_sessionmaker(_engine, expire_on_commit=False)
    return _engine


async def dispose_engine() -> None:
    """Dispose the global engine pool (call during shutdown)."""
    global _engine, _session_factory  # noqa: PLW0603
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the global async session factory."""
    if _session_factory is None:
        raise RuntimeError(
            "Database engine has not been initialised. Ensure init_engine() is called during application startup."
        )
    return _session_factory


async def get_user_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Yield an ``AsyncSession`` bound to the authenticated user.

    On PostgreSQL the session carries ``app.user_id`` for the transaction so
    the ``proposals`` RLS policy applies.  The session commits on clean exit
    and rolls back on exception.
    """
    user_id = getattr(request.state, "user_id", None)
    if user_id is None:
        raise Unauthenticated()

    session = get_session_factory()()
    try:
        await set_user_context(session, user_id)
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


SessionDep = Annotated[AsyncSession, Depends(get_user_session)]


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an ``AsyncSession`` **without** a user context.

    Only for work that happens before a user is known: the Stripe webhook
    (which resolves the user from the event) and health probes.  On
    PostgreSQL these sessions see no ``proposals`` rows because the RLS
    policy matches nothing when ``app.user_id`` is unset.
    """
    session = get_session_factory()()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


PublicSessionDep = Annotated[AsyncSession, Depends(get_db_session)]

# ---------------------------------------------------------------------------
# Identity provider client
# ---------------------------------------------------------------------------

_identity_client: IdentityClient | None = None


def init_identity_client(settings: APISettings) -> IdentityClient:
    global _identity_client  # noqa: PLW0603
    _identity_client = IdentityClient(
        base_url=settings.identity_url,
        public_key=settings.identity_public_key.get_secret_value(),
        timeout=settings.identity_timeout,
    )
    return _identity_client


async def dispose_identity_client() -> None:
    global _identity_client  # noqa: PLW0603
    if _identity_client is not None:
        await _identity_client.close()
        _identity_client = None


def get_identity_client() -> IdentityClient:
    """Return the cached :class:`IdentityClient` singleton."""
    if _identity_client is None:
        raise RuntimeError(
            "Identity client has not been initialised. "
            "Ensure init_identity_client() is called during application startup."
        )
    return _identity_client


# ---------------------------------------------------------------------------
# LLM client
# ---------------------------------------------------------------------------

_llm_client: LLMClient | None = None


def init_llm_client(settings: APISettings) -> LLMClient:
    global _llm_client  # noqa: PLW0603
    _llm_client = LLMClient(
        api_key=settings.llm_api_key.get_secret_value(),
        model=settings.llm_model,
        max_tokens=settings.llm_max_tokens,
        temperature=settings.llm_temperature,
        timeout=settings.llm_timeout,
    )
    return _llm_client


async def dispose_llm_client() -> None:
    global _llm_client  # noqa: PLW0603
    if _llm_client is not None:
        await _llm_client.close()
        _llm_client = None


def get_llm_client() -> LLMClient:
    """Return the cached :class:`LLMClient` singleton."""
    if _llm_client is None:
        raise RuntimeError(
            "LLM client has not been initialised. Ensure init_llm_client() is called during application startup."
        )
    return _llm_client


LLMClientDep = Annotated[LLMClient, Depends(get_llm_client)]

# ---------------------------------------------------------------------------
# Caller identity (populated by AuthenticationMiddleware)
# ---------------------------------------------------------------------------


def get_identity(request: Request) -> Identity:
    """Return the authenticated caller from request state."""
    user_id = getattr(request.state, "user_id", None)
    if user_id is None:
        raise Unauthenticated()
    return Identity(user_id=user_id, email=getattr(request.state, "email", None))


IdentityDep = Annotated[Identity, Depends(get_identity)]
