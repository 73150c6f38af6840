"""Async SQLAlchemy engine and session factory.

Supports both PostgreSQL (production) and SQLite (local dev mode).
Engine type is determined by the database URL scheme:
  - ``postgresql+asyncpg://`` → connection-pooled PostgreSQL engine
  - ``sqlite+aiosqlite://``   → single-connection SQLite engine
"""

from __future__ import annotations

import logging
import re

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    create_async_engine,
)

logger = logging.getLogger(__name__)

# Identity-provider user ids are UUIDs or similar opaque tokens.
_USER_ID_RE = re.compile(r"^[a-zA-Z0-9_|:.@-]{1,128}$")


def get_engine(
    database_url: str,
    pool_size: int = 10,
    max_overflow: int = 20,
) -> AsyncEngine:
    """Create an async SQLAlchemy engine.

    Parameters
    ----------
    database_url:
        Connection string (PostgreSQL or SQLite scheme).
    pool_size:
        Number of persistent connections for PostgreSQL (ignored for SQLite).
    max_overflow:
        Maximum overflow connections for PostgreSQL (ignored for SQLite).
    """
    if database_url.startswith("sqlite"):
        from proposal_core.state.sqlite_adapter import get_local_engine

        # sqlite+aiosqlite:///path/to/db
        db_path = database_url.split("///", 1)[-1] if "///" in database_url else ":memory:"
        return get_local_engine(db_path if db_path else ":memory:")

    engine = create_async_engine(
        database_url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=True,
        pool_recycle=3600,
        pool_timeout=10,
        echo=False,
        connect_args={
            "server_settings": {
                "statement_timeout": "30000",  # 30 s
                "lock_timeout": "10000",  # 10 s
            }
        },
    )
    logger.info(
        "Created async engine pool_size=%d max_overflow=%d",
        pool_size,
        max_overflow,
    )
    return engine


async def set_user_context(session: AsyncSession, user_id: str) -> None:
    """Bind the authenticated user for row-level security on PostgreSQL.

    Uses ``set_config(..., true)`` so the value is scoped to the current
    transaction.  SQLite has no RLS, so this is a no-op there; ownership is
    still enforced by the repositories' explicit ``user_id`` filters.
    """
    bind = session.get_bind()
    dialect_name = str(getattr(getattr(bind, "dialect", None), "name", ""))
    if "postgresql" not in dialect_name:
        return

    if not _USER_ID_RE.match(user_id):
        raise ValueError(f"Invalid user_id: must match {_USER_ID_RE.pattern!r}, got {user_id!r}")

    await session.execute(
        text("SELECT set_config('app.user_id', :uid, true)"),
        {"uid": user_id},
    )
