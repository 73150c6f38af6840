"""Repository classes providing CRUD access to the ProposalHQ state store.

Each repository takes an ``AsyncSession`` at construction time and operates
within the caller's transaction boundary.  All writes call ``session.flush()``
so that generated defaults are populated; the caller is responsible for calling
``session.commit()``.
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from proposal_core.state.tables import PLAN_FREE, PLANS, ProfileTable, ProposalTable

logger = logging.getLogger(__name__)

_MAX_HISTORY_PAGE_SIZE = 200


def month_start(now: datetime | None = None) -> datetime:
    """Return the first instant of the calendar month containing *now* (UTC)."""
    now = (now or datetime.now(UTC)).astimezone(UTC)
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


async def _dialect_upsert(
    session: AsyncSession,
    table: Any,
    values: dict[str, Any],
    index_elements: list[str],
    update_columns: list[str],
) -> Any:
    """Dialect-aware upsert: PostgreSQL ``ON CONFLICT DO UPDATE`` or SQLite equivalent.

    Parameters
    ----------
    session:
        The active async session.
    table:
        The SQLAlchemy table class to upsert into.
    values:
        Column-value mapping for the row to insert.
    index_elements:
        Column names forming the unique constraint for conflict detection.
    update_columns:
        Column names to update when a conflict occurs.
    """
    bind = session.get_bind()
    dialect_name = getattr(getattr(bind, "dialect", None), "name", "")

    stmt: Any
    if "postgresql" in str(dialect_name):
        from sqlalchemy.dialects.postgresql import insert as _pg_insert

        stmt = _pg_insert(table).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=index_elements,
            set_={col: getattr(stmt.excluded, col) for col in update_columns},
        )
    else:
        from sqlalchemy.dialects.sqlite import insert as _sqlite_insert

        stmt = _sqlite_insert(table).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=index_elements,
            set_={col: values[col] for col in update_columns},
        )
    return await session.execute(stmt)


async def _dialect_upsert_nothing(
    session: AsyncSession,
    table: Any,
    values: dict[str, Any],
    index_elements: list[str],
) -> Any:
    """Dialect-aware insert with ``ON CONFLICT DO NOTHING``."""
    bind = session.get_bind()
    dialect_name = getattr(getattr(bind, "dialect", None), "name", "")

    stmt: Any
    if "postgresql" in str(dialect_name):
        from sqlalchemy.dialects.postgresql import insert as _pg_insert

        stmt = _pg_insert(table).values(**values)
    else:
        from sqlalchemy.dialects.sqlite import insert as _sqlite_insert

        stmt = _sqlite_insert(table).values(**values)
    stmt = stmt.on_conflict_do_nothing(index_elements=index_elements)
    return await session.execute(stmt)


# ---------------------------------------------------------------------------
# ProfileRepository
# ---------------------------------------------------------------------------


class ProfileRepository:
    """Reads and full-state upserts for the ``profiles`` table.

    Not scoped to a single user: the webhook flow has to resolve the owner
    from a Stripe customer id before it knows which user it is acting for.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, user_id: str) -> ProfileTable | None:
        """Fetch the profile for *user_id*, or ``None`` if never created."""
        stmt = (
            select(ProfileTable)
            .where(ProfileTable.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_customer_id(self, stripe_customer_id: str) -> ProfileTable | None:
        """Fetch the profile linked to a Stripe customer."""
        stmt = (
            select(ProfileTable)
            .where(ProfileTable.stripe_customer_id == stripe_customer_id)
            .order_by(ProfileTable.updated_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalars().first()

    async def ensure(self, user_id: str, email: str | None = None) -> ProfileTable:
        """Create a ``free`` profile on first touch and return the stored row.

        An existing row is returned unchanged, so a concurrent webhook that
        already upgraded the user to ``pro`` is never overwritten.
        """
        now = datetime.now(UTC)
        await _dialect_upsert_nothing(
            self._session,
            ProfileTable,
            {
                "user_id": user_id,
                "email": email,
                "plan": PLAN_FREE,
                "created_at": now,
                "updated_at": now,
            },
            index_elements=["user_id"],
        )
        await self._session.flush()
        row = await self.get(user_id)
        if row is None:
            # Only reachable if the insert was filtered by RLS.
            raise LookupError(f"Profile for user {user_id!r} not visible after insert")
        return row

    async def upsert(
        self,
        user_id: str,
        *,
        plan: str,
        email: str | None,
        stripe_customer_id: str | None,
        stripe_subscription_id: str | None,
        current_period_end: datetime | None,
    ) -> None:
        """Write the complete billing state for *user_id*.

        Every billing column is overwritten, never incremented, so applying
        the same target state twice leaves the row unchanged.
        """
        if plan not in PLANS:
            raise ValueError(f"Unknown plan {plan!r}; expected one of {PLANS}")

        now = datetime.now(UTC)
        values: dict[str, Any] = {
            "user_id": user_id,
            "email": email,
            "plan": plan,
            "stripe_customer_id": stripe_customer_id,
            "stripe_subscription_id": stripe_subscription_id,
            "current_period_end": current_period_end,
            "created_at": now,
            "updated_at": now,
        }
        await _dialect_upsert(
            self._session,
            ProfileTable,
            values,
            index_elements=["user_id"],
            update_columns=[
                "email",
                "plan",
                "stripe_customer_id",
                "stripe_subscription_id",
                "current_period_end",
                "updated_at",
            ],
        )
        await self._session.flush()
        logger.info("Profile upserted: user=%s plan=%s customer=%s", user_id, plan, stripe_customer_id)


# ---------------------------------------------------------------------------
# ProposalRepository (user-scoped)
# ---------------------------------------------------------------------------


class ProposalRepository:
    """Owner-scoped access to the ``proposals`` table.

    Every query is filtered by the ``user_id`` given at construction time, so
    a caller can never read, delete, or count another user's rows.
    """

    def __init__(self, session: AsyncSession, user_id: str) -> None:
        self._session = session
        self._user_id = user_id

    async def create(self, client_name: str, notes: str, proposal: str) -> ProposalTable:
        """Insert a new proposal owned by this repository's user."""
        row = ProposalTable(
            id=uuid.uuid4().hex,
            user_id=self._user_id,
            client_name=client_name,
            notes=notes,
            proposal=proposal,
            created_at=datetime.now(UTC),
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def get(self, proposal_id: str) -> ProposalTable | None:
        stmt = select(ProposalTable).where(
            ProposalTable.id == proposal_id,
            ProposalTable.user_id == self._user_id,
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_recent(self, limit: int = 50) -> list[ProposalTable]:
        """Return the newest proposals first, capped at *limit*."""
        limit = max(1, min(limit, _MAX_HISTORY_PAGE_SIZE))
        stmt = (
            select(ProposalTable)
            .where(ProposalTable.user_id == self._user_id)
            .order_by(ProposalTable.created_at.desc(), ProposalTable.id.desc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def delete(self, proposal_id: str) -> bool:
        """Delete one of this user's proposals.  Returns ``False`` if none matched."""
        stmt = delete(ProposalTable).where(
            ProposalTable.id == proposal_id,
            ProposalTable.user_id == self._user_id,
        )
        result = await self._session.execute(stmt)
        await self._session.flush()
        return bool(result.rowcount)

    async def count_since(self, since: datetime) -> int:
        stmt = select(func.count(ProposalTable.id)).where(
            ProposalTable.user_id == self._user_id,
            ProposalTable.created_at >= since,
        )
        result = await self._session.execute(stmt)
        return int(result.scalar_one() or 0)

    async def get_monthly_count(self) -> int:
        """Count this user's proposals created in the current calendar month (UTC)."""
        return await self.count_since(month_start())
