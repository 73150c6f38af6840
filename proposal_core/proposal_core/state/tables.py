"""SQLAlchemy 2.0 ORM table definitions for the ProposalHQ state store.

All tables use the ``Mapped`` / ``mapped_column`` declaration style.  The
``Base`` declarative base is exported for use by Alembic migrations and the
repository layer.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import CheckConstraint, DateTime, Index, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

PLAN_FREE = "free"
PLAN_PRO = "pro"
PLANS: tuple[str, ...] = (PLAN_FREE, PLAN_PRO)

CLIENT_NAME_MAX_LENGTH = 512


def _utcnow() -> datetime:
    """Return the current UTC timestamp (timezone-aware)."""
    return datetime.now(UTC)


class UTCDateTime(TypeDecorator[datetime]):
    """Timezone-aware ``DateTime`` that always round-trips as UTC.

    SQLite stores timestamps without an offset, so naive values coming back
    from the driver are re-tagged as UTC.  Values bound on the way in are
    normalised to UTC so lexical comparison on SQLite matches chronological
    order.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value


# ---------------------------------------------------------------------------
# Declarative base
# ---------------------------------------------------------------------------


class Base(DeclarativeBase):
    """Shared declarative base for all ProposalHQ tables."""


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------


class ProfileTable(Base):
    """Per-user billing and plan state.

    One row per identity-provider user.  ``plan`` is only ever changed by
    verified Stripe webhook events (or set to ``free`` on first touch).
    """

    __tablename__ = "profiles"

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    plan: Mapped[str] = mapped_column(String(16), nullable=False, default=PLAN_FREE)
    stripe_customer_id: Mapped[str | None] = mapped_column(String(256), nullable=True)
    stripe_subscription_id: Mapped[str | None] = mapped_column(String(256), nullable=True)
    current_period_end: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("plan IN ('free', 'pro')", name="ck_profiles_plan"),
        Index("ix_profiles_stripe_customer", "stripe_customer_id"),
    )


# ---------------------------------------------------------------------------
# Proposals
# ---------------------------------------------------------------------------


class ProposalTable(Base):
    """A generated proposal owned by a single user.  Insert-only."""

    __tablename__ = "proposals"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    client_name: Mapped[str] = mapped_column(String(CLIENT_NAME_MAX_LENGTH), nullable=False)
    notes: Mapped[str] = mapped_column(Text, nullable=False)
    proposal: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utcnow, nullable=False)

    __table_args__ = (Index("ix_proposals_user_created", "user_id", "created_at"),)
