"""Unit tests for ProfileRepository.

Uses an in-memory SQLite database via aiosqlite so the suite runs without a
PostgreSQL instance.

Covers:
- First-touch creation defaults the plan to ``free``
- ``ensure`` never overwrites an existing row
- Full-state upserts are idempotent
- Lookup by Stripe customer id
"""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
import pytest_asyncio
from proposal_core.state.repository import ProfileRepository
from proposal_core.state.tables import PLAN_FREE, PLAN_PRO, Base
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine


@pytest_asyncio.fixture
async def async_session():
    """Provide an async session backed by an in-memory SQLite database."""
    engine = create_async_engine("sqlite+aiosqlite://", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False)
    async with factory() as session:
        yield session

    await engine.dispose()


_PERIOD_END = datetime(2026, 11, 30, 12, 0, tzinfo=UTC)


class TestEnsure:
    @pytest.mark.asyncio
    async def test_creates_free_profile(self, async_session) -> None:
        repo = ProfileRepository(async_session)

        row = await repo.ensure("user-1", "a@example.com")

        assert row.user_id == "user-1"
        assert row.email == "a@example.com"
        assert row.plan == PLAN_FREE
        assert row.stripe_customer_id is None

    @pytest.mark.asyncio
    async def test_second_call_returns_same_row(self, async_session) -> None:
        repo = ProfileRepository(async_session)

        first = await repo.ensure("user-1", "a@example.com")
        second = await repo.ensure("user-1", "other@example.com")

        assert second.user_id == first.user_id
        assert second.email == "a@example.com"

    @pytest.mark.asyncio
    async def test_does_not_downgrade_existing_pro(self, async_session) -> None:
        repo = ProfileRepository(async_session)
        await repo.upsert(
            "user-1",
            plan=PLAN_PRO,
            email="a@example.com",
            stripe_customer_id="cus_1",
            stripe_subscription_id="sub_1",
            current_period_end=_PERIOD_END,
        )

        row = await repo.ensure("user-1", "a@example.com")

        assert row.plan == PLAN_PRO
        assert row.stripe_customer_id == "cus_1"


class TestUpsert:
    @pytest.mark.asyncio
    async def test_upsert_creates_row(self, async_session) -> None:
        repo = ProfileRepository(async_session)

        await repo.upsert(
            "user-1",
            plan=PLAN_PRO,
            email="a@example.com",
            stripe_customer_id="cus_1",
            stripe_subscription_id="sub_1",
            current_period_end=_PERIOD_END,
        )
        row = await repo.get("user-1")

        assert row is not None
        assert row.plan == PLAN_PRO
        assert row.stripe_subscription_id == "sub_1"
        assert row.current_period_end == _PERIOD_END

    @pytest.mark.asyncio
    async def test_same_state_twice_is_idempotent(self, async_session) -> None:
        repo = ProfileRepository(async_session)
        state = {
            "plan": PLAN_PRO,
            "email": "a@example.com",
            "stripe_customer_id": "cus_1",
            "stripe_subscription_id": "sub_1",
            "current_period_end": _PERIOD_END,
        }

        await repo.upsert("user-1", **state)
        once = await repo.get("user-1")
        snapshot = {k: getattr(once, k) for k in state}

        await repo.upsert("user-1", **state)
        twice = await repo.get("user-1")

        assert {k: getattr(twice, k) for k in state} == snapshot

    @pytest.mark.asyncio
    async def test_overwrites_previous_state(self, async_session) -> None:
        repo = ProfileRepository(async_session)
        await repo.upsert(
            "user-1",
            plan=PLAN_PRO,
            email="a@example.com",
            stripe_customer_id="cus_1",
            stripe_subscription_id="sub_1",
            current_period_end=_PERIOD_END,
        )

        await repo.upsert(
            "user-1",
            plan=PLAN_FREE,
            email="a@example.com",
            stripe_customer_id="cus_1",
            stripe_subscription_id=None,
            current_period_end=None,
        )
        row = await repo.get("user-1")

        assert row is not None
        assert row.plan == PLAN_FREE
        assert row.stripe_subscription_id is None
        assert row.current_period_end is None
        assert row.stripe_customer_id == "cus_1"

    @pytest.mark.asyncio
    async def test_rejects_unknown_plan(self, async_session) -> None:
        repo = ProfileRepository(async_session)

        with pytest.raises(ValueError, match="Unknown plan"):
            await repo.upsert(
                "user-1",
                plan="enterprise",
                email=None,
                stripe_customer_id=None,
                stripe_subscription_id=None,
                current_period_end=None,
            )


class TestLookup:
    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, async_session) -> None:
        repo = ProfileRepository(async_session)
        assert await repo.get("nobody") is None

    @pytest.mark.asyncio
    async def test_get_by_customer_id(self, async_session) -> None:
        repo = ProfileRepository(async_session)
        await repo.upsert(
            "user-1",
            plan=PLAN_PRO,
            email="a@example.com",
            stripe_customer_id="cus_1",
            stripe_subscription_id="sub_1",
            current_period_end=None,
        )

        row = await repo.get_by_customer_id("cus_1")

        assert row is not None
        assert row.user_id == "user-1"
        assert await repo.get_by_customer_id("cus_unknown") is None
