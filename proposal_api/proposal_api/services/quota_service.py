"""Monthly proposal quota for the free plan.

``pro`` is unlimited and never touches the store.  Every other plan string
is treated as ``free``: the caller may create proposals while the number
created since the first instant of the current UTC month is below the
limit.  The count is recomputed on every check and never cached.

The check and the later insert are not one transaction, so N concurrent
requests from the same user can overshoot the limit by at most N - 1.
"""

from __future__ import annotations

import logging
from typing import Any

from proposal_core.state.repository import ProposalRepository
from proposal_core.state.tables import PLAN_FREE, PLAN_PRO
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from proposal_api.errors import QuotaCheckFailed, QuotaExceeded

logger = logging.getLogger(__name__)

FREE_MONTHLY_LIMIT = 3


class QuotaService:
    """Pre-generation quota enforcement for one user."""

    def __init__(self, session: AsyncSession, user_id: str, *, free_limit: int = FREE_MONTHLY_LIMIT) -> None:
        self._user_id = user_id
        self._free_limit = free_limit
        self._proposals = ProposalRepository(session, user_id)

    async def _count_this_month(self) -> int:
        try:
            return await self._proposals.get_monthly_count()
        except SQLAlchemyError as exc:
            logger.error("Usage count failed for user %s: %s", self._user_id, exc)
            raise QuotaCheckFailed() from exc

    async def check_proposal_quota(self, plan: str) -> None:
        """Raise :class:`QuotaExceeded` if *plan* may not create another proposal."""
        if plan == PLAN_PRO:
            return

        used = await self._count_this_month()
        if used >= self._free_limit:
            logger.info("Free limit reached for user %s (%d/%d)", self._user_id, used, self._free_limit)
            raise QuotaExceeded(limit=self._free_limit, used=used)

    async def get_usage(self, plan: str) -> dict[str, Any]:
        """Return this month's usage summary for *plan*.

        ``limit`` and ``remaining`` are ``None`` for unlimited plans.
        """
        used = await self._count_this_month()
        if plan == PLAN_PRO:
            return {"plan": PLAN_PRO, "used": used, "limit": None, "remaining": None}
        return {
            "plan": PLAN_FREE,
            "used": used,
            "limit": self._free_limit,
            "remaining": max(self._free_limit - used, 0),
        }
