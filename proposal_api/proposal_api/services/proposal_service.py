"""Proposal generation and history for the signed-in user.

:meth:`ProposalService.generate` runs the steps in a fixed order: load the
plan, check the quota, validate input (presence and the stored length of
``client_name``), call the provider, persist.  A failure at any step stops
the pipeline, so a rejected request never reaches the provider and a failed
provider call never writes a row.
"""

from __future__ import annotations

import logging
from typing import Any

from proposal_core.state.repository import ProposalRepository
from proposal_core.state.tables import CLIENT_NAME_MAX_LENGTH, ProposalTable
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from proposal_api.errors import (
    ConfigMissing,
    GenerationFailed,
    InvalidInput,
    PersistenceFailed,
    ProposalNotFound,
    QuotaExceeded,
)
from proposal_api.middleware.prometheus import PROPOSALS_GENERATED_TOTAL
from proposal_api.services.llm_client import LLMClient, LLMError
from proposal_api.services.profile_service import ProfileService
from proposal_api.services.prompts import sanitize_prompt_input
from proposal_api.services.quota_service import FREE_MONTHLY_LIMIT, QuotaService

logger = logging.getLogger(__name__)


class ProposalService:
    """Owner-scoped proposal operations.

    Parameters
    ----------
    session:
        Session bound to *user_id*.
    user_id:
        The authenticated caller.
    llm:
        Provider adapter used by :meth:`generate`.
    free_limit:
        Monthly allowance for the ``free`` plan.
    """

    def __init__(
        self,
        session: AsyncSession,
        user_id: str,
        *,
        llm: LLMClient | None = None,
        free_limit: int = FREE_MONTHLY_LIMIT,
    ) -> None:
        self._session = session
        self._user_id = user_id
        self._llm = llm
        self._profiles = ProfileService(session, user_id)
        self._quota = QuotaService(session, user_id, free_limit=free_limit)
        self._proposals = ProposalRepository(session, user_id)

    async def generate(self, client_name: str, notes: str) -> dict[str, Any]:
        """Generate, persist, and return a proposal.

        Returns
        -------
        dict
            ``proposal`` (the generated text) and ``saved`` (the stored row).
        """
        plan = await self._profiles.get_plan()

        try:
            await self._quota.check_proposal_quota(plan)
        except QuotaExceeded:
            PROPOSALS_GENERATED_TOTAL.labels(outcome="quota_exceeded").inc()
            raise

        client_name = client_name.strip()
        if not client_name or not notes.strip():
            PROPOSALS_GENERATED_TOTAL.labels(outcome="invalid_input").inc()
            raise InvalidInput("Missing clientName or notes")
        if len(client_name) > CLIENT_NAME_MAX_LENGTH:
            PROPOSALS_GENERATED_TOTAL.labels(outcome="invalid_input").inc()
            raise InvalidInput(f"clientName must be at most {CLIENT_NAME_MAX_LENGTH} characters")

        if self._llm is None or not self._llm.configured:
            raise ConfigMissing("llm_api_key")

        try:
            text = await self._llm.generate_proposal(
                sanitize_prompt_input(client_name, "client_name"),
                sanitize_prompt_input(notes, "notes"),
            )
        except LLMError as exc:
            PROPOSALS_GENERATED_TOTAL.labels(outcome="generation_failed").inc()
            logger.error("Generation failed for user %s client=%r: %s", self._user_id, client_name, exc)
            raise GenerationFailed(exc.user_message) from exc

        try:
            saved = await self._proposals.create(client_name, notes, text)
            await self._session.commit()
        except SQLAlchemyError as exc:
            await self._session.rollback()
            PROPOSALS_GENERATED_TOTAL.labels(outcome="persistence_failed").inc()
            # The provider call already happened; nothing compensates for it.
            logger.error(
                "Save failed for user %s client=%r after generation (%d chars): %s",
                self._user_id,
                client_name,
                len(text),
                exc,
            )
            raise PersistenceFailed() from exc

        PROPOSALS_GENERATED_TOTAL.labels(outcome="success").inc()
        logger.info("Proposal %s generated for user %s (plan=%s)", saved.id, self._user_id, plan)
        return {"proposal": text, "saved": saved}

    async def list_recent(self, limit: int = 50) -> list[ProposalTable]:
        return await self._proposals.list_recent(limit)

    async def get(self, proposal_id: str) -> ProposalTable:
        row = await self._proposals.get(proposal_id)
        if row is None:
            raise ProposalNotFound()
        return row

    async def delete(self, proposal_id: str) -> None:
        if not await self._proposals.delete(proposal_id):
            raise ProposalNotFound()
        logger.info("Proposal %s deleted by user %s", proposal_id, self._user_id)
