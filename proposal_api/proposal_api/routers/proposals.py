"""Proposal endpoints: generate, list, fetch, delete."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Query

from proposal_api.dependencies import IdentityDep, LLMClientDep, SessionDep, SettingsDep
from proposal_api.schemas import (
    DeleteResponse,
    GenerateRequest,
    GenerateResponse,
    ProposalListResponse,
    ProposalRecord,
)
from proposal_api.services.proposal_service import ProposalService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["proposals"])


@router.post("/generate", response_model=GenerateResponse)
async def generate_proposal(
    body: GenerateRequest,
    session: SessionDep,
    identity: IdentityDep,
    llm: LLMClientDep,
    settings: SettingsDep,
) -> GenerateResponse:
    """Generate a proposal from discovery notes and save it.

    Free-plan callers are limited to ``free_monthly_limit`` proposals per
    calendar month (UTC); the limit is checked before the notes are validated
    or the provider is called.
    """
    service = ProposalService(session, identity.user_id, llm=llm, free_limit=settings.free_monthly_limit)
    result = await service.generate(body.client_name, body.notes)
    return GenerateResponse(
        proposal=result["proposal"],
        saved=ProposalRecord.model_validate(result["saved"]),
    )


@router.get("/proposals", response_model=ProposalListResponse)
async def list_proposals(
    session: SessionDep,
    identity: IdentityDep,
    limit: int = Query(default=50, ge=1, le=200),
) -> ProposalListResponse:
    """Return the caller's proposals, newest first."""
    service = ProposalService(session, identity.user_id)
    rows = await service.list_recent(limit)
    return ProposalListResponse(proposals=[ProposalRecord.model_validate(row) for row in rows])


@router.get("/proposals/{proposal_id}", response_model=ProposalRecord)
async def get_proposal(proposal_id: str, session: SessionDep, identity: IdentityDep) -> ProposalRecord:
    service = ProposalService(session, identity.user_id)
    return ProposalRecord.model_validate(await service.get(proposal_id))


@router.delete("/proposals/{proposal_id}", response_model=DeleteResponse)
async def delete_proposal(proposal_id: str, session: SessionDep, identity: IdentityDep) -> DeleteResponse:
    """Delete one of the caller's proposals.  Other users' ids are a 404."""
    service = ProposalService(session, identity.user_id)
    await service.delete(proposal_id)
    await session.commit()
    return DeleteResponse(deleted=True, id=proposal_id)
