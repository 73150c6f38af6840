"""Profile and usage endpoints for the signed-in user."""

from __future__ import annotations

from fastapi import APIRouter

from proposal_api.dependencies import IdentityDep, SessionDep, SettingsDep
from proposal_api.schemas import ProfileResponse, UsageResponse
from proposal_api.services.profile_service import ProfileService
from proposal_api.services.quota_service import QuotaService

router = APIRouter(tags=["profile"])


@router.get("/profile", response_model=ProfileResponse)
async def get_profile(session: SessionDep, identity: IdentityDep) -> ProfileResponse:
    """Return the caller's profile, creating a ``free`` one on first visit."""
    profile = await ProfileService(session, identity.user_id).ensure_profile(identity.email)
    await session.commit()
    return ProfileResponse.model_validate(profile)


@router.get("/usage", response_model=UsageResponse)
async def get_usage(session: SessionDep, identity: IdentityDep, settings: SettingsDep) -> UsageResponse:
    """Return how many proposals the caller has created this month."""
    plan = await ProfileService(session, identity.user_id).get_plan()
    quota = QuotaService(session, identity.user_id, free_limit=settings.free_monthly_limit)
    return UsageResponse(**await quota.get_usage(plan))
