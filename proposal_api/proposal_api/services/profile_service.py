"""Profile reads and first-touch creation for the signed-in user."""

from __future__ import annotations

import logging

from proposal_core.state.repository import ProfileRepository
from proposal_core.state.tables import PLAN_FREE, ProfileTable
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from proposal_api.errors import ProfileLoadFailed

logger = logging.getLogger(__name__)


class ProfileService:
    def __init__(self, session: AsyncSession, user_id: str) -> None:
        self._user_id = user_id
        self._profiles = ProfileRepository(session)

    async def ensure_profile(self, email: str | None) -> ProfileTable:
        """Return the caller's profile, inserting a ``free`` row on first visit."""
        try:
            return await self._profiles.ensure(self._user_id, email)
        except (SQLAlchemyError, LookupError) as exc:
            logger.error("Profile creation failed for user %s: %s", self._user_id, exc)
            raise ProfileLoadFailed() from exc

    async def get_plan(self) -> str:
        """Return the caller's plan; a missing profile counts as ``free``."""
        try:
            profile = await self._profiles.get(self._user_id)
        except SQLAlchemyError as exc:
            logger.error("Profile load failed for user %s: %s", self._user_id, exc)
            raise ProfileLoadFailed() from exc
        return profile.plan if profile is not None else PLAN_FREE
