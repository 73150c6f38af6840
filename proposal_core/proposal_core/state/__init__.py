"""State persistence layer using PostgreSQL (SQLite for local development)."""

from proposal_core.state.database import get_engine, set_user_context
from proposal_core.state.repository import ProfileRepository, ProposalRepository, month_start

__all__ = [
    "ProfileRepository",
    "ProposalRepository",
    "get_engine",
    "month_start",
    "set_user_context",
]
