"""API router modules for the ProposalHQ API."""

from __future__ import annotations

from proposal_api.routers import billing, health, metrics, profile, proposals

__all__ = [
    "billing",
    "health",
    "metrics",
    "profile",
    "proposals",
]
