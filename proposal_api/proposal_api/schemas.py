"""Shared Pydantic request and response models for API endpoints.

Request bodies use the camelCase field names the web client sends
(``clientName``, ``userId``); responses mirror the stored column names.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Proposals
# ---------------------------------------------------------------------------


class GenerateRequest(BaseModel):
    """Request body for ``POST /generate``.

    Both fields default to empty so that presence is checked by the service
    after the quota, with the same 400 message for missing and blank values.
    """

    model_config = ConfigDict(populate_by_name=True)

    client_name: str = Field(default="", alias="clientName")
    notes: str = ""


class ProposalRecord(BaseModel):
    """A stored proposal."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    client_name: str
    notes: str
    proposal: str
    created_at: datetime


class GenerateResponse(BaseModel):
    proposal: str
    saved: ProposalRecord


class ProposalListResponse(BaseModel):
    proposals: list[ProposalRecord] = Field(default_factory=list)


class DeleteResponse(BaseModel):
    deleted: bool
    id: str


# ---------------------------------------------------------------------------
# Profile / usage
# ---------------------------------------------------------------------------


class ProfileResponse(BaseModel):
    """The caller's plan and billing linkage."""

    model_config = ConfigDict(from_attributes=True)

    user_id: str
    email: str | None = None
    plan: str
    stripe_customer_id: str | None = None
    current_period_end: datetime | None = None
    created_at: datetime
    updated_at: datetime


class UsageResponse(BaseModel):
    """Proposals created this calendar month.  ``None`` limits mean unlimited."""

    plan: str
    used: int
    limit: int | None = None
    remaining: int | None = None


# ---------------------------------------------------------------------------
# Billing
# ---------------------------------------------------------------------------


class CheckoutRequest(BaseModel):
    """Request body for ``POST /billing/checkout``."""

    model_config = ConfigDict(populate_by_name=True)

    email: str | None = None
    user_id: str | None = Field(default=None, alias="userId")


class PortalRequest(BaseModel):
    """Request body for ``POST /billing/portal``."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: str | None = Field(default=None, alias="userId")


class SessionUrlResponse(BaseModel):
    """Redirect target for a Stripe-hosted page."""

    url: str


class WebhookResponse(BaseModel):
    ok: bool = True
    status: str
    reason: str | None = None
