"""Billing endpoints: Stripe Checkout, Customer Portal, and webhooks."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from sqlalchemy.exc import SQLAlchemyError

from proposal_api.dependencies import IdentityDep, PublicSessionDep, SessionDep, SettingsDep
from proposal_api.errors import Forbidden, UpstreamLookupFailed
from proposal_api.schemas import CheckoutRequest, PortalRequest, SessionUrlResponse, WebhookResponse
from proposal_api.services.billing_service import BillingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["billing"])


def _check_claimed_user(claimed: str | None, identity_user_id: str) -> None:
    if claimed is not None and claimed != identity_user_id:
        logger.warning("Billing request for %s claimed userId %s", identity_user_id, claimed)
        raise Forbidden("userId does not match the signed-in user")


@router.post("/checkout", response_model=SessionUrlResponse)
async def create_checkout_session(
    session: SessionDep,
    identity: IdentityDep,
    settings: SettingsDep,
    body: CheckoutRequest | None = None,
) -> SessionUrlResponse:
    """Start a Stripe Checkout session for the Pro plan.

    ``userId`` is optional and must match the bearer identity when sent.
    ``email`` falls back to the identity provider's email for the caller.
    """
    body = body or CheckoutRequest()
    _check_claimed_user(body.user_id, identity.user_id)

    service = BillingService(session, settings, user_id=identity.user_id)
    result = await service.create_checkout_session(body.email or identity.email)
    return SessionUrlResponse(**result)


@router.post("/portal", response_model=SessionUrlResponse)
async def create_portal_session(
    session: SessionDep,
    identity: IdentityDep,
    settings: SettingsDep,
    body: PortalRequest | None = None,
) -> SessionUrlResponse:
    """Open the Stripe Customer Portal for the caller's stored customer."""
    body = body or PortalRequest()
    _check_claimed_user(body.user_id, identity.user_id)

    service = BillingService(session, settings, user_id=identity.user_id)
    return SessionUrlResponse(**await service.create_portal_session())


@router.post("/webhooks", response_model=WebhookResponse, response_model_exclude_none=True)
async def stripe_webhook(
    request: Request,
    session: PublicSessionDep,
    settings: SettingsDep,
) -> WebhookResponse:
    """Handle incoming Stripe webhook events.

    Authenticated by the ``Stripe-Signature`` header, not by bearer token.
    Rejected events get a 400 and Stripe retries them; events that are
    accepted but not acted on get a 200 with ``status="ignored"``.
    """
    body = await request.body()
    service = BillingService(session, settings)
    event = service.verify_webhook(body, request.headers.get("stripe-signature"))

    result = await service.handle_webhook_event(event)
    try:
        await session.commit()
    except SQLAlchemyError as exc:
        logger.error("Webhook commit failed for %s: %s", event.event_type, exc)
        raise UpstreamLookupFailed("Profile update failed") from exc

    logger.info("Stripe webhook %s (%s): %s", event.event_id, event.event_type, result["status"])
    return WebhookResponse(status=result["status"], reason=result.get("reason"))
