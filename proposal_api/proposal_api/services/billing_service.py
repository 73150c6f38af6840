"""Stripe billing integration service.

Creates Checkout and Customer Portal sessions for a signed-in user and
reconciles the local ``profiles`` table with verified Stripe webhook events.

Every webhook action writes the complete target state of the profile, so a
redelivered event leaves the row exactly as the first delivery did.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import stripe
from proposal_core.state.repository import ProfileRepository
from proposal_core.state.tables import PLAN_FREE, PLAN_PRO
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from proposal_api.config import APISettings
from proposal_api.errors import ConfigMissing, InvalidInput, SignatureInvalid, UpstreamLookupFailed
from proposal_api.middleware.prometheus import WEBHOOK_EVENTS_TOTAL
from proposal_api.services.stripe_events import (
    CheckoutCompleted,
    EventParseError,
    StripeEvent,
    SubscriptionDeleted,
    SubscriptionUpdated,
    UnhandledEvent,
    parse_event,
    subscription_period_end,
)

logger = logging.getLogger(__name__)

_ACTIVE_STATUSES: frozenset[str] = frozenset({"active"})


def _as_dict(obj: Any) -> dict[str, Any]:
    if isinstance(obj, dict):
        return obj
    to_dict = getattr(obj, "to_dict", None)
    return to_dict() if callable(to_dict) else {}


def _stripe_failure(exc: Exception, fallback: str) -> UpstreamLookupFailed:
    message = getattr(exc, "user_message", None)
    return UpstreamLookupFailed(message if isinstance(message, str) and message else fallback)


class BillingService:
    """Stripe billing operations.

    Parameters
    ----------
    session:
        Active database session.
    settings:
        API settings containing Stripe configuration.
    user_id:
        The signed-in user for checkout and portal sessions.  Webhook
        handling resolves the user from the event instead.
    """

    def __init__(
        self,
        session: AsyncSession,
        settings: APISettings,
        *,
        user_id: str | None = None,
    ) -> None:
        self._session = session
        self._settings = settings
        self._user_id = user_id
        self._profiles = ProfileRepository(session)

    def _get_stripe(self) -> Any:
        """Return the Stripe SDK module.  Credentials are passed per call."""
        return stripe

    def _require(self, *fields: str) -> None:
        missing = self._settings.missing(*fields)
        if missing:
            raise ConfigMissing(*missing)

    @property
    def _api_key(self) -> str:
        return self._settings.stripe_secret_key.get_secret_value()

    def _site_url(self) -> str:
        return self._settings.site_url.rstrip("/")

    # -- Checkout / portal ---------------------------------------------------

    async def create_checkout_session(self, email: str | None) -> dict[str, str]:
        """Create a Stripe Checkout session for the Pro subscription.

        A stored customer is reused; otherwise *email* pre-fills the form and
        Stripe creates the customer inline.  ``metadata.user_id`` lets the
        webhook attribute the completed checkout to this user.
        """
        self._require("stripe_secret_key", "stripe_price_id", "site_url")
        if self._user_id is None:
            raise InvalidInput("Missing userId")

        existing = await self._profiles.get(self._user_id)
        if not email and (existing is None or not existing.stripe_customer_id):
            raise InvalidInput("Missing email")

        site = self._site_url()
        params: dict[str, Any] = {
            "mode": "subscription",
            "line_items": [{"price": self._settings.stripe_price_id, "quantity": 1}],
            "success_url": f"{site}/billing/success?session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": f"{site}/billing/cancel",
            "metadata": {"user_id": self._user_id},
            "client_reference_id": self._user_id,
        }
        if existing is not None and existing.stripe_customer_id:
            params["customer"] = existing.stripe_customer_id
        else:
            params["customer_email"] = email

        client = self._get_stripe()
        try:
            checkout_session = client.checkout.Session.create(api_key=self._api_key, **params)
        except stripe.StripeError as exc:
            logger.error("Stripe checkout failed for user %s: %s", self._user_id, exc)
            raise _stripe_failure(exc, "Stripe checkout failed") from exc

        logger.info("Checkout session created for user %s", self._user_id)
        return {"url": checkout_session["url"]}

    async def create_portal_session(self) -> dict[str, str]:
        """Create a Stripe Customer Portal session for the stored customer."""
        self._require("stripe_secret_key", "site_url")
        if self._user_id is None:
            raise InvalidInput("Missing userId")

        profile = await self._profiles.get(self._user_id)
        if profile is None or not profile.stripe_customer_id:
            raise InvalidInput("No Stripe customer found for this user yet.")

        client = self._get_stripe()
        try:
            portal = client.billing_portal.Session.create(
                api_key=self._api_key,
                customer=profile.stripe_customer_id,
                return_url=self._site_url(),
            )
        except stripe.StripeError as exc:
            logger.error("Stripe portal failed for user %s: %s", self._user_id, exc)
            raise _stripe_failure(exc, "Portal error") from exc

        return {"url": portal["url"]}

    # -- Webhooks ------------------------------------------------------------

    def verify_webhook(self, payload: bytes, sig_header: str | None) -> StripeEvent:
        """Authenticate *payload* against the webhook secret and parse it.

        Nothing is read from or written to the store here, so a rejected
        event can never mutate state.

        Raises
        ------
        SignatureInvalid
            Missing header, undecodable body, or signature mismatch.
        InvalidInput
            The body is authentic but is not a Stripe event.
        """
        self._require("stripe_webhook_secret")
        if not sig_header:
            raise SignatureInvalid()

        try:
            text = payload.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise SignatureInvalid() from exc

        client = self._get_stripe()
        try:
            client.WebhookSignature.verify_header(
                text,
                sig_header,
                self._settings.stripe_webhook_secret.get_secret_value(),
                self._settings.stripe_webhook_tolerance,
            )
        except stripe.SignatureVerificationError as exc:
            logger.warning("Stripe webhook signature verification failed: %s", exc)
            raise SignatureInvalid() from exc

        try:
            return parse_event(json.loads(text))
        except (ValueError, EventParseError) as exc:
            logger.warning("Stripe webhook payload rejected: %s", exc)
            raise InvalidInput("Invalid payload") from exc

    async def handle_webhook_event(self, event: StripeEvent) -> dict[str, str]:
        """Apply a verified event to the profile store.

        Returns
        -------
        dict
            ``status`` is ``processed`` or ``ignored``; ignored events carry
            a ``reason``.
        """
        if isinstance(event, CheckoutCompleted):
            result = await self._handle_checkout_completed(event)
        elif isinstance(event, SubscriptionUpdated):
            result = await self._handle_subscription_updated(event)
        elif isinstance(event, SubscriptionDeleted):
            result = await self._handle_subscription_deleted(event)
        else:
            result = self._handle_unhandled(event)

        WEBHOOK_EVENTS_TOTAL.labels(event_type=event.event_type, status=result["status"]).inc()
        return result

    async def _handle_checkout_completed(self, event: CheckoutCompleted) -> dict[str, str]:
        if event.mode != "subscription":
            logger.info("Ignoring non-subscription checkout %s (mode=%s)", event.event_id, event.mode)
            return {"status": "ignored", "reason": "non_subscription_checkout"}

        if event.user_id is None:
            logger.warning("Checkout %s completed without metadata.user_id", event.event_id)
            return {"status": "ignored", "reason": "missing_user_id"}

        period_end = None
        if event.subscription_id:
            period_end = await self._retrieve_period_end(event.subscription_id)

        email = event.email
        if email is None:
            existing = await self._lookup(self._profiles.get, event.user_id)
            email = existing.email if existing is not None else None

        await self._write(
            event.user_id,
            plan=PLAN_PRO,
            email=email,
            stripe_customer_id=event.customer_id,
            stripe_subscription_id=event.subscription_id,
            current_period_end=period_end,
        )
        logger.info("User %s upgraded to pro via checkout %s", event.user_id, event.event_id)
        return {"status": "processed"}

    async def _handle_subscription_updated(self, event: SubscriptionUpdated) -> dict[str, str]:
        profile = await self._profile_for_customer(event.customer_id)
        if profile is None:
            logger.warning("Subscription update for unknown customer: %s", event.customer_id)
            return {"status": "ignored", "reason": "unknown_customer"}

        plan = PLAN_PRO if event.status in _ACTIVE_STATUSES else PLAN_FREE
        await self._write(
            profile.user_id,
            plan=plan,
            email=profile.email,
            stripe_customer_id=event.customer_id,
            stripe_subscription_id=event.subscription_id,
            current_period_end=event.current_period_end,
        )
        logger.info(
            "Subscription %s for user %s is %s; plan=%s",
            event.subscription_id,
            profile.user_id,
            event.status,
            plan,
        )
        return {"status": "processed"}

    async def _handle_subscription_deleted(self, event: SubscriptionDeleted) -> dict[str, str]:
        profile = await self._profile_for_customer(event.customer_id)
        if profile is None:
            logger.warning("Subscription deletion for unknown customer: %s", event.customer_id)
            return {"status": "ignored", "reason": "unknown_customer"}

        await self._write(
            profile.user_id,
            plan=PLAN_FREE,
            email=profile.email,
            stripe_customer_id=event.customer_id,
            stripe_subscription_id=None,
            current_period_end=None,
        )
        logger.info("User %s downgraded to free (subscription %s deleted)", profile.user_id, event.subscription_id)
        return {"status": "processed"}

    def _handle_unhandled(self, event: UnhandledEvent) -> dict[str, str]:
        logger.debug("Unhandled Stripe event type: %s", event.event_type)
        return {"status": "ignored", "reason": "unhandled_event_type"}

    # -- Internal helpers ----------------------------------------------------

    async def _retrieve_period_end(self, subscription_id: str) -> Any:
        self._require("stripe_secret_key")
        client = self._get_stripe()
        try:
            subscription = client.Subscription.retrieve(subscription_id, api_key=self._api_key)
        except stripe.StripeError as exc:
            logger.error("Could not retrieve subscription %s: %s", subscription_id, exc)
            raise _stripe_failure(exc, "Could not retrieve subscription") from exc
        return subscription_period_end(_as_dict(subscription))

    async def _profile_for_customer(self, customer_id: str | None) -> Any:
        if not customer_id:
            return None
        return await self._lookup(self._profiles.get_by_customer_id, customer_id)

    async def _lookup(self, finder: Any, key: str) -> Any:
        try:
            return await finder(key)
        except SQLAlchemyError as exc:
            logger.error("Profile lookup failed for %s: %s", key, exc)
            raise UpstreamLookupFailed("Profile lookup failed") from exc

    async def _write(self, user_id: str, **state: Any) -> None:
        try:
            await self._profiles.upsert(user_id, **state)
        except SQLAlchemyError as exc:
            logger.error("Profile upsert failed for user %s: %s", user_id, exc)
            raise UpstreamLookupFailed("Profile update failed") from exc
