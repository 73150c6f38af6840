"""Typed view of the Stripe webhook events the billing service acts on.

:func:`parse_event` turns a verified event payload into exactly one of
:class:`CheckoutCompleted`, :class:`SubscriptionUpdated`,
:class:`SubscriptionDeleted` or :class:`UnhandledEvent`.  Customer and
subscription references are normalised to their id whether Stripe sent a
bare id or an expanded object.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

CHECKOUT_COMPLETED = "checkout.session.completed"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"


class EventParseError(ValueError):
    """The event payload does not have the shape Stripe documents."""


@dataclass(frozen=True)
class CheckoutCompleted:
    event_id: str
    mode: str | None
    user_id: str | None
    customer_id: str | None
    subscription_id: str | None
    email: str | None

    event_type = CHECKOUT_COMPLETED


@dataclass(frozen=True)
class SubscriptionUpdated:
    event_id: str
    subscription_id: str | None
    customer_id: str | None
    status: str | None
    current_period_end: datetime | None

    event_type = SUBSCRIPTION_UPDATED


@dataclass(frozen=True)
class SubscriptionDeleted:
    event_id: str
    subscription_id: str | None
    customer_id: str | None

    event_type = SUBSCRIPTION_DELETED


@dataclass(frozen=True)
class UnhandledEvent:
    event_id: str
    event_type: str


StripeEvent = CheckoutCompleted | SubscriptionUpdated | SubscriptionDeleted | UnhandledEvent


def ref_id(value: Any) -> str | None:
    """Normalise a Stripe reference (id string or expanded object) to its id."""
    if isinstance(value, str):
        return value or None
    if isinstance(value, dict):
        inner = value.get("id")
        return inner if isinstance(inner, str) and inner else None
    return None


def timestamp_to_datetime(value: Any) -> datetime | None:
    """Convert a Stripe unix timestamp to an aware UTC datetime."""
    if isinstance(value, bool) or not isinstance(value, int | float) or value <= 0:
        return None
    return datetime.fromtimestamp(value, tz=UTC)


def subscription_period_end(subscription: dict[str, Any]) -> datetime | None:
    """Read ``current_period_end`` from a subscription object.

    Newer Stripe API versions moved the period onto each subscription item;
    the top-level field is preferred when present.
    """
    top_level = timestamp_to_datetime(subscription.get("current_period_end"))
    if top_level is not None:
        return top_level
    items = subscription.get("items")
    data = items.get("data") if isinstance(items, dict) else None
    if isinstance(data, list):
        for item in data:
            if isinstance(item, dict):
                item_end = timestamp_to_datetime(item.get("current_period_end"))
                if item_end is not None:
                    return item_end
    return None


def _str_or_none(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def parse_event(payload: Any) -> StripeEvent:
    """Map a decoded webhook body onto the event union.

    Raises
    ------
    EventParseError
        If the payload is not an object with ``type`` and ``data.object``.
    """
    if not isinstance(payload, dict):
        raise EventParseError("Event payload must be a JSON object")

    event_type = payload.get("type")
    if not isinstance(event_type, str) or not event_type:
        raise EventParseError("Event has no type")
    event_id = _str_or_none(payload.get("id")) or ""

    data = payload.get("data")
    obj = data.get("object") if isinstance(data, dict) else None

    if event_type not in (CHECKOUT_COMPLETED, SUBSCRIPTION_UPDATED, SUBSCRIPTION_DELETED):
        return UnhandledEvent(event_id=event_id, event_type=event_type)

    if not isinstance(obj, dict):
        raise EventParseError(f"Event {event_type} has no data.object")

    if event_type == CHECKOUT_COMPLETED:
        metadata = obj.get("metadata")
        details = obj.get("customer_details")
        email = (details.get("email") if isinstance(details, dict) else None) or obj.get("customer_email")
        return CheckoutCompleted(
            event_id=event_id,
            mode=_str_or_none(obj.get("mode")),
            user_id=_str_or_none(metadata.get("user_id")) if isinstance(metadata, dict) else None,
            customer_id=ref_id(obj.get("customer")),
            subscription_id=ref_id(obj.get("subscription")),
            email=_str_or_none(email),
        )

    if event_type == SUBSCRIPTION_UPDATED:
        return SubscriptionUpdated(
            event_id=event_id,
            subscription_id=_str_or_none(obj.get("id")),
            customer_id=ref_id(obj.get("customer")),
            status=_str_or_none(obj.get("status")),
            current_period_end=subscription_period_end(obj),
        )

    return SubscriptionDeleted(
        event_id=event_id,
        subscription_id=_str_or_none(obj.get("id")),
        customer_id=ref_id(obj.get("customer")),
    )
