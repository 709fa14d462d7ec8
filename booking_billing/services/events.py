"""Typed Stripe events — decoded from the verified JSON payload.

decode_event() turns the generic ``{"id", "type", "data": {"object"}}``
envelope into one of six recognised shapes, or UnrecognizedEvent for any
type this service ignores. The raw ``data.object`` is kept on every shape
so handlers can snapshot extra fields into audit metadata.

Handles both Stripe API layouts:
- period bounds at the subscription top level, or under items.data[0]
- invoice.subscription, or invoice.parent.subscription_details.subscription
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from booking_billing.errors import MalformedPayload

CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"
SUBSCRIPTION_CREATED = "customer.subscription.created"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"
INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
INVOICE_PAYMENT_FAILED = "invoice.payment_failed"

# Stripe status -> stored status (active | trialing | past_due | cancelled)
STATUS_MAP = {
    "active": "active",
    "trialing": "trialing",
    "past_due": "past_due",
    "unpaid": "past_due",
    "incomplete": "past_due",
    "paused": "past_due",
    "canceled": "cancelled",
    "cancelled": "cancelled",
    "incomplete_expired": "cancelled",
}


def from_timestamp(ts):
    """Unix seconds -> timezone-aware UTC datetime (None passes through)."""
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc)


def object_id(value):
    """Stripe references are either an id string or an expanded object."""
    if isinstance(value, dict):
        return value.get("id")
    return value


def _extract_period(sub_data, key):
    """Read current_period_start/end from a Stripe subscription object.

    In newer Stripe API versions the period bounds moved from the
    subscription top level to items.data[0]. Check both locations.
    """
    ts = sub_data.get(key)
    if not ts:
        items = sub_data.get("items") or {}
        data = items.get("data") or []
        if data:
            ts = data[0].get(key)
    return from_timestamp(ts) if ts else None


def _invoice_subscription_id(invoice):
    sub_ref = invoice.get("subscription")
    if not sub_ref:
        parent = invoice.get("parent") or {}
        details = parent.get("subscription_details") or {}
        sub_ref = details.get("subscription")
    return object_id(sub_ref)


@dataclass(frozen=True)
class SubscriptionSnapshot:
    """The subset of a Stripe subscription this service stores."""

    id: str
    customer_id: Optional[str]
    stripe_status: Optional[str]
    current_period_start: Optional[datetime]
    current_period_end: Optional[datetime]
    cancel_at_period_end: bool
    canceled_at: Optional[datetime]

    @classmethod
    def from_stripe(cls, sub_data):
        return cls(
            id=sub_data.get("id"),
            customer_id=object_id(sub_data.get("customer")),
            stripe_status=sub_data.get("status"),
            current_period_start=_extract_period(sub_data, "current_period_start"),
            current_period_end=_extract_period(sub_data, "current_period_end"),
            cancel_at_period_end=bool(sub_data.get("cancel_at_period_end", False)),
            canceled_at=from_timestamp(sub_data.get("canceled_at")),
        )

    @property
    def status(self):
        """Normalized status, or None for a status we don't know."""
        return STATUS_MAP.get(self.stripe_status)


@dataclass(frozen=True)
class CheckoutSessionCompleted:
    event_id: str
    session_id: Optional[str]
    mode: Optional[str]
    subscription_id: Optional[str]
    customer_id: Optional[str]
    user_id: Optional[str]
    tier_id: Optional[str]
    amount_total: Optional[int]
    currency: Optional[str]
    raw: dict = field(default_factory=dict, repr=False)
    type: str = CHECKOUT_SESSION_COMPLETED


@dataclass(frozen=True)
class SubscriptionChanged:
    """customer.subscription.created and customer.subscription.updated."""

    event_id: str
    type: str
    subscription: SubscriptionSnapshot
    raw: dict = field(default_factory=dict, repr=False)


@dataclass(frozen=True)
class SubscriptionDeleted:
    event_id: str
    subscription: SubscriptionSnapshot
    raw: dict = field(default_factory=dict, repr=False)
    type: str = SUBSCRIPTION_DELETED


@dataclass(frozen=True)
class InvoicePaid:
    event_id: str
    invoice_id: Optional[str]
    subscription_id: Optional[str]
    amount_paid: Optional[int]
    currency: Optional[str]
    period_start: Optional[int]
    period_end: Optional[int]
    raw: dict = field(default_factory=dict, repr=False)
    type: str = INVOICE_PAYMENT_SUCCEEDED


@dataclass(frozen=True)
class InvoicePaymentFailed:
    event_id: str
    invoice_id: Optional[str]
    subscription_id: Optional[str]
    amount_due: Optional[int]
    currency: Optional[str]
    attempt_count: Optional[int]
    raw: dict = field(default_factory=dict, repr=False)
    type: str = INVOICE_PAYMENT_FAILED


@dataclass(frozen=True)
class UnrecognizedEvent:
    event_id: str
    type: str
    raw: dict = field(default_factory=dict, repr=False)


def _checkout_completed(event_id, obj):
    metadata = obj.get("metadata") or {}
    return CheckoutSessionCompleted(
        event_id=event_id,
        session_id=obj.get("id"),
        mode=obj.get("mode"),
        subscription_id=object_id(obj.get("subscription")),
        customer_id=object_id(obj.get("customer")),
        user_id=metadata.get("user_id"),
        tier_id=metadata.get("tier_id"),
        amount_total=obj.get("amount_total"),
        currency=obj.get("currency"),
        raw=obj,
    )


def _invoice_paid(event_id, obj):
    return InvoicePaid(
        event_id=event_id,
        invoice_id=obj.get("id"),
        subscription_id=_invoice_subscription_id(obj),
        amount_paid=obj.get("amount_paid"),
        currency=obj.get("currency"),
        period_start=obj.get("period_start"),
        period_end=obj.get("period_end"),
        raw=obj,
    )


def _invoice_failed(event_id, obj):
    return InvoicePaymentFailed(
        event_id=event_id,
        invoice_id=obj.get("id"),
        subscription_id=_invoice_subscription_id(obj),
        amount_due=obj.get("amount_due"),
        currency=obj.get("currency"),
        attempt_count=obj.get("attempt_count"),
        raw=obj,
    )


def _subscription_snapshot(obj):
    # Every lookup and update is keyed on the id; a missing id would match
    # the free-tier rows, whose stripe_subscription_id is NULL.
    if not obj.get("id"):
        raise MalformedPayload("Subscription object is missing id")
    return SubscriptionSnapshot.from_stripe(obj)


_DECODERS = {
    CHECKOUT_SESSION_COMPLETED: _checkout_completed,
    SUBSCRIPTION_CREATED: lambda event_id, obj: SubscriptionChanged(
        event_id, SUBSCRIPTION_CREATED, _subscription_snapshot(obj), obj
    ),
    SUBSCRIPTION_UPDATED: lambda event_id, obj: SubscriptionChanged(
        event_id, SUBSCRIPTION_UPDATED, _subscription_snapshot(obj), obj
    ),
    SUBSCRIPTION_DELETED: lambda event_id, obj: SubscriptionDeleted(
        event_id, _subscription_snapshot(obj), obj
    ),
    INVOICE_PAYMENT_SUCCEEDED: _invoice_paid,
    INVOICE_PAYMENT_FAILED: _invoice_failed,
}

RECOGNIZED_TYPES = frozenset(_DECODERS)


def decode_event(payload: Any):
    """Decode a parsed Stripe event envelope into a typed event.

    Raises MalformedPayload if the envelope is missing id, type or
    data.object, or if data.object is not an object, or if a
    customer.subscription.* object has no id.
    """
    if not isinstance(payload, dict):
        raise MalformedPayload("Event payload is not a JSON object")

    event_id = payload.get("id")
    event_type = payload.get("type")
    data = payload.get("data")
    if not event_id or not event_type or not isinstance(data, dict):
        raise MalformedPayload("Event payload is missing id, type or data")

    obj = data.get("object")
    if not isinstance(obj, dict):
        raise MalformedPayload("Event payload is missing data.object")

    decoder = _DECODERS.get(event_type)
    if decoder is None:
        return UnrecognizedEvent(event_id=event_id, type=event_type, raw=obj)
    return decoder(event_id, obj)
