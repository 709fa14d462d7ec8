"""Subscription reconciler — converge user_subscriptions to Stripe's state.

Stripe delivers webhooks at least once, possibly duplicated, possibly out
of order. Every handler here is therefore idempotent: creates are upserts
keyed on stripe_subscription_id and everything else is an update matched on
it. Replaying an event converges to the same rows.

Failure policy:
- "Not found" (event arrived before, or without, its local row) is an
  expected race. Log it and return; raising would only make Stripe retry
  the same no-op.
- Store write failures and Stripe API failures raise. The webhook answers
  400 and Stripe retries later.

Audit rows are written only for actual transitions, never for skips.
"""

import logging
from datetime import datetime, timezone

from booking_billing.services.audit_service import AuditLogWriter
from booking_billing.services.events import (
    CheckoutSessionCompleted,
    InvoicePaid,
    InvoicePaymentFailed,
    SubscriptionChanged,
    SubscriptionDeleted,
    SubscriptionSnapshot,
    UnrecognizedEvent,
)
from booking_billing.store import SUBSCRIPTIONS, TIERS

logger = logging.getLogger(__name__)

# Fallback for Stripe statuses outside STATUS_MAP
UNKNOWN_STATUS_FALLBACK = "past_due"


def _stored_status(snapshot):
    status = snapshot.status
    if status is None:
        logger.warning(
            f"Unknown Stripe status {snapshot.stripe_status!r} on {snapshot.id}, "
            f"storing as {UNKNOWN_STATUS_FALLBACK}"
        )
        return UNKNOWN_STATUS_FALLBACK
    return status


class SubscriptionReconciler:

    def __init__(self, store, gateway, audit=None, free_tier_name="free"):
        self.store = store
        self.gateway = gateway
        self.audit = audit or AuditLogWriter(store)
        self.free_tier_name = free_tier_name

        self._handlers = {
            CheckoutSessionCompleted: self.handle_checkout_completed,
            SubscriptionChanged: self.handle_subscription_updated,
            SubscriptionDeleted: self.handle_subscription_deleted,
            InvoicePaid: self.handle_invoice_paid,
            InvoicePaymentFailed: self.handle_invoice_payment_failed,
        }

    # ──────────────────────────────────────────────
    # Dispatch
    # ──────────────────────────────────────────────

    def dispatch(self, event):
        """Route a decoded event to its handler.

        Unrecognized types are acknowledged without touching the store.
        Handler exceptions propagate to the caller.
        """
        logger.info(f"Received Stripe event {event.type} ({event.event_id})")

        handler = self._handlers.get(type(event))
        if handler is None:
            if not isinstance(event, UnrecognizedEvent):
                logger.warning(f"No handler registered for {type(event).__name__}")
            logger.info(f"Unhandled event type: {event.type}")
            return
        handler(event)

    def _find_subscription(self, stripe_subscription_id):
        return self.store.select_one(
            SUBSCRIPTIONS, {"stripe_subscription_id": stripe_subscription_id}
        )

    # ──────────────────────────────────────────────
    # Handlers
    # ──────────────────────────────────────────────

    def handle_checkout_completed(self, event):
        """checkout.session.completed -> upsert the subscription row."""
        if event.mode != "subscription":
            logger.info(f"Ignoring non-subscription checkout session {event.session_id}")
            return

        if not event.user_id or not event.tier_id:
            logger.error(
                f"checkout.session.completed {event.session_id} missing user_id or tier_id"
            )
            return

        if not event.subscription_id:
            logger.warning(
                f"checkout.session.completed {event.session_id} has no subscription"
            )
            return

        # Fetch full subscription from Stripe for status and periods
        sub = SubscriptionSnapshot.from_stripe(
            self.gateway.retrieve_subscription(event.subscription_id)
        )
        status = _stored_status(sub)

        record = self.store.upsert(
            SUBSCRIPTIONS,
            {
                "user_id": event.user_id,
                "tier_id": event.tier_id,
                "stripe_subscription_id": sub.id,
                "stripe_customer_id": sub.customer_id or event.customer_id,
                "status": status,
                "current_period_start": sub.current_period_start,
                "current_period_end": sub.current_period_end,
                "cancel_at_period_end": sub.cancel_at_period_end,
            },
            on_conflict="stripe_subscription_id",
        )

        self.audit.record(
            "trial_started" if status == "trialing" else "subscription_created",
            user_id=event.user_id,
            stripe_event_id=event.event_id,
            subscription_id=record.get("id"),
            metadata={
                "subscription_id": sub.id,
                "customer_id": sub.customer_id or event.customer_id,
                "amount": event.amount_total,
                "currency": event.currency,
            },
        )

        logger.info(f"Subscription {sub.id} created for user {event.user_id}")

    def handle_subscription_updated(self, event):
        """customer.subscription.created / .updated -> sync status and periods."""
        sub = event.subscription
        if not sub.id:
            logger.warning(f"{event.type} {event.event_id} has no subscription id, skipping")
            return

        existing = self._find_subscription(sub.id)
        if not existing:
            logger.info(f"Subscription {sub.id} not found in database, skipping update")
            return

        status = _stored_status(sub)
        self.store.update(
            SUBSCRIPTIONS,
            {"stripe_subscription_id": sub.id},
            {
                "status": status,
                "current_period_start": sub.current_period_start,
                "current_period_end": sub.current_period_end,
                "cancel_at_period_end": sub.cancel_at_period_end,
                "cancelled_at": sub.canceled_at,
            },
        )

        self.audit.record(
            "subscription_cancelled" if sub.cancel_at_period_end else "subscription_updated",
            user_id=existing["user_id"],
            stripe_event_id=event.event_id,
            subscription_id=existing["id"],
            metadata={
                "subscription_id": sub.id,
                "status": status,
                "cancel_at_period_end": sub.cancel_at_period_end,
            },
        )

        logger.info(f"Subscription {sub.id} updated ({status})")

    def handle_subscription_deleted(self, event):
        """customer.subscription.deleted -> cancel, then fall back to the free tier."""
        sub = event.subscription
        if not sub.id:
            logger.warning(f"{event.type} {event.event_id} has no subscription id, skipping")
            return

        existing = self._find_subscription(sub.id)
        if not existing:
            logger.info(f"Subscription {sub.id} not found in database, skipping delete")
            return

        cancelled_at = datetime.now(timezone.utc)
        self.store.update(
            SUBSCRIPTIONS,
            {"stripe_subscription_id": sub.id},
            {"status": "cancelled", "cancelled_at": cancelled_at},
        )

        free_tier_id = self._reactivate_on_free_tier(existing["user_id"])

        self.audit.record(
            "subscription_cancelled",
            user_id=existing["user_id"],
            stripe_event_id=event.event_id,
            subscription_id=existing["id"],
            metadata={
                "subscription_id": sub.id,
                "cancelled_at": cancelled_at.isoformat(),
                "free_tier_id": free_tier_id,
            },
        )

        logger.info(f"Subscription {sub.id} deleted, user reverted to free tier")

    def _reactivate_on_free_tier(self, user_id):
        """Give the user an active free-tier row. Returns the free tier id or None.

        Skips the insert if the user already has one, so redelivery of the
        same deletion doesn't stack free-tier rows.
        """
        free_tier = self.store.select_one(TIERS, {"name": self.free_tier_name})
        if not free_tier:
            logger.warning(
                f"No '{self.free_tier_name}' tier found, user {user_id} left without a subscription"
            )
            return None

        already_free = self.store.select_one(
            SUBSCRIPTIONS,
            {"user_id": user_id, "tier_id": free_tier["id"], "status": "active"},
        )
        if already_free:
            logger.info(f"User {user_id} already on the free tier")
            return free_tier["id"]

        self.store.insert(
            SUBSCRIPTIONS,
            {
                "user_id": user_id,
                "tier_id": free_tier["id"],
                "status": "active",
                "cancel_at_period_end": False,
            },
        )
        return free_tier["id"]

    def handle_invoice_paid(self, event):
        """invoice.payment_succeeded -> audit only."""
        if not event.subscription_id:
            logger.info(f"Invoice {event.invoice_id} not associated with a subscription")
            return

        existing = self._find_subscription(event.subscription_id)
        if not existing:
            logger.info(f"Subscription {event.subscription_id} not found for invoice")
            return

        self.audit.record(
            "payment_succeeded",
            user_id=existing["user_id"],
            stripe_event_id=event.event_id,
            subscription_id=existing["id"],
            metadata={
                "invoice_id": event.invoice_id,
                "amount_paid": event.amount_paid,
                "currency": event.currency,
                "period_start": event.period_start,
                "period_end": event.period_end,
            },
        )

        logger.info(f"Payment succeeded for subscription {event.subscription_id}")

    def handle_invoice_payment_failed(self, event):
        """invoice.payment_failed -> past_due."""
        if not event.subscription_id:
            logger.info(f"Invoice {event.invoice_id} not associated with a subscription")
            return

        existing = self._find_subscription(event.subscription_id)
        if not existing:
            logger.info(f"Subscription {event.subscription_id} not found for invoice")
            return

        self.store.update(
            SUBSCRIPTIONS,
            {"stripe_subscription_id": event.subscription_id},
            {"status": "past_due"},
        )

        self.audit.record(
            "payment_failed",
            user_id=existing["user_id"],
            stripe_event_id=event.event_id,
            subscription_id=existing["id"],
            metadata={
                "invoice_id": event.invoice_id,
                "amount_due": event.amount_due,
                "currency": event.currency,
                "attempt_count": event.attempt_count,
            },
        )

        logger.info(f"Payment failed for subscription {event.subscription_id}")
