"""Portal service — Stripe Customer Portal sessions for subscribed users."""

import logging

from booking_billing.errors import MissingCustomer, SubscriptionNotFound
from booking_billing.store import SUBSCRIPTIONS

logger = logging.getLogger(__name__)

# Statuses that still have a Stripe customer worth managing
PORTAL_STATUSES = ("active", "trialing", "past_due", "cancelled")


def create_portal_session(store, gateway, user_id, return_url):
    """Create a Customer Portal session for the user's latest subscription.

    Allows the customer to manage their subscription (update payment,
    cancel, change plan) via Stripe's hosted portal.

    Returns the portal session URL.
    Raises SubscriptionNotFound if the user has no subscription.
    Raises MissingCustomer if that subscription has no Stripe customer.
    Raises stripe.StripeError on API failures.
    """
    subscription = store.select_one(
        SUBSCRIPTIONS,
        {"user_id": user_id, "status": list(PORTAL_STATUSES)},
        order_by="-created_at",
    )
    if not subscription:
        raise SubscriptionNotFound()

    customer_id = subscription.get("stripe_customer_id")
    if not customer_id:
        raise MissingCustomer()

    logger.info(f"Creating portal session for user {user_id} (customer {customer_id})")
    return gateway.create_portal_session(customer_id, return_url)
