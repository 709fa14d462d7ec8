"""Checkout service — Stripe Checkout Sessions for paid tiers.

The session (and the subscription it creates) carries user_id and tier_id
in its metadata. That is what lets the checkout.session.completed webhook
attach the new subscription to the right user and tier.
"""

import logging

from booking_billing.errors import CheckoutError
from booking_billing.store import SUBSCRIPTIONS, TIERS

logger = logging.getLogger(__name__)


def create_checkout_session(store, gateway, user, tier_id, success_url,
                            cancel_url, free_tier_name="free"):
    """Create a subscription-mode Checkout Session for ``tier_id``.

    Reuses the Stripe customer of an active/trialing subscription when the
    user has one, otherwise pre-fills the user's email so Stripe creates
    the customer.

    Returns {"sessionId", "url", "tier": {...}}.
    Raises CheckoutError for an unknown, free, or unpriced tier.
    Raises stripe.StripeError on API failures.
    """
    tier = store.select_one(TIERS, {"id": tier_id})
    if not tier:
        raise CheckoutError("Invalid tier_id")

    if tier["name"] == free_tier_name:
        raise CheckoutError("Cannot create checkout for free tier")

    if not tier.get("stripe_price_id"):
        raise CheckoutError("Tier does not have Stripe price configured")

    existing = store.select_one(
        SUBSCRIPTIONS,
        {"user_id": user.id, "status": ["active", "trialing"]},
        order_by="-created_at",
    )

    metadata = {"user_id": user.id, "tier_id": tier_id}
    params = {
        "mode": "subscription",
        "line_items": [{"price": tier["stripe_price_id"], "quantity": 1}],
        "success_url": success_url,
        "cancel_url": cancel_url,
        "subscription_data": {"metadata": metadata},
        "metadata": metadata,
    }

    if existing and existing.get("stripe_customer_id"):
        params["customer"] = existing["stripe_customer_id"]
    elif user.email:
        params["customer_email"] = user.email

    session_id, url = gateway.create_checkout_session(**params)
    logger.info(f"Checkout session {session_id} for user {user.id} on tier {tier['name']}")

    price = tier.get("price_monthly")
    return {
        "sessionId": session_id,
        "url": url,
        "tier": {
            "name": tier["name"],
            "display_name": tier.get("display_name"),
            "price_monthly": float(price) if price is not None else None,
        },
    }
