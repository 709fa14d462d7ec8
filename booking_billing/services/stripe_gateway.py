"""Stripe gateway — every outbound Stripe API call goes through here.

Built once in create_app() from STRIPE_SECRET_KEY / STRIPE_API_VERSION and
passed to the services that need it. Credentials travel per request
(api_key=...) rather than through the global stripe.api_key.
"""

import logging

import stripe

logger = logging.getLogger(__name__)


class StripeGateway:

    def __init__(self, api_key, api_version=None):
        self.api_key = api_key
        self.api_version = api_version

    def _opts(self):
        opts = {"api_key": self.api_key}
        if self.api_version:
            opts["stripe_version"] = self.api_version
        return opts

    def retrieve_subscription(self, subscription_id):
        """Fetch a subscription and return it as a plain dict.

        Raises stripe.StripeError on API failures.
        """
        sub = stripe.Subscription.retrieve(subscription_id, **self._opts())
        return sub.to_dict()

    def create_portal_session(self, customer_id, return_url):
        """Create a Billing Portal session. Returns the portal URL."""
        session = stripe.billing_portal.Session.create(
            customer=customer_id,
            return_url=return_url,
            **self._opts(),
        )
        logger.info(f"Portal session {session.id} created for customer {customer_id}")
        return session.url

    def create_checkout_session(self, **params):
        """Create a Checkout Session. Returns (session_id, url)."""
        session = stripe.checkout.Session.create(**params, **self._opts())
        logger.info(f"Checkout session {session.id} created")
        return session.id, session.url

    def retrieve_price(self, price_id):
        """Fetch a price (used by the verify-tier-prices CLI)."""
        return stripe.Price.retrieve(price_id, **self._opts())

    @property
    def live_mode(self):
        return bool(self.api_key) and self.api_key.startswith("sk_live_")
