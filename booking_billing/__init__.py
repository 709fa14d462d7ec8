import os
import logging

import click
from flask import Flask, jsonify

from booking_billing.config import config_by_name
from booking_billing.extensions import db, migrate, login_manager, limiter


class BillingServices:
    """Clients built once per process and shared by every request."""

    def __init__(self, store, gateway, reconciler):
        self.store = store
        self.gateway = gateway
        self.reconciler = reconciler


def create_app(config_name=None, store=None, gateway=None):
    """Application factory.

    ``store`` and ``gateway`` may be passed in to replace the clients that
    would otherwise be built from config (tests, scripts).
    """

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])

    # --- Validate required env vars (a missing secret is a startup fault) ---
    config_by_name[config_name].validate()

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    limiter.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from booking_billing import models  # noqa: F401

    # --- Build clients once, inject everywhere ---
    from booking_billing.services.audit_service import AuditLogWriter
    from booking_billing.services.reconciler import SubscriptionReconciler
    from booking_billing.services.stripe_gateway import StripeGateway
    from booking_billing.store import build_store

    if store is None:
        store = build_store(app.config)
    if gateway is None:
        gateway = StripeGateway(
            api_key=app.config["STRIPE_SECRET_KEY"],
            api_version=app.config.get("STRIPE_API_VERSION"),
        )
    reconciler = SubscriptionReconciler(
        store,
        gateway,
        audit=AuditLogWriter(store),
        free_tier_name=app.config["FREE_TIER_NAME"],
    )
    app.extensions["billing"] = BillingServices(store, gateway, reconciler)

    # --- Register blueprints ---
    from booking_billing.blueprints.webhooks import webhooks_bp
    from booking_billing.blueprints.billing import billing_bp

    app.register_blueprint(webhooks_bp)
    app.register_blueprint(billing_bp)

    # Stripe retries on its own schedule; never rate-limit it
    limiter.exempt(webhooks_bp)

    # --- Error handlers (JSON only, no stack traces) ---
    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "Method not allowed"}), 405

    @app.errorhandler(429)
    def rate_limited(e):
        return jsonify({"error": "Too many requests"}), 429

    @app.errorhandler(500)
    def server_error(e):
        return jsonify({"error": "Internal server error"}), 500

    # --- CLI commands ---
    register_cli(app)

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("seed-tiers")
    @click.option("--premium-price-id", default=None, help="Stripe price ID for the premium tier")
    @click.option("--premium-price", default=9.99, type=float, help="Monthly premium price")
    def seed_tiers(premium_price_id, premium_price):
        """Create the free and premium subscription tiers (SQL store).

        Usage:
            flask seed-tiers
            flask seed-tiers --premium-price-id price_123
        """
        from booking_billing.models import SubscriptionTier

        tiers = [
            {
                "name": app.config["FREE_TIER_NAME"],
                "display_name": "Free",
                "description": "Book any standard room.",
                "price_monthly": 0,
                "stripe_price_id": None,
                "features": {"exclusive_rooms": False, "max_concurrent_bookings": 3},
            },
            {
                "name": "premium",
                "display_name": "Premium",
                "description": "Exclusive rooms and unlimited concurrent bookings.",
                "price_monthly": premium_price,
                "stripe_price_id": premium_price_id,
                "features": {"exclusive_rooms": True},
            },
        ]

        for data in tiers:
            tier = SubscriptionTier.query.filter_by(name=data["name"]).first()
            if tier:
                if data["stripe_price_id"]:
                    tier.stripe_price_id = data["stripe_price_id"]
                click.echo(f"Tier already exists: {tier.name}")
                continue
            tier = SubscriptionTier(**data)
            db.session.add(tier)
            click.echo(f"Created tier: {data['name']}")

        db.session.commit()

    @app.cli.command("verify-tier-prices")
    def verify_tier_prices():
        """Verify each tier's Stripe price exists and matches the key's mode.

        Run with prod env vars to confirm Live prices; run with test vars for Test mode.
        """
        import stripe as _stripe

        from booking_billing.models import SubscriptionTier

        gateway = app.extensions["billing"].gateway
        key_mode = "Live" if gateway.live_mode else "Test"
        click.echo(f"Stripe key mode: {key_mode}")
        click.echo("")

        for tier in SubscriptionTier.query.order_by(SubscriptionTier.price_monthly).all():
            if not tier.stripe_price_id:
                click.echo(f"  {tier.name}: (no Stripe price)")
                continue
            try:
                price = gateway.retrieve_price(tier.stripe_price_id)
            except _stripe.InvalidRequestError as e:
                click.echo(f"  {tier.name}: {tier.stripe_price_id}")
                click.echo(f"    ERROR: {e}")
                continue

            livemode = getattr(price, "livemode", "?")
            click.echo(f"  {tier.name}: {tier.stripe_price_id}")
            click.echo(f"    exists=True, livemode={livemode}, active={getattr(price, 'active', '?')}")
            if livemode is True and key_mode != "Live":
                click.echo("    WARNING: This price is Live but your key is Test.")
            elif livemode is False and key_mode == "Live":
                click.echo("    WARNING: This price is Test but your key is Live.")
