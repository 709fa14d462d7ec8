"""Billing blueprint — Stripe Customer Portal and Checkout for app users.

Routes:
- POST /create-portal-session    — {return_url?} -> {url}
- POST /create-checkout-session  — {tier_id, success_url?, cancel_url?}
                                   -> {sessionId, url, tier}
- GET  /subscription/success     — default Checkout success page
- GET  /subscription/cancel      — default Checkout cancel page

The POST routes require ``Authorization: Bearer <supabase access token>``;
Flask-Login's request loader resolves it (see extensions.load_user_from_request).
"""

import logging
from urllib.parse import urlparse

import stripe
from flask import Blueprint, current_app, jsonify, render_template, request, url_for
from flask_login import current_user, login_required

from booking_billing.errors import CheckoutError, PortalError
from booking_billing.extensions import limiter
from booking_billing.services.checkout_service import create_checkout_session
from booking_billing.services.portal_service import create_portal_session

logger = logging.getLogger(__name__)

billing_bp = Blueprint("billing", __name__)


def _rate_limit():
    return current_app.config.get("BILLING_RATE_LIMIT", "30 per minute")


def _is_url(value):
    if not isinstance(value, str):
        return False
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _optional_url(body, key):
    """Return body[key] if it is a URL (or absent). Raises ValueError otherwise."""
    value = body.get(key)
    if value is None:
        return None
    if not _is_url(value):
        raise ValueError(f"Invalid {key.replace('_', ' ')}")
    return value


# ──────────────────────────────────────────────
# POST /create-portal-session
# ──────────────────────────────────────────────

@billing_bp.route("/create-portal-session", methods=["POST"])
@limiter.limit(_rate_limit)
@login_required
def portal():
    """Create a Stripe Customer Portal session for the current user."""
    body = request.get_json(silent=True) or {}
    try:
        return_url = _optional_url(body, "return_url")
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    return_url = return_url or f"{current_app.config['APP_BASE_URL']}/subscription"
    services = current_app.extensions["billing"]

    try:
        url = create_portal_session(
            services.store, services.gateway, current_user.id, return_url
        )
    except PortalError as e:
        logger.info(f"Portal session refused for user {current_user.id}: {e}")
        return jsonify({"error": str(e)}), e.status_code
    except Exception as e:
        logger.error(f"Portal session error for user {current_user.id}: {e}", exc_info=True)
        return jsonify({"error": str(e)}), 500

    return jsonify({"url": url}), 200


# ──────────────────────────────────────────────
# POST /create-checkout-session
# ──────────────────────────────────────────────

@billing_bp.route("/create-checkout-session", methods=["POST"])
@limiter.limit(_rate_limit)
@login_required
def checkout():
    """Create a Stripe Checkout Session for a paid tier."""
    body = request.get_json(silent=True) or {}

    tier_id = body.get("tier_id")
    if not tier_id:
        return jsonify({"error": "tier_id is required"}), 400

    try:
        success_url = _optional_url(body, "success_url")
        cancel_url = _optional_url(body, "cancel_url")
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    services = current_app.extensions["billing"]

    try:
        result = create_checkout_session(
            services.store,
            services.gateway,
            current_user,
            tier_id,
            success_url=success_url or url_for("billing.checkout_success", _external=True),
            cancel_url=cancel_url or url_for("billing.checkout_cancel", _external=True),
            free_tier_name=current_app.config.get("FREE_TIER_NAME", "free"),
        )
    except CheckoutError as e:
        return jsonify({"error": str(e)}), e.status_code
    except stripe.StripeError as e:
        logger.error(f"Stripe checkout error for user {current_user.id}: {e}", exc_info=True)
        return jsonify({"error": f"Stripe error: {e.user_message or e}"}), 500
    except Exception as e:
        logger.error(f"Checkout error for user {current_user.id}: {e}", exc_info=True)
        return jsonify({"error": str(e)}), 500

    return jsonify(result), 200


# ──────────────────────────────────────────────
# GET /subscription/success, /subscription/cancel
# ──────────────────────────────────────────────

@billing_bp.route("/subscription/success")
def checkout_success():
    """Stripe Checkout success landing page (default success_url).

    Reached by a browser redirect from Stripe, so there is no bearer token.
    The subscription itself is written by the checkout.session.completed
    webhook, which may land before or after this page loads.
    """
    return render_template("subscription/success.html")


@billing_bp.route("/subscription/cancel")
def checkout_cancel():
    """User cancelled Stripe Checkout (default cancel_url)."""
    return render_template("subscription/cancel.html")
