"""Webhooks blueprint — /stripe-webhooks

Receives Stripe webhook events. Raw body is required for signature
verification, so nothing may read request.json before it is verified.
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from booking_billing.errors import MalformedPayload, VerificationError
from booking_billing.services.webhook_verifier import verify_and_parse

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__)


@webhooks_bp.route("/stripe-webhooks", methods=["POST"])
def stripe_webhook():
    """Receive and reconcile a Stripe webhook event.

    1. Get raw body (required for signature verification)
    2. Verify signature with STRIPE_WEBHOOK_SECRET, then parse and decode
    3. Dispatch to the reconciler
    4. Return 200 to acknowledge receipt

    Any handler error becomes a 400 so Stripe retries the delivery.
    """
    payload = request.get_data()
    sig_header = request.headers.get("Stripe-Signature")

    # --- Verify signature, then parse ---
    try:
        event = verify_and_parse(
            payload,
            sig_header,
            current_app.config["STRIPE_WEBHOOK_SECRET"],
            tolerance=current_app.config.get("STRIPE_WEBHOOK_TOLERANCE", 300),
        )
    except VerificationError as e:
        logger.warning(f"Webhook rejected: {e}")
        return jsonify({"error": str(e)}), 400
    except MalformedPayload as e:
        logger.error(f"Webhook payload malformed after valid signature: {e}")
        return jsonify({"error": str(e)}), 500

    # --- Reconcile ---
    reconciler = current_app.extensions["billing"].reconciler
    try:
        reconciler.dispatch(event)
    except Exception as e:
        logger.error(f"Error handling {event.type} ({event.event_id}): {e}", exc_info=True)
        return jsonify({"error": str(e)}), 400

    return jsonify({"received": True, "eventId": event.event_id}), 200
