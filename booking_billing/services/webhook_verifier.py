"""Webhook verifier — authenticate, then parse, then decode.

Order matters: the signature covers the exact bytes Stripe sent, so it is
checked against the raw body before anything touches it. Only a verified
body is parsed, and only a parsed body is decoded into a typed event.
"""

import json
import logging

import stripe

from booking_billing.errors import InvalidSignature, MalformedPayload, MissingSignature
from booking_billing.services.events import decode_event

logger = logging.getLogger(__name__)


def verify_and_parse(raw_body, signature, secret, tolerance=300):
    """Verify a Stripe webhook and return the decoded event.

    Args:
        raw_body:  Request body exactly as received (bytes or str).
        signature: Value of the Stripe-Signature header.
        secret:    Webhook signing secret (whsec_...).
        tolerance: Max age in seconds of the signed timestamp.

    Raises MissingSignature, InvalidSignature or MalformedPayload.
    """
    if not signature:
        raise MissingSignature()

    if isinstance(raw_body, bytes):
        try:
            payload = raw_body.decode("utf-8")
        except UnicodeDecodeError as e:
            raise InvalidSignature("Webhook body is not valid UTF-8") from e
    else:
        payload = raw_body

    try:
        stripe.WebhookSignature.verify_header(payload, signature, secret, tolerance)
    except stripe.SignatureVerificationError as e:
        raise InvalidSignature(f"Invalid signature: {e}") from e

    try:
        data = json.loads(payload)
    except ValueError as e:
        raise MalformedPayload(f"Invalid JSON payload: {e}") from e

    return decode_event(data)
