"""Tests for the /stripe-webhooks endpoint.

Covers:
- Signature verification (missing, wrong secret, stale timestamp)
- Malformed payloads after a valid signature
- Replaying checkout.session.completed (one row per subscription)
- Out-of-order delivery (deleted before created)
- Cancellation falls back to the free tier
- invoice.payment_failed -> past_due
- Unknown event types (acknowledged, no writes)
- Handler faults -> 400 so Stripe retries
- Audit failures never undo the transition
"""

import json
import time
from datetime import datetime
from unittest.mock import patch

import stripe

from booking_billing.errors import StoreError
from booking_billing.models import SubscriptionEvent, UserSubscription

from conftest import USER_ID, make_event, sign_payload

RETRIEVE = "booking_billing.services.stripe_gateway.stripe.Subscription.retrieve"


def _checkout_event(tier_id, event_id="evt_checkout_001"):
    return make_event(
        "checkout.session.completed",
        {
            "id": "cs_test_001",
            "object": "checkout.session",
            "mode": "subscription",
            "subscription": "sub_new",
            "customer": "cus_new",
            "amount_total": 999,
            "currency": "usd",
            "metadata": {"user_id": USER_ID, "tier_id": tier_id},
        },
        event_id=event_id,
    )


def _stripe_subscription(status="active"):
    return {
        "id": "sub_new",
        "object": "subscription",
        "customer": "cus_new",
        "status": status,
        "cancel_at_period_end": False,
        "items": {
            "data": [
                {
                    "current_period_start": 1767225600,  # 2026-01-01
                    "current_period_end": 1769904000,    # 2026-02-01
                }
            ]
        },
    }


class TestWebhookSignature:
    """Tests for webhook signature validation."""

    def test_missing_signature_returns_400(self, client):
        """POST /stripe-webhooks without signature -> 400."""
        resp = client.post(
            "/stripe-webhooks",
            data="{}",
            content_type="application/json",
        )
        assert resp.status_code == 400
        assert resp.get_json() == {"error": "Missing stripe-signature header"}

    def test_wrong_secret_returns_400_and_writes_nothing(self, post_event, tiers, stripe_object):
        """Correct body signed with the wrong secret -> 400, no store writes."""
        with patch(RETRIEVE, return_value=stripe_object(_stripe_subscription())) as mock_retrieve:
            resp = post_event(_checkout_event(tiers["premium"]), secret="whsec_wrong")

        assert resp.status_code == 400
        assert "Invalid signature" in resp.get_json()["error"]
        mock_retrieve.assert_not_called()
        assert UserSubscription.query.count() == 0
        assert SubscriptionEvent.query.count() == 0

    def test_stale_timestamp_returns_400(self, client):
        payload = json.dumps(make_event("customer.updated", {"id": "cus_1"}))
        old = int(time.time()) - 3600
        resp = client.post(
            "/stripe-webhooks",
            data=payload,
            content_type="application/json",
            headers={"Stripe-Signature": sign_payload(payload, timestamp=old)},
        )
        assert resp.status_code == 400

    def test_tampered_body_returns_400(self, client):
        payload = json.dumps(make_event("customer.updated", {"id": "cus_1"}))
        header = sign_payload(payload)
        resp = client.post(
            "/stripe-webhooks",
            data=payload.replace("cus_1", "cus_2"),
            content_type="application/json",
            headers={"Stripe-Signature": header},
        )
        assert resp.status_code == 400


class TestMalformedPayload:
    """Valid signature, unusable body -> 500."""

    def test_invalid_json_returns_500(self, post_event):
        resp = post_event(None, raw="{not json")
        assert resp.status_code == 500
        assert "Invalid JSON" in resp.get_json()["error"]

    def test_missing_data_object_returns_500(self, post_event):
        resp = post_event({"id": "evt_1", "type": "invoice.payment_failed", "data": {}})
        assert resp.status_code == 500


class TestCheckoutCompleted:
    """Tests for checkout.session.completed."""

    def test_creates_subscription(self, post_event, tiers, stripe_object):
        """checkout.session.completed -> user_subscriptions row + audit row."""
        with patch(RETRIEVE, return_value=stripe_object(_stripe_subscription())) as mock_retrieve:
            resp = post_event(_checkout_event(tiers["premium"]))

        assert resp.status_code == 200
        assert resp.get_json() == {"received": True, "eventId": "evt_checkout_001"}
        assert mock_retrieve.call_args[0][0] == "sub_new"

        sub = UserSubscription.query.filter_by(stripe_subscription_id="sub_new").first()
        assert sub is not None
        assert sub.user_id == USER_ID
        assert sub.tier_id == tiers["premium"]
        assert sub.stripe_customer_id == "cus_new"
        assert sub.status == "active"
        assert sub.current_period_end.replace(tzinfo=None) == datetime(2026, 2, 1)

        audit = SubscriptionEvent.query.filter_by(stripe_event_id="evt_checkout_001").one()
        assert audit.event_type == "subscription_created"
        assert audit.subscription_id == sub.id
        assert audit.metadata_["amount"] == 999

    def test_replayed_event_keeps_one_row(self, post_event, tiers, stripe_object):
        """Same event delivered twice -> exactly one subscription row."""
        event = _checkout_event(tiers["premium"])
        with patch(RETRIEVE, return_value=stripe_object(_stripe_subscription())):
            first = post_event(event)
            second = post_event(event)

        assert first.status_code == 200
        assert second.status_code == 200
        assert UserSubscription.query.filter_by(stripe_subscription_id="sub_new").count() == 1
        assert SubscriptionEvent.query.filter_by(stripe_event_id="evt_checkout_001").count() == 1

    def test_trialing_logs_trial_started(self, post_event, tiers, stripe_object):
        with patch(RETRIEVE, return_value=stripe_object(_stripe_subscription("trialing"))):
            resp = post_event(_checkout_event(tiers["premium"]))

        assert resp.status_code == 200
        sub = UserSubscription.query.filter_by(stripe_subscription_id="sub_new").one()
        assert sub.status == "trialing"
        assert SubscriptionEvent.query.one().event_type == "trial_started"

    def test_stripe_failure_returns_400(self, post_event, tiers):
        """Provider fault during a handler -> 400 so Stripe retries."""
        with patch(RETRIEVE, side_effect=stripe.APIConnectionError("network down")):
            resp = post_event(_checkout_event(tiers["premium"]))

        assert resp.status_code == 400
        assert "network down" in resp.get_json()["error"]
        assert UserSubscription.query.count() == 0


class TestOutOfOrder:
    """Events for subscriptions we have never seen are acknowledged."""

    def test_deleted_before_created_is_noop(self, post_event, tiers):
        resp = post_event(make_event(
            "customer.subscription.deleted",
            {"id": "sub_unknown", "object": "subscription", "status": "canceled"},
            event_id="evt_deleted_early",
        ))

        assert resp.status_code == 200
        assert resp.get_json()["eventId"] == "evt_deleted_early"
        assert UserSubscription.query.count() == 0
        assert SubscriptionEvent.query.count() == 0

    def test_updated_before_checkout_is_noop(self, post_event):
        resp = post_event(make_event(
            "customer.subscription.created",
            {"id": "sub_unknown", "object": "subscription", "status": "active"},
        ))
        assert resp.status_code == 200
        assert SubscriptionEvent.query.count() == 0


class TestMissingSubscriptionId:
    """Subscription events without an id never touch free-tier rows."""

    def _seed_free_rows(self, db_session, tiers):
        for user_id in ("u1", "u2", "u3"):
            db_session.add(UserSubscription(
                user_id=user_id, tier_id=tiers["free"], status="active",
            ))
        db_session.commit()

    def test_deleted_without_id_returns_500(self, post_event, db_session, tiers):
        self._seed_free_rows(db_session, tiers)

        resp = post_event(make_event(
            "customer.subscription.deleted",
            {"object": "subscription", "status": "canceled"},
        ))

        assert resp.status_code == 500
        rows = UserSubscription.query.order_by(UserSubscription.user_id).all()
        assert [(r.user_id, r.status) for r in rows] == [
            ("u1", "active"), ("u2", "active"), ("u3", "active"),
        ]
        assert SubscriptionEvent.query.count() == 0

    def test_updated_without_id_returns_500(self, post_event, db_session, tiers):
        self._seed_free_rows(db_session, tiers)

        resp = post_event(make_event(
            "customer.subscription.updated",
            {"object": "subscription", "status": "past_due"},
        ))

        assert resp.status_code == 500
        assert UserSubscription.query.filter_by(status="active").count() == 3


class TestSubscriptionDeleted:
    """Tests for customer.subscription.deleted."""

    def test_cancels_and_reactivates_on_free_tier(self, post_event, tiers, active_subscription):
        resp = post_event(make_event(
            "customer.subscription.deleted",
            {"id": "sub_existing", "object": "subscription", "status": "canceled"},
            event_id="evt_delete_001",
        ))
        assert resp.status_code == 200

        original = UserSubscription.query.filter_by(stripe_subscription_id="sub_existing").one()
        assert original.status == "cancelled"
        assert original.cancelled_at is not None

        active = UserSubscription.query.filter_by(user_id=USER_ID, status="active").all()
        assert len(active) == 1
        assert active[0].tier_id == tiers["free"]
        assert active[0].stripe_subscription_id is None

        audit = SubscriptionEvent.query.filter_by(stripe_event_id="evt_delete_001").one()
        assert audit.event_type == "subscription_cancelled"
        assert audit.subscription_id == active_subscription


class TestPaymentFailed:
    """Tests for invoice.payment_failed."""

    def _event(self):
        return make_event(
            "invoice.payment_failed",
            {
                "id": "in_fail_001",
                "object": "invoice",
                "customer": "cus_existing",
                "subscription": "sub_existing",
                "amount_due": 999,
                "currency": "usd",
                "attempt_count": 2,
            },
            event_id="evt_fail_001",
        )

    def test_sets_past_due(self, post_event, active_subscription):
        resp = post_event(self._event())
        assert resp.status_code == 200

        sub = UserSubscription.query.filter_by(stripe_subscription_id="sub_existing").one()
        assert sub.status == "past_due"

        events = SubscriptionEvent.query.filter_by(event_type="payment_failed").all()
        assert len(events) == 1
        assert events[0].metadata_["attempt_count"] == 2
        assert events[0].metadata_["amount_due"] == 999

    def test_store_failure_returns_400(self, app, post_event, active_subscription):
        """A failed write surfaces as 400 with the error text."""
        store = app.extensions["billing"].store
        with patch.object(store, "update", side_effect=StoreError("update on user_subscriptions failed")):
            resp = post_event(self._event())

        assert resp.status_code == 400
        assert resp.get_json() == {"error": "update on user_subscriptions failed"}
        assert SubscriptionEvent.query.count() == 0

    def test_audit_failure_keeps_transition(self, app, post_event, active_subscription):
        """Audit writes are best-effort: status still changes, response is 200."""
        store = app.extensions["billing"].store
        with patch.object(store, "upsert", side_effect=StoreError("audit insert failed")):
            resp = post_event(self._event())

        assert resp.status_code == 200
        sub = UserSubscription.query.filter_by(stripe_subscription_id="sub_existing").one()
        assert sub.status == "past_due"


class TestUnknownEvent:
    """Tests for unhandled event types."""

    def test_unknown_event_acknowledged_without_writes(self, app, post_event):
        store = app.extensions["billing"].store
        with patch.object(store, "upsert") as mock_upsert, \
                patch.object(store, "update") as mock_update, \
                patch.object(store, "insert") as mock_insert:
            resp = post_event(make_event(
                "customer.updated",
                {"id": "cus_123", "object": "customer"},
                event_id="evt_unknown_001",
            ))

        assert resp.status_code == 200
        assert resp.get_json() == {"received": True, "eventId": "evt_unknown_001"}
        mock_upsert.assert_not_called()
        mock_update.assert_not_called()
        mock_insert.assert_not_called()
        assert UserSubscription.query.count() == 0
        assert SubscriptionEvent.query.count() == 0
