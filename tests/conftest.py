"""Shared test fixtures for the billing service test suite.

Provides:
- app: Flask app configured for testing (SQL store on in-memory SQLite)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- tiers: free + premium subscription tiers
- post_event: POST a Stripe event to /stripe-webhooks with a real signature
- stripe_object: wrap a dict the way the Stripe SDK returns objects
- auth_user: make a bearer token resolve to a Supabase user
"""

import hashlib
import hmac
import json
import time
from unittest.mock import MagicMock, patch

import pytest

from booking_billing import create_app
from booking_billing.extensions import db as _db
from booking_billing.models import SubscriptionEvent, SubscriptionTier, UserSubscription

WEBHOOK_SECRET = "whsec_test_fake"
USER_ID = "6f1c2a8e-0b7d-4c61-9a53-1d2e3f405060"


def sign_payload(payload, secret=WEBHOOK_SECRET, timestamp=None):
    """Build a Stripe-Signature header the way Stripe does (v1 scheme)."""
    ts = int(time.time()) if timestamp is None else timestamp
    signed = f"{ts}.{payload}".encode("utf-8")
    sig = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={sig}"


def make_event(event_type, obj, event_id="evt_test_001"):
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    }


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def store(app):
    return app.extensions["billing"].store


@pytest.fixture
def tiers(db_session):
    """Seed free + premium tiers. Returns their ids by name."""
    free = SubscriptionTier(
        name="free",
        display_name="Free",
        price_monthly=0,
        features={"exclusive_rooms": False, "max_concurrent_bookings": 3},
    )
    premium = SubscriptionTier(
        name="premium",
        display_name="Premium",
        price_monthly=9.99,
        stripe_price_id="price_premium_test",
        features={"exclusive_rooms": True},
    )
    db_session.add_all([free, premium])
    db_session.commit()
    return {"free": free.id, "premium": premium.id}


@pytest.fixture
def active_subscription(db_session, tiers):
    """An active premium subscription for USER_ID."""
    sub = UserSubscription(
        user_id=USER_ID,
        tier_id=tiers["premium"],
        stripe_subscription_id="sub_existing",
        stripe_customer_id="cus_existing",
        status="active",
        cancel_at_period_end=False,
    )
    db_session.add(sub)
    db_session.commit()
    return sub.id


@pytest.fixture
def post_event(client):
    """POST a signed event. Returns the response."""

    def _post(event, secret=WEBHOOK_SECRET, raw=None):
        payload = raw if raw is not None else json.dumps(event)
        return client.post(
            "/stripe-webhooks",
            data=payload,
            content_type="application/json",
            headers={"Stripe-Signature": sign_payload(payload, secret)},
        )

    return _post


@pytest.fixture
def stripe_object():
    def _wrap(data):
        obj = MagicMock()
        obj.to_dict.return_value = data
        return obj

    return _wrap


@pytest.fixture
def auth_user():
    """Patch Supabase Auth so any bearer token resolves to USER_ID."""
    resp = MagicMock()
    resp.status_code = 200
    resp.json.return_value = {
        "id": USER_ID,
        "email": "guest@example.com",
        "user_metadata": {"full_name": "Guest User"},
    }
    with patch("booking_billing.services.auth_service.requests.get", return_value=resp) as mock_get:
        yield mock_get


def count_rows(model, **filters):
    return model.query.filter_by(**filters).count()


def all_events():
    return SubscriptionEvent.query.all()
