"""User subscription model.

Tracks a user's billing relationship, synced from Stripe webhooks.
user_subscriptions.status is the source of truth for entitlements.

Rows are never deleted: a Stripe-side deletion flips status to "cancelled"
and a fresh free-tier row is inserted for the same user.
"""

from booking_billing.extensions import db
from booking_billing.models.base import RowMixin, new_id


class UserSubscription(RowMixin, db.Model):
    __tablename__ = "user_subscriptions"

    # -- Valid statuses (normalized from Stripe) --
    STATUSES = [
        "active",
        "trialing",
        "past_due",
        "cancelled",
    ]

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    # Users live in Supabase Auth, so no FK here
    user_id = db.Column(db.String(36), nullable=False, index=True)
    tier_id = db.Column(
        db.String(36), db.ForeignKey("subscription_tiers.id"), nullable=False
    )
    stripe_subscription_id = db.Column(
        db.String(255), unique=True, nullable=True
    )  # NULL for free-tier rows
    stripe_customer_id = db.Column(db.String(255), nullable=True)
    status = db.Column(
        db.String(50), nullable=False
    )  # active | trialing | past_due | cancelled
    current_period_start = db.Column(db.DateTime(timezone=True), nullable=True)
    current_period_end = db.Column(db.DateTime(timezone=True), nullable=True)
    cancel_at_period_end = db.Column(db.Boolean, default=False)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    tier = db.relationship("SubscriptionTier", back_populates="subscriptions")

    def __repr__(self):
        return f"<UserSubscription {self.user_id} ({self.status})>"
