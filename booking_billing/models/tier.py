"""Subscription tier model.

One row per sellable plan. The tier named ``free`` (FREE_TIER_NAME) is the
one users fall back to when their paid subscription is deleted in Stripe.
"""

from booking_billing.extensions import db
from booking_billing.models.base import RowMixin, new_id


class SubscriptionTier(RowMixin, db.Model):
    __tablename__ = "subscription_tiers"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(50), unique=True, nullable=False)  # free | premium
    display_name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    price_monthly = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    stripe_price_id = db.Column(db.String(255), nullable=True)
    features = db.Column(db.JSON, default=dict)  # exclusive_rooms, max_concurrent_bookings
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    subscriptions = db.relationship("UserSubscription", back_populates="tier")

    def __repr__(self):
        return f"<SubscriptionTier {self.name}>"
