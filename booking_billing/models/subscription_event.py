"""Subscription event model (audit trail).

One row per Stripe event that caused an actual transition. Written
best-effort by AuditLogWriter and never read back by the reconciler.
stripe_event_id is unique so a redelivered event rewrites its own row.
"""

from booking_billing.extensions import db
from booking_billing.models.base import RowMixin, new_id


class SubscriptionEvent(RowMixin, db.Model):
    __tablename__ = "subscription_events"

    EVENT_TYPES = [
        "trial_started",
        "subscription_created",
        "subscription_updated",
        "subscription_cancelled",
        "payment_succeeded",
        "payment_failed",
    ]

    __column_aliases__ = {"metadata": "metadata_"}

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    user_id = db.Column(db.String(36), nullable=True, index=True)
    subscription_id = db.Column(
        db.String(36), db.ForeignKey("user_subscriptions.id"), nullable=True
    )
    event_type = db.Column(db.String(50), nullable=False)
    stripe_event_id = db.Column(
        db.String(255), unique=True, nullable=True
    )  # e.g. "evt_1Abc..."
    metadata_ = db.Column(
        "metadata", db.JSON, default=dict
    )  # snapshot of the Stripe object, named metadata_ to avoid SQLAlchemy clash
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def __repr__(self):
        return f"<SubscriptionEvent {self.event_type} ({self.stripe_event_id})>"
