"""Audit log writer — subscription_events rows for support and debugging.

Best-effort: the subscription row is the record of truth, so a failed audit
write is logged and swallowed, never rolled back into the transition that
caused it. Rows are upserted on stripe_event_id so a redelivered event
rewrites its own row instead of adding a duplicate.
"""

import logging

from booking_billing.errors import StoreError
from booking_billing.store import EVENTS

logger = logging.getLogger(__name__)


class AuditLogWriter:

    def __init__(self, store):
        self.store = store

    def record(self, event_type, user_id, stripe_event_id,
               subscription_id=None, metadata=None):
        """Append one audit row. Returns the stored row, or None on failure."""
        row = {
            "user_id": user_id,
            "subscription_id": subscription_id,
            "event_type": event_type,
            "stripe_event_id": stripe_event_id,
            "metadata": metadata or {},
        }
        try:
            return self.store.upsert(EVENTS, row, on_conflict="stripe_event_id")
        except StoreError as e:
            logger.error(
                f"Failed to write {event_type} audit row for {stripe_event_id}: {e}"
            )
            return None
