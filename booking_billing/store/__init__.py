"""Store interface — the four operations the billing core needs.

The reconciler, portal and checkout services depend on SubscriptionStore
only, never on a concrete client, so the backend can be swapped:

    supabase  -> SupabaseStore (PostgREST over HTTP, production)
    sql       -> SqlStore (Flask-SQLAlchemy models, self-hosting and tests)

Rows go in and come out as plain dicts keyed by column name. Match values
that are lists or tuples mean "column IN (...)". order_by is a column name,
prefixed with "-" for descending.
"""

from abc import ABC, abstractmethod

from booking_billing.errors import StoreError

SUBSCRIPTIONS = "user_subscriptions"
TIERS = "subscription_tiers"
EVENTS = "subscription_events"


class SubscriptionStore(ABC):
    """Abstract store. Every I/O failure must surface as StoreError."""

    @abstractmethod
    def upsert(self, table, row, on_conflict):
        """Insert ``row`` or update the row sharing its ``on_conflict`` value."""
        ...

    @abstractmethod
    def update(self, table, match, patch):
        """Apply ``patch`` to every row matching ``match``. Returns updated rows."""
        ...

    @abstractmethod
    def select_one(self, table, match, order_by=None):
        """Return the first row matching ``match``, or None."""
        ...

    @abstractmethod
    def insert(self, table, row):
        ...


def parse_order_by(order_by):
    """Split "-created_at" into ("created_at", True)."""
    if order_by.startswith("-"):
        return order_by[1:], True
    return order_by, False


def build_store(app_config):
    """Construct the store selected by STORE_BACKEND."""
    backend = app_config.get("STORE_BACKEND", "supabase")

    if backend == "sql":
        from booking_billing.store.sql import SqlStore
        return SqlStore()

    if backend == "supabase":
        from booking_billing.store.supabase import SupabaseStore
        return SupabaseStore(
            url=app_config["SUPABASE_URL"],
            service_key=app_config["SUPABASE_SERVICE_KEY"],
            timeout=app_config.get("SUPABASE_TIMEOUT", 10),
        )

    raise RuntimeError(f"Unknown STORE_BACKEND: {backend}")


__all__ = [
    "EVENTS",
    "SUBSCRIPTIONS",
    "TIERS",
    "StoreError",
    "SubscriptionStore",
    "build_store",
    "parse_order_by",
]
