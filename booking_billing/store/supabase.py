"""Supabase store — SubscriptionStore over the PostgREST API.

Talks to {SUPABASE_URL}/rest/v1/<table> with the service_role key, so row
level security does not apply. Upserts use PostgREST's
``Prefer: resolution=merge-duplicates`` with ``on_conflict=<column>``, which
Postgres resolves atomically against the column's unique constraint.
"""

import json
import logging
from datetime import date, datetime

import requests

from booking_billing.errors import StoreError
from booking_billing.store import SubscriptionStore, parse_order_by

logger = logging.getLogger(__name__)

# Postgres SQLSTATE: no unique or exclusion constraint matches ON CONFLICT.
# subscription_events on an existing Supabase project has no unique key on
# stripe_event_id.
NO_MATCHING_CONSTRAINT = "42P10"


def _json_default(value):
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _filter_value(value):
    """Render a match value as a PostgREST filter expression."""
    if isinstance(value, (list, tuple)):
        return "in.(" + ",".join(str(v) for v in value) + ")"
    if value is None:
        return "is.null"
    if isinstance(value, bool):
        return f"eq.{str(value).lower()}"
    return f"eq.{value}"


class SupabaseStore(SubscriptionStore):

    def __init__(self, url, service_key, timeout=10):
        self.base_url = f"{url.rstrip('/')}/rest/v1"
        self.service_key = service_key
        self.timeout = timeout

    def _headers(self, prefer=None):
        headers = {
            "apikey": self.service_key,
            "Authorization": f"Bearer {self.service_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    def _request(self, method, table, params=None, body=None, prefer=None):
        url = f"{self.base_url}/{table}"
        data = json.dumps(body, default=_json_default) if body is not None else None

        try:
            resp = requests.request(
                method,
                url,
                params=params,
                data=data,
                headers=self._headers(prefer),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise StoreError(f"{method} {table} failed: {e}") from e

        if resp.status_code >= 400:
            try:
                error = resp.json()
            except ValueError:
                error = None
            if not isinstance(error, dict):
                error = {}
            detail = error.get("message") or resp.text
            raise StoreError(
                f"{method} {table} failed ({resp.status_code}): {detail}",
                code=error.get("code"),
            )

        if not resp.content:
            return []
        return resp.json()

    def upsert(self, table, row, on_conflict):
        try:
            rows = self._request(
                "POST",
                table,
                params={"on_conflict": on_conflict},
                body=row,
                prefer="resolution=merge-duplicates,return=representation",
            )
        except StoreError as e:
            if e.code != NO_MATCHING_CONSTRAINT:
                raise
            logger.warning(
                f"No unique constraint on {table}.{on_conflict}, upserting by lookup"
            )
            return self._upsert_by_lookup(table, row, on_conflict)
        return rows[0] if rows else dict(row)

    def _upsert_by_lookup(self, table, row, on_conflict):
        """Select on the conflict column, then update or insert.

        Not atomic: two concurrent writers can both insert.
        """
        key = row.get(on_conflict)
        if key is None:
            return self.insert(table, row)

        existing = self.select_one(table, {on_conflict: key})
        if existing is None:
            return self.insert(table, row)

        rows = self.update(table, {on_conflict: key}, row)
        return rows[0] if rows else {**existing, **row}

    def update(self, table, match, patch):
        params = {column: _filter_value(value) for column, value in match.items()}
        return self._request(
            "PATCH",
            table,
            params=params,
            body=patch,
            prefer="return=representation",
        )

    def select_one(self, table, match, order_by=None):
        params = {"select": "*", "limit": "1"}
        params.update({column: _filter_value(value) for column, value in match.items()})
        if order_by:
            column, descending = parse_order_by(order_by)
            params["order"] = f"{column}.{'desc' if descending else 'asc'}"

        rows = self._request("GET", table, params=params)
        return rows[0] if rows else None

    def insert(self, table, row):
        rows = self._request(
            "POST",
            table,
            body=row,
            prefer="return=representation",
        )
        return rows[0] if rows else dict(row)
