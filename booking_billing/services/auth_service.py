"""Auth service — resolve a Supabase access token to a user.

Users sign in through Supabase Auth on the web and mobile apps and call the
billing endpoints with ``Authorization: Bearer <access_token>``. We ask
Supabase who the token belongs to (GET /auth/v1/user) and hand Flask-Login
a lightweight AuthenticatedUser. Nothing is stored locally.
"""

import logging

import requests
from flask import current_app
from flask_login import UserMixin

logger = logging.getLogger(__name__)


class AuthenticatedUser(UserMixin):
    """The caller, as reported by Supabase Auth."""

    def __init__(self, id, email=None, full_name=None):
        self.id = id
        self.email = email
        self.full_name = full_name

    @classmethod
    def from_supabase(cls, data):
        meta = data.get("user_metadata") or {}
        return cls(
            id=data["id"],
            email=data.get("email"),
            full_name=meta.get("full_name"),
        )

    def __repr__(self):
        return f"<AuthenticatedUser {self.id}>"


def _bearer_token(auth_header):
    if not auth_header:
        return None
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def resolve_bearer_user(auth_header):
    """Return an AuthenticatedUser for a valid bearer token, else None."""
    token = _bearer_token(auth_header)
    if token is None:
        return None

    base_url = current_app.config["SUPABASE_URL"].rstrip("/")
    headers = {
        "apikey": current_app.config["SUPABASE_SERVICE_KEY"],
        "Authorization": f"Bearer {token}",
    }

    try:
        resp = requests.get(
            f"{base_url}/auth/v1/user",
            headers=headers,
            timeout=current_app.config.get("SUPABASE_TIMEOUT", 10),
        )
    except requests.RequestException as e:
        logger.error(f"Supabase auth lookup failed: {e}")
        return None

    if resp.status_code != 200:
        logger.info(f"Bearer token rejected by Supabase Auth ({resp.status_code})")
        return None

    data = resp.json()
    if not data.get("id"):
        return None
    return AuthenticatedUser.from_supabase(data)
