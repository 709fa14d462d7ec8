"""
Deferred extension instances.

Created here, bound to the app in create_app() via init_app().
"""

from flask import jsonify, request
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_login import LoginManager
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

db = SQLAlchemy()
migrate = Migrate()
login_manager = LoginManager()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],  # Per-route limits only
    storage_uri="memory://",
)

# Stateless API: identity comes from the bearer token on every request
login_manager.session_protection = None


@login_manager.request_loader
def load_user_from_request(req):
    """Resolve ``Authorization: Bearer <token>`` to a user via Supabase Auth.

    Imports lazily to avoid circular deps.
    """
    from booking_billing.services.auth_service import resolve_bearer_user

    return resolve_bearer_user(req.headers.get("Authorization"))


@login_manager.unauthorized_handler
def unauthorized():
    """JSON 401 instead of a login redirect."""
    if not request.headers.get("Authorization"):
        return jsonify({"error": "Missing authorization header"}), 401
    return jsonify({"error": "Unauthorized"}), 401
