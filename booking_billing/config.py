import os


def _store_backend():
    return os.environ.get("STORE_BACKEND", "supabase").lower()


class Config:
    """Base configuration. Shared across all environments."""

    # --- Stripe ---
    STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET")
    STRIPE_API_VERSION = os.environ.get("STRIPE_API_VERSION", "2023-10-16")
    # Max age (seconds) of a signed webhook timestamp
    STRIPE_WEBHOOK_TOLERANCE = int(os.environ.get("STRIPE_WEBHOOK_TOLERANCE", 300))

    # --- Supabase (store + auth) ---
    SUPABASE_URL = os.environ.get("SUPABASE_URL")                  # e.g. https://xyz.supabase.co
    SUPABASE_SERVICE_KEY = os.environ.get("SUPABASE_SERVICE_KEY")  # service_role key
    SUPABASE_TIMEOUT = int(os.environ.get("SUPABASE_TIMEOUT", 10))

    # "supabase" talks to PostgREST, "sql" uses the SQLAlchemy models below.
    STORE_BACKEND = _store_backend()

    # Handle DATABASE_URL: some PaaS providers (Railway, Heroku) use
    # "postgres://" which SQLAlchemy 1.4+ doesn't accept.
    _db_url = os.environ.get("DATABASE_URL", "")
    if _db_url.startswith("postgres://"):
        _db_url = _db_url.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = _db_url or "sqlite:///booking_billing.db"

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    # --- Billing ---
    APP_BASE_URL = os.environ.get("APP_BASE_URL", "http://localhost:5000")
    FREE_TIER_NAME = os.environ.get("FREE_TIER_NAME", "free")
    BILLING_RATE_LIMIT = os.environ.get("BILLING_RATE_LIMIT", "30 per minute")

    @staticmethod
    def validate():
        """Fail fast if required env vars are missing."""
        required = [
            "STRIPE_SECRET_KEY",
            "STRIPE_WEBHOOK_SECRET",
            "SUPABASE_URL",
            "SUPABASE_SERVICE_KEY",
        ]
        # The SQL backend needs a real database
        if _store_backend() == "sql":
            required.append("DATABASE_URL")
        missing = [v for v in required if not os.environ.get(v)]
        if missing:
            raise RuntimeError(
                f"Missing required environment variables: {', '.join(missing)}"
            )


class DevConfig(Config):
    """Local development."""

    DEBUG = True


class TestConfig(Config):
    """Testing: in-memory SQLite store, no rate limiting."""

    TESTING = True
    DEBUG = True
    STRIPE_SECRET_KEY = "sk_test_fake"
    STRIPE_WEBHOOK_SECRET = "whsec_test_fake"
    SUPABASE_URL = "https://test-project.supabase.co"
    SUPABASE_SERVICE_KEY = "service_role_test_fake"
    STORE_BACKEND = "sql"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    APP_BASE_URL = "http://localhost:5000"
    FREE_TIER_NAME = "free"
    RATELIMIT_ENABLED = False  # disable rate limiting in tests

    @staticmethod
    def validate():
        """Skip validation in test mode; everything is hardcoded."""
        pass


class ProdConfig(Config):
    """Production."""

    DEBUG = False


config_by_name = {
    "development": DevConfig,
    "production": ProdConfig,
    "testing": TestConfig,
}
