import os


def _env_bool(name: str, default: str = "false") -> bool:
    return (os.getenv(name, default) or default).lower() == "true"


class BaseConfig:
    APP_NAME = os.getenv("APP_NAME", "TrafficWork App")

    # Secrets (env in prod; dev/test may use defaults)
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-not-secure")
    WTF_CSRF_SECRET_KEY = SECRET_KEY
    WTF_CSRF_TIME_LIMIT = None

    # Database (env in prod; dev/test may use default)
    try:
        from dotenv import dotenv_values
        _ENV_FALLBACK = dotenv_values(".env")
    except Exception:
        _ENV_FALLBACK = {}
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL") or _ENV_FALLBACK.get("DATABASE_URL") or "sqlite:///trafficwork.db"
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Logging / misc
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Cookies: secure-by-default
    SESSION_COOKIE_HTTPONLY = True
    REMEMBER_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"

    # Flask-Limiter default: off globally; prefer per-route limits
    RATELIMIT_DEFAULT = None

    # Used for Checkout success/cancel and portal return URLs
    APP_BASE_URL = os.getenv("APP_BASE_URL", "http://localhost:5000")

    # Comma-separated list of emails allowed into /admin
    ADMIN_EMAILS = [e.strip().lower() for e in os.getenv("ADMIN_EMAILS", "").split(",") if e.strip()]

    # --- Stripe (Billing) ---
    STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
    STRIPE_PUBLISHABLE_KEY = os.getenv("STRIPE_PUBLISHABLE_KEY")
    STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
    # Seconds a signed webhook stays valid after its signing timestamp
    STRIPE_WEBHOOK_TOLERANCE = int(os.getenv("STRIPE_WEBHOOK_TOLERANCE", "300"))

    # Price IDs (per environment via env vars)
    STRIPE_PRICE_MONTHLY = os.getenv("STRIPE_PRICE_MONTHLY")
    STRIPE_PRICE_ANNUAL = os.getenv("STRIPE_PRICE_ANNUAL")

    # --- Keitaro (conversion postbacks) ---
    KEITARO_TRACKER_URL = os.getenv("KEITARO_TRACKER_URL", "")
    KEITARO_POSTBACK_KEY = os.getenv("KEITARO_POSTBACK_KEY", "")
    KEITARO_TIMEOUT = float(os.getenv("KEITARO_TIMEOUT", "5"))
    KEITARO_STATUS_REGISTRATION = os.getenv("KEITARO_STATUS_REGISTRATION", "reg")
    KEITARO_STATUS_PURCHASE = os.getenv("KEITARO_STATUS_PURCHASE", "sale")

    # Retry sweeper bounds
    RETRY_WINDOW_HOURS = int(os.getenv("RETRY_WINDOW_HOURS", "24"))
    RETRY_BATCH_SIZE = int(os.getenv("RETRY_BATCH_SIZE", "100"))

    # Click-id cookie lifetime
    CLICK_ID_COOKIE_NAME = "keitaro_subid"
    CLICK_ID_COOKIE_MAX_AGE = 30 * 24 * 60 * 60


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "DEBUG")
    SESSION_COOKIE_SECURE = False
    REMEMBER_COOKIE_SECURE = False


class ProductionConfig(BaseConfig):
    DEBUG = False
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "WARNING")
    SESSION_COOKIE_SECURE = True
    REMEMBER_COOKIE_SECURE = True
    SESSION_COOKIE_SAMESITE = os.environ.get("SESSION_COOKIE_SAMESITE", "Lax")


class TestingConfig(BaseConfig):
    TESTING = True
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = os.environ.get("TEST_DATABASE_URL", "sqlite:///:memory:")
    SESSION_COOKIE_SECURE = False
    REMEMBER_COOKIE_SECURE = False
    WTF_CSRF_ENABLED = False
    RATELIMIT_ENABLED = _env_bool("TEST_RATELIMIT_ENABLED")


_ENV_MAP = {
    "development": DevelopmentConfig,
    "staging": ProductionConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
}


def get_config():
    env = os.environ.get("APP_ENV", "development").lower()
    return _ENV_MAP.get(env, DevelopmentConfig)
