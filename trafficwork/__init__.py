import os
from flask import Flask, request, jsonify
from sqlalchemy import text

# Load .env only for local/dev. In prod, env vars come from the platform.
if os.getenv("APP_ENV", "development") != "production":
    from dotenv import load_dotenv
    load_dotenv(".env", override=False)


from .config import get_config
from .extensions import db, migrate, csrf, login_manager, limiter
from .errors import InvalidSignature, MalformedEvent, HandlerFailure
from .security import init_security
from .observability import init_logging, init_sentry


def create_app(config_overrides=None, *, stripe_client=None, http=None):
    app = Flask(__name__)

    # ---- Rate Limiting storage configuration ----
    app_env = (os.getenv("APP_ENV", "development") or "development").lower()
    use_redis = app_env in ("staging", "production")
    storage_uri = os.environ.get("REDIS_URL") if use_redis else "memory://"
    if use_redis and not storage_uri:
        # Hard fail in stage/prod so we never silently run without RL storage
        raise RuntimeError("REDIS_URL is required in staging/production for rate limiting")

    app.config["RATELIMIT_STORAGE_URI"] = storage_uri
    app.config.setdefault("RATELIMIT_HEADERS_ENABLED", True)

    # Config: clean, explicit, class-based
    app.config.from_object(get_config())
    if config_overrides:
        app.config.update(config_overrides)

    # --- Required env validation for prod-like envs (staging/production) ---
    def _require(name: str):
        val = os.getenv(name) or app.config.get(name)
        if not val:
            raise RuntimeError(f"Missing required environment variable: {name}")
        return val

    if app_env in ("staging", "production"):
        # Enforce hard requirements at startup (not at import time)
        _require("SECRET_KEY")
        _require("DATABASE_URL")
        _require("STRIPE_SECRET_KEY")
        _require("STRIPE_WEBHOOK_SECRET")
        _require("KEITARO_TRACKER_URL")
        _require("KEITARO_POSTBACK_KEY")
        if app.config.get("SECRET_KEY") == "dev-not-secure":
            raise RuntimeError("SECRET_KEY must be set in staging/production")

    # --- Observability & Security ---
    init_logging(app)
    init_sentry(app)
    if app_env in ("staging", "production"):
        init_security(app)

    # Init extensions
    db.init_app(app)
    migrate.init_app(app, db, directory=os.path.join(os.path.dirname(app.root_path), "migrations"))
    csrf.init_app(app)
    login_manager.init_app(app)
    limiter.init_app(app)

    # Models must be imported before the user loader is needed
    from . import models  # noqa: F401

    # Domain services (explicitly constructed; see services.py)
    from .services import init_services
    init_services(app, stripe_client=stripe_client, http=http)

    from .tracking.clickid import init_click_id_capture
    init_click_id_capture(app)

    # Blueprints (explicit, consistent prefixes)
    from .blueprints.webhooks import bp as webhooks_bp
    from .blueprints.auth import bp as auth_bp
    from .blueprints.billing import bp as billing_bp
    from .blueprints.admin import bp as admin_bp

    app.register_blueprint(webhooks_bp, url_prefix="/webhooks")
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(billing_bp, url_prefix="/billing")
    app.register_blueprint(admin_bp, url_prefix="/admin")

    @app.get("/healthz")
    @limiter.exempt
    def healthz():
        try:
            db.session.execute(text("SELECT 1"))
            database = "connected"
        except Exception:
            app.logger.exception("healthz database check failed")
            database = "disconnected"
        return {"status": "ok", "database": database}, 200

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({"error": "unauthorized", "code": 401}), 401

    # Error handlers (JSON only; this app has no HTML surface)
    @app.errorhandler(InvalidSignature)
    def handle_invalid_signature(e):
        return jsonify({"error": "invalid_signature"}), 400

    @app.errorhandler(MalformedEvent)
    def handle_malformed_event(e):
        return jsonify({"error": "malformed_event"}), 400

    @app.errorhandler(HandlerFailure)
    def handle_handler_failure(e):
        # 5xx makes Stripe redeliver; the event row already carries the error
        return jsonify({"error": "handler_failure", "event_id": e.event_id}), 500

    @app.errorhandler(400)
    def bad_request(e):
        return jsonify({"error": "bad_request", "message": getattr(e, "description", None)}), 400

    @app.errorhandler(403)
    def forbidden(e):
        return jsonify({"error": "forbidden", "code": 403}), 403

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "not_found", "message": getattr(e, "description", None)}), 404

    @app.errorhandler(500)
    def server_error(e):
        return jsonify({"error": "internal_error"}), 500

    # CSRF error handler (clean 400 instead of generic 500)
    from flask_wtf.csrf import CSRFError

    @app.errorhandler(CSRFError)
    def handle_csrf_error(e):
        return jsonify({"error": "csrf_failed", "message": e.description}), 400

    # 429 Too Many Requests with Retry-After
    @app.errorhandler(429)
    def too_many_requests(e):
        retry_after = getattr(e, "retry_after", None)
        headers = {}
        payload = {"error": "rate_limited", "code": 429, "path": request.path}
        if retry_after is not None:
            headers["Retry-After"] = str(int(retry_after))
            payload["retry_after"] = int(retry_after)
        return (payload, 429, headers)

    # CLI commands (ops-grade utilities)
    from .cli import register_cli
    register_cli(app)

    return app
