from flask import request, jsonify, current_app, g
from flask_login import login_user, logout_user, current_user, login_required
from flask_wtf.csrf import generate_csrf
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from trafficwork.extensions import db, limiter
from trafficwork.models import User
from trafficwork.utils.helpers import utcnow
from trafficwork.utils.validators import clean_str, is_valid_email, clean_click_id
from trafficwork import services
from . import bp

MIN_PASSWORD_LEN = 6


def _login_email_scope():
    data_json = request.get_json(silent=True) or {}
    email = (data_json.get("email") or "").strip().lower()
    # Keep a stable scope even if email is blank
    return f"login-email:{email or 'missing'}"


def _find_user(email: str) -> User | None:
    return db.session.execute(
        db.select(User).where(func.lower(User.email) == func.lower(email))
    ).scalar_one_or_none()


@bp.post("/register")
@limiter.limit("10 per minute; 100 per hour")
def register():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    name = clean_str(data.get("name"))

    errors = {}
    if not is_valid_email(email):
        errors["email"] = "A valid email is required"
    if len(password) < MIN_PASSWORD_LEN:
        errors["password"] = f"Password must be at least {MIN_PASSWORD_LEN} characters"
    if errors:
        return jsonify({"error": "validation_failed", "errors": errors}), 400

    if _find_user(email):
        return jsonify({"error": "email_taken"}), 409

    # Click id from the body wins over the one captured from query/cookie
    click_id = clean_click_id(data.get("click_id")) or getattr(g, "click_id", None)

    user = User(
        email=email,
        name=name,
        click_id=click_id,
        registration_source=clean_str(data.get("source"), max_len=64) or ("tracker" if click_id else "direct"),
        is_active=True,
        subscription_status="inactive",
    )
    user.set_password(password)
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify({"error": "email_taken"}), 409

    login_user(user)
    current_app.logger.info("user registered id=%s source=%s", user.id, user.registration_source)

    # Postback failures are absorbed by the tracker; the row stays unsent for the sweeper.
    # Anything else going wrong in attribution still must not undo the registration.
    try:
        services.tracker().record_registration(user.id, click_id)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("registration conversion failed user_id=%s", user.id)

    return jsonify(user.to_dict()), 201


@bp.post("/login")
@limiter.limit("10 per minute; 100 per hour")
@limiter.limit("5 per minute; 20 per hour", key_func=_login_email_scope)
def login():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip()
    password = data.get("password") or ""

    if not email or not password:
        return jsonify({"error": "Email and password are required"}), 400

    user = _find_user(email)
    if not user or not user.check_password(password) or not user.is_active:
        return jsonify({"error": "invalid_credentials"}), 401

    user.last_login_at = utcnow()
    db.session.commit()
    login_user(user)
    return jsonify(user.to_dict()), 200


@bp.post("/logout")
@login_required
def logout():
    logout_user()
    return jsonify({"ok": True}), 200


@bp.get("/me")
@login_required
def me():
    return jsonify(current_user.to_dict()), 200


@bp.get("/csrf")
def csrf_token():
    """Token for the X-CSRFToken header on state-changing JSON calls."""
    return jsonify({"csrf_token": generate_csrf()}), 200
