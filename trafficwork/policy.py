from functools import wraps
from flask import current_app, jsonify
from flask_login import current_user


def is_admin(user) -> bool:
    if not getattr(user, "is_authenticated", False):
        return False
    admins = current_app.config.get("ADMIN_EMAILS") or []
    return (getattr(user, "email", "") or "").lower() in admins


def admin_required(fn):
    @wraps(fn)
    def _wrap(*args, **kwargs):
        if not current_user.is_authenticated:
            return _deny(401)
        if not is_admin(current_user):
            return _deny(403)
        return fn(*args, **kwargs)
    return _wrap


def _deny(code: int):
    return jsonify({"error": {401: "unauthorized", 403: "forbidden"}[code], "code": code}), code
