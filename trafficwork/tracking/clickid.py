"""Capture the tracker's click id from incoming requests and keep it in a cookie."""
from flask import current_app, g, request

from trafficwork.utils.validators import clean_click_id

CLICK_ID_PARAMS = ("subid", "sub_id", "clickid", "click_id", "_subid")


def extract_click_id(req) -> str | None:
    for name in CLICK_ID_PARAMS:
        value = clean_click_id(req.args.get(name))
        if value:
            return value
    cookie_name = current_app.config.get("CLICK_ID_COOKIE_NAME", "keitaro_subid")
    return clean_click_id(req.cookies.get(cookie_name))


def init_click_id_capture(app):
    @app.before_request
    def _capture_click_id():
        g.click_id = extract_click_id(request)

    @app.after_request
    def _persist_click_id(response):
        click_id = getattr(g, "click_id", None)
        cookie_name = app.config.get("CLICK_ID_COOKIE_NAME", "keitaro_subid")
        if click_id and request.cookies.get(cookie_name) != click_id:
            response.set_cookie(
                cookie_name,
                click_id,
                max_age=app.config.get("CLICK_ID_COOKIE_MAX_AGE", 30 * 24 * 60 * 60),
                httponly=True,
                secure=bool(app.config.get("SESSION_COOKIE_SECURE", False)),
                samesite="Lax",
            )
        return response
