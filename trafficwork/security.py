from flask_talisman import Talisman


def init_security(app):
    """
    Production/staging security headers. The app serves JSON only, so the CSP
    only has to allow Stripe.js on whatever frontend embeds it.
    """
    csp = {
        "default-src": ["'self'"],
        "script-src":  ["'self'", "https://js.stripe.com"],
        "connect-src": ["'self'", "https://api.stripe.com"],
        "frame-src":   ["'self'", "https://js.stripe.com", "https://hooks.stripe.com"],
        "frame-ancestors": ["'none'"],
        "base-uri":    ["'self'"],
        "form-action": ["'self'"],
    }

    Talisman(
        app,
        content_security_policy=csp,
        force_https=True,
        strict_transport_security=True,
        session_cookie_secure=True,
        frame_options="DENY",
        referrer_policy="strict-origin-when-cross-origin",
    )
