from typing import Dict, Any
from urllib.parse import urljoin
from flask import current_app
from stripe import StripeClient
import hashlib, json

from trafficwork.extensions import db
from trafficwork.models import User


def _client() -> StripeClient:
    client = current_app.extensions.get("stripe_client")
    if client is None:
        raise RuntimeError("STRIPE_SECRET_KEY is not configured")
    return client


def _absolute_url(path: str) -> str:
    base = (current_app.config.get("APP_BASE_URL") or "").rstrip("/") + "/"
    return urljoin(base, path.lstrip("/"))


def make_idempotency_key(*parts: Any) -> str:
    raw = "|".join(str(p) for p in parts)
    return "checkout:" + hashlib.sha256(raw.encode("utf-8")).hexdigest()[:32]


def _params_hash(d: Dict[str, Any]) -> str:
    # Stable across runs if params identical; changes when you change fields
    return hashlib.sha256(json.dumps(d, sort_keys=True, separators=(",", ":")).encode("utf-8")).hexdigest()[:16]


def ensure_customer(user: User) -> str:
    """Return the user's Stripe customer id, creating the customer on first use."""
    if user.stripe_customer_id:
        return user.stripe_customer_id
    client = _client()
    customer = client.customers.create(params={
        "email": user.email,
        "name": user.name or None,
        "metadata": {"user_id": str(user.id)},
    }, options={"idempotency_key": make_idempotency_key("customer", user.id)})
    user.stripe_customer_id = customer.id
    db.session.commit()
    current_app.logger.info("stripe customer created user_id=%s customer=%s", user.id, customer.id)
    return customer.id


def create_checkout_session(*, price_id: str, user: User, success_url: str | None = None, cancel_url: str | None = None) -> Dict[str, Any]:
    """
    Create a Stripe Checkout Session for a subscription to the given Price.
    user_id and click_id ride along in metadata so the webhook can attribute the payment.
    Returns: {"id": <session_id>, "url": <redirect_url or None>}
    """
    client = _client()
    meta = {"user_id": str(user.id), "click_id": user.click_id or ""}
    params: Dict[str, Any] = {
        "mode": "subscription",
        "customer": ensure_customer(user),
        "line_items": [{"price": price_id, "quantity": 1}],
        "success_url": success_url or _absolute_url("subscription/success?session_id={CHECKOUT_SESSION_ID}"),
        "cancel_url": cancel_url or _absolute_url("subscription/cancel"),
        "metadata": meta,
        "subscription_data": {"metadata": meta},
    }
    idem = make_idempotency_key(
        "checkout", "v1",
        user.id, price_id,
        _params_hash(params),
    )
    session = client.checkout.sessions.create(params=params, options={"idempotency_key": idem})
    return {"id": session.id, "url": getattr(session, "url", None)}


def cancel_at_period_end(subscription_id: str) -> Dict[str, Any]:
    """
    Ask Stripe to cancel at period end. Local subscription fields are left alone;
    they change when customer.subscription.updated arrives.
    """
    client = _client()
    sub = client.subscriptions.update(subscription_id, params={"cancel_at_period_end": True})
    return {"id": sub.id, "status": sub.status, "cancel_at_period_end": bool(getattr(sub, "cancel_at_period_end", True))}


def create_portal_session(*, stripe_customer_id: str, return_url: str | None = None) -> Dict[str, Any]:
    """Create a Stripe Customer Portal session for an existing Customer."""
    client = _client()
    params = {
        "customer": stripe_customer_id,
        "return_url": return_url or _absolute_url(""),
    }
    session = client.billing_portal.sessions.create(params)
    return {"url": session.url}
