from flask import request, jsonify, current_app, abort
from flask_login import login_required, current_user
from trafficwork.extensions import limiter
from trafficwork.models import Payment
from trafficwork.billing import checkout as billing_service
from trafficwork.utils.helpers import iso, to_major_units
from . import bp


@bp.post("/checkout")
@limiter.limit("10/minute")
@login_required
def checkout():
    # Block duplicate purchases if already active/trialing
    if current_user.has_active_subscription:
        return jsonify({"error": "subscription_already_active"}), 409

    data = request.get_json(silent=True) or {}
    price_id = (data.get("price_id") or "").strip()
    if not price_id:
        return jsonify({"error": "price_id is required"}), 400

    allowed = {current_app.config.get("STRIPE_PRICE_MONTHLY"), current_app.config.get("STRIPE_PRICE_ANNUAL")} - {None, ""}
    if allowed and price_id not in allowed:
        return jsonify({"error": "unknown_price"}), 400

    try:
        payload = billing_service.create_checkout_session(
            price_id=price_id,
            user=current_user._get_current_object(),
            success_url=data.get("success_url"),
            cancel_url=data.get("cancel_url"),
        )
    except Exception:
        current_app.logger.exception(
            "billing.checkout.session_create_failed",
            extra={"price_id": price_id, "user_id": current_user.id},
        )
        return jsonify({"error": "checkout_unavailable"}), 502

    return jsonify({"sessionId": payload["id"], "url": payload.get("url")}), 200


@bp.get("/status")
@login_required
def status():
    return jsonify({
        "has_subscription": bool(current_user.subscription_id),
        "status": current_user.subscription_status or "inactive",
        "plan": current_user.subscription_plan,
        "end_date": iso(current_user.subscription_end_date),
    }), 200


@bp.post("/cancel")
@limiter.limit("10/minute")
@login_required
def cancel():
    sub_id = current_user.subscription_id
    if not sub_id:
        return jsonify({"error": "no_subscription"}), 404
    try:
        result = billing_service.cancel_at_period_end(sub_id)
    except Exception:
        current_app.logger.exception("billing.cancel_failed", extra={"user_id": current_user.id})
        return jsonify({"error": "cancel_failed"}), 502
    # Status flips when Stripe's customer.subscription.updated/deleted arrives
    return jsonify({"subscription": result}), 202


@bp.post("/portal")
@limiter.limit("10/minute")
@login_required
def portal():
    if not current_user.stripe_customer_id:
        abort(404, description="No billing customer")
    data = request.get_json(silent=True) or {}
    try:
        payload = billing_service.create_portal_session(
            stripe_customer_id=current_user.stripe_customer_id,
            return_url=data.get("return_url"),
        )
    except Exception:
        current_app.logger.exception("billing.portal_failed", extra={"user_id": current_user.id})
        return jsonify({"error": "portal_unavailable"}), 502
    return jsonify(payload), 200


@bp.get("/payments")
@login_required
def payments():
    rows = (
        Payment.query.filter_by(user_id=current_user.id)
        .order_by(Payment.created_at.desc(), Payment.id.desc())
        .limit(50)
        .all()
    )
    return jsonify([
        {
            "id": p.id,
            "amount": float(to_major_units(p.amount)),
            "currency": p.currency,
            "status": p.status,
            "created_at": iso(p.created_at),
        }
        for p in rows
    ]), 200
