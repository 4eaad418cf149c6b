from collections import OrderedDict
from datetime import timedelta
from flask import request, jsonify, current_app
from sqlalchemy import func, or_
from trafficwork.extensions import db
from trafficwork.models import User, Payment, ConversionEvent, WebhookEvent, SUBSCRIPTION_STATUSES, SUBSCRIPTION_PLANS
from trafficwork.models.conversion_event import EVENT_REGISTRATION, EVENT_PURCHASE
from trafficwork.policy import admin_required
from trafficwork.utils.helpers import utcnow, iso, parse_iso, to_major_units
from trafficwork import services
from . import bp

RECENT_LIMIT = 10
USER_PAYMENTS_LIMIT = 20


def _int_arg(name: str, default: int, lo: int, hi: int) -> int:
    try:
        val = int(request.args.get(name, default))
    except (TypeError, ValueError):
        val = default
    return max(lo, min(hi, val))


def _major(amount_minor) -> float:
    return float(to_major_units(int(amount_minor or 0)))


def _payment_dict(p: Payment, with_user: bool = False) -> dict:
    out = {
        "id": p.id,
        "user_id": p.user_id,
        "stripe_payment_id": p.stripe_payment_id,
        "amount": _major(p.amount),
        "currency": p.currency,
        "status": p.status,
        "payment_method": p.payment_method,
        "created_at": iso(p.created_at),
    }
    if with_user and p.user is not None:
        out["user"] = {"email": p.user.email, "name": p.user.name}
    return out


def _admin_user_dict(u: User) -> dict:
    return {
        "id": u.id,
        "email": u.email,
        "name": u.name,
        "is_active": u.is_active,
        "click_id": u.click_id,
        "registration_source": u.registration_source,
        "stripe_customer_id": u.stripe_customer_id,
        "subscription_id": u.subscription_id,
        "subscription_status": u.subscription_status,
        "subscription_plan": u.subscription_plan,
        "subscription_end_date": iso(u.subscription_end_date),
        "created_at": iso(u.created_at),
        "last_login_at": iso(u.last_login_at),
    }


@bp.get("/dashboard")
@admin_required
def dashboard():
    total_users = db.session.query(func.count(User.id)).scalar() or 0
    active = db.session.query(func.count(User.id)).filter(User.subscription_status == "active").scalar() or 0
    revenue_minor = (
        db.session.query(func.coalesce(func.sum(Payment.amount), 0))
        .filter(Payment.status == "succeeded")
        .scalar()
    )
    recent_payments = Payment.query.order_by(Payment.created_at.desc(), Payment.id.desc()).limit(RECENT_LIMIT).all()
    recent_users = User.query.order_by(User.created_at.desc(), User.id.desc()).limit(RECENT_LIMIT).all()
    conversion_stats = dict(
        db.session.query(ConversionEvent.event_type, func.count(ConversionEvent.id))
        .group_by(ConversionEvent.event_type)
        .all()
    )

    return jsonify({
        "stats": {
            "total_users": total_users,
            "active_subscriptions": active,
            "total_revenue": _major(revenue_minor),
            "conversion_rate": f"{active / total_users * 100:.2f}%" if total_users else "0%",
        },
        "recent_payments": [_payment_dict(p, with_user=True) for p in recent_payments],
        "recent_users": [
            {
                "id": u.id,
                "email": u.email,
                "name": u.name,
                "created_at": iso(u.created_at),
                "subscription_status": u.subscription_status,
                "click_id": u.click_id,
            }
            for u in recent_users
        ],
        "conversion_stats": conversion_stats,
    }), 200


@bp.get("/users")
@admin_required
def list_users():
    page = _int_arg("page", 1, 1, 10_000)
    limit = _int_arg("limit", 20, 1, 100)
    search = (request.args.get("search") or "").strip()

    q = User.query
    if search:
        like = f"%{search}%"
        q = q.filter(or_(User.email.ilike(like), User.name.ilike(like)))
    total = q.count()
    rows = q.order_by(User.created_at.desc(), User.id.desc()).offset((page - 1) * limit).limit(limit).all()

    users = []
    for u in rows:
        doc = _admin_user_dict(u)
        doc["payment_count"] = u.payments.count()
        users.append(doc)

    return jsonify({
        "users": users,
        "pagination": {"page": page, "limit": limit, "total": total, "pages": -(-total // limit)},
    }), 200


@bp.get("/users/<int:user_id>")
@admin_required
def user_detail(user_id: int):
    user = db.session.get(User, user_id)
    if user is None:
        return jsonify({"error": "not_found", "message": "User not found"}), 404
    payments = user.payments.order_by(Payment.created_at.desc(), Payment.id.desc()).limit(USER_PAYMENTS_LIMIT).all()
    return jsonify({"user": _admin_user_dict(user), "payments": [_payment_dict(p) for p in payments]}), 200


@bp.put("/users/<int:user_id>/subscription")
@admin_required
def override_subscription(user_id: int):
    """Administrative override of subscription fields; later provider events still win."""
    user = db.session.get(User, user_id)
    if user is None:
        return jsonify({"error": "not_found", "message": "User not found"}), 404

    data = request.get_json(silent=True) or {}
    status = data.get("status")
    plan = data.get("plan")
    errors = {}
    if status is not None and status not in SUBSCRIPTION_STATUSES:
        errors["status"] = f"must be one of {', '.join(SUBSCRIPTION_STATUSES)}"
    if plan is not None and plan not in SUBSCRIPTION_PLANS:
        errors["plan"] = f"must be one of {', '.join(SUBSCRIPTION_PLANS)}"
    try:
        end_date = parse_iso(data.get("end_date"))
    except ValueError:
        errors["end_date"] = "must be an ISO-8601 date"
    if status is None and plan is None and "end_date" not in data:
        errors["body"] = "nothing to update"
    if errors:
        return jsonify({"error": "validation_failed", "errors": errors}), 400

    if status is not None:
        user.subscription_status = status
    if plan is not None:
        user.subscription_plan = plan
    if "end_date" in data:
        user.subscription_end_date = end_date
    user.subscription_synced_at = utcnow()
    db.session.commit()
    current_app.logger.info("admin subscription override user_id=%s status=%s plan=%s",
                            user.id, user.subscription_status, user.subscription_plan)
    return jsonify({"message": "Subscription updated", "user": _admin_user_dict(user)}), 200


@bp.post("/tracking/retry")
@admin_required
def tracking_retry():
    result = services.sweeper().sweep()
    current_app.logger.info("admin tracking retry: %s", result.to_dict())
    return jsonify(result.to_dict()), 200


@bp.get("/webhook-events")
@admin_required
def webhook_events():
    limit = _int_arg("limit", 100, 1, 500)
    q = WebhookEvent.query
    if request.args.get("errors") in ("1", "true"):
        q = q.filter(WebhookEvent.error.isnot(None))
    rows = q.order_by(WebhookEvent.created_at.desc(), WebhookEvent.id.desc()).limit(limit).all()
    return jsonify({"events": [r.to_dict() for r in rows]}), 200


@bp.get("/analytics/payments")
@admin_required
def payment_analytics():
    days = _int_arg("days", 30, 1, 365)
    since = utcnow() - timedelta(days=days)

    payments = (
        Payment.query
        .filter(Payment.created_at >= since, Payment.status == "succeeded")
        .order_by(Payment.created_at.asc(), Payment.id.asc())
        .all()
    )
    # Grouped in Python so the query stays portable across SQLite and Postgres
    daily = OrderedDict()
    for p in payments:
        day = p.created_at.date().isoformat()
        daily[day] = daily.get(day, 0) + p.amount

    methods = (
        db.session.query(Payment.payment_method, func.coalesce(func.sum(Payment.amount), 0), func.count(Payment.id))
        .filter(Payment.created_at >= since, Payment.status == "succeeded")
        .group_by(Payment.payment_method)
        .all()
    )

    total_minor = sum(p.amount for p in payments)
    count = len(payments)
    return jsonify({
        "days": days,
        "daily_revenue": [{"date": d, "amount": _major(v)} for d, v in daily.items()],
        "payment_methods": [
            {"method": method or "unknown", "total": _major(total), "count": n}
            for method, total, n in methods
        ],
        "summary": {
            "total_revenue": _major(total_minor),
            "total_transactions": count,
            "average_transaction": round(total_minor / count / 100, 2) if count else 0,
        },
    }), 200


@bp.get("/analytics/conversions")
@admin_required
def conversion_analytics():
    days = _int_arg("days", 30, 1, 365)
    since = utcnow() - timedelta(days=days)

    counts = dict(
        db.session.query(ConversionEvent.event_type, func.count(ConversionEvent.id))
        .filter(ConversionEvent.created_at >= since)
        .group_by(ConversionEvent.event_type)
        .all()
    )
    sent = dict(
        db.session.query(ConversionEvent.sent, func.count(ConversionEvent.id))
        .filter(ConversionEvent.created_at >= since)
        .group_by(ConversionEvent.sent)
        .all()
    )
    revenue_minor = (
        db.session.query(func.coalesce(func.sum(ConversionEvent.amount), 0))
        .filter(ConversionEvent.created_at >= since, ConversionEvent.event_type == EVENT_PURCHASE)
        .scalar()
    )
    sources = (
        db.session.query(User.registration_source, func.count(User.id))
        .filter(User.created_at >= since)
        .group_by(User.registration_source)
        .all()
    )

    registrations = counts.get(EVENT_REGISTRATION, 0)
    purchases = counts.get(EVENT_PURCHASE, 0)
    rate = f"{purchases / registrations * 100:.2f}%" if registrations else "0%"

    return jsonify({
        "days": days,
        "funnel": {
            "registrations": registrations,
            "purchases": purchases,
            "conversion_rate": rate,
        },
        "by_type": counts,
        "sources": [{"source": s or "unknown", "count": n} for s, n in sources],
        "delivery": {"sent": sent.get(True, 0), "unsent": sent.get(False, 0)},
        # Minor units are an internal detail; reports speak major units
        "purchase_revenue": int(revenue_minor or 0) / 100,
    }), 200
