from datetime import datetime

from trafficwork.extensions import db
from trafficwork.models import User, Payment


def _login(client, email="buyer@example.test", **extra):
    resp = client.post("/auth/register", json={"email": email, "password": "secret123", **extra})
    assert resp.status_code == 201
    return resp.get_json()["id"]


def test_checkout_requires_login(client):
    assert client.post("/billing/checkout", json={"price_id": "price_monthly"}).status_code == 401


def test_checkout_creates_customer_and_session(app, client, fake_stripe):
    uid = _login(client, click_id="clk_buy")

    resp = client.post("/billing/checkout", json={"price_id": "price_monthly"})
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["sessionId"] == "cs_test_1"
    assert body["url"].startswith("https://checkout.stripe.test/")

    call = fake_stripe.checkout.sessions.calls[0]
    params = call["params"]
    assert params["mode"] == "subscription"
    assert params["line_items"] == [{"price": "price_monthly", "quantity": 1}]
    assert params["metadata"] == {"user_id": str(uid), "click_id": "clk_buy"}
    assert params["subscription_data"]["metadata"] == params["metadata"]
    assert params["success_url"].startswith("http://example.test/")
    assert call["options"]["idempotency_key"].startswith("checkout:")

    with app.app_context():
        assert db.session.get(User, uid).stripe_customer_id == "cus_test_1"

    # Customer is created once
    client.post("/billing/checkout", json={"price_id": "price_annual"})
    assert len(fake_stripe.customers.calls) == 1


def test_checkout_rejects_unknown_price_and_active_subscribers(app, client):
    uid = _login(client)
    assert client.post("/billing/checkout", json={}).status_code == 400
    assert client.post("/billing/checkout", json={"price_id": "price_other"}).status_code == 400

    with app.app_context():
        db.session.get(User, uid).subscription_status = "active"
        db.session.commit()
    assert client.post("/billing/checkout", json={"price_id": "price_monthly"}).status_code == 409


def test_status_and_cancel(app, client, fake_stripe):
    uid = _login(client)
    assert client.post("/billing/cancel").status_code == 404

    with app.app_context():
        user = db.session.get(User, uid)
        user.subscription_id = "sub_1"
        user.subscription_status = "active"
        user.subscription_plan = "monthly"
        db.session.commit()

    status = client.get("/billing/status").get_json()
    assert status == {"has_subscription": True, "status": "active", "plan": "monthly", "end_date": None}

    resp = client.post("/billing/cancel")
    assert resp.status_code == 202
    assert fake_stripe.subscriptions.updated == [("sub_1", {"cancel_at_period_end": True})]
    # Local state waits for the webhook
    with app.app_context():
        assert db.session.get(User, uid).subscription_status == "active"


def test_portal_needs_customer(app, client, fake_stripe):
    uid = _login(client)
    assert client.post("/billing/portal").status_code == 404

    with app.app_context():
        db.session.get(User, uid).stripe_customer_id = "cus_9"
        db.session.commit()
    resp = client.post("/billing/portal", json={"return_url": "http://example.test/account"})
    assert resp.status_code == 200
    assert resp.get_json()["url"].startswith("https://billing.stripe.test/")
    assert fake_stripe.billing_portal.sessions.calls[0]["params"]["customer"] == "cus_9"


def test_payments_are_listed_in_major_units(app, client):
    uid = _login(client)
    with app.app_context():
        db.session.add_all([
            Payment(user_id=uid, stripe_payment_id="pi_a", amount=999, currency="USD",
                    status="succeeded", created_at=datetime(2026, 1, 1)),
            Payment(user_id=uid, stripe_payment_id="pi_b", amount=2900, currency="USD",
                    status="succeeded", created_at=datetime(2026, 2, 1)),
        ])
        db.session.commit()

    rows = client.get("/billing/payments").get_json()
    assert [r["amount"] for r in rows] == [29.0, 9.99]
