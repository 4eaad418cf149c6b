import os
# Ensure the app factory picks the Testing config & SQLite memory DB
os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("TEST_DATABASE_URL", "sqlite:///:memory:")

import hashlib
import hmac
import json
import time
from types import SimpleNamespace

import pytest
from trafficwork import create_app
from trafficwork.extensions import db
from trafficwork.models import User

WEBHOOK_SECRET = "whsec_test_secret"
TRACKER_URL = "https://tracker.example.test"
POSTBACK_KEY = "pb_key_123"
ADMIN_EMAIL = "admin@example.test"


class FakeResponse:
    def __init__(self, status_code=200):
        self.status_code = status_code


class FakeHttp:
    """Stands in for requests.Session on the postback dispatcher."""

    def __init__(self):
        self.reset()

    def reset(self):
        self.calls = []
        self.status_code = 200
        self.exc = None

    def get(self, url, params=None, timeout=None, allow_redirects=True):
        self.calls.append({"url": url, "params": dict(params or {}), "timeout": timeout})
        if self.exc is not None:
            raise self.exc
        return FakeResponse(self.status_code)


class _FakeSubscriptions:
    def __init__(self):
        self.store = {}
        self.updated = []

    def retrieve(self, sub_id):
        if sub_id not in self.store:
            raise LookupError(f"No such subscription: {sub_id}")
        return self.store[sub_id]

    def update(self, sub_id, params=None):
        self.updated.append((sub_id, params))
        return SimpleNamespace(id=sub_id, status="active", cancel_at_period_end=True)


class _FakeCreate:
    def __init__(self, prefix, url=None):
        self.prefix = prefix
        self.url = url
        self.calls = []

    def create(self, params=None, options=None):
        self.calls.append({"params": params, "options": options})
        obj_id = f"{self.prefix}_{len(self.calls)}"
        return SimpleNamespace(id=obj_id, url=self.url and f"{self.url}/{obj_id}")


class FakeStripe:
    """The slice of stripe.StripeClient the app touches."""

    def __init__(self):
        self.reset()

    def reset(self):
        self.subscriptions = _FakeSubscriptions()
        self.customers = _FakeCreate("cus_test")
        self.checkout = SimpleNamespace(sessions=_FakeCreate("cs_test", url="https://checkout.stripe.test"))
        self.billing_portal = SimpleNamespace(sessions=_FakeCreate("bps_test", url="https://billing.stripe.test"))


_fake_stripe = FakeStripe()
_fake_http = FakeHttp()


@pytest.fixture(scope="session")
def app():
    app = create_app(
        {
            "TESTING": True,
            "APP_BASE_URL": "http://example.test",
            "WTF_CSRF_ENABLED": False,
            "STRIPE_WEBHOOK_SECRET": WEBHOOK_SECRET,
            "STRIPE_PRICE_MONTHLY": "price_monthly",
            "STRIPE_PRICE_ANNUAL": "price_annual",
            "KEITARO_TRACKER_URL": TRACKER_URL,
            "KEITARO_POSTBACK_KEY": POSTBACK_KEY,
            "ADMIN_EMAILS": [ADMIN_EMAIL],
        },
        stripe_client=_fake_stripe,
        http=_fake_http,
    )
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def fake_stripe():
    return _fake_stripe


@pytest.fixture()
def fake_http():
    return _fake_http


@pytest.fixture(autouse=True)
def _db_clean(app):
    _fake_stripe.reset()
    _fake_http.reset()
    # Clean BEFORE each test
    with app.app_context():
        db.session.rollback()
        for tbl in reversed(db.metadata.sorted_tables):
            db.session.execute(tbl.delete())
        db.session.commit()
    yield
    # And AFTER each test (keeps state hermetic even if a test fails mid-transaction)
    with app.app_context():
        db.session.rollback()
        for tbl in reversed(db.metadata.sorted_tables):
            db.session.execute(tbl.delete())
        db.session.commit()


# ---- helpers shared by test modules ----

def sign(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Stripe-Signature header value for payload, computed the way Stripe does."""
    ts = int(time.time()) if timestamp is None else timestamp
    mac = hmac.new(secret.encode("utf-8"), f"{ts}.{payload}".encode("utf-8"), hashlib.sha256).hexdigest()
    return f"t={ts},v1={mac}"


def post_event(client, event: dict, **sign_kwargs):
    body = json.dumps(event)
    return client.post(
        "/webhooks/stripe",
        data=body,
        headers={"Stripe-Signature": sign(body, **sign_kwargs)},
        content_type="application/json",
    )


def make_user(app, email="user@example.test", click_id=None, **fields) -> int:
    with app.app_context():
        user = User(email=email, click_id=click_id, **fields)
        user.set_password("secret123")
        db.session.add(user)
        db.session.commit()
        return user.id
