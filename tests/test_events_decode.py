import pytest

from trafficwork.billing.events import (
    decode_event,
    CheckoutCompleted,
    SubscriptionChanged,
    SubscriptionDeleted,
    InvoicePaid,
    InvoiceFailed,
    UnrecognizedEvent,
    invoice_subscription_id,
    subscription_period_end,
)
from trafficwork.billing.plans import normalize_status, resolve_plan
from trafficwork.errors import MalformedEvent


def _doc(event_type, obj):
    return {"id": "evt_1", "type": event_type, "created": 1700000000, "data": {"object": obj}}


def test_decode_known_variants():
    cs = decode_event(_doc("checkout.session.completed", {
        "id": "cs_1", "subscription": {"id": "sub_1"}, "payment_intent": "pi_1",
        "amount_total": 100, "currency": "usd", "metadata": {"user_id": "3"},
    }))
    assert isinstance(cs, CheckoutCompleted)
    assert cs.subscription_id == "sub_1"
    assert cs.metadata == {"user_id": "3"}

    sub = decode_event(_doc("customer.subscription.created", {"id": "sub_1", "status": "trialing"}))
    assert isinstance(sub, SubscriptionChanged)

    gone = decode_event(_doc("customer.subscription.deleted", {"id": "sub_1", "ended_at": 1700000500}))
    assert isinstance(gone, SubscriptionDeleted)
    assert gone.period_end == 1700000500

    paid = decode_event(_doc("invoice.payment_succeeded", {"id": "in_1", "subscription": "sub_1", "amount_paid": 999}))
    assert isinstance(paid, InvoicePaid)
    assert paid.amount_paid == 999

    failed = decode_event(_doc("invoice.payment_failed", {"id": "in_1"}))
    assert isinstance(failed, InvoiceFailed)
    assert failed.subscription_id is None


def test_unknown_type_keeps_raw_document():
    doc = _doc("charge.refunded", {"id": "ch_1"})
    event = decode_event(doc)
    assert isinstance(event, UnrecognizedEvent)
    assert event.raw is doc


@pytest.mark.parametrize("doc", [
    [],
    {"type": "invoice.paid", "data": {"object": {}}},
    {"id": "evt_1", "type": "invoice.paid"},
    {"id": "evt_1", "type": "customer.subscription.updated", "data": {"object": {"id": "sub_1"}}},
])
def test_malformed_documents(doc):
    with pytest.raises(MalformedEvent):
        decode_event(doc)


def test_newer_api_shapes():
    invoice = {"id": "in_1", "parent": {"subscription_details": {"subscription": "sub_9"}}}
    assert invoice_subscription_id(invoice) == "sub_9"

    sub = {"items": {"data": [{"current_period_end": 1800000000}]}}
    assert subscription_period_end(sub) == 1800000000


def test_status_and_plan_mapping():
    assert normalize_status("active") == "active"
    assert normalize_status("incomplete_expired") == "canceled"
    assert normalize_status(None) == "inactive"
    assert resolve_plan(price_id="price_x", interval="year", annual_price_id="price_a") == "annual"
    assert resolve_plan(price_id="price_a", annual_price_id="price_a") == "annual"
    assert resolve_plan(price_id="price_m", interval="month", annual_price_id="price_a") == "monthly"


@pytest.mark.parametrize("event_type, obj", [
    ("invoice.paid", {"id": "in_1", "amount_paid": "nine"}),
    ("invoice.payment_succeeded", {"id": "in_1", "amount_paid": {"value": 1}}),
    ("checkout.session.completed", {"id": "cs_1", "amount_total": "12.x"}),
])
def test_non_numeric_amounts_are_malformed(event_type, obj):
    with pytest.raises(MalformedEvent):
        decode_event(_doc(event_type, obj))
