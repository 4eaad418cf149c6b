"""
Typed view over Stripe webhook events.

decode_event() turns the verified JSON document into one variant of a small
tagged union. Known types validate their required fields up front; anything
else becomes UnrecognizedEvent carrying the raw document.
"""
from dataclasses import dataclass, field
from typing import Any, Union

from trafficwork.errors import MalformedEvent

CHECKOUT_COMPLETED = "checkout.session.completed"
SUBSCRIPTION_CREATED = "customer.subscription.created"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"
INVOICE_PAID = "invoice.paid"
INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
INVOICE_PAYMENT_FAILED = "invoice.payment_failed"


def _ref(value: Any) -> str | None:
    """Stripe fields may hold an id or an expanded object."""
    if isinstance(value, dict):
        return value.get("id")
    return value or None


def _metadata(obj: dict) -> dict:
    meta = obj.get("metadata")
    return dict(meta) if isinstance(meta, dict) else {}


def _require(obj: dict, *names: str, event_type: str) -> None:
    missing = [n for n in names if obj.get(n) in (None, "")]
    if missing:
        raise MalformedEvent(f"{event_type}: missing {', '.join(missing)}")


def _amount(obj: dict, name: str, *, event_type: str, default=None) -> int | None:
    """Integer minor units; anything non-numeric makes the event malformed."""
    value = obj.get(name)
    if value in (None, ""):
        return default
    if isinstance(value, bool):
        raise MalformedEvent(f"{event_type}: {name} is not an integer amount")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise MalformedEvent(f"{event_type}: {name} is not an integer amount") from exc


@dataclass(frozen=True)
class StripeEvent:
    event_id: str
    event_type: str
    created: int | None
    raw: dict = field(repr=False, compare=False)


@dataclass(frozen=True)
class CheckoutCompleted(StripeEvent):
    session_id: str = ""
    subscription_id: str | None = None
    payment_intent_id: str | None = None
    amount_total: int | None = None
    currency: str | None = None
    metadata: dict = field(default_factory=dict)


@dataclass(frozen=True)
class SubscriptionChanged(StripeEvent):
    subscription: dict = field(default_factory=dict)

    @property
    def metadata(self) -> dict:
        return _metadata(self.subscription)


@dataclass(frozen=True)
class SubscriptionDeleted(StripeEvent):
    subscription_id: str = ""
    period_end: int | None = None
    metadata: dict = field(default_factory=dict)


@dataclass(frozen=True)
class InvoicePaid(StripeEvent):
    invoice_id: str = ""
    subscription_id: str | None = None
    payment_intent_id: str | None = None
    amount_paid: int = 0
    currency: str | None = None
    billing_reason: str | None = None


@dataclass(frozen=True)
class InvoiceFailed(StripeEvent):
    invoice_id: str = ""
    subscription_id: str | None = None


@dataclass(frozen=True)
class UnrecognizedEvent(StripeEvent):
    pass


ParsedEvent = Union[CheckoutCompleted, SubscriptionChanged, SubscriptionDeleted, InvoicePaid, InvoiceFailed, UnrecognizedEvent]


def subscription_period_end(sub: dict) -> int | None:
    """Newer API versions moved current_period_end onto the subscription items."""
    if sub.get("current_period_end"):
        return sub["current_period_end"]
    items = (sub.get("items") or {}).get("data") or []
    if items and items[0].get("current_period_end"):
        return items[0]["current_period_end"]
    return None


def invoice_subscription_id(invoice: dict) -> str | None:
    sub = _ref(invoice.get("subscription"))
    if sub:
        return sub
    details = ((invoice.get("parent") or {}).get("subscription_details") or {})
    return _ref(details.get("subscription"))


def decode_event(doc: Any) -> ParsedEvent:
    if not isinstance(doc, dict):
        raise MalformedEvent("event body is not an object")
    event_id = doc.get("id")
    event_type = doc.get("type")
    obj = (doc.get("data") or {}).get("object") if isinstance(doc.get("data"), dict) else None
    if not event_id or not event_type or not isinstance(obj, dict):
        raise MalformedEvent("event is missing id, type or data.object")

    base = {"event_id": event_id, "event_type": event_type, "created": doc.get("created"), "raw": doc}

    if event_type == CHECKOUT_COMPLETED:
        _require(obj, "id", event_type=event_type)
        return CheckoutCompleted(
            **base,
            session_id=obj["id"],
            subscription_id=_ref(obj.get("subscription")),
            payment_intent_id=_ref(obj.get("payment_intent")),
            amount_total=_amount(obj, "amount_total", event_type=event_type),
            currency=obj.get("currency"),
            metadata=_metadata(obj),
        )

    if event_type in (SUBSCRIPTION_CREATED, SUBSCRIPTION_UPDATED):
        _require(obj, "id", "status", event_type=event_type)
        return SubscriptionChanged(**base, subscription=obj)

    if event_type == SUBSCRIPTION_DELETED:
        _require(obj, "id", event_type=event_type)
        return SubscriptionDeleted(
            **base,
            subscription_id=obj["id"],
            period_end=subscription_period_end(obj) or obj.get("ended_at"),
            metadata=_metadata(obj),
        )

    if event_type in (INVOICE_PAID, INVOICE_PAYMENT_SUCCEEDED):
        _require(obj, "id", event_type=event_type)
        return InvoicePaid(
            **base,
            invoice_id=obj["id"],
            subscription_id=invoice_subscription_id(obj),
            payment_intent_id=_ref(obj.get("payment_intent")),
            amount_paid=_amount(obj, "amount_paid", event_type=event_type, default=0),
            currency=obj.get("currency"),
            billing_reason=obj.get("billing_reason"),
        )

    if event_type == INVOICE_PAYMENT_FAILED:
        _require(obj, "id", event_type=event_type)
        return InvoiceFailed(**base, invoice_id=obj["id"], subscription_id=invoice_subscription_id(obj))

    return UnrecognizedEvent(**base)
