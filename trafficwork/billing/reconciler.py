"""
Stripe webhook reconciliation.

verify -> decode -> dedup -> persist -> dispatch -> mark processed.

The event row is committed before any handler runs. Handler writes and the
processed flag commit together; a handler exception is recorded on the row and
re-raised so the endpoint answers 5xx and Stripe redelivers. A redelivery of an
event whose previous attempt failed is dispatched again; any other known event
id is a no-op.
"""
import json
import logging
from dataclasses import dataclass, field

import stripe
from sqlalchemy.exc import IntegrityError

from trafficwork.errors import InvalidSignature, MalformedEvent, HandlerFailure
from trafficwork.models import User, Payment, WebhookEvent
from trafficwork.models.conversion_event import EVENT_PURCHASE, EVENT_SUBSCRIPTION_RENEWAL
from trafficwork.observability import log_event
from trafficwork.utils.helpers import utcnow, from_unix
from trafficwork.utils.validators import normalize_currency, clean_click_id
from .events import (
    ParsedEvent,
    CheckoutCompleted,
    SubscriptionChanged,
    SubscriptionDeleted,
    InvoicePaid,
    InvoiceFailed,
    decode_event,
    subscription_period_end,
)
from .plans import plan_for_subscription, normalize_status

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE = 300
_MAX_ERROR_LEN = 2000


@dataclass
class ReconcileResult:
    event_id: str
    event_type: str
    duplicate: bool = False
    handled: bool = False


@dataclass
class _PendingConversions:
    purchases: list = field(default_factory=list)

    def purchase(self, user_id: int, amount_minor: int, currency: str, click_id: str | None, event_type: str) -> None:
        self.purchases.append({
            "user_id": user_id,
            "amount_minor": amount_minor,
            "currency": currency,
            "click_id": click_id,
            "event_type": event_type,
        })


def _as_dict(obj) -> dict:
    # StripeObject -> plain dict; test fakes are plain dicts already
    for name in ("to_dict", "to_dict_recursive"):
        fn = getattr(obj, name, None)
        if callable(fn):
            return fn()
    return dict(obj)


class WebhookReconciler:
    def __init__(self, session, stripe_client, webhook_secret: str | None, tracker=None,
                 tolerance: int = DEFAULT_TOLERANCE, annual_price_id: str | None = None):
        self.session = session
        self.stripe_client = stripe_client
        self.webhook_secret = webhook_secret
        self.tracker = tracker
        self.tolerance = tolerance
        self.annual_price_id = annual_price_id

    # --- entry points ---------------------------------------------------------

    def handle(self, raw_body: bytes, sig_header: str | None) -> ReconcileResult:
        doc = self.verify(raw_body, sig_header)
        event = decode_event(doc)
        log_event(logger, "stripe_event", event_id=event.event_id, type=event.event_type, created=event.created)

        record = self._claim(event)
        if record is None:
            log_event(logger, "stripe_event_duplicate", event_id=event.event_id, type=event.event_type)
            return ReconcileResult(event.event_id, event.event_type, duplicate=True)
        return self._run(record, event)

    def replay(self, event_id: str) -> ReconcileResult:
        """Operator action: re-dispatch a stored event regardless of its state."""
        record = self._find_event(event_id)
        if record is None:
            raise LookupError(f"no stored webhook event {event_id!r}")
        event = decode_event(record.payload)
        log_event(logger, "stripe_event_replay", event_id=event_id, type=record.event_type, attempts=record.attempts)
        return self._run(record, event)

    def verify(self, raw_body: bytes, sig_header: str | None) -> dict:
        if not self.webhook_secret:
            raise RuntimeError("STRIPE_WEBHOOK_SECRET is not configured")
        if not sig_header:
            raise InvalidSignature("missing Stripe-Signature header")
        try:
            # The signature covers the exact bytes on the wire
            payload = raw_body.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise InvalidSignature("body is not valid UTF-8") from exc
        try:
            stripe.WebhookSignature.verify_header(payload, sig_header, self.webhook_secret, self.tolerance)
        except stripe.SignatureVerificationError as exc:
            log_event(logger, "stripe_signature_invalid", logging.WARNING, reason=str(exc))
            raise InvalidSignature(str(exc)) from exc
        try:
            return json.loads(payload)
        except ValueError as exc:
            raise MalformedEvent("body is not valid JSON") from exc

    # --- event store ----------------------------------------------------------

    def _find_event(self, event_id: str) -> WebhookEvent | None:
        return self.session.query(WebhookEvent).filter_by(event_id=event_id).one_or_none()

    def _claim(self, event: ParsedEvent) -> WebhookEvent | None:
        existing = self._find_event(event.event_id)
        if existing is not None:
            # Only a previously failed attempt is worth running again
            return existing if existing.failed else None

        record = WebhookEvent(
            source="stripe",
            event_id=event.event_id,
            event_type=event.event_type,
            payload=event.raw,
            processed=False,
            attempts=0,
        )
        self.session.add(record)
        try:
            self.session.commit()
        except IntegrityError:
            # Concurrent delivery of the same id won the insert
            self.session.rollback()
            return None
        return record

    def _run(self, record: WebhookEvent, event: ParsedEvent) -> ReconcileResult:
        record_id = record.id
        pending = _PendingConversions()
        try:
            handled = self._dispatch(event, pending)
            record.processed = True
            record.error = None
            record.processed_at = utcnow()
            record.attempts = (record.attempts or 0) + 1
            self.session.commit()
        except Exception as exc:
            self.session.rollback()
            record = self.session.get(WebhookEvent, record_id)
            record.processed = True
            record.error = f"{type(exc).__name__}: {exc}"[:_MAX_ERROR_LEN]
            record.processed_at = utcnow()
            record.attempts = (record.attempts or 0) + 1
            self.session.commit()
            logger.exception("stripe_webhook_handler_error event_id=%s type=%s", event.event_id, event.event_type)
            raise HandlerFailure(event.event_id, exc) from exc

        self._record_conversions(pending)
        return ReconcileResult(event.event_id, event.event_type, handled=handled)

    def _record_conversions(self, pending: _PendingConversions) -> None:
        if self.tracker is None:
            return
        for item in pending.purchases:
            try:
                self.tracker.record_purchase(**item)
            except Exception:
                # The event is already committed; attribution problems stay local
                self.session.rollback()
                logger.exception("conversion_record_failed user_id=%s", item.get("user_id"))

    # --- dispatch -------------------------------------------------------------

    def _dispatch(self, event: ParsedEvent, pending: _PendingConversions) -> bool:
        handlers = {
            CheckoutCompleted: self._on_checkout_completed,
            SubscriptionChanged: self._on_subscription_changed,
            SubscriptionDeleted: self._on_subscription_deleted,
            InvoicePaid: self._on_invoice_paid,
            InvoiceFailed: self._on_invoice_failed,
        }
        handler = handlers.get(type(event))
        if handler is None:
            log_event(logger, "stripe_event_unhandled", event_id=event.event_id, type=event.event_type)
            return False
        handler(event, pending)
        return True

    def _on_checkout_completed(self, event: CheckoutCompleted, pending: _PendingConversions) -> None:
        user = self._user_from_metadata(event.metadata, event)
        if user is None:
            return

        if event.subscription_id:
            sub_obj = self._retrieve_subscription(event.subscription_id)
            if self._accept_subscription_write(user, event):
                self._refresh_subscription(user, sub_obj)

        if event.payment_intent_id:
            click_id = clean_click_id(event.metadata.get("click_id"))
            amount = int(event.amount_total or 0)
            currency = normalize_currency(event.currency)
            if self._add_payment(user, event.payment_intent_id, amount, currency, click_id):
                pending.purchase(user.id, amount, currency, click_id, EVENT_PURCHASE)

    def _on_subscription_changed(self, event: SubscriptionChanged, pending: _PendingConversions) -> None:
        user = self._user_from_metadata(event.metadata, event)
        if user is None:
            return
        if self._accept_subscription_write(user, event):
            self._refresh_subscription(user, event.subscription)

    def _on_subscription_deleted(self, event: SubscriptionDeleted, pending: _PendingConversions) -> None:
        user = self._user_from_metadata(event.metadata, event)
        if user is None:
            return
        if not self._accept_subscription_write(user, event):
            return
        user.subscription_status = "canceled"
        end = from_unix(event.period_end)
        if end is not None:
            user.subscription_end_date = end
        log_event(logger, "subscription_canceled", user_id=user.id, subscription_id=event.subscription_id)

    def _on_invoice_paid(self, event: InvoicePaid, pending: _PendingConversions) -> None:
        if not event.subscription_id:
            log_event(logger, "invoice_without_subscription", event_id=event.event_id, invoice_id=event.invoice_id)
            return
        sub_obj = self._retrieve_subscription(event.subscription_id)
        meta = sub_obj.get("metadata") or {}
        user = self._user_from_metadata(meta, event)
        if user is None:
            return

        # Attribution lives on the subscription, not on the invoice
        click_id = clean_click_id(meta.get("click_id"))
        payment_id = event.payment_intent_id or event.invoice_id
        currency = normalize_currency(event.currency)
        if self._add_payment(user, payment_id, event.amount_paid, currency, click_id):
            kind = EVENT_SUBSCRIPTION_RENEWAL if event.billing_reason == "subscription_cycle" else EVENT_PURCHASE
            pending.purchase(user.id, event.amount_paid, currency, click_id, kind)

    def _on_invoice_failed(self, event: InvoiceFailed, pending: _PendingConversions) -> None:
        if not event.subscription_id:
            log_event(logger, "invoice_without_subscription", event_id=event.event_id, invoice_id=event.invoice_id)
            return
        sub_obj = self._retrieve_subscription(event.subscription_id)
        user = self._user_from_metadata(sub_obj.get("metadata") or {}, event)
        if user is None:
            return
        if self._accept_subscription_write(user, event):
            user.subscription_status = "past_due"
            log_event(logger, "subscription_past_due", user_id=user.id, subscription_id=event.subscription_id)

    # --- helpers --------------------------------------------------------------

    def _retrieve_subscription(self, sub_id: str) -> dict:
        if self.stripe_client is None:
            raise RuntimeError("STRIPE_SECRET_KEY is not configured")
        return _as_dict(self.stripe_client.subscriptions.retrieve(sub_id))

    def _user_from_metadata(self, meta: dict, event: ParsedEvent) -> User | None:
        raw = (meta or {}).get("user_id")
        try:
            user_id = int(raw)
        except (TypeError, ValueError):
            log_event(logger, "webhook_user_missing", logging.WARNING, event_id=event.event_id, type=event.event_type)
            return None
        user = self.session.get(User, user_id)
        if user is None:
            log_event(logger, "webhook_user_unknown", logging.WARNING, event_id=event.event_id, user_id=user_id)
        return user

    def _accept_subscription_write(self, user: User, event: ParsedEvent) -> bool:
        """Reject writes from events older than the last one applied to this user."""
        event_at = from_unix(event.created)
        if event_at is None:
            return True
        if user.subscription_synced_at and event_at < user.subscription_synced_at:
            log_event(
                logger, "subscription_write_stale", logging.WARNING,
                user_id=user.id, event_id=event.event_id, event_at=event_at, synced_at=user.subscription_synced_at,
            )
            return False
        user.subscription_synced_at = event_at
        return True

    def _refresh_subscription(self, user: User, sub_obj: dict) -> None:
        user.subscription_id = sub_obj.get("id") or user.subscription_id
        user.subscription_status = normalize_status(sub_obj.get("status"))
        user.subscription_plan = plan_for_subscription(sub_obj, annual_price_id=self.annual_price_id)
        end = from_unix(subscription_period_end(sub_obj))
        if end is not None:
            user.subscription_end_date = end
        customer = sub_obj.get("customer")
        customer_id = customer.get("id") if isinstance(customer, dict) else customer
        if customer_id and not user.stripe_customer_id:
            user.stripe_customer_id = customer_id
        self.session.flush()
        log_event(
            logger, "subscription_refreshed",
            user_id=user.id, subscription_id=user.subscription_id,
            status=user.subscription_status, plan=user.subscription_plan,
        )

    def _add_payment(self, user: User, payment_id: str, amount: int, currency: str, click_id: str | None) -> bool:
        if self.session.query(Payment).filter_by(stripe_payment_id=payment_id).first():
            log_event(logger, "payment_already_recorded", payment_id=payment_id, user_id=user.id)
            return False
        self.session.add(Payment(
            user_id=user.id,
            stripe_payment_id=payment_id,
            amount=int(amount),
            currency=currency,
            status="succeeded",
            payment_method="card",
            click_id=click_id,
        ))
        self.session.flush()
        log_event(logger, "payment_recorded", payment_id=payment_id, user_id=user.id, amount=amount, currency=currency)
        return True
