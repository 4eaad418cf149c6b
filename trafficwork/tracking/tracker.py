import logging

from trafficwork.models import ConversionEvent, User
from trafficwork.models.conversion_event import EVENT_REGISTRATION, EVENT_PURCHASE, EVENT_CUSTOM, EVENT_TYPES
from trafficwork.observability import log_event
from trafficwork.utils.helpers import utcnow, to_major_units
from trafficwork.utils.validators import normalize_currency, clean_click_id
from .postback import PostbackDispatcher
from .statuses import ConversionStatus

logger = logging.getLogger(__name__)


class ConversionTracker:
    """
    Records trackable business actions in the conversion ledger and forwards
    them to the tracker. Every record_* call commits its ledger row and returns
    it (or None when there is nothing to attribute); postback failures only
    leave the row unsent for the retry sweeper.
    """

    def __init__(self, session, dispatcher: PostbackDispatcher,
                 registration_status: str = ConversionStatus.REGISTRATION.value,
                 purchase_status: str = ConversionStatus.SALE.value):
        self.session = session
        self.dispatcher = dispatcher
        self.registration_status = registration_status
        self.purchase_status = purchase_status

    def record_registration(self, user_id: int, click_id: str | None = None) -> ConversionEvent | None:
        click_id = self._resolve_click_id(user_id, click_id)
        if not click_id:
            log_event(logger, "attribution_missing", action=EVENT_REGISTRATION, user_id=user_id)
            return None

        event = self._create(
            event_type=EVENT_REGISTRATION,
            user_id=user_id,
            click_id=click_id,
            status=self.registration_status,
        )
        return self._deliver(event)

    def record_purchase(self, user_id: int, amount_minor: int, currency: str = "USD",
                        click_id: str | None = None, event_type: str = EVENT_PURCHASE) -> ConversionEvent | None:
        if event_type not in EVENT_TYPES:
            raise ValueError(f"unknown conversion event type: {event_type!r}")
        click_id = self._resolve_click_id(user_id, click_id)
        if not click_id:
            log_event(logger, "attribution_missing", action=event_type, user_id=user_id, amount=amount_minor)
            return None

        event = self._create(
            event_type=event_type,
            user_id=user_id,
            click_id=click_id,
            status=self.purchase_status,
            amount=int(amount_minor),
            currency=normalize_currency(currency),
        )
        return self._deliver(event)

    def record_custom_event(self, event_type: str, click_id: str | None, metadata: dict | None = None,
                            status: str = ConversionStatus.LEAD.value, user_id: int | None = None) -> ConversionEvent | None:
        click_id = clean_click_id(click_id)
        if not click_id:
            log_event(logger, "attribution_missing", action=event_type, user_id=user_id)
            return None

        meta = dict(metadata or {})
        meta.setdefault("name", event_type)
        event = self._create(
            event_type=EVENT_CUSTOM,
            user_id=user_id,
            click_id=click_id,
            status=status,
            meta=meta,
        )
        return self._deliver(event)

    def deliver(self, event: ConversionEvent) -> bool:
        """Send one ledger row; on success mark it sent. Caller commits."""
        event.attempts = (event.attempts or 0) + 1
        ok = self.dispatcher.send(
            event.click_id,
            event.status or self.purchase_status,
            amount=to_major_units(event.amount),
            currency=event.currency,
        )
        if ok:
            event.sent = True
            event.sent_at = utcnow()
        return ok

    # --- internals -----------------------------------------------------------

    def _resolve_click_id(self, user_id: int | None, click_id: str | None) -> str | None:
        click_id = clean_click_id(click_id)
        if click_id or user_id is None:
            return click_id
        user = self.session.get(User, user_id)
        return user.click_id if user else None

    def _create(self, **fields) -> ConversionEvent:
        event = ConversionEvent(sent=False, attempts=0, **fields)
        self.session.add(event)
        self.session.commit()
        log_event(
            logger, "conversion_recorded",
            conversion_id=event.id, event_type=event.event_type,
            user_id=event.user_id, click_id=event.click_id, amount=event.amount, currency=event.currency,
        )
        return event

    def _deliver(self, event: ConversionEvent) -> ConversionEvent:
        self.deliver(event)
        self.session.commit()
        return event
