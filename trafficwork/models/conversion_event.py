from trafficwork.extensions import db
from trafficwork.utils.helpers import utcnow

# Conversion categories
EVENT_REGISTRATION = "registration"
EVENT_PURCHASE = "purchase"
EVENT_SUBSCRIPTION_START = "subscription_start"
EVENT_SUBSCRIPTION_RENEWAL = "subscription_renewal"
EVENT_SUBSCRIPTION_CANCEL = "subscription_cancel"
EVENT_CUSTOM = "custom"

EVENT_TYPES = (
    EVENT_REGISTRATION,
    EVENT_PURCHASE,
    EVENT_SUBSCRIPTION_START,
    EVENT_SUBSCRIPTION_RENEWAL,
    EVENT_SUBSCRIPTION_CANCEL,
    EVENT_CUSTOM,
)


class ConversionEvent(db.Model):
    """Attribution event destined for (or already sent to) the tracker."""

    __tablename__ = "conversion_events"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    event_type = db.Column(db.String(32), nullable=False, index=True)
    click_id = db.Column(db.String(128), nullable=True)
    status = db.Column(db.String(16), nullable=True)  # postback status code
    amount = db.Column(db.Integer, nullable=True)  # minor units
    currency = db.Column(db.String(3), nullable=True)
    # "metadata" is reserved on declarative models
    meta = db.Column("metadata", db.JSON, nullable=False, default=dict)

    sent = db.Column(db.Boolean, nullable=False, default=False)
    sent_at = db.Column(db.DateTime, nullable=True)
    attempts = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        db.Index("ix_conversion_events_retry", "sent", "created_at"),
    )

    def to_dict(self) -> dict:
        from trafficwork.utils.helpers import iso, to_major_units
        major = to_major_units(self.amount)
        return {
            "id": self.id,
            "user_id": self.user_id,
            "event_type": self.event_type,
            "click_id": self.click_id,
            "status": self.status,
            "amount": float(major) if major is not None else None,
            "currency": self.currency,
            "metadata": self.meta or {},
            "sent": self.sent,
            "sent_at": iso(self.sent_at),
            "attempts": self.attempts,
            "created_at": iso(self.created_at),
        }

    def __repr__(self) -> str:
        return f"<ConversionEvent id={self.id} type={self.event_type} sent={self.sent}>"
