from trafficwork.extensions import db
from trafficwork.utils.helpers import utcnow


class WebhookEvent(db.Model):
    """One received provider notification. Never deleted by normal operation."""

    __tablename__ = "webhook_events"

    id = db.Column(db.Integer, primary_key=True)
    source = db.Column(db.String(32), nullable=False, default="stripe")
    event_id = db.Column(db.String(255), nullable=False, unique=True, index=True)
    event_type = db.Column(db.String(80), nullable=False, index=True)
    payload = db.Column(db.JSON, nullable=False, default=dict)
    processed = db.Column(db.Boolean, nullable=False, default=False, index=True)
    error = db.Column(db.Text, nullable=True)
    attempts = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    processed_at = db.Column(db.DateTime, nullable=True)

    @property
    def failed(self) -> bool:
        return bool(self.processed and self.error)

    def to_dict(self) -> dict:
        from trafficwork.utils.helpers import iso
        return {
            "id": self.id,
            "source": self.source,
            "event_id": self.event_id,
            "event_type": self.event_type,
            "processed": self.processed,
            "error": self.error,
            "attempts": self.attempts,
            "created_at": iso(self.created_at),
            "processed_at": iso(self.processed_at),
        }

    def __repr__(self) -> str:
        return f"<WebhookEvent {self.event_id} ({self.event_type}) processed={self.processed}>"
