import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from trafficwork.models import ConversionEvent
from trafficwork.observability import log_event
from trafficwork.utils.helpers import utcnow
from .tracker import ConversionTracker

logger = logging.getLogger(__name__)

RETRY_WINDOW_HOURS = 24
RETRY_BATCH_SIZE = 100


@dataclass
class SweepResult:
    selected: int = 0
    delivered: int = 0
    failed: int = 0

    def to_dict(self) -> dict:
        return {"selected": self.selected, "delivered": self.delivered, "failed": self.failed}


class RetrySweeper:
    """
    Re-sends unsent conversions created inside the retry window. Older rows are
    abandoned on purpose. Runs only when an operator or scheduler calls sweep().
    """

    def __init__(self, session, tracker: ConversionTracker,
                 window_hours: int = RETRY_WINDOW_HOURS, batch_size: int = RETRY_BATCH_SIZE):
        self.session = session
        self.tracker = tracker
        self.window = timedelta(hours=window_hours)
        self.batch_size = batch_size

    def eligible(self, now: datetime | None = None) -> list[ConversionEvent]:
        cutoff = (now or utcnow()) - self.window
        return (
            self.session.query(ConversionEvent)
            .filter(
                ConversionEvent.sent.is_(False),
                ConversionEvent.click_id.isnot(None),
                ConversionEvent.created_at >= cutoff,
            )
            .order_by(ConversionEvent.created_at.asc(), ConversionEvent.id.asc())
            .limit(self.batch_size)
            .all()
        )

    def sweep(self, now: datetime | None = None) -> SweepResult:
        rows = self.eligible(now)
        result = SweepResult(selected=len(rows))
        log_event(logger, "postback_retry_started", selected=result.selected)

        for row in rows:
            if self.tracker.deliver(row):
                result.delivered += 1
            else:
                result.failed += 1
            # Commit per row so a crash mid-batch keeps what was already delivered
            self.session.commit()

        log_event(logger, "postback_retry_finished", **result.to_dict())
        return result
