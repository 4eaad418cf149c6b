"""Exception taxonomy for webhook reconciliation and conversion postbacks."""


class TrafficWorkError(Exception):
    """Base class for errors raised by trafficwork services."""


class InvalidSignature(TrafficWorkError):
    """Inbound webhook authenticity could not be established (bad MAC or stale timestamp)."""


class MalformedEvent(TrafficWorkError):
    """Signed payload is not a usable event (bad JSON, missing envelope or required fields)."""


class HandlerFailure(TrafficWorkError):
    """A type-specific webhook handler raised; the provider is expected to redeliver."""

    def __init__(self, event_id: str, cause: Exception):
        super().__init__(f"{event_id}: {type(cause).__name__}: {cause}")
        self.event_id = event_id
        self.cause = cause


class PostbackDeliveryFailure(TrafficWorkError):
    """The tracker could not be reached or answered with a server error."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
