from .user import User, SUBSCRIPTION_STATUSES, SUBSCRIPTION_PLANS
from .payment import Payment
from .webhook_event import WebhookEvent
from .conversion_event import ConversionEvent

__all__ = [
    "User",
    "Payment",
    "WebhookEvent",
    "ConversionEvent",
    "SUBSCRIPTION_STATUSES",
    "SUBSCRIPTION_PLANS",
]
