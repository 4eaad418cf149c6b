from .events import decode_event
from .reconciler import WebhookReconciler, ReconcileResult

__all__ = ["decode_event", "WebhookReconciler", "ReconcileResult"]
