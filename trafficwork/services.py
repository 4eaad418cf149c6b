"""
Construction of the domain services. Built once per app in create_app() and
kept on app.extensions; views and CLI commands reach them through the
accessors below instead of module-level singletons.
"""
import requests
from flask import current_app
from stripe import StripeClient

from trafficwork.extensions import db
from trafficwork.billing import WebhookReconciler
from trafficwork.tracking import PostbackDispatcher, ConversionTracker, RetrySweeper

_KEY = "trafficwork"


def init_services(app, stripe_client=None, http=None):
    cfg = app.config

    if stripe_client is None and cfg.get("STRIPE_SECRET_KEY"):
        stripe_client = StripeClient(cfg["STRIPE_SECRET_KEY"])
    if stripe_client is None:
        app.logger.warning("Stripe secret key missing; billing features will not work")
    app.extensions["stripe_client"] = stripe_client

    dispatcher = PostbackDispatcher(
        tracker_url=cfg.get("KEITARO_TRACKER_URL", ""),
        postback_key=cfg.get("KEITARO_POSTBACK_KEY", ""),
        timeout=float(cfg.get("KEITARO_TIMEOUT", 5)),
        http=http or requests.Session(),
    )
    if not dispatcher.enabled:
        app.logger.warning("KEITARO_TRACKER_URL missing; conversions will be stored but not sent")

    tracker = ConversionTracker(
        db.session,
        dispatcher,
        registration_status=cfg.get("KEITARO_STATUS_REGISTRATION", "reg"),
        purchase_status=cfg.get("KEITARO_STATUS_PURCHASE", "sale"),
    )
    sweeper = RetrySweeper(
        db.session,
        tracker,
        window_hours=int(cfg.get("RETRY_WINDOW_HOURS", 24)),
        batch_size=int(cfg.get("RETRY_BATCH_SIZE", 100)),
    )
    reconciler = WebhookReconciler(
        db.session,
        stripe_client,
        cfg.get("STRIPE_WEBHOOK_SECRET"),
        tracker=tracker,
        tolerance=int(cfg.get("STRIPE_WEBHOOK_TOLERANCE", 300)),
        annual_price_id=cfg.get("STRIPE_PRICE_ANNUAL"),
    )

    app.extensions[_KEY] = {
        "dispatcher": dispatcher,
        "tracker": tracker,
        "sweeper": sweeper,
        "reconciler": reconciler,
    }


def _get(name: str):
    return current_app.extensions[_KEY][name]


def dispatcher() -> PostbackDispatcher:
    return _get("dispatcher")


def tracker() -> ConversionTracker:
    return _get("tracker")


def sweeper() -> RetrySweeper:
    return _get("sweeper")


def reconciler() -> WebhookReconciler:
    return _get("reconciler")
