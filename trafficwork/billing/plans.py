from flask import current_app

PLAN_MONTHLY = "monthly"
PLAN_ANNUAL = "annual"


def first_price(sub_obj: dict) -> dict:
    items = (sub_obj.get("items") or {}).get("data") or []
    if not items:
        return {}
    return items[0].get("price") or {}


def resolve_plan(*, price_id: str | None, interval: str | None = None, annual_price_id: str | None = None) -> str:
    """
    Determine the plan from the subscription's price.
    Known Price IDs from config win; otherwise fall back to the billing interval.
    """
    if annual_price_id is None:
        annual_price_id = current_app.config.get("STRIPE_PRICE_ANNUAL")
    if annual_price_id and price_id == annual_price_id:
        return PLAN_ANNUAL
    if interval == "year":
        return PLAN_ANNUAL
    return PLAN_MONTHLY


def plan_for_subscription(sub_obj: dict, annual_price_id: str | None = None) -> str:
    price = first_price(sub_obj)
    interval = (price.get("recurring") or {}).get("interval")
    return resolve_plan(price_id=price.get("id"), interval=interval, annual_price_id=annual_price_id)


# Processor statuses outside our enumeration collapse onto the nearest one
_STATUS_ALIASES = {
    "incomplete": "inactive",
    "incomplete_expired": "canceled",
    "paused": "inactive",
}


def normalize_status(status: str | None) -> str:
    from trafficwork.models import SUBSCRIPTION_STATUSES
    if status in SUBSCRIPTION_STATUSES:
        return status
    return _STATUS_ALIASES.get(status or "", "inactive")
