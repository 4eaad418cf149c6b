"""
Outbound conversion postbacks to the Keitaro tracker.

GET <tracker>/postback?subid=<click id>&status=<code>&key=<secret>[&payout=..][&currency=..]
The dispatcher reports delivery as a boolean and never raises: attribution
must not block the registration or payment that triggered it.
"""
import logging
from decimal import Decimal
from urllib.parse import urlencode

import requests

from trafficwork.errors import PostbackDeliveryFailure
from trafficwork.observability import log_event

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0


def _format_payout(amount) -> str:
    return str(Decimal(str(amount)).quantize(Decimal("0.01")))


def postback_params(click_id: str, status: str, key: str, amount=None, currency: str | None = None, **extra) -> dict:
    params = {"subid": click_id, "status": status, "key": key}
    if amount is not None:
        params["payout"] = _format_payout(amount)
    if currency:
        params["currency"] = currency.upper()
    for name, value in extra.items():
        if value is not None:
            params[name] = str(value)
    return params


def build_postback_url(tracker_url: str, click_id: str, status: str, key: str, amount=None, currency: str | None = None, **extra) -> str:
    """Full postback URL, for debugging and the admin view."""
    params = postback_params(click_id, status, key, amount=amount, currency=currency, **extra)
    return f"{tracker_url.rstrip('/')}/postback?{urlencode(params)}"


class PostbackDispatcher:
    def __init__(self, tracker_url: str, postback_key: str, timeout: float = DEFAULT_TIMEOUT, http: requests.Session | None = None):
        self.tracker_url = (tracker_url or "").rstrip("/")
        self.postback_key = postback_key or ""
        self.timeout = timeout
        self.http = http or requests.Session()

    @property
    def enabled(self) -> bool:
        return bool(self.tracker_url)

    def send(self, click_id: str | None, status: str, amount=None, currency: str | None = None) -> bool:
        """
        amount is in major currency units. Returns True when the tracker accepted
        delivery (any status below 500), False otherwise.
        """
        if not click_id:
            log_event(logger, "attribution_missing", status=status)
            return False
        if not self.enabled:
            log_event(logger, "postback_skipped", logging.WARNING, reason="tracker_not_configured", click_id=click_id, status=status)
            return False

        params = postback_params(click_id, status, self.postback_key, amount=amount, currency=currency)
        try:
            code = self._get(params)
        except PostbackDeliveryFailure as exc:
            log_event(
                logger, "postback_failed", logging.ERROR,
                click_id=click_id, status=status, payout=params.get("payout"),
                http_status=exc.status_code, error=str(exc),
            )
            return False
        except Exception as exc:
            # Misconfiguration (bad timeout, bad URL) must not break the caller either
            log_event(
                logger, "postback_failed", logging.ERROR,
                click_id=click_id, status=status, payout=params.get("payout"),
                error=f"{type(exc).__name__}: {exc}",
            )
            return False

        log_event(logger, "postback_sent", click_id=click_id, status=status, payout=params.get("payout"), http_status=code)
        return True

    def _get(self, params: dict) -> int:
        url = f"{self.tracker_url}/postback"
        try:
            resp = self.http.get(url, params=params, timeout=self.timeout, allow_redirects=False)
        except requests.Timeout as exc:
            raise PostbackDeliveryFailure(f"timeout after {self.timeout}s") from exc
        except requests.RequestException as exc:
            raise PostbackDeliveryFailure(f"{type(exc).__name__}: {exc}") from exc

        # Tracker-side business rejections come back as 2xx/4xx; only server errors are retryable
        if resp.status_code >= 500:
            raise PostbackDeliveryFailure(f"tracker answered {resp.status_code}", status_code=resp.status_code)
        return resp.status_code
