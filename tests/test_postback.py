from decimal import Decimal
from urllib.parse import urlparse, parse_qs

import pytest
import requests

from trafficwork.errors import PostbackDeliveryFailure
from trafficwork.tracking import PostbackDispatcher, build_postback_url
from trafficwork.tracking.postback import postback_params
from trafficwork.tracking.statuses import ConversionStatus, is_valid_status
from conftest import FakeHttp


def _dispatcher(http, url="https://trk.example.test/"):
    return PostbackDispatcher(url, "secret-key", timeout=2.5, http=http)


def test_params_format_payout_and_currency():
    params = postback_params("abc", "sale", "k", amount=Decimal("9.99"), currency="usd")
    assert params == {"subid": "abc", "status": "sale", "key": "k", "payout": "9.99", "currency": "USD"}

    assert postback_params("abc", "reg", "k") == {"subid": "abc", "status": "reg", "key": "k"}
    assert postback_params("abc", "sale", "k", amount=29)["payout"] == "29.00"


def test_build_url_is_percent_encoded():
    url = build_postback_url("https://trk.example.test/", "a b&c", "sale", "k", amount=1.5, currency="eur")
    parsed = urlparse(url)
    assert parsed.path == "/postback"
    qs = parse_qs(parsed.query)
    assert qs["subid"] == ["a b&c"]
    assert qs["payout"] == ["1.50"]
    assert qs["currency"] == ["EUR"]


def test_send_success_uses_timeout_and_no_redirects():
    http = FakeHttp()
    assert _dispatcher(http).send("clk", "sale", amount=Decimal("9.99"), currency="USD") is True
    call = http.calls[0]
    assert call["url"] == "https://trk.example.test/postback"
    assert call["timeout"] == 2.5
    assert call["params"]["payout"] == "9.99"


@pytest.mark.parametrize("code", [200, 302, 404])
def test_non_server_errors_count_as_delivered(code):
    http = FakeHttp()
    http.status_code = code
    assert _dispatcher(http).send("clk", "reg") is True


def test_server_error_is_not_delivered():
    http = FakeHttp()
    http.status_code = 503
    assert _dispatcher(http).send("clk", "reg") is False


@pytest.mark.parametrize("exc", [requests.Timeout("slow"), requests.ConnectionError("refused")])
def test_network_errors_are_not_delivered(exc):
    http = FakeHttp()
    http.exc = exc
    assert _dispatcher(http).send("clk", "sale", amount=1) is False


def test_get_raises_typed_failure():
    http = FakeHttp()
    http.status_code = 500
    with pytest.raises(PostbackDeliveryFailure) as info:
        _dispatcher(http)._get({"subid": "clk"})
    assert info.value.status_code == 500


def test_missing_click_id_or_tracker_skips_network():
    http = FakeHttp()
    assert _dispatcher(http).send(None, "sale") is False
    assert _dispatcher(http, url="").send("clk", "sale") is False
    assert http.calls == []


def test_status_codes():
    assert ConversionStatus.SALE.value == "sale"
    assert ConversionStatus.REGISTRATION.value == "reg"
    assert is_valid_status("dep")
    assert not is_valid_status("bogus")


def test_unexpected_client_error_is_not_delivered():
    http = FakeHttp()
    http.exc = ValueError("Timeout value connect was -1")
    assert _dispatcher(http).send("clk", "sale", amount=1) is False
