from trafficwork.extensions import db
from trafficwork.models import User, ConversionEvent


def _register(client, email="new@example.test", password="secret123", **extra):
    return client.post("/auth/register", json={"email": email, "password": password, **extra})


def test_register_with_click_id_sends_registration_postback(app, client, fake_http):
    resp = _register(client, click_id="clk_abc", name="Ann")
    assert resp.status_code == 201
    body = resp.get_json()
    assert body["email"] == "new@example.test"
    assert body["click_id"] == "clk_abc"
    assert body["subscription"]["status"] == "inactive"

    with app.app_context():
        user = User.query.filter_by(email="new@example.test").one()
        assert user.registration_source == "tracker"
        conv = ConversionEvent.query.one()
        assert conv.event_type == "registration"
        assert conv.user_id == user.id
        assert conv.sent is True

    assert fake_http.calls[0]["params"]["status"] == "reg"
    assert fake_http.calls[0]["params"]["subid"] == "clk_abc"


def test_register_without_click_id_records_no_conversion(app, client, fake_http):
    assert _register(client).status_code == 201
    with app.app_context():
        assert ConversionEvent.query.count() == 0
        assert User.query.one().registration_source == "direct"
    assert fake_http.calls == []


def test_registration_survives_tracker_outage(app, client, fake_http):
    fake_http.status_code = 500
    assert _register(client, click_id="clk_down").status_code == 201
    with app.app_context():
        assert ConversionEvent.query.one().sent is False


def test_click_id_from_landing_query_is_remembered(app, client):
    resp = client.get("/healthz?subid=clk_land")
    assert resp.status_code == 200
    assert any("keitaro_subid=clk_land" in c for c in resp.headers.getlist("Set-Cookie"))

    assert _register(client).status_code == 201
    with app.app_context():
        assert User.query.one().click_id == "clk_land"


def test_register_validation_and_duplicates(client):
    resp = _register(client, email="nope", password="x")
    assert resp.status_code == 400
    assert set(resp.get_json()["errors"]) == {"email", "password"}

    assert _register(client, email="dup@example.test").status_code == 201
    assert _register(client, email="DUP@example.test").status_code == 409


def test_login_logout_me(app, client):
    _register(client, email="me@example.test")
    client.post("/auth/logout")
    assert client.get("/auth/me").status_code == 401

    bad = client.post("/auth/login", json={"email": "me@example.test", "password": "wrong"})
    assert bad.status_code == 401

    ok = client.post("/auth/login", json={"email": "me@example.test", "password": "secret123"})
    assert ok.status_code == 200
    me = client.get("/auth/me")
    assert me.status_code == 200
    assert me.get_json()["email"] == "me@example.test"

    with app.app_context():
        assert db.session.query(User).one().last_login_at is not None


def test_csrf_token_endpoint(client):
    resp = client.get("/auth/csrf")
    assert resp.status_code == 200
    assert resp.get_json()["csrf_token"]


def test_registration_survives_unexpected_postback_error(app, client, fake_http):
    # e.g. requests rejecting a misconfigured timeout before any network I/O
    fake_http.exc = ValueError("Timeout value connect was -1")
    resp = _register(client, click_id="clk_cfg")
    assert resp.status_code == 201
    with app.app_context():
        conv = ConversionEvent.query.one()
        assert conv.sent is False
        assert conv.attempts == 1


def test_registration_survives_conversion_ledger_error(app, client, monkeypatch):
    from trafficwork import services

    def _boom(*args, **kwargs):
        raise RuntimeError("ledger unavailable")

    with app.app_context():
        monkeypatch.setattr(services.tracker(), "record_registration", _boom)
    resp = _register(client, email="ledger@example.test", click_id="clk_x")
    assert resp.status_code == 201
    with app.app_context():
        assert User.query.filter_by(email="ledger@example.test").count() == 1
        assert ConversionEvent.query.count() == 0


def test_timestamps_are_naive_utc_from_the_app(app, client):
    from trafficwork.utils.helpers import utcnow

    before = utcnow()
    assert _register(client, email="clock@example.test").status_code == 201
    after = utcnow()
    with app.app_context():
        user = User.query.filter_by(email="clock@example.test").one()
        assert user.created_at.tzinfo is None
        assert before <= user.created_at <= after
        assert before <= user.updated_at <= after
