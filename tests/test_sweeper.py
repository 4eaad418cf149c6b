from datetime import timedelta

from trafficwork import services
from trafficwork.extensions import db
from trafficwork.models import ConversionEvent
from trafficwork.utils.helpers import utcnow


def _row(age, click_id="clk", sent=False, amount=500):
    return ConversionEvent(
        event_type="purchase",
        click_id=click_id,
        status="sale",
        amount=amount,
        currency="USD",
        sent=sent,
        attempts=1,
        created_at=utcnow() - age,
    )


def test_sweep_retries_only_recent_unsent_rows(app, fake_http):
    with app.app_context():
        fresh = _row(timedelta(hours=1), click_id="clk_fresh")
        stale = _row(timedelta(hours=25), click_id="clk_stale")
        done = _row(timedelta(hours=2), click_id="clk_done", sent=True)
        db.session.add_all([fresh, stale, done])
        db.session.commit()
        fresh_id, stale_id = fresh.id, stale.id

        result = services.sweeper().sweep()
        assert result.to_dict() == {"selected": 1, "delivered": 1, "failed": 0}

        assert db.session.get(ConversionEvent, fresh_id).sent is True
        assert db.session.get(ConversionEvent, fresh_id).attempts == 2
        assert db.session.get(ConversionEvent, stale_id).sent is False

    assert [c["params"]["subid"] for c in fake_http.calls] == ["clk_fresh"]
    assert fake_http.calls[0]["params"]["payout"] == "5.00"


def test_sweep_counts_failures_and_keeps_rows_unsent(app, fake_http):
    fake_http.status_code = 502
    with app.app_context():
        db.session.add_all([_row(timedelta(minutes=5)), _row(timedelta(minutes=10))])
        db.session.commit()

        result = services.sweeper().sweep()
        assert (result.selected, result.delivered, result.failed) == (2, 0, 2)
        assert ConversionEvent.query.filter_by(sent=False).count() == 2


def test_sweep_orders_oldest_first_and_respects_batch(app):
    sweeper = services.sweeper
    with app.app_context():
        rows = [_row(timedelta(minutes=m), click_id=f"clk_{m}") for m in (30, 90, 60)]
        db.session.add_all(rows)
        db.session.commit()

        picked = sweeper().eligible()
        assert [r.click_id for r in picked] == ["clk_90", "clk_60", "clk_30"]

        original = sweeper().batch_size
        sweeper().batch_size = 2
        try:
            assert len(sweeper().eligible()) == 2
        finally:
            sweeper().batch_size = original
