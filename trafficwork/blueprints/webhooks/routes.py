from flask import request, jsonify, current_app
from . import bp
from trafficwork.extensions import csrf, limiter
from trafficwork.errors import InvalidSignature, MalformedEvent
from trafficwork import services


# ----- Stripe Webhook (subscriptions lifecycle) -----
@csrf.exempt
@limiter.exempt
@bp.post("/stripe")
def stripe_webhook():
    """
    Stripe -> /webhooks/stripe
    200 {received: true} when stored (or already seen); 400 on bad signature or
    payload; 500 when a handler fails so Stripe redelivers.
    """
    raw_bytes = request.get_data(cache=False, as_text=False) or b""
    sig_header = request.headers.get("Stripe-Signature", "")

    try:
        result = services.reconciler().handle(raw_bytes, sig_header)
    except InvalidSignature:
        return jsonify({"error": "invalid_signature"}), 400
    except MalformedEvent as e:
        current_app.logger.warning("stripe webhook malformed: %s", e)
        return jsonify({"error": "malformed_event"}), 400

    body = {"received": True}
    if result.duplicate:
        body["duplicate"] = True
    return jsonify(body), 200
