# Overview: Flask API routes for card payments; intents, polling, provider webhook and app callbacks.

# backend/auctionhouse/routes/payments.py
"""
Card Payment API Routes

WHY: SumUp reports completion through several untrusted channels. Every one
of them ends in payment_service.finalize_intent, which records the payment
at most once.

SECURITY:
- Intents are created and polled by cashiers
- The webhook and app callbacks are unauthenticated; they only ever trigger
  verification and never carry amounts we trust
"""

from flask import Blueprint, current_app, jsonify, make_response, request
from markupsafe import escape

from ..decorators import actor_name, require_role
from ..errors import LedgerError
from ..services import payment_service


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


CALLBACK_PAGE = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <title>SumUp Payment</title>
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
</head>
<body>
  <h1>SumUp Payment</h1>
  <p>SumUp replied with status: <strong>{status}</strong>.</p>
  <p>This window will close automatically in a moment.</p>
  <script>setTimeout(function () {{ window.close(); }}, 5000);</script>
</body>
</html>
"""


# =============================================================================
# INTENTS
# =============================================================================

@payments_bp.post("/intents")
@require_role("cashier")
def create_intent_route():
    """
    Request body:
    {
        "bidder_id": 12,
        "amount_minor": 4000,
        "channel": "hosted",  (hosted | app | app-ind)
        "auction_id": 1,  (optional)
        "note": "..."  (optional)
    }

    Returns:
        201: {intent_id, amount_minor, currency, hosted_link | deep_link}
        400: invalid input, or amount exceeds outstanding (outstanding_minor)
        409: auction not in settlement
        502: provider unavailable
        503: channel disabled
    """
    data = request.get_json(silent=True) or {}
    try:
        payload = payment_service.create_intent(
            data.get("bidder_id"),
            data.get("amount_minor"),
            data.get("channel"),
            data.get("note"),
            actor=actor_name(),
            auction_id=data.get("auction_id"),
        )
        return jsonify(payload), 201
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Intent create error")
        return jsonify({"error": "internal_error"}), 500


@payments_bp.get("/intents/<intent_id>")
@require_role("cashier")
def get_intent_route(intent_id: str):
    try:
        return jsonify(payment_service.get_intent(intent_id).to_dict()), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code


@payments_bp.post("/intents/<intent_id>/verify")
@require_role("cashier")
def verify_intent_route(intent_id: str):
    """Poll the provider for this intent and finalise it if paid."""
    try:
        outcome = payment_service.finalize_intent(intent_id, source="poll")
        intent = payment_service.get_intent(intent_id)
        return jsonify({"outcome": outcome, "intent": intent.to_dict()}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Intent verify error for %s", intent_id)
        return jsonify({"error": "internal_error"}), 500


# =============================================================================
# PROVIDER SIGNALS
# =============================================================================

@payments_bp.post("/sumup/webhook")
def sumup_webhook_route():
    """
    Server-to-server notification for hosted checkouts: {"id": "<checkout id>"}.

    Always acknowledged with 200 so SumUp does not retry on our errors;
    failures are logged and the intent stays pending for the next poll.
    """
    body = request.get_json(silent=True) or {}
    current_app.logger.debug("SumUp webhook received %s", body)
    try:
        outcome = payment_service.handle_webhook(body)
    except Exception:
        current_app.logger.exception("SumUp webhook error")
        outcome = "error"
    return jsonify({"ok": True, "outcome": outcome}), 200


@payments_bp.get("/sumup/callback/success")
@payments_bp.get("/sumup/callback/fail")
def sumup_app_callback_route():
    """
    SumUp app redirect. The app sometimes calls the success URL for failed
    payments, so both endpoints interpret the status parameter.
    """
    try:
        parsed = payment_service.handle_app_callback(request.args)
        status = parsed["status"]
    except Exception:
        current_app.logger.exception("SumUp app callback error at %s", request.path)
        status = ""

    response = make_response(CALLBACK_PAGE.format(status=escape(status or "unknown")), 200)
    response.headers["Content-Type"] = "text/html; charset=utf-8"
    return response
