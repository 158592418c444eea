# Overview: Flask API routes for settlement; bidder balances, manual payments and reversals.

"""
Settlement API Routes

WHY: After the hammer falls the cashier collects what each bidder owes.

DESIGN:
- Balances are always computed from items and payments at read time
- Manual payments only (cash, card-manual, paypal-manual); card payments
  go through /api/payments/intents
- Refunds are reversals: a new negative payment row, never an edit
"""

from flask import Blueprint, current_app, jsonify, request

from ..decorators import actor_name, require_role
from ..errors import LedgerError, ValidationError
from ..services import lot_service, payment_service


settlement_bp = Blueprint("settlement", __name__, url_prefix="/api/settlement")


def _auction_id_arg() -> int:
    auction_id = request.args.get("auction_id", type=int)
    if not auction_id or auction_id <= 0:
        raise ValidationError("auction_id query param required")
    return auction_id


# =============================================================================
# BALANCES
# =============================================================================

@settlement_bp.get("/bidders")
@require_role("cashier", "admin", "maintenance")
def list_bidders_route():
    try:
        auction_id = _auction_id_arg()
        lot_service.get_auction(auction_id)
        return jsonify({"bidders": lot_service.list_settlement_bidders(auction_id)}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code


@settlement_bp.get("/bidders/<int:bidder_id>")
@require_role("cashier", "admin", "maintenance")
def bidder_detail_route(bidder_id: int):
    try:
        return jsonify(lot_service.get_bidder_detail(bidder_id, _auction_id_arg())), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code


@settlement_bp.get("/summary")
@require_role("cashier", "admin", "maintenance")
def summary_route():
    try:
        auction_id = _auction_id_arg()
        lot_service.get_auction(auction_id)
        return jsonify(lot_service.get_auction_payment_summary(auction_id)), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code


@settlement_bp.get("/payment-methods")
@require_role("cashier", "maintenance")
def payment_methods_route():
    return jsonify(payment_service.get_payment_methods()), 200


# =============================================================================
# PAYMENTS
# =============================================================================

@settlement_bp.post("/payments/<int:auction_id>")
@require_role("cashier")
def record_payment_route(auction_id: int):
    """
    Request body:
    {
        "bidder_id": 12,
        "amount": 10.00,
        "method": "cash",  (cash | card-manual | paypal-manual)
        "note": "..."  (optional)
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        result = payment_service.record_payment(
            auction_id,
            data.get("bidder_id"),
            data.get("amount"),
            data.get("method") or "cash",
            data.get("note"),
            actor=actor_name(),
        )
        return jsonify({"ok": True, **result}), 201
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record payment in auction %s", auction_id)
        return jsonify({"error": "Failed to record payment"}), 500


@settlement_bp.post("/payments/<int:payment_id>/reverse")
@require_role("cashier", "admin")
def reverse_payment_route(payment_id: int):
    """
    Request body:
    {
        "auction_id": 1,
        "reason": "Overpaid",
        "amount": 5.00,  (optional, defaults to the full remaining amount)
        "note": "..."  (optional)
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        if not data.get("auction_id"):
            raise ValidationError("auction_id is required")
        result = payment_service.reverse_payment(
            payment_id,
            data.get("reason"),
            data.get("amount"),
            auction_id=data.get("auction_id"),
            actor=actor_name(),
            note=data.get("note"),
        )
        return jsonify({"ok": True, **result}), 201
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Payment reverse error for payment %s", payment_id)
        return jsonify({"error": "Payment reverse error"}), 500
