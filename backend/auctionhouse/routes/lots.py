# Overview: Flask API routes for the live auction; lot results plus rehearsal test bids.

from flask import Blueprint, current_app, jsonify, request

from ..decorators import actor_name, require_role
from ..errors import LedgerError
from ..services import lot_service


lots_bp = Blueprint("lots", __name__, url_prefix="/api/lots")


@lots_bp.post("/<int:item_id>/finalize")
@require_role("admin")
def finalize_lot_route(item_id: int):
    """
    Record the winner of a lot.

    Request body:
    {
        "auction_id": 1,
        "paddle": 101,
        "price": 50.00
    }

    Returns:
        200: lot recorded (auction_status shows any auto-settlement)
        400: invalid paddle / price
        409: auction not live/settlement, or lot already recorded
    """
    data = request.get_json(silent=True) or {}
    try:
        result = lot_service.finalize_lot(
            item_id,
            data.get("paddle"),
            data.get("price"),
            data.get("auction_id"),
            actor=actor_name(),
        )
        return jsonify({"message": "Lot finalised", **result}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to finalise lot %s", item_id)
        return jsonify({"error": "Internal server error"}), 500


@lots_bp.post("/<int:item_id>/undo")
@require_role("admin")
def undo_lot_route(item_id: int):
    data = request.get_json(silent=True) or {}
    try:
        item = lot_service.undo_lot(item_id, actor=actor_name(), auction_id=data.get("auction_id"))
        return jsonify({"message": "Bid retracted", "item": item.to_dict()}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to undo lot %s", item_id)
        return jsonify({"error": "Internal server error"}), 500


@lots_bp.get("/live/<int:auction_id>")
@require_role("admin", "cashier")
def live_feed_route(auction_id: int):
    """Query: ?unsold=true appends the unsold lots in running order."""
    include_unsold = request.args.get("unsold", "").lower() == "true"
    try:
        return jsonify(lot_service.list_live_feed(auction_id, include_unsold=include_unsold)), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code


# =============================================================================
# TEST BIDS
# =============================================================================

@lots_bp.post("/generate-test-bids")
@require_role("maintenance")
def generate_test_bids_route():
    """
    Finalise random unsold lots as test bids.

    Request body:
    {
        "auction_id": 1,
        "num_bids": 10,
        "num_bidders": 5
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        result = lot_service.generate_test_bids(
            data.get("auction_id"),
            data.get("num_bids"),
            data.get("num_bidders"),
            actor=actor_name(),
        )
        return jsonify({"message": f"{result['bids']} test bids created", **result}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to generate test bids")
        return jsonify({"error": "Internal server error"}), 500


@lots_bp.post("/delete-test-bids")
@require_role("maintenance")
def delete_test_bids_route():
    data = request.get_json(silent=True) or {}
    try:
        result = lot_service.delete_test_bids(data.get("auction_id"), actor=actor_name())
        return jsonify({"message": "Test bids deleted", **result}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete test bids")
        return jsonify({"error": "Internal server error"}), 500
