# Overview: Flask API routes for auction items; submission, editing, ordering and deletion.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import actor_name, require_role
from ..errors import LedgerError
from ..services import lot_service
from ..services.auction_state_service import check_auction_state
from ..services.lot_service import ITEM_EDIT_STATES


items_bp = Blueprint("items", __name__, url_prefix="/api")


def _item_fields(data: dict) -> dict:
    return {k: data.get(k) for k in lot_service.EDITABLE_FIELDS if k in data}


# =============================================================================
# SUBMISSION
# =============================================================================

@items_bp.post("/auctions/<int:auction_id>/items")
@require_role("admin", "maintenance")
def create_item_route(auction_id: int):
    """
    Request body:
    {
        "description": "Hamper",
        "contributor": "The Bakery",
        "artist": null, "notes": null, "photo": null  (optional)
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        item = lot_service.create_item(
            auction_id,
            description=data.get("description"),
            contributor=data.get("contributor"),
            artist=data.get("artist"),
            notes=data.get("notes"),
            photo=data.get("photo"),
            test_item=bool(data.get("test_item")),
            actor=actor_name(),
            is_admin=True,
        )
        return jsonify({"item": item.to_dict()}), 201
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create item")
        return jsonify({"error": "Internal server error"}), 500


@items_bp.post("/public/auctions/<public_id>/items")
@check_auction_state(ITEM_EDIT_STATES)
def submit_item_route(public_id: str):
    """Public item submission; refused while the auction is locked."""
    data = request.get_json(silent=True) or {}
    try:
        item = lot_service.create_item(
            g.auction.id,
            description=data.get("description"),
            contributor=data.get("contributor"),
            artist=data.get("artist"),
            notes=data.get("notes"),
            actor="public",
            is_admin=False,
        )
        return jsonify({"id": item.id, "item_number": item.item_number}), 201
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to store public submission")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# QUERIES
# =============================================================================

@items_bp.get("/auctions/<int:auction_id>/items")
@require_role("admin", "maintenance", "cashier")
def list_items_route(auction_id: int):
    """Query: ?sort=item_number&direction=asc"""
    try:
        result = lot_service.list_items(
            auction_id,
            sort=request.args.get("sort", "item_number"),
            direction=request.args.get("direction", "asc"),
        )
        return jsonify(result), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code


# =============================================================================
# EDITING
# =============================================================================

@items_bp.patch("/auctions/<int:auction_id>/items/<int:item_id>")
@require_role("admin", "maintenance")
def update_item_route(auction_id: int, item_id: int):
    """
    Request body: any of description, contributor, artist, notes, photo;
    plus optional "target_auction_id" to move the item to another auction.
    """
    data = request.get_json(silent=True) or {}
    try:
        item = lot_service.update_item(
            item_id,
            auction_id,
            _item_fields(data),
            actor=actor_name(),
            target_auction_id=data.get("target_auction_id"),
        )
        return jsonify({"item": item.to_dict()}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update item %s", item_id)
        return jsonify({"error": "Internal server error"}), 500


@items_bp.delete("/items/<int:item_id>")
@require_role("admin", "maintenance")
def delete_item_route(item_id: int):
    try:
        result = lot_service.delete_item(item_id, actor=actor_name())
        return jsonify({"message": "Item deleted", **result}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete item %s", item_id)
        return jsonify({"error": "Internal server error"}), 500


@items_bp.post("/auctions/<int:auction_id>/items/<int:item_id>/move-after")
@items_bp.post("/auctions/<int:auction_id>/items/<int:item_id>/move-after/<int:after_id>")
@require_role("admin", "maintenance")
def move_item_route(auction_id: int, item_id: int, after_id: int | None = None):
    """Without after_id the item moves to the top of the running order."""
    try:
        order = lot_service.move_item_after(auction_id, item_id, after_id, actor=actor_name())
        return jsonify({"message": "Moved", "order": order}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to move item %s", item_id)
        return jsonify({"error": "Internal server error"}), 500
