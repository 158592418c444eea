# Overview: Flask API routes for auction administration and lifecycle status.

"""
Auction API Routes

SECURITY:
- Creating, deleting and resetting auctions is maintenance-only
- Status changes: maintenance always; admin only when the auction allows it
- The public lookup exposes only what a submission form needs
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import actor_name, require_role
from ..errors import LedgerError
from ..services import auction_service
from ..services.auction_service import RESET_STATES
from ..services.auction_state_service import check_auction_state, resolve_auction, set_auction_status


auctions_bp = Blueprint("auctions", __name__, url_prefix="/api")


# =============================================================================
# AUCTIONS
# =============================================================================

@auctions_bp.post("/auctions")
@require_role("maintenance")
def create_auction_route():
    """
    Request body:
    {
        "short_name": "spring26",
        "full_name": "Spring Fair 2026",
        "logo": "spring.png"  (optional)
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        auction = auction_service.create_auction(
            data.get("short_name") or "",
            data.get("full_name") or "",
            data.get("logo"),
            actor=actor_name(),
        )
        return jsonify({"auction": auction.to_dict()}), 201
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Create auction error")
        return jsonify({"error": "Could not create auction"}), 500


@auctions_bp.get("/auctions")
@require_role("maintenance", "admin", "cashier")
def list_auctions_route():
    return jsonify({"auctions": auction_service.list_auctions()}), 200


@auctions_bp.delete("/auctions/<int:auction_id>")
@require_role("maintenance")
def delete_auction_route(auction_id: int):
    try:
        result = auction_service.delete_auction(auction_id, actor=actor_name())
        return jsonify(result), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Delete auction error")
        return jsonify({"error": "Delete failed"}), 500


@auctions_bp.post("/auctions/<int:auction_id>/status")
@require_role("admin", "maintenance")
def update_status_route(auction_id: int):
    """Request body: {"status": "live"}"""
    data = request.get_json(silent=True) or {}
    try:
        auction = set_auction_status(
            auction_id,
            data.get("status") or "",
            actor=actor_name(),
            role=g.identity.role,
        )
        return jsonify({"auction": auction.to_dict()}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update auction status")
        return jsonify({"error": "Failed to update auction status"}), 500


@auctions_bp.post("/auctions/<int:auction_id>/admin-state-permission")
@require_role("maintenance")
def admin_state_permission_route(auction_id: int):
    """Request body: {"admin_can_change_state": true}"""
    data = request.get_json(silent=True) or {}
    try:
        auction = auction_service.set_admin_state_permission(
            auction_id, data.get("admin_can_change_state"), actor=actor_name()
        )
        return jsonify({"auction": auction.to_dict()}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code


@auctions_bp.post("/auctions/<int:auction_id>/reset")
@require_role("maintenance")
@check_auction_state(RESET_STATES)
def reset_auction_route(auction_id: int):
    """Remove all items, bidders, payments and intents from an auction in setup/archived."""
    try:
        deleted = auction_service.reset_auction(g.auction.id, actor=actor_name())
        return jsonify({"ok": True, "auction_id": g.auction.id, "deleted": deleted}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Reset failed for auction %s", auction_id)
        return jsonify({"error": "Reset failed"}), 500


# =============================================================================
# PUBLIC LOOKUP
# =============================================================================

@auctions_bp.get("/public/auctions/<public_id>")
def public_auction_route(public_id: str):
    try:
        ref = resolve_auction(public_id=public_id)
        auction = auction_service.get_auction(ref.id)
        return jsonify({
            "short_name": auction.short_name,
            "full_name": auction.full_name,
            "logo": auction.logo,
            "status": ref.status,
        }), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
