# Overview: Flask API routes for reading the audit trail.

from flask import Blueprint, jsonify, request

from ..decorators import require_role
from ..errors import LedgerError
from ..services import audit_service


audit_bp = Blueprint("audit", __name__, url_prefix="/api")


@audit_bp.get("/audit-log")
@require_role("admin", "maintenance")
def audit_log_route():
    """Query: ?object_id=12&object_type=item&limit=100"""
    try:
        logs = audit_service.query_audit_log(
            object_id=request.args.get("object_id", type=int),
            object_type=request.args.get("object_type") or None,
            limit=request.args.get("limit", type=int),
        )
        return jsonify({"logs": logs}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code


@audit_bp.get("/items/<int:item_id>/history")
@require_role("admin", "maintenance")
def item_history_route(item_id: int):
    return jsonify({"history": audit_service.get_item_history(item_id)}), 200
