# Overview: Service-layer operations for the audit trail; append-only event log.

"""
Audit Trail

INVARIANTS:
- Append-only. Entries are never updated; only purge_audit_log deletes.
- Writing an audit entry must never block or undo a money/lot mutation.
  record() is called AFTER the primary change is committed, and any failure
  here is logged and swallowed.
- object_type is one of AUDIT_TYPES. Unknown types are logged as a warning
  but still written.
- item / bidder / payment events are enriched with auction_id and
  auction_short_name (and the item description) when the caller did not
  supply them. Lookup problems mean "write without enrichment".
"""

from __future__ import annotations

import json
from datetime import datetime
from decimal import Decimal
from typing import Any

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..errors import ValidationError
from ..extensions import db
from ..models import AuditLogEntry, Auction, Bidder, Item, Payment


AUDIT_TYPES = ("item", "bidder", "payment", "auction", "database", "server")


def _json_default(value: Any):
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _short_name(auction_id: int | None) -> str | None:
    if auction_id is None:
        return None
    row = db.session.query(Auction.short_name).filter(Auction.id == auction_id).first()
    return row.short_name if row else None


def _enrich(object_type: str, object_id: int | None, details: dict) -> None:
    if object_id is None:
        return

    if object_type == "item":
        if all(k in details for k in ("auction_id", "description", "auction_short_name")):
            return
        row = (
            db.session.query(Item.auction_id, Item.description, Auction.short_name)
            .outerjoin(Auction, Auction.id == Item.auction_id)
            .filter(Item.id == object_id)
            .first()
        )
        if row:
            details.setdefault("auction_id", row.auction_id)
            details.setdefault("description", row.description)
            details.setdefault("auction_short_name", row.short_name)
        return

    if object_type == "bidder":
        query = db.session.query(Bidder.auction_id).filter(Bidder.id == object_id)
    elif object_type == "payment":
        query = (
            db.session.query(Bidder.auction_id)
            .join(Payment, Payment.bidder_id == Bidder.id)
            .filter(Payment.id == object_id)
        )
    else:
        return

    if "auction_id" in details and "auction_short_name" in details:
        return
    row = query.first()
    if row:
        details.setdefault("auction_id", row.auction_id)
        if "auction_short_name" not in details:
            short_name = _short_name(row.auction_id)
            if short_name is not None:
                details["auction_short_name"] = short_name


def record(
    user: str | None,
    action: str,
    object_type: str,
    object_id: int | None,
    details: dict | None = None,
) -> AuditLogEntry | None:
    """
    Append one audit entry and commit it.

    Returns the entry, or None when the write failed (the failure is logged).
    """
    logger = current_app.logger
    details = dict(details or {})

    if object_type not in AUDIT_TYPES:
        logger.warning("Audit log: unknown type '%s' for action '%s'", object_type, action)

    if object_type in ("item", "bidder", "payment"):
        try:
            _enrich(object_type, object_id, details)
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.warning("Audit log lookup failed for %s %s: %s", object_type, object_id, exc)

    try:
        entry = AuditLogEntry(
            user=user,
            action=action,
            object_type=object_type,
            object_id=object_id,
            details=json.dumps(details, default=_json_default),
        )
        db.session.add(entry)
        db.session.commit()
        return entry
    except (SQLAlchemyError, TypeError) as exc:
        db.session.rollback()
        logger.error("Failed to record audit event %s/%s %s: %s", object_type, object_id, action, exc)
        return None


# =============================================================================
# QUERIES
# =============================================================================

def query_audit_log(
    object_id: int | None = None,
    object_type: str | None = None,
    limit: int | None = None,
) -> list[dict]:
    """
    Audit entries, newest first, with item number / auction for item events.

    Raises:
        ValidationError: unknown object_type
    """
    if object_type and object_type not in AUDIT_TYPES:
        raise ValidationError("Invalid filter settings.", object_type=object_type)

    query = (
        db.session.query(AuditLogEntry, Item.auction_id, Item.item_number, Auction.short_name)
        .outerjoin(
            Item,
            db.and_(AuditLogEntry.object_type == "item", AuditLogEntry.object_id == Item.id),
        )
        .outerjoin(Auction, Auction.id == Item.auction_id)
    )
    if object_id:
        query = query.filter(AuditLogEntry.object_id == object_id)
    if object_type:
        query = query.filter(AuditLogEntry.object_type == object_type)

    query = query.order_by(AuditLogEntry.created_at.desc(), AuditLogEntry.id.desc())
    if limit:
        query = query.limit(limit)

    rows = []
    for entry, auction_id, item_number, short_name in query.all():
        row = entry.to_dict()
        row["auction_id"] = auction_id
        row["item_number"] = item_number
        row["short_name"] = short_name
        rows.append(row)
    return rows


def get_item_history(item_id: int) -> list[dict]:
    """Audit entries for one item, newest first."""
    entries = (
        db.session.query(AuditLogEntry)
        .filter_by(object_type="item", object_id=item_id)
        .order_by(AuditLogEntry.created_at.desc(), AuditLogEntry.id.desc())
        .all()
    )
    return [e.to_dict() for e in entries]


# =============================================================================
# MAINTENANCE
# =============================================================================

def purge_audit_log(*, before: datetime | None = None) -> int:
    """
    Delete audit entries created before `before` (all entries when None).

    This is the only code path that removes audit rows.
    """
    query = db.session.query(AuditLogEntry)
    if before is not None:
        query = query.filter(AuditLogEntry.created_at < before)
    deleted = query.delete(synchronize_session=False)
    db.session.commit()
    current_app.logger.info("Purged %s audit log entries (before=%s)", deleted, before)
    return deleted
