# Overview: Service-layer operations for auction administration (create, list, delete, reset).

"""
Auction administration

- short_name is lower-case, has no whitespace, is unique and never changes.
- An auction can only be deleted while it has no items. Deleting the last
  remaining auction resets the whole ledger, including id counters, so the
  next event starts from a clean database.
- Every path that removes or rewrites an auction's status invalidates the
  state cache entry after its commit.
"""

from __future__ import annotations

import re

from flask import current_app
from sqlalchemy import text

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import Auction, Bidder, Item, Payment, PaymentIntent
from . import audit_service
from .concurrency import run_with_retry
from .state_cache import StateCache, get_state_cache


RESET_STATES = ("setup", "archived")
DEFAULT_LOGO = "default_logo.png"

_LEDGER_TABLES = ("auctions", "bidders", "items", "payments")


def create_auction(short_name: str, full_name: str, logo: str | None = None, *, actor: str) -> Auction:
    """
    Raises:
        ValidationError: missing/invalid names, duplicate short_name, or auction limit reached
    """
    if not short_name or not full_name or not str(full_name).strip():
        raise ValidationError("Missing short_name or full_name")
    if re.search(r"\s", short_name.strip()) or not short_name.strip():
        raise ValidationError("Short name must not contain spaces.")

    short_name = short_name.strip().lower()
    full_name = full_name.strip()
    max_auctions = current_app.config.get("MAX_AUCTIONS", 20)

    def _op():
        if db.session.query(Auction.id).filter(Auction.short_name == short_name).first():
            raise ValidationError("Short name must be unique. This one already exists.", short_name=short_name)
        if db.session.query(Auction).count() >= max_auctions:
            current_app.logger.warning("Auction limit reached. Maximum allowed is %s.", max_auctions)
            raise ValidationError(f"Cannot create more than {max_auctions} auctions.", max_auctions=max_auctions)

        auction = Auction(short_name=short_name, full_name=full_name, logo=logo or DEFAULT_LOGO, status="setup")
        db.session.add(auction)
        db.session.commit()
        return auction

    auction = run_with_retry(_op)
    current_app.logger.info("Created new auction Id %s %s with logo: %s", auction.id, short_name, auction.logo)
    audit_service.record(actor, "create auction", "auction", auction.id, {
        "short_name": short_name,
        "full_name": full_name,
        "logo": auction.logo,
    })
    return auction


def list_auctions() -> list[dict]:
    """All auctions in id order with their item counts."""
    rows = (
        db.session.query(Auction, db.func.count(Item.id))
        .outerjoin(Item, Item.auction_id == Auction.id)
        .group_by(Auction.id)
        .order_by(Auction.id)
        .all()
    )
    return [{**auction.to_dict(), "item_count": count} for auction, count in rows]


def get_auction(auction_id: int) -> Auction:
    auction = db.session.get(Auction, auction_id)
    if not auction:
        raise NotFoundError(f"Auction {auction_id} not found", auction_id=auction_id)
    return auction


def _reset_ledger() -> None:
    """Empty every ledger table and its autoincrement counter. Does not commit."""
    db.session.query(PaymentIntent).delete(synchronize_session=False)
    db.session.query(Payment).delete(synchronize_session=False)
    db.session.query(Item).delete(synchronize_session=False)
    db.session.query(Bidder).delete(synchronize_session=False)
    db.session.query(Auction).delete(synchronize_session=False)

    if db.engine.dialect.name == "sqlite":
        for table in _LEDGER_TABLES:
            db.session.execute(text("DELETE FROM sqlite_sequence WHERE name = :name"), {"name": table})
            current_app.logger.debug("%s ID counter reset", table)


def delete_auction(auction_id: int, *, actor: str, cache: StateCache | None = None) -> dict:
    """
    Delete an empty auction. Deleting the last auction resets the database.

    Returns {"deleted": id, "database_reset": bool}.

    Raises:
        NotFoundError: auction missing
        ValidationError: auction still has items
    """
    cache = cache or get_state_cache()

    def _op():
        auction = db.session.get(Auction, auction_id)
        if not auction:
            raise NotFoundError(f"Auction {auction_id} not found", auction_id=auction_id)
        if db.session.query(Item).filter_by(auction_id=auction_id).count() > 0:
            current_app.logger.warning("Can't delete - Auction %s contains items", auction_id)
            raise ValidationError("Cannot delete auction with associated items.", auction_id=auction_id)

        db.session.query(PaymentIntent).filter(
            PaymentIntent.bidder_id.in_(db.session.query(Bidder.id).filter(Bidder.auction_id == auction_id))
        ).delete(synchronize_session=False)
        db.session.query(Payment).filter(
            Payment.bidder_id.in_(db.session.query(Bidder.id).filter(Bidder.auction_id == auction_id))
        ).delete(synchronize_session=False)
        db.session.query(Bidder).filter_by(auction_id=auction_id).delete(synchronize_session=False)
        db.session.delete(auction)
        db.session.flush()

        reset = db.session.query(Auction).count() == 0
        if reset:
            current_app.logger.info("Deleting last auction. Resetting database")
            _reset_ledger()
        db.session.commit()
        return reset

    reset = run_with_retry(_op)
    if reset:
        cache.clear()
    else:
        cache.invalidate(auction_id)

    current_app.logger.info("Auction %s deleted", auction_id)
    audit_service.record(actor, "delete auction", "auction", auction_id, {})
    if reset:
        audit_service.record(actor, "reset database", "database", None, {"reason": "last auction deleted"})
    return {"deleted": auction_id, "database_reset": reset}


def set_admin_state_permission(auction_id: int, enabled, *, actor: str) -> Auction:
    """Allow or forbid admins to change this auction's status."""
    enabled = bool(enabled)

    def _op():
        auction = get_auction(auction_id)
        auction.admin_can_change_state = enabled
        db.session.commit()
        return auction

    auction = run_with_retry(_op)
    current_app.logger.info("Updated admin state control for auction %s set to: %s", auction_id, enabled)
    audit_service.record(actor, "auction settings", "auction", auction_id, {"admin_can_change_state": enabled})
    return auction


def reset_auction(auction_id: int, *, actor: str, cache: StateCache | None = None) -> dict:
    """
    Remove every intent, payment, item and bidder of one auction.

    The auction row itself stays. Callers gate this to setup/archived.

    Returns the deleted row counts per table.
    """
    cache = cache or get_state_cache()

    def _op():
        get_auction(auction_id)
        bidder_ids = db.session.query(Bidder.id).filter(Bidder.auction_id == auction_id)

        deleted = {
            "payment_intents": db.session.query(PaymentIntent)
            .filter(PaymentIntent.bidder_id.in_(bidder_ids))
            .delete(synchronize_session=False),
            "payments": db.session.query(Payment)
            .filter(Payment.bidder_id.in_(bidder_ids))
            .delete(synchronize_session=False),
            "items": db.session.query(Item).filter_by(auction_id=auction_id).delete(synchronize_session=False),
            "bidders": db.session.query(Bidder).filter_by(auction_id=auction_id).delete(synchronize_session=False),
        }
        db.session.commit()
        return deleted

    deleted = run_with_retry(_op)
    cache.invalidate(auction_id)

    current_app.logger.info(
        "Auction %s has been reset. Removed: %s items, %s bidders, %s payments, %s payment intents.",
        auction_id, deleted["items"], deleted["bidders"], deleted["payments"], deleted["payment_intents"],
    )
    audit_service.record(actor, "reset auction", "auction", auction_id, {"deleted": deleted})
    return deleted
