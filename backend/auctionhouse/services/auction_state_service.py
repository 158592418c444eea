# Overview: Service-layer operations for auction lifecycle state; resolves and gates auctions.

"""
Auction State Guard

PURPOSE: decide whether an operation may run against an auction in its
current lifecycle state.

IDENTIFIER PRECEDENCE (first match wins):
    1. explicit auction id
    2. item id            -> items.auction_id
    3. public lookup id   -> auctions.public_id
When an auction id is given together with an item id or a public id, both
must name the same auction; otherwise the request is refused as a mismatch.
This stops a caller operating on item X while presenting auction Y's id.

CACHE:
    Status reads go through a StateCache with a short TTL. The cache is the
    ONLY deliberately stale read in the ledger. Every code path that writes
    auctions.status calls `cache.invalidate(auction_id)` right after its
    commit:
        - set_auction_status                  (this module)
        - lot_service.finalize_lot            (auto-settlement)
        - auction_service.delete_auction      (incl. last-auction reset)
        - auction_service.reset_auction
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import wraps
from typing import Iterable

from flask import current_app, g, jsonify, request

from ..errors import (
    LedgerError,
    NotFoundError,
    PermissionDeniedError,
    StateConflictError,
    ValidationError,
)
from ..extensions import db
from ..models import AUCTION_STATUSES, Auction, Item
from . import audit_service
from .concurrency import run_with_retry
from .state_cache import StateCache, get_state_cache


@dataclass(frozen=True)
class AuctionRef:
    id: int
    status: str


def normalize_states(states: Iterable[str]) -> list[str]:
    normalized = [str(s).strip().lower() for s in states]
    if not normalized:
        raise ValueError("allowed_states must be a non-empty list")
    return normalized


def _load_status(auction_id: int, cache: StateCache) -> str:
    status = cache.get(auction_id)
    if status is not None:
        return status

    row = db.session.query(Auction.status).filter(Auction.id == auction_id).first()
    if row is None:
        raise NotFoundError(f"Auction {auction_id} not found", auction_id=auction_id)

    status = row.status.lower()
    cache.set(auction_id, status)
    return status


def resolve_auction(
    auction_id: int | None = None,
    item_id: int | None = None,
    public_id: str | None = None,
    *,
    cache: StateCache | None = None,
) -> AuctionRef:
    """
    Resolve an auction (and its current status) from the identifiers a request carries.

    Raises:
        ValidationError: no identifier supplied
        NotFoundError: item / auction / public id does not resolve
        StateConflictError: item or public id does not belong to the given auction
    """
    cache = cache or get_state_cache()
    logger = current_app.logger

    if auction_id and public_id:
        row = db.session.query(Auction.id).filter(Auction.public_id == public_id).first()
        if row is None:
            raise NotFoundError("Auction not found", public_id=public_id)
        if int(row.id) != int(auction_id):
            logger.error("CAS: Public id %s is not auction %s", public_id, auction_id)
            raise StateConflictError("Auction mismatch", public_id=public_id, auction_id=int(auction_id))

    if auction_id and item_id:
        owner = db.session.query(Item.auction_id).filter(Item.id == item_id).first()
        if owner is None:
            raise NotFoundError(f"Item {item_id} not found", item_id=item_id)
        if int(owner.auction_id) != int(auction_id):
            logger.error("CAS: Item #%s is not part of auction %s", item_id, auction_id)
            raise StateConflictError(
                "Item and auction mismatch", item_id=item_id, auction_id=int(auction_id)
            )
    elif item_id:
        owner = db.session.query(Item.auction_id).filter(Item.id == item_id).first()
        if owner is None:
            logger.error("CAS: Item #%s not found whilst resolving auction id", item_id)
            raise NotFoundError(f"Item {item_id} not found", item_id=item_id)
        auction_id = owner.auction_id
        logger.debug("CAS: Resolved item #%s to auction id %s", item_id, auction_id)
    elif public_id:
        row = db.session.query(Auction.id).filter(Auction.public_id == public_id).first()
        if row is None:
            raise NotFoundError("Auction not found", public_id=public_id)
        auction_id = row.id
    elif not auction_id:
        raise ValidationError("Auction identifier missing")

    auction_id = int(auction_id)
    return AuctionRef(id=auction_id, status=_load_status(auction_id, cache))


def authorize(ref: AuctionRef, allowed_states: Iterable[str]) -> AuctionRef:
    """
    Check the auction is in one of allowed_states (case-insensitive).

    Raises:
        StateConflictError: carries the permitted states
    """
    allowed = normalize_states(allowed_states)
    if ref.status.lower() not in allowed:
        current_app.logger.warning(
            "CAS: Action blocked: Auction #%s state is %s; requires one of %s",
            ref.id, ref.status, ", ".join(allowed),
        )
        raise StateConflictError(
            f"Operation requires auction to be in state(s): {', '.join(allowed)}",
            allowed_states=allowed,
            auction_id=ref.id,
            current_state=ref.status,
        )
    return ref


def require_auction_state(
    allowed_states: Iterable[str],
    *,
    auction_id: int | None = None,
    item_id: int | None = None,
    public_id: str | None = None,
    cache: StateCache | None = None,
) -> AuctionRef:
    """resolve_auction + authorize in one call."""
    ref = resolve_auction(auction_id, item_id, public_id, cache=cache)
    return authorize(ref, allowed_states)


def check_auction_state(allowed_states: Iterable[str]):
    """
    Route decorator: gate a view on the auction's lifecycle state.

    Identifiers are read from the URL (auction_id, item_id, public_id) and
    then from the JSON body (auction_id / auctionId). On success the
    resolved AuctionRef is stored on g.auction.
    """
    allowed = normalize_states(allowed_states)

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            body = request.get_json(silent=True) or {}
            auction_id = kwargs.get("auction_id") or body.get("auction_id") or body.get("auctionId")
            try:
                g.auction = require_auction_state(
                    allowed,
                    auction_id=auction_id,
                    item_id=kwargs.get("item_id"),
                    public_id=kwargs.get("public_id"),
                )
            except LedgerError as e:
                return jsonify(e.to_dict()), e.status_code
            return f(*args, **kwargs)

        return decorated_function

    return decorator


# =============================================================================
# STATUS MUTATION
# =============================================================================

def set_auction_status(
    auction_id: int,
    status: str,
    *,
    actor: str,
    role: str | None = None,
    cache: StateCache | None = None,
) -> Auction:
    """
    Change an auction's lifecycle status.

    Admins may only do this when the auction's admin_can_change_state flag
    is set; maintenance may always. The state cache entry is invalidated as
    soon as the change is committed.

    Raises:
        ValidationError: unknown status
        NotFoundError: auction missing
        PermissionDeniedError: admin without the auction flag
    """
    cache = cache or get_state_cache()
    normalized = (status or "").strip().lower()
    if normalized not in AUCTION_STATUSES:
        raise ValidationError(f'Invalid status: "{status}"', allowed_states=list(AUCTION_STATUSES))

    def _op():
        auction = db.session.get(Auction, auction_id)
        if not auction:
            raise NotFoundError(f"Auction {auction_id} not found", auction_id=auction_id)

        if role == "admin" and not auction.admin_can_change_state:
            raise PermissionDeniedError(
                "State change not allowed. Check auction settings", auction_id=auction_id
            )

        previous = auction.status
        auction.status = normalized
        db.session.commit()
        return auction, previous

    auction, previous = run_with_retry(_op)
    cache.invalidate(auction.id)

    current_app.logger.info("Updated status for auction %s: %s -> %s", auction.id, previous, normalized)
    audit_service.record(actor, "state change", "auction", auction.id, {
        "old_state": previous,
        "new_state": normalized,
    })
    return auction
