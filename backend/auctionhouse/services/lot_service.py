# Overview: Service-layer operations for items and lots; owns numbering, finalisation and bidder balances.

"""
Lot Ledger

WHY: Items, their running order and their sale results are the source of
truth for what every bidder owes. Payments are reconciled against them.

INVARIANTS:
- item_number is a dense 1..N sequence per auction after every mutating
  operation. Deletes and cross-auction moves renumber the source auction in
  the same transaction; (auction_id, item_number) is unique in storage.
- A lot is finalised at most once: the write is conditional on
  hammer_price IS NULL, so a second finalise (or a concurrent one) fails
  loudly instead of overwriting the first.
- Bidders are per auction: (auction_id, paddle_number) identifies a bidder.
- Balances are never stored. balance = lots won in the auction - payments.
- When the last unsold lot of an auction is finalised, the auction moves to
  "settlement" and the state cache entry is invalidated.
"""

from __future__ import annotations

import random
from decimal import Decimal

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import (
    IntegrityViolationError,
    LotConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from ..extensions import db
from ..models import Auction, Bidder, Item, Payment, PaymentIntent
from ..time_utils import item_stamp
from . import audit_service
from .auction_state_service import require_auction_state, resolve_auction
from .concurrency import lock_for_update, run_with_retry
from .money import ZERO, parse_amount, parse_positive_int, to_money
from .state_cache import StateCache, get_state_cache


# Lifecycle states each operation may run in
ITEM_EDIT_STATES = ("setup", "locked")
LOT_STATES = ("live", "settlement")

EDITABLE_FIELDS = ("description", "contributor", "artist", "notes", "photo")
SORT_COLUMNS = {
    "item_number": Item.item_number,
    "description": Item.description,
    "contributor": Item.contributor,
    "artist": Item.artist,
    "hammer_price": Item.hammer_price,
}


# =============================================================================
# NUMBERING
# =============================================================================

def _ordered_items(auction_id: int) -> list[Item]:
    return (
        db.session.query(Item)
        .filter(Item.auction_id == auction_id)
        .order_by(Item.item_number.asc(), Item.id.asc())
        .all()
    )


def _next_item_number(auction_id: int) -> int:
    current = db.session.query(db.func.max(Item.item_number)).filter(Item.auction_id == auction_id).scalar()
    return (current or 0) + 1


def _apply_numbering(ordered: list[Item]) -> int:
    """
    Assign item_number = 1..N following `ordered`. Returns rows changed.

    Two passes keep uq_items_auction_number satisfied at every flush:
    changed rows first move to distinct negative numbers, then to their
    final numbers. Does not commit.
    """
    changes = [(item, n) for n, item in enumerate(ordered, start=1) if item.item_number != n]
    if not changes:
        return 0

    try:
        for item, n in changes:
            item.item_number = -n
        db.session.flush()
        for item, n in changes:
            item.item_number = n
        db.session.flush()
    except IntegrityError as exc:
        raise IntegrityViolationError(
            "Item numbering would be duplicated; nothing was changed",
            detail=str(exc.orig),
        )
    return len(changes)


def renumber_auction_items(auction_id: int) -> int:
    """
    Re-derive item_number = 1..N for an auction in one transaction.

    Idempotent: a second run changes nothing and returns 0.

    Raises:
        IntegrityViolationError: numbering could not be applied (rolled back)
    """
    def _op():
        changed = _apply_numbering(_ordered_items(auction_id))
        db.session.commit()
        return changed

    changed = run_with_retry(_op)
    current_app.logger.debug("Renumber: %s item(s) changed in auction %s", changed, auction_id)
    return changed


def move_item_after(
    auction_id: int,
    item_id: int,
    after_item_id: int | None,
    *,
    actor: str,
    cache: StateCache | None = None,
) -> list[dict]:
    """
    Reposition an item directly after another (or first when after_item_id is None).

    Returns the new running order as [{"id", "item_number"}].

    Raises:
        NotFoundError: item (or after item) not in the auction
        StateConflictError: auction not in setup/locked, or item/auction mismatch
    """
    require_auction_state(ITEM_EDIT_STATES, auction_id=auction_id, item_id=item_id, cache=cache)

    def _op():
        rows = _ordered_items(auction_id)
        moving = next((r for r in rows if r.id == item_id), None)
        if moving is None:
            raise NotFoundError(f"Item {item_id} not found", item_id=item_id)

        remaining = [r for r in rows if r.id != item_id]
        if after_item_id:
            position = next((i for i, r in enumerate(remaining) if r.id == after_item_id), None)
            if position is None:
                raise NotFoundError("after_id not found", after_item_id=after_item_id)
            insert_at = position + 1
        else:
            insert_at = 0

        reordered = remaining[:insert_at] + [moving] + remaining[insert_at:]
        _apply_numbering(reordered)
        db.session.commit()
        return [{"id": r.id, "item_number": r.item_number} for r in reordered]

    order = run_with_retry(_op)
    current_app.logger.info("Moved item %s to after %s in auction %s", item_id, after_item_id, auction_id)
    audit_service.record(actor, "moved", "item", item_id, {
        "after_item_id": after_item_id,
        "new_number": next(o["item_number"] for o in order if o["id"] == item_id),
    })
    return order


def move_item_to_auction(
    item_id: int,
    from_auction_id: int,
    to_auction_id: int,
    *,
    actor: str,
    cache: StateCache | None = None,
) -> Item:
    """
    Move an item to another auction.

    The item is appended to the destination (max + 1); the destination is
    never compacted. The source auction is renumbered in the same
    transaction to close the gap.

    Raises:
        ValidationError: same auction
        NotFoundError: destination auction missing
        StateConflictError: either auction not in setup/locked
        LotConflictError: item already sold
    """
    if int(from_auction_id) == int(to_auction_id):
        raise ValidationError("Item is already in that auction")

    require_auction_state(ITEM_EDIT_STATES, auction_id=from_auction_id, item_id=item_id, cache=cache)
    require_auction_state(ITEM_EDIT_STATES, auction_id=to_auction_id, cache=cache)

    def _op():
        item = lock_for_update(db.session.query(Item).filter_by(id=item_id)).first()
        if not item:
            raise NotFoundError(f"Item {item_id} not found", item_id=item_id)
        _move_locked(item, int(from_auction_id), int(to_auction_id))
        db.session.commit()
        return item

    item = run_with_retry(_op)
    _log_move(actor, item, from_auction_id, to_auction_id)
    return item


def _move_locked(item: Item, from_auction_id: int, to_auction_id: int) -> None:
    """Append `item` to the destination and close the gap in the source. Does not commit."""
    if item.is_sold:
        raise LotConflictError("Cannot move a lot that has been sold", item_id=item.id)

    item.auction_id = to_auction_id
    item.item_number = _next_item_number(to_auction_id)
    item.mod_date = item_stamp()
    db.session.flush()

    _apply_numbering(_ordered_items(from_auction_id))


def _log_move(actor: str, item: Item, from_auction_id: int, to_auction_id: int) -> None:
    current_app.logger.info("Moved item %s from auction %s to %s", item.id, from_auction_id, to_auction_id)
    audit_service.record(actor, "moved auction", "item", item.id, {
        "old_auction": int(from_auction_id),
        "new_auction": int(to_auction_id),
        "new_no": item.item_number,
    })


# =============================================================================
# ITEMS
# =============================================================================

def create_item(
    auction_id: int,
    *,
    description: str,
    contributor: str,
    artist: str | None = None,
    notes: str | None = None,
    photo: str | None = None,
    test_item: bool = False,
    actor: str = "public",
    is_admin: bool = False,
    cache: StateCache | None = None,
) -> Item:
    """
    Add an item to the end of an auction's running order.

    Public submissions are refused while the auction is locked; admins may
    still add items then.

    Raises:
        ValidationError: missing description/contributor, or item limit reached
        StateConflictError: auction not in setup/locked
        PermissionDeniedError: public submission to a locked auction
    """
    if not description or not contributor:
        raise ValidationError("Missing item description or contributor")

    ref = require_auction_state(ITEM_EDIT_STATES, auction_id=auction_id, cache=cache)
    if ref.status == "locked" and not is_admin:
        current_app.logger.warning("Public submission rejected. Auction %s is locked", auction_id)
        raise PermissionDeniedError("This auction is not currently accepting submissions.")

    max_items = current_app.config.get("MAX_ITEMS", 500)

    def _op():
        if db.session.query(Item).count() >= max_items:
            raise ValidationError("Server item limit reached", max_items=max_items)

        item = Item(
            auction_id=ref.id,
            item_number=_next_item_number(ref.id),
            description=description,
            contributor=contributor,
            artist=artist,
            notes=notes,
            photo=photo,
            test_item=bool(test_item),
            date=item_stamp(),
        )
        db.session.add(item)
        db.session.commit()
        return item

    item = run_with_retry(_op)
    current_app.logger.info("Item %s stored for auction %s as item #%s", item.id, ref.id, item.item_number)
    audit_service.record(actor, "new item", "item", item.id, {
        "description": description,
        "initial_number": item.item_number,
    })
    return item


def update_item(
    item_id: int,
    auction_id: int,
    fields: dict,
    *,
    actor: str,
    target_auction_id: int | None = None,
    cache: StateCache | None = None,
) -> Item:
    """
    Update descriptive fields; optionally move the item to target_auction_id.

    Only EDITABLE_FIELDS are written; unknown keys are ignored. The field
    edits and the move commit together: a refused move leaves the item
    untouched.
    """
    require_auction_state(ITEM_EDIT_STATES, auction_id=auction_id, item_id=item_id, cache=cache)

    moving_to = None
    if target_auction_id and int(target_auction_id) != int(auction_id):
        moving_to = int(target_auction_id)
        require_auction_state(ITEM_EDIT_STATES, auction_id=moving_to, cache=cache)

    updates = {k: v for k, v in (fields or {}).items() if k in EDITABLE_FIELDS}
    for required in ("description", "contributor"):
        if required in updates and not updates[required]:
            raise ValidationError(f"{required} cannot be empty")

    def _op():
        item = lock_for_update(db.session.query(Item).filter_by(id=item_id)).first()
        if not item:
            raise NotFoundError(f"Item {item_id} not found", item_id=item_id)
        for key, value in updates.items():
            setattr(item, key, value)
        item.mod_date = item_stamp()
        if moving_to:
            _move_locked(item, int(auction_id), moving_to)
        db.session.commit()
        return item

    item = run_with_retry(_op)
    current_app.logger.info("Updated fields for item %s: %s", item_id, ", ".join(sorted(updates)) or "none")
    audit_service.record(actor, "updated", "item", item_id, {"fields": sorted(updates)})
    if moving_to:
        _log_move(actor, item, auction_id, moving_to)
    return item


def delete_item(
    item_id: int,
    *,
    actor: str,
    auction_id: int | None = None,
    cache: StateCache | None = None,
) -> dict:
    """
    Delete an item and close the numbering gap in the same transaction.

    Returns {"auction_id", "photo"} so the caller can remove stored files.
    """
    ref = require_auction_state(ITEM_EDIT_STATES, auction_id=auction_id, item_id=item_id, cache=cache)

    def _op():
        item = lock_for_update(db.session.query(Item).filter_by(id=item_id)).first()
        if not item:
            raise NotFoundError(f"Item {item_id} not found", item_id=item_id)
        if item.is_sold:
            raise LotConflictError("Cannot delete a lot that has been sold", item_id=item_id)

        details = {
            "auction_id": item.auction_id,
            "photo": item.photo,
            "description": item.description,
            "item_number": item.item_number,
        }
        db.session.delete(item)
        db.session.flush()
        renumbered = _apply_numbering(_ordered_items(ref.id))
        db.session.commit()
        return details, renumbered

    details, renumbered = run_with_retry(_op)
    current_app.logger.info(
        "Deleted item %s; renumbered %s item(s) in auction %s", item_id, renumbered, ref.id
    )
    audit_service.record(actor, "delete item", "item", item_id, {
        "auction_id": details["auction_id"],
        "description": details["description"],
        "item_number": details["item_number"],
    })
    return {"auction_id": details["auction_id"], "photo": details["photo"]}


def list_items(auction_id: int, sort: str = "item_number", direction: str = "asc") -> dict:
    """Items of an auction plus count / sold / lots_total totals."""
    if not db.session.get(Auction, auction_id):
        raise NotFoundError(f"Auction {auction_id} not found", auction_id=auction_id)

    column = SORT_COLUMNS.get(sort, Item.item_number)
    order = column.desc() if (direction or "").lower() == "desc" else column.asc()
    items = (
        db.session.query(Item)
        .filter(Item.auction_id == auction_id)
        .order_by(order, Item.item_number.asc())
        .all()
    )

    sold = [i for i in items if i.is_sold]
    lots_total = sum((to_money(i.hammer_price) for i in sold), ZERO)
    return {
        "items": [i.to_dict() for i in items],
        "totals": {
            "item_count": len(items),
            "sold_count": len(sold),
            "unsold_count": len(items) - len(sold),
            "lots_total": float(lots_total),
        },
    }


# =============================================================================
# LOTS
# =============================================================================

def _get_or_create_bidder(auction_id: int, paddle: int) -> Bidder:
    bidder = db.session.query(Bidder).filter_by(auction_id=auction_id, paddle_number=paddle).first()
    if bidder:
        return bidder
    bidder = Bidder(auction_id=auction_id, paddle_number=paddle)
    db.session.add(bidder)
    db.session.flush()
    return bidder


def finalize_lot(
    item_id: int,
    paddle,
    price,
    auction_id: int,
    *,
    actor: str,
    cache: StateCache | None = None,
    test_bid: bool = False,
) -> dict:
    """
    Record the winning paddle and hammer price for a lot.

    Finalising the last unsold lot flips the auction to "settlement" and
    invalidates its state cache entry. test_bid marks a generated rehearsal
    bid so delete_test_bids can clear it later.

    Raises:
        ValidationError: bad paddle / price
        StateConflictError: auction not live/settlement, or item/auction mismatch
        LotConflictError: lot already finalised
    """
    cache = cache or get_state_cache()
    paddle = parse_positive_int(paddle, "paddle")
    price = parse_amount(price, "price")
    ref = require_auction_state(LOT_STATES, auction_id=auction_id, item_id=item_id, cache=cache)

    def _op():
        bidder = _get_or_create_bidder(ref.id, paddle)

        updated = (
            db.session.query(Item)
            .filter(Item.id == item_id, Item.auction_id == ref.id, Item.hammer_price.is_(None))
            .update(
                {Item.winning_bidder_id: bidder.id, Item.hammer_price: price, Item.test_bid: test_bid},
                synchronize_session=False,
            )
        )
        if updated == 0:
            raise LotConflictError("This lot has already been recorded.", item_id=item_id)

        remaining = (
            db.session.query(Item)
            .filter(Item.auction_id == ref.id, Item.hammer_price.is_(None))
            .count()
        )
        settled = False
        if remaining == 0:
            auction = db.session.get(Auction, ref.id)
            if auction.status != "settlement":
                auction.status = "settlement"
                settled = True

        db.session.commit()
        return bidder.id, remaining, settled

    try:
        bidder_id, remaining, settled = run_with_retry(_op)
    except IntegrityError:
        # Another request created this paddle's bidder row first; it is visible now.
        bidder_id, remaining, settled = run_with_retry(_op)

    if remaining == 0:
        cache.invalidate(ref.id)

    current_app.logger.info(
        "Bid recorded for auction %s, bidder %s, item %s, price %s", ref.id, paddle, item_id, price
    )
    if test_bid:
        item = db.session.get(Item, item_id)
        audit_service.record(actor, "finalize (test)", "item", item_id, {
            "bidder": paddle, "price": price, "description": item.description,
        })
    else:
        audit_service.record(actor, "finalize", "item", item_id, {"bidder": paddle, "price": price})
    if settled:
        current_app.logger.info("All lots sold in auction %s, setting state to settlement", ref.id)
        audit_service.record(actor, "auto_settlement", "auction", ref.id, {
            "reason": "all lots sold via finalize",
        })

    return {
        "item_id": item_id,
        "bidder_id": bidder_id,
        "paddle": paddle,
        "price": float(price),
        "auction_status": "settlement" if remaining == 0 else ref.status,
    }


def undo_lot(
    item_id: int,
    *,
    actor: str,
    auction_id: int | None = None,
    cache: StateCache | None = None,
) -> Item:
    """
    Clear the winner and hammer price of a lot.

    Refused while the winning bidder has money on record (net payments above
    zero) or a card intent still pending. Fully reversed payments net to
    zero and no longer block.

    Raises:
        StateConflictError: auction not live/settlement, or item/auction mismatch
        LotConflictError: lot not sold, or payments exist
    """
    require_auction_state(LOT_STATES, auction_id=auction_id, item_id=item_id, cache=cache)

    def _op():
        item = lock_for_update(db.session.query(Item).filter_by(id=item_id)).first()
        if not item:
            raise NotFoundError(f"Item {item_id} not found", item_id=item_id)
        if not item.is_sold:
            raise LotConflictError("Lot has not been finalised", item_id=item_id)

        bidder_id = item.winning_bidder_id
        net_paid = _payments_total(bidder_id)
        pending = (
            db.session.query(PaymentIntent)
            .filter_by(bidder_id=bidder_id, status="pending")
            .count()
        )
        if net_paid > 0 or pending:
            current_app.logger.warning(
                "Bid retract failed for item %s by bidder %s - payment exists", item_id, bidder_id
            )
            raise LotConflictError(
                "Cannot undo - payments exist",
                item_id=item_id,
                payments_total=net_paid,
                pending_intents=pending,
            )

        item.winning_bidder_id = None
        item.hammer_price = None
        item.test_bid = False
        db.session.commit()
        return item, bidder_id

    item, bidder_id = run_with_retry(_op)
    current_app.logger.info("Bid retracted for item %s by bidder %s", item_id, bidder_id)
    audit_service.record(actor, "undo-bid", "item", item_id, {"bidder_id": bidder_id})
    return item


# =============================================================================
# TEST BIDS
# =============================================================================

TEST_PADDLE_MAX = 150
TEST_PRICE_RANGE = (10, 509)


def _unsold_item_ids(auction_id: int) -> list[int]:
    rows = (
        db.session.query(Item.id)
        .filter(Item.auction_id == auction_id, Item.hammer_price.is_(None))
        .order_by(Item.item_number)
        .all()
    )
    return [row[0] for row in rows]


def generate_test_bids(
    auction_id: int,
    num_bids,
    num_bidders,
    *,
    actor: str,
    cache: StateCache | None = None,
    rng: random.Random | None = None,
) -> dict:
    """
    Finalise randomly chosen unsold lots with random paddles and prices.

    Rehearsal tooling for a live auction. Every lot written here carries
    test_bid=True and goes through finalize_lot, so the last unsold lot
    still moves the auction to settlement.

    Raises:
        ValidationError: no unsold lots, or counts out of range
        StateConflictError: auction not live/settlement
    """
    cache = cache or get_state_cache()
    num_bids = parse_positive_int(num_bids, "num_bids")
    num_bidders = parse_positive_int(num_bidders, "num_bidders")
    ref = require_auction_state(LOT_STATES, auction_id=auction_id, cache=cache)

    unsold = _unsold_item_ids(ref.id)
    if not unsold:
        raise ValidationError("No items without bids.", auction_id=ref.id)
    if num_bids > len(unsold):
        raise ValidationError(
            f"num_bids must be between 1 and {len(unsold)}", auction_id=ref.id, available=len(unsold)
        )
    if num_bidders > TEST_PADDLE_MAX:
        raise ValidationError(f"num_bidders must be between 1 and {TEST_PADDLE_MAX}")

    rng = rng or random.Random()
    paddles = rng.sample(range(1, TEST_PADDLE_MAX + 1), num_bidders)
    lots = []
    for item_id in rng.sample(unsold, num_bids):
        result = finalize_lot(
            item_id,
            rng.choice(paddles),
            rng.randint(*TEST_PRICE_RANGE),
            ref.id,
            actor=actor,
            cache=cache,
            test_bid=True,
        )
        lots.append(result)

    current_app.logger.info("Generated %s test bids for auction %s", len(lots), ref.id)
    return {
        "bids": len(lots),
        "auction_status": lots[-1]["auction_status"],
        "lots": lots,
    }


def delete_test_bids(auction_id: int, *, actor: str, cache: StateCache | None = None) -> dict:
    """
    Clear every test bid of an auction and prune bidders left with nothing.

    A bidder survives if they still won a lot, or have any payment or card
    intent on record.

    Raises:
        StateConflictError: auction not live/settlement
        LotConflictError: a test-lot winner has money or a pending intent on record
    """
    ref = require_auction_state(LOT_STATES, auction_id=auction_id, cache=cache)

    def _op():
        test_lots = lock_for_update(
            db.session.query(Item).filter(Item.auction_id == ref.id, Item.test_bid.is_(True))
        ).all()
        for bidder_id in {i.winning_bidder_id for i in test_lots if i.winning_bidder_id}:
            net_paid = _payments_total(bidder_id)
            pending = (
                db.session.query(PaymentIntent)
                .filter_by(bidder_id=bidder_id, status="pending")
                .count()
            )
            if net_paid > 0 or pending:
                raise LotConflictError(
                    "Cannot delete test bids - payments exist",
                    bidder_id=bidder_id,
                    payments_total=net_paid,
                    pending_intents=pending,
                )

        for item in test_lots:
            item.winning_bidder_id = None
            item.hammer_price = None
            item.test_bid = False
        db.session.flush()

        orphans = (
            db.session.query(Bidder)
            .filter(Bidder.auction_id == ref.id)
            .filter(~db.session.query(Item.id).filter(Item.winning_bidder_id == Bidder.id).exists())
            .filter(~db.session.query(Payment.id).filter(Payment.bidder_id == Bidder.id).exists())
            .filter(~db.session.query(PaymentIntent.intent_id).filter(PaymentIntent.bidder_id == Bidder.id).exists())
            .all()
        )
        for bidder in orphans:
            db.session.delete(bidder)
        db.session.commit()
        return len(test_lots), len(orphans)

    lots_cleared, bidders_deleted = run_with_retry(_op)
    current_app.logger.info(
        "Deleted %s test bids and %s bidders from auction %s", lots_cleared, bidders_deleted, ref.id
    )
    audit_service.record(actor, "delete test bids", "auction", ref.id, {
        "test_bids_deleted": lots_cleared,
        "bidders_deleted": bidders_deleted,
    })
    return {"test_bids_deleted": lots_cleared, "bidders_deleted": bidders_deleted}


def list_live_feed(auction_id: int, include_unsold: bool = False) -> dict:
    """Sold lots, newest paddle first; optionally followed by the unsold lots in running order."""
    if not db.session.get(Auction, auction_id):
        raise NotFoundError(f"Auction {auction_id} not found", auction_id=auction_id)

    sold = (
        db.session.query(Item, Bidder.paddle_number)
        .join(Bidder, Bidder.id == Item.winning_bidder_id)
        .filter(Item.auction_id == auction_id, Item.hammer_price.isnot(None))
        .order_by(Bidder.paddle_number.desc(), Item.item_number.desc())
        .all()
    )
    rows = [
        {
            "lot": item.item_number,
            "item_id": item.id,
            "description": item.description,
            "bidder": paddle,
            "price": float(to_money(item.hammer_price)),
            "test_item": item.test_item,
            "test_bid": item.test_bid,
        }
        for item, paddle in sold
    ]

    if include_unsold:
        unsold = (
            db.session.query(Item)
            .filter(Item.auction_id == auction_id, Item.hammer_price.is_(None))
            .order_by(Item.item_number)
            .all()
        )
        rows.extend(
            {
                "lot": item.item_number,
                "item_id": item.id,
                "description": item.description,
                "bidder": None,
                "price": None,
                "unsold": True,
            }
            for item in unsold
        )
    return {"auction_id": auction_id, "lots": rows}


# =============================================================================
# BALANCES
# =============================================================================

def _lots_total(bidder_id: int, auction_id: int) -> Decimal:
    total = (
        db.session.query(db.func.sum(Item.hammer_price))
        .filter(Item.winning_bidder_id == bidder_id, Item.auction_id == auction_id)
        .scalar()
    )
    return to_money(total)


def _payments_total(bidder_id: int) -> Decimal:
    total = db.session.query(db.func.sum(Payment.amount)).filter(Payment.bidder_id == bidder_id).scalar()
    return to_money(total)


def get_bidder(bidder_id: int, auction_id: int) -> Bidder:
    """
    Raises:
        NotFoundError: bidder missing or registered in a different auction
    """
    bidder = db.session.query(Bidder).filter_by(id=bidder_id, auction_id=auction_id).first()
    if not bidder:
        raise NotFoundError("Bidder not found for this auction", bidder_id=bidder_id, auction_id=auction_id)
    return bidder


def bidder_totals(bidder: Bidder) -> tuple[Decimal, Decimal]:
    """(lots_total, payments_total), recomputed from rows."""
    return _lots_total(bidder.id, bidder.auction_id), _payments_total(bidder.id)


def get_bidder_summary(bidder_id: int, auction_id: int) -> dict:
    """
    Fresh totals for one bidder in one auction.

    Returns:
        {"lots_total", "payments_total", "balance"} as Decimals;
        balance = lots_total - payments_total
    """
    bidder = get_bidder(bidder_id, auction_id)
    lots_total, payments_total = bidder_totals(bidder)
    return {
        "lots_total": lots_total,
        "payments_total": payments_total,
        "balance": lots_total - payments_total,
    }


def get_bidder_detail(bidder_id: int, auction_id: int) -> dict:
    """Bidder with lots won, payment history and balance (JSON-ready)."""
    bidder = get_bidder(bidder_id, auction_id)
    lots = (
        db.session.query(Item)
        .filter_by(winning_bidder_id=bidder.id, auction_id=auction_id)
        .order_by(Item.item_number)
        .all()
    )
    payments = db.session.query(Payment).filter_by(bidder_id=bidder.id).order_by(Payment.id).all()
    summary = get_bidder_summary(bidder_id, auction_id)
    return {
        **bidder.to_dict(),
        "lots": [
            {
                "item_id": i.id,
                "item_number": i.item_number,
                "description": i.description,
                "hammer_price": float(to_money(i.hammer_price)),
                "test_item": i.test_item,
                "test_bid": i.test_bid,
            }
            for i in lots
        ],
        "payments": [p.to_dict() for p in payments],
        "lots_total": float(summary["lots_total"]),
        "payments_total": float(summary["payments_total"]),
        "balance": float(summary["balance"]),
    }


def list_settlement_bidders(auction_id: int) -> list[dict]:
    """Every bidder of the auction with lots_total / payments_total / balance."""
    bidders = db.session.query(Bidder).filter_by(auction_id=auction_id).order_by(Bidder.paddle_number).all()
    rows = []
    for bidder in bidders:
        lots_total, payments_total = bidder_totals(bidder)
        rows.append({
            "id": bidder.id,
            "paddle_number": bidder.paddle_number,
            "name": bidder.name,
            "lots_total": float(lots_total),
            "payments_total": float(payments_total),
            "balance": float(lots_total - payments_total),
        })
    return rows


def get_auction_payment_summary(auction_id: int) -> dict:
    """Auction takings: hammer total, payments by method, balance outstanding."""
    lots_total = to_money(
        db.session.query(db.func.sum(Item.hammer_price)).filter(Item.auction_id == auction_id).scalar()
    )
    rows = (
        db.session.query(Payment.method, db.func.sum(Payment.amount))
        .join(Bidder, Bidder.id == Payment.bidder_id)
        .filter(Bidder.auction_id == auction_id)
        .group_by(Payment.method)
        .all()
    )
    breakdown = {method: to_money(amount) for method, amount in rows}
    payments_total = sum(breakdown.values(), ZERO)
    return {
        "auction_id": auction_id,
        "lots_total": float(lots_total),
        "payments_total": float(payments_total),
        "breakdown": {k: float(v) for k, v in breakdown.items()},
        "balance": float(lots_total - payments_total),
    }


def get_auction(auction_id: int, cache: StateCache | None = None) -> Auction:
    resolve_auction(auction_id, cache=cache)
    return db.session.get(Auction, auction_id)
