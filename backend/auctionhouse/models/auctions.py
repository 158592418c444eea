from __future__ import annotations

import secrets

from ..extensions import db
from ..time_utils import to_utc_z


AUCTION_STATUSES = ("setup", "locked", "live", "settlement", "archived")


def _new_public_id() -> str:
    return secrets.token_urlsafe(9)


def money(value):
    """Decimal column value -> JSON number (None stays None)."""
    return float(value) if value is not None else None


class Auction(db.Model):
    """
    A single fundraising auction.

    LIFECYCLE: setup -> locked -> live -> settlement -> archived.
    Transitions are free-form; each operation declares the states it may
    run in (see auction_state_service).

    short_name is unique and never changes after creation.
    """
    __tablename__ = "auctions"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    short_name = db.Column(db.String(64), nullable=False, unique=True)
    full_name = db.Column(db.String(255), nullable=False)
    logo = db.Column(db.String(255), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="setup", index=True)
    admin_can_change_state = db.Column(db.Boolean, nullable=False, default=False)

    # Opaque id handed to public submission pages
    public_id = db.Column(db.String(32), nullable=False, unique=True, default=_new_public_id)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "short_name": self.short_name,
            "full_name": self.full_name,
            "logo": self.logo,
            "status": self.status,
            "admin_can_change_state": self.admin_can_change_state,
            "public_id": self.public_id,
            "created_at": to_utc_z(self.created_at),
        }


class Item(db.Model):
    """
    Auction item / lot.

    item_number is the dense 1..N running order within the auction. It is
    recomputed after every delete or move (lot_service.renumber_auction_items).
    A lot is sold once hammer_price is set; winning_bidder_id points at the
    bidder row of the same auction.
    """
    __tablename__ = "items"
    __table_args__ = (
        db.UniqueConstraint("auction_id", "item_number", name="uq_items_auction_number"),
        db.Index("ix_items_auction_hammer", "auction_id", "hammer_price"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    auction_id = db.Column(db.Integer, db.ForeignKey("auctions.id"), nullable=False, index=True)
    item_number = db.Column(db.Integer, nullable=False)

    description = db.Column(db.Text, nullable=False)
    contributor = db.Column(db.String(255), nullable=False)
    artist = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    photo = db.Column(db.String(255), nullable=True)

    winning_bidder_id = db.Column(db.Integer, db.ForeignKey("bidders.id"), nullable=True, index=True)
    hammer_price = db.Column(db.Numeric(12, 2), nullable=True)

    test_item = db.Column(db.Boolean, nullable=False, default=False)
    test_bid = db.Column(db.Boolean, nullable=False, default=False)

    # Display stamps (dd-mm-YYYY HH:MM)
    date = db.Column(db.String(32), nullable=True)
    mod_date = db.Column(db.String(32), nullable=True)

    auction = db.relationship("Auction", backref=db.backref("items", lazy=True))
    winning_bidder = db.relationship("Bidder", foreign_keys=[winning_bidder_id])

    @property
    def is_sold(self) -> bool:
        return self.hammer_price is not None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "auction_id": self.auction_id,
            "item_number": self.item_number,
            "description": self.description,
            "contributor": self.contributor,
            "artist": self.artist,
            "notes": self.notes,
            "photo": self.photo,
            "winning_bidder_id": self.winning_bidder_id,
            "paddle_number": self.winning_bidder.paddle_number if self.winning_bidder else None,
            "hammer_price": money(self.hammer_price),
            "test_item": self.test_item,
            "test_bid": self.test_bid,
            "date": self.date,
            "mod_date": self.mod_date,
        }


class Bidder(db.Model):
    """
    Bidder registration within ONE auction.

    ISOLATION: paddle numbers are per auction. Paddle 7 in auction A and
    paddle 7 in auction B are two distinct rows with independent balances.
    """
    __tablename__ = "bidders"
    __table_args__ = (
        db.UniqueConstraint("auction_id", "paddle_number", name="uq_bidders_auction_paddle"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    auction_id = db.Column(db.Integer, db.ForeignKey("auctions.id"), nullable=False, index=True)
    paddle_number = db.Column(db.Integer, nullable=False)
    name = db.Column(db.String(128), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    auction = db.relationship("Auction", backref=db.backref("bidders", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "auction_id": self.auction_id,
            "paddle_number": self.paddle_number,
            "name": self.name,
            "created_at": to_utc_z(self.created_at),
        }
