"""
Pytest fixtures for the auction ledger tests.

Provides an in-memory database, a fake SumUp provider, auction / item / lot
factories and identity headers for the test client.
"""

import itertools

import pytest

from auctionhouse import create_app
from auctionhouse.errors import TransientProviderError
from auctionhouse.extensions import db
from auctionhouse.models import Auction, Bidder, Item
from auctionhouse.services.sumup_client import HostedCheckout, SumUpClient


class FakeSumUp(SumUpClient):
    """SumUp client double: hosted checkouts and lookups served from memory."""

    def __init__(self):
        super().__init__(
            affiliate_key="aff-key",
            app_id="app.test",
            callback_success="https://auction.test/api/payments/sumup/callback/success",
            callback_fail="https://auction.test/api/payments/sumup/callback/fail",
        )
        self.reset()

    def reset(self):
        self.checkouts = {}
        self.created = []
        self.lookups = []
        self.unavailable = False

    def create_hosted_checkout(self, amount_minor, currency, reference, description):
        if self.unavailable:
            raise TransientProviderError("Payment provider unavailable", reference=reference)
        checkout_id = f"chk-{len(self.created) + 1}"
        self.created.append({
            "id": checkout_id,
            "amount_minor": amount_minor,
            "currency": currency,
            "reference": reference,
            "description": description,
        })
        return HostedCheckout(checkout_id=checkout_id, url=f"https://pay.sumup.test/{checkout_id}")

    def get_checkouts_by_reference(self, reference):
        self.lookups.append(reference)
        if self.unavailable:
            raise TransientProviderError("Payment provider unavailable", reference=reference)
        return list(self.checkouts.get(reference, []))

    def set_status(self, reference, status, txn_id=None):
        checkout = {"checkout_reference": reference, "status": status}
        if txn_id:
            checkout["transactions"] = [{"id": txn_id}]
        self.checkouts.setdefault(reference, []).append(checkout)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        # Long TTL: a stale read can only be avoided by explicit invalidation
        'AUCTION_STATE_CACHE_TTL_SECONDS': 60,
        'CASH_PAYMENT_ENABLED': True,
        'MANUAL_CARD_PAYMENT_ENABLED': True,
        'PAYPAL_PAYMENT_ENABLED': True,
        'SUMUP_WEB_ENABLED': True,
        'SUMUP_CARD_PRESENT_ENABLED': True,
        'SUMUP_APP_INDIRECT_ENABLED': True,
        'PAYMENT_PROVIDER': FakeSumUp(),
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        app.extensions["auction_state_cache"].clear()
        app.extensions["payment_provider"].reset()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def cache(app, db_session):
    return app.extensions["auction_state_cache"]


@pytest.fixture(scope='function')
def provider(app, db_session):
    return app.extensions["payment_provider"]


@pytest.fixture(scope='function')
def make_auction(db_session):
    """Factory: make_auction(status="setup", admin_can_change_state=False)."""
    counter = itertools.count(1)

    def _make(status="setup", admin_can_change_state=False, short_name=None):
        n = next(counter)
        auction = Auction(
            short_name=short_name or f"auction{n}",
            full_name=f"Auction {n}",
            status=status,
            admin_can_change_state=admin_can_change_state,
        )
        db_session.add(auction)
        db_session.commit()
        return auction

    return _make


@pytest.fixture(scope='function')
def make_item(db_session):
    """Factory: make_item(auction) appends an item regardless of auction status."""
    def _make(auction, description=None):
        current = db_session.query(db.func.max(Item.item_number)).filter(Item.auction_id == auction.id).scalar()
        number = (current or 0) + 1
        item = Item(
            auction_id=auction.id,
            item_number=number,
            description=description or f"Lot {number}",
            contributor="Donor",
        )
        db_session.add(item)
        db_session.commit()
        return item

    return _make


@pytest.fixture(scope='function')
def sold_lot(db_session, make_auction, make_item):
    """
    Factory: sold_lot(price, paddle=101, auction=None, extra_unsold=0).

    Creates an auction in "settlement" (unless one is given) with one lot
    sold to `paddle`. Returns (auction, item, bidder).
    """
    def _make(price, paddle=101, auction=None, extra_unsold=0):
        auction = auction or make_auction(status="settlement")
        item = make_item(auction)
        for _ in range(extra_unsold):
            make_item(auction)
        bidder = db_session.query(Bidder).filter_by(auction_id=auction.id, paddle_number=paddle).first()
        if bidder is None:
            bidder = Bidder(auction_id=auction.id, paddle_number=paddle)
            db_session.add(bidder)
            db_session.flush()
        item.winning_bidder_id = bidder.id
        item.hammer_price = price
        db_session.commit()
        return auction, item, bidder

    return _make


def identity_headers(role: str, username: str = None) -> dict:
    """Headers the authenticating proxy sets for a signed-in user."""
    return {"X-Auth-Role": role, "X-Auth-User": username or f"{role}-user"}
