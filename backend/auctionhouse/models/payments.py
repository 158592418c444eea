from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from .auctions import money


INTENT_CHANNELS = ("hosted", "app", "app-ind")
INTENT_STATUSES = ("pending", "succeeded", "failed", "expired")
INTENT_TERMINAL_STATUSES = ("succeeded", "failed", "expired")


class Payment(db.Model):
    """
    Money received from (or refunded to) a bidder.

    UNITS: amount is in major units (e.g. pounds) as a fixed-point decimal.

    APPEND-ONLY: rows are never edited or deleted by the ledger. A refund is a
    new row with a negative amount and reverses_payment_id pointing at the
    original.

    IDEMPOTENCY: (provider, intent_id) is unique, so a provider intent can
    produce at most one payment row no matter how many completion signals
    arrive. Manual payments carry NULL intent_id and are not constrained.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.UniqueConstraint("provider", "intent_id", name="uq_payments_provider_intent"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    bidder_id = db.Column(db.Integer, db.ForeignKey("bidders.id"), nullable=False, index=True)

    amount = db.Column(db.Numeric(12, 2), nullable=False)
    method = db.Column(db.String(64), nullable=False, default="cash", index=True)
    note = db.Column(db.String(255), nullable=True)
    currency = db.Column(db.String(3), nullable=False, default="GBP")

    # Card provider linkage
    provider = db.Column(db.String(32), nullable=True)
    provider_txn_id = db.Column(db.String(128), nullable=True)
    intent_id = db.Column(db.String(64), nullable=True, index=True)
    raw_payload = db.Column(db.Text, nullable=True)

    # Reversal linkage
    reverses_payment_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=True, index=True)
    reversal_reason = db.Column(db.String(255), nullable=True)

    created_by = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    bidder = db.relationship("Bidder", backref=db.backref("payments", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "bidder_id": self.bidder_id,
            "amount": money(self.amount),
            "method": self.method,
            "note": self.note,
            "currency": self.currency,
            "provider": self.provider,
            "provider_txn_id": self.provider_txn_id,
            "intent_id": self.intent_id,
            "reverses_payment_id": self.reverses_payment_id,
            "reversal_reason": self.reversal_reason,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }


class PaymentIntent(db.Model):
    """
    Provisional card payment request sent to the provider.

    UNITS: amount_minor is in minor units (pence/cents) because that is what
    the provider works in. Conversion to Payment.amount happens only in
    payment_service.minor_to_major.

    STATE MACHINE:
        pending -> succeeded | failed | expired
    Terminal states are final; nothing moves an intent out of them.
    """
    __tablename__ = "payment_intents"
    __table_args__ = (
        db.Index("ix_payment_intents_status_expires", "status", "expires_at"),
    )

    intent_id = db.Column(db.String(64), primary_key=True)
    bidder_id = db.Column(db.Integer, db.ForeignKey("bidders.id"), nullable=False, index=True)

    amount_minor = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False)
    channel = db.Column(db.String(16), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)
    sumup_checkout_id = db.Column(db.String(128), nullable=True, unique=True)
    note = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    bidder = db.relationship("Bidder", backref=db.backref("payment_intents", lazy=True))

    @property
    def is_terminal(self) -> bool:
        return self.status in INTENT_TERMINAL_STATUSES

    def to_dict(self) -> dict:
        return {
            "intent_id": self.intent_id,
            "bidder_id": self.bidder_id,
            "amount_minor": self.amount_minor,
            "currency": self.currency,
            "channel": self.channel,
            "status": self.status,
            "expires_at": to_utc_z(self.expires_at),
            "sumup_checkout_id": self.sumup_checkout_id,
            "note": self.note,
            "created_at": to_utc_z(self.created_at),
        }
