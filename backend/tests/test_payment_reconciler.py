# Overview: Pytest coverage for manual payments, card intents, finalisation and reversals.

"""
Payment Reconciler Tests

Covers:
- Manual payments against the outstanding balance
- Intent creation per channel (hosted checkout / app deep link)
- finalize_intent outcomes and exactly-once payment rows
- Provider webhook and app callback entry points
- Reversals as offsetting negative rows
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from auctionhouse.errors import (
    BalanceViolationError,
    ChannelDisabledError,
    StateConflictError,
    TransientProviderError,
    ValidationError,
)
from auctionhouse.extensions import db
from auctionhouse.models import AuditLogEntry, Payment, PaymentIntent
from auctionhouse.services import lot_service, payment_service
from auctionhouse.time_utils import utcnow


def audit_actions(action):
    return db.session.query(AuditLogEntry).filter_by(action=action).count()


def balance(bidder, auction):
    return lot_service.get_bidder_summary(bidder.id, auction.id)["balance"]


class TestRecordPayment:

    def test_cash_payment_reduces_balance(self, sold_lot):
        auction, _, bidder = sold_lot(Decimal("50.00"))

        result = payment_service.record_payment(auction.id, bidder.id, "20.00", "cash", "  at   desk ", actor="cashier")

        assert result["balance"] == 30.0
        assert result["payment"]["amount"] == 20.0
        assert result["payment"]["note"] == "at desk"
        assert result["payment"]["created_by"] == "cashier"
        assert balance(bidder, auction) == Decimal("30.00")

    def test_amount_over_outstanding_rejected(self, db_session, sold_lot):
        auction, _, bidder = sold_lot(Decimal("50.00"))

        with pytest.raises(BalanceViolationError) as exc:
            payment_service.record_payment(auction.id, bidder.id, "50.01", "cash", actor="cashier")

        assert exc.value.to_dict()["outstanding"] == 50.0
        assert db_session.query(Payment).count() == 0

    def test_invalid_method(self, sold_lot):
        auction, _, bidder = sold_lot(Decimal("50.00"))
        with pytest.raises(ValidationError):
            payment_service.record_payment(auction.id, bidder.id, "5", "bitcoin", actor="cashier")

    def test_disabled_method(self, app, sold_lot, monkeypatch):
        monkeypatch.setitem(app.config, "PAYPAL_PAYMENT_ENABLED", False)
        auction, _, bidder = sold_lot(Decimal("50.00"))
        with pytest.raises(ChannelDisabledError):
            payment_service.record_payment(auction.id, bidder.id, "5", "paypal-manual", actor="cashier")

    def test_bidder_from_other_auction(self, sold_lot):
        a, _, _ = sold_lot(Decimal("50.00"))
        _, _, other_bidder = sold_lot(Decimal("20.00"))
        with pytest.raises(ValidationError):
            payment_service.record_payment(a.id, other_bidder.id, "5", "cash", actor="cashier")

    def test_payments_only_in_settlement(self, make_auction, sold_lot):
        live = make_auction(status="live")
        auction, _, bidder = sold_lot(Decimal("50.00"), auction=live)
        with pytest.raises(StateConflictError):
            payment_service.record_payment(auction.id, bidder.id, "5", "cash", actor="cashier")

    def test_part_paid_then_paid_in_full(self, sold_lot):
        auction, item, bidder = sold_lot(Decimal("50.00"))

        payment_service.record_payment(auction.id, bidder.id, "20", "cash", actor="cashier")
        assert audit_actions("part paid") == 1
        assert audit_actions("paid in full") == 0

        payment_service.record_payment(auction.id, bidder.id, "30", "card-manual", actor="cashier")
        assert audit_actions("paid in full") == 1

        entry = db.session.query(AuditLogEntry).filter_by(action="paid in full").one()
        assert entry.object_id == item.id
        assert entry.details_dict["balance"] == 0.0
        assert entry.details_dict["auction_id"] == auction.id

    def test_payment_methods_listing(self, app):
        methods = payment_service.get_payment_methods()
        assert set(methods) == {"cash", "card-manual", "paypal-manual", "sumup-web", "sumup-app"}
        assert methods["cash"]["enabled"] is True


class TestCreateIntent:

    def test_app_channel_returns_deep_link(self, db_session, sold_lot):
        _, _, bidder = sold_lot(Decimal("50.00"))

        payload = payment_service.create_intent(bidder.id, 4000, "app", "table 4", actor="cashier")

        intent = db_session.get(PaymentIntent, payload["intent_id"])
        assert intent.status == "pending"
        assert intent.amount_minor == 4000
        assert payload["deep_link"].startswith("sumupmerchant://pay/1.0?")
        assert f"foreign-tx-id={payload['intent_id']}" in payload["deep_link"]
        assert "amount=40.00" in payload["deep_link"]

    def test_amount_over_outstanding_reports_minor_units(self, db_session, sold_lot):
        auction, _, bidder = sold_lot(Decimal("50.00"))
        payment_service.record_payment(auction.id, bidder.id, "10.00", "cash", actor="cashier")

        with pytest.raises(BalanceViolationError) as exc:
            payment_service.create_intent(bidder.id, 4001, "app", actor="cashier")

        assert exc.value.to_dict()["outstanding_minor"] == 4000
        assert db_session.query(PaymentIntent).count() == 0

    def test_invalid_channel(self, sold_lot):
        _, _, bidder = sold_lot(Decimal("50.00"))
        with pytest.raises(ValidationError):
            payment_service.create_intent(bidder.id, 100, "paypal", actor="cashier")

    def test_disabled_channel(self, app, sold_lot, monkeypatch):
        monkeypatch.setitem(app.config, "SUMUP_WEB_ENABLED", False)
        _, _, bidder = sold_lot(Decimal("50.00"))
        with pytest.raises(ChannelDisabledError):
            payment_service.create_intent(bidder.id, 100, "hosted", actor="cashier")

    def test_bidder_and_auction_mismatch(self, sold_lot):
        _, _, bidder = sold_lot(Decimal("50.00"))
        other, _, _ = sold_lot(Decimal("10.00"))
        with pytest.raises(StateConflictError):
            payment_service.create_intent(bidder.id, 100, "app", actor="cashier", auction_id=other.id)

    def test_hosted_checkout_is_stored(self, db_session, sold_lot, provider):
        _, _, bidder = sold_lot(Decimal("50.00"))

        payload = payment_service.create_intent(bidder.id, 2500, "hosted", actor="cashier")

        intent = db_session.get(PaymentIntent, payload["intent_id"])
        assert intent.sumup_checkout_id == "chk-1"
        assert payload["hosted_link"] == "https://pay.sumup.test/chk-1"
        assert provider.created[0]["reference"] == payload["intent_id"]
        assert provider.created[0]["amount_minor"] == 2500

    def test_provider_failure_marks_intent_failed(self, db_session, sold_lot, provider):
        _, _, bidder = sold_lot(Decimal("50.00"))
        provider.unavailable = True

        with pytest.raises(TransientProviderError):
            payment_service.create_intent(bidder.id, 2500, "hosted", actor="cashier")

        intent = db_session.query(PaymentIntent).one()
        assert intent.status == "failed"

    def test_stale_intents_expire(self, db_session, sold_lot):
        _, _, bidder = sold_lot(Decimal("50.00"))
        payload = payment_service.create_intent(bidder.id, 1000, "app", actor="cashier")
        intent = db_session.get(PaymentIntent, payload["intent_id"])
        intent.expires_at = utcnow() - timedelta(minutes=1)
        db_session.commit()

        assert payment_service.expire_stale_intents() == 1
        assert db_session.get(PaymentIntent, payload["intent_id"]).status == "expired"


class TestFinalizeIntent:

    def _app_intent(self, sold_lot, amount_minor=4000, price=Decimal("50.00")):
        auction, _, bidder = sold_lot(price)
        payload = payment_service.create_intent(bidder.id, amount_minor, "app", actor="cashier")
        return auction, bidder, payload["intent_id"]

    def _hosted_intent(self, sold_lot, amount_minor=5000):
        auction, _, bidder = sold_lot(Decimal("50.00"))
        payload = payment_service.create_intent(bidder.id, amount_minor, "hosted", actor="cashier")
        return auction, bidder, payload["intent_id"]

    def test_finalize_writes_one_payment(self, db_session, sold_lot):
        auction, bidder, intent_id = self._app_intent(sold_lot)

        assert payment_service.finalize_intent(intent_id, source="poll") == "finalized"

        payment = db_session.query(Payment).filter_by(intent_id=intent_id).one()
        assert payment.amount == Decimal("40.00")
        assert payment.method == "sumup-app"
        assert payment.provider == "sumup"
        assert payment.created_by == "sumup:poll"
        assert db_session.get(PaymentIntent, intent_id).status == "succeeded"
        assert balance(bidder, auction) == Decimal("10.00")

    def test_repeat_signals_are_duplicates(self, db_session, sold_lot):
        _, _, intent_id = self._app_intent(sold_lot)
        payment_service.finalize_intent(intent_id, source="app-callback")

        assert payment_service.finalize_intent(intent_id, source="webhook") == "duplicate"
        assert payment_service.finalize_intent(intent_id, source="poll") == "duplicate"
        assert db_session.query(Payment).filter_by(intent_id=intent_id).count() == 1

    def test_existing_payment_completes_pending_intent(self, db_session, sold_lot):
        _, bidder, intent_id = self._app_intent(sold_lot)
        db_session.add(Payment(
            bidder_id=bidder.id, amount=Decimal("40.00"), method="sumup-app",
            provider="sumup", intent_id=intent_id,
        ))
        db_session.commit()

        assert payment_service.finalize_intent(intent_id) == "duplicate"
        assert db_session.get(PaymentIntent, intent_id).status == "succeeded"
        assert db_session.query(Payment).filter_by(intent_id=intent_id).count() == 1

    def test_lost_race_reported_as_duplicate(self, db_session, sold_lot, monkeypatch):
        _, _, intent_id = self._app_intent(sold_lot)

        def conflicting(func, **kwargs):
            raise IntegrityError("INSERT INTO payments", {}, Exception("UNIQUE constraint failed"))

        monkeypatch.setattr(payment_service, "run_with_retry", conflicting)

        assert payment_service.finalize_intent(intent_id) == "duplicate"

    def test_unique_provider_intent_constraint(self, db_session, sold_lot):
        _, bidder, intent_id = self._app_intent(sold_lot)
        for _ in range(2):
            db_session.add(Payment(
                bidder_id=bidder.id, amount=Decimal("1.00"), method="sumup-app",
                provider="sumup", intent_id=intent_id,
            ))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

    def test_unknown_intent_ignored(self, db_session):
        assert payment_service.finalize_intent("no-such-intent") == "ignored"

    def test_expired_intent(self, db_session, sold_lot):
        _, _, intent_id = self._app_intent(sold_lot)
        intent = db_session.get(PaymentIntent, intent_id)
        intent.expires_at = utcnow() - timedelta(seconds=5)
        db_session.commit()

        assert payment_service.finalize_intent(intent_id) == "expired"
        assert db_session.get(PaymentIntent, intent_id).status == "expired"
        assert payment_service.finalize_intent(intent_id) == "not_pending"
        assert db_session.query(Payment).count() == 0

    def test_failed_intent_not_pending(self, db_session, sold_lot):
        _, _, intent_id = self._app_intent(sold_lot)
        assert payment_service.fail_intent_from_callback(intent_id, "CANCELLED") is True
        assert payment_service.fail_intent_from_callback(intent_id) is False
        assert payment_service.finalize_intent(intent_id) == "not_pending"

    def test_hosted_pending_without_checkout(self, db_session, sold_lot, provider):
        _, _, intent_id = self._hosted_intent(sold_lot)
        assert payment_service.finalize_intent(intent_id) == "pending"
        assert provider.lookups == [intent_id]

    def test_hosted_provider_pending(self, db_session, sold_lot, provider):
        _, _, intent_id = self._hosted_intent(sold_lot)
        provider.set_status(intent_id, "PENDING")
        assert payment_service.finalize_intent(intent_id) == "pending"
        assert db_session.get(PaymentIntent, intent_id).status == "pending"

    def test_hosted_provider_unavailable_stays_pending(self, db_session, sold_lot, provider):
        _, _, intent_id = self._hosted_intent(sold_lot)
        provider.set_status(intent_id, "PAID", txn_id="TX-1")
        provider.unavailable = True

        assert payment_service.finalize_intent(intent_id) == "pending"
        assert db_session.query(Payment).count() == 0

        provider.unavailable = False
        assert payment_service.finalize_intent(intent_id) == "finalized"

    def test_hosted_paid_records_transaction_id(self, db_session, sold_lot, provider):
        _, _, intent_id = self._hosted_intent(sold_lot)
        provider.set_status(intent_id, "PAID", txn_id="TX-42")

        assert payment_service.finalize_intent(intent_id) == "finalized"

        payment = db_session.query(Payment).one()
        assert payment.provider_txn_id == "TX-42"
        assert payment.method == "sumup-web"
        assert '"TX-42"' in payment.raw_payload

    def test_hosted_failed(self, db_session, sold_lot, provider):
        _, _, intent_id = self._hosted_intent(sold_lot)
        provider.set_status(intent_id, "FAILED")

        assert payment_service.finalize_intent(intent_id) == "failed"
        assert db_session.get(PaymentIntent, intent_id).status == "failed"

    def test_hosted_unexpected_status_ignored(self, db_session, sold_lot, provider):
        _, _, intent_id = self._hosted_intent(sold_lot)
        provider.set_status(intent_id, "EXPIRED")
        assert payment_service.finalize_intent(intent_id) == "ignored"
        assert db_session.get(PaymentIntent, intent_id).status == "pending"


class TestProviderSignals:

    def test_webhook_finalizes_by_checkout_id(self, db_session, sold_lot, provider):
        _, _, bidder = sold_lot(Decimal("50.00"))
        payload = payment_service.create_intent(bidder.id, 5000, "hosted", actor="cashier")
        provider.set_status(payload["intent_id"], "PAID", txn_id="TX-9")

        assert payment_service.handle_webhook({"id": "chk-1", "status": "PAID"}) == "finalized"
        assert payment_service.handle_webhook({"id": "chk-1", "status": "PAID"}) == "duplicate"

        payment = db_session.query(Payment).one()
        assert payment.created_by == "sumup:webhook"

    def test_webhook_without_known_checkout(self, db_session):
        assert payment_service.handle_webhook({}) == "ignored"
        assert payment_service.handle_webhook({"id": "chk-unknown"}) == "ignored"

    def test_parse_app_callback(self):
        parsed = payment_service.parse_app_callback({
            "smp-status": "SUCCESS",
            "foreign-tx-id": "intent-1",
            "smp-tx-code": "TXCODE",
        })
        assert parsed == {
            "status": "success",
            "intent_id": "intent-1",
            "tx_code": "TXCODE",
            "cause": None,
            "message": None,
        }

    def test_parse_app_callback_alternate_keys(self):
        parsed = payment_service.parse_app_callback({
            "smpt-status": "failed",
            "foreign_tx_id": "intent-2",
            "smp_failure_cause": "DECLINED",
        })
        assert parsed["status"] == "failed"
        assert parsed["intent_id"] == "intent-2"
        assert parsed["cause"] == "DECLINED"

    def test_app_callback_success_keeps_tx_code(self, db_session, sold_lot):
        _, _, bidder = sold_lot(Decimal("50.00"))
        payload = payment_service.create_intent(bidder.id, 2500, "app", actor="cashier")

        result = payment_service.handle_app_callback({
            "smp-status": "success",
            "foreign-tx-id": payload["intent_id"],
            "smp-tx-code": "TX1",
        })

        payment = db_session.query(Payment).filter_by(intent_id=payload["intent_id"]).one()
        assert result["outcome"] == "finalized"
        assert payment.provider_txn_id == "TX1"
        assert payment.amount == Decimal("25.00")

    def test_app_callback_failure_fails_intent(self, db_session, sold_lot):
        _, _, bidder = sold_lot(Decimal("50.00"))
        payload = payment_service.create_intent(bidder.id, 1000, "app", actor="cashier")

        result = payment_service.handle_app_callback({
            "smp-status": "failed",
            "foreign-tx-id": payload["intent_id"],
        })

        assert result["outcome"] == "failed"
        assert db_session.get(PaymentIntent, payload["intent_id"]).status == "failed"

    def test_app_callback_without_intent(self, db_session):
        assert payment_service.handle_app_callback({"smp-status": "success"})["outcome"] == "ignored"


class TestReversePayment:

    def _paid(self, sold_lot, amount="30.00"):
        auction, item, bidder = sold_lot(Decimal("50.00"))
        result = payment_service.record_payment(auction.id, bidder.id, amount, "cash", actor="cashier")
        return auction, bidder, result["payment"]["id"]

    def test_partial_reversal(self, db_session, sold_lot):
        auction, bidder, payment_id = self._paid(sold_lot)

        result = payment_service.reverse_payment(
            payment_id, "Overcharged", "10.00", auction_id=auction.id, actor="cashier"
        )

        assert result["refunded"] == 10.0
        assert result["remaining"] == 20.0
        reversal = db_session.get(Payment, result["reversal_id"])
        assert reversal.amount == Decimal("-10.00")
        assert reversal.method == "cash (Refund)"
        assert reversal.reverses_payment_id == payment_id
        assert reversal.provider == "unknown"
        assert reversal.note.startswith(f"Refund of GBP 10.00 against ID #{payment_id}. Reason: Overcharged")
        assert balance(bidder, auction) == Decimal("30.00")

    def test_reversal_cannot_exceed_remaining(self, db_session, sold_lot):
        auction, _, payment_id = self._paid(sold_lot)
        payment_service.reverse_payment(payment_id, "First", "25.00", auction_id=auction.id, actor="cashier")

        with pytest.raises(BalanceViolationError) as exc:
            payment_service.reverse_payment(payment_id, "Second", "5.01", auction_id=auction.id, actor="cashier")

        assert exc.value.to_dict()["remaining"] == 5.0

    def test_default_reverses_whatever_remains(self, db_session, sold_lot):
        auction, bidder, payment_id = self._paid(sold_lot)
        payment_service.reverse_payment(payment_id, "Part", "12.50", auction_id=auction.id, actor="cashier")

        result = payment_service.reverse_payment(payment_id, "Rest", auction_id=auction.id, actor="cashier")

        assert result["refunded"] == 17.5
        assert result["remaining"] == 0.0
        with pytest.raises(ValidationError):
            payment_service.reverse_payment(payment_id, "Again", auction_id=auction.id, actor="cashier")

    def test_reason_required(self, sold_lot):
        auction, _, payment_id = self._paid(sold_lot)
        with pytest.raises(ValidationError):
            payment_service.reverse_payment(payment_id, "   ", auction_id=auction.id, actor="cashier")

    def test_reversal_row_cannot_be_reversed(self, sold_lot):
        auction, _, payment_id = self._paid(sold_lot)
        result = payment_service.reverse_payment(payment_id, "Oops", "5", auction_id=auction.id, actor="cashier")
        with pytest.raises(ValidationError):
            payment_service.reverse_payment(result["reversal_id"], "Undo", auction_id=auction.id, actor="cashier")

    def test_payment_from_other_auction(self, sold_lot):
        _, _, payment_id = self._paid(sold_lot)
        other, _, _ = sold_lot(Decimal("5.00"))
        with pytest.raises(StateConflictError):
            payment_service.reverse_payment(payment_id, "Wrong", auction_id=other.id, actor="cashier")

    def test_reversal_does_not_emit_paid_audits(self, db_session, sold_lot):
        auction, _, payment_id = self._paid(sold_lot, amount="50.00")
        paid_before = audit_actions("paid in full")
        part_before = audit_actions("part paid")

        payment_service.reverse_payment(payment_id, "Refund", auction_id=auction.id, actor="cashier")

        assert audit_actions("paid in full") == paid_before
        assert audit_actions("part paid") == part_before
        assert audit_actions("payment_reversal") == 1


class TestSettlementScenario:

    def test_cash_then_card_settles_balance(self, db_session, sold_lot):
        """Lot 50.00: cash 10.00, then a 40.00 app payment confirmed twice."""
        auction, _, bidder = sold_lot(Decimal("50.00"))

        payment_service.record_payment(auction.id, bidder.id, "10.00", "cash", actor="cashier")
        payload = payment_service.create_intent(bidder.id, 4000, "app", actor="cashier")

        query = {"smp-status": "success", "foreign-tx-id": payload["intent_id"], "smp-tx-code": "TX1"}
        assert payment_service.handle_app_callback(query)["outcome"] == "finalized"
        assert payment_service.finalize_intent(payload["intent_id"], source="poll") == "duplicate"

        assert db_session.query(Payment).filter_by(bidder_id=bidder.id).count() == 2
        assert balance(bidder, auction) == Decimal("0.00")
        summary = lot_service.get_auction_payment_summary(auction.id)
        assert summary["breakdown"] == {"cash": 10.0, "sumup-app": 40.0}
