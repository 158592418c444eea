# Overview: Service-layer operations for settlement payments; manual payments, card intents and reversals.

"""
Payment Reconciler

WHY: A card payment can be reported complete by a provider webhook, by the
SumUp app's browser callback, or by a cashier polling. Any of these may
arrive more than once, late, or concurrently. The ledger must record each
provider payment exactly once.

DESIGN:
- Payment rows are append-only. Refunds are offsetting negative rows linked
  through reverses_payment_id.
- A card payment starts as a PaymentIntent (pending) and moves once to
  succeeded | failed | expired. Terminal intents are never touched again.
- finalize_intent is the ONLY path that turns an intent into a Payment.
  The existence check and the insert share one transaction, and the
  (provider, intent_id) unique constraint is the backstop: a uniqueness
  conflict means another signal already won and is reported as "duplicate".
- The provider HTTP call is never made while a DB transaction is open.
  Provider failures fail closed: the intent stays pending for a later poll
  or webhook.
- Amounts requested are checked against the outstanding balance, which is
  always recomputed from items and payments.
"""

from __future__ import annotations

import json
import uuid
from decimal import Decimal

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import (
    BalanceViolationError,
    ChannelDisabledError,
    NotFoundError,
    StateConflictError,
    TransientProviderError,
    ValidationError,
)
from ..extensions import db
from ..models import INTENT_CHANNELS, Bidder, Item, Payment, PaymentIntent
from ..time_utils import minutes_from_now, utcnow
from . import audit_service
from .auction_state_service import require_auction_state
from .concurrency import lock_for_update, run_with_retry
from .lot_service import bidder_totals, get_bidder
from .money import ZERO, major_to_minor, minor_to_major, parse_amount, parse_positive_int, to_money
from .state_cache import StateCache
from .sumup_client import SumUpClient, get_payment_provider


PAYMENT_STATES = ("settlement",)

PROVIDER = "sumup"

# Manual methods and the config flag that enables each
MANUAL_METHODS = {
    "cash": "CASH_PAYMENT_ENABLED",
    "card-manual": "MANUAL_CARD_PAYMENT_ENABLED",
    "paypal-manual": "PAYPAL_PAYMENT_ENABLED",
}

CHANNEL_FLAGS = {
    "hosted": "SUMUP_WEB_ENABLED",
    "app": "SUMUP_CARD_PRESENT_ENABLED",
    "app-ind": "SUMUP_APP_INDIRECT_ENABLED",
}

CHANNEL_METHODS = {
    "hosted": "sumup-web",
    "app": "sumup-app",
    "app-ind": "sumup-app",
}

NOTE_MAX_LENGTH = 100


def _clean_note(note, limit: int = NOTE_MAX_LENGTH) -> str | None:
    if note is None:
        return None
    text = " ".join(str(note).split())
    return text[:limit] or None


def get_payment_methods() -> dict:
    """Every payment method with its enabled flag and UI label."""
    config = current_app.config
    return {
        "cash": {"enabled": bool(config.get("CASH_PAYMENT_ENABLED")), "label": "Cash", "url": None},
        "card-manual": {
            "enabled": bool(config.get("MANUAL_CARD_PAYMENT_ENABLED")),
            "label": "Card (manual)",
            "url": None,
        },
        "paypal-manual": {
            "enabled": bool(config.get("PAYPAL_PAYMENT_ENABLED")),
            "label": "PayPal (manual)",
            "url": None,
        },
        "sumup-web": {
            "enabled": bool(config.get("SUMUP_WEB_ENABLED")),
            "label": "SumUp Web checkout",
            "url": config.get("SUMUP_RETURN_URL"),
        },
        "sumup-app": {
            "enabled": bool(config.get("SUMUP_CARD_PRESENT_ENABLED")),
            "label": "SumUp App",
            "url": config.get("SUMUP_CALLBACK_SUCCESS"),
        },
    }


def outstanding_balance(bidder: Bidder) -> Decimal:
    """What the bidder still owes in their auction, never below zero."""
    lots_total, payments_total = bidder_totals(bidder)
    return max(ZERO, lots_total - payments_total)


# =============================================================================
# MANUAL PAYMENTS
# =============================================================================

def recompute_balance_and_audit(bidder_id: int, actor: str | None = None) -> Decimal:
    """
    Recompute a bidder's balance and audit every lot they won as
    "paid in full" (balance <= 0) or "part paid".
    """
    bidder = db.session.get(Bidder, bidder_id)
    if bidder is None:
        raise NotFoundError(f"Bidder {bidder_id} not found", bidder_id=bidder_id)

    lots_total, payments_total = bidder_totals(bidder)
    balance = lots_total - payments_total
    action = "paid in full" if balance <= 0 else "part paid"

    items = (
        db.session.query(Item)
        .filter_by(winning_bidder_id=bidder.id, auction_id=bidder.auction_id)
        .order_by(Item.item_number)
        .all()
    )
    for item in items:
        audit_service.record(actor or "system", action, "item", item.id, {
            "paddle": bidder.paddle_number,
            "item_number": item.item_number,
            "price": to_money(item.hammer_price),
            "balance": balance,
            "description": item.description,
        })
    return balance


def record_payment(
    auction_id: int,
    bidder_id,
    amount,
    method: str = "cash",
    note: str | None = None,
    *,
    actor: str,
    cache: StateCache | None = None,
) -> dict:
    """
    Record a manual (cash / card-manual / paypal-manual) payment.

    Returns:
        {"payment": <payment dict>, "balance": <remaining balance>}

    Raises:
        ValidationError: bad method / bidder / amount
        ChannelDisabledError: method switched off
        StateConflictError: auction not in settlement
        BalanceViolationError: amount exceeds what is outstanding
    """
    if method not in MANUAL_METHODS:
        raise ValidationError("Invalid payment method", method=method)
    bidder_id = parse_positive_int(bidder_id, "bidder_id")
    amount = parse_amount(amount, "amount")

    if not current_app.config.get(MANUAL_METHODS[method]):
        current_app.logger.warning("Attempt to create manual payment with disabled method %s", method)
        raise ChannelDisabledError(f"Requested payment method {method} disabled", method=method)

    ref = require_auction_state(PAYMENT_STATES, auction_id=auction_id, cache=cache)
    note = _clean_note(note)

    def _op():
        bidder = db.session.query(Bidder).filter_by(id=bidder_id, auction_id=ref.id).first()
        if not bidder:
            current_app.logger.error(
                "Bidder %s not found in auction %s whilst recording payment", bidder_id, ref.id
            )
            raise ValidationError("Bidder not found for this auction", bidder_id=bidder_id)

        outstanding = outstanding_balance(bidder)
        if amount > outstanding:
            current_app.logger.warning(
                "Payment exceeds outstanding: bidder=%s amount=%s outstanding=%s", bidder_id, amount, outstanding
            )
            raise BalanceViolationError("Amount requested exceeds outstanding", outstanding=outstanding)

        payment = Payment(
            bidder_id=bidder.id,
            amount=amount,
            method=method,
            note=note,
            currency=current_app.config.get("CURRENCY", "GBP"),
            created_by=actor,
        )
        db.session.add(payment)
        db.session.commit()
        return payment, bidder.paddle_number

    payment, paddle = run_with_retry(_op)
    current_app.logger.info("%s payment by bidder %s for %s recorded", method, bidder_id, amount)

    audit_service.record(actor, "payment", "bidder", bidder_id, {
        "amount": amount,
        "method": method,
        "paddle": paddle,
        "note": note,
    })
    balance = recompute_balance_and_audit(bidder_id, actor)
    return {"payment": payment.to_dict(), "balance": float(balance)}


def reverse_payment(
    payment_id: int,
    reason: str,
    amount=None,
    *,
    auction_id: int,
    actor: str,
    note: str | None = None,
    cache: StateCache | None = None,
) -> dict:
    """
    Refund (all or part of) a payment by appending an offsetting negative row.

    amount defaults to what remains reversible on the original payment.

    Raises:
        ValidationError: no reason, bad amount, or original is not a positive payment
        NotFoundError: payment missing
        StateConflictError: auction not in settlement, or payment from another auction
        BalanceViolationError: amount exceeds what remains reversible
    """
    reason = _clean_note(reason, 255)
    if not reason:
        raise ValidationError("A reason is required to reverse a payment")
    note = _clean_note(note, 255)
    requested = parse_amount(amount, "amount") if amount not in (None, "") else None

    ref = require_auction_state(PAYMENT_STATES, auction_id=auction_id, cache=cache)

    def _op():
        original = lock_for_update(db.session.query(Payment).filter_by(id=payment_id)).first()
        if not original:
            raise NotFoundError("Payment not found", payment_id=payment_id)
        if original.bidder.auction_id != ref.id:
            raise StateConflictError("Payment and auction mismatch", payment_id=payment_id, auction_id=ref.id)
        if to_money(original.amount) <= 0:
            raise ValidationError("Cannot reverse non-positive payment", payment_id=payment_id)

        reversed_total = -to_money(
            db.session.query(db.func.sum(Payment.amount))
            .filter(Payment.reverses_payment_id == original.id)
            .scalar()
        )
        remaining = max(ZERO, to_money(original.amount) - reversed_total)
        refund = requested if requested is not None else remaining
        if refund <= 0:
            raise ValidationError("Nothing left to reverse on this payment", payment_id=payment_id)
        if refund > remaining:
            raise BalanceViolationError("Amount exceeds remaining", remaining=remaining)

        text = f"Refund of {original.currency} {refund} against ID #{original.id}. Reason: {reason}"
        if note:
            text += f" | note={note}"

        reversal = Payment(
            bidder_id=original.bidder_id,
            amount=-refund,
            method=f"{original.method} (Refund)",
            note=text[:255],
            currency=original.currency,
            provider=original.provider or "unknown",
            reverses_payment_id=original.id,
            reversal_reason=reason,
            created_by=actor,
        )
        db.session.add(reversal)
        db.session.commit()
        return {
            "reversal_id": reversal.id,
            "original_id": original.id,
            "bidder_id": original.bidder_id,
            "refunded": refund,
            "remaining": remaining - refund,
        }

    result = run_with_retry(_op)
    current_app.logger.info(
        "Payment reversed original=%s reversal=%s bidder=%s refunded=%s",
        result["original_id"], result["reversal_id"], result["bidder_id"], result["refunded"],
    )
    audit_service.record(actor, "payment_reversal", "bidder", result["bidder_id"], {
        "original_payment_id": result["original_id"],
        "reversal_payment_id": result["reversal_id"],
        "amount": result["refunded"],
        "reason": reason,
    })
    return {
        **result,
        "refunded": float(result["refunded"]),
        "remaining": float(result["remaining"]),
    }


# =============================================================================
# CARD INTENTS
# =============================================================================

def _is_expired(intent: PaymentIntent) -> bool:
    if intent.expires_at is None:
        return False
    expires_at = intent.expires_at
    if expires_at.tzinfo is not None:
        expires_at = expires_at.replace(tzinfo=None) - expires_at.utcoffset()
    return expires_at < utcnow()


def _transition_intent(intent_id: str, new_status: str) -> bool:
    """pending -> new_status as one conditional write. True when it applied."""
    def _op():
        updated = (
            db.session.query(PaymentIntent)
            .filter(PaymentIntent.intent_id == intent_id, PaymentIntent.status == "pending")
            .update({PaymentIntent.status: new_status}, synchronize_session=False)
        )
        db.session.commit()
        return updated

    return run_with_retry(_op) > 0


def expire_stale_intents() -> int:
    """Move every pending intent past its expires_at to expired."""
    def _op():
        updated = (
            db.session.query(PaymentIntent)
            .filter(
                PaymentIntent.status == "pending",
                PaymentIntent.expires_at.isnot(None),
                PaymentIntent.expires_at < utcnow(),
            )
            .update({PaymentIntent.status: "expired"}, synchronize_session=False)
        )
        db.session.commit()
        return updated

    expired = run_with_retry(_op)
    if expired:
        current_app.logger.info("Set %s stale payment intents to expired", expired)
    return expired


def create_intent(
    bidder_id,
    amount_minor,
    channel: str,
    note: str | None = None,
    *,
    actor: str,
    auction_id: int | None = None,
    provider: SumUpClient | None = None,
    cache: StateCache | None = None,
) -> dict:
    """
    Start a card payment for a bidder.

    hosted  -> a SumUp hosted checkout is created and its URL returned
    app     -> a sumupmerchant:// deep link carrying the intent id
    app-ind -> same deep link, for an indirect app payment request

    Raises:
        ValidationError: bad bidder / amount / channel
        ChannelDisabledError: channel switched off
        NotFoundError: bidder missing
        StateConflictError: auction not in settlement, or bidder from another auction
        BalanceViolationError: amount exceeds outstanding (carries outstanding_minor)
        TransientProviderError: hosted checkout could not be created
    """
    bidder_id = parse_positive_int(bidder_id, "bidder_id")
    amount_minor = parse_positive_int(amount_minor, "amount_minor")
    if channel not in INTENT_CHANNELS:
        current_app.logger.warning("Attempt to create SumUp payment with invalid channel: %s", channel)
        raise ValidationError(f"Invalid channel specified: {channel}", allowed=list(INTENT_CHANNELS))
    if not current_app.config.get(CHANNEL_FLAGS[channel]):
        current_app.logger.warning("Attempt to create SumUp payment with disabled channel: %s", channel)
        raise ChannelDisabledError(f"Requested payment method SumUp-{channel} is disabled", channel=channel)

    expire_stale_intents()

    bidder = db.session.get(Bidder, bidder_id)
    if not bidder:
        raise NotFoundError(f"Bidder {bidder_id} not found", bidder_id=bidder_id)
    if auction_id and int(auction_id) != bidder.auction_id:
        raise StateConflictError("Bidder and auction mismatch", bidder_id=bidder_id, auction_id=int(auction_id))
    require_auction_state(PAYMENT_STATES, auction_id=bidder.auction_id, cache=cache)

    provider = provider or get_payment_provider()
    currency = current_app.config.get("CURRENCY", "GBP")
    ttl = current_app.config.get("PAYMENT_INTENT_TTL_MINUTES", 20)

    def _op():
        outstanding_minor = major_to_minor(outstanding_balance(bidder))
        current_app.logger.debug(
            "Bidder %s outstanding amount=%s, amount requested=%s", bidder_id, outstanding_minor, amount_minor
        )
        if amount_minor > outstanding_minor:
            current_app.logger.warning(
                "Intent amount exceeds outstanding: bidder=%s amount_minor=%s outstanding_minor=%s",
                bidder_id, amount_minor, outstanding_minor,
            )
            raise BalanceViolationError(
                "Amount requested exceeds outstanding", outstanding_minor=outstanding_minor
            )

        intent = PaymentIntent(
            intent_id=str(uuid.uuid4()),
            bidder_id=bidder.id,
            amount_minor=amount_minor,
            currency=currency,
            channel=channel,
            status="pending",
            expires_at=minutes_from_now(ttl),
            note=_clean_note(note),
        )
        db.session.add(intent)
        db.session.commit()
        return intent

    intent = run_with_retry(_op)
    payload = {
        "intent_id": intent.intent_id,
        "amount_minor": amount_minor,
        "currency": currency,
        "channel": channel,
        "expires_at": intent.to_dict()["expires_at"],
    }
    title = f"Bidder {bidder.paddle_number}"

    if channel in ("app", "app-ind"):
        payload["deep_link"] = provider.build_deep_link(amount_minor, currency, title, intent.intent_id)
    else:
        try:
            checkout = provider.create_hosted_checkout(amount_minor, currency, intent.intent_id, title)
        except TransientProviderError:
            # No checkout exists, so nothing can complete this intent.
            _transition_intent(intent.intent_id, "failed")
            raise
        if checkout:
            def _store_checkout():
                row = db.session.get(PaymentIntent, intent.intent_id)
                row.sumup_checkout_id = checkout.checkout_id
                db.session.commit()

            run_with_retry(_store_checkout)
            payload["hosted_link"] = checkout.url

    current_app.logger.info(
        "Intent created %s bidder=%s amount_minor=%s channel=%s", intent.intent_id, bidder_id, amount_minor, channel
    )
    audit_service.record(actor, "payment intent", "bidder", bidder.id, {
        "intent_id": intent.intent_id,
        "amount_minor": amount_minor,
        "channel": channel,
    })
    return payload


def get_intent(intent_id: str) -> PaymentIntent:
    intent = db.session.get(PaymentIntent, intent_id)
    if not intent:
        raise NotFoundError("Payment intent not found", intent_id=intent_id)
    return intent


def finalize_intent(
    intent_id: str,
    raw_payload=None,
    source: str = "poll",
    provider: SumUpClient | None = None,
    provider_txn_id: str | None = None,
) -> str:
    """
    Turn a succeeded card intent into exactly one Payment row.

    Safe to call any number of times, from any trigger, concurrently.
    The payment's provider_txn_id is the hosted checkout's transaction id,
    else the caller's provider_txn_id (the app's tx code), else a fresh uuid.

    Returns one of:
        finalized    payment row written, intent succeeded
        duplicate    a payment for this intent already exists
        not_pending  intent is failed / expired already
        expired      intent was past expires_at and is now expired
        pending      provider still pending or unreachable; retry later
        failed       provider reports the checkout failed; intent now failed
        ignored      unknown intent, or provider status not PAID
    """
    logger = current_app.logger
    intent = db.session.get(PaymentIntent, intent_id)
    if intent is None:
        logger.warning("Finalize requested for unknown intent %s (source=%s)", intent_id, source)
        return "ignored"
    if intent.status == "succeeded":
        logger.debug("Duplicate finalize for intent %s ignored (source=%s)", intent_id, source)
        return "duplicate"
    if intent.status != "pending":
        return "not_pending"

    if _is_expired(intent):
        _transition_intent(intent_id, "expired")
        logger.info("Intent %s expired before completion", intent_id)
        return "expired"

    latest = None
    if intent.channel == "hosted":
        provider = provider or get_payment_provider()
        try:
            checkouts = provider.get_checkouts_by_reference(intent.intent_id)
        except TransientProviderError:
            logger.warning("Provider unavailable verifying intent %s; left pending", intent_id)
            return "pending"

        latest = checkouts[-1] if checkouts else None
        if latest is None:
            logger.warning("No SumUp checkout found for intent=%s", intent_id)
            return "pending"
        status = str(latest.get("status", "")).upper()
        if status == "PENDING":
            return "pending"
        if status == "FAILED":
            _transition_intent(intent_id, "failed")
            logger.info("Intent %s failed at provider", intent_id)
            return "failed"
        if status != "PAID":
            logger.warning("Intent %s has unexpected provider status %s", intent_id, status)
            return "ignored"

    transactions = (latest or {}).get("transactions") or []
    if transactions and transactions[0].get("id"):
        provider_txn_id = str(transactions[0]["id"])
    elif not provider_txn_id:
        provider_txn_id = str(uuid.uuid4())
    raw = raw_payload if raw_payload is not None else latest

    def _op():
        existing = (
            db.session.query(Payment.id)
            .filter(Payment.provider == PROVIDER, Payment.intent_id == intent_id)
            .first()
        )
        if existing:
            (
                db.session.query(PaymentIntent)
                .filter(PaymentIntent.intent_id == intent_id, PaymentIntent.status == "pending")
                .update({PaymentIntent.status: "succeeded"}, synchronize_session=False)
            )
            db.session.commit()
            return "duplicate", None

        updated = (
            db.session.query(PaymentIntent)
            .filter(PaymentIntent.intent_id == intent_id, PaymentIntent.status == "pending")
            .update({PaymentIntent.status: "succeeded"}, synchronize_session=False)
        )
        if updated == 0:
            db.session.rollback()
            return "not_pending", None

        payment = Payment(
            bidder_id=intent.bidder_id,
            amount=minor_to_major(intent.amount_minor),
            method=CHANNEL_METHODS[intent.channel],
            note=intent.note,
            currency=intent.currency,
            provider=PROVIDER,
            provider_txn_id=provider_txn_id,
            intent_id=intent_id,
            raw_payload=json.dumps(raw, default=str) if raw is not None else None,
            created_by=f"{PROVIDER}:{source}",
        )
        db.session.add(payment)
        db.session.commit()
        return "finalized", payment

    try:
        outcome, payment = run_with_retry(_op)
    except IntegrityError:
        logger.info("Concurrent finalize for intent %s lost the race; treated as duplicate", intent_id)
        return "duplicate"

    if outcome != "finalized":
        return outcome

    logger.info("Payment intent finalized: intent=%s amount_minor=%s source=%s", intent_id, intent.amount_minor, source)
    audit_service.record(f"{PROVIDER}:{source}", "payment", "bidder", intent.bidder_id, {
        "amount": payment.amount,
        "method": payment.method,
        "intent_id": intent_id,
        "provider_txn_id": provider_txn_id,
    })
    recompute_balance_and_audit(intent.bidder_id, f"{PROVIDER}:{source}")
    return outcome


def fail_intent_from_callback(intent_id: str, cause: str | None = None) -> bool:
    """pending -> failed. Any other status is left alone; True when it applied."""
    applied = _transition_intent(intent_id, "failed")
    if applied:
        current_app.logger.info("Intent %s marked failed (cause=%s)", intent_id, cause or "")
    return applied


# =============================================================================
# PROVIDER SIGNALS
# =============================================================================

def handle_webhook(body: dict | None, provider: SumUpClient | None = None) -> str:
    """Hosted checkout webhook: {"id": <checkout id>, ...} -> finalize outcome."""
    checkout_id = (body or {}).get("id")
    if not checkout_id:
        current_app.logger.info("SumUp webhook without checkout id")
        return "ignored"

    row = (
        db.session.query(PaymentIntent.intent_id)
        .filter(PaymentIntent.sumup_checkout_id == str(checkout_id))
        .first()
    )
    if row is None:
        current_app.logger.warning("SumUp webhook for unlinked checkout id=%s", checkout_id)
        return "ignored"
    return finalize_intent(row.intent_id, raw_payload=body, source="webhook", provider=provider)


def _first(query, *keys):
    for key in keys:
        value = query.get(key)
        if value:
            return value
    return None


def parse_app_callback(query) -> dict:
    """Normalise the SumUp app callback query string."""
    return {
        "status": (_first(query, "smp-status", "smpt-status", "status") or "").lower(),
        "intent_id": _first(query, "foreign-tx-id", "foreign_tx_id"),
        "tx_code": _first(query, "smp-tx-code", "smp_tx_code"),
        "cause": _first(query, "smp-failure-cause", "smp_failure_cause"),
        "message": _first(query, "smp-message", "smp_message"),
    }


def handle_app_callback(query, provider: SumUpClient | None = None) -> dict:
    """
    SumUp app success/fail redirect.

    The app may call either endpoint regardless of outcome, so the status
    parameter decides: success -> finalize; any other status -> fail the
    intent if it is still pending.
    """
    parsed = parse_app_callback(query)
    intent_id = parsed["intent_id"]
    current_app.logger.info(
        "SumUp app callback status=%s foreign_tx=%s tx_code=%s", parsed["status"], intent_id, parsed["tx_code"]
    )

    if not intent_id:
        current_app.logger.warning("SumUp app callback missing foreign tx ID")
        parsed["outcome"] = "ignored"
    elif parsed["status"] == "success":
        parsed["outcome"] = finalize_intent(
            intent_id,
            raw_payload=dict(query),
            source="app-callback",
            provider=provider,
            provider_txn_id=parsed["tx_code"],
        )
    elif parsed["status"]:
        parsed["outcome"] = "failed" if fail_intent_from_callback(intent_id, parsed["cause"]) else "not_pending"
    else:
        parsed["outcome"] = "ignored"
    return parsed
