# Overview: Domain error taxonomy shared by the auction services and routes.

"""
Ledger errors

Every caller-facing failure raised by the services is a LedgerError. Routes
turn them into JSON with `jsonify(e.to_dict()), e.status_code`; anything
that is not a LedgerError is an unexpected server error.

A repeated completion signal for an intent that is already terminal is NOT
an error: finalize_intent reports it as the "duplicate" outcome so that
third-party retries stay harmless.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable


class LedgerError(ValueError):
    """Base class for auction ledger failures."""

    status_code = 400
    code = "ledger_error"

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        payload = {"error": self.message, "code": self.code}
        for key, value in self.context.items():
            payload[key] = float(value) if isinstance(value, Decimal) else value
        return payload


class ValidationError(LedgerError):
    """400-level input problem."""

    code = "invalid_input"


class NotFoundError(LedgerError):
    """Auction, item, bidder, intent or payment id does not resolve."""

    status_code = 404
    code = "not_found"


class StateConflictError(LedgerError):
    """Operation not allowed in the auction's current lifecycle state."""

    status_code = 409
    code = "state_conflict"

    def __init__(self, message: str, allowed_states: Iterable[str] = (), **context):
        allowed = [s.lower() for s in allowed_states]
        if allowed:
            context["allowed_states"] = allowed
        super().__init__(message, **context)
        self.allowed_states = allowed


class LotConflictError(StateConflictError):
    """Lot already finalised, or cannot be undone while money is recorded."""

    code = "lot_conflict"


class PermissionDeniedError(LedgerError):
    status_code = 403
    code = "permission_denied"


class BalanceViolationError(LedgerError):
    """Requested amount exceeds what the bidder still owes."""

    code = "amount_exceeds_outstanding"


class ChannelDisabledError(LedgerError):
    """Payment channel or method switched off by configuration."""

    status_code = 503
    code = "channel_disabled"


class TransientProviderError(LedgerError):
    """Payment provider call failed or timed out; retry later."""

    status_code = 502
    code = "provider_unavailable"


class IntegrityViolationError(LedgerError):
    """A ledger invariant would have been broken; the transaction was rolled back."""

    status_code = 500
    code = "integrity_violation"
