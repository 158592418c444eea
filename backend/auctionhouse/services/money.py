# Overview: Money helpers; the one place where minor and major units meet.

"""
UNITS:
- Item.hammer_price and Payment.amount are MAJOR units (e.g. 12.50 pounds),
  stored as fixed-point decimals.
- PaymentIntent.amount_minor is MINOR units (e.g. 1250 pence), matching the
  card provider's API.

Convert only through minor_to_major / major_to_minor.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from ..errors import ValidationError


CENT = Decimal("0.01")
ZERO = Decimal("0.00")

# 9,999,999.99 in major units
MAX_AMOUNT = Decimal("9999999.99")


def to_money(value) -> Decimal:
    """Normalise a DB/JSON number to a 2dp Decimal; None -> 0.00."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value.quantize(CENT, rounding=ROUND_HALF_UP)
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def minor_to_major(amount_minor: int) -> Decimal:
    """1250 -> Decimal('12.50')"""
    if isinstance(amount_minor, bool) or not isinstance(amount_minor, int):
        raise ValidationError("amount_minor must be an integer")
    return (Decimal(amount_minor) / 100).quantize(CENT)


def major_to_minor(amount) -> int:
    """Decimal('12.50') -> 1250 (half-up on sub-minor fractions)."""
    return int((to_money(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def parse_amount(value, field: str = "amount") -> Decimal:
    """
    Validate a caller-supplied positive major-unit amount.

    Raises:
        ValidationError: missing, non-numeric, non-positive or too large
    """
    if value is None or isinstance(value, bool) or value == "":
        raise ValidationError(f"{field} is required")
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationError(f"{field} must be a number")
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a number")
    amount = amount.quantize(CENT, rounding=ROUND_HALF_UP)
    if amount <= 0:
        raise ValidationError(f"{field} must be positive")
    if amount > MAX_AMOUNT:
        raise ValidationError(f"{field} is too large")
    return amount


def parse_positive_int(value, field: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a positive integer")
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if not isinstance(value, int) or value <= 0:
        raise ValidationError(f"{field} must be a positive integer")
    return value
