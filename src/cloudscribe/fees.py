"""Platform fee arithmetic.

All splitting happens in the currency's minor unit (kobo for NGN) so the
numbers we show match the integer amount the gateway charges. The fee is
rounded to the nearest minor unit with ties away from zero; the seller gets
whatever is left, so fee + seller amount always equals the subtotal.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from cloudscribe.config import DEFAULT_CURRENCY, MINOR_UNITS_PER_MAJOR, PLATFORM_FEE_RATE
from cloudscribe.schema import FeeBreakdown
from cloudscribe.validation import validate_money, validate_quantity

_ONE = Decimal("1")


def to_minor_units(amount: Decimal) -> int:
    """Major units to an integer count of minor units (ties away from zero)."""
    return int((amount * MINOR_UNITS_PER_MAJOR).quantize(_ONE, rounding=ROUND_HALF_UP))


def from_minor_units(minor: int) -> Decimal:
    return (Decimal(minor) / MINOR_UNITS_PER_MAJOR).quantize(Decimal("0.01"))


def line_subtotal(price: Any, quantity: Any) -> Decimal:
    """``price * quantity`` after validating both."""
    unit = validate_money(price, "price")
    return unit * validate_quantity(quantity)


def calculate_fees(subtotal: Any, currency: str = DEFAULT_CURRENCY) -> FeeBreakdown:
    """Split a non-negative subtotal into platform fee and seller amount.

    Raises ValidationError for negative, non-finite or non-numeric input and
    for amounts finer than one minor unit; the subtotal is never clamped or
    rounded.
    """
    amount = validate_money(subtotal, "subtotal")

    amount_minor = to_minor_units(amount)
    fee_minor = int((amount_minor * PLATFORM_FEE_RATE).quantize(_ONE, rounding=ROUND_HALF_UP))
    seller_minor = amount_minor - fee_minor

    return FeeBreakdown(
        subtotal=from_minor_units(amount_minor),
        platform_fee=from_minor_units(fee_minor),
        seller_amount=from_minor_units(seller_minor),
        amount_minor=amount_minor,
        platform_fee_minor=fee_minor,
        seller_amount_minor=seller_minor,
        currency=currency,
    )
