# Overview: Decimal money helpers shared by models and services.

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

TWOPLACES = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value) -> Decimal:
    """
    Normalize a monetary value to a 2dp Decimal (half-up).

    Floats go through str() so 0.1 stays 0.10 rather than its binary expansion.
    """
    if value is None or value == "":
        return ZERO
    if isinstance(value, bool):
        raise ValueError("amount must be a number")
    if isinstance(value, float):
        value = str(value)
    try:
        amount = Decimal(value)
        if not amount.is_finite():
            raise ValueError(f"invalid amount: {value!r}")
        return amount.quantize(TWOPLACES, rounding=ROUND_HALF_UP)
    except (InvalidOperation, TypeError):
        raise ValueError(f"invalid amount: {value!r}")


def money_str(value) -> str | None:
    if value is None:
        return None
    return str(to_money(value))
