"""Decimal helpers for two-decimal monetary amounts.

Every amount that crosses a service boundary goes through ``to_money`` so
SQLite floats, ints and strings all end up as quantized ``Decimal``.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value: Any) -> Decimal:
    """Convert *value* to a Decimal rounded half-up to cents.

    ``None`` becomes ``0.00``.  Floats are converted through ``str`` so
    ``0.1`` stays ``0.10`` instead of ``0.1000000000000000055...``.
    """
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_cents(value: Any) -> int:
    """Monetary value as an exact integer number of cents."""
    return int(to_money(value) * 100)


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT)


def is_finite_amount(value: Any) -> bool:
    """True when *value* parses as a finite decimal number."""
    try:
        return Decimal(str(value)).is_finite()
    except (InvalidOperation, ValueError, TypeError):
        return False
