"""Unit tests for cent-exact discrepancy distribution.

All tests are *pure*: no database, no I/O.
"""

from __future__ import annotations

import uuid
from decimal import Decimal

import pytest

from carrier_settlement.core.errors import ErrorCode, LedgerConflictError
from carrier_settlement.services.settlement.distribution import distribute_discrepancy


def _ids(n):
    return sorted((uuid.uuid4() for _ in range(n)), key=str)


def test_no_discrepancy_returns_expected_amounts():
    a, b = _ids(2)
    result = distribute_discrepancy(
        [(a, Decimal("100.00")), (b, Decimal("150.00"))],
        Decimal("250.00"),
    )
    assert result == {a: Decimal("100.00"), b: Decimal("150.00")}


def test_missing_cent_goes_to_last_orders():
    """Three orders of 1.00 reported as 2.99 become 1.00, 1.00, 0.99."""
    a, b, c = _ids(3)
    result = distribute_discrepancy(
        [(c, Decimal("1.00")), (a, Decimal("1.00")), (b, Decimal("1.00"))],
        Decimal("2.99"),
    )
    assert result[a] == Decimal("1.00")
    assert result[b] == Decimal("1.00")
    assert result[c] == Decimal("0.99")
    assert sum(result.values()) == Decimal("2.99")


def test_surplus_cents_go_to_first_orders():
    a, b, c = _ids(3)
    result = distribute_discrepancy(
        [(a, Decimal("10.00")), (b, Decimal("10.00")), (c, Decimal("10.00"))],
        Decimal("30.05"),
    )
    assert [result[a], result[b], result[c]] == [
        Decimal("10.02"),
        Decimal("10.02"),
        Decimal("10.01"),
    ]


@pytest.mark.parametrize("reported", ["0.00", "0.01", "99.99", "123.45", "1000.00"])
def test_distribution_conserves_every_cent(reported):
    ids = _ids(7)
    amounts = ["12.34", "0.50", "99.00", "3.33", "7.77", "10.00", "1.01"]
    orders = list(zip(ids, (Decimal(a) for a in amounts)))
    expected_total = sum(Decimal(a) for a in amounts)

    try:
        result = distribute_discrepancy(orders, Decimal(reported))
    except LedgerConflictError as exc:
        assert exc.code == ErrorCode.DISCREPANCY_NOT_DISTRIBUTABLE
        return

    assert sum(result.values()) == Decimal(reported)
    # Every adjustment is within one cent of the mean adjustment
    mean = (Decimal(reported) - expected_total) / len(orders)
    for order_id, amount in orders:
        assert abs((result[order_id] - amount) - mean) < Decimal("0.01")


def test_negative_result_is_rejected():
    a, b = _ids(2)
    with pytest.raises(LedgerConflictError) as exc_info:
        distribute_discrepancy(
            [(a, Decimal("1.00")), (b, Decimal("100.00"))],
            Decimal("50.00"),
        )
    assert exc_info.value.code == ErrorCode.DISCREPANCY_NOT_DISTRIBUTABLE


def test_no_orders_with_discrepancy_is_rejected():
    with pytest.raises(LedgerConflictError) as exc_info:
        distribute_discrepancy([], Decimal("5.00"))
    assert exc_info.value.code == ErrorCode.DISCREPANCY_NOT_DISTRIBUTABLE


def test_no_orders_without_discrepancy():
    assert distribute_discrepancy([], Decimal("0.00")) == {}
