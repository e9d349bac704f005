"""Rounding-safe distribution of a settlement discrepancy across COD orders.

When a carrier reports a collected total that differs from the expected COD
sum, the difference is spread over the COD orders in whole cents:

  * every order gets ``floor(discrepancy_cents / n)`` cents,
  * the leftover cents (always ``0 <= r < n``) go one each to the first
    ``r`` orders, ordered by the string form of their id.

The distributed amounts therefore add up exactly to the reported total and
no order's adjustment differs from the mean by a cent or more.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Sequence

from carrier_settlement.core.errors import ErrorCode, LedgerConflictError
from carrier_settlement.core.money import from_cents, to_cents


def distribute_discrepancy(
    orders: Sequence[tuple[Any, Decimal]],
    reported_total: Decimal,
) -> dict[Any, Decimal]:
    """Split *reported_total* over COD orders, preserving every cent.

    Args:
        orders: ``(order_id, expected_amount)`` pairs of the COD orders.
        reported_total: Cash the carrier reports having collected.

    Returns:
        Mapping of order id to its collected amount.

    Raises:
        LedgerConflictError: ``DISCREPANCY_NOT_DISTRIBUTABLE`` when there are
            no orders to absorb a non-zero difference, or when an order
            would end up with a negative collected amount.
    """
    expected_cents = sum(to_cents(amount) for _, amount in orders)
    discrepancy_cents = to_cents(reported_total) - expected_cents

    if not orders:
        if discrepancy_cents != 0:
            raise LedgerConflictError(
                ErrorCode.DISCREPANCY_NOT_DISTRIBUTABLE,
                "There are no cash-on-delivery orders to absorb the discrepancy",
                details={"discrepancy": str(from_cents(discrepancy_cents))},
            )
        return {}

    ordered = sorted(orders, key=lambda pair: str(pair[0]))
    share, remainder = divmod(discrepancy_cents, len(ordered))

    collected: dict[Any, Decimal] = {}
    for position, (order_id, amount) in enumerate(ordered):
        cents = to_cents(amount) + share + (1 if position < remainder else 0)
        if cents < 0:
            raise LedgerConflictError(
                ErrorCode.DISCREPANCY_NOT_DISTRIBUTABLE,
                f"Discrepancy would leave order {order_id} with a negative collected amount",
                details={"order_id": str(order_id), "amount": str(from_cents(cents))},
            )
        collected[order_id] = from_cents(cents)
    return collected
