"""Cash-on-delivery detection.

``is_order_cod`` is the only place that decides whether the carrier collects
cash for an order.  Delivery processing, settlements and the pending views
all go through it.
"""

from __future__ import annotations

from typing import Iterable, Optional

from carrier_settlement.core.config import settings


def is_order_cod(
    payment_method: Optional[str],
    prepaid_method: Optional[str] = None,
    cod_labels: Optional[Iterable[str]] = None,
) -> bool:
    """True when the carrier is expected to collect cash for the order.

    An order that was prepaid (``prepaid_method`` set) is never COD, whatever
    its original payment method says.  Otherwise the trimmed, lower-cased
    payment method must be one of the configured cash labels; a missing
    method counts as the empty label.
    """
    if prepaid_method is not None and prepaid_method.strip():
        return False
    labels = settings.cod_payment_methods if cod_labels is None else cod_labels
    method = (payment_method or "").strip().lower()
    return method in {label.strip().lower() for label in labels}
