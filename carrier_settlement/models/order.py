"""Order model, owned by the order-lifecycle service and referenced here.

The engine only reads pricing, payment and routing fields and writes back
the settlement outcome (``reconciled_at``, ``amount_collected``,
``has_amount_discrepancy``).
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column

from carrier_settlement.core.database import Base

DELIVERED_STATUSES = frozenset({"delivered"})
FAILED_STATUSES = frozenset({"failed", "returned", "rejected"})
IN_TRANSIT_STATUSES = frozenset({"shipped", "in_transit"})


class Order(Base):
    """A customer order assigned to a carrier for delivery."""

    __tablename__ = "orders"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )
    store_id: Mapped[uuid.UUID] = mapped_column(
        nullable=False,
        index=True,
    )
    order_number: Mapped[Optional[str]] = mapped_column(
        String(50),
    )
    total_price: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=0,
    )
    payment_method: Mapped[Optional[str]] = mapped_column(
        String(50),
    )
    prepaid_method: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
        comment="Set when a COD order was paid in advance (transfer, card...)",
    )
    delivery_status: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default="pending",
        comment=(
            "pending | shipped | in_transit | delivered | failed | returned "
            "| rejected | cancelled"
        ),
    )
    carrier_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("carriers.id"),
        nullable=True,
    )
    delivery_zone: Mapped[Optional[str]] = mapped_column(
        String(120),
    )
    shipping_city: Mapped[Optional[str]] = mapped_column(
        String(120),
    )
    outcome_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        nullable=True,
        comment="When the order reached a terminal delivery outcome",
    )
    amount_collected: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2),
        nullable=True,
    )
    has_amount_discrepancy: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
    )
    reconciled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=func.now(),
    )

    __table_args__ = (
        Index("ix_orders_carrier_outcome", "carrier_id", "outcome_at"),
    )

    @property
    def is_delivered(self) -> bool:
        return self.delivery_status in DELIVERED_STATUSES

    @property
    def is_failed(self) -> bool:
        return self.delivery_status in FAILED_STATUSES

    def __repr__(self) -> str:
        return (
            f"<Order(order_number={self.order_number!r}, "
            f"delivery_status={self.delivery_status!r}, total_price={self.total_price})>"
        )
