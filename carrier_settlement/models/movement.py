"""Carrier account movements: the signed ledger between store and carrier.

Positive amounts mean the carrier owes the store (cash it collected);
negative amounts mean the store owes the carrier (fees, payments made to
the store).  One row per (order, movement type).
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from carrier_settlement.core.clock import utcnow
from carrier_settlement.core.database import Base


class MovementType:
    """Movement type labels."""

    COD_COLLECTED = "cod_collected"
    DELIVERY_FEE = "delivery_fee"
    FAILED_ATTEMPT_FEE = "failed_attempt_fee"
    PAYMENT_RECEIVED = "payment_received"
    PAYMENT_SENT = "payment_sent"
    ADJUSTMENT_CREDIT = "adjustment_credit"
    ADJUSTMENT_DEBIT = "adjustment_debit"
    DISCOUNT = "discount"
    REFUND = "refund"


# Required sign per type: +1 (>= 0), -1 (<= 0), 0 (either)
MOVEMENT_SIGNS: dict[str, int] = {
    MovementType.COD_COLLECTED: 1,
    MovementType.DELIVERY_FEE: -1,
    MovementType.FAILED_ATTEMPT_FEE: -1,
    MovementType.PAYMENT_RECEIVED: -1,
    MovementType.PAYMENT_SENT: 1,
    MovementType.ADJUSTMENT_CREDIT: -1,
    MovementType.ADJUSTMENT_DEBIT: 1,
    MovementType.DISCOUNT: -1,
    MovementType.REFUND: 0,
}

PAYMENT_TYPES = frozenset({MovementType.PAYMENT_RECEIVED, MovementType.PAYMENT_SENT})

# Types written per order by the delivery hooks and by settlement
ORDER_TYPES = frozenset(
    {
        MovementType.COD_COLLECTED,
        MovementType.DELIVERY_FEE,
        MovementType.FAILED_ATTEMPT_FEE,
    }
)


class CarrierMovement(Base):
    """A single signed entry in a carrier's account."""

    __tablename__ = "carrier_account_movements"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )
    store_id: Mapped[uuid.UUID] = mapped_column(
        nullable=False,
    )
    carrier_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("carriers.id"),
        nullable=False,
    )
    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("orders.id"),
        nullable=True,
    )
    order_number: Mapped[Optional[str]] = mapped_column(
        String(50),
    )
    movement_type: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        comment="See MovementType",
    )
    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )
    settlement_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("carrier_settlements.id"),
        nullable=True,
    )
    payment_record_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("carrier_payment_records.id"),
        nullable=True,
    )
    dispatch_batch_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        nullable=True,
    )
    description: Mapped[Optional[str]] = mapped_column(
        Text,
    )
    metadata_json: Mapped[Optional[dict[str, Any]]] = mapped_column(
        "metadata",
        JSON,
        nullable=True,
    )
    movement_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        default=date.today,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=utcnow,
    )
    created_by: Mapped[Optional[str]] = mapped_column(
        String(100),
    )

    __table_args__ = (
        UniqueConstraint("order_id", "movement_type", name="uq_movement_order_type"),
        Index("ix_movements_store_carrier", "store_id", "carrier_id"),
        Index("ix_movements_settlement", "settlement_id"),
        Index("ix_movements_payment", "payment_record_id"),
    )

    @property
    def is_settled(self) -> bool:
        return self.settlement_id is not None or self.payment_record_id is not None

    def __repr__(self) -> str:
        return (
            f"<CarrierMovement(order_number={self.order_number!r}, "
            f"movement_type={self.movement_type!r}, amount={self.amount})>"
        )
