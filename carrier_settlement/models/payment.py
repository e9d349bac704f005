"""Payment records: actual cash transfers between a store and a carrier."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    JSON,
    Date,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from carrier_settlement.core.clock import utcnow
from carrier_settlement.core.database import Base

DIRECTIONS = ("from_carrier", "to_carrier")
PAYMENT_METHODS = (
    "cash",
    "bank_transfer",
    "mobile_payment",
    "check",
    "deduction",
    "other",
)


class PaymentRecord(Base):
    """One real transfer, with the settlements and movements it discharges."""

    __tablename__ = "carrier_payment_records"

    code_field = "payment_code"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )
    store_id: Mapped[uuid.UUID] = mapped_column(
        nullable=False,
        index=True,
    )
    carrier_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("carriers.id"),
        nullable=False,
    )
    payment_code: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
    )
    direction: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="from_carrier | to_carrier",
    )
    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )
    payment_method: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
    )
    payment_reference: Mapped[Optional[str]] = mapped_column(
        String(120),
    )
    notes: Mapped[Optional[str]] = mapped_column(
        Text,
    )
    settlement_ids: Mapped[list] = mapped_column(
        JSON,
        default=list,
    )
    movement_ids: Mapped[list] = mapped_column(
        JSON,
        default=list,
    )
    period_start: Mapped[Optional[date]] = mapped_column(
        Date,
        nullable=True,
    )
    period_end: Mapped[Optional[date]] = mapped_column(
        Date,
        nullable=True,
    )
    status: Mapped[str] = mapped_column(
        String(20),
        default="completed",
    )
    payment_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        default=date.today,
    )
    created_by: Mapped[Optional[str]] = mapped_column(
        String(100),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=utcnow,
    )

    __table_args__ = (
        UniqueConstraint("store_id", "payment_code", name="uq_payment_store_code"),
    )

    def __repr__(self) -> str:
        return (
            f"<PaymentRecord(code={self.payment_code!r}, direction={self.direction!r}, "
            f"amount={self.amount})>"
        )
