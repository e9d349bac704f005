"""Carrier settlement model: one immutable snapshot per settlement run."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from carrier_settlement.core.clock import utcnow
from carrier_settlement.core.database import Base


class Settlement(Base):
    """Aggregated outcome of settling a batch of orders with one carrier.

    Totals are frozen at creation.  Only the payment-tracking fields
    (``amount_paid``, ``balance_due``, ``status``, ``payment_date``) change
    afterwards; corrections are booked as adjustment movements.
    """

    __tablename__ = "carrier_settlements"

    # Column holding the human-readable code (used by the code generator)
    code_field = "settlement_code"

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
    settlement_code: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
    )
    settlement_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )

    # -- Order counts --
    total_dispatched: Mapped[int] = mapped_column(Integer, default=0)
    total_delivered: Mapped[int] = mapped_column(Integer, default=0)
    total_not_delivered: Mapped[int] = mapped_column(Integer, default=0)
    total_cod_delivered: Mapped[int] = mapped_column(Integer, default=0)
    total_prepaid_delivered: Mapped[int] = mapped_column(Integer, default=0)

    # -- Money --
    total_cod_expected: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    total_cod_collected: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    carrier_fees_cod: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    carrier_fees_prepaid: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    total_carrier_fees: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    failed_attempt_fee: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    net_receivable: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        default=0,
        comment="cod collected - carrier fees - failed attempt fees",
    )
    discrepancy_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    has_discrepancy: Mapped[bool] = mapped_column(Boolean, default=False)

    # -- Payment tracking --
    amount_paid: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    balance_due: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    status: Mapped[str] = mapped_column(
        String(20),
        default="pending",
        comment="pending | partial | paid",
    )
    payment_date: Mapped[Optional[date]] = mapped_column(
        Date,
        nullable=True,
    )

    notes: Mapped[Optional[str]] = mapped_column(
        Text,
    )
    created_by: Mapped[Optional[str]] = mapped_column(
        String(100),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=utcnow,
    )

    __table_args__ = (
        UniqueConstraint("store_id", "settlement_code", name="uq_settlement_store_code"),
        Index("ix_settlements_carrier_date", "carrier_id", "settlement_date"),
    )

    def __repr__(self) -> str:
        return (
            f"<Settlement(code={self.settlement_code!r}, "
            f"net_receivable={self.net_receivable}, status={self.status!r})>"
        )
