"""Carrier configuration and coverage-rate tables.

Read-only from this engine's point of view: carrier management lives in
another service, we only consume its configuration.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from carrier_settlement.core.clock import utcnow
from carrier_settlement.core.database import Base


class Carrier(Base):
    """A courier (company or person) delivering orders for one store."""

    __tablename__ = "carriers"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )
    store_id: Mapped[uuid.UUID] = mapped_column(
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(
        String(120),
        nullable=False,
    )
    settlement_type: Mapped[str] = mapped_column(
        String(20),
        default="gross",
        comment="net | gross | salary",
    )
    charges_failed_attempts: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
    )
    failed_attempt_fee_percent: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(5, 2),
        nullable=True,
        comment="0-100; only applies when charges_failed_attempts is true",
    )
    payment_schedule: Mapped[str] = mapped_column(
        String(20),
        default="weekly",
        comment="daily | weekly | biweekly | monthly | on_demand",
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=utcnow,
    )

    # -- Relationships --
    zones: Mapped[list[CarrierZone]] = relationship(
        "CarrierZone",
        back_populates="carrier",
        lazy="select",
    )
    coverage: Mapped[list[CarrierCoverage]] = relationship(
        "CarrierCoverage",
        back_populates="carrier",
        lazy="select",
    )

    def __repr__(self) -> str:
        return (
            f"<Carrier(name={self.name!r}, settlement_type={self.settlement_type!r}, "
            f"is_active={self.is_active})>"
        )


class CarrierZone(Base):
    """Zone-keyed delivery rate ("Centro" -> 20000, "default" -> 25000...)."""

    __tablename__ = "carrier_zones"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )
    carrier_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("carriers.id"),
        nullable=False,
    )
    zone_name: Mapped[str] = mapped_column(
        String(120),
        nullable=False,
    )
    rate: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=utcnow,
    )

    carrier: Mapped[Carrier] = relationship(
        "Carrier",
        back_populates="zones",
    )

    __table_args__ = (Index("ix_carrier_zones_carrier_active", "carrier_id", "is_active"),)

    def __repr__(self) -> str:
        return f"<CarrierZone(zone_name={self.zone_name!r}, rate={self.rate})>"


class CarrierCoverage(Base):
    """City-keyed delivery rate; wins over zone rates when both exist."""

    __tablename__ = "carrier_coverage"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )
    carrier_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("carriers.id"),
        nullable=False,
    )
    city: Mapped[str] = mapped_column(
        String(120),
        nullable=False,
    )
    rate: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
    )

    carrier: Mapped[Carrier] = relationship(
        "Carrier",
        back_populates="coverage",
    )

    __table_args__ = (Index("ix_carrier_coverage_carrier_active", "carrier_id", "is_active"),)

    def __repr__(self) -> str:
        return f"<CarrierCoverage(city={self.city!r}, rate={self.rate})>"
