"""Pydantic schemas for the read-only balance views."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class CarrierBalance(BaseModel):
    """Running account position of one carrier."""

    carrier_id: UUID
    carrier_name: str
    settlement_type: str
    total_cod_collected: Decimal
    total_delivery_fees: Decimal
    total_failed_fees: Decimal
    total_payments_received: Decimal
    total_payments_sent: Decimal
    total_adjustments: Decimal
    net_balance: Decimal = Field(
        ...,
        description="Positive: carrier owes store. Negative: store owes carrier.",
    )
    unsettled_balance: Decimal
    unsettled_orders: int
    last_movement_date: Optional[date] = None
    last_payment_date: Optional[date] = None


class BalanceSummary(BaseModel):
    """Per-carrier breakdown over a date window."""

    carrier_id: UUID
    carrier_name: str
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    total_orders: int
    delivered_orders: int
    failed_orders: int
    total_cod_collected: Decimal
    total_delivery_fees: Decimal
    total_failed_fees: Decimal
    total_adjustments: Decimal
    total_payments_received: Decimal
    total_payments_sent: Decimal
    gross_balance: Decimal = Field(
        ...,
        description="Balance before payments",
    )
    net_balance: Decimal
