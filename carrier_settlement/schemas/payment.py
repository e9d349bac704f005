"""Pydantic schemas for carrier payments."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class PaymentRequest(BaseModel):
    """A cash transfer between the store and a carrier."""

    store_id: UUID
    carrier_id: UUID
    amount: Decimal = Field(
        ...,
        max_digits=12,
        decimal_places=2,
    )
    direction: str = Field(
        ...,
        description="from_carrier (carrier pays store) | to_carrier (store pays carrier)",
    )
    payment_method: str = Field(
        ...,
        description="cash | bank_transfer | mobile_payment | check | deduction | other",
    )
    payment_reference: Optional[str] = Field(None, max_length=120)
    notes: Optional[str] = None
    settlement_ids: list[UUID] = Field(default_factory=list)
    movement_ids: list[UUID] = Field(default_factory=list)
    payment_date: Optional[date] = None
    created_by: Optional[str] = Field(None, max_length=100)


class PaymentRecordResponse(BaseModel):
    """Schema returned when reading a payment record."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    store_id: UUID
    carrier_id: UUID
    payment_code: str
    direction: str
    amount: Decimal
    payment_method: str
    payment_reference: Optional[str] = None
    notes: Optional[str] = None
    settlement_ids: list[str] = Field(default_factory=list)
    movement_ids: list[str] = Field(default_factory=list)
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    status: str
    payment_date: date
    created_by: Optional[str] = None
    created_at: datetime


class PaymentResult(BaseModel):
    """Payload returned after registering a payment."""

    success: bool = True
    payment: PaymentRecordResponse
    movement_id: UUID
    settlements_updated: int
    movements_discharged: int
