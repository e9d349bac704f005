"""Pydantic schemas for settlement requests and responses."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class SettlementRequest(BaseModel):
    """Settle every unreconciled outcome of one carrier on one day."""

    store_id: UUID
    carrier_id: UUID
    settlement_date: date
    total_amount_collected: Decimal = Field(
        ...,
        max_digits=12,
        decimal_places=2,
        description="Cash the carrier reports having collected",
    )
    confirm_discrepancy: bool = Field(
        False,
        description="Must be true to accept a collected total that differs from the expected COD",
    )
    dispatch_batch_id: Optional[UUID] = None
    notes: Optional[str] = None
    created_by: Optional[str] = Field(None, max_length=100)


class ManualOrderOutcome(BaseModel):
    """Outcome of one order as reported by the operator."""

    order_id: UUID
    delivered: bool
    failure_reason: Optional[str] = Field(
        None,
        max_length=255,
        description="Required when delivered is false",
    )


class ManualReconciliationRequest(BaseModel):
    """Settle an explicit list of orders with per-order outcomes."""

    store_id: UUID
    carrier_id: UUID
    settlement_date: date = Field(default_factory=date.today)
    orders: list[ManualOrderOutcome] = Field(default_factory=list)
    total_amount_collected: Decimal = Field(
        ...,
        max_digits=12,
        decimal_places=2,
    )
    confirm_discrepancy: bool = False
    dispatch_batch_id: Optional[UUID] = None
    notes: Optional[str] = None
    created_by: Optional[str] = Field(None, max_length=100)


class SettlementResponse(BaseModel):
    """Schema returned when reading a settlement."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    store_id: UUID
    carrier_id: UUID
    settlement_code: str
    settlement_date: date
    total_dispatched: int
    total_delivered: int
    total_not_delivered: int
    total_cod_delivered: int
    total_prepaid_delivered: int
    total_cod_expected: Decimal
    total_cod_collected: Decimal
    carrier_fees_cod: Decimal
    carrier_fees_prepaid: Decimal
    total_carrier_fees: Decimal
    failed_attempt_fee: Decimal
    net_receivable: Decimal
    discrepancy_amount: Decimal
    has_discrepancy: bool
    amount_paid: Decimal
    balance_due: Decimal
    status: str = Field(..., description="pending | partial | paid")
    payment_date: Optional[date] = None
    notes: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime


class OrderAllocation(BaseModel):
    """Collected amount assigned to one order by the settlement."""

    order_id: UUID
    order_number: Optional[str] = None
    delivered: bool
    is_cod: bool
    expected_amount: Decimal
    collected_amount: Decimal
    carrier_fee: Decimal
    failed_attempt_fee: Decimal
    has_discrepancy: bool


class SettlementResult(BaseModel):
    """Payload returned after a successful settlement run."""

    success: bool = True
    settlement: SettlementResponse
    discrepancy_amount: Decimal
    has_discrepancy: bool
    orders: list[OrderAllocation] = Field(default_factory=list)


class PendingReconciliationGroup(BaseModel):
    """Unreconciled outcomes of one carrier on one day."""

    outcome_date: date
    carrier_id: UUID
    carrier_name: Optional[str] = None
    total_orders: int
    delivered_orders: int
    failed_orders: int
    cod_orders: int
    total_cod_expected: Decimal


class PendingOrderResponse(BaseModel):
    """An order waiting to be settled."""

    id: UUID
    order_number: Optional[str] = None
    delivery_status: str
    total_price: Decimal
    payment_method: Optional[str] = None
    is_cod: bool
    outcome_at: Optional[datetime] = None
