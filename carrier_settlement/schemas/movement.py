"""Pydantic schemas for ledger movements and delivery-event hooks."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class MovementResponse(BaseModel):
    """Schema returned when reading a ledger movement."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    store_id: UUID
    carrier_id: UUID
    order_id: Optional[UUID] = None
    order_number: Optional[str] = None
    movement_type: str
    amount: Decimal
    settlement_id: Optional[UUID] = None
    payment_record_id: Optional[UUID] = None
    dispatch_batch_id: Optional[UUID] = None
    description: Optional[str] = None
    metadata_json: Optional[dict[str, Any]] = Field(
        None,
        description="Zone, fee rate and COD flag captured when the entry was written",
    )
    movement_date: date
    created_at: datetime
    created_by: Optional[str] = None


class UnsettledMovementResponse(MovementResponse):
    """A movement not yet tagged with a settlement or a payment."""

    carrier_name: Optional[str] = None
    days_pending: int = Field(
        ...,
        description="Days since the movement date",
    )


class DeliveredEvent(BaseModel):
    """Body of the order-delivered hook."""

    amount_collected: Optional[Decimal] = Field(
        None,
        max_digits=12,
        decimal_places=2,
        description="Cash actually collected; defaults to the order total",
    )
    dispatch_batch_id: Optional[UUID] = None
    created_by: Optional[str] = Field(None, max_length=100)


class FailedEvent(BaseModel):
    """Body of the failed-delivery hook."""

    dispatch_batch_id: Optional[UUID] = None
    created_by: Optional[str] = Field(None, max_length=100)


class StatusChangeEvent(BaseModel):
    """An order moved from one delivery status to another."""

    previous_status: Optional[str] = Field(None, max_length=30)
    new_status: str = Field(..., max_length=30)
    dispatch_batch_id: Optional[UUID] = None
    created_by: Optional[str] = Field(None, max_length=100)


class DeliveryMovementsResponse(BaseModel):
    """Ledger entries written for one delivery outcome."""

    order_id: UUID
    movement_ids: list[UUID] = Field(default_factory=list)
    cod_amount: Decimal = Decimal("0.00")
    carrier_fee: Decimal = Decimal("0.00")
    failed_attempt_fee: Decimal = Decimal("0.00")
    action: str = Field(
        "delivered",
        description="delivered | failed | none",
    )


class BackfillResponse(BaseModel):
    """Result of generating movements for historical delivered orders."""

    orders_processed: int
    movements_created: int
    errors: list[str] = Field(default_factory=list)
