"""Delivery-event hooks called by the order-lifecycle service."""

from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from carrier_settlement.core.config import settings
from carrier_settlement.core.database import get_db
from carrier_settlement.core.logging import get_logger
from carrier_settlement.models.movement import CarrierMovement
from carrier_settlement.schemas.movement import (
    BackfillResponse,
    DeliveredEvent,
    DeliveryMovementsResponse,
    FailedEvent,
    MovementResponse,
    StatusChangeEvent,
)
from carrier_settlement.services.ledger.delivery import DeliveryEventProcessor

logger = get_logger(__name__)

router = APIRouter()


@router.post("/orders/{order_id}/delivered", response_model=DeliveryMovementsResponse)
def order_delivered(
    order_id: UUID,
    body: Optional[DeliveredEvent] = None,
    db: Session = Depends(get_db),
) -> DeliveryMovementsResponse:
    """Book COD and delivery-fee movements for a delivered order.

    Safe to call more than once: movements are keyed by (order, type).
    """
    body = body or DeliveredEvent()
    result = DeliveryEventProcessor(db=db, config=settings).record_delivery(
        order_id,
        amount_collected=body.amount_collected,
        dispatch_batch_id=body.dispatch_batch_id,
        created_by=body.created_by,
    )
    return DeliveryMovementsResponse(
        order_id=result.order_id,
        movement_ids=result.movement_ids,
        cod_amount=result.cod_amount,
        carrier_fee=result.carrier_fee,
        action=result.action,
    )


@router.post("/orders/{order_id}/failed", response_model=DeliveryMovementsResponse)
def order_failed(
    order_id: UUID,
    body: Optional[FailedEvent] = None,
    db: Session = Depends(get_db),
) -> DeliveryMovementsResponse:
    """Book the failed-attempt fee for an undelivered order, if the carrier charges one."""
    body = body or FailedEvent()
    movement_id = DeliveryEventProcessor(db=db, config=settings).record_failed_delivery(
        order_id,
        dispatch_batch_id=body.dispatch_batch_id,
        created_by=body.created_by,
    )
    failed_fee = None
    if movement_id is not None:
        failed_fee = -db.get(CarrierMovement, movement_id).amount
    return DeliveryMovementsResponse(
        order_id=order_id,
        movement_ids=[movement_id] if movement_id else [],
        failed_attempt_fee=failed_fee if failed_fee is not None else 0,
        action="failed" if movement_id else "none",
    )


@router.post("/orders/{order_id}/status-change", response_model=DeliveryMovementsResponse)
def order_status_change(
    order_id: UUID,
    body: StatusChangeEvent,
    db: Session = Depends(get_db),
) -> DeliveryMovementsResponse:
    """Book whatever a delivery status transition implies (possibly nothing)."""
    result = DeliveryEventProcessor(db=db, config=settings).handle_status_change(
        order_id,
        previous_status=body.previous_status,
        new_status=body.new_status,
        dispatch_batch_id=body.dispatch_batch_id,
        created_by=body.created_by,
    )
    return DeliveryMovementsResponse(
        order_id=result.order_id,
        movement_ids=result.movement_ids,
        cod_amount=result.cod_amount,
        carrier_fee=result.carrier_fee,
        failed_attempt_fee=result.failed_attempt_fee,
        action=result.action,
    )


@router.get("/orders/{order_id}/movements", response_model=List[MovementResponse])
def order_movements(
    order_id: UUID,
    db: Session = Depends(get_db),
) -> list[CarrierMovement]:
    """Ledger movements booked for one order."""
    return (
        db.query(CarrierMovement)
        .filter(CarrierMovement.order_id == order_id)
        .order_by(CarrierMovement.created_at.asc())
        .all()
    )


@router.post("/movements/backfill", response_model=BackfillResponse)
def backfill_movements(
    store_id: Optional[UUID] = Query(None, description="Limit to one store"),
    limit: int = Query(
        settings.backfill_batch_size,
        ge=1,
        le=10000,
        description="Maximum orders to process",
    ),
    db: Session = Depends(get_db),
) -> dict:
    """Generate movements for delivered orders that have none yet."""
    return DeliveryEventProcessor(db=db, config=settings).backfill_movements(
        store_id=store_id,
        limit=limit,
    )
