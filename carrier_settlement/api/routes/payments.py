"""Carrier payment endpoints."""

from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from carrier_settlement.core.config import settings
from carrier_settlement.core.database import get_db
from carrier_settlement.core.errors import ErrorCode, LedgerConflictError
from carrier_settlement.core.logging import get_logger
from carrier_settlement.models.payment import PaymentRecord
from carrier_settlement.schemas.payment import (
    PaymentRecordResponse,
    PaymentRequest,
    PaymentResult,
)
from carrier_settlement.services.payments.registrar import PaymentRegistrar

logger = get_logger(__name__)

router = APIRouter()


@router.post("/payments", response_model=PaymentResult, status_code=201)
def register_payment(
    body: PaymentRequest,
    db: Session = Depends(get_db),
) -> PaymentResult:
    """Record a transfer between the store and a carrier.

    Referenced settlements are updated (``amount_paid``, ``balance_due``,
    ``status``) and referenced movements are marked as discharged.
    """
    logger.info(
        "Payment requested: store_id=%s carrier_id=%s direction=%s amount=%s",
        body.store_id,
        body.carrier_id,
        body.direction,
        body.amount,
    )
    outcome = PaymentRegistrar(db=db, config=settings).register_payment(body)
    return PaymentResult(
        payment=PaymentRecordResponse.model_validate(outcome.payment),
        movement_id=outcome.movement.id,
        settlements_updated=outcome.settlements_updated,
        movements_discharged=outcome.movements_discharged,
    )


@router.get("/payments", response_model=List[PaymentRecordResponse])
def list_payments(
    store_id: UUID = Query(..., description="Store the payments belong to"),
    carrier_id: Optional[UUID] = Query(None, description="Filter by carrier"),
    direction: Optional[str] = Query(None, description="from_carrier | to_carrier"),
    page: int = Query(1, ge=1, description="Page number"),
    limit: int = Query(50, ge=1, le=500, description="Items per page"),
    db: Session = Depends(get_db),
) -> list[PaymentRecord]:
    """List payments of a store, newest first."""
    query = db.query(PaymentRecord).filter(PaymentRecord.store_id == store_id)
    if carrier_id is not None:
        query = query.filter(PaymentRecord.carrier_id == carrier_id)
    if direction is not None:
        query = query.filter(PaymentRecord.direction == direction)

    offset = (page - 1) * limit
    return (
        query.order_by(PaymentRecord.payment_date.desc(), PaymentRecord.payment_code.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


@router.get("/payments/{payment_id}", response_model=PaymentRecordResponse)
def get_payment(
    payment_id: UUID,
    db: Session = Depends(get_db),
) -> PaymentRecord:
    payment = db.get(PaymentRecord, payment_id)
    if payment is None:
        raise LedgerConflictError(
            ErrorCode.PAYMENT_NOT_FOUND,
            f"Payment {payment_id} not found",
        )
    return payment
