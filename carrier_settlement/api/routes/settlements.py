"""Settlement endpoints.

Run a settlement for a carrier's day or for an explicit order list, browse
stored settlements, and see what is still waiting to be settled or paid.
"""

from __future__ import annotations

from datetime import date
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from carrier_settlement.core.config import settings
from carrier_settlement.core.database import get_db
from carrier_settlement.core.errors import ErrorCode, LedgerConflictError
from carrier_settlement.core.logging import get_logger
from carrier_settlement.models.settlement import Settlement
from carrier_settlement.schemas.settlement import (
    ManualReconciliationRequest,
    OrderAllocation,
    PendingOrderResponse,
    PendingReconciliationGroup,
    SettlementRequest,
    SettlementResponse,
    SettlementResult,
)
from carrier_settlement.services.ledger.balances import BalanceViews
from carrier_settlement.services.settlement.processor import (
    SettlementBatchProcessor,
    SettlementOutcome,
)

logger = get_logger(__name__)

router = APIRouter()


def _to_result(outcome: SettlementOutcome) -> SettlementResult:
    return SettlementResult(
        settlement=SettlementResponse.model_validate(outcome.settlement),
        discrepancy_amount=outcome.discrepancy_amount,
        has_discrepancy=outcome.has_discrepancy,
        orders=[OrderAllocation(**a) for a in outcome.allocations],
    )


@router.post("/settlements/batch", response_model=SettlementResult, status_code=201)
def settle_batch(
    body: SettlementRequest,
    db: Session = Depends(get_db),
) -> SettlementResult:
    """Settle every unreconciled delivered/failed order of a carrier on one day."""
    logger.info(
        "Batch settlement requested: store_id=%s carrier_id=%s date=%s reported=%s",
        body.store_id,
        body.carrier_id,
        body.settlement_date,
        body.total_amount_collected,
    )
    outcome = SettlementBatchProcessor(db=db, config=settings).settle_batch(body)
    return _to_result(outcome)


@router.post("/settlements/manual", response_model=SettlementResult, status_code=201)
def reconcile_manual(
    body: ManualReconciliationRequest,
    db: Session = Depends(get_db),
) -> SettlementResult:
    """Settle an explicit list of orders with per-order delivered flags."""
    logger.info(
        "Manual reconciliation requested: store_id=%s carrier_id=%s orders=%d",
        body.store_id,
        body.carrier_id,
        len(body.orders),
    )
    outcome = SettlementBatchProcessor(db=db, config=settings).reconcile_manual(body)
    return _to_result(outcome)


@router.get("/settlements", response_model=List[SettlementResponse])
def list_settlements(
    store_id: UUID = Query(..., description="Store the settlements belong to"),
    carrier_id: Optional[UUID] = Query(None, description="Filter by carrier"),
    status: Optional[str] = Query(None, description="pending | partial | paid"),
    date_from: Optional[date] = Query(None, description="Settlement date >="),
    date_to: Optional[date] = Query(None, description="Settlement date <="),
    page: int = Query(1, ge=1, description="Page number"),
    limit: int = Query(50, ge=1, le=500, description="Items per page"),
    db: Session = Depends(get_db),
) -> list[Settlement]:
    """List settlements of a store, newest first."""
    query = db.query(Settlement).filter(Settlement.store_id == store_id)
    if carrier_id is not None:
        query = query.filter(Settlement.carrier_id == carrier_id)
    if status is not None:
        query = query.filter(Settlement.status == status)
    if date_from is not None:
        query = query.filter(Settlement.settlement_date >= date_from)
    if date_to is not None:
        query = query.filter(Settlement.settlement_date <= date_to)

    offset = (page - 1) * limit
    return (
        query.order_by(Settlement.settlement_date.desc(), Settlement.settlement_code.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


@router.get("/settlements/{settlement_id}", response_model=SettlementResponse)
def get_settlement(
    settlement_id: UUID,
    db: Session = Depends(get_db),
) -> Settlement:
    """Retrieve one settlement by id."""
    settlement = db.get(Settlement, settlement_id)
    if settlement is None:
        raise LedgerConflictError(
            ErrorCode.SETTLEMENT_NOT_FOUND,
            f"Settlement {settlement_id} not found",
        )
    return settlement


@router.get(
    "/stores/{store_id}/settlements/pending-payment",
    response_model=List[SettlementResponse],
)
def pending_payment_settlements(
    store_id: UUID,
    carrier_id: Optional[UUID] = Query(None, description="Filter by carrier"),
    db: Session = Depends(get_db),
) -> list[Settlement]:
    """Settlements with status pending or partial, oldest first."""
    return BalanceViews(db=db, config=settings).pending_payment_settlements(
        store_id,
        carrier_id=carrier_id,
    )


@router.get(
    "/stores/{store_id}/reconciliation/pending",
    response_model=List[PendingReconciliationGroup],
)
def pending_reconciliation(
    store_id: UUID,
    db: Session = Depends(get_db),
) -> list[dict]:
    """Unreconciled delivered/failed orders grouped by day and carrier."""
    return SettlementBatchProcessor(db=db, config=settings).pending_reconciliation(store_id)


@router.get(
    "/stores/{store_id}/reconciliation/pending/orders",
    response_model=List[PendingOrderResponse],
)
def pending_orders(
    store_id: UUID,
    carrier_id: UUID = Query(..., description="Carrier to inspect"),
    on_date: date = Query(..., alias="date", description="Outcome day (YYYY-MM-DD)"),
    db: Session = Depends(get_db),
) -> list[dict]:
    """Orders a batch settlement for (carrier, day) would pick up."""
    return SettlementBatchProcessor(db=db, config=settings).pending_orders(
        store_id,
        carrier_id,
        on_date,
    )
