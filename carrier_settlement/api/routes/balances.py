"""Read-only balance views over the carrier ledger."""

from __future__ import annotations

from datetime import date
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from carrier_settlement.core.config import settings
from carrier_settlement.core.database import get_db
from carrier_settlement.core.logging import get_logger
from carrier_settlement.schemas.balance import BalanceSummary, CarrierBalance
from carrier_settlement.schemas.movement import MovementResponse, UnsettledMovementResponse
from carrier_settlement.services.ledger.balances import BalanceViews

logger = get_logger(__name__)

router = APIRouter()


@router.get("/stores/{store_id}/carrier-balances", response_model=List[CarrierBalance])
def carrier_balances(
    store_id: UUID,
    db: Session = Depends(get_db),
) -> list[dict]:
    """Account position of every active carrier of a store."""
    balances = BalanceViews(db=db, config=settings).carrier_balances(store_id)
    logger.info("Carrier balances: store_id=%s carriers=%d", store_id, len(balances))
    return balances


@router.get("/carriers/{carrier_id}/balance", response_model=BalanceSummary)
def carrier_balance_summary(
    carrier_id: UUID,
    date_from: Optional[date] = Query(None, description="Movement date >="),
    date_to: Optional[date] = Query(None, description="Movement date <="),
    db: Session = Depends(get_db),
) -> dict:
    """Gross and net balance of one carrier, optionally within a date window."""
    return BalanceViews(db=db, config=settings).balance_summary(
        carrier_id,
        date_from=date_from,
        date_to=date_to,
    )


@router.get(
    "/stores/{store_id}/movements/unsettled",
    response_model=List[UnsettledMovementResponse],
)
def unsettled_movements(
    store_id: UUID,
    carrier_id: Optional[UUID] = Query(None, description="Filter by carrier"),
    db: Session = Depends(get_db),
) -> list[UnsettledMovementResponse]:
    """Movements not yet covered by a settlement or a payment, oldest first."""
    rows = BalanceViews(db=db, config=settings).unsettled_movements(
        store_id,
        carrier_id=carrier_id,
    )
    return [
        UnsettledMovementResponse(
            **MovementResponse.model_validate(row["movement"]).model_dump(),
            carrier_name=row["carrier_name"],
            days_pending=row["days_pending"],
        )
        for row in rows
    ]
