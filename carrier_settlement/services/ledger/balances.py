"""Read-only balance views computed from the movement ledger.

No running counters are stored anywhere: every figure here is aggregated
from ``carrier_account_movements`` at read time, so it can never drift from
the ledger.
"""

from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import and_, func
from sqlalchemy.orm import Session

from carrier_settlement.core.config import Settings
from carrier_settlement.core.errors import ErrorCode, LedgerConflictError
from carrier_settlement.core.logging import get_logger
from carrier_settlement.core.money import ZERO, to_money
from carrier_settlement.models.carrier import Carrier
from carrier_settlement.models.movement import PAYMENT_TYPES, CarrierMovement, MovementType
from carrier_settlement.models.payment import PaymentRecord
from carrier_settlement.models.settlement import Settlement

logger = get_logger(__name__)

_ADJUSTMENT_TYPES = (
    MovementType.ADJUSTMENT_CREDIT,
    MovementType.ADJUSTMENT_DEBIT,
    MovementType.DISCOUNT,
    MovementType.REFUND,
)


def _totals_by_type(rows) -> dict[str, Decimal]:
    totals: dict[str, Decimal] = defaultdict(lambda: ZERO)
    for movement_type, amount in rows:
        totals[movement_type] += to_money(amount)
    return totals


def _breakdown(totals: dict[str, Decimal]) -> dict[str, Decimal]:
    """Shape per-type sums into the reported columns (fees as positives)."""
    return {
        "total_cod_collected": totals[MovementType.COD_COLLECTED],
        "total_delivery_fees": -totals[MovementType.DELIVERY_FEE],
        "total_failed_fees": -totals[MovementType.FAILED_ATTEMPT_FEE],
        "total_payments_received": -totals[MovementType.PAYMENT_RECEIVED],
        "total_payments_sent": totals[MovementType.PAYMENT_SENT],
        "total_adjustments": sum(
            (totals[t] for t in _ADJUSTMENT_TYPES),
            ZERO,
        ),
    }


class BalanceViews:
    """Aggregate queries over the ledger, settlements and payments."""

    def __init__(self, db: Session, config: Settings) -> None:
        self.db = db
        self.config = config

    # ── Public API ───────────────────────────────────────────────────

    def carrier_balances(self, store_id: uuid.UUID) -> list[dict]:
        """Account position of every active carrier of a store.

        Returns:
            One dict per carrier, sorted by net balance (largest debt first).
        """
        carriers = (
            self.db.query(Carrier)
            .filter(Carrier.store_id == store_id)
            .filter(Carrier.is_active.is_(True))
            .all()
        )
        if not carriers:
            return []
        carrier_ids = [c.id for c in carriers]

        by_type = (
            self.db.query(
                CarrierMovement.carrier_id,
                CarrierMovement.movement_type,
                func.sum(CarrierMovement.amount),
            )
            .filter(CarrierMovement.store_id == store_id)
            .filter(CarrierMovement.carrier_id.in_(carrier_ids))
            .group_by(CarrierMovement.carrier_id, CarrierMovement.movement_type)
            .all()
        )
        per_carrier: dict[uuid.UUID, list] = defaultdict(list)
        for carrier_id, movement_type, amount in by_type:
            per_carrier[carrier_id].append((movement_type, amount))

        unsettled = {
            carrier_id: (to_money(total), orders)
            for carrier_id, total, orders in (
                self.db.query(
                    CarrierMovement.carrier_id,
                    func.sum(CarrierMovement.amount),
                    func.count(func.distinct(CarrierMovement.order_id)),
                )
                .filter(CarrierMovement.store_id == store_id)
                .filter(CarrierMovement.carrier_id.in_(carrier_ids))
                .filter(CarrierMovement.settlement_id.is_(None))
                .filter(CarrierMovement.payment_record_id.is_(None))
                .group_by(CarrierMovement.carrier_id)
                .all()
            )
        }
        last_movement = dict(
            self.db.query(CarrierMovement.carrier_id, func.max(CarrierMovement.movement_date))
            .filter(CarrierMovement.store_id == store_id)
            .group_by(CarrierMovement.carrier_id)
            .all()
        )
        last_payment = dict(
            self.db.query(PaymentRecord.carrier_id, func.max(PaymentRecord.payment_date))
            .filter(PaymentRecord.store_id == store_id)
            .group_by(PaymentRecord.carrier_id)
            .all()
        )

        balances = []
        for carrier in carriers:
            totals = _totals_by_type(per_carrier.get(carrier.id, []))
            unsettled_total, unsettled_orders = unsettled.get(carrier.id, (ZERO, 0))
            balances.append(
                {
                    "carrier_id": carrier.id,
                    "carrier_name": carrier.name,
                    "settlement_type": carrier.settlement_type,
                    **_breakdown(totals),
                    "net_balance": sum(totals.values(), ZERO),
                    "unsettled_balance": unsettled_total,
                    "unsettled_orders": unsettled_orders,
                    "last_movement_date": last_movement.get(carrier.id),
                    "last_payment_date": last_payment.get(carrier.id),
                }
            )

        balances.sort(key=lambda b: b["net_balance"], reverse=True)
        return balances

    def balance_summary(
        self,
        carrier_id: uuid.UUID,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> dict:
        """Breakdown of one carrier's movements over an optional date window.

        ``gross_balance`` is what the carrier owes before any payment;
        ``net_balance`` includes payments in both directions.

        Raises:
            LedgerConflictError: ``CARRIER_NOT_FOUND``.
        """
        carrier = self.db.get(Carrier, carrier_id)
        if carrier is None:
            raise LedgerConflictError(
                ErrorCode.CARRIER_NOT_FOUND,
                f"Carrier {carrier_id} not found",
            )

        window = [CarrierMovement.carrier_id == carrier_id]
        if date_from is not None:
            window.append(CarrierMovement.movement_date >= date_from)
        if date_to is not None:
            window.append(CarrierMovement.movement_date <= date_to)

        totals = _totals_by_type(
            self.db.query(CarrierMovement.movement_type, func.sum(CarrierMovement.amount))
            .filter(and_(*window))
            .group_by(CarrierMovement.movement_type)
            .all()
        )
        orders_by_type = dict(
            self.db.query(
                CarrierMovement.movement_type,
                func.count(func.distinct(CarrierMovement.order_id)),
            )
            .filter(and_(*window))
            .filter(CarrierMovement.order_id.isnot(None))
            .group_by(CarrierMovement.movement_type)
            .all()
        )
        total_orders = (
            self.db.query(func.count(func.distinct(CarrierMovement.order_id)))
            .filter(and_(*window))
            .scalar()
        ) or 0

        net = sum(totals.values(), ZERO)
        gross = sum(
            (amount for kind, amount in totals.items() if kind not in PAYMENT_TYPES),
            ZERO,
        )
        delivered = max(
            orders_by_type.get(MovementType.DELIVERY_FEE, 0),
            orders_by_type.get(MovementType.COD_COLLECTED, 0),
        )
        return {
            "carrier_id": carrier.id,
            "carrier_name": carrier.name,
            "date_from": date_from,
            "date_to": date_to,
            "total_orders": total_orders,
            "delivered_orders": delivered,
            "failed_orders": orders_by_type.get(MovementType.FAILED_ATTEMPT_FEE, 0),
            **_breakdown(totals),
            "gross_balance": gross,
            "net_balance": net,
        }

    def unsettled_movements(
        self,
        store_id: uuid.UUID,
        carrier_id: Optional[uuid.UUID] = None,
        today: Optional[date] = None,
    ) -> list[dict]:
        """Movements tagged with neither a settlement nor a payment, oldest first."""
        today = today or date.today()
        query = (
            self.db.query(CarrierMovement, Carrier.name)
            .join(Carrier, Carrier.id == CarrierMovement.carrier_id)
            .filter(CarrierMovement.store_id == store_id)
            .filter(CarrierMovement.settlement_id.is_(None))
            .filter(CarrierMovement.payment_record_id.is_(None))
        )
        if carrier_id is not None:
            query = query.filter(CarrierMovement.carrier_id == carrier_id)

        rows = []
        for movement, carrier_name in query.order_by(
            CarrierMovement.movement_date.asc(),
            CarrierMovement.created_at.asc(),
        ):
            rows.append(
                {
                    "movement": movement,
                    "carrier_name": carrier_name,
                    "days_pending": (today - movement.movement_date).days,
                }
            )
        return rows

    def pending_payment_settlements(
        self,
        store_id: uuid.UUID,
        carrier_id: Optional[uuid.UUID] = None,
    ) -> list[Settlement]:
        """Settlements still waiting for (part of) their payment."""
        query = (
            self.db.query(Settlement)
            .filter(Settlement.store_id == store_id)
            .filter(Settlement.status.in_(("pending", "partial")))
        )
        if carrier_id is not None:
            query = query.filter(Settlement.carrier_id == carrier_id)
        return query.order_by(Settlement.settlement_date.asc()).all()
