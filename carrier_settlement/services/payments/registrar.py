"""Payment registration.

Records a real transfer of money between a store and a carrier, applies it
to the settlements and movements it pays off, and books the offsetting
ledger entry (``payment_received`` when the carrier pays the store,
``payment_sent`` when the store pays the carrier).
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import func
from sqlalchemy.orm import Session

from carrier_settlement.core.config import Settings
from carrier_settlement.core.database import atomic
from carrier_settlement.core.errors import (
    ErrorCode,
    LedgerConflictError,
    LedgerValidationError,
)
from carrier_settlement.core.locks import lock_rows
from carrier_settlement.core.logging import get_logger
from carrier_settlement.core.money import ZERO, is_finite_amount, to_money
from carrier_settlement.models.carrier import Carrier
from carrier_settlement.models.movement import CarrierMovement, MovementType
from carrier_settlement.models.payment import DIRECTIONS, PAYMENT_METHODS, PaymentRecord
from carrier_settlement.models.settlement import Settlement
from carrier_settlement.schemas.payment import PaymentRequest
from carrier_settlement.services.ledger.movements import MovementLedger
from carrier_settlement.services.settlement.codes import SequenceCodeGenerator

logger = get_logger(__name__)

OFFSET_TYPE_BY_DIRECTION = {
    "from_carrier": MovementType.PAYMENT_RECEIVED,
    "to_carrier": MovementType.PAYMENT_SENT,
}


@dataclass
class PaymentOutcome:
    payment: PaymentRecord
    movement: CarrierMovement
    settlements_updated: int
    movements_discharged: int


def allocate_payment(settlements: Sequence, amount: Decimal) -> list[Decimal]:
    """Split *amount* across settlements in the order given.

    Each settlement takes up to what it still owes; whatever is left after
    the last one (an overpayment) is credited to the last settlement.

    Returns:
        The amount applied to each settlement, aligned with *settlements*.
    """
    remaining = to_money(amount)
    applied: list[Decimal] = []
    for position, settlement in enumerate(settlements):
        outstanding = max(
            abs(to_money(settlement.net_receivable)) - to_money(settlement.amount_paid),
            ZERO,
        )
        share = remaining if position == len(settlements) - 1 else min(remaining, outstanding)
        applied.append(share)
        remaining -= share
    return applied


def expected_direction(net_receivable: Decimal) -> Optional[str]:
    """Direction that pays off a settlement; None when nothing is owed."""
    if net_receivable > ZERO:
        return "from_carrier"
    if net_receivable < ZERO:
        return "to_carrier"
    return None


class PaymentRegistrar:
    """Registers carrier payments and applies them to the ledger."""

    def __init__(self, db: Session, config: Settings) -> None:
        self.db = db
        self.config = config
        self.ledger = MovementLedger(db, config)
        self.codes = SequenceCodeGenerator(db, config)

    # ── Public API ───────────────────────────────────────────────────

    def register_payment(self, request: PaymentRequest) -> PaymentOutcome:
        """Record a payment and discharge what it pays.

        Referenced settlements are locked with ``NOWAIT``: if another
        payment is being applied to one of them the call fails fast with
        ``LOCK_UNAVAILABLE`` instead of queueing.

        Raises:
            LedgerValidationError: bad amount, direction or method.
            LedgerConflictError: unknown, foreign or already-paid
                settlements/movements, or a direction that does not match
                a settlement's balance.
        """
        amount = self._validate(request)
        payment_date = request.payment_date or date.today()

        with atomic(
            self.db,
            "register_payment",
            store_id=request.store_id,
            carrier_id=request.carrier_id,
            amount=str(amount),
        ):
            carrier = self.db.get(Carrier, request.carrier_id)
            if carrier is None or carrier.store_id != request.store_id:
                raise LedgerConflictError(
                    ErrorCode.CARRIER_NOT_FOUND,
                    f"Carrier {request.carrier_id} not found",
                )

            settlements = self._lock_settlements(request)
            movements = self._lock_movements(request)
            period_start, period_end = self._period(settlements, movements)

            code = self.codes.next_code(
                request.store_id,
                self.config.payment_code_prefix,
                payment_date,
                PaymentRecord,
            )
            payment = PaymentRecord(
                id=uuid.uuid4(),
                store_id=request.store_id,
                carrier_id=carrier.id,
                payment_code=code,
                direction=request.direction,
                amount=amount,
                payment_method=request.payment_method,
                payment_reference=request.payment_reference,
                notes=request.notes,
                settlement_ids=[str(s.id) for s in settlements],
                movement_ids=[str(m.id) for m in movements],
                period_start=period_start,
                period_end=period_end,
                status="completed",
                payment_date=payment_date,
                created_by=request.created_by,
            )
            self.db.add(payment)
            self.db.flush()

            offset_type = OFFSET_TYPE_BY_DIRECTION[request.direction]
            offset = self.ledger.add_movement(
                store_id=request.store_id,
                carrier_id=carrier.id,
                movement_type=offset_type,
                amount=-amount if offset_type == MovementType.PAYMENT_RECEIVED else amount,
                payment_record_id=payment.id,
                description=f"Payment {code} ({request.payment_method})",
                metadata={
                    "payment_method": request.payment_method,
                    "payment_reference": request.payment_reference,
                },
                movement_date=payment_date,
                created_by=request.created_by,
            )

            for settlement, share in zip(settlements, allocate_payment(settlements, amount)):
                self._apply(settlement, share, payment_date)
            discharged = self.ledger.tag_payment(movements, payment.id)
            self.db.flush()

            logger.info(
                "Payment registered: code=%s carrier=%s direction=%s amount=%s "
                "settlements=%d movements=%d",
                code,
                carrier.name,
                request.direction,
                amount,
                len(settlements),
                discharged,
            )
        return PaymentOutcome(
            payment=payment,
            movement=offset,
            settlements_updated=len(settlements),
            movements_discharged=discharged,
        )

    # ── Private helpers ──────────────────────────────────────────────

    @staticmethod
    def _validate(request: PaymentRequest) -> Decimal:
        if (
            request.amount is None
            or not is_finite_amount(request.amount)
            or to_money(request.amount) <= ZERO
        ):
            raise LedgerValidationError(
                ErrorCode.INVALID_AMOUNT,
                f"Payment amount must be greater than zero, got {request.amount!r}",
            )
        if request.direction not in DIRECTIONS:
            raise LedgerValidationError(
                ErrorCode.VALIDATION_ERROR,
                f"Unknown direction '{request.direction}'. Supported: {', '.join(DIRECTIONS)}",
            )
        if request.payment_method not in PAYMENT_METHODS:
            raise LedgerValidationError(
                ErrorCode.VALIDATION_ERROR,
                f"Unknown payment method '{request.payment_method}'. "
                f"Supported: {', '.join(PAYMENT_METHODS)}",
            )
        for name, ids in (
            ("settlement_ids", request.settlement_ids),
            ("movement_ids", request.movement_ids),
        ):
            if len(set(ids)) != len(ids):
                raise LedgerValidationError(
                    ErrorCode.VALIDATION_ERROR,
                    f"{name} contains duplicates",
                )
        return to_money(request.amount)

    def _lock_settlements(self, request: PaymentRequest) -> list[Settlement]:
        if not request.settlement_ids:
            return []
        rows = {
            s.id: s
            for s in lock_rows(
                self.db.query(Settlement)
                .filter(Settlement.id.in_(request.settlement_ids))
                .order_by(Settlement.id),
                nowait=True,
                what="settlements",
            )
        }

        ordered: list[Settlement] = []
        for settlement_id in request.settlement_ids:
            settlement = rows.get(settlement_id)
            if (
                settlement is None
                or settlement.store_id != request.store_id
                or settlement.carrier_id != request.carrier_id
            ):
                raise LedgerConflictError(
                    ErrorCode.SETTLEMENT_NOT_FOUND,
                    f"Settlement {settlement_id} not found for this store and carrier",
                    details={"settlement_id": str(settlement_id)},
                )
            if settlement.status == "paid":
                raise LedgerConflictError(
                    ErrorCode.SETTLEMENT_ALREADY_PAID,
                    f"Settlement {settlement.settlement_code} is already paid",
                    details={"settlement_id": str(settlement.id)},
                )
            wanted = expected_direction(to_money(settlement.net_receivable))
            if wanted is not None and wanted != request.direction:
                raise LedgerConflictError(
                    ErrorCode.DIRECTION_MISMATCH,
                    f"Settlement {settlement.settlement_code} has net "
                    f"{settlement.net_receivable}; expected a {wanted} payment",
                    details={"settlement_id": str(settlement.id), "expected": wanted},
                )
            ordered.append(settlement)
        return ordered

    def _lock_movements(self, request: PaymentRequest) -> list[CarrierMovement]:
        if not request.movement_ids:
            return []
        rows = {
            m.id: m
            for m in lock_rows(
                self.db.query(CarrierMovement)
                .filter(CarrierMovement.id.in_(request.movement_ids))
                .order_by(CarrierMovement.id),
                nowait=True,
                what="movements",
            )
        }

        ordered: list[CarrierMovement] = []
        for movement_id in request.movement_ids:
            movement = rows.get(movement_id)
            if (
                movement is None
                or movement.store_id != request.store_id
                or movement.carrier_id != request.carrier_id
            ):
                raise LedgerConflictError(
                    ErrorCode.MOVEMENT_NOT_FOUND,
                    f"Movement {movement_id} not found for this store and carrier",
                    details={"movement_id": str(movement_id)},
                )
            if movement.payment_record_id is not None:
                raise LedgerConflictError(
                    ErrorCode.MOVEMENT_ALREADY_PAID,
                    f"Movement {movement.id} was already discharged by another payment",
                    details={"movement_id": str(movement.id)},
                )
            ordered.append(movement)
        return ordered

    def _period(
        self,
        settlements: list[Settlement],
        movements: list[CarrierMovement],
    ) -> tuple[Optional[date], Optional[date]]:
        """Earliest and latest movement date covered by the payment."""
        dates = [m.movement_date for m in movements]
        if settlements:
            low, high = (
                self.db.query(
                    func.min(CarrierMovement.movement_date),
                    func.max(CarrierMovement.movement_date),
                )
                .filter(CarrierMovement.settlement_id.in_([s.id for s in settlements]))
                .one()
            )
            dates.extend(d for d in (low, high) if d is not None)
        if not dates:
            return None, None
        return min(dates), max(dates)

    @staticmethod
    def _apply(settlement: Settlement, share: Decimal, payment_date: date) -> None:
        owed = abs(to_money(settlement.net_receivable))
        settlement.amount_paid = to_money(settlement.amount_paid) + share
        settlement.balance_due = max(owed - settlement.amount_paid, ZERO)
        if settlement.amount_paid >= owed:
            settlement.status = "paid"
        elif settlement.amount_paid > ZERO:
            settlement.status = "partial"
        settlement.payment_date = payment_date
