"""Movement ledger writes.

Order-linked entries are written with ``INSERT ... ON CONFLICT (order_id,
movement_type) DO UPDATE`` so replaying a delivery event rewrites the same
row instead of adding a second one.  Rows already tagged with a settlement
or a payment are frozen: the conflict clause only updates untagged rows.
"""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal
from typing import Any, Iterable, Optional

from sqlalchemy import and_, inspect
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from carrier_settlement.core.clock import utcnow
from carrier_settlement.core.config import Settings
from carrier_settlement.core.errors import (
    ErrorCode,
    LedgerConflictError,
    LedgerValidationError,
)
from carrier_settlement.core.logging import get_logger
from carrier_settlement.core.money import ZERO, is_finite_amount, to_money
from carrier_settlement.models.movement import MOVEMENT_SIGNS, CarrierMovement

logger = get_logger(__name__)

_INSERT_BY_DIALECT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def validate_movement(movement_type: str, amount: Any) -> Decimal:
    """Check *amount* carries the sign its movement type requires.

    Returns:
        The amount quantized to cents.

    Raises:
        LedgerValidationError: unknown type, non-finite amount, or wrong sign.
    """
    if movement_type not in MOVEMENT_SIGNS:
        raise LedgerValidationError(
            ErrorCode.VALIDATION_ERROR,
            f"Unknown movement type '{movement_type}'",
        )
    if amount is None or not is_finite_amount(amount):
        raise LedgerValidationError(
            ErrorCode.INVALID_AMOUNT,
            f"Movement amount must be a finite number, got {amount!r}",
        )

    value = to_money(amount)
    sign = MOVEMENT_SIGNS[movement_type]
    if (sign > 0 and value < ZERO) or (sign < 0 and value > ZERO):
        raise LedgerValidationError(
            ErrorCode.SIGN_VIOLATION,
            f"{movement_type} must be {'>= 0' if sign > 0 else '<= 0'}, got {value}",
            details={"movement_type": movement_type, "amount": str(value)},
        )
    return value


class MovementLedger:
    """Writes and tags carrier account movements."""

    def __init__(self, db: Session, config: Settings) -> None:
        self.db = db
        self.config = config
        self._table = CarrierMovement.__table__
        self._metadata_col = inspect(CarrierMovement).columns["metadata_json"]

    # ── Writes ───────────────────────────────────────────────────────

    def upsert_order_movement(
        self,
        store_id: uuid.UUID,
        carrier_id: uuid.UUID,
        order_id: uuid.UUID,
        movement_type: str,
        amount: Any,
        order_number: Optional[str] = None,
        description: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
        movement_date: Optional[date] = None,
        dispatch_batch_id: Optional[uuid.UUID] = None,
        created_by: Optional[str] = None,
    ) -> tuple[CarrierMovement, bool]:
        """Insert or rewrite the (order, type) movement.

        Returns:
            ``(movement, created)``; ``created`` is False when an existing
            row was rewritten or left untouched because it is already
            settled or paid.
        """
        value = validate_movement(movement_type, amount)
        table = self._table

        existing_id = self.find_id(order_id, movement_type)

        insert = _INSERT_BY_DIALECT.get(self.db.get_bind().dialect.name)
        if insert is None:
            raise NotImplementedError(
                f"Upserts not supported on dialect {self.db.get_bind().dialect.name}"
            )

        stmt = insert(table).values(
            {
                table.c.id: uuid.uuid4(),
                table.c.store_id: store_id,
                table.c.carrier_id: carrier_id,
                table.c.order_id: order_id,
                table.c.order_number: order_number,
                table.c.movement_type: movement_type,
                table.c.amount: value,
                table.c.description: description,
                self._metadata_col: metadata,
                table.c.movement_date: movement_date or date.today(),
                table.c.dispatch_batch_id: dispatch_batch_id,
                table.c.created_at: utcnow(),
                table.c.created_by: created_by,
            }
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.order_id, table.c.movement_type],
            set_={
                table.c.amount: stmt.excluded.amount,
                table.c.description: stmt.excluded.description,
                self._metadata_col: stmt.excluded[self._metadata_col.key],
            },
            where=and_(
                table.c.settlement_id.is_(None),
                table.c.payment_record_id.is_(None),
            ),
        ).returning(table.c.id)

        row = self.db.execute(stmt).first()
        movement_id = row[0] if row is not None else self.find_id(order_id, movement_type)

        movement = (
            self.db.query(CarrierMovement)
            .populate_existing()
            .filter(CarrierMovement.id == movement_id)
            .one()
        )
        if row is None:
            logger.info(
                "Movement frozen, upsert skipped: order_id=%s type=%s",
                order_id,
                movement_type,
            )
        return movement, existing_id is None

    def add_movement(
        self,
        store_id: uuid.UUID,
        carrier_id: uuid.UUID,
        movement_type: str,
        amount: Any,
        payment_record_id: Optional[uuid.UUID] = None,
        description: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
        movement_date: Optional[date] = None,
        created_by: Optional[str] = None,
    ) -> CarrierMovement:
        """Append a movement not tied to an order (payments, adjustments)."""
        value = validate_movement(movement_type, amount)
        movement = CarrierMovement(
            id=uuid.uuid4(),
            store_id=store_id,
            carrier_id=carrier_id,
            movement_type=movement_type,
            amount=value,
            payment_record_id=payment_record_id,
            description=description,
            metadata_json=metadata,
            movement_date=movement_date or date.today(),
            created_by=created_by,
        )
        self.db.add(movement)
        self.db.flush()
        return movement

    def void_order_movements(
        self,
        order_id: uuid.UUID,
        movement_types: Iterable[str],
        reason: str,
    ) -> list[CarrierMovement]:
        """Rewrite the order's unsettled entries of *movement_types* to zero.

        Used when a settlement records an outcome that contradicts entries
        booked earlier (a delivery that was in fact a failed attempt, or the
        reverse).  Rows are kept with a zero amount and the reason in their
        metadata.

        Raises:
            LedgerConflictError: ``ORDER_INVALID_STATE`` when one of the rows
                was already discharged by a payment.
        """
        movement_types = sorted(movement_types)
        if not movement_types:
            return []
        stale = (
            self.db.query(CarrierMovement)
            .populate_existing()
            .filter(CarrierMovement.order_id == order_id)
            .filter(CarrierMovement.movement_type.in_(movement_types))
            .filter(CarrierMovement.settlement_id.is_(None))
            .filter(CarrierMovement.amount != 0)
            .all()
        )
        for movement in stale:
            if movement.payment_record_id is not None:
                raise LedgerConflictError(
                    ErrorCode.ORDER_INVALID_STATE,
                    f"Order {movement.order_number or order_id} has a "
                    f"{movement.movement_type} entry already paid; it cannot be "
                    "settled with a different outcome",
                    details={
                        "order_id": str(order_id),
                        "movement_id": str(movement.id),
                        "movement_type": movement.movement_type,
                    },
                )
            metadata = dict(movement.metadata_json or {})
            metadata["voided_amount"] = str(to_money(movement.amount))
            metadata["voided_reason"] = reason
            movement.metadata_json = metadata
            movement.amount = ZERO
            logger.info(
                "Movement voided: order_id=%s type=%s reason=%s",
                order_id,
                movement.movement_type,
                reason,
            )
        self.db.flush()
        return stale

    # ── Tagging ──────────────────────────────────────────────────────

    def tag_settlement(
        self,
        order_ids: Iterable[uuid.UUID],
        settlement_id: uuid.UUID,
    ) -> int:
        """Link the orders' untagged movements to a settlement."""
        order_ids = list(order_ids)
        if not order_ids:
            return 0
        tagged = (
            self.db.query(CarrierMovement)
            .filter(CarrierMovement.order_id.in_(order_ids))
            .filter(CarrierMovement.settlement_id.is_(None))
            .filter(CarrierMovement.payment_record_id.is_(None))
            .update({CarrierMovement.settlement_id: settlement_id}, synchronize_session="fetch")
        )
        logger.debug("Tagged %d movements with settlement_id=%s", tagged, settlement_id)
        return tagged

    def tag_payment(
        self,
        movements: Iterable[CarrierMovement],
        payment_record_id: uuid.UUID,
    ) -> int:
        count = 0
        for movement in movements:
            movement.payment_record_id = payment_record_id
            count += 1
        return count

    # ── Reads ────────────────────────────────────────────────────────

    def has_movements(self, order_id: uuid.UUID) -> bool:
        return (
            self.db.query(CarrierMovement.id)
            .filter(CarrierMovement.order_id == order_id)
            .first()
            is not None
        )

    def find_id(self, order_id: uuid.UUID, movement_type: str) -> Optional[uuid.UUID]:
        row = (
            self.db.query(CarrierMovement.id)
            .filter(CarrierMovement.order_id == order_id)
            .filter(CarrierMovement.movement_type == movement_type)
            .first()
        )
        return row[0] if row is not None else None
