"""Delivery event processing.

When an order reaches a terminal delivery outcome, the order-lifecycle
service calls in here and we book what that outcome means for the carrier's
account:

* delivered: ``cod_collected`` (+cash) if the carrier collected payment,
  and ``delivery_fee`` (-fee) for the trip;
* failed: ``failed_attempt_fee`` (-fee x percent) if the carrier charges
  for failed attempts.

All writes go through the movement ledger upsert, so replays are harmless.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import exists
from sqlalchemy.orm import Session

from carrier_settlement.core.config import Settings
from carrier_settlement.core.database import atomic
from carrier_settlement.core.errors import (
    ErrorCode,
    LedgerConflictError,
    LedgerError,
    LedgerValidationError,
)
from carrier_settlement.core.logging import get_logger
from carrier_settlement.core.money import ZERO, is_finite_amount, to_money
from carrier_settlement.models.carrier import Carrier
from carrier_settlement.models.movement import CarrierMovement, MovementType
from carrier_settlement.models.order import (
    FAILED_STATUSES,
    IN_TRANSIT_STATUSES,
    Order,
)
from carrier_settlement.services.coverage.resolver import CoverageResolver
from carrier_settlement.services.ledger.cod import is_order_cod
from carrier_settlement.services.ledger.movements import MovementLedger

logger = get_logger(__name__)

# Transitions out of shipped/in_transit that book a failed attempt
FAILED_TRANSITION_TARGETS = FAILED_STATUSES | {"cancelled"}


@dataclass
class DeliveryMovements:
    """Ledger entries written (or rewritten) for one order outcome."""

    order_id: uuid.UUID
    movement_ids: list[uuid.UUID] = field(default_factory=list)
    cod_amount: Decimal = ZERO
    carrier_fee: Decimal = ZERO
    failed_attempt_fee: Decimal = ZERO
    action: str = "delivered"
    created: int = 0


def compute_failed_attempt_fee(
    carrier: Any,
    fee: Decimal,
    default_percent: float,
) -> Decimal:
    """Fee charged for a failed attempt, as a positive amount.

    Zero unless the carrier charges for failed attempts.  The percentage
    comes from the carrier, falling back to *default_percent*.
    """
    if not carrier.charges_failed_attempts or fee <= ZERO:
        return ZERO
    percent = carrier.failed_attempt_fee_percent
    if percent is None:
        percent = default_percent
    return to_money(to_money(fee) * Decimal(str(percent)) / Decimal("100"))


class DeliveryEventProcessor:
    """Books ledger movements for delivered and failed orders."""

    def __init__(self, db: Session, config: Settings) -> None:
        self.db = db
        self.config = config
        self.resolver = CoverageResolver(db, config)
        self.ledger = MovementLedger(db, config)

    # ── Public API ───────────────────────────────────────────────────

    def record_delivery(
        self,
        order_id: uuid.UUID,
        amount_collected: Optional[Any] = None,
        dispatch_batch_id: Optional[uuid.UUID] = None,
        created_by: Optional[str] = None,
    ) -> DeliveryMovements:
        """Write the COD and delivery-fee movements of a delivered order.

        Args:
            order_id: The delivered order.
            amount_collected: Cash the carrier collected.  Defaults to the
                order total.  Ignored for non-COD orders.
            dispatch_batch_id: Dispatch batch the order travelled in.
            created_by: User or process recording the event.

        Returns:
            The movement ids plus the COD amount and fee that were booked.
        """
        with atomic(self.db, "record_delivery", order_id=order_id):
            order = self._load_order(order_id)
            carrier = self._load_carrier(order)
            result = self.write_delivery(
                order,
                carrier,
                amount_collected=amount_collected,
                dispatch_batch_id=dispatch_batch_id,
                created_by=created_by,
            )
        return result

    def record_failed_delivery(
        self,
        order_id: uuid.UUID,
        dispatch_batch_id: Optional[uuid.UUID] = None,
        created_by: Optional[str] = None,
    ) -> Optional[uuid.UUID]:
        """Write the failed-attempt fee of an undelivered order, if any.

        Returns:
            The movement id, or None when the carrier does not charge for
            failed attempts or has no fee for the destination.
        """
        with atomic(self.db, "record_failed_delivery", order_id=order_id):
            order = self._load_order(order_id)
            carrier = self._load_carrier(order)
            result = self.write_failed_delivery(
                order,
                carrier,
                dispatch_batch_id=dispatch_batch_id,
                created_by=created_by,
            )
        return result.movement_ids[0] if result.movement_ids else None

    def handle_status_change(
        self,
        order_id: uuid.UUID,
        previous_status: Optional[str],
        new_status: str,
        dispatch_batch_id: Optional[uuid.UUID] = None,
        created_by: Optional[str] = None,
    ) -> DeliveryMovements:
        """React to an order status transition.

        ``-> delivered`` books the delivery; ``shipped/in_transit -> failed,
        returned, rejected or cancelled`` books a failed attempt.  Any other
        transition writes nothing.
        """
        previous = (previous_status or "").strip().lower()
        new = (new_status or "").strip().lower()

        if new == "delivered" and previous != "delivered":
            order = self._load_order(order_id)
            return self.record_delivery(
                order_id,
                amount_collected=order.amount_collected,
                dispatch_batch_id=dispatch_batch_id,
                created_by=created_by,
            )

        if previous in IN_TRANSIT_STATUSES and new in FAILED_TRANSITION_TARGETS:
            with atomic(self.db, "record_failed_delivery", order_id=order_id):
                order = self._load_order(order_id)
                carrier = self._load_carrier(order)
                result = self.write_failed_delivery(
                    order,
                    carrier,
                    dispatch_batch_id=dispatch_batch_id,
                    created_by=created_by,
                )
            return result

        logger.debug(
            "Status change ignored: order_id=%s %s -> %s",
            order_id,
            previous_status,
            new_status,
        )
        return DeliveryMovements(order_id=order_id, action="none")

    def backfill_movements(
        self,
        store_id: Optional[uuid.UUID] = None,
        limit: Optional[int] = None,
    ) -> dict:
        """Generate movements for delivered orders that have none yet.

        Each order is processed in its own transaction; failures are logged
        and skipped so one bad order does not block the rest.

        Returns:
            ``{"orders_processed", "movements_created", "errors"}``
        """
        limit = limit or self.config.backfill_batch_size
        query = (
            self.db.query(Order.id)
            .filter(Order.delivery_status == "delivered")
            .filter(Order.carrier_id.isnot(None))
            .filter(~exists().where(CarrierMovement.order_id == Order.id))
        )
        if store_id is not None:
            query = query.filter(Order.store_id == store_id)
        order_ids = [row[0] for row in query.order_by(Order.outcome_at.asc()).limit(limit)]

        processed = 0
        created = 0
        errors: list[str] = []
        for order_id in order_ids:
            try:
                result = self.record_delivery(order_id, created_by="backfill")
            except LedgerError as exc:
                errors.append(f"order={order_id}: {exc.message}")
                logger.warning("Backfill skipped order %s: %s", order_id, exc.message)
                continue
            processed += 1
            created += result.created

        logger.info(
            "Backfill complete: candidates=%d processed=%d movements_created=%d",
            len(order_ids),
            processed,
            created,
        )
        return {
            "orders_processed": processed,
            "movements_created": created,
            "errors": errors,
        }

    def has_movements(self, order_id: uuid.UUID) -> bool:
        return self.ledger.has_movements(order_id)

    # ── Writers shared with the settlement processor ─────────────────

    def write_delivery(
        self,
        order: Order,
        carrier: Carrier,
        amount_collected: Optional[Any] = None,
        fee: Optional[Decimal] = None,
        dispatch_batch_id: Optional[uuid.UUID] = None,
        created_by: Optional[str] = None,
    ) -> DeliveryMovements:
        """Upsert the delivered-order movements inside the caller's transaction."""
        if amount_collected is not None and (
            not is_finite_amount(amount_collected) or to_money(amount_collected) < ZERO
        ):
            raise LedgerValidationError(
                ErrorCode.INVALID_AMOUNT,
                f"amount_collected must be a non-negative number, got {amount_collected!r}",
            )

        cod = is_order_cod(
            order.payment_method,
            order.prepaid_method,
            self.config.cod_payment_methods,
        )
        if fee is None:
            fee = self.resolver.resolve_fee(
                carrier.id,
                zone=order.delivery_zone,
                city=order.shipping_city,
            )
        metadata = self._metadata(order, fee, cod)
        result = DeliveryMovements(order_id=order.id, carrier_fee=fee)

        if cod:
            collected = to_money(
                amount_collected if amount_collected is not None else order.total_price
            )
            # A zero still rewrites an earlier entry so the ledger follows the settlement
            if collected > ZERO or self.ledger.find_id(
                order.id, MovementType.COD_COLLECTED
            ):
                self._upsert(
                    result,
                    order,
                    carrier,
                    MovementType.COD_COLLECTED,
                    collected,
                    f"COD collected for order {order.order_number or order.id}",
                    metadata,
                    dispatch_batch_id,
                    created_by,
                )
                result.cod_amount = collected

        if fee > ZERO:
            self._upsert(
                result,
                order,
                carrier,
                MovementType.DELIVERY_FEE,
                -fee,
                f"Delivery fee for order {order.order_number or order.id}",
                metadata,
                dispatch_batch_id,
                created_by,
            )

        logger.info(
            "Delivery booked: order_id=%s cod=%s collected=%s fee=%s movements=%d",
            order.id,
            cod,
            result.cod_amount,
            fee,
            len(result.movement_ids),
        )
        return result

    def write_failed_delivery(
        self,
        order: Order,
        carrier: Carrier,
        fee: Optional[Decimal] = None,
        dispatch_batch_id: Optional[uuid.UUID] = None,
        created_by: Optional[str] = None,
        failure_reason: Optional[str] = None,
    ) -> DeliveryMovements:
        """Upsert the failed-attempt fee inside the caller's transaction."""
        result = DeliveryMovements(order_id=order.id, action="failed")
        if not carrier.charges_failed_attempts:
            return result

        if fee is None:
            fee = self.resolver.resolve_fee(
                carrier.id,
                zone=order.delivery_zone,
                city=order.shipping_city,
            )
        failed_fee = compute_failed_attempt_fee(
            carrier,
            fee,
            self.config.default_failed_attempt_fee_percent,
        )
        result.carrier_fee = fee
        if failed_fee <= ZERO:
            return result

        metadata = self._metadata(order, fee, False)
        if failure_reason:
            metadata["failure_reason"] = failure_reason
        self._upsert(
            result,
            order,
            carrier,
            MovementType.FAILED_ATTEMPT_FEE,
            -failed_fee,
            f"Failed delivery attempt for order {order.order_number or order.id}",
            metadata,
            dispatch_batch_id,
            created_by,
        )
        result.failed_attempt_fee = failed_fee
        logger.info(
            "Failed attempt booked: order_id=%s fee=%s charged=%s",
            order.id,
            fee,
            failed_fee,
        )
        return result

    # ── Private helpers ──────────────────────────────────────────────

    def _upsert(
        self,
        result: DeliveryMovements,
        order: Order,
        carrier: Carrier,
        movement_type: str,
        amount: Decimal,
        description: str,
        metadata: dict,
        dispatch_batch_id: Optional[uuid.UUID],
        created_by: Optional[str],
    ) -> None:
        movement, created = self.ledger.upsert_order_movement(
            store_id=order.store_id,
            carrier_id=carrier.id,
            order_id=order.id,
            movement_type=movement_type,
            amount=amount,
            order_number=order.order_number,
            description=description,
            metadata=metadata,
            movement_date=order.outcome_at.date() if order.outcome_at else date.today(),
            dispatch_batch_id=dispatch_batch_id,
            created_by=created_by,
        )
        result.movement_ids.append(movement.id)
        if created:
            result.created += 1

    @staticmethod
    def _metadata(order: Order, fee: Decimal, cod: bool) -> dict:
        return {
            "zone": order.delivery_zone,
            "city": order.shipping_city,
            "fee_rate": str(fee),
            "is_cod": cod,
        }

    def _load_order(self, order_id: uuid.UUID) -> Order:
        order = self.db.get(Order, order_id)
        if order is None:
            raise LedgerConflictError(
                ErrorCode.ORDER_NOT_FOUND,
                f"Order {order_id} not found",
            )
        return order

    def _load_carrier(self, order: Order) -> Carrier:
        if order.carrier_id is None:
            raise LedgerConflictError(
                ErrorCode.CARRIER_NOT_ASSIGNED,
                f"Order {order.order_number or order.id} has no carrier assigned",
            )
        carrier = self.db.get(Carrier, order.carrier_id)
        if carrier is None:
            raise LedgerConflictError(
                ErrorCode.CARRIER_NOT_FOUND,
                f"Carrier {order.carrier_id} not found",
            )
        return carrier
