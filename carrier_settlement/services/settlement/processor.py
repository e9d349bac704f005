"""Settlement batch processor.

Settles a carrier's delivered and failed orders into one immutable
``Settlement``.  The whole run is one transaction:

  1. validate the request (before touching storage)
  2. lock (store, carrier, day), then lock every candidate order row
  3. refuse orders that are missing, foreign, already reconciled or not
     in a settleable state
  4. classify orders, resolve fees, work out COD expected vs. reported
  5. spread any confirmed discrepancy over the COD orders, cent-exact
  6. issue the LIQ code, persist the settlement, write each order's
     collected amount, sync its ledger entries, stamp ``reconciled_at``
     and tag its movements with the settlement
"""

from __future__ import annotations

import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.orm import Session

from carrier_settlement.core.clock import utcnow
from carrier_settlement.core.config import Settings
from carrier_settlement.core.database import atomic
from carrier_settlement.core.errors import (
    ErrorCode,
    LedgerConflictError,
    LedgerValidationError,
)
from carrier_settlement.core.locks import advisory_xact_lock, lock_rows
from carrier_settlement.core.logging import get_logger
from carrier_settlement.core.money import ZERO, is_finite_amount, to_money
from carrier_settlement.models.carrier import Carrier
from carrier_settlement.models.movement import ORDER_TYPES, MovementType
from carrier_settlement.models.order import (
    DELIVERED_STATUSES,
    FAILED_STATUSES,
    IN_TRANSIT_STATUSES,
    Order,
)
from carrier_settlement.models.settlement import Settlement
from carrier_settlement.schemas.settlement import (
    ManualReconciliationRequest,
    SettlementRequest,
)
from carrier_settlement.services.ledger.cod import is_order_cod
from carrier_settlement.services.ledger.delivery import (
    DeliveryEventProcessor,
    compute_failed_attempt_fee,
)
from carrier_settlement.services.settlement.codes import SequenceCodeGenerator
from carrier_settlement.services.settlement.distribution import distribute_discrepancy

logger = get_logger(__name__)

# Orders a batch run picks up: terminal outcomes only
BATCH_STATUSES = DELIVERED_STATUSES | FAILED_STATUSES
# Operators may also settle orders the lifecycle has not closed yet
MANUAL_STATUSES = BATCH_STATUSES | IN_TRANSIT_STATUSES


@dataclass
class OrderOutcome:
    """One order to settle and whether it was delivered."""

    order: Order
    delivered: bool
    failure_reason: Optional[str] = None


@dataclass
class SettlementOutcome:
    """Persisted settlement plus the per-order allocation behind it."""

    settlement: Settlement
    discrepancy_amount: Decimal
    has_discrepancy: bool
    allocations: list[dict] = field(default_factory=list)


def _day_bounds(on_date: date) -> tuple[datetime, datetime]:
    start = datetime(on_date.year, on_date.month, on_date.day)
    return start, start + timedelta(days=1)


def _settled_types(line: dict) -> set[str]:
    """Movement types a settled order keeps; the rest are voided."""
    if not line["outcome"].delivered:
        return {MovementType.FAILED_ATTEMPT_FEE} if line["failed_fee"] > ZERO else set()
    kept = set()
    if line["is_cod"]:
        kept.add(MovementType.COD_COLLECTED)
    if line["fee"] > ZERO:
        kept.add(MovementType.DELIVERY_FEE)
    return kept


def validate_amount(value: Any, name: str = "total_amount_collected") -> Decimal:
    """Reject missing, non-finite or negative amounts."""
    if value is None or not is_finite_amount(value) or to_money(value) < ZERO:
        raise LedgerValidationError(
            ErrorCode.INVALID_AMOUNT,
            f"{name} must be a finite amount >= 0, got {value!r}",
        )
    return to_money(value)


class SettlementBatchProcessor:
    """Creates settlements for a carrier's orders, atomically."""

    def __init__(self, db: Session, config: Settings) -> None:
        self.db = db
        self.config = config
        self.delivery = DeliveryEventProcessor(db, config)
        self.resolver = self.delivery.resolver
        self.ledger = self.delivery.ledger
        self.codes = SequenceCodeGenerator(db, config)

    # ── Public API ───────────────────────────────────────────────────

    def settle_batch(self, request: SettlementRequest) -> SettlementOutcome:
        """Settle every unreconciled outcome of a carrier on one day.

        Raises:
            LedgerConflictError: ``NO_ORDERS_TO_SETTLE`` when nothing is
                pending, ``SETTLEMENT_ALREADY_EXISTS`` when the day was
                already settled, plus the discrepancy and carrier codes.
        """
        reported = validate_amount(request.total_amount_collected)

        with atomic(
            self.db,
            "settle_batch",
            store_id=request.store_id,
            carrier_id=request.carrier_id,
            settlement_date=request.settlement_date,
        ):
            carrier = self._load_carrier(request.store_id, request.carrier_id)
            self._lock_period(request.store_id, request.carrier_id, request.settlement_date)

            start, end = _day_bounds(request.settlement_date)
            orders = lock_rows(
                self.db.query(Order)
                .filter(Order.store_id == request.store_id)
                .filter(Order.carrier_id == request.carrier_id)
                .filter(Order.delivery_status.in_(sorted(BATCH_STATUSES)))
                .filter(Order.reconciled_at.is_(None))
                .filter(Order.outcome_at >= start)
                .filter(Order.outcome_at < end)
                .order_by(Order.id),
                what="orders",
            )

            if not orders:
                already = (
                    self.db.query(Settlement.id)
                    .filter(Settlement.store_id == request.store_id)
                    .filter(Settlement.carrier_id == request.carrier_id)
                    .filter(Settlement.settlement_date == request.settlement_date)
                    .first()
                )
                if already is not None:
                    raise LedgerConflictError(
                        ErrorCode.SETTLEMENT_ALREADY_EXISTS,
                        f"Carrier {carrier.name} is already settled for "
                        f"{request.settlement_date.isoformat()}",
                    )
                raise LedgerConflictError(
                    ErrorCode.NO_ORDERS_TO_SETTLE,
                    f"No pending orders for carrier {carrier.name} on "
                    f"{request.settlement_date.isoformat()}",
                )

            outcome = self._settle(
                carrier=carrier,
                store_id=request.store_id,
                settlement_date=request.settlement_date,
                outcomes=[OrderOutcome(o, o.delivery_status in DELIVERED_STATUSES) for o in orders],
                reported=reported,
                confirm_discrepancy=request.confirm_discrepancy,
                notes=request.notes,
                created_by=request.created_by,
                dispatch_batch_id=request.dispatch_batch_id,
            )
        return outcome

    def reconcile_manual(self, request: ManualReconciliationRequest) -> SettlementOutcome:
        """Settle an operator-supplied list of orders with explicit outcomes.

        Every listed order must exist, belong to the store and carrier, be
        unreconciled and be in a settleable state; a single offender fails
        the whole request.
        """
        reported = self._validate_manual(request)

        with atomic(
            self.db,
            "reconcile_manual",
            store_id=request.store_id,
            carrier_id=request.carrier_id,
            orders=len(request.orders),
        ):
            carrier = self._load_carrier(request.store_id, request.carrier_id)
            self._lock_period(request.store_id, request.carrier_id, request.settlement_date)

            order_ids = [item.order_id for item in request.orders]
            locked = {
                order.id: order
                for order in lock_rows(
                    self.db.query(Order).filter(Order.id.in_(order_ids)).order_by(Order.id),
                    what="orders",
                )
            }

            outcomes: list[OrderOutcome] = []
            for item in request.orders:
                order = locked.get(item.order_id)
                self._check_settleable(order, item.order_id, request.store_id, request.carrier_id)
                outcomes.append(OrderOutcome(order, item.delivered, item.failure_reason))

            outcome = self._settle(
                carrier=carrier,
                store_id=request.store_id,
                settlement_date=request.settlement_date,
                outcomes=outcomes,
                reported=reported,
                confirm_discrepancy=request.confirm_discrepancy,
                notes=request.notes,
                created_by=request.created_by,
                dispatch_batch_id=request.dispatch_batch_id,
            )
        return outcome

    def pending_reconciliation(self, store_id: uuid.UUID) -> list[dict]:
        """Unreconciled terminal outcomes grouped by (day, carrier), newest day first."""
        rows = (
            self.db.query(Order, Carrier.name)
            .join(Carrier, Carrier.id == Order.carrier_id)
            .filter(Order.store_id == store_id)
            .filter(Order.delivery_status.in_(sorted(BATCH_STATUSES)))
            .filter(Order.reconciled_at.is_(None))
            .filter(Order.outcome_at.isnot(None))
            .all()
        )

        groups: dict[tuple[date, uuid.UUID], dict] = {}
        for order, carrier_name in rows:
            key = (order.outcome_at.date(), order.carrier_id)
            group = groups.setdefault(
                key,
                {
                    "outcome_date": key[0],
                    "carrier_id": order.carrier_id,
                    "carrier_name": carrier_name,
                    "total_orders": 0,
                    "delivered_orders": 0,
                    "failed_orders": 0,
                    "cod_orders": 0,
                    "total_cod_expected": ZERO,
                },
            )
            group["total_orders"] += 1
            if order.delivery_status in DELIVERED_STATUSES:
                group["delivered_orders"] += 1
                if self._is_cod(order):
                    group["cod_orders"] += 1
                    group["total_cod_expected"] += to_money(order.total_price)
            else:
                group["failed_orders"] += 1

        return sorted(
            groups.values(),
            key=lambda g: (-g["outcome_date"].toordinal(), g["carrier_name"] or ""),
        )

    def pending_orders(
        self,
        store_id: uuid.UUID,
        carrier_id: uuid.UUID,
        on_date: date,
    ) -> list[dict]:
        """Orders a batch run for (carrier, day) would pick up."""
        start, end = _day_bounds(on_date)
        orders = (
            self.db.query(Order)
            .filter(Order.store_id == store_id)
            .filter(Order.carrier_id == carrier_id)
            .filter(Order.delivery_status.in_(sorted(BATCH_STATUSES)))
            .filter(Order.reconciled_at.is_(None))
            .filter(Order.outcome_at >= start)
            .filter(Order.outcome_at < end)
            .order_by(Order.outcome_at.asc())
            .all()
        )
        return [
            {
                "id": order.id,
                "order_number": order.order_number,
                "delivery_status": order.delivery_status,
                "total_price": to_money(order.total_price),
                "payment_method": order.payment_method,
                "is_cod": self._is_cod(order),
                "outcome_at": order.outcome_at,
            }
            for order in orders
        ]

    # ── Core aggregation ─────────────────────────────────────────────

    def _settle(
        self,
        carrier: Carrier,
        store_id: uuid.UUID,
        settlement_date: date,
        outcomes: list[OrderOutcome],
        reported: Decimal,
        confirm_discrepancy: bool,
        notes: Optional[str],
        created_by: Optional[str],
        dispatch_batch_id: Optional[uuid.UUID],
    ) -> SettlementOutcome:
        totals: dict[str, Any] = defaultdict(lambda: ZERO)
        counts: dict[str, int] = defaultdict(int)
        lines: list[dict] = []
        cod_expected: list[tuple[uuid.UUID, Decimal]] = []

        # Classify and price every order
        for outcome in outcomes:
            order = outcome.order
            fee = self.resolver.resolve_fee(
                carrier.id,
                zone=order.delivery_zone,
                city=order.shipping_city,
            )
            line = {
                "outcome": outcome,
                "fee": fee,
                "is_cod": False,
                "expected": ZERO,
                "failed_fee": ZERO,
            }
            if outcome.delivered:
                counts["delivered"] += 1
                line["is_cod"] = self._is_cod(order)
                if line["is_cod"]:
                    counts["cod"] += 1
                    line["expected"] = to_money(order.total_price)
                    cod_expected.append((order.id, line["expected"]))
                    totals["fees_cod"] += fee
                else:
                    counts["prepaid"] += 1
                    totals["fees_prepaid"] += fee
            else:
                counts["not_delivered"] += 1
                line["failed_fee"] = compute_failed_attempt_fee(
                    carrier,
                    fee,
                    self.config.default_failed_attempt_fee_percent,
                )
                totals["failed_fees"] += line["failed_fee"]
            lines.append(line)

        expected_total = sum((amount for _, amount in cod_expected), ZERO)
        discrepancy = reported - expected_total
        if discrepancy != ZERO:
            if not confirm_discrepancy:
                raise LedgerConflictError(
                    ErrorCode.DISCREPANCY_NOT_CONFIRMED,
                    f"Reported {reported} differs from expected COD {expected_total} "
                    f"by {discrepancy}; confirm the discrepancy to proceed",
                    details={
                        "expected": str(expected_total),
                        "reported": str(reported),
                        "discrepancy": str(discrepancy),
                    },
                )
            collected = distribute_discrepancy(cod_expected, reported)
        else:
            collected = dict(cod_expected)

        cod_collected = sum(collected.values(), ZERO)
        carrier_fees = totals["fees_cod"] + totals["fees_prepaid"]
        net_receivable = cod_collected - carrier_fees - totals["failed_fees"]

        code = self.codes.next_code(
            store_id,
            self.config.settlement_code_prefix,
            settlement_date,
            Settlement,
        )
        settlement = Settlement(
            id=uuid.uuid4(),
            store_id=store_id,
            carrier_id=carrier.id,
            settlement_code=code,
            settlement_date=settlement_date,
            total_dispatched=len(outcomes),
            total_delivered=counts["delivered"],
            total_not_delivered=counts["not_delivered"],
            total_cod_delivered=counts["cod"],
            total_prepaid_delivered=counts["prepaid"],
            total_cod_expected=expected_total,
            total_cod_collected=cod_collected,
            carrier_fees_cod=totals["fees_cod"],
            carrier_fees_prepaid=totals["fees_prepaid"],
            total_carrier_fees=carrier_fees,
            failed_attempt_fee=totals["failed_fees"],
            net_receivable=net_receivable,
            discrepancy_amount=discrepancy,
            has_discrepancy=discrepancy != ZERO,
            amount_paid=ZERO,
            balance_due=abs(net_receivable),
            status="pending" if net_receivable != ZERO else "paid",
            notes=notes,
            created_by=created_by,
        )
        self.db.add(settlement)
        self.db.flush()

        # Write back order outcomes and keep the ledger in step
        now = utcnow()
        allocations: list[dict] = []
        for line in lines:
            outcome = line["outcome"]
            order = outcome.order
            amount = collected.get(order.id, ZERO)

            if outcome.delivered:
                self.delivery.write_delivery(
                    order,
                    carrier,
                    amount_collected=amount if line["is_cod"] else None,
                    fee=line["fee"],
                    dispatch_batch_id=dispatch_batch_id,
                    created_by=created_by,
                )
            else:
                self.delivery.write_failed_delivery(
                    order,
                    carrier,
                    fee=line["fee"],
                    dispatch_batch_id=dispatch_batch_id,
                    created_by=created_by,
                    failure_reason=outcome.failure_reason,
                )
            # Entries booked for a different outcome must not reach the settlement
            self.ledger.void_order_movements(
                order.id,
                ORDER_TYPES - _settled_types(line),
                reason=(
                    f"settled as {'delivered' if outcome.delivered else 'not delivered'} "
                    f"in {code}"
                ),
            )

            order.amount_collected = amount
            order.has_amount_discrepancy = line["is_cod"] and amount != line["expected"]
            order.reconciled_at = now
            allocations.append(
                {
                    "order_id": order.id,
                    "order_number": order.order_number,
                    "delivered": outcome.delivered,
                    "is_cod": line["is_cod"],
                    "expected_amount": line["expected"],
                    "collected_amount": amount,
                    "carrier_fee": line["fee"] if outcome.delivered else ZERO,
                    "failed_attempt_fee": line["failed_fee"],
                    "has_discrepancy": order.has_amount_discrepancy,
                }
            )

        self.db.flush()
        tagged = self.ledger.tag_settlement([o.order.id for o in outcomes], settlement.id)

        logger.info(
            "Settlement created: code=%s carrier=%s orders=%d collected=%s fees=%s "
            "failed_fees=%s net=%s discrepancy=%s movements_tagged=%d",
            code,
            carrier.name,
            len(outcomes),
            cod_collected,
            carrier_fees,
            totals["failed_fees"],
            net_receivable,
            discrepancy,
            tagged,
        )
        return SettlementOutcome(
            settlement=settlement,
            discrepancy_amount=discrepancy,
            has_discrepancy=discrepancy != ZERO,
            allocations=allocations,
        )

    # ── Private helpers ──────────────────────────────────────────────

    def _validate_manual(self, request: ManualReconciliationRequest) -> Decimal:
        reported = validate_amount(request.total_amount_collected)
        if not request.orders:
            raise LedgerValidationError(
                ErrorCode.EMPTY_ORDER_SET,
                "At least one order is required",
            )

        seen: set[uuid.UUID] = set()
        for item in request.orders:
            if item.order_id in seen:
                raise LedgerValidationError(
                    ErrorCode.DUPLICATE_ORDER,
                    f"Order {item.order_id} is listed more than once",
                    details={"order_id": str(item.order_id)},
                )
            seen.add(item.order_id)
            if not item.delivered and not (item.failure_reason or "").strip():
                raise LedgerValidationError(
                    ErrorCode.FAILURE_REASON_REQUIRED,
                    f"Order {item.order_id} was not delivered; a failure reason is required",
                    details={"order_id": str(item.order_id)},
                )
        return reported

    def _check_settleable(
        self,
        order: Optional[Order],
        order_id: uuid.UUID,
        store_id: uuid.UUID,
        carrier_id: uuid.UUID,
    ) -> None:
        if order is None or order.store_id != store_id or order.carrier_id != carrier_id:
            raise LedgerConflictError(
                ErrorCode.ORDER_NOT_FOUND,
                f"Order {order_id} not found for this store and carrier",
                details={"order_id": str(order_id)},
            )
        if order.reconciled_at is not None:
            raise LedgerConflictError(
                ErrorCode.ORDER_ALREADY_RECONCILED,
                f"Order {order.order_number or order.id} was already reconciled "
                f"at {order.reconciled_at.isoformat()}",
                details={"order_id": str(order.id)},
            )
        if order.delivery_status not in MANUAL_STATUSES:
            raise LedgerConflictError(
                ErrorCode.ORDER_INVALID_STATE,
                f"Order {order.order_number or order.id} is '{order.delivery_status}' "
                "and cannot be settled",
                details={"order_id": str(order.id), "status": order.delivery_status},
            )

    def _load_carrier(self, store_id: uuid.UUID, carrier_id: uuid.UUID) -> Carrier:
        carrier = self.db.get(Carrier, carrier_id)
        if carrier is None or carrier.store_id != store_id:
            raise LedgerConflictError(
                ErrorCode.CARRIER_NOT_FOUND,
                f"Carrier {carrier_id} not found",
            )
        if not carrier.is_active:
            raise LedgerConflictError(
                ErrorCode.CARRIER_INACTIVE,
                f"Carrier {carrier.name} is inactive",
            )
        return carrier

    def _lock_period(self, store_id: uuid.UUID, carrier_id: uuid.UUID, on_date: date) -> None:
        key = advisory_xact_lock(self.db, "settlement", store_id, carrier_id, on_date.isoformat())
        logger.debug(
            "Settlement lock held: key=%d store_id=%s carrier_id=%s date=%s",
            key,
            store_id,
            carrier_id,
            on_date,
        )

    def _is_cod(self, order: Order) -> bool:
        return is_order_cod(
            order.payment_method,
            order.prepaid_method,
            self.config.cod_payment_methods,
        )
