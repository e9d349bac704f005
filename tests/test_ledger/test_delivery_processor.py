"""Tests for delivery event processing."""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal
from types import SimpleNamespace

import pytest

from carrier_settlement.core.config import settings
from carrier_settlement.core.errors import (
    ErrorCode,
    LedgerConflictError,
    LedgerValidationError,
)
from carrier_settlement.models import CarrierMovement, MovementType
from carrier_settlement.services.ledger.delivery import (
    DeliveryEventProcessor,
    compute_failed_attempt_fee,
)


def _movements(db_session, order_id):
    return {
        m.movement_type: m
        for m in db_session.query(CarrierMovement).filter_by(order_id=order_id).all()
    }


# ── Failed-attempt fee rule (pure) ───────────────────────────────────


def test_failed_fee_defaults_to_half():
    carrier = SimpleNamespace(charges_failed_attempts=True, failed_attempt_fee_percent=None)
    assert compute_failed_attempt_fee(carrier, Decimal("20.00"), 50.0) == Decimal("10.00")


def test_failed_fee_uses_carrier_percent():
    carrier = SimpleNamespace(charges_failed_attempts=True, failed_attempt_fee_percent=Decimal("30"))
    assert compute_failed_attempt_fee(carrier, Decimal("25.00"), 50.0) == Decimal("7.50")


def test_failed_fee_zero_when_not_charged():
    carrier = SimpleNamespace(charges_failed_attempts=False, failed_attempt_fee_percent=Decimal("50"))
    assert compute_failed_attempt_fee(carrier, Decimal("20.00"), 50.0) == Decimal("0.00")


def test_failed_fee_rounds_half_up():
    carrier = SimpleNamespace(charges_failed_attempts=True, failed_attempt_fee_percent=None)
    assert compute_failed_attempt_fee(carrier, Decimal("0.05"), 50.0) == Decimal("0.03")


# ── record_delivery ──────────────────────────────────────────────────


def test_cod_delivery_books_cash_and_fee(db_session, make_order):
    order = make_order(total_price=Decimal("100.00"))
    result = DeliveryEventProcessor(db_session, settings).record_delivery(order.id)

    assert result.cod_amount == Decimal("100.00")
    assert result.carrier_fee == Decimal("20.00")
    assert len(result.movement_ids) == 2

    movements = _movements(db_session, order.id)
    assert movements[MovementType.COD_COLLECTED].amount == Decimal("100.00")
    assert movements[MovementType.DELIVERY_FEE].amount == Decimal("-20.00")
    assert movements[MovementType.DELIVERY_FEE].movement_date == date(2024, 3, 1)
    assert movements[MovementType.COD_COLLECTED].metadata_json["is_cod"] is True


def test_record_delivery_is_idempotent(db_session, make_order):
    """Two calls leave exactly one cod_collected and one delivery_fee row."""
    order = make_order()
    processor = DeliveryEventProcessor(db_session, settings)

    first = processor.record_delivery(order.id)
    second = processor.record_delivery(order.id, amount_collected=Decimal("95.00"))

    rows = db_session.query(CarrierMovement).filter_by(order_id=order.id).all()
    assert len(rows) == 2
    assert sorted(first.movement_ids) == sorted(second.movement_ids)
    assert second.created == 0
    assert _movements(db_session, order.id)[MovementType.COD_COLLECTED].amount == Decimal("95.00")


def test_prepaid_override_books_no_cash(db_session, make_order):
    order = make_order(payment_method="cash", prepaid_method="transfer")
    result = DeliveryEventProcessor(db_session, settings).record_delivery(order.id)

    movements = _movements(db_session, order.id)
    assert MovementType.COD_COLLECTED not in movements
    assert movements[MovementType.DELIVERY_FEE].amount == Decimal("-20.00")
    assert result.cod_amount == Decimal("0.00")


def test_card_order_books_only_fee(db_session, make_order):
    order = make_order(payment_method="card")
    DeliveryEventProcessor(db_session, settings).record_delivery(order.id)
    assert set(_movements(db_session, order.id)) == {MovementType.DELIVERY_FEE}


def test_zero_fee_books_no_fee_row(db_session, make_carrier, make_order):
    free = make_carrier(zones={}, name="Own staff")
    order = make_order(carrier_id=free.id)
    DeliveryEventProcessor(db_session, settings).record_delivery(order.id)
    assert set(_movements(db_session, order.id)) == {MovementType.COD_COLLECTED}


def test_unknown_order(db_session):
    with pytest.raises(LedgerConflictError) as exc_info:
        DeliveryEventProcessor(db_session, settings).record_delivery(uuid.uuid4())
    assert exc_info.value.code == ErrorCode.ORDER_NOT_FOUND


def test_order_without_carrier(db_session, make_order):
    order = make_order(carrier_id=None)
    with pytest.raises(LedgerConflictError) as exc_info:
        DeliveryEventProcessor(db_session, settings).record_delivery(order.id)
    assert exc_info.value.code == ErrorCode.CARRIER_NOT_ASSIGNED


def test_negative_collected_amount_rolls_back(db_session, make_order):
    order = make_order()
    with pytest.raises(LedgerValidationError) as exc_info:
        DeliveryEventProcessor(db_session, settings).record_delivery(
            order.id, amount_collected=Decimal("-1.00")
        )
    assert exc_info.value.code == ErrorCode.INVALID_AMOUNT
    assert db_session.query(CarrierMovement).count() == 0


# ── record_failed_delivery ───────────────────────────────────────────


def test_failed_delivery_charges_half_by_default(db_session, make_carrier, make_order):
    charging = make_carrier(charges_failed_attempts=True)
    order = make_order(carrier_id=charging.id, delivery_status="failed")

    movement_id = DeliveryEventProcessor(db_session, settings).record_failed_delivery(order.id)

    movement = db_session.get(CarrierMovement, movement_id)
    assert movement.movement_type == MovementType.FAILED_ATTEMPT_FEE
    assert movement.amount == Decimal("-10.00")


def test_failed_delivery_uses_carrier_percent(db_session, make_carrier, make_order):
    charging = make_carrier(charges_failed_attempts=True, failed_attempt_fee_percent=Decimal("25"))
    order = make_order(carrier_id=charging.id, delivery_status="returned")

    movement_id = DeliveryEventProcessor(db_session, settings).record_failed_delivery(order.id)
    assert db_session.get(CarrierMovement, movement_id).amount == Decimal("-5.00")


def test_failed_delivery_free_when_carrier_does_not_charge(db_session, make_order):
    order = make_order(delivery_status="failed")
    assert DeliveryEventProcessor(db_session, settings).record_failed_delivery(order.id) is None
    assert db_session.query(CarrierMovement).count() == 0


# ── handle_status_change ─────────────────────────────────────────────


def test_transition_to_delivered_books_delivery(db_session, make_order):
    order = make_order(amount_collected=Decimal("80.00"))
    result = DeliveryEventProcessor(db_session, settings).handle_status_change(
        order.id, "in_transit", "delivered"
    )
    assert result.action == "delivered"
    assert _movements(db_session, order.id)[MovementType.COD_COLLECTED].amount == Decimal("80.00")


def test_in_transit_to_returned_books_failed_attempt(db_session, make_carrier, make_order):
    charging = make_carrier(charges_failed_attempts=True)
    order = make_order(carrier_id=charging.id, delivery_status="returned")

    result = DeliveryEventProcessor(db_session, settings).handle_status_change(
        order.id, "in_transit", "returned"
    )
    assert result.action == "failed"
    assert result.failed_attempt_fee == Decimal("10.00")


@pytest.mark.parametrize(
    "previous, new",
    [("pending", "cancelled"), ("pending", "shipped"), ("delivered", "delivered")],
)
def test_other_transitions_write_nothing(db_session, make_order, previous, new):
    order = make_order()
    result = DeliveryEventProcessor(db_session, settings).handle_status_change(
        order.id, previous, new
    )
    assert result.action == "none"
    assert db_session.query(CarrierMovement).count() == 0


# ── backfill / has_movements ─────────────────────────────────────────


def test_backfill_only_touches_orders_without_movements(db_session, make_order):
    processor = DeliveryEventProcessor(db_session, settings)
    done = make_order()
    processor.record_delivery(done.id)
    pending_a = make_order()
    pending_b = make_order(payment_method="card")
    make_order(delivery_status="in_transit")
    make_order(carrier_id=None)

    summary = processor.backfill_movements()

    assert summary["orders_processed"] == 2
    assert summary["movements_created"] == 3
    assert summary["errors"] == []
    assert processor.has_movements(pending_a.id)
    assert processor.has_movements(pending_b.id)


def test_backfill_respects_store_and_limit(db_session, make_order):
    processor = DeliveryEventProcessor(db_session, settings)
    make_order()
    make_order()

    assert processor.backfill_movements(store_id=uuid.uuid4())["orders_processed"] == 0
    assert processor.backfill_movements(limit=1)["orders_processed"] == 1
