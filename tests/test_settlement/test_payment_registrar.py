"""Tests for payment registration."""

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
from carrier_settlement.models import CarrierMovement, MovementType, PaymentRecord, Settlement
from carrier_settlement.schemas.payment import PaymentRequest
from carrier_settlement.schemas.settlement import SettlementRequest
from carrier_settlement.services.ledger.delivery import DeliveryEventProcessor
from carrier_settlement.services.payments.registrar import (
    PaymentRegistrar,
    allocate_payment,
    expected_direction,
)
from carrier_settlement.services.settlement.processor import SettlementBatchProcessor

PAY_DAY = date(2024, 3, 2)


def _settle(db_session, store_id, carrier, reported="250.00") -> Settlement:
    return SettlementBatchProcessor(db_session, settings).settle_batch(
        SettlementRequest(
            store_id=store_id,
            carrier_id=carrier.id,
            settlement_date=date(2024, 3, 1),
            total_amount_collected=Decimal(reported),
        )
    ).settlement


def _pay(db_session, store_id, carrier, amount, direction="from_carrier", **kwargs):
    fields = {
        "store_id": store_id,
        "carrier_id": carrier.id,
        "amount": Decimal(amount),
        "direction": direction,
        "payment_method": "bank_transfer",
        "payment_date": PAY_DAY,
    }
    fields.update(kwargs)
    return PaymentRegistrar(db_session, settings).register_payment(PaymentRequest(**fields))


@pytest.fixture
def settlement(db_session, store_id, carrier, make_order) -> Settlement:
    """Net 210.00: COD 100 + 150 minus two 20.00 fees."""
    make_order(total_price=Decimal("100.00"))
    make_order(total_price=Decimal("150.00"))
    return _settle(db_session, store_id, carrier)


# ── Pure helpers ─────────────────────────────────────────────────────


def test_allocation_follows_given_order():
    first = SimpleNamespace(net_receivable=Decimal("100.00"), amount_paid=Decimal("40.00"))
    second = SimpleNamespace(net_receivable=Decimal("-50.00"), amount_paid=Decimal("0.00"))
    assert allocate_payment([first, second], Decimal("80.00")) == [Decimal("60.00"), Decimal("20.00")]


def test_overpayment_lands_on_last_settlement():
    first = SimpleNamespace(net_receivable=Decimal("10.00"), amount_paid=Decimal("0.00"))
    second = SimpleNamespace(net_receivable=Decimal("10.00"), amount_paid=Decimal("0.00"))
    assert allocate_payment([first, second], Decimal("25.00")) == [Decimal("10.00"), Decimal("15.00")]


def test_expected_direction():
    assert expected_direction(Decimal("1.00")) == "from_carrier"
    assert expected_direction(Decimal("-1.00")) == "to_carrier"
    assert expected_direction(Decimal("0.00")) is None


# ── register_payment ─────────────────────────────────────────────────


def test_full_payment_settles_and_offsets(db_session, store_id, carrier, settlement):
    outcome = _pay(db_session, store_id, carrier, "210.00", settlement_ids=[settlement.id])

    payment = outcome.payment
    assert payment.payment_code == "PAG-02032024-001"
    assert payment.status == "completed"
    assert payment.settlement_ids == [str(settlement.id)]
    assert payment.period_start == date(2024, 3, 1)
    assert payment.period_end == date(2024, 3, 1)

    offsets = db_session.query(CarrierMovement).filter_by(payment_record_id=payment.id).all()
    assert len(offsets) == 1
    assert offsets[0].movement_type == MovementType.PAYMENT_RECEIVED
    assert offsets[0].amount == Decimal("-210.00")
    assert offsets[0].id == outcome.movement.id

    db_session.refresh(settlement)
    assert settlement.status == "paid"
    assert settlement.amount_paid == Decimal("210.00")
    assert settlement.balance_due == Decimal("0.00")
    assert settlement.payment_date == PAY_DAY


def test_partial_then_final_payment(db_session, store_id, carrier, settlement):
    _pay(db_session, store_id, carrier, "100.00", settlement_ids=[settlement.id])
    db_session.refresh(settlement)
    assert settlement.status == "partial"
    assert settlement.balance_due == Decimal("110.00")

    second = _pay(db_session, store_id, carrier, "110.00", settlement_ids=[settlement.id])
    assert second.payment.payment_code == "PAG-02032024-002"
    db_session.refresh(settlement)
    assert settlement.status == "paid"


def test_paid_settlement_is_refused(db_session, store_id, carrier, settlement):
    _pay(db_session, store_id, carrier, "210.00", settlement_ids=[settlement.id])

    with pytest.raises(LedgerConflictError) as exc_info:
        _pay(db_session, store_id, carrier, "1.00", settlement_ids=[settlement.id])
    assert exc_info.value.code == ErrorCode.SETTLEMENT_ALREADY_PAID
    assert db_session.query(PaymentRecord).count() == 1


def test_direction_must_match_balance(db_session, store_id, carrier, settlement):
    with pytest.raises(LedgerConflictError) as exc_info:
        _pay(db_session, store_id, carrier, "210.00", direction="to_carrier", settlement_ids=[settlement.id])
    assert exc_info.value.code == ErrorCode.DIRECTION_MISMATCH


def test_store_pays_carrier(db_session, store_id, carrier, make_order):
    make_order(payment_method="card")
    owed = _settle(db_session, store_id, carrier, reported="0.00")
    assert owed.net_receivable == Decimal("-20.00")

    outcome = _pay(db_session, store_id, carrier, "20.00", direction="to_carrier", settlement_ids=[owed.id])

    assert outcome.movement.movement_type == MovementType.PAYMENT_SENT
    assert outcome.movement.amount == Decimal("20.00")
    db_session.refresh(owed)
    assert owed.status == "paid"


@pytest.mark.parametrize("amount", ["0.00", "-5.00"])
def test_non_positive_amount_is_rejected(db_session, store_id, carrier, amount):
    with pytest.raises(LedgerValidationError) as exc_info:
        _pay(db_session, store_id, carrier, amount)
    assert exc_info.value.code == ErrorCode.INVALID_AMOUNT
    assert db_session.query(CarrierMovement).count() == 0


@pytest.mark.parametrize(
    "overrides",
    [{"direction": "sideways"}, {"payment_method": "crypto"}],
)
def test_unknown_direction_or_method(db_session, store_id, carrier, overrides):
    with pytest.raises(LedgerValidationError) as exc_info:
        _pay(db_session, store_id, carrier, "10.00", **overrides)
    assert exc_info.value.code == ErrorCode.VALIDATION_ERROR


def test_payment_discharges_movements(db_session, store_id, carrier, make_order):
    order = make_order()
    result = DeliveryEventProcessor(db_session, settings).record_delivery(order.id)

    outcome = _pay(db_session, store_id, carrier, "80.00", movement_ids=result.movement_ids)
    assert outcome.movements_discharged == 2
    assert outcome.payment.period_start == date(2024, 3, 1)

    rows = db_session.query(CarrierMovement).filter_by(order_id=order.id).all()
    assert {m.payment_record_id for m in rows} == {outcome.payment.id}

    with pytest.raises(LedgerConflictError) as exc_info:
        _pay(db_session, store_id, carrier, "80.00", movement_ids=result.movement_ids[:1])
    assert exc_info.value.code == ErrorCode.MOVEMENT_ALREADY_PAID


def test_foreign_references_are_not_found(db_session, store_id, carrier, make_carrier, settlement):
    other = make_carrier(name="Other carrier")

    with pytest.raises(LedgerConflictError) as exc_info:
        _pay(db_session, store_id, other, "10.00", settlement_ids=[settlement.id])
    assert exc_info.value.code == ErrorCode.SETTLEMENT_NOT_FOUND

    with pytest.raises(LedgerConflictError) as exc_info:
        _pay(db_session, store_id, carrier, "10.00", movement_ids=[uuid.uuid4()])
    assert exc_info.value.code == ErrorCode.MOVEMENT_NOT_FOUND


def test_payment_without_references(db_session, store_id, carrier):
    """An on-account payment still produces exactly one offsetting movement."""
    outcome = _pay(db_session, store_id, carrier, "15.00")

    assert outcome.settlements_updated == 0
    assert outcome.payment.period_start is None
    assert db_session.query(CarrierMovement).count() == 1
