"""API integration tests for the delivery-event hooks."""

from __future__ import annotations

import uuid
from decimal import Decimal


def test_delivered_hook_is_idempotent(client, make_order):
    order = make_order(total_price=Decimal("120.00"))

    first = client.post(f"/api/v1/orders/{order.id}/delivered")
    second = client.post(f"/api/v1/orders/{order.id}/delivered", json={"amount_collected": "110.00"})

    assert first.status_code == 200, first.text
    assert second.status_code == 200
    assert sorted(first.json()["movement_ids"]) == sorted(second.json()["movement_ids"])
    assert Decimal(second.json()["cod_amount"]) == Decimal("110.00")

    movements = client.get(f"/api/v1/orders/{order.id}/movements").json()
    assert len(movements) == 2
    by_type = {m["movement_type"]: Decimal(m["amount"]) for m in movements}
    assert by_type == {"cod_collected": Decimal("110.00"), "delivery_fee": Decimal("-20.00")}


def test_failed_hook(client, make_carrier, make_order):
    charging = make_carrier(charges_failed_attempts=True)
    order = make_order(carrier_id=charging.id, delivery_status="failed")

    response = client.post(f"/api/v1/orders/{order.id}/failed")

    assert response.status_code == 200
    data = response.json()
    assert data["action"] == "failed"
    assert Decimal(data["failed_attempt_fee"]) == Decimal("10.00")


def test_failed_hook_without_charge(client, make_order):
    order = make_order(delivery_status="failed")
    data = client.post(f"/api/v1/orders/{order.id}/failed").json()
    assert data["action"] == "none"
    assert data["movement_ids"] == []


def test_status_change_hook(client, make_order):
    order = make_order()
    response = client.post(
        f"/api/v1/orders/{order.id}/status-change",
        json={"previous_status": "in_transit", "new_status": "delivered"},
    )
    assert response.status_code == 200
    assert response.json()["action"] == "delivered"

    ignored = client.post(
        f"/api/v1/orders/{order.id}/status-change",
        json={"previous_status": "pending", "new_status": "shipped"},
    )
    assert ignored.json()["action"] == "none"


def test_unknown_order_is_404(client):
    response = client.post(f"/api/v1/orders/{uuid.uuid4()}/delivered")
    assert response.status_code == 404
    assert response.json()["error_code"] == "ORDER_NOT_FOUND"


def test_backfill(client, make_order):
    make_order()
    make_order(payment_method="card")

    response = client.post("/api/v1/movements/backfill")

    assert response.status_code == 200
    assert response.json() == {"orders_processed": 2, "movements_created": 3, "errors": []}
