"""API integration tests for the balance views."""

from __future__ import annotations

import uuid
from decimal import Decimal


def test_carrier_balances(client, store_id, carrier, make_order):
    order = make_order()
    client.post(f"/api/v1/orders/{order.id}/delivered")

    response = client.get(f"/api/v1/stores/{store_id}/carrier-balances")

    assert response.status_code == 200
    rows = response.json()
    assert len(rows) == 1
    assert rows[0]["carrier_name"] == carrier.name
    assert Decimal(rows[0]["net_balance"]) == Decimal("80.00")
    assert rows[0]["unsettled_orders"] == 1


def test_carrier_balance_summary(client, carrier, make_order):
    order = make_order()
    client.post(f"/api/v1/orders/{order.id}/delivered")

    response = client.get(
        f"/api/v1/carriers/{carrier.id}/balance",
        params={"date_from": "2024-03-01", "date_to": "2024-03-31"},
    )

    assert response.status_code == 200
    data = response.json()
    assert Decimal(data["gross_balance"]) == Decimal("80.00")
    assert data["delivered_orders"] == 1


def test_balance_summary_unknown_carrier(client):
    response = client.get(f"/api/v1/carriers/{uuid.uuid4()}/balance")
    assert response.status_code == 404


def test_unsettled_movements(client, store_id, carrier, make_order):
    order = make_order()
    client.post(f"/api/v1/orders/{order.id}/delivered")

    response = client.get(
        f"/api/v1/stores/{store_id}/movements/unsettled",
        params={"carrier_id": str(carrier.id)},
    )

    assert response.status_code == 200
    rows = response.json()
    assert len(rows) == 2
    assert all(r["days_pending"] >= 0 for r in rows)
    assert {r["carrier_name"] for r in rows} == {carrier.name}
