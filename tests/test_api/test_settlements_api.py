"""API integration tests for the settlement endpoints."""

from __future__ import annotations

import uuid
from decimal import Decimal

from carrier_settlement.services.ledger.movements import MovementLedger


def _batch_body(store_id, carrier, reported, **extra):
    body = {
        "store_id": str(store_id),
        "carrier_id": str(carrier.id),
        "settlement_date": "2024-03-01",
        "total_amount_collected": reported,
    }
    body.update(extra)
    return body


def test_batch_settlement(client, store_id, carrier, make_order):
    """POST /api/v1/settlements/batch returns 201 with the computed totals."""
    make_order(total_price=Decimal("100.00"))
    make_order(total_price=Decimal("150.00"))

    response = client.post("/api/v1/settlements/batch", json=_batch_body(store_id, carrier, "250.00"))

    assert response.status_code == 201, response.text
    data = response.json()
    assert data["success"] is True
    assert data["settlement"]["settlement_code"] == "LIQ-01032024-001"
    assert Decimal(data["settlement"]["net_receivable"]) == Decimal("210.00")
    assert Decimal(data["settlement"]["total_carrier_fees"]) == Decimal("40.00")
    assert data["has_discrepancy"] is False
    assert len(data["orders"]) == 2


def test_unconfirmed_discrepancy_is_409(client, store_id, carrier, make_order):
    make_order(total_price=Decimal("100.00"))

    response = client.post("/api/v1/settlements/batch", json=_batch_body(store_id, carrier, "99.00"))

    assert response.status_code == 409
    data = response.json()
    assert data["success"] is False
    assert data["error_code"] == "DISCREPANCY_NOT_CONFIRMED"
    assert data["details"]["expected"] == "100.00"


def test_double_settlement_is_409(client, store_id, carrier, make_order):
    order = make_order()
    assert client.post(
        "/api/v1/settlements/batch", json=_batch_body(store_id, carrier, "100.00")
    ).status_code == 201

    response = client.post(
        "/api/v1/settlements/manual",
        json={
            "store_id": str(store_id),
            "carrier_id": str(carrier.id),
            "settlement_date": "2024-03-01",
            "total_amount_collected": "100.00",
            "orders": [{"order_id": str(order.id), "delivered": True}],
        },
    )
    assert response.status_code == 409
    assert response.json()["error_code"] == "ORDER_ALREADY_RECONCILED"


def test_manual_validation_is_400(client, store_id, carrier):
    response = client.post(
        "/api/v1/settlements/manual",
        json={
            "store_id": str(store_id),
            "carrier_id": str(carrier.id),
            "total_amount_collected": "0.00",
            "orders": [],
        },
    )
    assert response.status_code == 400
    assert response.json()["error_code"] == "EMPTY_ORDER_SET"


def test_unknown_carrier_is_404(client, store_id):
    response = client.post(
        "/api/v1/settlements/batch",
        json={
            "store_id": str(store_id),
            "carrier_id": str(uuid.uuid4()),
            "settlement_date": "2024-03-01",
            "total_amount_collected": "0.00",
        },
    )
    assert response.status_code == 404
    assert response.json()["error_code"] == "CARRIER_NOT_FOUND"


def test_list_and_get_settlements(client, store_id, carrier, make_order):
    make_order()
    created = client.post(
        "/api/v1/settlements/batch", json=_batch_body(store_id, carrier, "100.00")
    ).json()["settlement"]

    listed = client.get("/api/v1/settlements", params={"store_id": str(store_id)})
    assert listed.status_code == 200
    assert [s["id"] for s in listed.json()] == [created["id"]]

    detail = client.get(f"/api/v1/settlements/{created['id']}")
    assert detail.status_code == 200
    assert detail.json()["settlement_code"] == created["settlement_code"]

    missing = client.get(f"/api/v1/settlements/{uuid.uuid4()}")
    assert missing.status_code == 404
    assert missing.json()["error_code"] == "SETTLEMENT_NOT_FOUND"


def test_pending_views(client, store_id, carrier, make_order):
    make_order(total_price=Decimal("100.00"))

    pending = client.get(f"/api/v1/stores/{store_id}/reconciliation/pending")
    assert pending.status_code == 200
    groups = pending.json()
    assert len(groups) == 1
    assert groups[0]["total_orders"] == 1
    assert Decimal(groups[0]["total_cod_expected"]) == Decimal("100.00")

    orders = client.get(
        f"/api/v1/stores/{store_id}/reconciliation/pending/orders",
        params={"carrier_id": str(carrier.id), "date": "2024-03-01"},
    )
    assert orders.status_code == 200
    assert orders.json()[0]["is_cod"] is True

    client.post("/api/v1/settlements/batch", json=_batch_body(store_id, carrier, "100.00"))

    assert client.get(f"/api/v1/stores/{store_id}/reconciliation/pending").json() == []
    unpaid = client.get(f"/api/v1/stores/{store_id}/settlements/pending-payment").json()
    assert len(unpaid) == 1
    assert unpaid[0]["status"] == "pending"


def test_malformed_path_is_400(client):
    response = client.get("/api/v1/settlements/not-a-uuid")
    assert response.status_code == 400
    data = response.json()
    assert data["error_code"] == "VALIDATION_ERROR"
    assert data["details"]["fields"][0]["field"] == "path.settlement_id"


def test_internal_error_is_500_and_redacted(client, store_id, carrier, make_order, monkeypatch):
    order = make_order()

    def broken_tagging(self, order_ids, settlement_id):
        raise RuntimeError("connection reset by peer 10.0.0.7")

    monkeypatch.setattr(MovementLedger, "tag_settlement", broken_tagging)

    response = client.post("/api/v1/settlements/batch", json=_batch_body(store_id, carrier, "100.00"))

    assert response.status_code == 500
    data = response.json()
    assert data["success"] is False
    assert data["error_code"] == "INTERNAL_ERROR"
    assert "10.0.0.7" not in data["message"]
    assert client.get(
        "/api/v1/settlements", params={"store_id": str(store_id)}
    ).json() == []
    assert client.get(f"/api/v1/orders/{order.id}/movements").json() == []
