"""Shared test fixtures for the carrier settlement engine tests.

Uses a SQLite file database so tests run without PostgreSQL.
"""

from __future__ import annotations

import os

# Override DATABASE_URL before importing anything from carrier_settlement: the
# Settings model reads the environment eagerly via pydantic-settings, and the
# module-level ``engine`` in carrier_settlement.core.database would otherwise
# point at PostgreSQL.
os.environ["DATABASE_URL"] = "sqlite:///./test.db"

import uuid
from datetime import datetime
from decimal import Decimal
from itertools import count

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from carrier_settlement.core.database import Base, get_db
from carrier_settlement.main import app
from carrier_settlement.models import Carrier, CarrierCoverage, CarrierZone, Order

# Use SQLite file-based database for tests (no PostgreSQL needed)
TEST_DATABASE_URL = "sqlite:///./test.db"

engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
)


# Enable foreign keys for SQLite
@event.listens_for(engine, "connect")
def _set_sqlite_pragma(dbapi_conn, connection_record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

OUTCOME_AT = datetime(2024, 3, 1, 15, 30)
_order_numbers = count(1001)


@pytest.fixture(scope="function")
def db_session():
    """Create a fresh database for each test."""
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory(db_session):
    """Opens extra sessions on the test database, one per worker thread."""
    return TestingSessionLocal


@pytest.fixture(scope="function")
def client(db_session):
    """FastAPI test client with overridden DB dependency."""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


# ── Domain fixtures ──────────────────────────────────────────────────


@pytest.fixture
def store_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def make_carrier(db_session, store_id):
    """Factory for carriers; every carrier gets a 20.00 "default" zone rate."""

    def _make(zones=None, cities=None, **kwargs) -> Carrier:
        fields = {
            "id": uuid.uuid4(),
            "store_id": store_id,
            "name": "Rapido Express",
            "settlement_type": "gross",
            "charges_failed_attempts": False,
            "failed_attempt_fee_percent": None,
            "is_active": True,
        }
        fields.update(kwargs)
        carrier = Carrier(**fields)
        db_session.add(carrier)

        zones = {"default": Decimal("20.00")} if zones is None else zones
        for position, (zone_name, rate) in enumerate(zones.items()):
            db_session.add(
                CarrierZone(
                    carrier_id=carrier.id,
                    zone_name=zone_name,
                    rate=rate,
                    created_at=datetime(2024, 1, 1, 0, 0, position),
                )
            )
        for city, rate in (cities or {}).items():
            db_session.add(CarrierCoverage(carrier_id=carrier.id, city=city, rate=rate))

        db_session.commit()
        return carrier

    return _make


@pytest.fixture
def carrier(make_carrier) -> Carrier:
    return make_carrier()


@pytest.fixture
def make_order(db_session, store_id, carrier):
    """Factory for orders delivered by ``carrier`` on 2024-03-01."""

    def _make(**kwargs) -> Order:
        fields = {
            "id": uuid.uuid4(),
            "store_id": store_id,
            "order_number": f"ORD-{next(_order_numbers)}",
            "total_price": Decimal("100.00"),
            "payment_method": "cod",
            "prepaid_method": None,
            "delivery_status": "delivered",
            "carrier_id": carrier.id,
            "delivery_zone": None,
            "shipping_city": "Asuncion",
            "outcome_at": OUTCOME_AT,
        }
        fields.update(kwargs)
        order = Order(**fields)
        db_session.add(order)
        db_session.commit()
        return order

    return _make
