"""SQLAlchemy models for the carrier settlement engine."""

from carrier_settlement.models.carrier import Carrier, CarrierCoverage, CarrierZone
from carrier_settlement.models.order import Order
from carrier_settlement.models.movement import CarrierMovement, MovementType
from carrier_settlement.models.settlement import Settlement
from carrier_settlement.models.payment import PaymentRecord

__all__ = [
    "Carrier",
    "CarrierCoverage",
    "CarrierZone",
    "Order",
    "CarrierMovement",
    "MovementType",
    "Settlement",
    "PaymentRecord",
]
