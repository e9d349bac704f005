"""Carrier fee resolution.

Given a carrier and a destination, find the agreed delivery fee.  Carriers
configure rates either by city (``carrier_coverage``) or by zone
(``carrier_zones``), and most only fill in a handful of them, so the lookup
walks a fallback chain:

  1. exact city match in the city table
  2. exact zone match in the zone table (by zone name, then by city)
  3. a generic label ("default", "otros", ...) in either table
  4. the carrier's oldest active zone rate
  5. zero, logged as a warning

Every step is a pure function over the carrier's active rate rows, so each
one can be tested without a database.
"""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Callable, Optional, Sequence

from sqlalchemy.orm import Session

from carrier_settlement.core.config import Settings
from carrier_settlement.core.logging import get_logger
from carrier_settlement.core.money import ZERO, to_money
from carrier_settlement.models.carrier import CarrierCoverage, CarrierZone

logger = get_logger(__name__)


def normalize_label(value: Optional[str]) -> str:
    """Lower-case and collapse whitespace so "  Centro  Norte" == "centro norte"."""
    if not value:
        return ""
    return " ".join(value.split()).lower()


def _first_rate(rows: Sequence, attr: str, label: str) -> Optional[Decimal]:
    if not label:
        return None
    for row in rows:
        if normalize_label(getattr(row, attr)) == label:
            return to_money(row.rate)
    return None


# ── Lookup strategies ────────────────────────────────────────────────
#
# Signature: (city_rates, zone_rates, zone, city, fallback_labels) -> fee | None
# ``zone`` and ``city`` arrive already normalized.


def match_exact_city(city_rates, zone_rates, zone, city, fallback_labels):
    return _first_rate(city_rates, "city", city)


def match_exact_zone(city_rates, zone_rates, zone, city, fallback_labels):
    rate = _first_rate(zone_rates, "zone_name", zone)
    if rate is None:
        rate = _first_rate(zone_rates, "zone_name", city)
    return rate


def match_fallback_label(city_rates, zone_rates, zone, city, fallback_labels):
    for label in fallback_labels:
        label = normalize_label(label)
        rate = _first_rate(city_rates, "city", label)
        if rate is None:
            rate = _first_rate(zone_rates, "zone_name", label)
        if rate is not None:
            return rate
    return None


def match_first_zone(city_rates, zone_rates, zone, city, fallback_labels):
    """Oldest active zone rate; callers pass ``zone_rates`` sorted by creation."""
    if zone_rates:
        return to_money(zone_rates[0].rate)
    return None


Strategy = Callable[..., Optional[Decimal]]

DEFAULT_STRATEGIES: list[Strategy] = [
    match_exact_city,
    match_exact_zone,
    match_fallback_label,
    match_first_zone,
]


def resolve_from_rates(
    city_rates: Sequence,
    zone_rates: Sequence,
    zone: Optional[str] = None,
    city: Optional[str] = None,
    fallback_labels: Sequence[str] = (),
    strategies: Optional[Sequence[Strategy]] = None,
) -> tuple[Decimal, Optional[str]]:
    """Run the strategy chain over already-loaded rate rows.

    Returns:
        ``(fee, strategy_name)``; ``strategy_name`` is None when nothing matched.
    """
    zone_key = normalize_label(zone)
    city_key = normalize_label(city)
    for strategy in strategies or DEFAULT_STRATEGIES:
        fee = strategy(city_rates, zone_rates, zone_key, city_key, fallback_labels)
        if fee is not None:
            return max(fee, ZERO), strategy.__name__
    return ZERO, None


class CoverageResolver:
    """Resolves the delivery fee a carrier charges for a destination."""

    def __init__(self, db: Session, config: Settings) -> None:
        self.db = db
        self.config = config

    def resolve_fee(
        self,
        carrier_id: uuid.UUID,
        zone: Optional[str] = None,
        city: Optional[str] = None,
    ) -> Decimal:
        """Return the non-negative fee for delivering to *zone* / *city*.

        Args:
            carrier_id: Carrier whose rate tables are consulted.
            zone: Delivery zone recorded on the order, if any.
            city: Shipping city recorded on the order, if any.

        Returns:
            The fee as a two-decimal ``Decimal``; ``0.00`` when the carrier
            has no usable rate.
        """
        city_rates = (
            self.db.query(CarrierCoverage)
            .filter(CarrierCoverage.carrier_id == carrier_id)
            .filter(CarrierCoverage.is_active.is_(True))
            .all()
        )
        zone_rates = (
            self.db.query(CarrierZone)
            .filter(CarrierZone.carrier_id == carrier_id)
            .filter(CarrierZone.is_active.is_(True))
            .order_by(CarrierZone.created_at.asc(), CarrierZone.zone_name.asc())
            .all()
        )

        fee, matched_by = resolve_from_rates(
            city_rates,
            zone_rates,
            zone=zone,
            city=city,
            fallback_labels=self.config.fallback_zone_labels,
        )

        if matched_by is None:
            if not city_rates and not zone_rates:
                logger.warning("Carrier has no active rates: carrier_id=%s", carrier_id)
            else:
                logger.warning(
                    "No rate matched: carrier_id=%s zone=%s city=%s",
                    carrier_id,
                    zone,
                    city,
                )
        else:
            logger.debug(
                "Fee resolved: carrier_id=%s zone=%s city=%s fee=%s via=%s",
                carrier_id,
                zone,
                city,
                fee,
                matched_by,
            )
        return fee
