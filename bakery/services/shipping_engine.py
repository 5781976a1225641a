"""
Shipping Rate Engine.

Pure functions: distance, zone lookup, fee computation and branch ranking.
Nothing here touches the database; ``shipping_service`` loads zone tiers
and branches and hands them to these functions.

Fee rules:
- fee = base_fee + effective_distance_km * price_per_km
- fee = 0 when the zone has a free-shipping threshold and subtotal >= threshold
- effective distance is clamped to [0, max_distance_km]; a destination
  beyond the maximum is priced at the maximum and flagged, not rejected
"""

import math
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, List, Optional, Sequence, Tuple

from bakery.core.money import ZERO, to_decimal


EARTH_RADIUS_KM = 6371.0
DEFAULT_MAX_DISTANCE_KM = Decimal("100")
DISTANCE_PLACES = Decimal("0.01")


@dataclass(frozen=True)
class Coordinates:
    latitude: float
    longitude: float

    @classmethod
    def of(cls, latitude: Any, longitude: Any) -> "Coordinates":
        return cls(latitude=float(latitude), longitude=float(longitude))


@dataclass(frozen=True)
class ZoneTier:
    """One row of the distance tier table."""
    name: str
    min_distance_km: Decimal
    max_distance_km: Optional[Decimal]  # None = unbounded
    base_fee: Decimal
    price_per_km: Decimal
    free_shipping_threshold: Optional[Decimal] = None
    delivery_minutes: Tuple[int, int] = (30, 60)
    zone_id: Optional[uuid.UUID] = None

    def covers(self, distance_km: Decimal) -> bool:
        if distance_km < self.min_distance_km:
            return False
        return self.max_distance_km is None or distance_km < self.max_distance_km


@dataclass
class ShippingQuote:
    zone: ZoneTier
    fee: Decimal
    base_fee: Decimal
    distance_fee: Decimal
    distance_km: Decimal
    effective_distance_km: Decimal
    free_shipping_applied: bool
    is_within_range: bool

    @property
    def estimated_delivery(self) -> Tuple[int, int]:
        return self.zone.delivery_minutes


@dataclass
class RankedCandidate:
    key: Any
    distance_km: Decimal


DEFAULT_ZONE_TIERS: Tuple[ZoneTier, ...] = (
    ZoneTier("Urban", Decimal("0"), Decimal("5"), Decimal("2.00"), Decimal("0.50"),
             Decimal("35.00"), (30, 60)),
    ZoneTier("Metropolitan", Decimal("5"), Decimal("15"), Decimal("3.50"), Decimal("0.75"),
             Decimal("45.00"), (45, 90)),
    ZoneTier("Regional", Decimal("15"), Decimal("30"), Decimal("5.00"), Decimal("1.00"),
             Decimal("75.00"), (60, 120)),
    ZoneTier("Inter-city", Decimal("30"), Decimal("60"), Decimal("8.00"), Decimal("1.25"),
             Decimal("150.00"), (120, 240)),
    ZoneTier("Remote", Decimal("60"), None, Decimal("12.00"), Decimal("1.50"),
             Decimal("200.00"), (180, 360)),
)


def fallback_tier(default_fee: Decimal) -> ZoneTier:
    """Flat-fee tier used when a configured table has a gap."""
    return ZoneTier(
        name="Default",
        min_distance_km=ZERO,
        max_distance_km=None,
        base_fee=to_decimal(default_fee),
        price_per_km=ZERO,
        free_shipping_threshold=None,
        delivery_minutes=(60, 120),
    )


def haversine_distance(origin: Coordinates, destination: Coordinates) -> Decimal:
    """Great-circle distance in km, rounded to two places."""
    lat1 = math.radians(origin.latitude)
    lat2 = math.radians(destination.latitude)
    d_lat = lat2 - lat1
    d_lon = math.radians(destination.longitude - origin.longitude)

    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(lat1) * math.cos(lat2) * math.sin(d_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return Decimal(str(round(EARTH_RADIUS_KM * c, 2))).quantize(DISTANCE_PLACES)


def clamp_distance(distance_km: Any, max_distance_km: Decimal = DEFAULT_MAX_DISTANCE_KM) -> Decimal:
    """Bound a pricing distance to [0, max]. NaN and negatives become 0."""
    distance = to_decimal(distance_km)
    if distance.is_nan() or distance < ZERO:
        return ZERO
    return min(distance, to_decimal(max_distance_km))


def zone_for(
    distance_km: Decimal,
    tiers: Sequence[ZoneTier] = DEFAULT_ZONE_TIERS,
    fallback: Optional[ZoneTier] = None,
) -> ZoneTier:
    """Return the tier covering ``distance_km``; tiers are half-open intervals."""
    for tier in sorted(tiers, key=lambda t: t.min_distance_km):
        if tier.covers(distance_km):
            return tier
    if fallback is not None:
        return fallback
    raise ValueError(f"No shipping zone covers {distance_km} km")


def compute_fee(
    distance_km: Any,
    subtotal: Any,
    tiers: Sequence[ZoneTier] = DEFAULT_ZONE_TIERS,
    max_distance_km: Decimal = DEFAULT_MAX_DISTANCE_KM,
    fallback: Optional[ZoneTier] = None,
) -> ShippingQuote:
    """
    Price delivery for a distance and order subtotal.

    The fee is left unrounded; the order pipeline rounds once when it
    assembles the total.
    """
    raw_distance = to_decimal(distance_km)
    effective = clamp_distance(raw_distance, max_distance_km)
    zone = zone_for(effective, tiers, fallback)
    subtotal = to_decimal(subtotal)

    base_fee = zone.base_fee
    distance_fee = effective * zone.price_per_km

    free = zone.free_shipping_threshold is not None and subtotal >= zone.free_shipping_threshold

    return ShippingQuote(
        zone=zone,
        fee=ZERO if free else base_fee + distance_fee,
        base_fee=base_fee,
        distance_fee=distance_fee,
        distance_km=raw_distance,
        effective_distance_km=effective,
        free_shipping_applied=free,
        is_within_range=not raw_distance.is_nan() and raw_distance <= to_decimal(max_distance_km),
    )


def rank_by_distance(
    origin: Coordinates,
    candidates: Iterable[Tuple[Any, Coordinates]],
) -> List[RankedCandidate]:
    """Sort candidates nearest first; ties break on the key's string form."""
    ranked = [
        RankedCandidate(key=key, distance_km=haversine_distance(coords, origin))
        for key, coords in candidates
    ]
    ranked.sort(key=lambda c: (c.distance_km, str(c.key)))
    return ranked
