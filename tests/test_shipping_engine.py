# tests/test_shipping_engine.py
from decimal import Decimal

import pytest

from bakery.services.shipping_engine import (
    DEFAULT_ZONE_TIERS,
    Coordinates,
    ZoneTier,
    clamp_distance,
    compute_fee,
    fallback_tier,
    haversine_distance,
    rank_by_distance,
    zone_for,
)


def test_haversine_one_degree_of_longitude_on_the_equator():
    # 2 * pi * 6371 / 360 = 111.19 km
    d = haversine_distance(Coordinates(0.0, 0.0), Coordinates(0.0, 1.0))
    assert d == Decimal("111.19")


def test_haversine_same_point_is_zero():
    here = Coordinates.of("40.4168", "-3.7038")
    assert haversine_distance(here, here) == Decimal("0.00")


def test_urban_fee_is_base_plus_per_km():
    quote = compute_fee(Decimal("3"), Decimal("10"))
    # 2.00 + 3 * 0.50
    assert quote.zone.name == "Urban"
    assert quote.fee == Decimal("3.50")
    assert quote.free_shipping_applied is False
    assert quote.is_within_range is True


def test_zone_boundaries_are_half_open():
    # 5 km belongs to the next tier, not Urban
    quote = compute_fee(Decimal("5"), Decimal("10"))
    assert quote.zone.name == "Metropolitan"
    # 3.50 + 5 * 0.75
    assert quote.fee == Decimal("7.25")

    assert zone_for(Decimal("4.99")).name == "Urban"
    assert zone_for(Decimal("60")).name == "Remote"


def test_free_shipping_at_threshold():
    quote = compute_fee(Decimal("3"), Decimal("35.00"))
    assert quote.fee == Decimal("0")
    assert quote.free_shipping_applied is True
    # Components are still reported so the receipt can show what was waived
    assert quote.base_fee == Decimal("2.00")


def test_distance_beyond_maximum_is_clamped_and_flagged():
    quote = compute_fee(Decimal("150"), Decimal("10"))
    assert quote.effective_distance_km == Decimal("100")
    assert quote.distance_km == Decimal("150")
    assert quote.is_within_range is False
    # 12.00 + 100 * 1.50
    assert quote.fee == Decimal("162.00")


def test_negative_and_nan_distances_price_as_zero():
    assert clamp_distance(Decimal("-4")) == Decimal("0")
    assert clamp_distance(float("nan")) == Decimal("0")

    quote = compute_fee(Decimal("-4"), Decimal("10"))
    assert quote.zone.name == "Urban"
    assert quote.fee == Decimal("2.00")


def test_gap_in_configured_tiers_uses_fallback():
    tiers = [
        ZoneTier("Near", Decimal("0"), Decimal("2"), Decimal("1.00"), Decimal("0")),
        ZoneTier("Far", Decimal("10"), None, Decimal("9.00"), Decimal("0")),
    ]
    with pytest.raises(ValueError):
        zone_for(Decimal("5"), tiers)

    quote = compute_fee(Decimal("5"), Decimal("0"), tiers, fallback=fallback_tier(Decimal("5.00")))
    assert quote.zone.name == "Default"
    assert quote.fee == Decimal("5.00")


def test_default_tiers_are_contiguous():
    tiers = list(DEFAULT_ZONE_TIERS)
    for current, following in zip(tiers, tiers[1:]):
        assert current.max_distance_km == following.min_distance_km
    assert tiers[-1].max_distance_km is None


def test_rank_by_distance_nearest_first_with_stable_ties():
    origin = Coordinates(40.0, -3.0)
    ranked = rank_by_distance(
        origin,
        [
            ("far", Coordinates(40.2, -3.0)),
            ("b-tie", Coordinates(40.05, -3.0)),
            ("a-tie", Coordinates(40.05, -3.0)),
        ],
    )
    assert [c.key for c in ranked] == ["a-tie", "b-tie", "far"]
    assert ranked[0].distance_km < ranked[-1].distance_km


def test_free_shipping_threshold_boundary_cases():
    below = compute_fee(Decimal("2"), Decimal("25"))
    assert below.fee > 0
    assert below.free_shipping_applied is False

    above = compute_fee(Decimal("2"), Decimal("40"))
    assert above.fee == Decimal("0")
    assert above.free_shipping_applied is True
