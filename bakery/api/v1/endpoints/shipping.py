"""
Shipping API Endpoints.

Distance-based delivery quotes, nearest-branch lookup and zone tables.
Staff manage zones and per-branch price overrides.
"""

import logging
from decimal import Decimal
from typing import List
from uuid import UUID

from fastapi import APIRouter, Path, status

from bakery.api.deps import DB, StaffUser
from bakery.config import settings
from bakery.core.money import ZERO
from bakery.schemas.checkout import EstimatedDelivery
from bakery.schemas.shipping import (
    BranchZoneOverrideRequest,
    BranchZoneOverrideResponse,
    NearestBranchRequest,
    NearestBranchResponse,
    ShippingQuoteRequest,
    ShippingQuoteResponse,
    ZoneCreate,
    ZoneListResponse,
    ZoneRecordListResponse,
    ZoneRecordResponse,
    ZoneResponse,
    ZoneUpdate,
)
from bakery.services.shipping_engine import (
    Coordinates,
    ZoneTier,
    clamp_distance,
    fallback_tier,
    zone_for,
)
from bakery.services.shipping_service import ShippingService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/shipping", tags=["Shipping"])


def _zone_response(tier: ZoneTier) -> ZoneResponse:
    low, high = tier.delivery_minutes
    return ZoneResponse(
        id=tier.zone_id,
        name=tier.name,
        min_distance_km=tier.min_distance_km,
        max_distance_km=tier.max_distance_km,
        base_price=tier.base_fee,
        price_per_km=tier.price_per_km,
        free_shipping_threshold=tier.free_shipping_threshold,
        estimated_delivery=EstimatedDelivery(min_minutes=low, max_minutes=high),
    )


@router.post("/calculate", response_model=ShippingQuoteResponse)
async def calculate_shipping(
    request: ShippingQuoteRequest,
    db: DB,
):
    """Quote delivery from one branch to a coordinate pair."""
    service = ShippingService(db)
    branch = await service.get_branch(request.branch_id)
    quote = await service.quote(
        branch,
        Coordinates.of(request.latitude, request.longitude),
        request.order_amount,
    )
    low, high = quote.estimated_delivery
    return ShippingQuoteResponse(
        branch_id=branch.id,
        zone=quote.zone.name,
        distance_km=quote.distance_km,
        effective_distance_km=quote.effective_distance_km,
        is_within_range=quote.is_within_range,
        base_fee=quote.base_fee,
        distance_fee=quote.distance_fee,
        delivery_fee=quote.fee,
        free_shipping_applied=quote.free_shipping_applied,
        free_shipping_threshold=quote.zone.free_shipping_threshold,
        estimated_delivery=EstimatedDelivery(min_minutes=low, max_minutes=high),
    )


@router.post("/nearest-branch", response_model=List[NearestBranchResponse])
async def nearest_branches(
    request: NearestBranchRequest,
    db: DB,
):
    """Active branches nearest first. Stock is not considered here."""
    service = ShippingService(db)
    destination = Coordinates.of(request.latitude, request.longitude)

    results = []
    for candidate in (await service.rank_branches(destination))[: request.limit]:
        quote = await service.quote(candidate.branch, destination, ZERO)
        low, high = quote.estimated_delivery
        results.append(
            NearestBranchResponse(
                branch_id=candidate.branch.id,
                name=candidate.branch.name,
                address=candidate.branch.address,
                distance_km=candidate.distance_km,
                zone=quote.zone.name,
                estimated_delivery=EstimatedDelivery(min_minutes=low, max_minutes=high),
            )
        )
    return results


@router.get("/zones", response_model=ZoneListResponse)
async def list_zones(db: DB):
    tiers = await ShippingService(db).get_zone_tiers()
    return ZoneListResponse(items=[_zone_response(t) for t in tiers])


@router.get("/zones/distance/{distance_km}", response_model=ZoneResponse)
async def zone_for_distance(
    db: DB,
    distance_km: Decimal = Path(..., ge=0),
):
    tiers = await ShippingService(db).get_zone_tiers()
    tier = zone_for(
        clamp_distance(distance_km, settings.MAX_DELIVERY_DISTANCE_KM),
        tiers,
        fallback=fallback_tier(settings.DEFAULT_SHIPPING_FEE),
    )
    return _zone_response(tier)


# ==================== Zone Administration ====================

@router.get("/zones/all", response_model=ZoneRecordListResponse)
async def list_zone_records(
    db: DB,
    user: StaffUser,
):
    """Every zone row, inactive ones included."""
    zones = await ShippingService(db).list_zone_records(include_inactive=True)
    return ZoneRecordListResponse(items=[ZoneRecordResponse.model_validate(z) for z in zones])


@router.post("/zones", response_model=ZoneRecordResponse, status_code=status.HTTP_201_CREATED)
async def create_zone(
    request: ZoneCreate,
    db: DB,
    user: StaffUser,
):
    zone = await ShippingService(db).create_zone(**request.model_dump())
    logger.info(f"Shipping zone {zone.name} created by {user.id}")
    return zone


@router.put("/zones/{zone_id}", response_model=ZoneRecordResponse)
async def update_zone(
    zone_id: UUID,
    request: ZoneUpdate,
    db: DB,
    user: StaffUser,
):
    return await ShippingService(db).update_zone(zone_id, **request.model_dump(exclude_unset=True))


@router.delete("/zones/{zone_id}")
async def delete_zone(
    zone_id: UUID,
    db: DB,
    user: StaffUser,
):
    deleted = await ShippingService(db).delete_zone(zone_id)
    return {
        "success": True,
        "deleted": deleted,
        "message": "Shipping zone deleted" if deleted else "Shipping zone deactivated",
    }


@router.get("/branches/{branch_id}/zones", response_model=ZoneListResponse)
async def branch_zones(
    branch_id: UUID,
    db: DB,
    user: StaffUser,
):
    """Zone tiers as this branch prices them."""
    service = ShippingService(db)
    await service.get_branch(branch_id, require_active=False)
    tiers = await service.get_zone_tiers(branch_id)
    return ZoneListResponse(items=[_zone_response(t) for t in tiers])


@router.post("/branches/{branch_id}/zones/{zone_id}/override", response_model=BranchZoneOverrideResponse)
async def set_branch_override(
    branch_id: UUID,
    zone_id: UUID,
    request: BranchZoneOverrideRequest,
    db: DB,
    user: StaffUser,
):
    return await ShippingService(db).set_branch_override(branch_id, zone_id, **request.model_dump())


@router.delete("/branches/{branch_id}/zones/{zone_id}/override")
async def remove_branch_override(
    branch_id: UUID,
    zone_id: UUID,
    db: DB,
    user: StaffUser,
):
    await ShippingService(db).remove_branch_override(branch_id, zone_id)
    return {"success": True, "message": "Branch shipping override removed"}
