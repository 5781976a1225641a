"""
Shipping service.

Loads zone tiers (with per-branch overrides) and branches from the
database and runs them through the pure shipping engine. Also picks the
nearest branch that can fill a whole cart.
"""

import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from bakery.config import settings
from bakery.core.errors import BranchUnavailableError, NotFoundError, ValidationError
from bakery.models.branch import Branch
from bakery.models.shipping import ShippingZone, BranchShippingZone
from bakery.services.inventory_ledger import InventoryLedger, StockLine
from bakery.services.shipping_engine import (
    DEFAULT_ZONE_TIERS,
    Coordinates,
    ShippingQuote,
    ZoneTier,
    compute_fee,
    fallback_tier,
    rank_by_distance,
)


logger = logging.getLogger(__name__)


@dataclass
class BranchDistance:
    branch: Branch
    distance_km: Decimal


@dataclass
class BranchSelection:
    selected: Optional[BranchDistance] = None
    alternatives: List[BranchDistance] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return self.selected is not None


class ShippingService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_branch(self, branch_id: uuid.UUID, require_active: bool = True) -> Branch:
        branch = await self.db.get(Branch, branch_id)
        if branch is None:
            raise NotFoundError("Branch not found", details={"branch_id": str(branch_id)})
        if require_active and not branch.is_active:
            raise BranchUnavailableError("Branch is not currently active", branch_id=branch_id)
        return branch

    # ==================== ZONES ====================

    async def get_zone_tiers(self, branch_id: Optional[uuid.UUID] = None) -> List[ZoneTier]:
        """Active zones ordered by distance, with the branch's overrides applied."""
        result = await self.db.execute(
            select(ShippingZone)
            .where(ShippingZone.is_active.is_(True))
            .order_by(ShippingZone.sort_order, ShippingZone.min_distance_km)
        )
        zones = list(result.scalars().all())
        if not zones:
            return list(DEFAULT_ZONE_TIERS)

        overrides = {}
        if branch_id is not None:
            override_result = await self.db.execute(
                select(BranchShippingZone).where(
                    BranchShippingZone.branch_id == branch_id,
                    BranchShippingZone.is_active.is_(True),
                )
            )
            overrides = {o.zone_id: o for o in override_result.scalars().all()}

        tiers = []
        for zone in zones:
            override = overrides.get(zone.id)
            base_fee = zone.base_price
            per_km = zone.price_per_km
            threshold = zone.free_shipping_threshold
            if override is not None:
                if override.custom_base_price is not None:
                    base_fee = override.custom_base_price
                if override.custom_price_per_km is not None:
                    per_km = override.custom_price_per_km
                if override.custom_free_threshold is not None:
                    threshold = override.custom_free_threshold

            tiers.append(
                ZoneTier(
                    name=zone.name,
                    min_distance_km=zone.min_distance_km,
                    max_distance_km=zone.max_distance_km,
                    base_fee=base_fee,
                    price_per_km=per_km,
                    free_shipping_threshold=threshold,
                    delivery_minutes=(zone.delivery_time_min_minutes, zone.delivery_time_max_minutes),
                    zone_id=zone.id,
                )
            )
        return tiers

    # ==================== ZONE ADMINISTRATION ====================

    async def get_zone(self, zone_id: uuid.UUID) -> ShippingZone:
        zone = await self.db.get(ShippingZone, zone_id)
        if zone is None:
            raise NotFoundError("Shipping zone not found", details={"zone_id": str(zone_id)})
        return zone

    async def list_zone_records(self, include_inactive: bool = False) -> List[ShippingZone]:
        query = select(ShippingZone).order_by(ShippingZone.sort_order, ShippingZone.min_distance_km)
        if not include_inactive:
            query = query.where(ShippingZone.is_active.is_(True))
        return list((await self.db.execute(query)).scalars().all())

    async def _check_range(
        self,
        min_km: Decimal,
        max_km: Optional[Decimal],
        exclude_id: Optional[uuid.UUID] = None,
    ) -> None:
        """Ranges must be non-empty and may touch, but not overlap, other active zones."""
        if min_km < 0 or (max_km is not None and max_km <= min_km):
            raise ValidationError(
                "Invalid distance range. Max distance must be greater than min distance.",
                details={"min_distance_km": str(min_km), "max_distance_km": str(max_km)},
            )

        query = select(ShippingZone).where(
            ShippingZone.is_active.is_(True),
            or_(ShippingZone.max_distance_km.is_(None), ShippingZone.max_distance_km > min_km),
        )
        if max_km is not None:
            query = query.where(ShippingZone.min_distance_km < max_km)
        if exclude_id is not None:
            query = query.where(ShippingZone.id != exclude_id)

        conflict = (await self.db.execute(query.limit(1))).scalar_one_or_none()
        if conflict is not None:
            raise ValidationError(
                f"Distance range overlaps with existing zone: {conflict.name} "
                f"({conflict.min_distance_km}km - {conflict.max_distance_km}km)",
                details={"conflicting_zone_id": str(conflict.id)},
            )

    async def create_zone(self, **fields) -> ShippingZone:
        await self._check_range(fields["min_distance_km"], fields.get("max_distance_km"))
        zone = ShippingZone(**fields)
        self.db.add(zone)
        await self.db.commit()
        await self.db.refresh(zone)
        logger.info(f"Created shipping zone {zone.name} ({zone.min_distance_km}-{zone.max_distance_km} km)")
        return zone

    async def update_zone(self, zone_id: uuid.UUID, **changes) -> ShippingZone:
        zone = await self.get_zone(zone_id)
        changes = {k: v for k, v in changes.items() if v is not None}

        if changes.get("is_active", zone.is_active):
            await self._check_range(
                changes.get("min_distance_km", zone.min_distance_km),
                changes.get("max_distance_km", zone.max_distance_km),
                exclude_id=zone.id,
            )
        low = changes.get("delivery_time_min_minutes", zone.delivery_time_min_minutes)
        high = changes.get("delivery_time_max_minutes", zone.delivery_time_max_minutes)
        if low > high:
            raise ValidationError("Minimum delivery time cannot exceed the maximum")

        for name, value in changes.items():
            setattr(zone, name, value)
        await self.db.commit()
        await self.db.refresh(zone)
        logger.info(f"Updated shipping zone {zone.name}: {', '.join(sorted(changes))}")
        return zone

    async def delete_zone(self, zone_id: uuid.UUID) -> bool:
        """
        Remove a zone. Zones that branch overrides still point at are only
        deactivated. Returns True when the row was deleted.
        """
        zone = await self.get_zone(zone_id)
        in_use = (
            await self.db.execute(
                select(BranchShippingZone.id).where(BranchShippingZone.zone_id == zone_id).limit(1)
            )
        ).scalar_one_or_none()

        if in_use is not None:
            zone.is_active = False
            deleted = False
        else:
            await self.db.delete(zone)
            deleted = True
        await self.db.commit()
        logger.info(f"Shipping zone {zone_id} {'deleted' if deleted else 'deactivated'}")
        return deleted

    async def set_branch_override(
        self,
        branch_id: uuid.UUID,
        zone_id: uuid.UUID,
        custom_base_price: Optional[Decimal] = None,
        custom_price_per_km: Optional[Decimal] = None,
        custom_free_threshold: Optional[Decimal] = None,
    ) -> BranchShippingZone:
        """Create or replace a branch's pricing for one zone."""
        await self.get_branch(branch_id, require_active=False)
        await self.get_zone(zone_id)

        override = (
            await self.db.execute(
                select(BranchShippingZone).where(
                    BranchShippingZone.branch_id == branch_id,
                    BranchShippingZone.zone_id == zone_id,
                )
            )
        ).scalar_one_or_none()
        if override is None:
            override = BranchShippingZone(branch_id=branch_id, zone_id=zone_id)
            self.db.add(override)

        override.custom_base_price = custom_base_price
        override.custom_price_per_km = custom_price_per_km
        override.custom_free_threshold = custom_free_threshold
        override.is_active = True
        await self.db.commit()
        await self.db.refresh(override)
        logger.info(f"Shipping override for zone {zone_id} set at branch {branch_id}")
        return override

    async def remove_branch_override(self, branch_id: uuid.UUID, zone_id: uuid.UUID) -> None:
        result = await self.db.execute(
            update(BranchShippingZone)
            .where(
                BranchShippingZone.branch_id == branch_id,
                BranchShippingZone.zone_id == zone_id,
                BranchShippingZone.is_active.is_(True),
            )
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFoundError(
                "No active shipping override for this branch and zone",
                details={"branch_id": str(branch_id), "zone_id": str(zone_id)},
            )
        await self.db.commit()
        logger.info(f"Shipping override for zone {zone_id} removed at branch {branch_id}")

    # ==================== QUOTES ====================

    async def quote(self, branch: Branch, destination: Coordinates, subtotal: Decimal) -> ShippingQuote:
        if not branch.has_coordinates:
            raise BranchUnavailableError(
                "Branch has no location configured for delivery",
                branch_id=branch.id,
            )
        origin = Coordinates.of(branch.latitude, branch.longitude)
        distance = rank_by_distance(destination, [(branch.id, origin)])[0].distance_km
        tiers = await self.get_zone_tiers(branch.id)
        return compute_fee(
            distance,
            subtotal,
            tiers,
            max_distance_km=settings.MAX_DELIVERY_DISTANCE_KM,
            fallback=fallback_tier(settings.DEFAULT_SHIPPING_FEE),
        )

    # ==================== BRANCH SELECTION ====================

    async def rank_branches(
        self,
        destination: Coordinates,
        candidate_ids: Optional[Sequence[uuid.UUID]] = None,
    ) -> List[BranchDistance]:
        """Active branches with coordinates, nearest first."""
        query = select(Branch).where(
            Branch.is_active.is_(True),
            Branch.latitude.is_not(None),
            Branch.longitude.is_not(None),
        )
        if candidate_ids:
            query = query.where(Branch.id.in_(list(candidate_ids)))

        branches = {b.id: b for b in (await self.db.execute(query)).scalars().all()}
        ranked = rank_by_distance(
            destination,
            [(b.id, Coordinates.of(b.latitude, b.longitude)) for b in branches.values()],
        )
        return [BranchDistance(branch=branches[r.key], distance_km=r.distance_km) for r in ranked]

    async def select_optimal_branch(
        self,
        destination: Coordinates,
        lines: Iterable[StockLine],
        candidate_ids: Optional[Sequence[uuid.UUID]] = None,
    ) -> BranchSelection:
        """
        Nearest active branch whose stock covers every line.

        Uses read-only availability checks; nothing is reserved here, so
        the chosen branch can still lose stock before reservation.
        """
        lines = list(lines)
        ledger = InventoryLedger(self.db)

        qualifying = []
        for candidate in await self.rank_branches(destination, candidate_ids):
            availability = await ledger.check_cart(candidate.branch.id, lines)
            if availability.is_available:
                qualifying.append(candidate)

        if not qualifying:
            logger.info(f"No branch can fill cart of {len(lines)} lines near {destination}")
            return BranchSelection()

        return BranchSelection(selected=qualifying[0], alternatives=qualifying[1:])
