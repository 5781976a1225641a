"""
Branch Inventory API Endpoints.

Read-only availability checks for the storefront, plus the staff restock
hook.
"""

import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Query

from bakery.api.deps import DB, StaffUser
from bakery.schemas.checkout import (
    BranchAvailabilityRequest,
    BranchAvailabilityResponse,
    LineAvailabilityResponse,
)
from bakery.schemas.inventory import (
    InventoryResponse,
    InventoryUpdateRequest,
    StockAvailabilityResponse,
)
from bakery.services.inventory_ledger import InventoryLedger

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/inventory", tags=["Inventory"])


@router.post("/availability", response_model=List[BranchAvailabilityResponse])
async def check_branch_availability(
    request: BranchAvailabilityRequest,
    db: DB,
):
    """Check a cart against each requested branch. Nothing is reserved."""
    ledger = InventoryLedger(db)
    lines = request.stock_lines()

    results = []
    for branch_id in request.branch_ids:
        cart = await ledger.check_cart(branch_id, lines)
        results.append(
            BranchAvailabilityResponse(
                branch_id=branch_id,
                status=cart.status.value,
                lines=[
                    LineAvailabilityResponse(
                        product_id=line.product_id,
                        variant_id=line.variant_id,
                        requested=line.requested,
                        available_quantity=line.availability.available_quantity,
                        status=line.availability.status.value,
                    )
                    for line in cart.lines
                ],
            )
        )
    return results


@router.get(
    "/branches/{branch_id}/products/{product_id}",
    response_model=StockAvailabilityResponse,
)
async def get_stock_availability(
    branch_id: UUID,
    product_id: UUID,
    db: DB,
    variant_id: Optional[UUID] = Query(None),
):
    availability = await InventoryLedger(db).check_availability(branch_id, product_id, variant_id)
    return StockAvailabilityResponse(
        branch_id=branch_id,
        product_id=product_id,
        variant_id=variant_id,
        status=availability.status.value,
        available_quantity=availability.available_quantity,
        stock_quantity=availability.stock_quantity,
        reserved_quantity=availability.reserved_quantity,
        min_stock_level=availability.min_stock_level,
        price_override=availability.price_override,
    )


@router.put("/branches/{branch_id}", response_model=InventoryResponse)
async def update_branch_stock(
    branch_id: UUID,
    request: InventoryUpdateRequest,
    db: DB,
    user: StaffUser,
):
    """Set absolute stock for one product (or variant) at a branch."""
    row = await InventoryLedger(db).set_stock(
        branch_id,
        request.product_id,
        request.variant_id,
        request.stock_quantity,
        min_stock_level=request.min_stock_level,
        price_override=request.price_override,
        is_available=request.is_available,
    )
    logger.info(f"Stock for {request.product_id} at branch {branch_id} set by {user.id}")
    return row
