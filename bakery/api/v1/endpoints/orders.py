"""
Order API Endpoints.

Checkout (preview and placement) is open to guests. Listing requires a
token; confirm and fulfil are staff hooks called by payment and shop
floor systems.
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Query, status

from bakery.api.deps import DB, CurrentUser, OptionalUser, StaffUser
from bakery.core.errors import PermissionDeniedError
from bakery.schemas.checkout import (
    BranchOption,
    CheckoutRequest,
    EstimatedDelivery,
    OrderCreateRequest,
    PriceBreakdownResponse,
    PricedLineResponse,
)
from bakery.schemas.order import (
    OrderCancelRequest,
    OrderListResponse,
    OrderResponse,
    OrderSummaryResponse,
)
from bakery.services.order_pipeline import OrderPricingPipeline, PriceBreakdown

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/orders", tags=["Orders"])


def _breakdown_response(breakdown: PriceBreakdown) -> PriceBreakdownResponse:
    quote = breakdown.quote
    estimated = None
    if quote is not None:
        low, high = quote.estimated_delivery
        estimated = EstimatedDelivery(min_minutes=low, max_minutes=high)

    return PriceBreakdownResponse(
        branch_id=breakdown.branch.id,
        branch_name=breakdown.branch.name,
        order_type=breakdown.order_type,
        lines=[
            PricedLineResponse(
                product_id=line.product_id,
                variant_id=line.variant_id,
                product_name=line.product_name,
                quantity=line.quantity,
                unit_price=line.unit_price,
                total_price=line.total_price,
            )
            for line in breakdown.lines
        ],
        subtotal=breakdown.subtotal,
        delivery_fee_original=breakdown.delivery_fee_original,
        delivery_fee=breakdown.delivery_fee,
        discount_amount=breakdown.discount_amount,
        shipping_discount_amount=breakdown.shipping_discount_amount,
        tax_amount=breakdown.tax_amount,
        total_amount=breakdown.total_amount,
        shipping_zone=quote.zone.name if quote else None,
        distance_km=quote.distance_km if quote else None,
        is_within_range=quote.is_within_range if quote else True,
        free_shipping_applied=quote.free_shipping_applied if quote else False,
        estimated_delivery=estimated,
        promo_code=breakdown.promo.code if breakdown.promo else None,
        alternatives=[
            BranchOption(
                branch_id=alt.branch.id,
                branch_name=alt.branch.name,
                distance_km=alt.distance_km,
            )
            for alt in breakdown.alternatives
        ],
    )


# ==================== Checkout ====================

@router.post("/calculate", response_model=PriceBreakdownResponse)
async def calculate_order(
    request: CheckoutRequest,
    db: DB,
    user: OptionalUser,
):
    """Price a cart without reserving anything."""
    pipeline = OrderPricingPipeline(db)
    breakdown = await pipeline.calculate_price(request, user_id=user.id if user else None)
    return _breakdown_response(breakdown)


@router.post("", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def create_order(
    request: OrderCreateRequest,
    db: DB,
    user: OptionalUser,
):
    """Price, reserve and place an order."""
    pipeline = OrderPricingPipeline(db)
    return await pipeline.create_order(request, user_id=user.id if user else None)


# ==================== Customer ====================

@router.get("", response_model=OrderListResponse)
async def list_my_orders(
    db: DB,
    user: CurrentUser,
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
):
    orders, total = await OrderPricingPipeline(db).list_orders(user.id, skip=skip, limit=limit)
    return OrderListResponse(
        items=[OrderSummaryResponse.model_validate(o) for o in orders],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: UUID,
    db: DB,
    user: OptionalUser,
):
    """
    Guest orders are readable by id. Orders placed with a token are only
    visible to that user and to staff.
    """
    order = await OrderPricingPipeline(db).get_order(order_id)
    if order.user_id is not None:
        if user is None or (user.id != order.user_id and not user.is_staff):
            raise PermissionDeniedError("You can only view your own orders")
    return order


@router.post("/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(
    order_id: UUID,
    db: DB,
    user: CurrentUser,
    request: Optional[OrderCancelRequest] = None,
):
    reason = request.reason if request else None
    return await OrderPricingPipeline(db).cancel_order(
        order_id,
        reason=reason,
        user_id=user.id,
        is_staff=user.is_staff,
    )


# ==================== Staff ====================

@router.post("/{order_id}/confirm", response_model=OrderResponse)
async def confirm_order(
    order_id: UUID,
    db: DB,
    user: StaffUser,
):
    """Payment succeeded: commit the reservation and redeem the promo."""
    return await OrderPricingPipeline(db).confirm_order(order_id, changed_by=user.id)


@router.post("/{order_id}/fulfil", response_model=OrderResponse)
async def fulfil_order(
    order_id: UUID,
    db: DB,
    user: StaffUser,
):
    return await OrderPricingPipeline(db).fulfil_order(order_id, changed_by=user.id)
