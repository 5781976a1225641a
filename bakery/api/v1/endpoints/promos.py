"""
Promo Code API Endpoints.

/validate is public and has no side effects; usage is only counted when
an order is confirmed. Everything else is staff administration.
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Query, status

from bakery.api.deps import DB, OptionalUser, StaffUser
from bakery.core.errors import PromoInvalidError
from bakery.core.money import ZERO, quantize_money
from bakery.models.promotion import DiscountType
from bakery.schemas.promotion import (
    PromoCodeCreate,
    PromoCodeListResponse,
    PromoCodeResponse,
    PromoCodeUpdate,
    PromoUsageListResponse,
    PromoUsageResponse,
    PromoValidateRequest,
    PromoValidateResponse,
)
from bakery.services.promotion_service import PromotionService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/promos", tags=["Promotions"])


# ==================== Public Endpoints ====================

@router.post("/validate", response_model=PromoValidateResponse)
async def validate_promo(
    request: PromoValidateRequest,
    db: DB,
    user: OptionalUser,
):
    result = await PromotionService(db).validate(
        request.code,
        request.order_total,
        user_id=user.id if user else None,
        delivery_fee=request.delivery_fee,
    )
    if not result.valid:
        raise PromoInvalidError(result.reason.value, result.message)

    discount = quantize_money(result.discount_amount)
    shipping_discount = quantize_money(result.shipping_discount_amount)
    final_total = max(
        ZERO,
        quantize_money(request.order_total) + quantize_money(request.delivery_fee) - discount - shipping_discount,
    )
    return PromoValidateResponse(
        valid=True,
        code=result.promo.code,
        discount_type=result.promo.discount_type,
        discount_amount=discount,
        shipping_discount_amount=shipping_discount,
        final_total=final_total,
        message=result.message,
    )


# ==================== Admin Endpoints ====================

@router.get("", response_model=PromoCodeListResponse)
async def list_promos(
    db: DB,
    user: StaffUser,
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = Query(None, max_length=100),
    promo_status: Optional[str] = Query(None, alias="status", pattern="^(active|inactive|expired|upcoming)$"),
    discount_type: Optional[DiscountType] = Query(None),
):
    promos, total = await PromotionService(db).list_promos(
        skip=skip,
        limit=limit,
        search=search,
        status=promo_status,
        discount_type=discount_type,
    )
    return PromoCodeListResponse(
        items=[PromoCodeResponse.model_validate(p) for p in promos],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.post("", response_model=PromoCodeResponse, status_code=status.HTTP_201_CREATED)
async def create_promo(
    request: PromoCodeCreate,
    db: DB,
    user: StaffUser,
):
    promo = await PromotionService(db).create_promo(**request.model_dump())
    logger.info(f"Promo {promo.code} created by {user.id}")
    return promo


@router.get("/{promo_id}", response_model=PromoCodeResponse)
async def get_promo(
    promo_id: UUID,
    db: DB,
    user: StaffUser,
):
    return await PromotionService(db).get_promo(promo_id)


@router.put("/{promo_id}", response_model=PromoCodeResponse)
async def update_promo(
    promo_id: UUID,
    request: PromoCodeUpdate,
    db: DB,
    user: StaffUser,
):
    promo = await PromotionService(db).update_promo(promo_id, **request.model_dump(exclude_unset=True))
    logger.info(f"Promo {promo.code} updated by {user.id}")
    return promo


@router.post("/{promo_id}/toggle-status", response_model=PromoCodeResponse)
async def toggle_promo_status(
    promo_id: UUID,
    db: DB,
    user: StaffUser,
):
    service = PromotionService(db)
    promo = await service.get_promo(promo_id)
    return await service.set_active(promo_id, not promo.is_active)


@router.get("/{promo_id}/usages", response_model=PromoUsageListResponse)
async def list_promo_usages(
    promo_id: UUID,
    db: DB,
    user: StaffUser,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
):
    usages, total = await PromotionService(db).list_usages(promo_id, skip=skip, limit=limit)
    return PromoUsageListResponse(
        items=[PromoUsageResponse.model_validate(u) for u in usages],
        total=total,
        skip=skip,
        limit=limit,
    )
