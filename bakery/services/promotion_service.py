"""
Promotion Evaluator.

validate() is read-only: it answers "would this code apply, and for how
much" without touching counters. redeem() runs inside the transaction
that confirms an order and reverse_redemption() inside the one that
cancels it.

Validation order (first failure wins):
1. code exists, is active and now is inside [valid_from, valid_until]
2. order total meets min_order_amount
3. global usage_count below usage_limit
4. this user's redemptions below user_usage_limit (identified users only)
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Tuple

from sqlalchemy import case, delete, select, update, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from bakery.core.clock import ensure_utc, utcnow
from bakery.core.enum_utils import get_enum_value
from bakery.core.errors import NotFoundError, ValidationError
from bakery.core.money import ZERO, to_decimal, optional_decimal
from bakery.models.promotion import DiscountType, PromoCode, PromoCodeUsage


logger = logging.getLogger(__name__)


class PromoRejectionReason(str, Enum):
    EXPIRED_OR_INACTIVE = "expired_or_inactive"
    BELOW_MINIMUM = "below_minimum"
    USAGE_EXHAUSTED = "usage_exhausted"
    USER_LIMIT_REACHED = "user_limit_reached"


@dataclass
class PromoValidation:
    valid: bool
    message: str
    promo: Optional[PromoCode] = None
    reason: Optional[PromoRejectionReason] = None
    discount_amount: Decimal = ZERO
    shipping_discount_amount: Decimal = ZERO

    @classmethod
    def rejected(cls, reason: PromoRejectionReason, message: str, promo: Optional[PromoCode] = None):
        return cls(valid=False, message=message, promo=promo, reason=reason)


def calculate_discount(
    discount_type: str,
    discount_value: Decimal,
    order_total: Decimal,
    delivery_fee: Decimal = ZERO,
    max_discount_amount: Optional[Decimal] = None,
) -> Tuple[Decimal, Decimal]:
    """
    Return (order discount, shipping discount), both unrounded.

    The order discount never exceeds the order total and the shipping
    discount never exceeds the delivery fee.
    """
    discount_value = to_decimal(discount_value)
    order_total = max(to_decimal(order_total), ZERO)
    delivery_fee = max(to_decimal(delivery_fee), ZERO)
    cap = optional_decimal(max_discount_amount)

    if discount_type == DiscountType.PERCENTAGE.value:
        discount = order_total * discount_value / Decimal(100)
        if cap is not None:
            discount = min(discount, cap)
        return min(discount, order_total), ZERO

    if discount_type == DiscountType.FIXED_AMOUNT.value:
        discount = min(discount_value, order_total)
        if cap is not None:
            discount = min(discount, cap)
        return discount, ZERO

    if discount_type == DiscountType.FREE_SHIPPING.value:
        shipping_discount = delivery_fee
        if cap is not None:
            shipping_discount = min(shipping_discount, cap)
        return ZERO, shipping_discount

    return ZERO, ZERO


class PromotionService:
    """Promo code lookups, validation, redemption and administration."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_code(self, code: str) -> Optional[PromoCode]:
        result = await self.db.execute(
            select(PromoCode)
            .where(func.upper(PromoCode.code) == code.strip().upper())
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_promo(self, promo_id: uuid.UUID) -> PromoCode:
        promo = await self.db.get(PromoCode, promo_id)
        if promo is None:
            raise NotFoundError("Promo code not found", details={"promo_code_id": str(promo_id)})
        return promo

    async def count_user_redemptions(self, promo_id: uuid.UUID, user_id: str) -> int:
        result = await self.db.execute(
            select(func.count(PromoCodeUsage.id)).where(
                PromoCodeUsage.promo_code_id == promo_id,
                PromoCodeUsage.user_id == user_id,
            )
        )
        return result.scalar() or 0

    # ==================== VALIDATION ====================

    async def validate(
        self,
        code: str,
        order_total: Decimal,
        user_id: Optional[str] = None,
        delivery_fee: Decimal = ZERO,
        now: Optional[datetime] = None,
    ) -> PromoValidation:
        """Check a code against an order without side effects."""
        now = now or utcnow()
        order_total = to_decimal(order_total)

        promo = await self.get_by_code(code) if code and code.strip() else None
        if (
            promo is None
            or not promo.is_active
            or now < ensure_utc(promo.valid_from)
            or now > ensure_utc(promo.valid_until)
        ):
            return PromoValidation.rejected(
                PromoRejectionReason.EXPIRED_OR_INACTIVE,
                "Invalid or expired promo code",
                promo,
            )

        if promo.min_order_amount is not None and order_total < promo.min_order_amount:
            return PromoValidation.rejected(
                PromoRejectionReason.BELOW_MINIMUM,
                f"Minimum order amount of {promo.min_order_amount} required",
                promo,
            )

        if promo.usage_limit is not None and promo.usage_count >= promo.usage_limit:
            return PromoValidation.rejected(
                PromoRejectionReason.USAGE_EXHAUSTED,
                "Promo code usage limit reached",
                promo,
            )

        if user_id and promo.user_usage_limit is not None:
            used = await self.count_user_redemptions(promo.id, user_id)
            if used >= promo.user_usage_limit:
                return PromoValidation.rejected(
                    PromoRejectionReason.USER_LIMIT_REACHED,
                    "You have already used this promo code the maximum number of times",
                    promo,
                )

        discount, shipping_discount = calculate_discount(
            promo.discount_type,
            promo.discount_value,
            order_total,
            delivery_fee,
            promo.max_discount_amount,
        )

        return PromoValidation(
            valid=True,
            message="Promo code applied",
            promo=promo,
            discount_amount=discount,
            shipping_discount_amount=shipping_discount,
        )

    # ==================== REDEMPTION ====================

    async def redeem(
        self,
        promo_id: uuid.UUID,
        order_id: uuid.UUID,
        discount_amount: Decimal,
        user_id: Optional[str] = None,
    ) -> bool:
        """
        Count one use of a promo and record it against an order.

        The increment is conditional on the usage limit, so two concurrent
        confirmations cannot both take the last use. Does not commit.
        """
        result = await self.db.execute(
            update(PromoCode)
            .where(
                PromoCode.id == promo_id,
                PromoCode.is_active.is_(True),
                or_(
                    PromoCode.usage_limit.is_(None),
                    PromoCode.usage_count < PromoCode.usage_limit,
                ),
            )
            .values(usage_count=PromoCode.usage_count + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.info(f"Promo {promo_id} redemption refused for order {order_id}: limit reached")
            return False

        self.db.add(
            PromoCodeUsage(
                promo_code_id=promo_id,
                user_id=user_id,
                order_id=order_id,
                discount_amount=discount_amount,
            )
        )
        logger.info(f"Promo {promo_id} redeemed by {user_id or 'guest'} on order {order_id}")
        return True

    async def reverse_redemption(self, promo_id: uuid.UUID, order_id: uuid.UUID) -> bool:
        """
        Give back the use an order took. ``usage_count`` is clamped at zero
        and the order's usage row is removed. Does not commit.
        """
        deleted = await self.db.execute(
            delete(PromoCodeUsage)
            .where(PromoCodeUsage.promo_code_id == promo_id, PromoCodeUsage.order_id == order_id)
            .execution_options(synchronize_session=False)
        )
        if deleted.rowcount == 0:
            logger.warning(f"Order {order_id} has no redemption of promo {promo_id} to reverse")
            return False

        await self.db.execute(
            update(PromoCode)
            .where(PromoCode.id == promo_id)
            .values(
                usage_count=case(
                    (PromoCode.usage_count > 0, PromoCode.usage_count - 1),
                    else_=0,
                )
            )
            .execution_options(synchronize_session=False)
        )
        logger.info(f"Promo {promo_id} redemption reversed for order {order_id}")
        return True

    # ==================== ADMINISTRATION ====================

    async def create_promo(
        self,
        code: str,
        name: str,
        discount_type: str,
        discount_value: Decimal,
        valid_from: datetime,
        valid_until: datetime,
        description: Optional[str] = None,
        min_order_amount: Optional[Decimal] = None,
        max_discount_amount: Optional[Decimal] = None,
        usage_limit: Optional[int] = None,
        user_usage_limit: Optional[int] = None,
        is_active: bool = True,
    ) -> PromoCode:
        discount_type = get_enum_value(discount_type)
        if ensure_utc(valid_from) >= ensure_utc(valid_until):
            raise ValidationError("valid_from must be before valid_until")
        if discount_type == DiscountType.PERCENTAGE.value and to_decimal(discount_value) > 100:
            raise ValidationError("Percentage discount cannot exceed 100")

        promo = PromoCode(
            code=code.strip().upper(),
            name=name,
            description=description,
            discount_type=discount_type,
            discount_value=discount_value,
            min_order_amount=min_order_amount,
            max_discount_amount=max_discount_amount,
            usage_limit=usage_limit,
            user_usage_limit=user_usage_limit,
            usage_count=0,
            valid_from=valid_from,
            valid_until=valid_until,
            is_active=is_active,
        )
        self.db.add(promo)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise ValidationError(f"Promo code '{promo.code}' already exists")

        logger.info(f"Created promo code {promo.code}")
        return promo

    async def list_promos(
        self,
        skip: int = 0,
        limit: int = 20,
        search: Optional[str] = None,
        status: Optional[str] = None,
        discount_type: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Tuple[List[PromoCode], int]:
        """
        Paginated promo listing, newest first.

        ``status`` is one of active, inactive, expired or upcoming.
        """
        now = now or utcnow()
        query = select(PromoCode)

        if search:
            pattern = f"%{search.strip()}%"
            query = query.where(or_(PromoCode.code.ilike(pattern), PromoCode.name.ilike(pattern)))

        if status == "active":
            query = query.where(
                PromoCode.is_active.is_(True),
                PromoCode.valid_from <= now,
                PromoCode.valid_until >= now,
            )
        elif status == "inactive":
            query = query.where(PromoCode.is_active.is_(False))
        elif status == "expired":
            query = query.where(PromoCode.valid_until < now)
        elif status == "upcoming":
            query = query.where(PromoCode.valid_from > now)

        if discount_type:
            query = query.where(PromoCode.discount_type == get_enum_value(discount_type))

        total = (
            await self.db.execute(select(func.count()).select_from(query.subquery()))
        ).scalar() or 0

        result = await self.db.execute(
            query.order_by(PromoCode.created_at.desc()).offset(skip).limit(limit)
        )
        return list(result.scalars().all()), total

    async def update_promo(self, promo_id: uuid.UUID, **changes) -> PromoCode:
        """Apply a partial update; the resulting promo must still be consistent."""
        promo = await self.get_promo(promo_id)
        changes = {k: v for k, v in changes.items() if v is not None}

        if "code" in changes:
            changes["code"] = changes["code"].strip().upper()
        if "discount_type" in changes:
            changes["discount_type"] = get_enum_value(changes["discount_type"])

        valid_from = changes.get("valid_from", promo.valid_from)
        valid_until = changes.get("valid_until", promo.valid_until)
        if ensure_utc(valid_from) >= ensure_utc(valid_until):
            raise ValidationError("valid_from must be before valid_until")

        discount_type = changes.get("discount_type", promo.discount_type)
        discount_value = changes.get("discount_value", promo.discount_value)
        if discount_type == DiscountType.PERCENTAGE.value and to_decimal(discount_value) > 100:
            raise ValidationError("Percentage discount cannot exceed 100")

        usage_limit = changes.get("usage_limit", promo.usage_limit)
        if usage_limit is not None and usage_limit < promo.usage_count:
            raise ValidationError(
                f"Usage limit cannot be below the {promo.usage_count} uses already recorded",
                details={"usage_count": promo.usage_count},
            )

        code = promo.code
        for name, value in changes.items():
            setattr(promo, name, value)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise ValidationError(f"Promo code '{changes.get('code', code)}' already exists")

        await self.db.refresh(promo)
        logger.info(f"Updated promo code {code}: {', '.join(sorted(changes))}")
        return promo

    async def set_active(self, promo_id: uuid.UUID, is_active: bool) -> PromoCode:
        promo = await self.get_promo(promo_id)
        promo.is_active = is_active
        await self.db.commit()
        await self.db.refresh(promo)
        logger.info(f"Promo code {promo.code} {'activated' if is_active else 'deactivated'}")
        return promo

    async def list_usages(self, promo_id: uuid.UUID, skip: int = 0, limit: int = 50) -> Tuple[List[PromoCodeUsage], int]:
        await self.get_promo(promo_id)

        total = (
            await self.db.execute(
                select(func.count(PromoCodeUsage.id)).where(PromoCodeUsage.promo_code_id == promo_id)
            )
        ).scalar() or 0

        result = await self.db.execute(
            select(PromoCodeUsage)
            .where(PromoCodeUsage.promo_code_id == promo_id)
            .order_by(PromoCodeUsage.used_at.desc())
            .offset(skip)
            .limit(limit)
        )
        return list(result.scalars().all()), total
