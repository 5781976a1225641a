"""
Order Pricing Pipeline.

Prices a cart, reserves its stock at one branch and persists the order,
undoing reservations when any later step fails.

Flow for create_order():
1. Subtotal from current catalog prices
2. Branch: the requested one, or the nearest branch that can fill the cart
3. Delivery fee and zone for that branch (pickup orders pay nothing)
4. Promo validation; free-shipping promos reduce the fee
5. Total = max(0, subtotal + delivery_fee - discount + tax), each part
   rounded to cents once
6. Reserve every line in (product_id, variant_id) order
7. First refusal (or storage error) releases what was already reserved
   and raises
8. Persist as RESERVED; cash orders confirm (and redeem the promo) in the
   same transaction, card orders wait for confirm_order() or expiry

calculate_price() runs steps 1-5 through the same code path, so a preview
and the order placed from it agree to the cent.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, List, Optional, Sequence, Tuple

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from bakery.config import settings
from bakery.core.clock import ensure_utc, utcnow
from bakery.core.enum_utils import get_enum_value, status_in
from bakery.core.errors import (
    BranchUnavailableError,
    CheckoutError,
    InsufficientStockError,
    InternalCheckoutError,
    InvalidTransitionError,
    NoBranchAvailableError,
    NotFoundError,
    PermissionDeniedError,
    PromoInvalidError,
    ReservationExpiredError,
)
from bakery.core.money import ZERO, quantize_money
from bakery.models.branch import Branch
from bakery.models.order import (
    Order,
    OrderItem,
    OrderStatus,
    OrderType,
    PaymentMethod,
    PaymentStatus,
)
from bakery.models.promotion import PromoCode
from bakery.services.catalog_service import CatalogService, PricedLine
from bakery.services.inventory_ledger import (
    InventoryLedger,
    ReservationResult,
    ReservationStatus,
    StockLine,
)
from bakery.services.order_state_machine import (
    RESERVING_STATUSES,
    transition_order,
    validate_transition,
)
from bakery.services.promotion_service import PromotionService, PromoRejectionReason
from bakery.services.shipping_engine import ShippingQuote
from bakery.services.shipping_service import BranchDistance, ShippingService

if TYPE_CHECKING:
    from bakery.schemas.checkout import CheckoutRequest, OrderCreateRequest


logger = logging.getLogger(__name__)


SYSTEM_ACTOR = "system"


@dataclass
class PriceBreakdown:
    """A priced (not yet reserved) order. Amounts are already rounded to cents."""
    branch: Branch
    order_type: str
    lines: List[PricedLine]
    subtotal: Decimal
    delivery_fee_original: Decimal
    delivery_fee: Decimal
    discount_amount: Decimal
    shipping_discount_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    quote: Optional[ShippingQuote] = None
    promo: Optional[PromoCode] = None
    alternatives: List[BranchDistance] = field(default_factory=list)


def assemble_totals(
    subtotal: Decimal,
    delivery_fee: Decimal,
    discount: Decimal,
    shipping_discount: Decimal,
    tax_rate: Decimal,
) -> Tuple[Decimal, Decimal, Decimal, Decimal, Decimal, Decimal, Decimal]:
    """
    Round each component once and derive the total from the rounded parts.

    Returns (subtotal, delivery_fee_original, delivery_fee, discount,
    shipping_discount, tax, total).
    """
    subtotal = quantize_money(subtotal)
    fee_original = quantize_money(delivery_fee)
    shipping_discount = min(quantize_money(shipping_discount), fee_original)
    fee = fee_original - shipping_discount
    discount = min(quantize_money(discount), subtotal)

    tax = quantize_money((subtotal - discount + fee) * tax_rate)
    total = max(ZERO, subtotal + fee - discount + tax)
    return subtotal, fee_original, fee, discount, shipping_discount, tax, total


def generate_order_number(now: Optional[datetime] = None) -> str:
    now = now or utcnow()
    return f"ORD-{now:%Y%m%d}-{uuid.uuid4().hex[:6].upper()}"


class OrderPricingPipeline:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.ledger = InventoryLedger(db)
        self.shipping = ShippingService(db)
        self.promotions = PromotionService(db)
        self.catalog = CatalogService(db)

    # ==================== PRICING ====================

    async def _resolve_branch(self, request: "CheckoutRequest") -> Tuple[Branch, List[BranchDistance]]:
        if request.branch_id is not None:
            return await self.shipping.get_branch(request.branch_id), []

        selection = await self.shipping.select_optimal_branch(request.destination, request.stock_lines())
        if not selection.found:
            raise NoBranchAvailableError(
                "No branch can currently fulfil every item in this order",
                details={"items": len(request.items)},
            )
        return selection.selected.branch, selection.alternatives

    async def _price(self, request: "CheckoutRequest", user_id: Optional[str]) -> PriceBreakdown:
        lines = await self.catalog.price_lines(request.stock_lines())
        subtotal = sum((line.total_price for line in lines), ZERO)

        branch, alternatives = await self._resolve_branch(request)

        quote = None
        fee = ZERO
        if request.order_type == OrderType.DELIVERY:
            quote = await self.shipping.quote(branch, request.destination, subtotal)
            fee = quote.fee

        promo = None
        discount = shipping_discount = ZERO
        if request.promo_code:
            validation = await self.promotions.validate(
                request.promo_code, subtotal, user_id=user_id, delivery_fee=fee
            )
            if not validation.valid:
                raise PromoInvalidError(validation.reason.value, validation.message)
            promo = validation.promo
            discount = validation.discount_amount
            shipping_discount = validation.shipping_discount_amount

        subtotal, fee_original, fee, discount, shipping_discount, tax, total = assemble_totals(
            subtotal, fee, discount, shipping_discount, settings.TAX_RATE
        )

        return PriceBreakdown(
            branch=branch,
            order_type=get_enum_value(request.order_type),
            lines=lines,
            subtotal=subtotal,
            delivery_fee_original=fee_original,
            delivery_fee=fee,
            discount_amount=discount,
            shipping_discount_amount=shipping_discount,
            tax_amount=tax,
            total_amount=total,
            quote=quote,
            promo=promo,
            alternatives=alternatives,
        )

    async def calculate_price(self, request: "CheckoutRequest", user_id: Optional[str] = None) -> PriceBreakdown:
        """
        Preview an order. Reserves nothing and writes nothing, but fails the
        same way create_order() would if the branch cannot fill the cart.
        """
        breakdown = await self._price(request, user_id)

        availability = await self.ledger.check_cart(
            breakdown.branch.id, [line.as_stock_line() for line in breakdown.lines]
        )
        names = {(l.product_id, l.variant_id): l.product_name for l in breakdown.lines}
        for line in availability.lines:
            if line.satisfied:
                continue
            name = names.get((line.product_id, line.variant_id))
            if not line.availability.is_sellable:
                raise BranchUnavailableError(
                    f"{name} is not available at this branch",
                    branch_id=breakdown.branch.id,
                    product_id=line.product_id,
                    variant_id=line.variant_id,
                )
            raise InsufficientStockError(
                line.product_id,
                requested=line.requested,
                available=line.availability.available_quantity,
                product_name=name,
                variant_id=line.variant_id,
                branch_id=breakdown.branch.id,
            )
        return breakdown

    # ==================== RESERVATION ====================

    @staticmethod
    def _reservation_error(result: ReservationResult, line: PricedLine) -> CheckoutError:
        if result.status == ReservationStatus.INSUFFICIENT_STOCK:
            return InsufficientStockError(
                line.product_id,
                requested=result.requested,
                available=result.available,
                product_name=line.product_name,
                variant_id=line.variant_id,
                branch_id=result.branch_id,
            )
        return BranchUnavailableError(
            f"{line.product_name} is not available at this branch",
            branch_id=result.branch_id,
            product_id=line.product_id,
            variant_id=line.variant_id,
        )

    async def _compensate(self, branch_id: uuid.UUID, reserved: Sequence[StockLine], draft_id: uuid.UUID) -> None:
        if not reserved:
            return
        await self.ledger.release_lines(branch_id, reserved)
        logger.info(f"Checkout {draft_id}: released {len(reserved)} reserved line(s) at branch {branch_id}")

    async def _storage_failure(
        self,
        stage: str,
        branch_id: uuid.UUID,
        lines: Sequence[PricedLine],
        reserved: Sequence[StockLine],
        draft_id: uuid.UUID,
    ) -> InternalCheckoutError:
        """Roll back, log with context, release what was held. Call from an except block."""
        await self.db.rollback()
        logger.exception(
            f"Checkout {draft_id} failed to {stage} at branch {branch_id}; lines="
            + ", ".join(f"{l.product_id}/{l.variant_id}x{l.quantity}" for l in lines)
        )
        await self._compensate(branch_id, reserved, draft_id)
        return InternalCheckoutError(
            "Order could not be placed. Please try again.",
            details={"draft_id": str(draft_id)},
        )

    async def _reserve_lines(
        self, branch_id: uuid.UUID, lines: Sequence[PricedLine], draft_id: uuid.UUID
    ) -> List[StockLine]:
        """Reserve in a fixed order; on the first refusal or error undo and raise."""
        reserved: List[StockLine] = []
        for line in sorted(lines, key=lambda l: l.as_stock_line().sort_key):
            try:
                result = await self.ledger.reserve(branch_id, line.product_id, line.variant_id, line.quantity)
            except Exception as exc:
                raise await self._storage_failure("reserve stock", branch_id, lines, reserved, draft_id) from exc
            if not result.success:
                await self._compensate(branch_id, reserved, draft_id)
                raise self._reservation_error(result, line)
            reserved.append(line.as_stock_line())
        return reserved

    # ==================== ORDER CREATION ====================

    def _build_order(
        self,
        breakdown: PriceBreakdown,
        request: "OrderCreateRequest",
        user_id: Optional[str],
    ) -> Order:
        quote = breakdown.quote
        address = request.delivery_address
        order = Order(
            id=uuid.uuid4(),
            order_number=generate_order_number(),
            user_id=user_id,
            branch_id=breakdown.branch.id,
            order_type=breakdown.order_type,
            status=OrderStatus.PRICED.value,
            payment_method=get_enum_value(request.payment_method),
            payment_status=PaymentStatus.PENDING.value,
            customer_name=request.customer_name,
            customer_phone=request.customer_phone,
            delivery_latitude=Decimal(str(address.latitude)) if address else None,
            delivery_longitude=Decimal(str(address.longitude)) if address else None,
            delivery_address=address.address if address else None,
            distance_km=quote.distance_km if quote else None,
            shipping_zone=quote.zone.name if quote else None,
            special_instructions=request.special_instructions,
            subtotal=breakdown.subtotal,
            delivery_fee_original=breakdown.delivery_fee_original,
            delivery_fee=breakdown.delivery_fee,
            discount_amount=breakdown.discount_amount,
            shipping_discount_amount=breakdown.shipping_discount_amount,
            tax_amount=breakdown.tax_amount,
            total_amount=breakdown.total_amount,
            promo_code_id=breakdown.promo.id if breakdown.promo else None,
            promo_code=breakdown.promo.code if breakdown.promo else None,
        )
        order.items = [
            OrderItem(
                product_id=line.product_id,
                variant_id=line.variant_id,
                product_name=line.product_name,
                quantity=line.quantity,
                unit_price=line.unit_price,
                total_price=line.total_price,
            )
            for line in breakdown.lines
        ]
        return order

    async def _confirm(self, order: Order, changed_by: Optional[str], notes: Optional[str] = None) -> None:
        """Redeem the promo (if any) and move to CONFIRMED. Caller commits."""
        if order.promo_code_id is not None:
            redeemed = await self.promotions.redeem(
                order.promo_code_id,
                order.id,
                order.discount_amount + order.shipping_discount_amount,
                user_id=order.user_id,
            )
            if not redeemed:
                raise PromoInvalidError(
                    PromoRejectionReason.USAGE_EXHAUSTED.value,
                    "Promo code usage limit reached",
                )
        transition_order(order, OrderStatus.CONFIRMED.value, changed_by=changed_by, notes=notes)

    async def create_order(self, request: "OrderCreateRequest", user_id: Optional[str] = None) -> Order:
        draft_id = uuid.uuid4()
        breakdown = await self._price(request, user_id)
        branch_id = breakdown.branch.id

        reserved = await self._reserve_lines(branch_id, breakdown.lines, draft_id)

        try:
            order = self._build_order(breakdown, request, user_id)
            self.db.add(order)
            transition_order(order, OrderStatus.RESERVED.value, changed_by=user_id, notes="Stock reserved")
            await self.db.flush()

            if request.payment_method == PaymentMethod.CASH:
                await self._confirm(order, user_id, notes="Pay on delivery")
            else:
                order.reservation_expires_at = utcnow() + timedelta(minutes=settings.RESERVATION_TTL_MINUTES)

            await self.db.commit()
        except PromoInvalidError:
            await self.db.rollback()
            await self._compensate(branch_id, reserved, draft_id)
            raise
        except Exception as exc:
            raise await self._storage_failure(
                "persist order", branch_id, breakdown.lines, reserved, draft_id
            ) from exc

        logger.info(
            f"Order {order.order_number} placed at branch {branch_id}: "
            f"status={order.status} total={order.total_amount}"
        )
        return await self.get_order(order.id)

    # ==================== LIFECYCLE ====================

    async def _claim(self, order: Order, from_statuses: Sequence[str], to_status: str) -> None:
        """
        Conditionally move the stored status so that only one of several
        racing transitions (confirm, cancel, expiry) wins.
        """
        validate_transition(order.status, to_status)
        result = await self.db.execute(
            update(Order)
            .where(Order.id == order.id, Order.status.in_(list(from_statuses)))
            .values(status=to_status, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            current = await self.get_order(order.id)
            validate_transition(current.status, to_status)
            raise InvalidTransitionError(
                f"Order {current.order_number} was modified concurrently",
                details={"current_status": current.status, "requested_status": to_status},
            )

    async def _cancel(self, order: Order, reason: str, changed_by: Optional[str]) -> None:
        was_confirmed = status_in(order.status, OrderStatus.CONFIRMED)
        await self._claim(order, RESERVING_STATUSES, OrderStatus.CANCELLED.value)
        transition_order(order, OrderStatus.CANCELLED.value, changed_by=changed_by, notes=reason)
        await self.ledger.release_lines(
            order.branch_id,
            [StockLine(product_id=i.product_id, variant_id=i.variant_id, quantity=i.quantity) for i in order.items],
            commit=False,
        )
        # Only confirmed orders have redeemed their promo
        if was_confirmed and order.promo_code_id is not None:
            await self.promotions.reverse_redemption(order.promo_code_id, order.id)
        await self.db.commit()
        logger.info(f"Order {order.order_number} cancelled: {reason}")

    async def confirm_order(self, order_id: uuid.UUID, changed_by: Optional[str] = None) -> Order:
        """Payment succeeded for a RESERVED order."""
        order = await self.get_order(order_id)
        validate_transition(order.status, OrderStatus.CONFIRMED.value)

        expires_at = ensure_utc(order.reservation_expires_at)
        if expires_at is not None and expires_at < utcnow():
            await self._cancel(order, "Reservation expired", SYSTEM_ACTOR)
            raise ReservationExpiredError(
                "The stock reservation for this order has expired",
                details={"order_id": str(order_id)},
            )

        await self._claim(order, [OrderStatus.RESERVED.value], OrderStatus.CONFIRMED.value)
        try:
            await self._confirm(order, changed_by, notes="Payment received")
            order.payment_status = PaymentStatus.PAID.value
            await self.db.commit()
        except PromoInvalidError:
            await self.db.rollback()
            order = await self.get_order(order_id)
            await self._cancel(order, "Promo code no longer available", SYSTEM_ACTOR)
            raise

        logger.info(f"Order {order.order_number} confirmed")
        return await self.get_order(order_id)

    async def cancel_order(
        self,
        order_id: uuid.UUID,
        reason: Optional[str] = None,
        user_id: Optional[str] = None,
        is_staff: bool = False,
    ) -> Order:
        order = await self.get_order(order_id)
        if not is_staff and (order.user_id is None or order.user_id != user_id):
            raise PermissionDeniedError("You can only cancel your own orders")

        await self._cancel(order, reason or "Cancelled by customer", user_id)
        return await self.get_order(order_id)

    async def fulfil_order(self, order_id: uuid.UUID, changed_by: Optional[str] = None) -> Order:
        """Goods handed over: stock and reservation both go down."""
        order = await self.get_order(order_id)
        await self._claim(order, [OrderStatus.CONFIRMED.value], OrderStatus.FULFILLED.value)
        transition_order(order, OrderStatus.FULFILLED.value, changed_by=changed_by)

        for item in order.items:
            consumed = await self.ledger.consume(
                order.branch_id, item.product_id, item.variant_id, item.quantity, commit=False
            )
            if not consumed:
                error = InternalCheckoutError(
                    f"Stock for order {order.order_number} does not match its reservation",
                    details={"order_id": str(order_id), "product_id": str(item.product_id)},
                )
                await self.db.rollback()
                raise error
        if order.payment_method == PaymentMethod.CASH.value:
            order.payment_status = PaymentStatus.PAID.value

        await self.db.commit()
        logger.info(f"Order {order.order_number} fulfilled")
        return await self.get_order(order_id)

    async def expire_stale_reservations(self, now: Optional[datetime] = None, batch_size: Optional[int] = None) -> int:
        """Cancel RESERVED orders whose reservation TTL has passed. Returns how many were expired."""
        now = now or utcnow()
        result = await self.db.execute(
            select(Order.id)
            .where(
                Order.status == OrderStatus.RESERVED.value,
                Order.reservation_expires_at.is_not(None),
                Order.reservation_expires_at < now,
            )
            .order_by(Order.reservation_expires_at)
            .limit(batch_size or settings.RESERVATION_SWEEP_BATCH_SIZE)
        )
        order_ids = list(result.scalars().all())

        expired = 0
        for order_id in order_ids:
            order = await self.get_order(order_id)
            if not status_in(order.status, OrderStatus.RESERVED):
                continue
            try:
                await self._cancel(order, "Reservation expired", SYSTEM_ACTOR)
                expired += 1
            except InvalidTransitionError:
                logger.info(f"Order {order.order_number} changed state before expiry; skipped")
        return expired

    # ==================== QUERIES ====================

    async def get_order(self, order_id: uuid.UUID) -> Order:
        result = await self.db.execute(
            select(Order)
            .options(selectinload(Order.items), selectinload(Order.status_history))
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        order = result.scalar_one_or_none()
        if order is None:
            raise NotFoundError("Order not found", details={"order_id": str(order_id)})
        return order

    async def list_orders(self, user_id: str, skip: int = 0, limit: int = 20) -> Tuple[List[Order], int]:
        total = (
            await self.db.execute(select(func.count(Order.id)).where(Order.user_id == user_id))
        ).scalar() or 0

        result = await self.db.execute(
            select(Order)
            .options(selectinload(Order.items))
            .where(Order.user_id == user_id)
            .order_by(Order.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        return list(result.scalars().all()), total
