# tests/test_order_pipeline.py
import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from bakery.config import settings
from bakery.core.clock import utcnow
from bakery.core.errors import (
    BranchUnavailableError,
    InsufficientStockError,
    InternalCheckoutError,
    InvalidTransitionError,
    NoBranchAvailableError,
    NotFoundError,
    PermissionDeniedError,
    PromoInvalidError,
    ReservationExpiredError,
)
from bakery.jobs.order_jobs import release_expired_reservations
from bakery.models import BranchInventory, Order
from bakery.schemas.checkout import CheckoutRequest, OrderCreateRequest
from bakery.services.inventory_ledger import InventoryLedger
from bakery.services.order_pipeline import OrderPricingPipeline, assemble_totals, generate_order_number
from bakery.services.promotion_service import PromotionService
from conftest import fetch_inventory, fetch_promo

# Roughly 2.22 km north of a branch at (40.0, -3.0)
NEAR = {"latitude": 40.02, "longitude": -3.0}


def order_request(*lines, **kwargs):
    kwargs.setdefault("delivery_address", NEAR)
    return OrderCreateRequest(
        items=[{"product_id": p.id, "quantity": q} for p, q in lines],
        **kwargs,
    )


async def count_orders(session_factory):
    async with session_factory() as session:
        return (await session.execute(select(func.count(Order.id)))).scalar()


def test_assemble_totals_rounds_each_part_once():
    subtotal, fee_original, fee, discount, shipping_discount, tax, total = assemble_totals(
        Decimal("10.005"), Decimal("3.114"), Decimal("1.004"), Decimal("0"), Decimal("0.08")
    )
    assert subtotal == Decimal("10.01")
    assert fee_original == fee == Decimal("3.11")
    assert discount == Decimal("1.00")
    # (10.01 - 1.00 + 3.11) * 0.08 = 0.9696
    assert tax == Decimal("0.97")
    assert total == Decimal("13.09")


def test_assemble_totals_never_goes_negative():
    *_, total = assemble_totals(Decimal("5"), Decimal("0"), Decimal("9"), Decimal("0"), Decimal("0"))
    assert total == Decimal("0.00")


def test_order_numbers_carry_the_date():
    number = generate_order_number()
    assert number.startswith(f"ORD-{utcnow():%Y%m%d}-")
    assert len(number.split("-")[-1]) == 6


async def test_preview_and_placed_order_agree_to_the_cent(seed, db, session_factory):
    branch = await seed.branch()
    bread = await seed.product(name="Sourdough", base_price="4.50")
    await seed.stock(branch, bread, quantity=10)
    promo = await seed.promo(code="SAVE25", discount_value="25", max_discount_amount="60")

    request = order_request((bread, 2), branch_id=branch.id, promo_code=" save25 ", payment_method="cash")
    pipeline = OrderPricingPipeline(db)

    preview = await pipeline.calculate_price(request, user_id="customer-1")
    assert preview.subtotal == Decimal("9.00")
    # Urban: 2.00 + 2.22 km * 0.50
    assert preview.delivery_fee == Decimal("3.11")
    assert preview.discount_amount == Decimal("2.25")
    assert preview.total_amount == Decimal("9.86")
    assert preview.quote.zone.name == "Urban"

    order = await pipeline.create_order(request, user_id="customer-1")
    for field in (
        "subtotal",
        "delivery_fee_original",
        "delivery_fee",
        "discount_amount",
        "shipping_discount_amount",
        "tax_amount",
        "total_amount",
    ):
        assert getattr(order, field) == getattr(preview, field), field

    # Cash orders confirm at checkout and redeem the promo there
    assert order.status == "CONFIRMED"
    assert order.payment_status == "PENDING"
    assert order.promo_code == "SAVE25"
    assert {h.to_status for h in order.status_history} == {"RESERVED", "CONFIRMED"}
    assert (await fetch_promo(session_factory, promo.id)).usage_count == 1


async def test_failed_line_releases_earlier_reservations(seed, db, session_factory):
    branch = await seed.branch()
    plenty = await seed.product(name="Baguette")
    scarce = await seed.product(name="Croissant")
    plenty_row = await seed.stock(branch, plenty, quantity=10)
    scarce_row = await seed.stock(branch, scarce, quantity=1)

    request = order_request((plenty, 1), (scarce, 2), branch_id=branch.id)
    with pytest.raises(InsufficientStockError):
        await OrderPricingPipeline(db).create_order(request)

    assert (await fetch_inventory(session_factory, plenty_row.id)).reserved_quantity == 0
    assert (await fetch_inventory(session_factory, scarce_row.id)).reserved_quantity == 0
    assert await count_orders(session_factory) == 0


async def test_stock_held_by_another_order_is_not_available(seed, db):
    branch = await seed.branch()
    cake = await seed.product(name="Cake", base_price="20.00")
    await seed.stock(branch, cake, quantity=5, reserved=2)

    request = order_request((cake, 4), branch_id=branch.id)
    pipeline = OrderPricingPipeline(db)

    with pytest.raises(InsufficientStockError) as preview_error:
        await pipeline.calculate_price(request)
    assert preview_error.value.available == 3

    with pytest.raises(InsufficientStockError) as error:
        await pipeline.create_order(request)
    assert error.value.requested == 4
    assert error.value.available == 3
    assert error.value.details["product_name"] == "Cake"


async def test_product_missing_from_branch_is_branch_unavailable(seed, db):
    branch = await seed.branch()
    stocked = await seed.product(name="Bread")
    unstocked = await seed.product(name="Pie")
    await seed.stock(branch, stocked, quantity=5)

    with pytest.raises(BranchUnavailableError):
        await OrderPricingPipeline(db).create_order(order_request((unstocked, 1), branch_id=branch.id))


async def test_inactive_product_is_not_found(seed, db):
    branch = await seed.branch()
    retired = await seed.product(name="Retired", is_active=False)
    await seed.stock(branch, retired, quantity=5)

    with pytest.raises(NotFoundError):
        await OrderPricingPipeline(db).calculate_price(order_request((retired, 1), branch_id=branch.id))


async def test_card_reservation_expires_and_releases_stock(seed, db, session_factory):
    branch = await seed.branch()
    bread = await seed.product()
    row = await seed.stock(branch, bread, quantity=10)

    pipeline = OrderPricingPipeline(db)
    order = await pipeline.create_order(order_request((bread, 2), branch_id=branch.id, payment_method="CARD"))
    assert order.status == "RESERVED"
    assert order.reservation_expires_at is not None
    assert (await fetch_inventory(session_factory, row.id)).reserved_quantity == 2

    # Nothing is due yet
    assert await pipeline.expire_stale_reservations() == 0

    later = utcnow() + timedelta(minutes=settings.RESERVATION_TTL_MINUTES + 1)
    assert await pipeline.expire_stale_reservations(now=later) == 1

    expired = await pipeline.get_order(order.id)
    assert expired.status == "CANCELLED"
    assert expired.payment_status == "CANCELLED"
    assert expired.cancellation_reason == "Reservation expired"
    assert (await fetch_inventory(session_factory, row.id)).reserved_quantity == 0

    # A second sweep finds nothing
    assert await pipeline.expire_stale_reservations(now=later) == 0


async def test_confirm_after_expiry_cancels_the_order(seed, db, session_factory):
    branch = await seed.branch()
    bread = await seed.product()
    row = await seed.stock(branch, bread, quantity=10)

    pipeline = OrderPricingPipeline(db)
    order = await pipeline.create_order(order_request((bread, 3), branch_id=branch.id, payment_method="card"))

    async with session_factory() as session:
        await session.execute(
            update(Order)
            .where(Order.id == order.id)
            .values(reservation_expires_at=utcnow() - timedelta(minutes=1))
        )
        await session.commit()

    with pytest.raises(ReservationExpiredError):
        await pipeline.confirm_order(order.id, changed_by="staff-1")

    assert (await pipeline.get_order(order.id)).status == "CANCELLED"
    assert (await fetch_inventory(session_factory, row.id)).reserved_quantity == 0


async def test_card_order_redeems_promo_only_when_confirmed(seed, db, session_factory):
    branch = await seed.branch()
    bread = await seed.product(base_price="10.00")
    await seed.stock(branch, bread, quantity=10)
    promo = await seed.promo(code="TENOFF", discount_type="FIXED_AMOUNT", discount_value="10", usage_limit=5)

    pipeline = OrderPricingPipeline(db)
    order = await pipeline.create_order(
        order_request((bread, 2), branch_id=branch.id, promo_code="TENOFF", payment_method="card"),
        user_id="customer-1",
    )
    assert order.discount_amount == Decimal("10.00")
    assert (await fetch_promo(session_factory, promo.id)).usage_count == 0

    confirmed = await pipeline.confirm_order(order.id, changed_by="payments")
    assert confirmed.status == "CONFIRMED"
    assert confirmed.payment_status == "PAID"
    assert confirmed.reservation_expires_at is None
    assert (await fetch_promo(session_factory, promo.id)).usage_count == 1


async def test_promo_used_up_before_confirmation_cancels_the_order(seed, db, session_factory):
    branch = await seed.branch()
    bread = await seed.product(base_price="10.00")
    row = await seed.stock(branch, bread, quantity=10)
    await seed.promo(code="ONLYONE", discount_type="FIXED_AMOUNT", discount_value="2", usage_limit=1)

    pipeline = OrderPricingPipeline(db)
    waiting = await pipeline.create_order(
        order_request((bread, 1), branch_id=branch.id, promo_code="ONLYONE", payment_method="card")
    )
    # A cash order takes the last use first
    await pipeline.create_order(order_request((bread, 1), branch_id=branch.id, promo_code="ONLYONE"))

    with pytest.raises(PromoInvalidError) as error:
        await pipeline.confirm_order(waiting.id)
    assert error.value.reason == "usage_exhausted"

    assert (await pipeline.get_order(waiting.id)).status == "CANCELLED"
    # Only the cash order still holds stock
    assert (await fetch_inventory(session_factory, row.id)).reserved_quantity == 1


async def test_invalid_promo_fails_checkout_without_reserving(seed, db, session_factory):
    branch = await seed.branch()
    bread = await seed.product(base_price="5.00")
    row = await seed.stock(branch, bread, quantity=10)
    await seed.promo(code="BIGSPEND", min_order_amount="100")

    with pytest.raises(PromoInvalidError) as error:
        await OrderPricingPipeline(db).create_order(
            order_request((bread, 1), branch_id=branch.id, promo_code="BIGSPEND")
        )
    assert error.value.reason == "below_minimum"
    assert (await fetch_inventory(session_factory, row.id)).reserved_quantity == 0


async def test_free_shipping_promo_waives_the_fee(seed, db):
    branch = await seed.branch()
    bread = await seed.product(base_price="4.50")
    await seed.stock(branch, bread, quantity=10)
    await seed.promo(code="SHIPFREE", discount_type="FREE_SHIPPING", discount_value="0")

    preview = await OrderPricingPipeline(db).calculate_price(
        order_request((bread, 2), branch_id=branch.id, promo_code="SHIPFREE")
    )
    assert preview.delivery_fee_original == Decimal("3.11")
    assert preview.shipping_discount_amount == Decimal("3.11")
    assert preview.delivery_fee == Decimal("0.00")
    assert preview.total_amount == Decimal("9.00")


async def test_pickup_orders_pay_no_delivery_fee(seed, db):
    branch = await seed.branch()
    bread = await seed.product(base_price="4.50")
    await seed.stock(branch, bread, quantity=10)

    request = OrderCreateRequest(
        items=[{"product_id": bread.id, "quantity": 1}],
        order_type="pickup",
        branch_id=branch.id,
    )
    order = await OrderPricingPipeline(db).create_order(request)
    assert order.order_type == "PICKUP"
    assert order.delivery_fee == Decimal("0.00")
    assert order.shipping_zone is None
    assert order.total_amount == Decimal("4.50")


async def test_cancel_releases_stock_and_checks_ownership(seed, db, session_factory):
    branch = await seed.branch()
    bread = await seed.product()
    row = await seed.stock(branch, bread, quantity=10)

    pipeline = OrderPricingPipeline(db)
    order = await pipeline.create_order(order_request((bread, 4), branch_id=branch.id), user_id="customer-1")
    assert (await fetch_inventory(session_factory, row.id)).reserved_quantity == 4

    with pytest.raises(PermissionDeniedError):
        await pipeline.cancel_order(order.id, user_id="someone-else")

    cancelled = await pipeline.cancel_order(order.id, reason="Changed my mind", user_id="customer-1")
    assert cancelled.status == "CANCELLED"
    assert cancelled.cancellation_reason == "Changed my mind"
    assert (await fetch_inventory(session_factory, row.id)).reserved_quantity == 0

    with pytest.raises(InvalidTransitionError):
        await pipeline.cancel_order(order.id, is_staff=True)


async def test_fulfilment_consumes_stock(seed, db, session_factory):
    branch = await seed.branch()
    bread = await seed.product()
    row = await seed.stock(branch, bread, quantity=10)

    pipeline = OrderPricingPipeline(db)
    order = await pipeline.create_order(order_request((bread, 2), branch_id=branch.id))
    fulfilled = await pipeline.fulfil_order(order.id, changed_by="staff-1")

    assert fulfilled.status == "FULFILLED"
    assert fulfilled.payment_status == "PAID"
    stored = await fetch_inventory(session_factory, row.id)
    assert stored.stock_quantity == 8
    assert stored.reserved_quantity == 0

    with pytest.raises(InvalidTransitionError):
        await pipeline.cancel_order(order.id, is_staff=True)


async def test_reserved_order_cannot_be_fulfilled(seed, db):
    branch = await seed.branch()
    bread = await seed.product()
    await seed.stock(branch, bread, quantity=10)

    pipeline = OrderPricingPipeline(db)
    order = await pipeline.create_order(order_request((bread, 1), branch_id=branch.id, payment_method="card"))
    with pytest.raises(InvalidTransitionError):
        await pipeline.fulfil_order(order.id)


async def test_nearest_branch_that_can_fill_the_cart_is_chosen(seed, db):
    bread = await seed.product()
    nearest = await seed.branch(name="Nearest", latitude=40.02, longitude=-3.0)
    short = await seed.branch(name="Short", latitude=40.05, longitude=-3.0)
    chosen = await seed.branch(name="Chosen", latitude=40.1, longitude=-3.0)
    backup = await seed.branch(name="Backup", latitude=40.3, longitude=-3.0)
    await seed.branch(name="Closed", latitude=40.0, longitude=-3.0, is_active=False)
    await seed.stock(short, bread, quantity=1)
    await seed.stock(chosen, bread, quantity=10)
    await seed.stock(backup, bread, quantity=10)

    request = CheckoutRequest(
        items=[{"product_id": bread.id, "quantity": 3}],
        delivery_address={"latitude": 40.0, "longitude": -3.0},
    )
    preview = await OrderPricingPipeline(db).calculate_price(request)

    assert preview.branch.id == chosen.id
    assert [alt.branch.id for alt in preview.alternatives] == [backup.id]
    assert nearest.id not in {alt.branch.id for alt in preview.alternatives}


async def test_no_branch_can_fill_the_cart(seed, db):
    bread = await seed.product()
    branch = await seed.branch()
    await seed.stock(branch, bread, quantity=1)

    request = CheckoutRequest(items=[{"product_id": bread.id, "quantity": 5}], delivery_address=NEAR)
    with pytest.raises(NoBranchAvailableError):
        await OrderPricingPipeline(db).calculate_price(request)


async def test_list_orders_only_returns_the_callers_orders(seed, db):
    branch = await seed.branch()
    bread = await seed.product()
    await seed.stock(branch, bread, quantity=20)

    pipeline = OrderPricingPipeline(db)
    for _ in range(3):
        await pipeline.create_order(order_request((bread, 1), branch_id=branch.id), user_id="customer-1")
    await pipeline.create_order(order_request((bread, 1), branch_id=branch.id), user_id="customer-2")

    orders, total = await pipeline.list_orders("customer-1", skip=0, limit=2)
    assert total == 3
    assert len(orders) == 2
    assert all(o.user_id == "customer-1" for o in orders)


async def test_sweep_job_expires_through_its_own_session(seed, db, session_factory):
    branch = await seed.branch()
    bread = await seed.product()
    row = await seed.stock(branch, bread, quantity=10)

    order = await OrderPricingPipeline(db).create_order(
        order_request((bread, 2), branch_id=branch.id, payment_method="card")
    )
    assert await release_expired_reservations(session_factory) == 0

    async with session_factory() as session:
        await session.execute(
            update(Order)
            .where(Order.id == order.id)
            .values(reservation_expires_at=utcnow() - timedelta(seconds=1))
        )
        await session.commit()

    assert await release_expired_reservations(session_factory) == 1
    assert (await fetch_inventory(session_factory, row.id)).reserved_quantity == 0


async def test_storage_error_while_reserving_releases_earlier_lines(seed, db, session_factory, monkeypatch):
    branch = await seed.branch()
    rolls = await seed.product(name="Rolls")
    buns = await seed.product(name="Buns")
    rolls_row = await seed.stock(branch, rolls, quantity=10)
    buns_row = await seed.stock(branch, buns, quantity=10)

    real_reserve = InventoryLedger.reserve
    calls = []

    async def reserve_then_lose_the_lock(self, *args, **kwargs):
        calls.append(args)
        if len(calls) == 2:
            raise OperationalError("UPDATE branch_inventory", {}, Exception("database is locked"))
        return await real_reserve(self, *args, **kwargs)

    monkeypatch.setattr(InventoryLedger, "reserve", reserve_then_lose_the_lock)

    with pytest.raises(InternalCheckoutError) as error:
        await OrderPricingPipeline(db).create_order(
            order_request((rolls, 3), (buns, 3), branch_id=branch.id)
        )
    assert error.value.code == "internal_error"
    assert "draft_id" in error.value.details
    assert len(calls) == 2

    assert (await fetch_inventory(session_factory, rolls_row.id)).reserved_quantity == 0
    assert (await fetch_inventory(session_factory, buns_row.id)).reserved_quantity == 0
    assert await count_orders(session_factory) == 0


async def test_storage_error_while_saving_the_order_releases_stock(seed, db, session_factory, monkeypatch):
    branch = await seed.branch()
    bread = await seed.product()
    row = await seed.stock(branch, bread, quantity=10)

    async def failing_flush(self, *args, **kwargs):
        raise OperationalError("INSERT INTO orders", {}, Exception("disk I/O error"))

    monkeypatch.setattr(AsyncSession, "flush", failing_flush)

    with pytest.raises(InternalCheckoutError) as error:
        await OrderPricingPipeline(db).create_order(order_request((bread, 4), branch_id=branch.id))
    assert error.value.status_code == 500
    assert "draft_id" in error.value.details

    assert (await fetch_inventory(session_factory, row.id)).reserved_quantity == 0
    assert await count_orders(session_factory) == 0


async def test_concurrent_confirmations_share_the_last_promo_use(seed, db, session_factory):
    branch = await seed.branch()
    bread = await seed.product(base_price="10.00")
    row = await seed.stock(branch, bread, quantity=10)
    promo = await seed.promo(code="LASTONE", discount_type="FIXED_AMOUNT", discount_value="2", usage_limit=1)

    pipeline = OrderPricingPipeline(db)
    orders = [
        await pipeline.create_order(
            order_request((bread, 1), branch_id=branch.id, promo_code="LASTONE", payment_method="card")
        )
        for _ in range(2)
    ]

    async def confirm(order_id):
        async with session_factory() as session:
            try:
                await OrderPricingPipeline(session).confirm_order(order_id, changed_by="payments")
            except PromoInvalidError as error:
                return error.reason
            return "confirmed"

    results = await asyncio.gather(*(confirm(o.id) for o in orders))
    assert sorted(results) == ["confirmed", "usage_exhausted"]

    assert (await fetch_promo(session_factory, promo.id)).usage_count == 1
    statuses = sorted([(await pipeline.get_order(o.id)).status for o in orders])
    assert statuses == ["CANCELLED", "CONFIRMED"]
    assert (await fetch_inventory(session_factory, row.id)).reserved_quantity == 1


async def test_cancelling_a_confirmed_order_gives_the_promo_use_back(seed, db, session_factory):
    branch = await seed.branch()
    bread = await seed.product(base_price="10.00")
    await seed.stock(branch, bread, quantity=10)
    promo = await seed.promo(
        code="ONCE", discount_type="FIXED_AMOUNT", discount_value="2", usage_limit=1, user_usage_limit=1
    )

    pipeline = OrderPricingPipeline(db)
    request = order_request((bread, 1), branch_id=branch.id, promo_code="ONCE")
    order = await pipeline.create_order(request, user_id="customer-1")
    assert (await fetch_promo(session_factory, promo.id)).usage_count == 1

    await pipeline.cancel_order(order.id, user_id="customer-1")

    assert (await fetch_promo(session_factory, promo.id)).usage_count == 0
    _, total = await PromotionService(db).list_usages(promo.id)
    assert total == 0

    # Both the global and the per-user limit allow it again
    again = await pipeline.create_order(request, user_id="customer-1")
    assert again.status == "CONFIRMED"
    assert (await fetch_promo(session_factory, promo.id)).usage_count == 1


async def test_cancelling_a_reserved_order_leaves_promo_usage_alone(seed, db, session_factory):
    branch = await seed.branch()
    bread = await seed.product(base_price="10.00")
    await seed.stock(branch, bread, quantity=10)
    promo = await seed.promo(code="POPULAR", discount_type="FIXED_AMOUNT", discount_value="2", usage_count=3)

    pipeline = OrderPricingPipeline(db)
    order = await pipeline.create_order(
        order_request((bread, 1), branch_id=branch.id, promo_code="POPULAR", payment_method="card"),
        user_id="customer-1",
    )
    await pipeline.cancel_order(order.id, user_id="customer-1")

    assert (await fetch_promo(session_factory, promo.id)).usage_count == 3


async def test_fulfilment_stops_when_stock_does_not_match_the_reservation(seed, db, session_factory):
    branch = await seed.branch()
    bread = await seed.product()
    row = await seed.stock(branch, bread, quantity=10)

    pipeline = OrderPricingPipeline(db)
    order = await pipeline.create_order(order_request((bread, 2), branch_id=branch.id))

    async with session_factory() as session:
        await session.execute(
            update(BranchInventory).where(BranchInventory.id == row.id).values(reserved_quantity=0)
        )
        await session.commit()

    with pytest.raises(InternalCheckoutError):
        await pipeline.fulfil_order(order.id, changed_by="staff-1")

    assert (await pipeline.get_order(order.id)).status == "CONFIRMED"
    assert (await fetch_inventory(session_factory, row.id)).stock_quantity == 10
