# tests/test_inventory_ledger.py
import asyncio
import random

import pytest
from sqlalchemy.exc import IntegrityError

from bakery.core.errors import ValidationError
from bakery.services.inventory_ledger import (
    CartAvailabilityStatus,
    InventoryLedger,
    ReservationStatus,
    StockLine,
    StockStatus,
)
from conftest import fetch_inventory


async def test_concurrent_reservations_never_oversell(seed, session_factory):
    branch = await seed.branch()
    product = await seed.product()
    row = await seed.stock(branch, product, quantity=1)

    async def attempt():
        async with session_factory() as session:
            return await InventoryLedger(session).reserve(branch.id, product.id, None, 1)

    results = await asyncio.gather(*(attempt() for _ in range(8)))

    statuses = [r.status for r in results]
    assert statuses.count(ReservationStatus.OK) == 1
    assert statuses.count(ReservationStatus.INSUFFICIENT_STOCK) == 7

    stored = await fetch_inventory(session_factory, row.id)
    assert stored.reserved_quantity == 1
    assert stored.stock_quantity == 1


async def test_reserve_and_release_keep_reserved_within_stock(seed, session_factory):
    branch = await seed.branch()
    product = await seed.product()
    row = await seed.stock(branch, product, quantity=10)

    rng = random.Random(7)
    async with session_factory() as session:
        ledger = InventoryLedger(session)
        for _ in range(40):
            qty = rng.randint(1, 4)
            if rng.random() < 0.6:
                await ledger.reserve(branch.id, product.id, None, qty)
            else:
                await ledger.release(branch.id, product.id, None, qty)

            stored = await fetch_inventory(session_factory, row.id)
            assert 0 <= stored.reserved_quantity <= stored.stock_quantity


async def test_reserving_without_a_row_is_not_available(seed, db):
    branch = await seed.branch()
    stocked = await seed.product(name="Baguette")
    unstocked = await seed.product(name="Croissant")
    await seed.stock(branch, stocked, quantity=50)

    result = await InventoryLedger(db).reserve(branch.id, unstocked.id, None, 1)
    assert result.status == ReservationStatus.NOT_AVAILABLE
    assert not result.success


async def test_variant_rows_are_separate_from_the_product_row(seed, db):
    branch = await seed.branch()
    product = await seed.product()
    large = await seed.variant(product, name="Large")
    await seed.stock(branch, product, quantity=5)

    result = await InventoryLedger(db).reserve(branch.id, product.id, large.id, 1)
    assert result.status == ReservationStatus.NOT_AVAILABLE


async def test_inactive_branch_and_unavailable_row_refuse(seed, db):
    closed = await seed.branch(name="Closed", is_active=False)
    open_branch = await seed.branch(name="Open")
    product = await seed.product()
    await seed.stock(closed, product, quantity=5)
    await seed.stock(open_branch, product, quantity=5, is_available=False)

    ledger = InventoryLedger(db)
    assert (await ledger.reserve(closed.id, product.id, None, 1)).status == ReservationStatus.NOT_AVAILABLE
    assert (await ledger.reserve(open_branch.id, product.id, None, 1)).status == ReservationStatus.NOT_AVAILABLE


async def test_insufficient_stock_reports_what_is_left(seed, db):
    branch = await seed.branch()
    product = await seed.product()
    await seed.stock(branch, product, quantity=5, reserved=2)

    result = await InventoryLedger(db).reserve(branch.id, product.id, None, 4)
    assert result.status == ReservationStatus.INSUFFICIENT_STOCK
    assert result.available == 3


async def test_release_is_clamped_at_zero(seed, db, session_factory):
    branch = await seed.branch()
    product = await seed.product()
    row = await seed.stock(branch, product, quantity=5, reserved=2)

    released = await InventoryLedger(db).release(branch.id, product.id, None, 5)
    assert released == 2

    stored = await fetch_inventory(session_factory, row.id)
    assert stored.reserved_quantity == 0
    assert stored.stock_quantity == 5


async def test_consume_moves_reservation_out_of_stock(seed, db, session_factory):
    branch = await seed.branch()
    product = await seed.product()
    row = await seed.stock(branch, product, quantity=5, reserved=3)

    ledger = InventoryLedger(db)
    assert await ledger.consume(branch.id, product.id, None, 2) is True

    stored = await fetch_inventory(session_factory, row.id)
    assert stored.stock_quantity == 3
    assert stored.reserved_quantity == 1

    # More than is reserved
    assert await ledger.consume(branch.id, product.id, None, 2) is False


async def test_availability_statuses(seed, db):
    branch = await seed.branch()
    plenty = await seed.product(name="Plenty")
    low = await seed.product(name="Low")
    gone = await seed.product(name="Gone")
    missing = await seed.product(name="Missing")
    await seed.stock(branch, plenty, quantity=20, min_stock_level=5)
    await seed.stock(branch, low, quantity=6, reserved=2, min_stock_level=5)
    await seed.stock(branch, gone, quantity=3, reserved=3)

    ledger = InventoryLedger(db)
    assert (await ledger.check_availability(branch.id, plenty.id)).status == StockStatus.AVAILABLE
    low_status = await ledger.check_availability(branch.id, low.id)
    assert low_status.status == StockStatus.LOW_STOCK
    assert low_status.available_quantity == 4
    assert (await ledger.check_availability(branch.id, gone.id)).status == StockStatus.OUT_OF_STOCK
    assert (await ledger.check_availability(branch.id, missing.id)).status == StockStatus.UNAVAILABLE


async def test_check_cart_reports_the_worst_line(seed, db):
    branch = await seed.branch()
    bread = await seed.product(name="Bread")
    cake = await seed.product(name="Cake")
    await seed.stock(branch, bread, quantity=10)
    await seed.stock(branch, cake, quantity=1)

    ledger = InventoryLedger(db)
    ok = await ledger.check_cart(branch.id, [StockLine(bread.id, 2), StockLine(cake.id, 1)])
    assert ok.status == CartAvailabilityStatus.AVAILABLE

    short = await ledger.check_cart(branch.id, [StockLine(bread.id, 2), StockLine(cake.id, 2)])
    assert short.status == CartAvailabilityStatus.INSUFFICIENT_STOCK
    assert [line.satisfied for line in short.lines] == [True, False]


async def test_set_stock_creates_then_refuses_to_go_below_reserved(seed, db):
    branch = await seed.branch()
    product = await seed.product()
    ledger = InventoryLedger(db)

    row = await ledger.set_stock(branch.id, product.id, None, 10)
    assert row.stock_quantity == 10

    await ledger.reserve(branch.id, product.id, None, 4)
    with pytest.raises(ValidationError):
        await ledger.set_stock(branch.id, product.id, None, 3)

    row = await ledger.set_stock(branch.id, product.id, None, 4, min_stock_level=2)
    assert row.stock_quantity == 4
    assert row.reserved_quantity == 4
    assert row.min_stock_level == 2


async def test_only_one_variantless_row_per_branch_and_product(seed):
    branch = await seed.branch()
    product = await seed.product()
    large = await seed.variant(product, name="Large")
    small = await seed.variant(product, name="Small")

    await seed.stock(branch, product, quantity=5)
    await seed.stock(branch, product, quantity=5, variant=large)
    await seed.stock(branch, product, quantity=5, variant=small)

    with pytest.raises(IntegrityError):
        await seed.stock(branch, product, quantity=3)
