# tests/conftest.py
# Settings are read at import time, so the environment has to be set
# before anything from bakery is imported.
import os
import tempfile
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

_DB_DIR = tempfile.mkdtemp(prefix="bakery-tests-")
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_DB_DIR}/app.db")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import httpx
import pytest

from bakery import models  # noqa: F401
from bakery.core.security import create_access_token
from bakery.database import Base, create_engine_for_url, create_session_factory, get_db
from bakery.main import app
from bakery.models import (
    Branch,
    BranchInventory,
    Category,
    Order,
    Product,
    ProductVariant,
    PromoCode,
    ShippingZone,
)


# Coordinates used throughout: the customer sits at the origin of a small
# grid; 0.01 degrees of latitude is roughly 1.11 km.
CUSTOMER = {"latitude": 40.0, "longitude": -3.0}


@pytest.fixture
async def engine(tmp_path):
    engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path}/bakery.db")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


class Seeder:
    """Inserts catalog, branch, stock and promo rows for a test."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def _add(self, obj):
        async with self.session_factory() as session:
            session.add(obj)
            await session.commit()
            await session.refresh(obj)
        return obj

    async def branch(self, name="Central", latitude=40.0, longitude=-3.0, is_active=True):
        return await self._add(
            Branch(
                name=name,
                address=f"{name} street 1",
                latitude=None if latitude is None else Decimal(str(latitude)),
                longitude=None if longitude is None else Decimal(str(longitude)),
                is_active=is_active,
            )
        )

    async def category(self, name="Breads", is_active=True):
        return await self._add(Category(name=name, slug=f"{name.lower()}-{uuid.uuid4().hex[:6]}", is_active=is_active))

    async def product(self, name="Sourdough", base_price="4.50", sale_price=None, is_active=True, category=None):
        return await self._add(
            Product(
                name=name,
                base_price=Decimal(base_price),
                sale_price=Decimal(sale_price) if sale_price is not None else None,
                is_active=is_active,
                category_id=category.id if category else None,
            )
        )

    async def variant(self, product, name="Large", price=None, is_active=True):
        return await self._add(
            ProductVariant(
                product_id=product.id,
                name=name,
                price=Decimal(price) if price is not None else None,
                is_active=is_active,
            )
        )

    async def stock(self, branch, product, quantity, variant=None, reserved=0, is_available=True, min_stock_level=0):
        return await self._add(
            BranchInventory(
                branch_id=branch.id,
                product_id=product.id,
                variant_id=variant.id if variant else None,
                stock_quantity=quantity,
                reserved_quantity=reserved,
                min_stock_level=min_stock_level,
                is_available=is_available,
            )
        )

    async def promo(
        self,
        code="SAVE25",
        discount_type="PERCENTAGE",
        discount_value="25",
        max_discount_amount=None,
        min_order_amount=None,
        usage_limit=None,
        user_usage_limit=None,
        usage_count=0,
        is_active=True,
        valid_from=None,
        valid_until=None,
    ):
        now = datetime.now(timezone.utc)
        return await self._add(
            PromoCode(
                code=code,
                name=f"{code} promo",
                discount_type=discount_type,
                discount_value=Decimal(discount_value),
                max_discount_amount=Decimal(max_discount_amount) if max_discount_amount else None,
                min_order_amount=Decimal(min_order_amount) if min_order_amount else None,
                usage_limit=usage_limit,
                user_usage_limit=user_usage_limit,
                usage_count=usage_count,
                is_active=is_active,
                valid_from=valid_from or now - timedelta(days=1),
                valid_until=valid_until or now + timedelta(days=30),
            )
        )

    async def zone(self, name, min_km, max_km, base, per_km="0", free_at=None, sort_order=0):
        return await self._add(
            ShippingZone(
                name=name,
                min_distance_km=Decimal(min_km),
                max_distance_km=Decimal(max_km) if max_km is not None else None,
                base_price=Decimal(base),
                price_per_km=Decimal(per_km),
                free_shipping_threshold=Decimal(free_at) if free_at is not None else None,
                sort_order=sort_order,
            )
        )

    async def order(self, branch, status="RESERVED", user_id=None, total="10.00"):
        """Bare order row, for tests that need an order id to hang rows on."""
        return await self._add(
            Order(
                order_number=f"ORD-TEST-{uuid.uuid4().hex[:6].upper()}",
                user_id=user_id,
                branch_id=branch.id,
                status=status,
                subtotal=Decimal(total),
                total_amount=Decimal(total),
            )
        )


@pytest.fixture
def seed(session_factory):
    return Seeder(session_factory)


async def fetch_inventory(session_factory, inventory_id):
    async with session_factory() as session:
        return await session.get(BranchInventory, inventory_id)


async def fetch_promo(session_factory, promo_id):
    async with session_factory() as session:
        return await session.get(PromoCode, promo_id)


def auth_headers(user_id="customer-1", role="customer"):
    return {"Authorization": f"Bearer {create_access_token(user_id, role=role)}"}


@pytest.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
