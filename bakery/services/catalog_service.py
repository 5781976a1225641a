import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bakery.core.errors import NotFoundError, ValidationError
from bakery.models.catalog import Product, ProductVariant
from bakery.services.inventory_ledger import StockLine


@dataclass
class PricedLine:
    product_id: uuid.UUID
    variant_id: Optional[uuid.UUID]
    product_name: str
    quantity: int
    unit_price: Decimal

    @property
    def total_price(self) -> Decimal:
        return self.unit_price * self.quantity

    def as_stock_line(self) -> StockLine:
        return StockLine(product_id=self.product_id, variant_id=self.variant_id, quantity=self.quantity)


class CatalogService:
    """Prices cart lines from the current catalog. Client-supplied prices are never used."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def price_lines(self, lines: Iterable[StockLine]) -> List[PricedLine]:
        lines = list(lines)
        product_ids = {line.product_id for line in lines}
        variant_ids = {line.variant_id for line in lines if line.variant_id is not None}

        products = {}
        if product_ids:
            result = await self.db.execute(select(Product).where(Product.id.in_(product_ids)))
            products = {p.id: p for p in result.scalars().all()}

        variants = {}
        if variant_ids:
            result = await self.db.execute(
                select(ProductVariant).where(ProductVariant.id.in_(variant_ids))
            )
            variants = {v.id: v for v in result.scalars().all()}

        priced = []
        for line in lines:
            product = products.get(line.product_id)
            if product is None or not product.is_active:
                raise NotFoundError(
                    f"Product with ID {line.product_id} not found or inactive",
                    details={"product_id": str(line.product_id)},
                )

            unit_price = product.effective_price
            name = product.name

            if line.variant_id is not None:
                variant = variants.get(line.variant_id)
                if variant is None or not variant.is_active:
                    raise NotFoundError(
                        f"Variant with ID {line.variant_id} not found or inactive",
                        details={"product_id": str(line.product_id), "variant_id": str(line.variant_id)},
                    )
                if variant.product_id != product.id:
                    raise ValidationError(
                        f"Variant {line.variant_id} does not belong to product {line.product_id}",
                        details={"product_id": str(line.product_id), "variant_id": str(line.variant_id)},
                    )
                if variant.price is not None:
                    unit_price = variant.price
                name = f"{product.name} ({variant.name})"

            priced.append(
                PricedLine(
                    product_id=line.product_id,
                    variant_id=line.variant_id,
                    product_name=name,
                    quantity=line.quantity,
                    unit_price=unit_price,
                )
            )
        return priced
