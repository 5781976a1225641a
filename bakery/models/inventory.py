import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, UniqueConstraint, text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bakery.database import Base
from bakery.db_types import UUIDType, MoneyType


class BranchInventory(Base):
    """
    Stock of one product (or variant) at one branch.

    Only the inventory ledger writes to this table. ``reserved_quantity``
    never exceeds ``stock_quantity``; the CHECK constraints back up the
    conditional updates that maintain it.
    """

    __tablename__ = "branch_inventory"
    __table_args__ = (
        UniqueConstraint("branch_id", "product_id", "variant_id", name="uq_branch_inventory"),
        # NULL variant_id rows are distinct under the unique constraint
        Index(
            "uq_branch_inventory_no_variant",
            "branch_id",
            "product_id",
            unique=True,
            postgresql_where=text("variant_id IS NULL"),
            sqlite_where=text("variant_id IS NULL"),
        ),
        CheckConstraint("stock_quantity >= 0", name="ck_branch_inventory_stock_non_negative"),
        CheckConstraint("reserved_quantity >= 0", name="ck_branch_inventory_reserved_non_negative"),
        CheckConstraint(
            "reserved_quantity <= stock_quantity",
            name="ck_branch_inventory_reserved_within_stock",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)

    branch_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("branches.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    product_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    variant_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("product_variants.id", ondelete="CASCADE"),
        nullable=True
    )

    # Stock levels
    stock_quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    reserved_quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    min_stock_level: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Shown to customers browsing this branch; checkout prices from the catalog
    price_override: Mapped[Optional[Decimal]] = mapped_column(MoneyType, nullable=True)
    is_available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    branch = relationship("Branch")
    product = relationship("Product")
    variant = relationship("ProductVariant")

    @property
    def available_quantity(self) -> int:
        return self.stock_quantity - self.reserved_quantity

    @property
    def is_low_stock(self) -> bool:
        return self.available_quantity <= self.min_stock_level

    def __repr__(self) -> str:
        return (
            f"<BranchInventory(branch={self.branch_id}, product={self.product_id}, "
            f"stock={self.stock_quantity}, reserved={self.reserved_quantity})>"
        )
