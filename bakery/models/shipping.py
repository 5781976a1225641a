import uuid
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bakery.database import Base
from bakery.db_types import UUIDType, MoneyType, DistanceType


class ShippingZone(Base):
    """Distance tier. A zone covers ``min_distance_km <= d < max_distance_km``."""
    __tablename__ = "shipping_zones"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100), nullable=False)

    min_distance_km: Mapped[Decimal] = mapped_column(DistanceType, default=0, nullable=False)
    # Null means unbounded
    max_distance_km: Mapped[Optional[Decimal]] = mapped_column(DistanceType, nullable=True)

    base_price: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    price_per_km: Mapped[Decimal] = mapped_column(MoneyType, default=0, nullable=False)
    free_shipping_threshold: Mapped[Optional[Decimal]] = mapped_column(MoneyType, nullable=True)

    delivery_time_min_minutes: Mapped[int] = mapped_column(Integer, default=30, nullable=False)
    delivery_time_max_minutes: Mapped[int] = mapped_column(Integer, default=60, nullable=False)

    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<ShippingZone(name='{self.name}', {self.min_distance_km}-{self.max_distance_km} km)>"


class BranchShippingZone(Base):
    """Per-branch pricing override for a shipping zone."""
    __tablename__ = "branch_shipping_zones"
    __table_args__ = (
        UniqueConstraint("branch_id", "zone_id", name="uq_branch_shipping_zone"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)
    branch_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("branches.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    zone_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("shipping_zones.id", ondelete="CASCADE"),
        nullable=False
    )
    custom_base_price: Mapped[Optional[Decimal]] = mapped_column(MoneyType, nullable=True)
    custom_price_per_km: Mapped[Optional[Decimal]] = mapped_column(MoneyType, nullable=True)
    custom_free_threshold: Mapped[Optional[Decimal]] = mapped_column(MoneyType, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    zone = relationship("ShippingZone")
