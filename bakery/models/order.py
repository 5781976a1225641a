import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, List

from sqlalchemy import String, DateTime, ForeignKey, Integer, Text, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bakery.core.enum_utils import enum_comment
from bakery.database import Base
from bakery.db_types import UUIDType, MoneyType, DistanceType, CoordinateType


class OrderStatus(str, Enum):
    """
    Order lifecycle.

    DRAFT and PRICED only exist in memory while a checkout request is
    being processed; persisted orders start at RESERVED.
    """
    DRAFT = "DRAFT"
    PRICED = "PRICED"
    RESERVED = "RESERVED"      # Stock held, awaiting payment
    CONFIRMED = "CONFIRMED"    # Paid or pay-on-delivery, promo redeemed
    FULFILLED = "FULFILLED"    # Delivered or picked up
    CANCELLED = "CANCELLED"


class OrderType(str, Enum):
    DELIVERY = "DELIVERY"
    PICKUP = "PICKUP"


class PaymentMethod(str, Enum):
    CASH = "CASH"  # Pay on delivery/pickup, confirmed at checkout
    CARD = "CARD"  # Confirmed by the payment-success hook


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    CANCELLED = "CANCELLED"


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        Index("ix_orders_user_created", "user_id", "created_at"),
        Index("ix_orders_status_expiry", "status", "reservation_expires_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)
    order_number: Mapped[str] = mapped_column(String(30), unique=True, nullable=False, index=True)

    # Identity is external; guests have no user id
    user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    branch_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("branches.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )

    order_type: Mapped[str] = mapped_column(
        String(50),
        default=OrderType.DELIVERY.value,
        nullable=False,
        comment=enum_comment(OrderType)
    )
    status: Mapped[str] = mapped_column(
        String(50),
        default=OrderStatus.RESERVED.value,
        nullable=False,
        comment=enum_comment(OrderStatus)
    )
    payment_method: Mapped[str] = mapped_column(
        String(50),
        default=PaymentMethod.CASH.value,
        nullable=False,
        comment=enum_comment(PaymentMethod)
    )
    payment_status: Mapped[str] = mapped_column(
        String(50),
        default=PaymentStatus.PENDING.value,
        nullable=False,
        comment=enum_comment(PaymentStatus)
    )

    # Customer / delivery details
    customer_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    customer_phone: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    delivery_latitude: Mapped[Optional[Decimal]] = mapped_column(CoordinateType, nullable=True)
    delivery_longitude: Mapped[Optional[Decimal]] = mapped_column(CoordinateType, nullable=True)
    delivery_address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    distance_km: Mapped[Optional[Decimal]] = mapped_column(DistanceType, nullable=True)
    shipping_zone: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    special_instructions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Amounts
    subtotal: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    delivery_fee_original: Mapped[Decimal] = mapped_column(MoneyType, default=0, nullable=False)
    delivery_fee: Mapped[Decimal] = mapped_column(MoneyType, default=0, nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(MoneyType, default=0, nullable=False)
    shipping_discount_amount: Mapped[Decimal] = mapped_column(MoneyType, default=0, nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(MoneyType, default=0, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)

    # Promo snapshot
    promo_code_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("promo_codes.id", ondelete="SET NULL"),
        nullable=True
    )
    promo_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # Timestamps
    reservation_expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    fulfilled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Relationships
    items: Mapped[List["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin"
    )
    status_history: Mapped[List["OrderStatusHistory"]] = relationship(
        "OrderStatusHistory",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderStatusHistory.created_at",
        lazy="selectin"
    )

    def __repr__(self) -> str:
        return f"<Order(number='{self.order_number}', status='{self.status}')>"


class OrderItem(Base):
    __tablename__ = "order_items"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    product_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False
    )
    variant_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("product_variants.id", ondelete="SET NULL"),
        nullable=True
    )

    # Snapshot at checkout time
    product_name: Mapped[str] = mapped_column(String(200), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    total_price: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)

    order: Mapped["Order"] = relationship("Order", back_populates="items")


class OrderStatusHistory(Base):
    __tablename__ = "order_status_history"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    from_status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    to_status: Mapped[str] = mapped_column(String(50), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    changed_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    order: Mapped["Order"] = relationship("Order", back_populates="status_history")
