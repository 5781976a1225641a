"""
Promo Code Model

Single-code discounts with a validity window, a global usage cap and an
optional per-user cap.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, Boolean, DateTime, Integer, Text, ForeignKey, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bakery.core.enum_utils import enum_comment
from bakery.database import Base
from bakery.db_types import UUIDType, MoneyType


class DiscountType(str, Enum):
    """Discount type enumeration."""
    PERCENTAGE = "PERCENTAGE"  # e.g. 25% off, optionally capped
    FIXED_AMOUNT = "FIXED_AMOUNT"  # e.g. 5.00 off
    FREE_SHIPPING = "FREE_SHIPPING"  # Waives the delivery fee


class PromoCode(Base):
    __tablename__ = "promo_codes"
    __table_args__ = (
        CheckConstraint("valid_from < valid_until", name="ck_promo_codes_window"),
        CheckConstraint("usage_count >= 0", name="ck_promo_codes_usage_non_negative"),
        CheckConstraint(
            "usage_limit IS NULL OR usage_count <= usage_limit",
            name="ck_promo_codes_usage_within_limit",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)

    code: Mapped[str] = mapped_column(
        String(50),
        unique=True,
        nullable=False,
        index=True,
        comment="Stored uppercase; matched case-insensitively"
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    discount_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default=DiscountType.PERCENTAGE.value,
        comment=enum_comment(DiscountType)
    )
    discount_value: Mapped[Decimal] = mapped_column(
        MoneyType,
        nullable=False,
        default=0,
        comment="Percentage or amount, depending on discount_type"
    )
    min_order_amount: Mapped[Optional[Decimal]] = mapped_column(MoneyType, nullable=True)
    max_discount_amount: Mapped[Optional[Decimal]] = mapped_column(
        MoneyType,
        nullable=True,
        comment="Cap on the computed discount"
    )

    # Usage limits
    usage_limit: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        comment="Total redemptions allowed (null = unlimited)"
    )
    user_usage_limit: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        comment="Redemptions allowed per user (null = unlimited)"
    )
    usage_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    valid_from: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    valid_until: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<PromoCode(code='{self.code}', type='{self.discount_type}')>"


class PromoCodeUsage(Base):
    """One row per confirmed redemption."""
    __tablename__ = "promo_code_usages"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)
    promo_code_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("promo_codes.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    # Null for guest checkouts
    user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False
    )
    discount_amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    used_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    promo_code = relationship("PromoCode")
