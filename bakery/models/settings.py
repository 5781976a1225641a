import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import String, DateTime, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from bakery.database import Base
from bakery.db_types import UUIDType


class SystemSetting(Base):
    """Key/value settings store shared by the admin app and the scheduler."""
    __tablename__ = "system_settings"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )


class CatalogToggleLog(Base):
    """Audit row for every catalog-wide disable/enable."""
    __tablename__ = "catalog_toggle_logs"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)
    action: Mapped[str] = mapped_column(String(20), nullable=False, comment="DISABLE, ENABLE")
    trigger_type: Mapped[str] = mapped_column(String(20), nullable=False, comment="SCHEDULED, MANUAL")
    affected_products: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    affected_categories: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
