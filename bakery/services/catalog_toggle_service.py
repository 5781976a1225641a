"""
Catalog-wide disable/enable.

Bakeries close overnight; between ``disable_time`` and ``enable_time``
every active product and category is hidden. The state each row had
before the disable is kept in ``original_is_active`` so enable restores
exactly what was there (products an admin had switched off stay off).
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from bakery.core.errors import ValidationError
from bakery.models.catalog import Category, Product
from bakery.models.settings import CatalogToggleLog, SystemSetting


logger = logging.getLogger(__name__)


SETTING_ENABLED = "catalog_disable_enabled"
SETTING_DISABLE_TIME = "catalog_disable_time"
SETTING_ENABLE_TIME = "catalog_enable_time"
SETTING_TIMEZONE = "catalog_disable_timezone"

DEFAULT_DISABLE_TIME = "00:00:00"
DEFAULT_ENABLE_TIME = "06:00:00"
DEFAULT_TIMEZONE = "UTC"

TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d):([0-5]\d)$")


class ToggleAction(str, Enum):
    DISABLE = "DISABLE"
    ENABLE = "ENABLE"


class TriggerType(str, Enum):
    SCHEDULED = "SCHEDULED"
    MANUAL = "MANUAL"


@dataclass
class CatalogSchedule:
    enabled: bool = False
    disable_time: str = DEFAULT_DISABLE_TIME
    enable_time: str = DEFAULT_ENABLE_TIME
    timezone: str = DEFAULT_TIMEZONE

    @staticmethod
    def parse_time(value: str):
        """Return (hour, minute, second) for an HH:MM:SS string."""
        match = TIME_PATTERN.match(value or "")
        if not match:
            raise ValidationError(f"Invalid time '{value}', expected HH:MM:SS")
        return tuple(int(part) for part in match.groups())


def validate_timezone(name: str) -> str:
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValidationError(f"Unknown timezone '{name}'")
    return name


class CatalogToggleService:
    def __init__(self, db: AsyncSession):
        self.db = db

    # ==================== SETTINGS ====================

    async def _read_settings(self) -> Dict[str, Optional[str]]:
        result = await self.db.execute(
            select(SystemSetting).where(
                SystemSetting.key.in_(
                    [SETTING_ENABLED, SETTING_DISABLE_TIME, SETTING_ENABLE_TIME, SETTING_TIMEZONE]
                )
            )
        )
        return {s.key: s.value for s in result.scalars().all()}

    async def _write_setting(self, key: str, value: str) -> None:
        setting = await self.db.get(SystemSetting, key)
        if setting is None:
            self.db.add(SystemSetting(key=key, value=value))
        else:
            setting.value = value

    async def get_schedule(self) -> CatalogSchedule:
        values = await self._read_settings()
        return CatalogSchedule(
            enabled=(values.get(SETTING_ENABLED) or "").lower() in ("1", "true", "yes"),
            disable_time=values.get(SETTING_DISABLE_TIME) or DEFAULT_DISABLE_TIME,
            enable_time=values.get(SETTING_ENABLE_TIME) or DEFAULT_ENABLE_TIME,
            timezone=values.get(SETTING_TIMEZONE) or DEFAULT_TIMEZONE,
        )

    async def update_schedule(
        self,
        enabled: Optional[bool] = None,
        disable_time: Optional[str] = None,
        enable_time: Optional[str] = None,
        timezone: Optional[str] = None,
    ) -> CatalogSchedule:
        if disable_time is not None:
            CatalogSchedule.parse_time(disable_time)
            await self._write_setting(SETTING_DISABLE_TIME, disable_time)
        if enable_time is not None:
            CatalogSchedule.parse_time(enable_time)
            await self._write_setting(SETTING_ENABLE_TIME, enable_time)
        if timezone is not None:
            await self._write_setting(SETTING_TIMEZONE, validate_timezone(timezone))
        if enabled is not None:
            await self._write_setting(SETTING_ENABLED, "true" if enabled else "false")

        await self.db.commit()
        schedule = await self.get_schedule()
        logger.info(
            f"Catalog schedule updated: enabled={schedule.enabled} "
            f"disable={schedule.disable_time} enable={schedule.enable_time} tz={schedule.timezone}"
        )
        return schedule

    # ==================== TOGGLE ====================

    async def apply(self, action: ToggleAction, trigger_type: TriggerType = TriggerType.MANUAL) -> CatalogToggleLog:
        """Disable or re-enable the whole catalog and log it, in one transaction."""
        if action == ToggleAction.DISABLE:
            products = await self.db.execute(
                update(Product)
                .where(Product.is_active.is_(True))
                .values(original_is_active=Product.is_active, is_active=False)
                .execution_options(synchronize_session=False)
            )
            categories = await self.db.execute(
                update(Category)
                .where(Category.is_active.is_(True))
                .values(original_is_active=Category.is_active, is_active=False)
                .execution_options(synchronize_session=False)
            )
        else:
            products = await self.db.execute(
                update(Product)
                .where(Product.original_is_active.is_not(None))
                .values(
                    is_active=Product.original_is_active,
                    original_is_active=None,
                )
                .execution_options(synchronize_session=False)
            )
            categories = await self.db.execute(
                update(Category)
                .where(Category.original_is_active.is_not(None))
                .values(
                    is_active=Category.original_is_active,
                    original_is_active=None,
                )
                .execution_options(synchronize_session=False)
            )

        log = CatalogToggleLog(
            action=action.value,
            trigger_type=trigger_type.value,
            affected_products=products.rowcount,
            affected_categories=categories.rowcount,
            notes=f"{trigger_type.value.lower()} {action.value.lower()}",
        )
        self.db.add(log)
        await self.db.commit()

        logger.info(
            f"Catalog {action.value.lower()}d ({trigger_type.value.lower()}): "
            f"{log.affected_products} products, {log.affected_categories} categories"
        )
        return log

    async def recent_logs(self, limit: int = 20):
        result = await self.db.execute(
            select(CatalogToggleLog).order_by(CatalogToggleLog.created_at.desc()).limit(limit)
        )
        return list(result.scalars().all())
