"""
Scheduled catalog disable/enable.

CatalogAvailabilityScheduler owns two daily cron jobs on an injected
AsyncIOScheduler. The schedule itself lives in ``system_settings`` so the
admin app can change it; call reschedule() after an update.
"""

import logging
from typing import List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bakery.database import get_db_session
from bakery.services.catalog_toggle_service import (
    CatalogSchedule,
    CatalogToggleService,
    ToggleAction,
    TriggerType,
)

logger = logging.getLogger(__name__)

DISABLE_JOB_ID = "catalog_disable"
ENABLE_JOB_ID = "catalog_enable"


async def run_catalog_toggle(
    session_factory: async_sessionmaker[AsyncSession],
    action: ToggleAction,
) -> None:
    """Job entry point: apply one scheduled toggle."""
    try:
        async with get_db_session(session_factory) as session:
            await CatalogToggleService(session).apply(action, TriggerType.SCHEDULED)
    except Exception:
        logger.exception(f"Scheduled catalog {action.value.lower()} failed")
        raise


class CatalogAvailabilityScheduler:
    def __init__(self, scheduler: AsyncIOScheduler, session_factory: async_sessionmaker[AsyncSession]):
        self.scheduler = scheduler
        self.session_factory = session_factory
        self.schedule: Optional[CatalogSchedule] = None
        self._started = False

    @property
    def is_running(self) -> bool:
        return self._started and self.scheduler.get_job(DISABLE_JOB_ID) is not None

    async def _load_schedule(self) -> CatalogSchedule:
        async with get_db_session(self.session_factory) as session:
            return await CatalogToggleService(session).get_schedule()

    def _add_jobs(self, schedule: CatalogSchedule) -> None:
        for job_id, action, at in (
            (DISABLE_JOB_ID, ToggleAction.DISABLE, schedule.disable_time),
            (ENABLE_JOB_ID, ToggleAction.ENABLE, schedule.enable_time),
        ):
            hour, minute, second = CatalogSchedule.parse_time(at)
            self.scheduler.add_job(
                run_catalog_toggle,
                CronTrigger(hour=hour, minute=minute, second=second, timezone=schedule.timezone),
                args=[self.session_factory, action],
                id=job_id,
                name=f'Catalog {action.value.title()}',
                replace_existing=True,
            )

    def _remove_jobs(self) -> None:
        for job_id in (DISABLE_JOB_ID, ENABLE_JOB_ID):
            if self.scheduler.get_job(job_id) is not None:
                self.scheduler.remove_job(job_id)

    async def start(self) -> None:
        """Load the persisted schedule and register its jobs if it is enabled."""
        self.schedule = await self._load_schedule()
        self._started = True
        if not self.schedule.enabled:
            logger.info("Catalog schedule is disabled; no jobs registered")
            return

        self._add_jobs(self.schedule)
        logger.info(
            f"Catalog schedule active: disable at {self.schedule.disable_time}, "
            f"enable at {self.schedule.enable_time} ({self.schedule.timezone})"
        )

    def stop(self) -> None:
        self._remove_jobs()
        self._started = False
        logger.info("Catalog schedule stopped")

    async def reschedule(self) -> CatalogSchedule:
        """Re-read the settings store and replace the jobs."""
        self._remove_jobs()
        await self.start()
        return self.schedule

    def jobs(self) -> List[dict]:
        return [
            {
                'id': job.id,
                'name': job.name,
                'trigger': str(job.trigger),
            }
            for job in (self.scheduler.get_job(DISABLE_JOB_ID), self.scheduler.get_job(ENABLE_JOB_ID))
            if job is not None
        ]
