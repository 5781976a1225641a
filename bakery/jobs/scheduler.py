"""
APScheduler Configuration

Background jobs run inside the API process on the asyncio loop:
- Reservation expiry sweep (interval)
- Catalog disable/enable (daily cron, see catalog_schedule)

The scheduler is created by the application lifespan and passed to the
objects that register jobs on it; nothing here is a module-level instance.
"""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bakery.config import settings
from bakery.jobs.order_jobs import release_expired_reservations

logger = logging.getLogger(__name__)

RESERVATION_SWEEP_JOB_ID = "release_expired_reservations"

# Job defaults
JOB_DEFAULTS = {
    'coalesce': True,  # Combine multiple pending executions into one
    'max_instances': 1,  # Only one instance of each job at a time
    'misfire_grace_time': 60,  # Allow 60 seconds grace time for misfires
}


def create_scheduler(timezone: str = None) -> AsyncIOScheduler:
    return AsyncIOScheduler(
        jobstores={'default': MemoryJobStore()},
        executors={'default': AsyncIOExecutor()},
        job_defaults=JOB_DEFAULTS,
        timezone=timezone or settings.SCHEDULER_TIMEZONE,
    )


def register_jobs(scheduler: AsyncIOScheduler, session_factory: async_sessionmaker[AsyncSession]) -> None:
    """Add the interval jobs."""
    scheduler.add_job(
        release_expired_reservations,
        'interval',
        minutes=settings.RESERVATION_SWEEP_INTERVAL_MINUTES,
        args=[session_factory],
        id=RESERVATION_SWEEP_JOB_ID,
        name='Release Expired Reservations',
        replace_existing=True,
    )


def shutdown_scheduler(scheduler: AsyncIOScheduler) -> None:
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Background job scheduler stopped")


def get_job_status(scheduler: AsyncIOScheduler):
    """Get status of all scheduled jobs."""
    return [
        {
            'id': job.id,
            'name': job.name,
            'next_run_time': str(job.next_run_time) if getattr(job, 'next_run_time', None) else None,
            'trigger': str(job.trigger),
        }
        for job in scheduler.get_jobs()
    ]
