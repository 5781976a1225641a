"""
Background Jobs Module

Handles scheduled tasks for:
- Releasing expired stock reservations
- Catalog disable/enable outside opening hours
"""

from bakery.jobs.scheduler import create_scheduler, register_jobs, shutdown_scheduler, get_job_status
from bakery.jobs.order_jobs import release_expired_reservations
from bakery.jobs.catalog_schedule import CatalogAvailabilityScheduler

__all__ = [
    "create_scheduler",
    "register_jobs",
    "shutdown_scheduler",
    "get_job_status",
    "release_expired_reservations",
    "CatalogAvailabilityScheduler",
]
