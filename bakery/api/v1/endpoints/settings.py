"""
Settings API Endpoints.

Staff control over the scheduled catalog disable/enable.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, Query

from bakery.api.deps import DB, StaffUser, get_catalog_scheduler
from bakery.schemas.settings import (
    CatalogScheduleResponse,
    CatalogScheduleUpdate,
    CatalogToggleLogResponse,
    CatalogToggleRunRequest,
)
from bakery.services.catalog_toggle_service import CatalogSchedule, CatalogToggleService, TriggerType

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/settings", tags=["Settings"])


def _schedule_response(schedule: CatalogSchedule, scheduler) -> CatalogScheduleResponse:
    return CatalogScheduleResponse(
        enabled=schedule.enabled,
        disable_time=schedule.disable_time,
        enable_time=schedule.enable_time,
        timezone=schedule.timezone,
        jobs=scheduler.jobs() if scheduler is not None else [],
    )


@router.get("/catalog-schedule", response_model=CatalogScheduleResponse)
async def get_catalog_schedule(
    db: DB,
    user: StaffUser,
    scheduler=Depends(get_catalog_scheduler),
):
    schedule = await CatalogToggleService(db).get_schedule()
    return _schedule_response(schedule, scheduler)


@router.put("/catalog-schedule", response_model=CatalogScheduleResponse)
async def update_catalog_schedule(
    request: CatalogScheduleUpdate,
    db: DB,
    user: StaffUser,
    scheduler=Depends(get_catalog_scheduler),
):
    schedule = await CatalogToggleService(db).update_schedule(
        enabled=request.enabled,
        disable_time=request.disable_time,
        enable_time=request.enable_time,
        timezone=request.timezone,
    )
    if scheduler is not None:
        await scheduler.reschedule()
    logger.info(f"Catalog schedule changed by {user.id}")
    return _schedule_response(schedule, scheduler)


@router.post("/catalog-schedule/run", response_model=CatalogToggleLogResponse)
async def run_catalog_toggle_now(
    request: CatalogToggleRunRequest,
    db: DB,
    user: StaffUser,
):
    """Disable or re-enable the catalog immediately."""
    log = await CatalogToggleService(db).apply(request.action, TriggerType.MANUAL)
    logger.info(f"Manual catalog {request.action.value.lower()} by {user.id}")
    return log


@router.get("/catalog-schedule/logs", response_model=List[CatalogToggleLogResponse])
async def list_catalog_toggle_logs(
    db: DB,
    user: StaffUser,
    limit: int = Query(20, ge=1, le=100),
):
    return await CatalogToggleService(db).recent_logs(limit)
