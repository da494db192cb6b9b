"""
Scheduled trigger routes
Called once a day by an external cron with `Authorization: Bearer <CRON_SECRET>`
"""
from dataclasses import asdict

from fastapi import APIRouter, Depends

from routewise.services.container import ServiceContainer, get_container
from routewise.utils.auth import verify_cron_secret

router = APIRouter(prefix="/cron", tags=["Cron"], dependencies=[Depends(verify_cron_secret)])


@router.get("/reschedule", response_model=dict)
async def reschedule_underfilled_trips(container: ServiceContainer = Depends(get_container)):
    """Move passengers of yesterday's underfilled trips to today"""
    report = await container.rescheduler.reschedule_underfilled()
    return {"success": True, **asdict(report)}


@router.get("/cleanup", response_model=dict)
async def cleanup_old_trips(container: ServiceContainer = Depends(get_container)):
    """Delete trips older than the retention window"""
    deleted = await container.synchronizer.cleanup_past_trips()
    return {"success": True, "deleted_trips": deleted}
