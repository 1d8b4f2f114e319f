"""HTTP routes that trigger and inspect schedule processing."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from ..dependencies import get_job_runner, get_scheduler
from ..jobs import AvailabilityJobRunner, ProcessingAlreadyRunning
from ..scheduler import AvailabilityScheduler
from ..schemas import CleanupResponse, JobStatusResponse, ProcessingResultResponse, RescheduleResponse
from .serialization import serialize_job_result, serialize_job_status

router = APIRouter(prefix="/availability-schedules", tags=["availability-schedules"])


@router.post("/process", response_model=ProcessingResultResponse)
async def process_schedules(
    reschedule: bool = False,
    runner: AvailabilityJobRunner = Depends(get_job_runner),
) -> ProcessingResultResponse:
    try:
        result = await runner.run_once(reschedule=reschedule)
    except ProcessingAlreadyRunning as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    return serialize_job_result(result)


@router.post("/reschedule", response_model=RescheduleResponse)
async def reschedule_rules(
    scheduler: AvailabilityScheduler = Depends(get_scheduler),
) -> RescheduleResponse:
    count = await scheduler.reschedule_all_rules()
    return RescheduleResponse(rescheduled=count)


@router.delete("/processed", response_model=CleanupResponse)
async def cleanup_processed(
    request: Request,
    days_old: int | None = Query(default=None, alias="daysOld", ge=1),
    scheduler: AvailabilityScheduler = Depends(get_scheduler),
) -> CleanupResponse:
    retention = days_old or request.app.state.settings.availability_schedule_retention_days
    deleted = await scheduler.cleanup_old_schedules(retention)
    return CleanupResponse(deleted=deleted)


@router.get("/status", response_model=JobStatusResponse)
async def job_status(runner: AvailabilityJobRunner = Depends(get_job_runner)) -> JobStatusResponse:
    return serialize_job_status(runner.status())
