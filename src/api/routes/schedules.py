"""Schedule API endpoints.

Create and manage cron triggers for registered workflows.
"""

import structlog
from fastapi import APIRouter, HTTPException, status

from src.api.deps import SchedulerDep
from src.models.schedule import CronValidation, ScheduleCreate, ScheduledJobRead
from src.services.scheduler import (
    InvalidCronExpression,
    InvalidTimezone,
    ScheduledJobNotFoundError,
    SchedulerService,
)

logger = structlog.get_logger()

router = APIRouter()


def _require_job(scheduler: SchedulerService, job_id: str) -> ScheduledJobRead:
    job = scheduler.get(job_id)
    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(ScheduledJobNotFoundError(job_id)),
        )
    return job.to_read()


@router.post("", response_model=ScheduledJobRead, status_code=status.HTTP_201_CREATED)
async def create_schedule(
    scheduler: SchedulerDep,
    data: ScheduleCreate,
) -> ScheduledJobRead:
    """Schedule a workflow on a cron expression.

    Args:
        scheduler: Scheduler service
        data: Workflow id, five-field cron expression and optional timezone

    Returns:
        Created scheduled job
    """
    try:
        job_id = scheduler.schedule(data.workflow_id, data.cron_expression, data.timezone)
    except (InvalidCronExpression, InvalidTimezone) as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        ) from e

    return _require_job(scheduler, job_id)


@router.get("", response_model=list[ScheduledJobRead])
async def list_schedules(scheduler: SchedulerDep) -> list[ScheduledJobRead]:
    """List all scheduled jobs."""
    return [job.to_read() for job in scheduler.list()]


@router.post("/validate", response_model=CronValidation)
async def validate_cron(scheduler: SchedulerDep, data: CronValidation) -> CronValidation:
    """Validate a cron expression and describe it."""
    valid = scheduler.validate_cron(data.expression)
    return CronValidation(
        expression=data.expression,
        valid=valid,
        description=scheduler.describe_cron(data.expression) if valid else None,
    )


@router.get("/{job_id}", response_model=ScheduledJobRead)
async def get_schedule(job_id: str, scheduler: SchedulerDep) -> ScheduledJobRead:
    """Get a scheduled job."""
    return _require_job(scheduler, job_id)


@router.post("/{job_id}/stop", response_model=ScheduledJobRead)
async def stop_schedule(job_id: str, scheduler: SchedulerDep) -> ScheduledJobRead:
    """Deactivate a scheduled job."""
    scheduler.stop(job_id)
    return _require_job(scheduler, job_id)


@router.post("/{job_id}/resume", response_model=ScheduledJobRead)
async def resume_schedule(job_id: str, scheduler: SchedulerDep) -> ScheduledJobRead:
    """Reactivate a stopped job."""
    scheduler.resume(job_id)
    return _require_job(scheduler, job_id)


@router.delete("/{job_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_schedule(job_id: str, scheduler: SchedulerDep) -> None:
    """Remove a scheduled job."""
    if not scheduler.remove(job_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(ScheduledJobNotFoundError(job_id)),
        )
