"""Job queue API endpoints.

Status, statistics and management of queued executions. Every endpoint
answers 503 when the process runs in direct mode.
"""

from typing import Annotated, Any

import structlog
from fastapi import APIRouter, HTTPException, Query, status

from src.api.deps import DurableQueueDep
from src.config import settings
from src.models.execution import JobStatus, QueueStats

logger = structlog.get_logger()

router = APIRouter()


@router.get("/stats", response_model=QueueStats)
async def get_stats(queue: DurableQueueDep) -> QueueStats:
    """Get job counts per state."""
    stats = await queue.get_stats()
    return stats or QueueStats()


@router.post("/pause", response_model=dict[str, Any])
async def pause_queue(queue: DurableQueueDep) -> dict[str, Any]:
    """Stop processing new jobs. Queued jobs are kept."""
    await queue.pause()
    return {"paused": True}


@router.post("/resume", response_model=dict[str, Any])
async def resume_queue(queue: DurableQueueDep) -> dict[str, Any]:
    """Resume processing jobs."""
    await queue.resume()
    return {"paused": False}


@router.post("/cleanup", response_model=dict[str, Any])
async def cleanup_jobs(
    queue: DurableQueueDep,
    older_than: Annotated[float | None, Query(gt=0, description="Seconds")] = None,
) -> dict[str, Any]:
    """Delete stored job results.

    Completed results older than ``older_than`` seconds and failed results
    older than seven times that are removed.

    Args:
        queue: Job queue
        older_than: Age threshold in seconds (defaults to the completed retention)

    Returns:
        Number of removed results
    """
    threshold = older_than or settings.keep_completed
    removed = await queue.cleanup(threshold)
    return {"removed": removed, "older_than": threshold}


@router.get("/{job_id}", response_model=JobStatus)
async def get_job(job_id: str, queue: DurableQueueDep) -> JobStatus:
    """Get a job's state, result or error."""
    job_status = await queue.get_job_status(job_id)
    if job_status is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Job not found: {job_id}",
        )
    return job_status


@router.post("/{job_id}/retry", response_model=dict[str, Any])
async def retry_job(job_id: str, queue: DurableQueueDep) -> dict[str, Any]:
    """Re-enqueue a failed job."""
    if not await queue.retry(job_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Job {job_id} is unknown or has not failed",
        )
    return {"job_id": job_id, "retried": True}


@router.post("/{job_id}/cancel", response_model=dict[str, Any])
async def cancel_job(job_id: str, queue: DurableQueueDep) -> dict[str, Any]:
    """Remove a waiting or delayed job."""
    if not await queue.cancel(job_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Job {job_id} is unknown, running or finished",
        )
    return {"job_id": job_id, "cancelled": True}
