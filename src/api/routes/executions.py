"""Execution API endpoints.

Accepts execution requests and hands them to the job queue.
"""

import structlog
from fastapi import APIRouter, HTTPException, Response, status

from src.api.deps import JobQueueDep
from src.models.execution import ExecutionAccepted, ExecutionRequest
from src.services.job_queue import JobQueueError
from src.services.workflow_store import WorkflowNotFoundError

logger = structlog.get_logger()

router = APIRouter()


@router.post(
    "",
    response_model=ExecutionAccepted,
    status_code=status.HTTP_202_ACCEPTED,
    responses={200: {"model": ExecutionAccepted, "description": "Executed inline (direct mode)"}},
)
async def create_execution(
    queue: JobQueueDep,
    data: ExecutionRequest,
    response: Response,
) -> ExecutionAccepted:
    """Submit an execution request.

    Returns 202 with the job id when the request was queued, or 200 with
    the full result when it ran inline because no queue is available.

    Args:
        queue: Job queue
        data: Execution request
        response: Outgoing response (status code is set per mode)

    Returns:
        Accepted execution
    """
    logger.info(
        "execution_requested",
        workflow_id=data.workflow_id,
        user_id=data.user_id,
        mode=data.mode.value,
    )

    try:
        accepted = await queue.submit(
            data.workflow_id,
            data.input,
            user_id=data.user_id,
            mode=data.mode,
            priority=data.priority,
            delay=data.delay,
            job_id=data.job_id,
        )
    except WorkflowNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(e),
        ) from e
    except JobQueueError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(e),
        ) from e

    if not accepted.queued:
        response.status_code = status.HTTP_200_OK
    return accepted
