"""Webhook trigger endpoint.

Turns an inbound HTTP request into a ``mode=webhook`` execution.
"""

import json
from typing import Any

import structlog
from fastapi import APIRouter, HTTPException, Request, Response, status

from src.api.deps import JobQueueDep
from src.models.execution import ExecutionAccepted, ExecutionMode, utc_now
from src.services.job_queue import JobQueueError
from src.services.workflow_store import WorkflowNotFoundError

logger = structlog.get_logger()

router = APIRouter()


async def _read_body(request: Request) -> Any:
    raw = await request.body()
    if not raw:
        return None
    if "json" in request.headers.get("content-type", ""):
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Invalid JSON body: {e.msg}",
            ) from e
    return raw.decode("utf-8", errors="replace")


@router.post(
    "/webhook/{workflow_id}",
    response_model=ExecutionAccepted,
    status_code=status.HTTP_202_ACCEPTED,
)
async def trigger_webhook(
    workflow_id: str,
    request: Request,
    response: Response,
    queue: JobQueueDep,
) -> ExecutionAccepted:
    """Start a workflow from an inbound webhook.

    The execution input describes the request:
    ``{method, path, headers, query, body, timestamp}``.

    Args:
        workflow_id: Workflow to trigger
        request: Inbound request
        response: Outgoing response (200 when run inline)
        queue: Job queue

    Returns:
        Accepted execution
    """
    input_data = {
        "method": request.method,
        "path": request.url.path,
        "headers": dict(request.headers),
        "query": dict(request.query_params),
        "body": await _read_body(request),
        "timestamp": utc_now().isoformat(),
    }

    logger.info("webhook_received", workflow_id=workflow_id, path=request.url.path)

    try:
        accepted = await queue.submit(workflow_id, input_data, mode=ExecutionMode.WEBHOOK)
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
