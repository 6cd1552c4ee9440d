"""API dependencies for FastAPI dependency injection.

Provides the runtime context and its services to route handlers.
"""

from typing import Annotated

import structlog
from fastapi import Depends, HTTPException, Request, status

from src.core.execution_engine import WorkflowExecutionEngine
from src.nodes.registry import NodeRegistry
from src.runtime import Runtime
from src.services.job_queue import JobQueue
from src.services.scheduler import SchedulerService
from src.services.workflow_store import WorkflowStore

logger = structlog.get_logger()


def get_runtime(request: Request) -> Runtime:
    """Get the runtime built by the application lifespan."""
    runtime: Runtime | None = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Runtime not initialized",
        )
    return runtime


RuntimeDep = Annotated[Runtime, Depends(get_runtime)]


def get_engine(runtime: RuntimeDep) -> WorkflowExecutionEngine:
    return runtime.engine


def get_store(runtime: RuntimeDep) -> WorkflowStore:
    return runtime.store


def get_registry(runtime: RuntimeDep) -> NodeRegistry:
    return runtime.registry


def get_job_queue(runtime: RuntimeDep) -> JobQueue:
    return runtime.queue


def get_durable_queue(runtime: RuntimeDep) -> JobQueue:
    """Get the job queue, rejecting the request in direct mode."""
    if not runtime.queue.available:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Job queue is not available (direct execution mode)",
        )
    return runtime.queue


def get_scheduler(runtime: RuntimeDep) -> SchedulerService:
    return runtime.scheduler


EngineDep = Annotated[WorkflowExecutionEngine, Depends(get_engine)]
StoreDep = Annotated[WorkflowStore, Depends(get_store)]
RegistryDep = Annotated[NodeRegistry, Depends(get_registry)]
JobQueueDep = Annotated[JobQueue, Depends(get_job_queue)]
DurableQueueDep = Annotated[JobQueue, Depends(get_durable_queue)]
SchedulerDep = Annotated[SchedulerService, Depends(get_scheduler)]
