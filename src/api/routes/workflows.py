"""Workflow API endpoints.

Registers workflow definitions with the runtime and runs them inline.
"""

import structlog
from fastapi import APIRouter, HTTPException, status

from src.api.deps import EngineDep, StoreDep
from src.models.execution import ExecutionResult, WorkflowExecuteInput
from src.models.workflow import WorkflowDefinition
from src.services.workflow_store import WorkflowNotFoundError

logger = structlog.get_logger()

router = APIRouter()


@router.get("", response_model=list[WorkflowDefinition])
async def list_workflows(store: StoreDep) -> list[WorkflowDefinition]:
    """List registered workflows."""
    return store.list()


@router.post("", response_model=WorkflowDefinition, status_code=status.HTTP_201_CREATED)
async def register_workflow(
    store: StoreDep,
    data: WorkflowDefinition,
) -> WorkflowDefinition:
    """Register a workflow definition.

    Registering an existing id replaces the definition; executions already
    running keep the version they started with.

    Args:
        store: Workflow store
        data: Workflow definition

    Returns:
        Registered definition
    """
    store.register(data)
    return data


@router.put("/{workflow_id}", response_model=WorkflowDefinition)
async def put_workflow(
    workflow_id: str,
    store: StoreDep,
    data: WorkflowDefinition,
) -> WorkflowDefinition:
    """Register or replace a workflow under an explicit id."""
    if data.id != workflow_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Body id '{data.id}' does not match path id '{workflow_id}'",
        )
    store.register(data)
    return data


@router.get("/{workflow_id}", response_model=WorkflowDefinition)
async def get_workflow(workflow_id: str, store: StoreDep) -> WorkflowDefinition:
    """Get a registered workflow."""
    try:
        return store.require(workflow_id)
    except WorkflowNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(e),
        ) from e


@router.delete("/{workflow_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_workflow(workflow_id: str, store: StoreDep) -> None:
    """Unregister a workflow."""
    if not store.remove(workflow_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Workflow not found: {workflow_id}",
        )


@router.post("/{workflow_id}/execute", response_model=ExecutionResult)
async def execute_workflow(
    workflow_id: str,
    engine: EngineDep,
    data: WorkflowExecuteInput | None = None,
) -> ExecutionResult:
    """Execute a workflow inline and return the result envelope.

    Node and graph failures are reported in the envelope (``status=failed``),
    not as HTTP errors.

    Args:
        workflow_id: Workflow to run
        engine: Execution engine
        data: Optional execution input and user id

    Returns:
        Execution result
    """
    data = data or WorkflowExecuteInput()
    logger.info("workflow_execute_requested", workflow_id=workflow_id, user_id=data.user_id)

    try:
        return await engine.execute_by_id(workflow_id, data.input, user_id=data.user_id)
    except WorkflowNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(e),
        ) from e
