"""Workflow definition store.

In-memory map of registered workflow definitions shared by the engine,
job queue and scheduler.
"""

import threading

import structlog

from src.models.workflow import WorkflowDefinition

logger = structlog.get_logger()


class WorkflowNotFoundError(Exception):
    """No definition is registered under the requested id."""

    def __init__(self, workflow_id: str) -> None:
        # args mirror the constructor so arq can unpickle stored job failures.
        super().__init__(workflow_id)
        self.workflow_id = workflow_id
        self.error_code = "WORKFLOW_NOT_FOUND"

    def __str__(self) -> str:
        return f"Workflow not found: {self.workflow_id}"


class WorkflowStore:
    """Concurrent-read-safe map of workflow id to definition.

    Contract: definitions are frozen, so readers never observe a
    definition changing mid-execution. ``register`` swaps the whole entry
    under a lock; an execution that already fetched the previous
    definition keeps running against it.

    Example usage:
        store = WorkflowStore()
        store.register(definition)
        workflow = store.require("wf_123")
    """

    def __init__(self) -> None:
        self._workflows: dict[str, WorkflowDefinition] = {}
        self._lock = threading.Lock()

    def register(self, workflow: WorkflowDefinition) -> bool:
        """Register or replace a definition.

        Returns:
            True if an existing definition was replaced
        """
        with self._lock:
            replaced = workflow.id in self._workflows
            self._workflows[workflow.id] = workflow

        logger.info(
            "workflow_registered",
            workflow_id=workflow.id,
            node_count=len(workflow.nodes),
            edge_count=len(workflow.edges),
            replaced=replaced,
        )
        return replaced

    def get(self, workflow_id: str) -> WorkflowDefinition | None:
        with self._lock:
            return self._workflows.get(workflow_id)

    def require(self, workflow_id: str) -> WorkflowDefinition:
        """Get a definition or raise.

        Raises:
            WorkflowNotFoundError: If nothing is registered under the id
        """
        workflow = self.get(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(workflow_id)
        return workflow

    def remove(self, workflow_id: str) -> bool:
        with self._lock:
            removed = self._workflows.pop(workflow_id, None) is not None
        if removed:
            logger.info("workflow_unregistered", workflow_id=workflow_id)
        return removed

    def list(self) -> list[WorkflowDefinition]:
        with self._lock:
            return list(self._workflows.values())

    def __contains__(self, workflow_id: object) -> bool:
        with self._lock:
            return workflow_id in self._workflows

    def __len__(self) -> int:
        with self._lock:
            return len(self._workflows)
