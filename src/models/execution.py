"""Execution models.

Runtime state of one workflow execution, the result envelope returned to
callers, and the wire-level job types exchanged with the queue backend.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Mapping
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    """Get current UTC time with timezone info."""
    return datetime.now(timezone.utc)


def new_execution_id() -> str:
    return f"exec_{uuid4()}"


class ExecutionMode(str, Enum):
    """How an execution was triggered."""

    MANUAL = "manual"
    WEBHOOK = "webhook"
    SCHEDULE = "schedule"
    RETRY = "retry"
    SUBWORKFLOW = "subworkflow"


class ExecutionStatus(str, Enum):
    """Overall execution outcome."""

    SUCCESS = "success"
    FAILED = "failed"


class NodeResultStatus(str, Enum):
    """Outcome of a single node."""

    SUCCESS = "success"
    ERROR = "error"
    SKIPPED = "skipped"


class NodeExecutionResult(BaseModel):
    """Immutable record of one node's run, appended to the execution log."""

    model_config = ConfigDict(frozen=True)

    node_id: str
    status: NodeResultStatus
    data: Any = None
    error: str | None = None
    error_code: str | None = None
    started_at: datetime
    finished_at: datetime
    logs: tuple[str, ...] = ()

    @property
    def duration_ms(self) -> int:
        """Node run time in milliseconds."""
        return int((self.finished_at - self.started_at).total_seconds() * 1000)


CredentialResolver = Callable[[str], Awaitable[dict[str, Any]]]


class NodeOutputConflictError(Exception):
    """A node tried to record a second output in one execution."""


@dataclass
class ExecutionContext:
    """State owned by exactly one execution.

    Node outputs are append-only: one entry per executed node. Handlers get
    a read-only view through ``node_outputs``; only the engine records.
    Credentials are resolved lazily and never persisted.
    """

    workflow_id: str
    execution_id: str = field(default_factory=new_execution_id)
    user_id: str | None = None
    mode: ExecutionMode = ExecutionMode.MANUAL
    started_at: datetime = field(default_factory=utc_now)
    input: Any = None
    variables: dict[str, Any] = field(default_factory=dict)
    credential_resolver: CredentialResolver | None = field(default=None, repr=False)
    _outputs: dict[str, Any] = field(default_factory=dict, repr=False)
    _executed: set[str] = field(default_factory=set, repr=False)
    _credentials: dict[str, dict[str, Any]] = field(default_factory=dict, repr=False)

    @property
    def node_outputs(self) -> Mapping[str, Any]:
        return MappingProxyType(self._outputs)

    @property
    def executed_nodes(self) -> frozenset[str]:
        return frozenset(self._executed)

    def has_executed(self, node_id: str) -> bool:
        return node_id in self._executed

    def seed_output(self, node_id: str, value: Any) -> None:
        """Pre-populate a start node's output with the execution input."""
        if node_id in self._executed:
            raise NodeOutputConflictError(f"Node '{node_id}' already executed")
        self._outputs[node_id] = value

    def record_output(self, node_id: str, value: Any) -> None:
        if node_id in self._executed:
            raise NodeOutputConflictError(f"Node '{node_id}' already executed")
        self._outputs[node_id] = value

    def mark_executed(self, node_id: str) -> None:
        if node_id in self._executed:
            raise NodeOutputConflictError(f"Node '{node_id}' already executed")
        self._executed.add(node_id)

    async def get_credential(self, credential_id: str) -> dict[str, Any]:
        """Resolve credential data on first use and cache it for this execution.

        Raises:
            KeyError: If no resolver is configured
        """
        if credential_id not in self._credentials:
            if self.credential_resolver is None:
                raise KeyError(f"No credential resolver for '{credential_id}'")
            self._credentials[credential_id] = await self.credential_resolver(credential_id)
        return self._credentials[credential_id]


class ExecutionResult(BaseModel):
    """Envelope returned for every execution, successful or not."""

    execution_id: str
    workflow_id: str
    status: ExecutionStatus
    mode: ExecutionMode = ExecutionMode.MANUAL
    results: list[NodeExecutionResult] = Field(default_factory=list)
    output: Any = None
    error: str | None = None
    error_code: str | None = None
    node_outputs: dict[str, Any] = Field(default_factory=dict)
    started_at: datetime = Field(default_factory=utc_now)
    finished_at: datetime | None = None

    @property
    def duration_ms(self) -> int | None:
        """Execution duration in milliseconds."""
        if self.finished_at is None:
            return None
        return int((self.finished_at - self.started_at).total_seconds() * 1000)

    def result_for(self, node_id: str) -> NodeExecutionResult | None:
        """Get the recorded result of a node, if any."""
        for result in self.results:
            if result.node_id == node_id:
                return result
        return None


class ExecutionRequest(BaseModel):
    """Execution request from a CLI, webhook or manual trigger."""

    workflow_id: str
    input: Any = None
    user_id: str | None = None
    mode: ExecutionMode = ExecutionMode.MANUAL
    priority: int | None = None
    delay: float | None = Field(default=None, ge=0, description="Seconds")
    job_id: str | None = None


class WorkflowExecuteInput(BaseModel):
    """Body of an inline execution of a known workflow."""

    input: Any = None
    user_id: str | None = None


class JobPayload(BaseModel):
    """Wire-level unit handed to the queue backend."""

    workflow_id: str
    execution_id: str
    input: Any = None
    user_id: str | None = None
    mode: ExecutionMode = ExecutionMode.MANUAL
    priority: int | None = None


class JobState(str, Enum):
    """Lifecycle state of a queued job."""

    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    DELAYED = "delayed"


class JobStatus(BaseModel):
    """Job status query response."""

    job_id: str
    state: JobState
    progress: int = 0
    data: Any = None
    error: str | None = None
    attempts: int = 0


class QueueStats(BaseModel):
    """Job counts per state."""

    waiting: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    delayed: int = 0


class ExecutionAccepted(BaseModel):
    """Response to an execution request.

    ``result`` is only present when the request ran inline (direct mode).
    """

    execution_id: str
    job_id: str
    queued: bool
    result: ExecutionResult | None = None
