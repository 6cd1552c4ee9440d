"""Data models - workflow definitions, execution state and job types."""

from src.models.execution import (
    ExecutionAccepted,
    ExecutionContext,
    ExecutionMode,
    ExecutionRequest,
    ExecutionResult,
    ExecutionStatus,
    JobPayload,
    JobState,
    JobStatus,
    NodeExecutionResult,
    NodeResultStatus,
    QueueStats,
)
from src.models.node import NodeCategory, NodeDefinition, NodeType
from src.models.schedule import ScheduleCreate, ScheduledJob, ScheduledJobRead
from src.models.workflow import (
    ConditionOperator,
    EdgeCondition,
    ErrorHandling,
    WorkflowDefinition,
    WorkflowEdge,
    WorkflowNode,
    WorkflowSettings,
)

__all__ = [
    "ConditionOperator",
    "EdgeCondition",
    "ErrorHandling",
    "ExecutionAccepted",
    "ExecutionContext",
    "ExecutionMode",
    "ExecutionRequest",
    "ExecutionResult",
    "ExecutionStatus",
    "JobPayload",
    "JobState",
    "JobStatus",
    "NodeCategory",
    "NodeDefinition",
    "NodeExecutionResult",
    "NodeResultStatus",
    "NodeType",
    "QueueStats",
    "ScheduleCreate",
    "ScheduledJob",
    "ScheduledJobRead",
    "WorkflowDefinition",
    "WorkflowEdge",
    "WorkflowNode",
    "WorkflowSettings",
]
