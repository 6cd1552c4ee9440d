"""Core layer - Graph execution and edge condition evaluation."""

from src.core.execution_engine import (
    CycleOrUnreachableNodeError,
    ExecutionError,
    ExecutionTimeoutError,
    HandlerNotFoundError,
    NoStartNodeError,
    WorkflowExecutionEngine,
)

__all__ = [
    "CycleOrUnreachableNodeError",
    "ExecutionError",
    "ExecutionTimeoutError",
    "HandlerNotFoundError",
    "NoStartNodeError",
    "WorkflowExecutionEngine",
]
