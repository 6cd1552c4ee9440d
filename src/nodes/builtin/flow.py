"""Flow control nodes.

Filtering, waiting and shaping the response of a workflow.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Mapping

from pydantic import ValidationError

from src.core.conditions import evaluate_all
from src.models.execution import ExecutionContext
from src.models.node import NodeCategory, NodeDefinition, NodeType
from src.models.workflow import EdgeCondition, WorkflowNode
from src.nodes.base import BaseNode, NodeValidationError

UNIT_SECONDS = {
    "seconds": 1,
    "minutes": 60,
    "hours": 3600,
    "days": 86400,
}

# Upper bound for a single wait; longer pauses belong in a scheduled trigger.
MAX_WAIT_SECONDS = 3600


@dataclass
class FilterInput:
    """Validated input for the filter node."""

    data: Any
    conditions: list[EdgeCondition]
    combine: str


class FilterNode(BaseNode[FilterInput]):
    """Evaluate conditions against the input and flag the result.

    Output is the input plus ``passed``; downstream edges usually gate on
    ``{"field": "passed", "operator": "eq", "value": true}``.
    """

    def __init__(self, node_type: NodeType = NodeType.ACTION_FILTER) -> None:
        self._node_type = node_type

    def get_definition(self) -> NodeDefinition:
        """Get node definition."""
        return NodeDefinition(
            node_type=self._node_type,
            display_name="Filter" if self._node_type is NodeType.ACTION_FILTER else "Condition",
            description="Check the data against conditions",
            category=NodeCategory.FLOW,
            config_keys=["conditions", "combine"],
            tags=["filter", "condition", "branch"],
        )

    def validate_input(self, node: WorkflowNode, input_data: Any) -> FilterInput:
        """Parse the configured conditions."""
        raw = node.config.get("conditions", [])
        if not isinstance(raw, list):
            raise NodeValidationError("Conditions must be a list", field="conditions")

        try:
            conditions = [EdgeCondition.model_validate(c) for c in raw]
        except ValidationError as e:
            raise NodeValidationError(f"Invalid condition: {e}", field="conditions") from e

        combine = node.config.get("combine", "all")
        if combine not in ("all", "any"):
            raise NodeValidationError("Combine must be 'all' or 'any'", field="combine")

        return FilterInput(data=input_data, conditions=conditions, combine=combine)

    async def execute(
        self,
        node: WorkflowNode,
        input_data: FilterInput,
        context: ExecutionContext,
    ) -> dict[str, Any]:
        """Evaluate conditions."""
        passed = evaluate_all(input_data.conditions, input_data.data, input_data.combine)
        if isinstance(input_data.data, Mapping):
            return {**input_data.data, "passed": passed}
        return {"value": input_data.data, "passed": passed}


@dataclass
class WaitInput:
    """Validated input for the wait node."""

    seconds: float
    data: Any


class WaitNode(BaseNode[WaitInput]):
    """Pause the execution, then pass the input through."""

    def get_definition(self) -> NodeDefinition:
        """Get node definition."""
        return NodeDefinition(
            node_type=NodeType.ACTION_WAIT,
            display_name="Wait",
            description="Wait for a fixed duration",
            category=NodeCategory.FLOW,
            config_keys=["duration", "unit"],
            tags=["wait", "delay"],
        )

    def validate_input(self, node: WorkflowNode, input_data: Any) -> WaitInput:
        """Convert the configured duration to seconds."""
        duration = node.config.get("duration", 0)
        unit = node.config.get("unit", "seconds")

        if isinstance(duration, bool) or not isinstance(duration, (int, float)) or duration < 0:
            raise NodeValidationError("Duration must be a non-negative number", field="duration")
        if unit not in UNIT_SECONDS:
            raise NodeValidationError(
                f"Unit must be one of: {', '.join(UNIT_SECONDS)}", field="unit"
            )

        seconds = duration * UNIT_SECONDS[unit]
        if seconds > MAX_WAIT_SECONDS:
            raise NodeValidationError(
                f"Wait may not exceed {MAX_WAIT_SECONDS} seconds", field="duration"
            )
        return WaitInput(seconds=seconds, data=input_data)

    async def execute(
        self,
        node: WorkflowNode,
        input_data: WaitInput,
        context: ExecutionContext,
    ) -> Any:
        """Sleep and return the gathered input."""
        await asyncio.sleep(input_data.seconds)
        return {} if input_data.data is None else input_data.data


class RespondNode(BaseNode[Any]):
    """Shape the final output of a workflow.

    With ``config.fields`` (a list of keys) only those keys are kept.
    """

    def __init__(self, node_type: NodeType = NodeType.ACTION_RESPOND) -> None:
        self._node_type = node_type

    def get_definition(self) -> NodeDefinition:
        """Get node definition."""
        return NodeDefinition(
            node_type=self._node_type,
            display_name="Respond" if self._node_type is NodeType.ACTION_RESPOND else "Output",
            description="Return data as the workflow result",
            category=NodeCategory.FLOW,
            config_keys=["fields"],
            tags=["output", "respond"],
        )

    def validate_input(self, node: WorkflowNode, input_data: Any) -> Any:
        """Check the projection list."""
        fields = node.config.get("fields")
        if fields is not None and not (
            isinstance(fields, list) and all(isinstance(f, str) for f in fields)
        ):
            raise NodeValidationError("Fields must be a list of keys", field="fields")
        return input_data

    async def execute(
        self,
        node: WorkflowNode,
        input_data: Any,
        context: ExecutionContext,
    ) -> Any:
        """Project or pass through the input."""
        fields = node.config.get("fields")
        if fields is None or not isinstance(input_data, Mapping):
            return {} if input_data is None else input_data
        return {k: input_data[k] for k in fields if k in input_data}
