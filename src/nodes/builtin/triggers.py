"""Trigger nodes.

Triggers start an execution and hand the execution input downstream.
"""

from typing import Any

from src.models.execution import ExecutionContext
from src.models.node import NodeCategory, NodeDefinition, NodeType
from src.models.workflow import WorkflowNode
from src.nodes.base import BaseNode

TRIGGER_TYPES: tuple[NodeType, ...] = tuple(t for t in NodeType if t.is_trigger)


class TriggerNode(BaseNode[Any]):
    """Pass-through handler shared by every trigger type.

    A trigger's input is the execution input (or its seeded output), so
    returning it unchanged makes it available to downstream nodes.
    """

    def __init__(self, node_type: NodeType = NodeType.TRIGGER_MANUAL) -> None:
        if not node_type.is_trigger:
            raise ValueError(f"{node_type.value} is not a trigger type")
        self._node_type = node_type

    def get_definition(self) -> NodeDefinition:
        """Get node definition."""
        return NodeDefinition(
            node_type=self._node_type,
            display_name=self._node_type.value.replace("_", " ").title(),
            description="Starts the workflow and passes the execution input on",
            category=NodeCategory.TRIGGER,
            tags=["trigger"],
        )

    async def execute(
        self,
        node: WorkflowNode,
        input_data: Any,
        context: ExecutionContext,
    ) -> Any:
        """Return the trigger input unchanged."""
        return {} if input_data is None else input_data
