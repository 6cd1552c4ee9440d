"""Sub-workflow node.

Runs another registered workflow as a single step.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog

from src.models.execution import ExecutionContext, ExecutionMode, ExecutionStatus
from src.models.node import NodeCategory, NodeDefinition, NodeType
from src.models.workflow import WorkflowNode
from src.nodes.base import BaseNode, NodeExecutionError, NodeValidationError

if TYPE_CHECKING:
    from src.core.execution_engine import WorkflowExecutionEngine

logger = structlog.get_logger()

DEPTH_VARIABLE = "subworkflow_depth"
MAX_DEPTH = 10


@dataclass
class SubworkflowInput:
    """Validated input for the sub-workflow node."""

    workflow_id: str
    data: Any


class SubworkflowNode(BaseNode[SubworkflowInput]):
    """Execute a registered workflow with ``mode=subworkflow``.

    The child's output becomes this node's output; a failed child fails
    the node. Nesting is limited to ``MAX_DEPTH`` levels.

    Example config:
        {"workflowId": "wf_enrich_customer", "input": {"source": "crm"}}
    """

    def __init__(self, engine: "WorkflowExecutionEngine") -> None:
        self._engine = engine

    def get_definition(self) -> NodeDefinition:
        """Get node definition."""
        return NodeDefinition(
            node_type=NodeType.ACTION_SUBWORKFLOW,
            display_name="Sub-workflow",
            description="Run another workflow and use its output",
            category=NodeCategory.UTILITY,
            config_keys=["workflowId", "input"],
            tags=["subworkflow", "compose"],
        )

    def validate_input(self, node: WorkflowNode, input_data: Any) -> SubworkflowInput:
        """Validate the child workflow reference."""
        workflow_id = node.config.get("workflowId") or node.config.get("workflow_id")
        if not workflow_id or not isinstance(workflow_id, str):
            raise NodeValidationError("Workflow id is required", field="workflowId")

        data = node.config["input"] if "input" in node.config else input_data
        return SubworkflowInput(workflow_id=workflow_id, data=data)

    async def execute(
        self,
        node: WorkflowNode,
        input_data: SubworkflowInput,
        context: ExecutionContext,
    ) -> Any:
        """Run the child workflow."""
        depth = int(context.variables.get(DEPTH_VARIABLE, 0)) + 1
        if depth > MAX_DEPTH:
            raise NodeExecutionError(
                message=f"Sub-workflow nesting exceeds {MAX_DEPTH} levels",
                node_id=node.id,
                node_type=node.type.value,
                error_code="SUBWORKFLOW_DEPTH_EXCEEDED",
            )

        logger.info(
            "subworkflow_starting",
            parent_execution_id=context.execution_id,
            workflow_id=input_data.workflow_id,
            depth=depth,
        )

        result = await self._engine.execute_by_id(
            input_data.workflow_id,
            input_data.data,
            user_id=context.user_id,
            mode=ExecutionMode.SUBWORKFLOW,
            variables={DEPTH_VARIABLE: depth},
        )

        if result.status is ExecutionStatus.FAILED:
            raise NodeExecutionError(
                message=f"Sub-workflow {input_data.workflow_id} failed: {result.error}",
                node_id=node.id,
                node_type=node.type.value,
                error_code="SUBWORKFLOW_FAILED",
                details={"execution_id": result.execution_id},
            )

        return result.output
