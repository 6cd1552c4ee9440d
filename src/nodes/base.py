"""Base node interface.

Defines the abstract base class for node handlers and the callable
protocol accepted by the registry.
"""

import inspect
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Generic, TypeVar, Union

import structlog

from src.models.execution import ExecutionContext
from src.models.node import NodeCategory, NodeDefinition, NodeType
from src.models.workflow import WorkflowNode

logger = structlog.get_logger()

# Type variable for validated input
InputT = TypeVar("InputT")

HandlerFunc = Callable[[WorkflowNode, Any, ExecutionContext], Union[Any, Awaitable[Any]]]


class NodeExecutionError(Exception):
    """Error during node execution."""

    def __init__(
        self,
        message: str,
        node_id: str,
        node_type: str = "",
        error_code: str = "NODE_ERROR",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.node_id = node_id
        self.node_type = node_type
        self.error_code = error_code
        self.details = details or {}


class NodeValidationError(Exception):
    """Error validating node input or configuration."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class BaseNode(ABC, Generic[InputT]):
    """Abstract base class for node handlers.

    All handlers must implement:
    - get_definition(): Returns handler metadata
    - execute(): Produces the node's output

    Handlers must not touch other nodes' outputs; the context only exposes
    a read-only view of them.

    Example implementation:
        class UppercaseNode(BaseNode[dict]):
            def get_definition(self) -> NodeDefinition:
                return NodeDefinition(
                    node_type=NodeType.ACTION_FUNCTION,
                    display_name="Uppercase",
                    ...
                )

            async def execute(self, node, input_data, context):
                return {k: str(v).upper() for k, v in input_data.items()}
    """

    @abstractmethod
    def get_definition(self) -> NodeDefinition:
        """Get the handler definition with metadata.

        Returns:
            NodeDefinition with type, category, config keys, etc.
        """
        pass

    @abstractmethod
    async def execute(
        self,
        node: WorkflowNode,
        input_data: InputT,
        context: ExecutionContext,
    ) -> Any:
        """Execute the node's operation.

        Args:
            node: Node being executed (type, config, credential reference)
            input_data: Validated input gathered from upstream nodes
            context: Execution context

        Returns:
            Node output

        Raises:
            NodeExecutionError: If execution fails
            NodeValidationError: If input validation fails
        """
        pass

    def validate_input(self, node: WorkflowNode, input_data: Any) -> InputT:
        """Validate and transform input data.

        Override this method to implement custom validation.

        Raises:
            NodeValidationError: If validation fails
        """
        # Default implementation: return as-is
        return input_data  # type: ignore

    async def run(
        self,
        node: WorkflowNode,
        input_data: Any,
        context: ExecutionContext,
    ) -> Any:
        """Run the handler with full lifecycle.

        This method handles:
        1. Input validation
        2. Execution
        3. Error normalization into NodeExecutionError

        Raises:
            NodeExecutionError: If validation or execution fails
        """
        try:
            validated_input = self.validate_input(node, input_data)
            return await self.execute(node, validated_input, context)

        except NodeExecutionError:
            raise
        except NodeValidationError as e:
            raise NodeExecutionError(
                message=str(e),
                node_id=node.id,
                node_type=node.type.value,
                error_code="VALIDATION_ERROR",
                details={"field": e.field},
            ) from e
        except Exception as e:
            raise NodeExecutionError(
                message=str(e),
                node_id=node.id,
                node_type=node.type.value,
                error_code="EXECUTION_ERROR",
            ) from e

    async def __call__(
        self,
        node: WorkflowNode,
        input_data: Any,
        context: ExecutionContext,
    ) -> Any:
        return await self.run(node, input_data, context)

    @property
    def node_type(self) -> NodeType:
        """Get handled node type."""
        return self.get_definition().node_type

    @property
    def category(self) -> NodeCategory:
        """Get node category."""
        return self.get_definition().category


Handler = Union[BaseNode, HandlerFunc]


def is_async_handler(handler: Handler) -> bool:
    """Whether invoking the handler returns an awaitable."""
    if isinstance(handler, BaseNode):
        return True
    if inspect.iscoroutinefunction(handler):
        return True
    call = getattr(handler, "__call__", None)
    return call is not None and inspect.iscoroutinefunction(call)
