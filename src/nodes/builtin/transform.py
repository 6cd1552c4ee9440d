"""Transform nodes.

Pure data shaping: set fields, merge inputs, evaluate arithmetic expressions.
"""

import ast
import operator
from dataclasses import dataclass
from typing import Any, Mapping

from src.models.execution import ExecutionContext
from src.models.node import NodeCategory, NodeDefinition, NodeType
from src.models.workflow import WorkflowNode
from src.nodes.base import BaseNode, NodeExecutionError, NodeValidationError


def simple_jsonpath(data: Any, path: str) -> tuple[Any, bool]:
    """Simple JSONPath-like expression evaluator.

    Supports:
    - $.key - Access object key
    - $[0] - Access array index
    - $.key1.key2 - Nested access
    - $.key[0] - Mixed access
    - $ - Root element

    Args:
        data: JSON data
        path: Path expression

    Returns:
        Tuple of (result, matched)
    """
    if not path.startswith("$"):
        raise ValueError("Path must start with '$'")

    if path == "$":
        return data, True

    remaining = path[1:]
    current = data

    while remaining:
        if remaining.startswith("."):
            remaining = remaining[1:]
            end = len(remaining)
            for i, c in enumerate(remaining):
                if c in ".[":
                    end = i
                    break

            key = remaining[:end]
            remaining = remaining[end:]

            if not isinstance(current, Mapping) or key not in current:
                return None, False
            current = current[key]

        elif remaining.startswith("["):
            end = remaining.find("]")
            if end == -1:
                raise ValueError("Unclosed bracket in path")

            index_str = remaining[1:end]
            remaining = remaining[end + 1:]

            try:
                index = int(index_str)
            except ValueError:
                if index_str.startswith("'") and index_str.endswith("'"):
                    key = index_str[1:-1]
                    if not isinstance(current, Mapping) or key not in current:
                        return None, False
                    current = current[key]
                    continue
                raise ValueError(f"Invalid index: {index_str}")

            if not isinstance(current, (list, tuple)):
                return None, False
            if index < 0 or index >= len(current):
                return None, False

            current = current[index]

        else:
            raise ValueError(f"Invalid path syntax at: {remaining}")

    return current, True


def _config_flag(config: Mapping[str, Any], camel: str, snake: str, default: Any = None) -> Any:
    if camel in config:
        return config[camel]
    return config.get(snake, default)


@dataclass
class SetInput:
    """Validated input for the set node."""

    base: dict[str, Any]
    fields: dict[str, Any]
    keep_only_set: bool


class SetNode(BaseNode[SetInput]):
    """Overlay configured fields onto the input.

    String values starting with ``$`` are JSONPath references into the input:
        config = {"fields": {"total": "$.order.total", "source": "web"}}
    """

    def get_definition(self) -> NodeDefinition:
        """Get node definition."""
        return NodeDefinition(
            node_type=NodeType.ACTION_SET,
            display_name="Set",
            description="Set fields on the data passing through",
            category=NodeCategory.TRANSFORM,
            config_keys=["fields", "keepOnlySet"],
            tags=["set", "transform"],
        )

    def validate_input(self, node: WorkflowNode, input_data: Any) -> SetInput:
        """Validate configuration."""
        fields = node.config.get("fields", {})
        if not isinstance(fields, Mapping):
            raise NodeValidationError("Fields must be an object", field="fields")

        base = dict(input_data) if isinstance(input_data, Mapping) else {}
        keep_only_set = bool(_config_flag(node.config, "keepOnlySet", "keep_only_set", False))
        return SetInput(base=base, fields=dict(fields), keep_only_set=keep_only_set)

    async def execute(
        self,
        node: WorkflowNode,
        input_data: SetInput,
        context: ExecutionContext,
    ) -> dict[str, Any]:
        """Build the output object."""
        output = {} if input_data.keep_only_set else dict(input_data.base)
        for key, value in input_data.fields.items():
            if isinstance(value, str) and value.startswith("$"):
                try:
                    value, _ = simple_jsonpath(input_data.base, value)
                except ValueError as e:
                    raise NodeExecutionError(
                        message=str(e),
                        node_id=node.id,
                        node_type=node.type.value,
                        error_code="INVALID_PATH",
                    ) from e
            output[key] = value
        return output


class MergeNode(BaseNode[Any]):
    """Emit the merged input of all upstream branches.

    The engine already shallow-merges multiple inbound outputs; this node
    gives that merge a name so a workflow can end on one sink. With
    ``config.key`` the merged object is wrapped under that key.
    """

    def get_definition(self) -> NodeDefinition:
        """Get node definition."""
        return NodeDefinition(
            node_type=NodeType.ACTION_MERGE,
            display_name="Merge",
            description="Combine the outputs of several branches",
            category=NodeCategory.FLOW,
            config_keys=["key"],
            tags=["merge", "join"],
        )

    async def execute(
        self,
        node: WorkflowNode,
        input_data: Any,
        context: ExecutionContext,
    ) -> Any:
        """Return the merged input."""
        merged = dict(input_data) if isinstance(input_data, Mapping) else input_data
        key = node.config.get("key")
        if key:
            return {key: merged}
        return merged


# Safe operators for expression evaluation
SAFE_OPERATORS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
}


def safe_eval(node: ast.AST, names: Mapping[str, Any]) -> float:
    """Safely evaluate an arithmetic AST node.

    Only numeric constants, names bound in ``names`` and basic arithmetic
    are allowed.

    Raises:
        ValueError: If an operation or name is not allowed
    """
    if isinstance(node, ast.Constant):
        if isinstance(node.value, (int, float)) and not isinstance(node.value, bool):
            return node.value
        raise ValueError(f"Invalid constant: {node.value}")

    if isinstance(node, ast.Name):
        if node.id not in names:
            raise ValueError(f"Unknown name: {node.id}")
        value = names[node.id]
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"Name '{node.id}' is not a number")
        return value

    if isinstance(node, ast.BinOp):
        left = safe_eval(node.left, names)
        right = safe_eval(node.right, names)
        op = SAFE_OPERATORS.get(type(node.op))
        if op is None:
            raise ValueError(f"Unsupported operator: {type(node.op).__name__}")
        if isinstance(node.op, ast.Pow) and abs(right) > 100:
            raise ValueError("Exponent too large")
        return op(left, right)

    if isinstance(node, ast.UnaryOp):
        operand = safe_eval(node.operand, names)
        op = SAFE_OPERATORS.get(type(node.op))
        if op is None:
            raise ValueError(f"Unsupported operator: {type(node.op).__name__}")
        return op(operand)

    raise ValueError(f"Unsupported expression: {type(node).__name__}")


@dataclass
class ExpressionInput:
    """Validated input for the expression node."""

    names: dict[str, Any]
    expressions: dict[str, ast.Expression]


class ExpressionNode(BaseNode[ExpressionInput]):
    """Compute numeric fields from the input with arithmetic expressions.

    Example config:
        {"expressions": {"total": "price * quantity", "tax": "price * quantity * 0.2"}}
    Output is the input with the computed fields added.
    """

    def get_definition(self) -> NodeDefinition:
        """Get node definition."""
        return NodeDefinition(
            node_type=NodeType.ACTION_FUNCTION,
            display_name="Expression",
            description="Compute fields with arithmetic expressions over the input",
            category=NodeCategory.TRANSFORM,
            config_keys=["expressions"],
            tags=["math", "calculate", "expression"],
        )

    def validate_input(self, node: WorkflowNode, input_data: Any) -> ExpressionInput:
        """Parse every configured expression."""
        expressions = node.config.get("expressions")
        if not isinstance(expressions, Mapping) or not expressions:
            raise NodeValidationError("Expressions are required", field="expressions")

        parsed = {}
        for key, source in expressions.items():
            if not isinstance(source, str) or len(source) > 1000:
                raise NodeValidationError(f"Invalid expression for '{key}'", field="expressions")
            try:
                parsed[key] = ast.parse(source, mode="eval")
            except SyntaxError as e:
                raise NodeValidationError(
                    f"Invalid expression syntax for '{key}': {e.msg}", field="expressions"
                ) from e

        names = dict(input_data) if isinstance(input_data, Mapping) else {}
        return ExpressionInput(names=names, expressions=parsed)

    async def execute(
        self,
        node: WorkflowNode,
        input_data: ExpressionInput,
        context: ExecutionContext,
    ) -> dict[str, Any]:
        """Evaluate expressions against the gathered input."""
        output = dict(input_data.names)
        for key, tree in input_data.expressions.items():
            try:
                output[key] = safe_eval(tree.body, input_data.names)
            except ZeroDivisionError as e:
                raise NodeExecutionError(
                    message=f"Division by zero in '{key}'",
                    node_id=node.id,
                    node_type=node.type.value,
                    error_code="DIVISION_BY_ZERO",
                ) from e
            except (ValueError, OverflowError) as e:
                raise NodeExecutionError(
                    message=str(e),
                    node_id=node.id,
                    node_type=node.type.value,
                    error_code="INVALID_EXPRESSION",
                    details={"field": key},
                ) from e
        return output
