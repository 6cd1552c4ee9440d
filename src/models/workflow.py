"""Workflow definition model.

Defines the graph handed to the runtime by the persistence layer:
nodes, edges (optionally gated by a condition) and execution settings.
Definitions are frozen; the engine only ever reads them.
"""

import re
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from src.models.node import NodeType


class ErrorHandling(str, Enum):
    """What the engine does when a node handler fails."""

    STOP = "stop"
    CONTINUE = "continue"
    RETRY = "retry"


class ConditionOperator(str, Enum):
    """Known edge condition operators.

    Conditions carry the operator as a plain string; anything not listed
    here evaluates to "pass".
    """

    EQ = "eq"
    NEQ = "neq"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    CONTAINS = "contains"
    REGEX = "regex"


def condition_text(value: Any) -> str:
    """Render a value as text for ``contains`` and ``regex`` conditions.

    None (including a missing field) renders as an empty string, booleans
    as ``true`` / ``false``, integral floats without a fraction, and lists
    as their items joined with commas.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        return ",".join(condition_text(item) for item in value)
    return str(value)


class _DefinitionModel(BaseModel):
    """Base for wire-level definition models (camelCase or snake_case keys)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class EdgeCondition(_DefinitionModel):
    """Condition gating traversal of an edge."""

    field: str = Field(min_length=1, description="Dot path into the source node's result data")
    operator: str = Field(description="eq, neq, gt, gte, lt, lte, contains or regex")
    value: Any = None

    @model_validator(mode="after")
    def validate_regex(self) -> "EdgeCondition":
        """Compile regex patterns up front so a bad pattern rejects the definition."""
        if self.operator == ConditionOperator.REGEX.value:
            try:
                re.compile(condition_text(self.value))
            except re.error as e:
                raise ValueError(f"Invalid regex pattern {self.value!r}: {e}") from e
        return self


class WorkflowNode(_DefinitionModel):
    """One step of a workflow graph."""

    id: str = Field(min_length=1, description="Unique within the workflow")
    type: NodeType
    name: str = ""
    position: dict[str, float] = Field(default_factory=lambda: {"x": 0, "y": 0})
    config: dict[str, Any] = Field(default_factory=dict)
    credential_id: str | None = None

    @property
    def display_name(self) -> str:
        return self.name or self.id


class WorkflowEdge(_DefinitionModel):
    """Directed dependency between two nodes."""

    id: str = ""
    source: str
    target: str
    source_handle: str | None = None
    target_handle: str | None = None
    condition: EdgeCondition | None = None


class WorkflowSettings(_DefinitionModel):
    """Per-workflow execution settings."""

    error_handling: ErrorHandling = ErrorHandling.STOP
    max_retries: int = Field(default=3, ge=0, le=20)
    timeout: float | None = Field(
        default=None,
        gt=0,
        description="Maximum execution wall time in seconds",
    )


class WorkflowDefinition(_DefinitionModel):
    """A complete workflow graph.

    Graph schema (camelCase keys accepted):
    {
        "id": str,
        "name": str,
        "nodes": [{"id": str, "type": NodeType, "name": str, "config": dict}],
        "edges": [{"id": str, "source": str, "target": str,
                   "condition": {"field": str, "operator": str, "value": any}}],
        "settings": {"errorHandling": "stop|continue|retry", "maxRetries": int, "timeout": float}
    }
    """

    id: str = Field(min_length=1)
    name: str = Field(default="", max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    nodes: tuple[WorkflowNode, ...] = ()
    edges: tuple[WorkflowEdge, ...] = ()
    settings: WorkflowSettings = Field(default_factory=WorkflowSettings)

    @field_validator("nodes")
    @classmethod
    def validate_unique_node_ids(
        cls, v: tuple[WorkflowNode, ...]
    ) -> tuple[WorkflowNode, ...]:
        """Node ids must be unique within a workflow."""
        seen: set[str] = set()
        for node in v:
            if node.id in seen:
                raise ValueError(f"Duplicate node id: {node.id}")
            seen.add(node.id)
        return v

    @model_validator(mode="after")
    def validate_edge_endpoints(self) -> "WorkflowDefinition":
        """Every edge must connect two declared nodes."""
        node_ids = {n.id for n in self.nodes}
        for edge in self.edges:
            for endpoint in (edge.source, edge.target):
                if endpoint not in node_ids:
                    raise ValueError(
                        f"Edge {edge.id or edge.source + '->' + edge.target} "
                        f"references unknown node '{endpoint}'"
                    )
        return self

    def get_node(self, node_id: str) -> WorkflowNode | None:
        """Look up a node by id."""
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def incoming_edges(self, node_id: str) -> list[WorkflowEdge]:
        """Edges targeting a node, in declaration order."""
        return [e for e in self.edges if e.target == node_id]

    def outgoing_edges(self, node_id: str) -> list[WorkflowEdge]:
        """Edges leaving a node, in declaration order."""
        return [e for e in self.edges if e.source == node_id]
