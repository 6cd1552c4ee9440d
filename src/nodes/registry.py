"""Node handler registry.

Maps node type tags to handler implementations. Populated once at
startup, then frozen; concurrent executions share it without locking.
"""

from typing import Any

import structlog

from src.models.node import NodeCategory, NodeDefinition, NodeType
from src.nodes.base import BaseNode, Handler

logger = structlog.get_logger()


class NodeRegistryError(Exception):
    """Error in node registry operations."""

    pass


def _coerce_type(type_tag: NodeType | str) -> NodeType:
    if isinstance(type_tag, NodeType):
        return type_tag
    try:
        return NodeType(type_tag)
    except ValueError as e:
        raise NodeRegistryError(f"Unknown node type: {type_tag}") from e


class NodeRegistry:
    """Central registry for node handlers.

    Handlers are either BaseNode instances or plain callables taking
    ``(node, input, context)``, sync or async.

    Example usage:
        registry = NodeRegistry()
        registry.load_builtin_nodes()
        registry.register(NodeType.ACTION_SLACK, post_to_slack)
        registry.freeze()

        handler = registry.get_handler(NodeType.ACTION_SET)
    """

    def __init__(self) -> None:
        """Initialize empty registry."""
        self._handlers: dict[NodeType, Handler] = {}
        self._frozen = False

    def register(
        self,
        type_tag: NodeType | str,
        handler: Handler,
        replace: bool = False,
    ) -> None:
        """Register a handler for a node type.

        Args:
            type_tag: Node type handled
            handler: BaseNode instance or callable
            replace: Allow replacing an existing registration

        Raises:
            NodeRegistryError: If the type is unknown, already registered,
                or the registry is frozen
        """
        node_type = _coerce_type(type_tag)

        if self._frozen:
            raise NodeRegistryError("Registry is frozen; register handlers at startup")

        if not callable(handler):
            raise NodeRegistryError(f"Handler for '{node_type.value}' is not callable")

        if node_type in self._handlers and not replace:
            raise NodeRegistryError(f"Handler for '{node_type.value}' already registered")

        self._handlers[node_type] = handler

        logger.debug(
            "node_handler_registered",
            node_type=node_type.value,
            handler=type(handler).__name__ if isinstance(handler, BaseNode) else getattr(handler, "__name__", repr(handler)),
        )

    def unregister(self, type_tag: NodeType | str) -> None:
        """Remove a handler from the registry.

        Args:
            type_tag: Node type to remove
        """
        if self._frozen:
            raise NodeRegistryError("Registry is frozen; register handlers at startup")
        self._handlers.pop(_coerce_type(type_tag), None)

    def get_handler(self, type_tag: NodeType | str) -> Handler | None:
        """Get the handler for a node type.

        Args:
            type_tag: Node type

        Returns:
            Handler or None if not registered
        """
        try:
            return self._handlers.get(_coerce_type(type_tag))
        except NodeRegistryError:
            return None

    def has_handler(self, type_tag: NodeType | str) -> bool:
        return self.get_handler(type_tag) is not None

    def freeze(self) -> None:
        """Make the registry read-only for the rest of the process lifetime."""
        self._frozen = True
        logger.info("node_registry_frozen", handler_count=len(self._handlers))

    @property
    def frozen(self) -> bool:
        return self._frozen

    def list_types(self) -> list[NodeType]:
        """List node types that have a handler."""
        return list(self._handlers)

    def list_all(self) -> list[NodeDefinition]:
        """List definitions of all registered handlers.

        Plain callables get a generic definition.
        """
        definitions = []
        for node_type, handler in self._handlers.items():
            if isinstance(handler, BaseNode):
                definitions.append(handler.get_definition())
            else:
                definitions.append(
                    NodeDefinition(
                        node_type=node_type,
                        display_name=node_type.value.replace("_", " ").title(),
                        description=(handler.__doc__ or "").strip(),
                        category=NodeCategory.TRIGGER if node_type.is_trigger else NodeCategory.INTEGRATION,
                    )
                )
        return definitions

    def list_by_category(self, category: NodeCategory) -> list[NodeDefinition]:
        """List handler definitions by category."""
        return [d for d in self.list_all() if d.category == category]

    def get_catalog(self) -> dict[str, Any]:
        """Get the handler catalog grouped by category."""
        definitions = self.list_all()
        return {
            "categories": {
                category.value: [d.to_dict() for d in definitions if d.category == category]
                for category in NodeCategory
            },
            "total_count": len(definitions),
        }

    def load_builtin_nodes(self) -> int:
        """Load all built-in handlers that need no runtime collaborators.

        Returns:
            Number of node types registered
        """
        from src.nodes.builtin.flow import FilterNode, RespondNode, WaitNode
        from src.nodes.builtin.transform import ExpressionNode, MergeNode, SetNode
        from src.nodes.builtin.triggers import TRIGGER_TYPES, TriggerNode

        builtin: list[tuple[NodeType, BaseNode]] = [
            (node_type, TriggerNode(node_type)) for node_type in TRIGGER_TYPES
        ]
        builtin += [
            # Transform
            (NodeType.ACTION_SET, SetNode()),
            (NodeType.ACTION_MERGE, MergeNode()),
            (NodeType.ACTION_FUNCTION, ExpressionNode()),
            # Flow
            (NodeType.ACTION_FILTER, FilterNode(NodeType.ACTION_FILTER)),
            (NodeType.CONDITION, FilterNode(NodeType.CONDITION)),
            (NodeType.ACTION_WAIT, WaitNode()),
            (NodeType.ACTION_RESPOND, RespondNode(NodeType.ACTION_RESPOND)),
            (NodeType.OUTPUT, RespondNode(NodeType.OUTPUT)),
        ]

        count = 0
        for node_type, handler in builtin:
            try:
                self.register(node_type, handler)
                count += 1
            except NodeRegistryError as e:
                logger.warning(
                    "builtin_node_registration_failed",
                    error=str(e),
                )

        logger.info("builtin_nodes_loaded", count=count)
        return count
