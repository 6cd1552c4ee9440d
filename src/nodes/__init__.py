"""Node handlers - Handler interface, registry and built-in handlers."""

from src.nodes.base import BaseNode, NodeExecutionError, NodeValidationError
from src.nodes.registry import NodeRegistry, NodeRegistryError

__all__ = [
    "BaseNode",
    "NodeExecutionError",
    "NodeRegistry",
    "NodeRegistryError",
    "NodeValidationError",
]
