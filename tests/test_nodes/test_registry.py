"""Tests for the node handler registry."""

import pytest

from src.models.node import NodeCategory, NodeType
from src.nodes.builtin.flow import FilterNode
from src.nodes.registry import NodeRegistry, NodeRegistryError


async def noop_handler(node, input_data, context):
    """Does nothing."""
    return input_data


class TestNodeRegistry:
    """Tests for NodeRegistry class."""

    def test_load_builtin_nodes(self):
        """Test loading built-in nodes."""
        registry = NodeRegistry()
        count = registry.load_builtin_nodes()

        assert count > 0
        assert len(registry.list_types()) == count
        assert registry.has_handler(NodeType.TRIGGER_MANUAL)
        assert registry.has_handler(NodeType.ACTION_SET)
        assert registry.has_handler(NodeType.ACTION_FUNCTION)
        assert not registry.has_handler(NodeType.ACTION_SLACK)

    def test_register_and_get(self):
        registry = NodeRegistry()
        registry.register(NodeType.ACTION_SLACK, noop_handler)

        assert registry.get_handler(NodeType.ACTION_SLACK) is noop_handler
        assert registry.get_handler("ACTION_SLACK") is noop_handler

    def test_unknown_type_lookup_returns_none(self):
        registry = NodeRegistry()

        assert registry.get_handler("NOT_A_TYPE") is None
        assert registry.get_handler(NodeType.ACTION_HTTP) is None

    def test_register_unknown_type_raises(self):
        registry = NodeRegistry()

        with pytest.raises(NodeRegistryError, match="Unknown node type"):
            registry.register("NOT_A_TYPE", noop_handler)

    def test_duplicate_registration_raises_error(self):
        """Test that duplicate registration raises error."""
        registry = NodeRegistry()
        registry.register(NodeType.ACTION_SLACK, noop_handler)

        with pytest.raises(NodeRegistryError, match="already registered"):
            registry.register(NodeType.ACTION_SLACK, noop_handler)

    def test_replace_registration(self):
        registry = NodeRegistry()
        registry.register(NodeType.ACTION_SLACK, noop_handler)
        replacement = FilterNode()

        registry.register(NodeType.ACTION_SLACK, replacement, replace=True)

        assert registry.get_handler(NodeType.ACTION_SLACK) is replacement

    def test_non_callable_rejected(self):
        registry = NodeRegistry()

        with pytest.raises(NodeRegistryError, match="not callable"):
            registry.register(NodeType.ACTION_SLACK, "not a handler")

    def test_frozen_registry_rejects_changes(self):
        registry = NodeRegistry()
        registry.register(NodeType.ACTION_SLACK, noop_handler)
        registry.freeze()

        assert registry.frozen
        with pytest.raises(NodeRegistryError, match="frozen"):
            registry.register(NodeType.ACTION_HTTP, noop_handler)
        with pytest.raises(NodeRegistryError, match="frozen"):
            registry.unregister(NodeType.ACTION_SLACK)
        assert registry.get_handler(NodeType.ACTION_SLACK) is noop_handler

    def test_unregister(self):
        registry = NodeRegistry()
        registry.register(NodeType.ACTION_SLACK, noop_handler)

        registry.unregister(NodeType.ACTION_SLACK)

        assert not registry.has_handler(NodeType.ACTION_SLACK)

    def test_catalog_groups_by_category(self):
        registry = NodeRegistry()
        registry.load_builtin_nodes()
        registry.register(NodeType.ACTION_SLACK, noop_handler)

        catalog = registry.get_catalog()

        assert catalog["total_count"] == len(registry.list_types())
        trigger_types = [d["type"] for d in catalog["categories"]["trigger"]]
        assert "TRIGGER_WEBHOOK" in trigger_types
        integration = catalog["categories"]["integration"]
        assert integration[0]["type"] == "ACTION_SLACK"
        assert integration[0]["description"] == "Does nothing."

    def test_list_by_category(self):
        registry = NodeRegistry()
        registry.load_builtin_nodes()

        flow = registry.list_by_category(NodeCategory.FLOW)

        assert flow
        assert all(d.category == NodeCategory.FLOW for d in flow)
