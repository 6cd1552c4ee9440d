"""Node type model.

Runtime model for workflow node types (not persisted).
Node types form a closed enumeration; handlers are resolved against it.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class NodeCategory(str, Enum):
    """Node category for organization and filtering."""

    TRIGGER = "trigger"  # Starts an execution
    FLOW = "flow"  # Branching, merging, waiting
    TRANSFORM = "transform"  # Pure data shaping
    INTEGRATION = "integration"  # Outbound I/O, registered by the host
    UTILITY = "utility"


class NodeType(str, Enum):
    """Node type tag driving handler dispatch."""

    # Frontend compatibility types
    AGENT = "AGENT"
    TRIGGER = "TRIGGER"
    CONDITION = "CONDITION"
    OUTPUT = "OUTPUT"

    # Triggers
    TRIGGER_WEBHOOK = "TRIGGER_WEBHOOK"
    TRIGGER_SCHEDULE = "TRIGGER_SCHEDULE"
    TRIGGER_FORM = "TRIGGER_FORM"
    TRIGGER_EVENT = "TRIGGER_EVENT"
    TRIGGER_MANUAL = "TRIGGER_MANUAL"

    # Core actions
    ACTION_HTTP = "ACTION_HTTP"
    ACTION_CODE = "ACTION_CODE"
    ACTION_SET = "ACTION_SET"
    ACTION_MERGE = "ACTION_MERGE"
    ACTION_SPLIT = "ACTION_SPLIT"
    ACTION_FILTER = "ACTION_FILTER"
    ACTION_SWITCH = "ACTION_SWITCH"
    ACTION_LOOP = "ACTION_LOOP"
    ACTION_WAIT = "ACTION_WAIT"
    ACTION_RESPOND = "ACTION_RESPOND"

    # Integrations
    ACTION_EMAIL = "ACTION_EMAIL"
    ACTION_SLACK = "ACTION_SLACK"
    ACTION_DISCORD = "ACTION_DISCORD"
    ACTION_TELEGRAM = "ACTION_TELEGRAM"
    ACTION_GOOGLE_SHEETS = "ACTION_GOOGLE_SHEETS"
    ACTION_DATABASE = "ACTION_DATABASE"
    ACTION_S3 = "ACTION_S3"

    # AI actions
    ACTION_AI_CHAT = "ACTION_AI_CHAT"
    ACTION_AI_SUMMARIZE = "ACTION_AI_SUMMARIZE"
    ACTION_AI_CLASSIFY = "ACTION_AI_CLASSIFY"
    ACTION_AI_TRANSFORM = "ACTION_AI_TRANSFORM"

    # Utilities
    ACTION_FUNCTION = "ACTION_FUNCTION"
    ACTION_ERROR_TRIGGER = "ACTION_ERROR_TRIGGER"
    ACTION_SUBWORKFLOW = "ACTION_SUBWORKFLOW"

    @property
    def is_trigger(self) -> bool:
        """Trigger types may start an execution even with inbound edges."""
        return self is NodeType.TRIGGER or self.value.startswith("TRIGGER_")


@dataclass
class NodeDefinition:
    """Handler metadata used for the node catalog.

    Not persisted - loaded from handler implementations.
    """

    node_type: NodeType
    display_name: str
    description: str
    category: NodeCategory
    config_keys: list[str] = field(default_factory=list)
    version: str = "1.0.0"
    tags: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            "type": self.node_type.value,
            "display_name": self.display_name,
            "description": self.description,
            "category": self.category.value,
            "config_keys": self.config_keys,
            "version": self.version,
            "tags": self.tags,
        }
