"""Node catalog API endpoints.

Lists the node types this runtime has handlers for.
"""

from typing import Any

import structlog
from fastapi import APIRouter

from src.api.deps import RegistryDep
from src.models.node import NodeCategory

logger = structlog.get_logger()

router = APIRouter()


@router.get("", response_model=dict[str, Any])
async def list_nodes(registry: RegistryDep) -> dict[str, Any]:
    """List all registered node handlers grouped by category."""
    return registry.get_catalog()


@router.get("/category/{category}", response_model=list[dict[str, Any]])
async def list_nodes_by_category(
    category: NodeCategory,
    registry: RegistryDep,
) -> list[dict[str, Any]]:
    """List registered node handlers in one category."""
    return [d.to_dict() for d in registry.list_by_category(category)]
