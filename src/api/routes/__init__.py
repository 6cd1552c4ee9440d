"""API route handlers."""

from src.api.routes.executions import router as executions_router
from src.api.routes.jobs import router as jobs_router
from src.api.routes.nodes import router as nodes_router
from src.api.routes.schedules import router as schedules_router
from src.api.routes.webhooks import router as webhooks_router
from src.api.routes.workflows import router as workflows_router

__all__ = [
    "executions_router",
    "jobs_router",
    "nodes_router",
    "schedules_router",
    "webhooks_router",
    "workflows_router",
]
