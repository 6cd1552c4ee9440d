"""Application runtime context.

Builds the shared collaborators (registry, store, engine, queue, scheduler)
once, and owns their startup and shutdown.
"""

import structlog

from src.config import Settings, get_settings
from src.core.execution_engine import WorkflowExecutionEngine
from src.models.execution import CredentialResolver
from src.models.node import NodeType
from src.models.workflow import WorkflowDefinition
from src.nodes.builtin.subworkflow import SubworkflowNode
from src.nodes.registry import NodeRegistry
from src.services.job_queue import DirectQueue, JobQueue, create_job_queue
from src.services.scheduler import SchedulerService
from src.services.workflow_store import WorkflowStore

logger = structlog.get_logger()


class Runtime:
    """Explicit application context passed to the API, CLI and worker.

    The registry is frozen once ``create`` returns, so every execution sees
    the same handlers. All three entry points (engine, queue, scheduler)
    share one workflow store.

    Example usage:
        runtime = await Runtime.create(settings)
        await runtime.start()
        runtime.register_workflow(definition)
        result = await runtime.engine.execute_by_id(definition.id, {"x": 1})
        await runtime.shutdown()
    """

    def __init__(
        self,
        settings: Settings,
        registry: NodeRegistry,
        store: WorkflowStore,
        engine: WorkflowExecutionEngine,
        queue: JobQueue,
        scheduler: SchedulerService,
    ) -> None:
        self.settings = settings
        self.registry = registry
        self.store = store
        self.engine = engine
        self.queue = queue
        self.scheduler = scheduler
        self._started = False

    @classmethod
    async def create(
        cls,
        settings: Settings | None = None,
        registry: NodeRegistry | None = None,
        credential_resolver: CredentialResolver | None = None,
        use_queue: bool = True,
    ) -> "Runtime":
        """Build a runtime.

        Args:
            settings: Application settings (cached settings if None)
            registry: Pre-populated registry; built-ins are added if missing
            credential_resolver: Async lookup of credential data by id
            use_queue: Set False to force direct mode (e.g. the local CLI)

        Returns:
            Runtime with a frozen registry
        """
        settings = settings or get_settings()
        registry = registry or NodeRegistry()
        store = WorkflowStore()

        engine = WorkflowExecutionEngine(
            registry,
            store,
            timeout=settings.execution_timeout,
            strict_graph=settings.execution_strict_graph,
            retry_delay=settings.node_retry_delay,
            credential_resolver=credential_resolver,
        )

        if not registry.frozen:
            _load_missing_builtins(registry)
            if not registry.has_handler(NodeType.ACTION_SUBWORKFLOW):
                registry.register(NodeType.ACTION_SUBWORKFLOW, SubworkflowNode(engine))
            registry.freeze()

        if use_queue:
            queue = await create_job_queue(settings, engine, store)
        else:
            queue = DirectQueue(settings, engine, store)

        scheduler = SchedulerService(
            engine,
            store,
            queue=queue,
            default_timezone=settings.scheduler_default_timezone,
        )

        logger.info(
            "runtime_created",
            queue_mode=queue.mode,
            handler_count=len(registry.list_types()),
        )
        return cls(settings, registry, store, engine, queue, scheduler)

    @property
    def started(self) -> bool:
        return self._started

    def register_workflow(self, workflow: WorkflowDefinition) -> bool:
        """Register or replace a workflow for all entry points.

        Returns:
            True if an existing definition was replaced
        """
        return self.store.register(workflow)

    async def start(self) -> None:
        """Start the queue worker and scheduler timers."""
        if self._started:
            return
        await self.queue.start()
        await self.scheduler.start()
        self._started = True
        logger.info("runtime_started", queue_mode=self.queue.mode)

    async def shutdown(self) -> None:
        """Stop the scheduler, then drain and close the queue."""
        if not self._started:
            await self.queue.shutdown()
            return
        await self.scheduler.shutdown()
        await self.queue.shutdown()
        self._started = False
        logger.info("runtime_stopped")


def _load_missing_builtins(registry: NodeRegistry) -> None:
    """Load built-in handlers without overriding custom registrations."""
    if not registry.list_types():
        registry.load_builtin_nodes()
        return

    builtin = NodeRegistry()
    builtin.load_builtin_nodes()
    for node_type in builtin.list_types():
        if not registry.has_handler(node_type):
            registry.register(node_type, builtin.get_handler(node_type))
