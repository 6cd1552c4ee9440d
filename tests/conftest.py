"""Pytest configuration and fixtures.

Provides common fixtures for all tests including:
- Test settings
- A node registry with built-ins and a config-driven test handler
- Execution engine and workflow store
- A direct-mode runtime and HTTP client
- An in-memory arq pool for durable-queue tests
"""

import asyncio
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Any, AsyncGenerator, Callable

import pytest
import pytest_asyncio
from arq.constants import in_progress_key_prefix, result_key_prefix
from arq.jobs import JobStatus as ArqJobStatus
from httpx import ASGITransport, AsyncClient

from src.config import Settings
from src.core.execution_engine import WorkflowExecutionEngine
from src.main import create_app
from src.models.execution import ExecutionContext
from src.models.node import NodeType
from src.models.workflow import WorkflowDefinition, WorkflowNode
from src.nodes.registry import NodeRegistry
from src.runtime import Runtime
from src.services.job_queue import DurableQueue
from src.services.workflow_store import WorkflowStore


class ScriptedHandler:
    """Test handler whose behavior comes from the node's config.

    Config keys:
        output: value to return (default: {"node": id, "input": input})
        fail: always raise
        fail_times: raise on the first N calls
        sleep: seconds to sleep before answering
        error: error message
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, Any]] = []
        self.attempts: dict[str, int] = defaultdict(int)
        self.contexts: list[ExecutionContext] = []

    async def __call__(
        self,
        node: WorkflowNode,
        input_data: Any,
        context: ExecutionContext,
    ) -> Any:
        self.calls.append((node.id, input_data))
        self.contexts.append(context)
        self.attempts[node.id] += 1
        config = node.config

        if "sleep" in config:
            await asyncio.sleep(config["sleep"])

        if config.get("fail") or self.attempts[node.id] <= config.get("fail_times", 0):
            raise RuntimeError(config.get("error", f"{node.id} failed"))

        if "output" in config:
            return config["output"]
        return {"node": node.id, "input": input_data}

    def called_nodes(self) -> list[str]:
        return [node_id for node_id, _ in self.calls]


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        queue_enabled=False,
        execution_timeout=5,
        execution_strict_graph=True,
        node_retry_delay=0,
        debug=True,
    )


@pytest.fixture
def scripted() -> ScriptedHandler:
    return ScriptedHandler()


@pytest.fixture
def registry(scripted: ScriptedHandler) -> NodeRegistry:
    """Registry with built-in handlers; ACTION_CODE runs the scripted handler."""
    registry = NodeRegistry()
    registry.load_builtin_nodes()
    registry.register(NodeType.ACTION_CODE, scripted)
    return registry


@pytest.fixture
def store() -> WorkflowStore:
    return WorkflowStore()


@pytest.fixture
def engine(registry: NodeRegistry, store: WorkflowStore) -> WorkflowExecutionEngine:
    """Create an execution engine with a short default timeout."""
    return WorkflowExecutionEngine(
        registry,
        store,
        timeout=5,
        strict_graph=True,
        retry_delay=0,
    )


@pytest.fixture
def make_workflow() -> Callable[..., WorkflowDefinition]:
    """Build workflow definitions from compact node/edge specs.

    Nodes are (id, type) or (id, type, config) tuples or dicts; edges are
    (source, target) tuples or dicts.
    """

    def _make(
        nodes: list[Any],
        edges: list[Any] = (),
        workflow_id: str = "wf_test",
        **settings: Any,
    ) -> WorkflowDefinition:
        node_data = []
        for node in nodes:
            if isinstance(node, dict):
                node_data.append(node)
                continue
            item = {"id": node[0], "type": node[1]}
            if len(node) > 2:
                item["config"] = node[2]
            node_data.append(item)

        edge_data = [
            edge if isinstance(edge, dict)
            else {"id": f"{edge[0]}->{edge[1]}", "source": edge[0], "target": edge[1]}
            for edge in edges
        ]

        return WorkflowDefinition(
            id=workflow_id,
            name="Test Workflow",
            nodes=node_data,
            edges=edge_data,
            settings=settings,
        )

    return _make


@pytest.fixture
def sample_workflow(make_workflow) -> WorkflowDefinition:
    """Manual trigger -> set -> respond."""
    return make_workflow(
        [
            ("trigger", "TRIGGER_MANUAL"),
            ("set", "ACTION_SET", {"fields": {"greeting": "hello", "who": "$.name"}}),
            ("respond", "ACTION_RESPOND", {"fields": ["greeting", "who"]}),
        ],
        [("trigger", "set"), ("set", "respond")],
        workflow_id="wf_sample",
    )


@pytest_asyncio.fixture
async def runtime(test_settings: Settings) -> AsyncGenerator[Runtime, None]:
    """Create a started direct-mode runtime."""
    runtime = await Runtime.create(test_settings, use_queue=False)
    await runtime.start()
    yield runtime
    await runtime.shutdown()


@pytest_asyncio.fixture
async def client(runtime: Runtime) -> AsyncGenerator[AsyncClient, None]:
    """Create test HTTP client bound to the runtime."""
    app = create_app(runtime)

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


TEST_QUEUE = "test:queue"


class FakeArqPool:
    """In-memory stand-in for the arq Redis pool used by DurableQueue."""

    def __init__(self) -> None:
        self.enqueued: dict[str, dict[str, Any]] = {}
        self.statuses: dict[str, ArqJobStatus] = {}
        self.results: dict[str, SimpleNamespace] = {}
        self.in_progress: set[str] = set()
        self.deleted: list[str] = []
        self.closed = False

    async def enqueue_job(
        self,
        function: str,
        *args: Any,
        _job_id: str | None = None,
        _queue_name: str | None = None,
        _defer_by: float | None = None,
    ) -> SimpleNamespace | None:
        if _job_id in self.enqueued and _job_id not in self.results:
            return None
        self.results.pop(_job_id, None)
        self.enqueued[_job_id] = {
            "function": function,
            "args": args,
            "queue_name": _queue_name,
            "defer_by": _defer_by,
        }
        self.statuses[_job_id] = ArqJobStatus.deferred if _defer_by else ArqJobStatus.queued
        return SimpleNamespace(job_id=_job_id)

    async def queued_jobs(self, *, queue_name: str) -> list[SimpleNamespace]:
        now_ms = datetime.now(timezone.utc).timestamp() * 1000
        jobs = []
        for job_id, job in self.enqueued.items():
            if job["queue_name"] != queue_name or job_id in self.results:
                continue
            score = now_ms + job["defer_by"] * 1000 if job["defer_by"] else now_ms - 1
            jobs.append(SimpleNamespace(job_id=job_id, score=score))
        return jobs

    async def keys(self, pattern: str) -> list[bytes]:
        return [(in_progress_key_prefix + job_id).encode() for job_id in self.in_progress]

    async def all_job_results(self) -> list[SimpleNamespace]:
        return list(self.results.values())

    async def zrem(self, name: str, job_id: str) -> int:
        job = self.enqueued.pop(job_id, None)
        return 1 if job is not None and job["queue_name"] == name else 0

    async def delete(self, key: str) -> int:
        self.deleted.append(key)
        if key.startswith(result_key_prefix):
            return 1 if self.results.pop(key[len(result_key_prefix):], None) else 0
        return 1

    async def close(self, close_connection_pool: bool = False) -> None:
        self.closed = close_connection_pool

    def add_result(self, job_id: str, success: bool, result: Any, age: float = 0, args=()) -> None:
        self.statuses[job_id] = ArqJobStatus.complete
        self.results[job_id] = SimpleNamespace(
            job_id=job_id,
            queue_name=TEST_QUEUE,
            success=success,
            result=result,
            job_try=2,
            args=args,
            finish_time=datetime.now(timezone.utc) - timedelta(seconds=age),
        )


class FakeJob:
    """arq Job handle reading from FakeArqPool."""

    def __init__(self, job_id: str, redis: FakeArqPool, _queue_name: str = "") -> None:
        self.job_id = job_id
        self._pool = redis

    async def status(self) -> ArqJobStatus:
        return self._pool.statuses.get(self.job_id, ArqJobStatus.not_found)

    async def info(self) -> SimpleNamespace | None:
        job = self._pool.enqueued.get(self.job_id)
        if job is None:
            return None
        return SimpleNamespace(args=job["args"], job_try=None)

    async def result_info(self) -> SimpleNamespace | None:
        return self._pool.results.get(self.job_id)




@pytest.fixture
def queue_settings(test_settings: Settings) -> Settings:
    """Settings for durable-queue tests."""
    return test_settings.model_copy(
        update={"queue_name": TEST_QUEUE, "job_attempts": 3, "job_backoff_delay": 1.0}
    )


@pytest.fixture
def arq_pool() -> FakeArqPool:
    return FakeArqPool()


@pytest.fixture
def durable_queue(
    queue_settings: Settings,
    engine: WorkflowExecutionEngine,
    store: WorkflowStore,
    arq_pool: FakeArqPool,
    sample_workflow: WorkflowDefinition,
) -> DurableQueue:
    """Durable queue over the fake pool, with ``wf_sample`` registered."""
    store.register(sample_workflow)
    return DurableQueue(queue_settings, engine, store, arq_pool, job_factory=FakeJob)


@pytest_asyncio.fixture
async def durable_runtime(
    queue_settings: Settings,
    arq_pool: FakeArqPool,
) -> AsyncGenerator[Runtime, None]:
    """Runtime whose queue is durable over the fake pool.

    The worker is never started; jobs stay in the fake pool.
    """
    runtime = await Runtime.create(queue_settings, use_queue=False)
    runtime.queue = DurableQueue(
        queue_settings, runtime.engine, runtime.store, arq_pool, job_factory=FakeJob
    )
    runtime.scheduler.queue = runtime.queue
    yield runtime
    await runtime.queue.shutdown()


@pytest_asyncio.fixture
async def durable_client(durable_runtime: Runtime) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to the durable-queue runtime."""
    app = create_app(durable_runtime)

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
