"""Workflow graph execution engine.

Walks a workflow graph with dependency-gated depth-first traversal,
dispatching each node to its registered handler and recording results.
"""

import asyncio
import inspect
from collections import deque
from typing import Any, Mapping

import structlog

from src.config import settings
from src.core.conditions import evaluate_condition
from src.models.execution import (
    CredentialResolver,
    ExecutionContext,
    ExecutionMode,
    ExecutionResult,
    ExecutionStatus,
    NodeExecutionResult,
    NodeResultStatus,
    new_execution_id,
    utc_now,
)
from src.models.workflow import ErrorHandling, WorkflowDefinition, WorkflowEdge, WorkflowNode
from src.nodes.base import Handler, NodeExecutionError, is_async_handler
from src.nodes.registry import NodeRegistry
from src.services.workflow_store import WorkflowStore

logger = structlog.get_logger()


class ExecutionError(Exception):
    """Base exception for execution errors."""

    def __init__(self, message: str, error_code: str = "EXECUTION_ERROR") -> None:
        super().__init__(message)
        self.error_code = error_code


class NoStartNodeError(ExecutionError):
    """The graph has no trigger or start node."""

    def __init__(self, message: str = "No trigger or start node found in workflow") -> None:
        super().__init__(message, "NO_START_NODE")


class CycleOrUnreachableNodeError(ExecutionError):
    """Some nodes can never have all their dependencies satisfied."""

    def __init__(self, node_ids: list[str]) -> None:
        super().__init__(
            f"Nodes can never execute (cycle or unreachable dependency): {', '.join(node_ids)}",
            "CYCLE_OR_UNREACHABLE_NODE",
        )
        self.node_ids = node_ids


class HandlerNotFoundError(ExecutionError):
    """No handler is registered for a node's type."""

    def __init__(self, node_type: str) -> None:
        super().__init__(f"No handler registered for node type: {node_type}", "HANDLER_NOT_FOUND")
        self.node_type = node_type


class ExecutionTimeoutError(ExecutionError):
    """Execution exceeded its wall-time limit."""

    def __init__(self, message: str = "Execution timed out") -> None:
        super().__init__(message, "TIMEOUT")


class _WorkflowRun:
    """State of one execution of one workflow.

    Node dispatch is strictly sequential: a node only runs once every
    upstream node has a recorded result.
    """

    def __init__(
        self,
        workflow: WorkflowDefinition,
        context: ExecutionContext,
        registry: NodeRegistry,
        timeout: float | None,
        strict_graph: bool,
        retry_delay: float,
    ) -> None:
        self.workflow = workflow
        self.context = context
        self.registry = registry
        self.timeout = timeout
        self.strict_graph = strict_graph
        self.retry_delay = retry_delay
        self.results: list[NodeExecutionResult] = []

        self._nodes: dict[str, WorkflowNode] = {n.id: n for n in workflow.nodes}
        self._incoming: dict[str, list[WorkflowEdge]] = {n.id: [] for n in workflow.nodes}
        self._outgoing: dict[str, list[WorkflowEdge]] = {n.id: [] for n in workflow.nodes}
        for edge in workflow.edges:
            self._incoming[edge.target].append(edge)
            self._outgoing[edge.source].append(edge)

        self._condition_skipped: set[str] = set()
        self._deadline: float | None = None

    async def run(self) -> ExecutionResult:
        context = self.context
        status = ExecutionStatus.SUCCESS
        output: Any = None
        error: str | None = None
        error_code: str | None = None

        logger.info(
            "execution_starting",
            workflow_id=self.workflow.id,
            mode=context.mode.value,
            node_count=len(self.workflow.nodes),
        )

        if self.timeout is not None:
            self._deadline = asyncio.get_running_loop().time() + self.timeout

        try:
            start_nodes = self._find_start_nodes()
            if not start_nodes:
                raise NoStartNodeError()

            if self.strict_graph:
                self._check_reachability()

            if context.input is not None:
                for node in start_nodes:
                    context.seed_output(node.id, context.input)

            for start_node in start_nodes:
                await self._traverse_from(start_node)

            end_nodes = self._find_end_nodes()
            if end_nodes:
                output = context.node_outputs.get(end_nodes[-1].id)

            self._record_skipped()

            logger.info(
                "execution_completed",
                workflow_id=self.workflow.id,
                nodes_executed=len(context.executed_nodes),
            )

        except (ExecutionError, NodeExecutionError) as e:
            status = ExecutionStatus.FAILED
            error = str(e)
            error_code = e.error_code
            logger.error(
                "execution_failed",
                workflow_id=self.workflow.id,
                error=error,
                error_code=error_code,
            )

        except Exception as e:
            status = ExecutionStatus.FAILED
            error = str(e) or type(e).__name__
            error_code = getattr(e, "error_code", "EXECUTION_FAILED")
            logger.error(
                "execution_failed",
                workflow_id=self.workflow.id,
                error=error,
                error_type=type(e).__name__,
            )

        return ExecutionResult(
            execution_id=context.execution_id,
            workflow_id=self.workflow.id,
            status=status,
            mode=context.mode,
            results=list(self.results),
            output=output,
            error=error,
            error_code=error_code,
            node_outputs=dict(context.node_outputs),
            started_at=context.started_at,
            finished_at=utc_now(),
        )

    def _find_start_nodes(self) -> list[WorkflowNode]:
        """Nodes with no incoming edges, plus every trigger node."""
        return [
            n for n in self.workflow.nodes
            if not self._incoming[n.id] or n.type.is_trigger
        ]

    def _find_end_nodes(self) -> list[WorkflowNode]:
        """Nodes with no outgoing edges, in declaration order."""
        return [n for n in self.workflow.nodes if not self._outgoing[n.id]]

    def _check_reachability(self) -> None:
        """Fail fast on nodes whose dependencies can never all be satisfied.

        Simulates dependency gating over the structure alone (Kahn's
        algorithm); edge conditions are ignored.
        """
        indegree = {node_id: len(edges) for node_id, edges in self._incoming.items()}
        ready = deque(node_id for node_id, degree in indegree.items() if degree == 0)
        resolved: set[str] = set()

        while ready:
            node_id = ready.popleft()
            resolved.add(node_id)
            for edge in self._outgoing[node_id]:
                indegree[edge.target] -= 1
                if indegree[edge.target] == 0:
                    ready.append(edge.target)

        stuck = [n.id for n in self.workflow.nodes if n.id not in resolved]
        if stuck:
            raise CycleOrUnreachableNodeError(stuck)

    async def _traverse_from(self, start_node: WorkflowNode) -> None:
        """Depth-first traversal from one start node.

        Uses an explicit stack so long chains do not hit the recursion limit;
        targets are pushed in reverse so they are visited in edge order.
        """
        stack = [start_node]
        while stack:
            node = stack.pop()
            result = await self._execute_node(node)
            if result is None:
                continue

            targets = []
            for edge in self._outgoing[node.id]:
                if edge.condition is not None and not evaluate_condition(edge.condition, result.data):
                    logger.debug(
                        "edge_condition_failed",
                        edge_id=edge.id,
                        source=edge.source,
                        target=edge.target,
                    )
                    self._condition_skipped.add(edge.target)
                    continue
                targets.append(self._nodes[edge.target])
            stack.extend(reversed(targets))

    async def _execute_node(self, node: WorkflowNode) -> NodeExecutionResult | None:
        """Execute one node if all its dependencies have run.

        Returns:
            The recorded result, or None if the node already ran or is deferred
        """
        context = self.context
        if context.has_executed(node.id):
            return None

        for edge in self._incoming[node.id]:
            if not context.has_executed(edge.source):
                logger.debug("node_deferred", node_id=node.id, waiting_on=edge.source)
                return None

        started_at = utc_now()
        logs: list[str] = []
        abort: Exception | None = None

        try:
            input_data = self._gather_input(node.id)

            logger.debug(
                "node_execution_starting",
                node_id=node.id,
                node_type=node.type.value,
                node_name=node.display_name,
            )

            handler = self.registry.get_handler(node.type)
            if handler is None:
                raise HandlerNotFoundError(node.type.value)

            output = await self._invoke_with_policy(node, handler, input_data, logs)
            context.record_output(node.id, output)

            result = NodeExecutionResult(
                node_id=node.id,
                status=NodeResultStatus.SUCCESS,
                data=output,
                started_at=started_at,
                finished_at=utc_now(),
                logs=tuple(logs),
            )

            logger.debug("node_execution_completed", node_id=node.id)

        except Exception as e:
            result = NodeExecutionResult(
                node_id=node.id,
                status=NodeResultStatus.ERROR,
                error=str(e) or type(e).__name__,
                error_code=getattr(e, "error_code", "NODE_ERROR"),
                started_at=started_at,
                finished_at=utc_now(),
                logs=tuple(logs),
            )

            logger.error(
                "node_execution_failed",
                node_id=node.id,
                node_type=node.type.value,
                node_name=node.display_name,
                error=result.error,
                error_code=result.error_code,
            )

            if (
                isinstance(e, ExecutionTimeoutError)
                or self.workflow.settings.error_handling is not ErrorHandling.CONTINUE
            ):
                abort = e

        context.mark_executed(node.id)
        self.results.append(result)

        if abort is not None:
            raise abort
        return result

    def _gather_input(self, node_id: str) -> Any:
        """Build a node's input from its upstream outputs.

        Zero inbound edges use the execution input, one edge passes the
        source output through, several edges shallow-merge mapping outputs
        in edge declaration order (later edges win).
        """
        incoming = self._incoming[node_id]
        outputs = self.context.node_outputs

        if not incoming:
            return self.context.input if self.context.input is not None else {}

        if len(incoming) == 1:
            output = outputs.get(incoming[0].source)
            return output if output is not None else {}

        merged: dict[str, Any] = {}
        for edge in incoming:
            output = outputs.get(edge.source)
            if isinstance(output, Mapping):
                merged.update(output)
        return merged

    async def _invoke_with_policy(
        self,
        node: WorkflowNode,
        handler: Handler,
        input_data: Any,
        logs: list[str],
    ) -> Any:
        """Invoke a handler, retrying when the workflow's policy says so."""
        workflow_settings = self.workflow.settings
        attempts = 1
        if workflow_settings.error_handling is ErrorHandling.RETRY:
            attempts += workflow_settings.max_retries

        for attempt in range(1, attempts + 1):
            try:
                return await self._invoke(node, handler, input_data)
            except ExecutionTimeoutError:
                raise
            except Exception as e:
                if attempt >= attempts or getattr(e, "error_code", None) == "VALIDATION_ERROR":
                    raise
                logs.append(f"Attempt {attempt} failed: {e}")
                logger.warning(
                    "node_execution_retrying",
                    node_id=node.id,
                    attempt=attempt,
                    max_attempts=attempts,
                    error=str(e),
                )
                if self.retry_delay:
                    await asyncio.sleep(self.retry_delay)

        raise AssertionError("unreachable")

    async def _invoke(self, node: WorkflowNode, handler: Handler, input_data: Any) -> Any:
        """Call a handler under the execution deadline.

        Sync handlers run in a worker thread so an expired deadline never
        leaves the event loop blocked on them.
        """
        if is_async_handler(handler):
            call = handler(node, input_data, self.context)
        else:
            call = asyncio.to_thread(handler, node, input_data, self.context)

        output = await self._with_deadline(call)
        if inspect.isawaitable(output):
            output = await self._with_deadline(output)
        return output

    async def _with_deadline(self, awaitable: Any) -> Any:
        if self._deadline is None:
            return await awaitable

        loop = asyncio.get_running_loop()
        remaining = self._deadline - loop.time()
        if remaining <= 0:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            raise ExecutionTimeoutError(f"Execution exceeded {self.timeout}s timeout")

        # asyncio.wait keeps a handler's own TimeoutError apart from the deadline.
        task = asyncio.ensure_future(awaitable)
        try:
            done, _ = await asyncio.wait({task}, timeout=remaining)
        except asyncio.CancelledError:
            task.cancel()
            raise

        if task in done:
            return task.result()

        task.cancel()
        raise ExecutionTimeoutError(f"Execution exceeded {self.timeout}s timeout")

    def _record_skipped(self) -> None:
        """Record nodes cut off by failed edge conditions as skipped.

        Covers the skipped targets and their downstream subtrees, except
        nodes that still ran through another edge.
        """
        if not self._condition_skipped:
            return

        skipped: set[str] = set()
        pending = list(self._condition_skipped)
        while pending:
            node_id = pending.pop()
            if node_id in skipped or self.context.has_executed(node_id):
                continue
            skipped.add(node_id)
            pending.extend(e.target for e in self._outgoing[node_id])

        now = utc_now()
        for node in self.workflow.nodes:
            if node.id in skipped:
                self.results.append(
                    NodeExecutionResult(
                        node_id=node.id,
                        status=NodeResultStatus.SKIPPED,
                        started_at=now,
                        finished_at=now,
                    )
                )


class WorkflowExecutionEngine:
    """Dependency-gated workflow graph executor.

    Executes workflow graphs with:
    - Start-node detection (no inbound edges, or trigger type)
    - Dependency-gated depth-first dispatch, each node at most once
    - Input merging across multiple inbound edges
    - Conditional edges
    - stop / continue / retry error policies
    - A wall-time deadline around every handler call

    The engine holds no per-execution state, so concurrent executions can
    share one instance.

    Example usage:
        engine = WorkflowExecutionEngine(registry, store)
        result = await engine.execute(workflow, {"x": 1})
        print(result.status, result.output)
    """

    def __init__(
        self,
        registry: NodeRegistry,
        store: WorkflowStore | None = None,
        timeout: float | None = None,
        strict_graph: bool | None = None,
        retry_delay: float | None = None,
        credential_resolver: CredentialResolver | None = None,
    ) -> None:
        """Initialize the execution engine.

        Args:
            registry: Node handler registry
            store: Workflow definitions for execute_by_id (a private one if None)
            timeout: Default execution timeout in seconds (defaults to settings.execution_timeout)
            strict_graph: Reject cyclic/unreachable graphs (defaults to settings.execution_strict_graph)
            retry_delay: Seconds between node retries (defaults to settings.node_retry_delay)
            credential_resolver: Async lookup of credential data by id
        """
        self.registry = registry
        self.store = store if store is not None else WorkflowStore()
        self.timeout = timeout if timeout is not None else settings.execution_timeout
        self.strict_graph = strict_graph if strict_graph is not None else settings.execution_strict_graph
        self.retry_delay = retry_delay if retry_delay is not None else settings.node_retry_delay
        self.credential_resolver = credential_resolver

    def register_workflow(self, workflow: WorkflowDefinition) -> None:
        """Register or replace a workflow definition."""
        self.store.register(workflow)

    async def execute(
        self,
        workflow: WorkflowDefinition,
        input_data: Any = None,
        user_id: str | None = None,
        mode: ExecutionMode = ExecutionMode.MANUAL,
        execution_id: str | None = None,
        variables: dict[str, Any] | None = None,
    ) -> ExecutionResult:
        """Execute a workflow.

        Never raises for graph, handler or timeout errors; those produce a
        ``failed`` result that still lists every recorded node result.

        Args:
            workflow: Workflow to execute
            input_data: Execution input, seeded into every start node
            user_id: Triggering user
            mode: How the execution was triggered
            execution_id: Pre-assigned id (generated if None)
            variables: Initial context variables

        Returns:
            Execution result envelope
        """
        context = ExecutionContext(
            workflow_id=workflow.id,
            execution_id=execution_id or new_execution_id(),
            user_id=user_id,
            mode=mode,
            input=input_data,
            variables=dict(variables or {}),
            credential_resolver=self.credential_resolver,
        )

        timeout = workflow.settings.timeout or self.timeout
        run = _WorkflowRun(
            workflow=workflow,
            context=context,
            registry=self.registry,
            timeout=timeout,
            strict_graph=self.strict_graph,
            retry_delay=self.retry_delay,
        )

        with structlog.contextvars.bound_contextvars(
            execution_id=context.execution_id,
            workflow_id=workflow.id,
        ):
            return await run.run()

    async def execute_by_id(
        self,
        workflow_id: str,
        input_data: Any = None,
        user_id: str | None = None,
        mode: ExecutionMode = ExecutionMode.MANUAL,
        execution_id: str | None = None,
        variables: dict[str, Any] | None = None,
    ) -> ExecutionResult:
        """Execute a registered workflow.

        Raises:
            WorkflowNotFoundError: If the workflow is not registered
        """
        workflow = self.store.require(workflow_id)
        return await self.execute(
            workflow,
            input_data,
            user_id=user_id,
            mode=mode,
            execution_id=execution_id,
            variables=variables,
        )
