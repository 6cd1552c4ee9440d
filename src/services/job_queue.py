"""Job queue service.

Accepts execution requests and runs them either through a durable Redis
queue (arq) with a bounded in-process worker pool, or inline when no queue
backend is configured or reachable.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from contextlib import suppress
from typing import Any, Callable

import structlog
from arq import Retry, create_pool
from arq.connections import ArqRedis, RedisSettings
from arq.constants import in_progress_key_prefix, job_key_prefix, result_key_prefix
from arq.jobs import Job
from arq.jobs import JobStatus as ArqJobStatus
from arq.worker import Worker, func
from redis.exceptions import RedisError

from src.config import Settings
from src.core.execution_engine import WorkflowExecutionEngine
from src.models.execution import (
    ExecutionAccepted,
    ExecutionMode,
    ExecutionStatus,
    JobPayload,
    JobState,
    JobStatus,
    QueueStats,
    new_execution_id,
)
from src.models.workflow import WorkflowDefinition
from src.services.workflow_store import WorkflowStore

logger = structlog.get_logger()

JOB_FUNCTION = "run_workflow_job"

# Failed results outlive completed ones by this factor during cleanup.
FAILED_RETENTION_FACTOR = 7

ARQ_STATE_MAP = {
    ArqJobStatus.deferred: JobState.DELAYED,
    ArqJobStatus.queued: JobState.WAITING,
    ArqJobStatus.in_progress: JobState.ACTIVE,
}


class JobQueueError(Exception):
    """Error in job queue operations."""

    def __init__(self, message: str, error_code: str = "JOB_QUEUE_ERROR") -> None:
        super().__init__(message)
        self.error_code = error_code


class WorkflowJobFailed(Exception):
    """A queued execution finished with status ``failed``.

    arq stores this exception as the job result, so ``args`` carries every
    constructor argument and the instance survives a pickle round trip.
    """

    def __init__(
        self,
        execution_id: str,
        error: str | None = None,
        error_code: str | None = None,
    ) -> None:
        super().__init__(execution_id, error, error_code)
        self.execution_id = execution_id
        self.error = error
        self.error_code = error_code

    def __str__(self) -> str:
        return self.error or "Workflow execution failed"


def backoff_delay(base: float, job_try: int) -> float:
    """Exponential retry delay in seconds for the given (1-based) try."""
    return base * 2 ** (job_try - 1)


async def run_workflow_job(ctx: dict[str, Any], payload: dict[str, Any]) -> dict[str, Any]:
    """arq job function: execute one queued workflow.

    A failed execution is retried with exponential backoff until the
    configured attempts are used up, then fails the job.

    Args:
        ctx: arq worker context (engine, settings, job_try, job_id)
        payload: Serialized JobPayload

    Returns:
        Serialized ExecutionResult
    """
    engine: WorkflowExecutionEngine = ctx["engine"]
    settings: Settings = ctx["settings"]
    job_try: int = ctx.get("job_try", 1)
    job = JobPayload.model_validate(payload)

    logger.info(
        "job_started",
        job_id=ctx.get("job_id"),
        execution_id=job.execution_id,
        workflow_id=job.workflow_id,
        attempt=job_try,
    )

    result = await engine.execute_by_id(
        job.workflow_id,
        job.input,
        user_id=job.user_id,
        mode=job.mode,
        execution_id=job.execution_id,
    )

    if result.status is ExecutionStatus.FAILED:
        if job_try < settings.job_attempts:
            delay = backoff_delay(settings.job_backoff_delay, job_try)
            logger.warning(
                "job_retry_scheduled",
                job_id=ctx.get("job_id"),
                execution_id=job.execution_id,
                attempt=job_try,
                delay=delay,
                error=result.error,
            )
            raise Retry(defer=delay)

        logger.error(
            "job_failed",
            job_id=ctx.get("job_id"),
            execution_id=job.execution_id,
            attempts=job_try,
            error=result.error,
        )
        raise WorkflowJobFailed(result.execution_id, result.error, result.error_code)

    logger.info(
        "job_completed",
        job_id=ctx.get("job_id"),
        execution_id=job.execution_id,
        duration_ms=result.duration_ms,
    )
    return result.model_dump(mode="json")


async def extend_failed_retention(ctx: dict[str, Any]) -> None:
    """arq after-job hook: keep failed results for ``keep_failed`` seconds."""
    redis: ArqRedis = ctx["redis"]
    job_id: str = ctx["job_id"]
    info = await Job(job_id, redis).result_info()
    if info is not None and not info.success:
        await redis.expire(result_key_prefix + job_id, ctx["settings"].keep_failed)


def build_redis_settings(settings: Settings) -> RedisSettings:
    """Build arq connection settings from application settings."""
    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    if settings.redis_password is not None:
        redis_settings.password = settings.redis_password.get_secret_value()
    redis_settings.conn_timeout = settings.redis_conn_timeout
    redis_settings.conn_retries = settings.redis_conn_retries
    return redis_settings


class JobQueue(ABC):
    """Interface shared by the durable and direct queue modes.

    The mode is chosen once at startup by ``create_job_queue``.
    """

    mode: str = ""

    def __init__(
        self,
        settings: Settings,
        engine: WorkflowExecutionEngine,
        store: WorkflowStore,
    ) -> None:
        self.settings = settings
        self.engine = engine
        self.store = store

    @property
    @abstractmethod
    def available(self) -> bool:
        """Whether a durable backend is in use."""

    @abstractmethod
    async def submit(
        self,
        workflow_id: str,
        input_data: Any = None,
        *,
        user_id: str | None = None,
        mode: ExecutionMode = ExecutionMode.MANUAL,
        priority: int | None = None,
        delay: float | None = None,
        job_id: str | None = None,
    ) -> ExecutionAccepted:
        """Accept an execution request.

        Raises:
            WorkflowNotFoundError: If the workflow is not registered
        """

    async def enqueue(
        self,
        workflow_id: str,
        input_data: Any = None,
        *,
        user_id: str | None = None,
        mode: ExecutionMode = ExecutionMode.MANUAL,
        priority: int | None = None,
        delay: float | None = None,
        job_id: str | None = None,
    ) -> str:
        """Accept an execution request and return its execution id.

        In direct mode this returns only after the execution completed.
        """
        accepted = await self.submit(
            workflow_id,
            input_data,
            user_id=user_id,
            mode=mode,
            priority=priority,
            delay=delay,
            job_id=job_id,
        )
        return accepted.execution_id

    def register_workflow(self, workflow: WorkflowDefinition) -> None:
        self.store.register(workflow)

    @abstractmethod
    async def get_job_status(self, job_id: str) -> JobStatus | None: ...

    @abstractmethod
    async def get_stats(self) -> QueueStats | None: ...

    @abstractmethod
    async def retry(self, job_id: str) -> bool: ...

    @abstractmethod
    async def cancel(self, job_id: str) -> bool: ...

    @abstractmethod
    async def pause(self) -> None: ...

    @abstractmethod
    async def resume(self) -> None: ...

    @abstractmethod
    async def cleanup(self, older_than: float) -> int: ...

    async def start(self) -> None:
        """Start background processing, if any."""

    async def shutdown(self) -> None:
        """Stop background processing and release connections."""


class DirectQueue(JobQueue):
    """Runs every request inline on the caller's task.

    Used when the durable queue is disabled or unreachable. Delay and
    priority are ignored; job management operations report nothing.
    """

    mode = "direct"

    @property
    def available(self) -> bool:
        return False

    async def submit(
        self,
        workflow_id: str,
        input_data: Any = None,
        *,
        user_id: str | None = None,
        mode: ExecutionMode = ExecutionMode.MANUAL,
        priority: int | None = None,
        delay: float | None = None,
        job_id: str | None = None,
    ) -> ExecutionAccepted:
        execution_id = new_execution_id()
        logger.debug(
            "direct_execution_starting",
            workflow_id=workflow_id,
            execution_id=execution_id,
            mode=mode.value,
        )

        result = await self.engine.execute_by_id(
            workflow_id,
            input_data,
            user_id=user_id,
            mode=mode,
            execution_id=execution_id,
        )
        return ExecutionAccepted(
            execution_id=execution_id,
            job_id=job_id or execution_id,
            queued=False,
            result=result,
        )

    async def get_job_status(self, job_id: str) -> JobStatus | None:
        return None

    async def get_stats(self) -> QueueStats | None:
        return None

    async def retry(self, job_id: str) -> bool:
        return False

    async def cancel(self, job_id: str) -> bool:
        return False

    async def pause(self) -> None:
        logger.debug("job_queue_pause_ignored", mode=self.mode)

    async def resume(self) -> None:
        logger.debug("job_queue_resume_ignored", mode=self.mode)

    async def cleanup(self, older_than: float) -> int:
        logger.debug("job_queue_cleanup_ignored", mode=self.mode)
        return 0


class DurableQueue(JobQueue):
    """Redis-backed queue with an in-process arq worker.

    Jobs survive process restarts; at most ``worker_concurrency``
    executions run at once. ``priority`` is stored in the payload but arq
    processes jobs in enqueue (or deferral) order.

    Example usage:
        pool = await create_pool(build_redis_settings(settings))
        queue = DurableQueue(settings, engine, store, pool)
        await queue.start()
        execution_id = await queue.enqueue("wf_123", {"x": 1})
    """

    mode = "durable"

    def __init__(
        self,
        settings: Settings,
        engine: WorkflowExecutionEngine,
        store: WorkflowStore,
        pool: ArqRedis,
        job_factory: Callable[..., Job] = Job,
    ) -> None:
        """Initialize the durable queue.

        Args:
            settings: Application settings
            engine: Engine the worker executes jobs with
            store: Workflow definitions
            pool: Connected arq Redis pool
            job_factory: Builds arq job handles from ids
        """
        super().__init__(settings, engine, store)
        self.queue_name = settings.queue_name
        self._pool = pool
        self._job_factory = job_factory
        self._worker: Worker | None = None
        self._worker_task: asyncio.Task | None = None
        self._paused = False

    @property
    def available(self) -> bool:
        return True

    @property
    def paused(self) -> bool:
        return self._paused

    def _job(self, job_id: str) -> Job:
        return self._job_factory(job_id, self._pool, _queue_name=self.queue_name)

    async def submit(
        self,
        workflow_id: str,
        input_data: Any = None,
        *,
        user_id: str | None = None,
        mode: ExecutionMode = ExecutionMode.MANUAL,
        priority: int | None = None,
        delay: float | None = None,
        job_id: str | None = None,
    ) -> ExecutionAccepted:
        # Reject unknown workflows before anything reaches Redis.
        self.store.require(workflow_id)

        execution_id = new_execution_id()
        payload = JobPayload(
            workflow_id=workflow_id,
            execution_id=execution_id,
            input=input_data,
            user_id=user_id,
            mode=mode,
            priority=priority,
        )
        job = await self._pool.enqueue_job(
            JOB_FUNCTION,
            payload.model_dump(mode="json"),
            _job_id=job_id or execution_id,
            _queue_name=self.queue_name,
            _defer_by=delay or None,
        )
        if job is None:
            raise JobQueueError(f"Job already exists: {job_id}", "JOB_EXISTS")

        logger.info(
            "job_enqueued",
            job_id=job.job_id,
            execution_id=execution_id,
            workflow_id=workflow_id,
            mode=mode.value,
            delay=delay,
        )
        return ExecutionAccepted(execution_id=execution_id, job_id=job.job_id, queued=True)

    async def get_job_status(self, job_id: str) -> JobStatus | None:
        """Get the state of a job, or None if it is unknown or expired."""
        job = self._job(job_id)
        arq_status = await job.status()

        if arq_status is ArqJobStatus.not_found:
            return None

        if arq_status is ArqJobStatus.complete:
            info = await job.result_info()
            if info is None:
                return None
            if info.success:
                return JobStatus(
                    job_id=job_id,
                    state=JobState.COMPLETED,
                    progress=100,
                    data=info.result,
                    attempts=info.job_try,
                )
            return JobStatus(
                job_id=job_id,
                state=JobState.FAILED,
                progress=100,
                error=str(info.result),
                attempts=info.job_try,
            )

        info = await job.info()
        return JobStatus(
            job_id=job_id,
            state=ARQ_STATE_MAP[arq_status],
            data=info.args[0] if info is not None and info.args else None,
            attempts=(info.job_try or 0) if info is not None else 0,
        )

    async def get_stats(self) -> QueueStats | None:
        """Count jobs per state for this queue."""
        queued = await self._pool.queued_jobs(queue_name=self.queue_name)
        in_progress = {
            key.decode() if isinstance(key, bytes) else key
            for key in await self._pool.keys(in_progress_key_prefix + "*")
        }
        now_ms = time.time() * 1000

        stats = QueueStats()
        for job in queued:
            if in_progress_key_prefix + job.job_id in in_progress:
                stats.active += 1
            elif job.score is not None and job.score > now_ms:
                stats.delayed += 1
            else:
                stats.waiting += 1

        for result in await self._pool.all_job_results():
            if result.queue_name != self.queue_name:
                continue
            if result.success:
                stats.completed += 1
            else:
                stats.failed += 1

        return stats

    async def retry(self, job_id: str) -> bool:
        """Re-enqueue a failed job under the same id with ``mode=retry``.

        Returns:
            False if the job is unknown or did not fail
        """
        job = self._job(job_id)
        if await job.status() is not ArqJobStatus.complete:
            return False

        info = await job.result_info()
        if info is None or info.success or not info.args:
            return False

        payload = JobPayload.model_validate(info.args[0])
        payload = payload.model_copy(update={"mode": ExecutionMode.RETRY})

        await self._pool.delete(result_key_prefix + job_id)
        requeued = await self._pool.enqueue_job(
            JOB_FUNCTION,
            payload.model_dump(mode="json"),
            _job_id=job_id,
            _queue_name=self.queue_name,
        )
        if requeued is None:
            return False

        logger.info("job_retried", job_id=job_id, execution_id=payload.execution_id)
        return True

    async def cancel(self, job_id: str) -> bool:
        """Remove a waiting or delayed job.

        Returns:
            False if the job is active, finished or unknown
        """
        job = self._job(job_id)
        if await job.status() not in (ArqJobStatus.queued, ArqJobStatus.deferred):
            return False

        removed = await self._pool.zrem(self.queue_name, job_id)
        await self._pool.delete(job_key_prefix + job_id)

        if removed:
            logger.info("job_cancelled", job_id=job_id)
        return bool(removed)

    async def pause(self) -> None:
        """Stop taking new jobs; queued jobs stay in Redis."""
        self._paused = True
        await self._stop_worker()
        logger.info("job_queue_paused", queue_name=self.queue_name)

    async def resume(self) -> None:
        self._paused = False
        self._start_worker()
        logger.info("job_queue_resumed", queue_name=self.queue_name)

    async def cleanup(self, older_than: float) -> int:
        """Delete stored results older than the given age in seconds.

        Failed results use ``FAILED_RETENTION_FACTOR`` times the age.

        Returns:
            Number of results removed
        """
        now = time.time()
        removed = 0
        for result in await self._pool.all_job_results():
            if result.queue_name != self.queue_name or result.finish_time is None:
                continue

            max_age = older_than if result.success else older_than * FAILED_RETENTION_FACTOR
            if now - result.finish_time.timestamp() > max_age:
                removed += await self._pool.delete(result_key_prefix + result.job_id)

        logger.info("job_results_cleaned", removed=removed, older_than=older_than)
        return removed

    async def start(self) -> None:
        if not self._paused:
            self._start_worker()

    async def shutdown(self) -> None:
        await self._stop_worker()
        await self._pool.close(close_connection_pool=True)
        logger.info("job_queue_closed", queue_name=self.queue_name)

    def build_worker(self, **options: Any) -> Worker:
        """Build the arq worker that executes this queue's jobs.

        Args:
            **options: Passed to ``Worker``, overriding the defaults
                (e.g. ``redis_pool`` or ``burst``)

        Returns:
            Unstarted worker
        """
        worker_options: dict[str, Any] = {
            "functions": [func(run_workflow_job, name=JOB_FUNCTION)],
            "redis_settings": build_redis_settings(self.settings),
            "queue_name": self.queue_name,
            "max_jobs": self.settings.worker_concurrency,
            "max_tries": self.settings.job_attempts,
            "keep_result": self.settings.keep_completed,
            "job_timeout": self.settings.execution_timeout + 30,
            "ctx": {"engine": self.engine, "settings": self.settings},
            "after_job_end": extend_failed_retention,
            "handle_signals": False,
        }
        worker_options.update(options)
        return Worker(**worker_options)

    def _start_worker(self) -> None:
        if self._worker_task is not None and not self._worker_task.done():
            return

        self._worker = self.build_worker()
        self._worker_task = asyncio.create_task(self._worker.async_run())
        logger.info(
            "job_worker_started",
            queue_name=self.queue_name,
            concurrency=self.settings.worker_concurrency,
        )

    async def _stop_worker(self) -> None:
        if self._worker_task is None:
            return

        self._worker_task.cancel()
        with suppress(asyncio.CancelledError):
            await self._worker_task
        if self._worker is not None:
            # Waits for in-flight jobs to finish.
            await self._worker.close()

        self._worker = None
        self._worker_task = None
        logger.info("job_worker_stopped", queue_name=self.queue_name)


async def create_job_queue(
    settings: Settings,
    engine: WorkflowExecutionEngine,
    store: WorkflowStore,
) -> JobQueue:
    """Pick the queue mode for this process.

    Connection failures are logged and fall back to direct mode; they are
    never raised to the caller.
    """
    if not settings.queue_enabled:
        logger.info("job_queue_direct_mode", reason="disabled")
        return DirectQueue(settings, engine, store)

    try:
        pool = await create_pool(
            build_redis_settings(settings),
            default_queue_name=settings.queue_name,
        )
    except (OSError, RedisError, asyncio.TimeoutError) as e:
        logger.warning(
            "job_queue_unavailable",
            redis_url=settings.get_masked_redis_url(),
            error=str(e),
        )
        return DirectQueue(settings, engine, store)

    logger.info(
        "job_queue_connected",
        redis_url=settings.get_masked_redis_url(),
        queue_name=settings.queue_name,
    )
    return DurableQueue(settings, engine, store, pool)
