"""Cron scheduler service.

Fires registered workflows on cron schedules, one asyncio timer task per
active job.
"""

import asyncio
from datetime import datetime
from typing import TYPE_CHECKING
from uuid import uuid4
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog
from croniter import croniter

from src.config import settings
from src.core.execution_engine import WorkflowExecutionEngine
from src.models.execution import ExecutionMode, ExecutionStatus, utc_now
from src.models.schedule import ScheduledJob
from src.models.workflow import WorkflowDefinition
from src.services.workflow_store import WorkflowStore

if TYPE_CHECKING:
    from src.services.job_queue import JobQueue

logger = structlog.get_logger()

CRON_FIELD_COUNT = 5

COMMON_PATTERNS = {
    "* * * * *": "Every minute",
    "*/5 * * * *": "Every 5 minutes",
    "*/15 * * * *": "Every 15 minutes",
    "0 * * * *": "Every hour",
    "0 0 * * *": "Every day at midnight",
    "0 0 * * 0": "Every Sunday at midnight",
    "0 9 * * 1-5": "Every weekday at 9:00 AM",
    "0 0 1 * *": "On the first day of every month at midnight",
}


class SchedulerError(Exception):
    """Base exception for scheduler errors."""

    def __init__(self, message: str, error_code: str = "SCHEDULER_ERROR") -> None:
        super().__init__(message)
        self.error_code = error_code


class InvalidCronExpression(SchedulerError):
    """Cron expression is not five valid fields."""

    def __init__(self, expression: str) -> None:
        super().__init__(f"Invalid cron expression: {expression}", "INVALID_CRON")
        self.expression = expression


class InvalidTimezone(SchedulerError):
    """Timezone is unknown to the tz database."""

    def __init__(self, timezone: str) -> None:
        super().__init__(f"Unknown timezone: {timezone}", "INVALID_TIMEZONE")
        self.timezone = timezone


class ScheduledJobNotFoundError(SchedulerError):
    """No scheduled job exists under the requested id."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Scheduled job not found: {job_id}", "SCHEDULE_NOT_FOUND")
        self.job_id = job_id


def validate_cron(expression: str) -> bool:
    """Check that an expression has exactly five fields croniter accepts."""
    if len(expression.split()) != CRON_FIELD_COUNT:
        return False
    return croniter.is_valid(expression)


def describe_cron(expression: str) -> str:
    """Describe a cron expression in words.

    Common patterns get a phrase; anything else is spelled out field by field.
    """
    fields = expression.split()
    if len(fields) != CRON_FIELD_COUNT:
        return "Invalid cron expression"

    normalized = " ".join(fields)
    if normalized in COMMON_PATTERNS:
        return COMMON_PATTERNS[normalized]

    minute, hour, day_of_month, month, day_of_week = fields
    return f"At {minute} {hour} on day {day_of_month} of {month}, weekday {day_of_week}"


def next_run_time(expression: str, timezone: str, after: datetime | None = None) -> datetime:
    """Next fire time after ``after`` (default: now), in the given timezone."""
    tz = ZoneInfo(timezone)
    base = after.astimezone(tz) if after is not None else datetime.now(tz)
    return croniter(expression, base).get_next(datetime)


class SchedulerService:
    """Runs workflows on cron schedules.

    Fires go through the attached job queue when there is one, so they
    share its concurrency limit; otherwise they run on the engine. A fire
    never raises: failures are logged and recorded on the job.

    Example usage:
        scheduler = SchedulerService(engine, store, queue)
        await scheduler.start()
        job_id = scheduler.schedule("wf_123", "0 9 * * 1-5", "Europe/Berlin")
        scheduler.stop(job_id)
    """

    def __init__(
        self,
        engine: WorkflowExecutionEngine,
        store: WorkflowStore,
        queue: "JobQueue | None" = None,
        default_timezone: str | None = None,
    ) -> None:
        self.engine = engine
        self.store = store
        self.queue = queue
        self.default_timezone = default_timezone or settings.scheduler_default_timezone
        self._jobs: dict[str, ScheduledJob] = {}
        self._fires: set[asyncio.Task] = set()
        self._started = False

    def register_workflow(self, workflow: WorkflowDefinition) -> None:
        self.store.register(workflow)

    def schedule(
        self,
        workflow_id: str,
        cron_expression: str,
        timezone: str | None = None,
    ) -> str:
        """Schedule a workflow.

        Args:
            workflow_id: Workflow to fire
            cron_expression: Five-field cron expression
            timezone: IANA timezone the expression is evaluated in

        Returns:
            New scheduled job id

        Raises:
            InvalidCronExpression: If the expression is invalid
            InvalidTimezone: If the timezone is unknown
        """
        if not validate_cron(cron_expression):
            raise InvalidCronExpression(cron_expression)

        timezone = timezone or self.default_timezone
        try:
            ZoneInfo(timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise InvalidTimezone(timezone) from e

        job = ScheduledJob(
            id=f"schedule_{uuid4()}",
            workflow_id=workflow_id,
            cron_expression=cron_expression,
            timezone=timezone,
        )
        job.next_run_at = next_run_time(cron_expression, timezone)
        self._jobs[job.id] = job

        if self._started:
            self._start_timer(job)

        logger.info(
            "workflow_scheduled",
            job_id=job.id,
            workflow_id=workflow_id,
            cron_expression=cron_expression,
            timezone=timezone,
            next_run_at=job.next_run_at.isoformat(),
        )
        return job.id

    def stop(self, job_id: str) -> bool:
        """Deactivate a job without removing it."""
        job = self._jobs.get(job_id)
        if job is None:
            return False

        self._cancel_timer(job)
        job.is_active = False
        job.next_run_at = None

        logger.info("scheduled_job_stopped", job_id=job_id)
        return True

    def resume(self, job_id: str) -> bool:
        """Reactivate a stopped job."""
        job = self._jobs.get(job_id)
        if job is None:
            return False

        job.is_active = True
        job.next_run_at = next_run_time(job.cron_expression, job.timezone)
        if self._started:
            self._start_timer(job)

        logger.info("scheduled_job_resumed", job_id=job_id)
        return True

    def remove(self, job_id: str) -> bool:
        job = self._jobs.pop(job_id, None)
        if job is None:
            return False

        self._cancel_timer(job)
        logger.info("scheduled_job_removed", job_id=job_id)
        return True

    def get(self, job_id: str) -> ScheduledJob | None:
        return self._jobs.get(job_id)

    def list(self) -> list[ScheduledJob]:
        return list(self._jobs.values())

    def validate_cron(self, expression: str) -> bool:
        return validate_cron(expression)

    def describe_cron(self, expression: str) -> str:
        return describe_cron(expression)

    async def start(self) -> None:
        """Start timers for every active job."""
        self._started = True
        for job in self._jobs.values():
            if job.is_active:
                self._start_timer(job)
        logger.info("scheduler_started", job_count=len(self._jobs))

    async def shutdown(self) -> None:
        """Cancel all timers and in-flight fires."""
        self._started = False
        tasks = [job.task for job in self._jobs.values() if job.task is not None]
        tasks += list(self._fires)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        for job in self._jobs.values():
            job.task = None
        self._fires.clear()
        logger.info("scheduler_stopped")

    def _start_timer(self, job: ScheduledJob) -> None:
        if job.task is not None and not job.task.done():
            return
        job.task = asyncio.create_task(self._run_timer(job), name=f"schedule:{job.id}")

    def _cancel_timer(self, job: ScheduledJob) -> None:
        if job.task is not None:
            job.task.cancel()
            job.task = None

    async def _run_timer(self, job: ScheduledJob) -> None:
        """Sleep until each fire time, then fire in the background."""
        fire_at: datetime | None = None
        while job.is_active:
            now = utc_now()
            # Never fire the same slot twice if the sleep woke up early.
            after = fire_at if fire_at is not None and fire_at > now else now
            fire_at = next_run_time(job.cron_expression, job.timezone, after)
            job.next_run_at = fire_at

            await asyncio.sleep(max((fire_at - utc_now()).total_seconds(), 0))

            fire = asyncio.create_task(self.fire(job.id))
            self._fires.add(fire)
            fire.add_done_callback(self._fires.discard)

    async def fire(self, job_id: str) -> None:
        """Run one scheduled execution of a job now."""
        job = self._jobs.get(job_id)
        if job is None or not job.is_active:
            return

        workflow = self.store.get(job.workflow_id)
        if workflow is None:
            logger.error(
                "scheduled_workflow_not_found",
                job_id=job.id,
                workflow_id=job.workflow_id,
            )
            return

        input_data = {"scheduledTime": utc_now().isoformat()}
        logger.info("scheduled_workflow_fired", job_id=job.id, workflow_id=job.workflow_id)

        try:
            if self.queue is not None:
                accepted = await self.queue.submit(
                    job.workflow_id,
                    input_data,
                    mode=ExecutionMode.SCHEDULE,
                )
                execution_id = accepted.execution_id
                result = accepted.result
            else:
                result = await self.engine.execute(
                    workflow,
                    input_data,
                    mode=ExecutionMode.SCHEDULE,
                )
                execution_id = result.execution_id

            job.last_status = result.status if result is not None else None
            job.last_error = result.error if result is not None else None

            logger.info(
                "scheduled_workflow_completed" if result is not None else "scheduled_workflow_enqueued",
                job_id=job.id,
                workflow_id=job.workflow_id,
                execution_id=execution_id,
                status=job.last_status.value if job.last_status else None,
            )

        except Exception as e:
            job.last_status = ExecutionStatus.FAILED
            job.last_error = str(e)
            logger.error(
                "scheduled_workflow_failed",
                job_id=job.id,
                workflow_id=job.workflow_id,
                error=str(e),
            )

        finally:
            job.last_run_at = utc_now()
            job.run_count += 1
            if job.is_active:
                job.next_run_at = next_run_time(job.cron_expression, job.timezone)
