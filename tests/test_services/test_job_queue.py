"""Tests for the job queue service."""

from typing import Any

import pytest
from arq import Retry
from arq.constants import job_key_prefix, result_key_prefix
from arq.jobs import deserialize_result, serialize_result

from src.models.execution import ExecutionMode, ExecutionStatus, JobPayload, JobState
from src.services import job_queue
from src.services.job_queue import (
    JOB_FUNCTION,
    DirectQueue,
    DurableQueue,
    JobQueueError,
    WorkflowJobFailed,
    backoff_delay,
    create_job_queue,
    run_workflow_job,
)
from src.services.workflow_store import WorkflowNotFoundError


@pytest.fixture
def durable(durable_queue) -> DurableQueue:
    return durable_queue


@pytest.fixture
def direct(test_settings, engine, store, sample_workflow) -> DirectQueue:
    store.register(sample_workflow)
    return DirectQueue(test_settings, engine, store)


def test_backoff_delay():
    assert backoff_delay(1.0, 1) == 1.0
    assert backoff_delay(1.0, 2) == 2.0
    assert backoff_delay(0.5, 4) == 4.0


class TestDirectQueue:
    """Tests for inline execution."""

    @pytest.mark.asyncio
    async def test_submit_runs_inline(self, direct):
        accepted = await direct.submit("wf_sample", {"name": "Ada"})

        assert accepted.queued is False
        assert accepted.job_id == accepted.execution_id
        assert accepted.result.status == ExecutionStatus.SUCCESS
        assert accepted.result.execution_id == accepted.execution_id
        assert accepted.result.output == {"greeting": "hello", "who": "Ada"}

    @pytest.mark.asyncio
    async def test_submit_keeps_custom_job_id(self, direct):
        accepted = await direct.submit("wf_sample", {}, job_id="custom-1")

        assert accepted.job_id == "custom-1"

    @pytest.mark.asyncio
    async def test_enqueue_returns_execution_id(self, direct):
        execution_id = await direct.enqueue("wf_sample", {"name": "Ada"})

        assert execution_id.startswith("exec_")

    @pytest.mark.asyncio
    async def test_unknown_workflow(self, direct):
        with pytest.raises(WorkflowNotFoundError):
            await direct.submit("wf_missing")

    @pytest.mark.asyncio
    async def test_management_operations_report_nothing(self, direct):
        assert direct.available is False
        assert direct.mode == "direct"
        assert await direct.get_job_status("anything") is None
        assert await direct.get_stats() is None
        assert await direct.retry("anything") is False
        assert await direct.cancel("anything") is False
        assert await direct.cleanup(60) == 0
        await direct.pause()
        await direct.resume()


class TestCreateJobQueue:
    """Tests for picking the queue mode."""

    @pytest.mark.asyncio
    async def test_disabled_uses_direct_mode(self, test_settings, engine, store):
        queue = await create_job_queue(test_settings, engine, store)

        assert isinstance(queue, DirectQueue)

    @pytest.mark.asyncio
    async def test_unreachable_redis_falls_back(self, test_settings, engine, store, monkeypatch):
        async def refuse(*args, **kwargs):
            raise OSError("Connection refused")

        monkeypatch.setattr(job_queue, "create_pool", refuse)
        settings = test_settings.model_copy(update={"queue_enabled": True})

        queue = await create_job_queue(settings, engine, store)

        assert isinstance(queue, DirectQueue)

    @pytest.mark.asyncio
    async def test_reachable_redis_uses_durable_mode(
        self, test_settings, engine, store, arq_pool, monkeypatch
    ):
        async def connect(*args, **kwargs):
            return arq_pool

        monkeypatch.setattr(job_queue, "create_pool", connect)
        settings = test_settings.model_copy(update={"queue_enabled": True})

        queue = await create_job_queue(settings, engine, store)

        assert isinstance(queue, DurableQueue)
        assert queue.available is True


class TestRunWorkflowJob:
    """Tests for the arq job function."""

    def _ctx(self, engine, settings, job_try: int) -> dict[str, Any]:
        return {"engine": engine, "settings": settings, "job_try": job_try, "job_id": "job-1"}

    def _payload(self, workflow_id: str, input_data: Any = None) -> dict[str, Any]:
        return JobPayload(
            workflow_id=workflow_id,
            execution_id="exec_fixed",
            input=input_data,
            mode=ExecutionMode.WEBHOOK,
        ).model_dump(mode="json")

    @pytest.mark.asyncio
    async def test_success_returns_result(self, engine, store, queue_settings, sample_workflow):
        store.register(sample_workflow)

        result = await run_workflow_job(
            self._ctx(engine, queue_settings, 1),
            self._payload("wf_sample", {"name": "Ada"}),
        )

        assert result["status"] == "success"
        assert result["execution_id"] == "exec_fixed"
        assert result["mode"] == "webhook"
        assert result["output"] == {"greeting": "hello", "who": "Ada"}

    @pytest.mark.asyncio
    async def test_failure_retries_with_backoff(self, engine, store, queue_settings, make_workflow):
        store.register(make_workflow([("boom", "ACTION_CODE", {"fail": True})], workflow_id="wf_boom"))

        with pytest.raises(Retry) as exc_info:
            await run_workflow_job(self._ctx(engine, queue_settings, 2), self._payload("wf_boom"))

        assert exc_info.value.defer_score == 2000

    @pytest.mark.asyncio
    async def test_last_attempt_fails_job(self, engine, store, queue_settings, make_workflow):
        store.register(make_workflow([("boom", "ACTION_CODE", {"fail": True})], workflow_id="wf_boom"))

        with pytest.raises(WorkflowJobFailed) as exc_info:
            await run_workflow_job(self._ctx(engine, queue_settings, 3), self._payload("wf_boom"))

        assert exc_info.value.execution_id == "exec_fixed"
        assert "boom failed" in str(exc_info.value)


class TestStoredFailures:
    """Failure results survive arq's result serialization."""

    def _round_trip(self, exc: Exception) -> Any:
        data = serialize_result(
            JOB_FUNCTION, (), {}, 1, 0, False, exc, 0, 0, "job-1:run", "test:queue", "job-1"
        )
        return deserialize_result(data)

    def test_workflow_job_failed(self):
        stored = self._round_trip(WorkflowJobFailed("exec_1", "node failed", "NODE_ERROR"))

        assert stored.success is False
        assert isinstance(stored.result, WorkflowJobFailed)
        assert stored.result.execution_id == "exec_1"
        assert stored.result.error_code == "NODE_ERROR"
        assert str(stored.result) == "node failed"

    def test_workflow_job_failed_without_message(self):
        stored = self._round_trip(WorkflowJobFailed("exec_1"))

        assert str(stored.result) == "Workflow execution failed"

    def test_workflow_not_found(self):
        stored = self._round_trip(WorkflowNotFoundError("wf_gone"))

        assert stored.result.workflow_id == "wf_gone"
        assert str(stored.result) == "Workflow not found: wf_gone"


class TestDurableQueue:
    """Tests for the Redis-backed queue against a fake arq pool."""

    @pytest.mark.asyncio
    async def test_submit_enqueues_payload(self, durable, arq_pool):
        accepted = await durable.submit("wf_sample", {"name": "Ada"}, priority=5, delay=30)

        assert accepted.queued is True
        assert accepted.result is None
        assert accepted.job_id == accepted.execution_id

        job = arq_pool.enqueued[accepted.job_id]
        assert job["function"] == JOB_FUNCTION
        assert job["queue_name"] == durable.queue_name
        assert job["defer_by"] == 30
        payload = job["args"][0]
        assert payload["workflow_id"] == "wf_sample"
        assert payload["execution_id"] == accepted.execution_id
        assert payload["priority"] == 5

    @pytest.mark.asyncio
    async def test_submit_unknown_workflow_touches_nothing(self, durable, arq_pool):
        with pytest.raises(WorkflowNotFoundError):
            await durable.submit("wf_missing")

        assert arq_pool.enqueued == {}

    @pytest.mark.asyncio
    async def test_duplicate_job_id(self, durable):
        await durable.submit("wf_sample", job_id="order-1")

        with pytest.raises(JobQueueError) as exc_info:
            await durable.submit("wf_sample", job_id="order-1")

        assert exc_info.value.error_code == "JOB_EXISTS"

    @pytest.mark.asyncio
    async def test_status_of_pending_jobs(self, durable):
        waiting = await durable.submit("wf_sample", {"name": "Ada"})
        delayed = await durable.submit("wf_sample", delay=60)

        status = await durable.get_job_status(waiting.job_id)
        assert status.state == JobState.WAITING
        assert status.data["input"] == {"name": "Ada"}

        assert (await durable.get_job_status(delayed.job_id)).state == JobState.DELAYED
        assert await durable.get_job_status("unknown") is None

    @pytest.mark.asyncio
    async def test_status_of_finished_jobs(self, durable, arq_pool):
        arq_pool.add_result("done", True, {"status": "success"})
        arq_pool.add_result("broken", False, WorkflowJobFailed("exec_1", "node failed", "NODE_ERROR"))

        done = await durable.get_job_status("done")
        broken = await durable.get_job_status("broken")

        assert done.state == JobState.COMPLETED
        assert done.progress == 100
        assert done.data == {"status": "success"}
        assert broken.state == JobState.FAILED
        assert broken.error == "node failed"
        assert broken.attempts == 2

    @pytest.mark.asyncio
    async def test_stats(self, durable, arq_pool):
        active = await durable.submit("wf_sample")
        await durable.submit("wf_sample")
        await durable.submit("wf_sample", delay=60)
        arq_pool.in_progress.add(active.job_id)
        arq_pool.add_result("ok-1", True, {})
        arq_pool.add_result("ok-2", True, {})
        arq_pool.add_result("bad", False, "boom")

        stats = await durable.get_stats()

        assert stats.active == 1
        assert stats.waiting == 1
        assert stats.delayed == 1
        assert stats.completed == 2
        assert stats.failed == 1

    @pytest.mark.asyncio
    async def test_retry_failed_job(self, durable, arq_pool):
        payload = JobPayload(workflow_id="wf_sample", execution_id="exec_1").model_dump(mode="json")
        arq_pool.add_result("job-1", False, "boom", args=(payload,))

        assert await durable.retry("job-1") is True

        assert result_key_prefix + "job-1" in arq_pool.deleted
        requeued = arq_pool.enqueued["job-1"]["args"][0]
        assert requeued["mode"] == "retry"
        assert requeued["execution_id"] == "exec_1"

    @pytest.mark.asyncio
    async def test_retry_rejects_other_jobs(self, durable, arq_pool):
        waiting = await durable.submit("wf_sample")
        arq_pool.add_result("ok", True, {}, args=({},))

        assert await durable.retry(waiting.job_id) is False
        assert await durable.retry("ok") is False
        assert await durable.retry("unknown") is False

    @pytest.mark.asyncio
    async def test_cancel_pending_job(self, durable, arq_pool):
        accepted = await durable.submit("wf_sample", delay=60)

        assert await durable.cancel(accepted.job_id) is True

        assert accepted.job_id not in arq_pool.enqueued
        assert job_key_prefix + accepted.job_id in arq_pool.deleted

    @pytest.mark.asyncio
    async def test_cancel_finished_job_fails(self, durable, arq_pool):
        arq_pool.add_result("done", True, {})

        assert await durable.cancel("done") is False
        assert await durable.cancel("unknown") is False

    @pytest.mark.asyncio
    async def test_cleanup_keeps_failed_results_longer(self, durable, arq_pool):
        arq_pool.add_result("old-ok", True, {}, age=120)
        arq_pool.add_result("new-ok", True, {}, age=10)
        arq_pool.add_result("old-failed", False, "boom", age=120)
        arq_pool.add_result("ancient-failed", False, "boom", age=1000)

        removed = await durable.cleanup(60)

        assert removed == 2
        assert set(arq_pool.results) == {"new-ok", "old-failed"}

    @pytest.mark.asyncio
    async def test_shutdown_closes_pool(self, durable, arq_pool):
        await durable.shutdown()

        assert arq_pool.closed is True
