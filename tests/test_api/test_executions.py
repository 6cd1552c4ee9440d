"""Tests for execution request endpoints."""

import pytest
from httpx import AsyncClient


class TestExecutionEndpointsDirectMode:
    """Without a queue the request runs inline."""

    @pytest.mark.asyncio
    async def test_execution_runs_inline(self, client: AsyncClient, runtime, sample_workflow):
        runtime.register_workflow(sample_workflow)

        response = await client.post(
            "/api/v1/executions",
            json={"workflow_id": "wf_sample", "input": {"name": "Ada"}},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["queued"] is False
        assert data["job_id"] == data["execution_id"]
        assert data["result"]["status"] == "success"
        assert data["result"]["output"] == {"greeting": "hello", "who": "Ada"}

    @pytest.mark.asyncio
    async def test_unknown_workflow(self, client: AsyncClient):
        response = await client.post("/api/v1/executions", json={"workflow_id": "wf_missing"})

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_negative_delay_rejected(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/executions",
            json={"workflow_id": "wf_sample", "delay": -1},
        )

        assert response.status_code == 422


class TestExecutionEndpointsDurableMode:
    """With a durable queue the request is accepted and queued."""

    @pytest.mark.asyncio
    async def test_execution_is_queued(
        self, durable_client: AsyncClient, durable_runtime, sample_workflow, arq_pool
    ):
        durable_runtime.register_workflow(sample_workflow)

        response = await durable_client.post(
            "/api/v1/executions",
            json={
                "workflow_id": "wf_sample",
                "input": {"name": "Ada"},
                "mode": "webhook",
                "delay": 5,
            },
        )

        assert response.status_code == 202
        data = response.json()
        assert data["queued"] is True
        assert data["result"] is None
        payload = arq_pool.enqueued[data["job_id"]]["args"][0]
        assert payload["mode"] == "webhook"
        assert payload["input"] == {"name": "Ada"}

    @pytest.mark.asyncio
    async def test_duplicate_job_id_conflicts(
        self, durable_client: AsyncClient, durable_runtime, sample_workflow
    ):
        durable_runtime.register_workflow(sample_workflow)
        body = {"workflow_id": "wf_sample", "job_id": "order-42"}

        first = await durable_client.post("/api/v1/executions", json=body)
        second = await durable_client.post("/api/v1/executions", json=body)

        assert first.status_code == 202
        assert first.json()["job_id"] == "order-42"
        assert second.status_code == 409

    @pytest.mark.asyncio
    async def test_unknown_workflow(self, durable_client: AsyncClient, arq_pool):
        response = await durable_client.post(
            "/api/v1/executions",
            json={"workflow_id": "wf_missing"},
        )

        assert response.status_code == 404
        assert arq_pool.enqueued == {}
