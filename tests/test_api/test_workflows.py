"""Tests for workflow API endpoints."""

import pytest
from httpx import AsyncClient

WORKFLOW = {
    "id": "wf_api",
    "name": "API Workflow",
    "nodes": [
        {"id": "trigger", "type": "TRIGGER_MANUAL"},
        {
            "id": "calc",
            "type": "ACTION_FUNCTION",
            "config": {"expressions": {"total": "price * quantity"}},
        },
    ],
    "edges": [{"id": "e1", "source": "trigger", "target": "calc"}],
    "settings": {"errorHandling": "stop"},
}


class TestWorkflowEndpoints:
    """Tests for workflow registration endpoints."""

    @pytest.mark.asyncio
    async def test_list_workflows_empty(self, client: AsyncClient):
        """Test listing workflows when none exist."""
        response = await client.get("/api/v1/workflows")

        assert response.status_code == 200
        assert response.json() == []

    @pytest.mark.asyncio
    async def test_register_workflow(self, client: AsyncClient):
        """Test registering a new workflow."""
        response = await client.post("/api/v1/workflows", json=WORKFLOW)

        assert response.status_code == 201
        data = response.json()
        assert data["id"] == "wf_api"
        assert len(data["nodes"]) == 2
        assert data["settings"]["errorHandling"] == "stop"
        assert data["settings"]["maxRetries"] == 3

        listed = await client.get("/api/v1/workflows")
        assert [w["id"] for w in listed.json()] == ["wf_api"]

    @pytest.mark.asyncio
    async def test_register_accepts_snake_case(self, client: AsyncClient):
        body = {**WORKFLOW, "settings": {"error_handling": "continue", "max_retries": 1}}

        response = await client.post("/api/v1/workflows", json=body)

        assert response.status_code == 201
        assert response.json()["settings"]["errorHandling"] == "continue"

    @pytest.mark.asyncio
    async def test_register_rejects_dangling_edge(self, client: AsyncClient):
        body = {**WORKFLOW, "edges": [{"source": "trigger", "target": "ghost"}]}

        response = await client.post("/api/v1/workflows", json=body)

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_register_rejects_unknown_node_type(self, client: AsyncClient):
        body = {**WORKFLOW, "nodes": [{"id": "x", "type": "ACTION_TELEPORT"}], "edges": []}

        response = await client.post("/api/v1/workflows", json=body)

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_put_workflow(self, client: AsyncClient):
        response = await client.put("/api/v1/workflows/wf_api", json=WORKFLOW)

        assert response.status_code == 200
        assert response.json()["id"] == "wf_api"

    @pytest.mark.asyncio
    async def test_put_workflow_id_mismatch(self, client: AsyncClient):
        response = await client.put("/api/v1/workflows/wf_other", json=WORKFLOW)

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_get_workflow(self, client: AsyncClient):
        """Test getting a specific workflow."""
        await client.post("/api/v1/workflows", json=WORKFLOW)

        response = await client.get("/api/v1/workflows/wf_api")

        assert response.status_code == 200
        assert response.json()["name"] == "API Workflow"

    @pytest.mark.asyncio
    async def test_get_workflow_not_found(self, client: AsyncClient):
        """Test getting a non-existent workflow."""
        response = await client.get("/api/v1/workflows/nonexistent-id")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_delete_workflow(self, client: AsyncClient):
        """Test deleting a workflow."""
        await client.post("/api/v1/workflows", json=WORKFLOW)

        response = await client.delete("/api/v1/workflows/wf_api")
        assert response.status_code == 204

        response = await client.get("/api/v1/workflows/wf_api")
        assert response.status_code == 404

        response = await client.delete("/api/v1/workflows/wf_api")
        assert response.status_code == 404


class TestWorkflowExecuteEndpoint:
    """Tests for inline execution."""

    @pytest.mark.asyncio
    async def test_execute_returns_envelope(self, client: AsyncClient):
        await client.post("/api/v1/workflows", json=WORKFLOW)

        response = await client.post(
            "/api/v1/workflows/wf_api/execute",
            json={"input": {"price": 4, "quantity": 5}, "user_id": "user_1"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "success"
        assert data["mode"] == "manual"
        assert data["output"] == {"price": 4, "quantity": 5, "total": 20}
        assert [r["node_id"] for r in data["results"]] == ["trigger", "calc"]

    @pytest.mark.asyncio
    async def test_execute_failure_is_reported_in_envelope(self, client: AsyncClient):
        await client.post("/api/v1/workflows", json=WORKFLOW)

        response = await client.post(
            "/api/v1/workflows/wf_api/execute",
            json={"input": {"price": 4}},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "failed"
        assert data["error_code"] == "INVALID_EXPRESSION"

    @pytest.mark.asyncio
    async def test_execute_without_body(self, client: AsyncClient, runtime, sample_workflow):
        runtime.register_workflow(sample_workflow)

        response = await client.post("/api/v1/workflows/wf_sample/execute")

        assert response.status_code == 200
        assert response.json()["output"] == {"greeting": "hello", "who": None}

    @pytest.mark.asyncio
    async def test_execute_unknown_workflow(self, client: AsyncClient):
        response = await client.post("/api/v1/workflows/wf_missing/execute", json={})

        assert response.status_code == 404
