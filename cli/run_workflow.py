#!/usr/bin/env python3
"""
Workflow runner.
Executes a workflow definition file locally or on a running API server.
"""

import asyncio
import json
import sys
from pathlib import Path
from typing import Any

import httpx
import structlog

from src.config import get_settings
from src.core.logging import configure_logging
from src.models.workflow import WorkflowDefinition
from src.runtime import Runtime

logger = structlog.get_logger()

FINAL_JOB_STATES = ("completed", "failed")


def load_json_arg(value: str | None) -> Any:
    """Parse a JSON literal, or read JSON from ``@path``."""
    if value is None:
        return None
    if value.startswith("@"):
        return json.loads(Path(value[1:]).read_text(encoding="utf-8"))
    return json.loads(value)


async def run_local(workflow: WorkflowDefinition, input_data: Any) -> dict[str, Any]:
    """Execute a workflow in-process on a fresh runtime.

    Args:
        workflow: Workflow definition
        input_data: Execution input

    Returns:
        Execution result as JSON-compatible dict
    """
    runtime = await Runtime.create(get_settings(), use_queue=False)
    try:
        runtime.register_workflow(workflow)
        result = await runtime.engine.execute_by_id(workflow.id, input_data)
        return result.model_dump(mode="json")
    finally:
        await runtime.shutdown()


async def run_remote(
    workflow: WorkflowDefinition,
    input_data: Any,
    api_url: str,
    poll_interval: float = 1.0,
) -> dict[str, Any]:
    """Register and execute a workflow on a running server.

    Args:
        workflow: Workflow definition
        input_data: Execution input
        api_url: API base URL (e.g. http://localhost:8000/api/v1)
        poll_interval: Seconds between job status polls

    Returns:
        Execution result as returned by the server
    """
    async with httpx.AsyncClient(timeout=300.0) as client:
        # Step 1: Register the definition
        logger.info("registering_workflow", workflow_id=workflow.id)
        register_response = await client.put(
            f"{api_url}/workflows/{workflow.id}",
            json=workflow.model_dump(mode="json", by_alias=True),
        )
        register_response.raise_for_status()

        # Step 2: Submit the execution
        exec_response = await client.post(
            f"{api_url}/executions",
            json={"workflow_id": workflow.id, "input": input_data},
        )
        exec_response.raise_for_status()
        accepted = exec_response.json()

        logger.info(
            "execution_submitted",
            execution_id=accepted["execution_id"],
            job_id=accepted["job_id"],
            queued=accepted["queued"],
        )

        if not accepted["queued"]:
            return accepted["result"]

        # Step 3: Poll the job until it finishes
        job_id = accepted["job_id"]
        while True:
            status_response = await client.get(f"{api_url}/jobs/{job_id}")
            status_response.raise_for_status()
            job_status = status_response.json()

            state = job_status["state"]
            logger.info("job_status", job_id=job_id, state=state)

            if state == "completed":
                return job_status["data"]
            if state == "failed":
                return {
                    "execution_id": accepted["execution_id"],
                    "workflow_id": workflow.id,
                    "status": "failed",
                    "error": job_status.get("error"),
                }

            await asyncio.sleep(poll_interval)


async def main():
    """CLI entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="Execute a workflow definition")
    parser.add_argument("workflow", help="Path to workflow definition JSON")
    parser.add_argument(
        "--input",
        help="Execution input as JSON, or @path to a JSON file",
    )
    parser.add_argument(
        "--api-url",
        help="Run on a server (e.g. http://localhost:8000/api/v1) instead of locally",
    )

    args = parser.parse_args()

    configure_logging(get_settings())

    try:
        workflow = WorkflowDefinition.model_validate_json(
            Path(args.workflow).read_text(encoding="utf-8")
        )
        input_data = load_json_arg(args.input)

        print(f"\n{'=' * 60}")
        print(f"Workflow: {workflow.name} ({workflow.id})")
        print(f"Target: {args.api_url or 'local'}")
        print(f"{'=' * 60}\n")

        if args.api_url:
            result = await run_remote(workflow, input_data, args.api_url)
        else:
            result = await run_local(workflow, input_data)

        print(f"\n{'=' * 60}")
        print("EXECUTION RESULT")
        print(f"{'=' * 60}")
        print(json.dumps(result, indent=2, ensure_ascii=False))
        print()

        if result.get("status") == "success":
            print("✓ Workflow executed successfully!")
            sys.exit(0)
        else:
            print("✗ Workflow failed")
            sys.exit(1)

    except Exception as e:
        logger.exception("execution_failed", error=str(e))
        print(f"\n✗ Error: {e}\n")
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
