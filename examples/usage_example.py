"""
Example usage of stagerun: in-process and over the HTTP API.

In-process:
    python examples/usage_example.py

Over HTTP (start the API first with `stagerun serve`):
    python examples/usage_example.py --api
"""
import asyncio
import sys
import time

import httpx

from stagerun.core.logging import setup_logging
from stagerun.definition.loader import definition_from_dict
from stagerun.pipeline.controller import ExecutionController
from stagerun.pipeline.report import render_report

# API endpoint
API_URL = "http://localhost:8000/v1"

# A pipeline that needs nothing but Python: build an archive, then verify it
PIPELINE = {
    "version": "v1",
    "name": "demo",
    "stages": [
        {
            "name": "build",
            "steps": [{
                "name": "archive",
                "command": sys.executable,
                "args": ["-c", "import zipfile\nwith zipfile.ZipFile('demo.zip', 'w') as z: z.writestr('hello.txt', 'hello')"],
            }],
            "artifacts": [{"name": "bundle", "path": "demo.zip"}],
        },
        {
            "name": "verify",
            "needs": ["bundle"],
            "steps": [{
                "name": "unzip-test",
                "command": sys.executable,
                "args": ["-m", "zipfile", "-t", "${artifact:bundle}"],
            }],
        },
    ],
}


def run_locally():
    """Run the demo pipeline in this process."""
    controller = ExecutionController(workspace=".")
    report = asyncio.run(controller.run_pipeline(definition_from_dict(PIPELINE)))
    print(render_report(report))
    return report.exit_code


def check_health():
    """Check service health."""
    response = httpx.get(f"{API_URL}/health")
    return response.json()


def submit_run(definition: dict, branch: str = None):
    """Submit a run in the background; returns its ID."""
    response = httpx.post(f"{API_URL}/runs", json={"definition": definition, "branch": branch})
    response.raise_for_status()
    return response.json()["run_id"]


def wait_for_run(run_id: str, poll_seconds: float = 1.0):
    """Poll until the run reaches a terminal status."""
    while True:
        data = httpx.get(f"{API_URL}/runs/{run_id}").json()
        if data["status"] in ("succeeded", "failed", "aborted"):
            return data
        print(f"  {run_id}: {data['status']}")
        time.sleep(poll_seconds)


def run_over_api():
    print("=" * 60)
    print(f"Service: {check_health()}")
    run_id = submit_run(PIPELINE, branch="main")
    print(f"Submitted run {run_id}")
    result = wait_for_run(run_id)
    for stage in result["stages"]:
        print(f"  {stage['name']:<10} {stage['status']}")
    print("=" * 60)
    return result["exit_code"]


if __name__ == "__main__":
    setup_logging("INFO")
    sys.exit(run_over_api() if "--api" in sys.argv else run_locally())
