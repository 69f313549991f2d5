"""
Runs API - submit, inspect and cancel pipeline runs.

Endpoints:
- POST /v1/runs - Submit a run (background, or ?wait=true to block)
- GET /v1/runs - List runs, newest first
- GET /v1/runs/{run_id} - Run status, or the full report once finished
- POST /v1/runs/{run_id}/cancel - Abort an active run
"""
from fastapi import APIRouter, BackgroundTasks, HTTPException, Query, Response

from stagerun.api.manager import RunLimitExceeded, get_run_manager
from stagerun.api.routes import definition_from_source
from stagerun.api.schemas import CancelResponse, RunListResponse, RunRequest, RunSummaryDTO
from stagerun.core.errors import ConfigValidationError
from stagerun.core.logging import get_logger
from stagerun.pipeline.graph import validate_definition

logger = get_logger("api.runs")

router = APIRouter(prefix="/runs", tags=["runs"])


@router.post("", status_code=202)
async def submit_run(
    request: RunRequest,
    background_tasks: BackgroundTasks,
    response: Response,
    wait: bool = Query(False, description="Block until the run finishes and return its report"),
):
    """
    Submit a pipeline run.

    Invalid pipelines are rejected with 422 and never start. Without
    `wait` the run executes in the background and 202 is returned with
    the run ID; poll GET /v1/runs/{run_id}.
    """
    try:
        definition = definition_from_source(request)
    except ConfigValidationError as e:
        raise HTTPException(422, {"message": e.message, "issues": e.issues})

    issues = validate_definition(definition, external_artifacts=list(request.artifacts))
    if issues:
        raise HTTPException(422, {"message": f"Invalid pipeline '{definition.name}'", "issues": issues})

    manager = get_run_manager()
    try:
        record = manager.submit(definition, branch=request.branch, tag=request.tag,
                                external_artifacts=request.artifacts)
    except RunLimitExceeded as e:
        raise HTTPException(429, str(e))

    if wait:
        await manager.execute(record)
        response.status_code = 200
        return record.to_dict()

    background_tasks.add_task(manager.execute, record)
    return record.to_summary()


@router.get("", response_model=RunListResponse)
async def list_runs():
    """List known runs, newest first."""
    runs = [RunSummaryDTO(**record.to_summary()) for record in get_run_manager().list_runs()]
    return RunListResponse(runs=runs, count=len(runs))


@router.get("/{run_id}")
async def get_run(run_id: str):
    """Get a run's live status or its final report."""
    record = get_run_manager().get(run_id)
    if record is None:
        raise HTTPException(404, f"Run '{run_id}' not found")
    return record.to_dict()


@router.post("/{run_id}/cancel", response_model=CancelResponse)
async def cancel_run(run_id: str):
    """
    Abort an active run.

    The running step is terminated and remaining stages are skipped.
    Cancelling a finished run answers 409.
    """
    manager = get_run_manager()
    record = manager.get(run_id)
    if record is None:
        raise HTTPException(404, f"Run '{run_id}' not found")
    if not record.is_active:
        raise HTTPException(409, f"Run '{run_id}' already finished with status {record.status.value}")

    manager.cancel(run_id)
    logger.info(f"Cancellation requested for run {run_id}")
    return CancelResponse(run_id=run_id, status=record.status.value, message="Cancellation requested")
