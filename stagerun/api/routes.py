"""
Utility routes: health, executor listing and pipeline validation.

Endpoints:
- GET /v1/health - Service health
- GET /v1/executors - Registered step executors and their options schemas
- POST /v1/pipelines/validate - Validate a pipeline without running it
"""
from fastapi import APIRouter

from stagerun.api.manager import get_run_manager
from stagerun.api.schemas import (
    ExecutorInfoDTO,
    ExecutorsListResponse,
    HealthResponse,
    PipelineSource,
    ValidationRequest,
    ValidationResponse,
)
from stagerun.core.config import settings
from stagerun.core.errors import ConfigValidationError
from stagerun.core.logging import get_logger
from stagerun.definition.loader import definition_from_dict, parse_definition
from stagerun.definition.schema import PipelineDefinition
from stagerun.pipeline.graph import validate_definition
from stagerun.steps.registry import get_executor_registry

logger = get_logger("api.routes")

router = APIRouter(tags=["utility"])


def definition_from_source(source: PipelineSource) -> PipelineDefinition:
    """
    Decode the submitted pipeline.

    Raises:
        ConfigValidationError: If it fails to parse or fails the schema
    """
    if source.definition is not None:
        return definition_from_dict(source.definition)
    return parse_definition(source.content, source.format)


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse(
        status="ok",
        version=settings.version,
        executors=get_executor_registry().list_kinds(),
        active_runs=get_run_manager().active_count,
    )


@router.get("/executors", response_model=ExecutorsListResponse)
async def list_executors():
    """List step executors usable in `uses:`."""
    infos = [ExecutorInfoDTO(**info) for info in get_executor_registry().list_info()]
    return ExecutorsListResponse(executors=infos, count=len(infos))


@router.post("/pipelines/validate", response_model=ValidationResponse)
async def validate_pipeline(request: ValidationRequest):
    """
    Validate a pipeline without running it.

    Always answers 200; `valid` and `issues` carry the result.
    """
    try:
        definition = definition_from_source(request)
    except ConfigValidationError as e:
        return ValidationResponse(valid=False, issues=e.issues or [e.message])

    issues = validate_definition(definition, external_artifacts=request.external_artifacts)
    return ValidationResponse(
        valid=not issues,
        pipeline=definition.name,
        stages=definition.stage_names,
        issues=issues,
    )
