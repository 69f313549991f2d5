"""
stagerun - stage sequencing pipeline executor.

Runs declarative build pipelines (checkout, compile, test, analyze,
package, upload, deploy) as an ordered sequence of stages, each launching
external tools, with run-scoped artifacts and a machine-readable report.
"""
from stagerun.core.errors import (
    ArtifactNotFound,
    ConfigValidationError,
    StagerunError,
    StepLaunchError,
)
from stagerun.definition import PipelineDefinition, load_definition, parse_definition
from stagerun.pipeline.controller import ExecutionController, run_pipeline
from stagerun.pipeline.models import FailureReason, RunStatus, StageStatus
from stagerun.pipeline.report import RunReport

__version__ = "1.0.0"

__all__ = [
    "ArtifactNotFound",
    "ConfigValidationError",
    "StagerunError",
    "StepLaunchError",
    "PipelineDefinition",
    "load_definition",
    "parse_definition",
    "ExecutionController",
    "run_pipeline",
    "FailureReason",
    "RunStatus",
    "StageStatus",
    "RunReport",
]
