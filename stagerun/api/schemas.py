"""
API Schemas (DTOs) for the HTTP API.

Run and stage payloads mirror RunReport.to_dict() so the CLI report file
and the API return the same shape.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator


class HealthResponse(BaseModel):
    status: str
    version: str
    executors: List[str] = Field(default_factory=list)
    active_runs: int = 0


class ExecutorInfoDTO(BaseModel):
    """Step executor metadata, including its options JSON schema."""
    kind: str
    display_name: str
    description: str = ""
    options: Optional[Dict[str, Any]] = None


class ExecutorsListResponse(BaseModel):
    executors: List[ExecutorInfoDTO]
    count: int


class PipelineSource(BaseModel):
    """A pipeline given either as a decoded document or as text."""
    definition: Optional[Dict[str, Any]] = Field(default=None, description="Decoded pipeline document")
    content: Optional[str] = Field(default=None, description="Pipeline document text")
    format: str = Field(default="yaml", pattern="^(yaml|json|toml)$")

    @model_validator(mode="after")
    def validate_source(self):
        if (self.definition is None) == (self.content is None):
            raise ValueError("Provide exactly one of 'definition' or 'content'")
        return self


class ValidationRequest(PipelineSource):
    """Validate a pipeline without running it."""
    external_artifacts: List[str] = Field(default_factory=list)


class ValidationResponse(BaseModel):
    valid: bool
    pipeline: Optional[str] = None
    stages: List[str] = Field(default_factory=list)
    issues: List[str] = Field(default_factory=list)


class RunRequest(PipelineSource):
    """Submit a pipeline run."""
    branch: Optional[str] = None
    tag: Optional[str] = None
    artifacts: Dict[str, str] = Field(default_factory=dict, description="External artifacts: name -> path")


class RunSummaryDTO(BaseModel):
    run_id: str
    pipeline: str
    status: str
    branch: Optional[str] = None
    tag: Optional[str] = None
    submitted_at: Optional[str] = None
    stages: Dict[str, str] = Field(default_factory=dict, description="Stage name -> status")


class RunListResponse(BaseModel):
    runs: List[RunSummaryDTO]
    count: int


class CancelResponse(BaseModel):
    run_id: str
    status: str
    message: str
