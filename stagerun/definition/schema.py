"""
Pipeline definition models.

Defines the schema for user-provided pipeline configurations:
- Steps (which external operation to launch, with what arguments)
- Stages (ordered groups of steps with a condition and artifacts)
- Pipelines (ordered stages plus pipeline-level environment)

Supports this YAML shape:
```yaml
version: v1
name: webapp
env:
  MAVEN_OPTS: "-Xmx1g"
stages:
  - name: compile
    steps:
      - uses: maven
        with:
          goals: [clean, compile]
  - name: package
    steps:
      - run: mvn -B package -DskipTests
    artifacts:
      - name: app_war
        path: target/app.war
  - name: deploy
    needs: [app_war]
    when:
      status: on_success
      branches: [main]
    steps:
      - uses: tomcat_deploy
        timeout: 120
        with:
          url: "http://tomcat:8080"
          war: "${artifact:app_war}"
          context_path: /app
```

Definitions are frozen once loaded and never mutated during a run.
"""
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# Schema version for compatibility checking
SCHEMA_VERSION = "v1"

NAME_PATTERN = r'^[a-z][a-z0-9_-]*$'
ARTIFACT_NAME_PATTERN = r'^[A-Za-z][A-Za-z0-9_-]*$'


def stringify_values(value: Any) -> Any:
    """YAML turns `PORT: 8080` into an int; environment values are strings."""
    if not isinstance(value, dict):
        return value
    result = {}
    for key, item in value.items():
        if isinstance(item, bool):
            result[str(key)] = "true" if item else "false"
        elif item is None:
            result[str(key)] = ""
        else:
            result[str(key)] = str(item)
    return result


def _default_step_name(data: Dict[str, Any]) -> str:
    run = str(data.get("run") or "").split()
    if run:
        return run[0]
    if data.get("command"):
        return str(data["command"])
    return str(data.get("uses") or "command")


class ConditionStatus(str, Enum):
    """When a stage runs relative to the outcome of earlier stages."""
    ON_SUCCESS = "on_success"
    ON_FAILURE = "on_failure"
    ALWAYS = "always"


class Condition(BaseModel):
    """Stage condition evaluated against the run context."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    status: ConditionStatus = ConditionStatus.ON_SUCCESS
    branches: List[str] = Field(default_factory=list, description="Glob patterns, empty matches any branch")
    tags: List[str] = Field(default_factory=list, description="Glob patterns, empty matches any tag")


class ArtifactDeclaration(BaseModel):
    """An output a stage publishes into the run namespace on success."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(..., min_length=1, max_length=100, pattern=ARTIFACT_NAME_PATTERN)
    path: str = Field(..., min_length=1)


class StepDefinition(BaseModel):
    """
    A single external operation.

    `uses` selects the step executor. The `command` executor takes either a
    shell line in `run` or an argv in `command` + `args`; tool executors
    read their options from `with` and append `args` to the generated
    command line.
    """
    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    name: str = Field(..., min_length=1, max_length=100)
    uses: str = Field(default="command", min_length=1)
    run: Optional[str] = None
    command: Optional[str] = None
    args: List[str] = Field(default_factory=list)
    options: Dict[str, Any] = Field(default_factory=dict, alias="with")
    env: Dict[str, str] = Field(default_factory=dict)
    timeout: Optional[float] = Field(default=None, gt=0, description="Seconds; unset means unbounded")
    cwd: Optional[str] = None

    @model_validator(mode='before')
    @classmethod
    def derive_name(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("name"):
            data = dict(data)
            data["name"] = _default_step_name(data)
        return data

    @field_validator('env', mode='before')
    @classmethod
    def coerce_env(cls, v: Any) -> Any:
        return stringify_values(v)

    @field_validator('args', mode='before')
    @classmethod
    def coerce_args(cls, v: Any) -> Any:
        if isinstance(v, list):
            return [str(item) for item in v]
        return v

    def display_command(self) -> str:
        """Human-readable form of the operation for logs and reports."""
        if self.run:
            return self.run
        if self.command:
            return " ".join([self.command, *self.args])
        return self.uses


class StageDefinition(BaseModel):
    """A named, ordered group of steps sharing one outcome."""
    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    name: str = Field(..., min_length=1, max_length=100, pattern=NAME_PATTERN)
    description: Optional[str] = Field(default=None, max_length=500)
    steps: List[StepDefinition] = Field(..., min_length=1)
    when: Condition = Field(default_factory=Condition)
    env: Dict[str, str] = Field(default_factory=dict)
    needs: List[str] = Field(default_factory=list, description="Artifact names consumed by this stage")
    artifacts: List[ArtifactDeclaration] = Field(default_factory=list)
    continue_on_failure: bool = Field(default=False, description="Advisory stage; failure does not abort the run")

    @field_validator('env', mode='before')
    @classmethod
    def coerce_env(cls, v: Any) -> Any:
        return stringify_values(v)

    @field_validator('steps', mode='before')
    @classmethod
    def name_unnamed_steps(cls, v: Any) -> Any:
        # Unnamed steps get a derived name, suffixed when it collides
        if not isinstance(v, list):
            return v
        explicit = {s.get("name") for s in v if isinstance(s, dict) and s.get("name")}
        taken = set(explicit)
        named = []
        for raw in v:
            if isinstance(raw, dict) and not raw.get("name"):
                base = _default_step_name(raw)
                candidate, n = base, 2
                while candidate in taken:
                    candidate = f"{base}-{n}"
                    n += 1
                taken.add(candidate)
                raw = {**raw, "name": candidate}
            named.append(raw)
        return named

    @model_validator(mode='after')
    def validate_unique_names(self):
        seen = set()
        for step in self.steps:
            if step.name in seen:
                raise ValueError(f"Duplicate step name '{step.name}' in stage '{self.name}'")
            seen.add(step.name)
        outputs = set()
        for artifact in self.artifacts:
            if artifact.name in outputs:
                raise ValueError(f"Duplicate artifact '{artifact.name}' in stage '{self.name}'")
            outputs.add(artifact.name)
        return self


class PipelineDefinition(BaseModel):
    """Root document: an ordered sequence of stages."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    version: str = Field(default=SCHEMA_VERSION)
    name: str = Field(default="pipeline", min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    env: Dict[str, str] = Field(default_factory=dict)
    external_artifacts: List[str] = Field(
        default_factory=list,
        description="Artifact names supplied to the run from outside the pipeline"
    )
    stages: List[StageDefinition] = Field(..., min_length=1)

    @field_validator('version')
    @classmethod
    def validate_version(cls, v: str) -> str:
        if v != SCHEMA_VERSION:
            raise ValueError(f"Unsupported schema version: {v}. Supported: {SCHEMA_VERSION}")
        return v

    @field_validator('env', mode='before')
    @classmethod
    def coerce_env(cls, v: Any) -> Any:
        return stringify_values(v)

    @property
    def stage_names(self) -> List[str]:
        return [stage.name for stage in self.stages]
