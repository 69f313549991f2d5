"""
Static analysis step using sonar-scanner.
"""
from typing import Dict, List, Optional

from pydantic import Field, field_validator

from stagerun.definition.schema import StepDefinition, stringify_values
from stagerun.pipeline.context import EnvironmentContext
from stagerun.pipeline.models import StepOutcome
from stagerun.steps.base import CommandStepExecutor, ExecutorOptions


class SonarScannerOptions(ExecutorOptions):
    project_key: str = Field(..., min_length=1)
    host_url: str = Field(..., pattern=r'^https?://')
    token: Optional[str] = Field(default=None, description="Passed as SONAR_TOKEN, never on the command line")
    sources: str = "."
    project_version: Optional[str] = None
    properties: Dict[str, str] = Field(default_factory=dict)
    executable: str = "sonar-scanner"

    @field_validator("properties", mode="before")
    @classmethod
    def coerce_properties(cls, v):
        return stringify_values(v)


class SonarScannerExecutor(CommandStepExecutor):
    """Runs a code scan and uploads it to a SonarQube server."""

    options_model = SonarScannerOptions
    description = "Run sonar-scanner against a SonarQube server"

    @property
    def kind(self) -> str:
        return "sonar_scanner"

    def build_argv(self, step: StepDefinition, options: Optional[SonarScannerOptions]) -> List[str]:
        properties = {
            "sonar.projectKey": options.project_key,
            "sonar.host.url": options.host_url,
            "sonar.sources": options.sources,
        }
        if options.project_version:
            properties["sonar.projectVersion"] = options.project_version
        properties.update(options.properties)
        return [options.executable, *(f"-D{k}={v}" for k, v in properties.items()), *step.args]

    async def execute(self, step: StepDefinition, env: EnvironmentContext) -> StepOutcome:
        options = self.parse_options(step.options)
        if options.token:
            env = env.with_layer({"SONAR_TOKEN": options.token})
        return await super().execute(step, env)
