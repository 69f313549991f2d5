"""
Maven build step.
"""
from typing import Dict, List, Optional

from pydantic import Field, field_validator

from stagerun.definition.schema import StepDefinition, stringify_values
from stagerun.steps.base import CommandStepExecutor, ExecutorOptions


class MavenOptions(ExecutorOptions):
    goals: List[str] = Field(..., min_length=1, description="e.g. [clean, install]")
    pom: Optional[str] = None
    profiles: List[str] = Field(default_factory=list)
    properties: Dict[str, str] = Field(default_factory=dict)
    batch_mode: bool = True
    offline: bool = False
    threads: Optional[str] = Field(default=None, description="Maven -T value, e.g. '1C'")
    executable: str = "mvn"

    @field_validator("properties", mode="before")
    @classmethod
    def coerce_properties(cls, v):
        return stringify_values(v)


class MavenExecutor(CommandStepExecutor):
    """Runs Maven goals."""

    options_model = MavenOptions
    description = "Run Maven goals (compile, test, package, ...)"

    @property
    def kind(self) -> str:
        return "maven"

    def build_argv(self, step: StepDefinition, options: Optional[MavenOptions]) -> List[str]:
        argv = [options.executable]
        if options.batch_mode:
            argv.append("-B")
        if options.offline:
            argv.append("-o")
        if options.pom:
            argv += ["-f", options.pom]
        if options.threads:
            argv += ["-T", options.threads]
        if options.profiles:
            argv += ["-P", ",".join(options.profiles)]
        argv += [f"-D{key}={value}" for key, value in options.properties.items()]
        argv += [*options.goals, *step.args]
        return argv
