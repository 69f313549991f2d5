"""
Generic command step: a shell line (`run`) or an argv (`command` + `args`).
"""
from typing import List, Optional

from stagerun.core.config import settings
from stagerun.definition.schema import StepDefinition
from stagerun.steps.base import CommandStepExecutor, ExecutorOptions


class CommandExecutor(CommandStepExecutor):
    """Runs an arbitrary external command."""

    description = "Run a shell line (run) or an executable with arguments (command + args)"

    @property
    def kind(self) -> str:
        return "command"

    def validate_step(self, step: StepDefinition) -> List[str]:
        issues = []
        if (step.run is None) == (step.command is None):
            issues.append("exactly one of 'run' or 'command' is required")
        elif step.run is not None and step.args:
            issues.append("'args' cannot be combined with 'run'; put them in the shell line")
        if step.options:
            issues.append(f"'command' steps take no 'with' options, got: {sorted(step.options)}")
        return issues

    def build_argv(self, step: StepDefinition, options: Optional[ExecutorOptions]) -> List[str]:
        if step.run is not None:
            return [settings.shell, "-c", step.run]
        return [step.command, *step.args]
