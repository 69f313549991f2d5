"""
Base interface for step executors.

StepExecutor is the single polymorphic "external step" capability: the
generic `command` executor, tool executors that build a command line from
validated options (maven, sonar_scanner, s3_upload, ...) and executors that
talk to a remote service directly (tomcat_deploy) all implement it, and the
StepRunner treats them uniformly. New tools register a subclass with the
StepExecutorRegistry; the controller and stage code never change.
"""
import shlex
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Type

from pydantic import BaseModel, ConfigDict, ValidationError

from stagerun.core.config import settings
from stagerun.core.errors import OptionsError
from stagerun.definition.loader import format_error_item, format_validation_errors
from stagerun.definition.schema import StepDefinition
from stagerun.pipeline.context import EnvironmentContext
from stagerun.pipeline.models import FailureReason, StageStatus, StepOutcome
from stagerun.steps.process import ProcessResult, run_process


class ExecutorOptions(BaseModel):
    """Base for executor option models: unknown keys are rejected."""
    model_config = ConfigDict(extra="forbid", frozen=True)


class StepExecutor(ABC):
    """
    Base interface for all step executors.

    Subclasses must implement:
    - kind: The registry key used in `uses:`
    - execute(): Run the step and return its outcome

    Optional overrides:
    - options_model: pydantic model validating the step's `with:` block
    - validate_step(): Extra load-time checks
    """

    options_model: Optional[Type[ExecutorOptions]] = None
    description: str = ""

    @property
    @abstractmethod
    def kind(self) -> str:
        """Unique identifier, e.g. "command", "maven", "s3_upload"."""
        pass

    @property
    def display_name(self) -> str:
        """Human-readable name for UI/logging."""
        return self.kind.replace("_", " ").title()

    def parse_options(self, options: Dict[str, Any]) -> Optional[ExecutorOptions]:
        """
        Validate a `with:` block.

        Raises:
            OptionsError: If options are invalid or given to an executor
                that takes none
        """
        if self.options_model is None:
            if options:
                raise OptionsError(self.kind, f"takes no options, got: {sorted(options)}")
            return None
        try:
            return self.options_model.model_validate(options)
        except ValidationError as e:
            raise OptionsError(self.kind, "; ".join(format_validation_errors(e)))

    def validate_options(self, options: Dict[str, Any]) -> List[str]:
        """
        Load-time option checks.

        Fields whose value still holds a ${...} placeholder are only checked
        for presence; they are validated again after expansion at run time.
        """
        if self.options_model is None:
            return [f"takes no options, got: {sorted(options)}"] if options else []
        try:
            self.options_model.model_validate(options)
        except ValidationError as e:
            templated = {
                key for key, value in options.items()
                if isinstance(value, str) and "${" in value
            }
            kept = [
                err for err in e.errors()
                if not (err.get("loc") and err["loc"][0] in templated)
            ]
            return [format_error_item(err) for err in kept]
        return []

    def validate_step(self, step: StepDefinition) -> List[str]:
        """Load-time checks; returns human-readable issues (empty if valid)."""
        issues = []
        if step.run is not None or step.command is not None:
            issues.append(f"'{self.kind}' steps take options under 'with', not 'run'/'command'")
        issues.extend(self.validate_options(step.options))
        return issues

    def get_info(self) -> Dict[str, Any]:
        """Metadata for CLI/API listings."""
        schema = self.options_model.model_json_schema() if self.options_model else None
        return {
            "kind": self.kind,
            "display_name": self.display_name,
            "description": self.description,
            "options": schema,
        }

    @abstractmethod
    async def execute(self, step: StepDefinition, env: EnvironmentContext) -> StepOutcome:
        """
        Execute the step.

        Args:
            step: Step definition with placeholders already expanded
            env: Merged environment, working directory and cancel token

        Returns:
            StepOutcome; a failing operation is an outcome, not an exception

        Raises:
            StepLaunchError: If the external operation cannot be started
        """
        pass


class CommandStepExecutor(StepExecutor):
    """
    Executor that runs a local process.

    Subclasses implement build_argv(); process handling, output capture,
    timeout and abort are shared.
    """

    success_exit_codes: Set[int] = {0}

    @abstractmethod
    def build_argv(self, step: StepDefinition, options: Optional[ExecutorOptions]) -> List[str]:
        """Translate the step and its options into a command line."""
        pass

    def log_path(self, step: StepDefinition, env: EnvironmentContext) -> Optional[str]:
        if not env.log_dir:
            return None
        prefix = f"{env.log_prefix}-" if env.log_prefix else ""
        safe = "".join(c if c.isalnum() or c in "-_" else "_" for c in step.name)
        return str(Path(env.log_dir) / f"{prefix}{safe}.log")

    async def execute(self, step: StepDefinition, env: EnvironmentContext) -> StepOutcome:
        options = self.parse_options(step.options)
        argv = self.build_argv(step, options)
        cwd = env.cwd
        if step.cwd:
            cwd = str(Path(env.cwd or ".") / step.cwd)

        timeout = step.timeout if step.timeout is not None else settings.default_step_timeout
        started = time.time()
        result = await run_process(
            argv,
            step=step.name,
            env=env.merged(),
            cwd=cwd,
            timeout=timeout,
            cancel_token=env.cancel_token,
            output_limit=settings.output_limit_bytes,
            log_path=self.log_path(step, env),
            kill_grace=settings.kill_grace_seconds,
        )
        return self.to_outcome(step, argv, result, started)

    def to_outcome(self, step: StepDefinition, argv: List[str], result: ProcessResult, started: float) -> StepOutcome:
        outcome = StepOutcome(
            step=step.name,
            status=StageStatus.SUCCEEDED,
            command=shlex.join(argv),
            exit_code=result.exit_code,
            started_at=started,
            ended_at=started + result.duration_ms / 1000,
            duration_ms=result.duration_ms,
            stdout=result.stdout,
            stderr=result.stderr,
            stdout_truncated=result.stdout_truncated,
            stderr_truncated=result.stderr_truncated,
            log_path=result.log_path,
        )
        if result.aborted:
            outcome.status = StageStatus.FAILED
            outcome.reason = FailureReason.ABORTED
            outcome.error = "Aborted while running"
        elif result.timed_out:
            outcome.status = StageStatus.FAILED
            outcome.reason = FailureReason.TIMEOUT
            outcome.error = f"Timed out after {step.timeout if step.timeout is not None else settings.default_step_timeout}s"
        elif result.exit_code not in self.success_exit_codes:
            outcome.status = StageStatus.FAILED
            outcome.reason = FailureReason.EXIT_CODE
            outcome.error = f"Exited with code {result.exit_code}"
        return outcome
