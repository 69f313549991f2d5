"""
Execution controller: drives a pipeline run to a terminal state.

The controller:
1. Validates the definition into a PipelineGraph (invalid runs never start)
2. Executes stages sequentially in plan order
3. Applies the failure policy after each stage
4. Handles operator aborts
5. Builds the RunReport and applies artifact retention
"""
import asyncio
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

from stagerun.core.config import settings
from stagerun.core.errors import ConfigValidationError
from stagerun.core.logging import get_logger
from stagerun.definition.schema import ConditionStatus, PipelineDefinition
from stagerun.pipeline.context import RunContext
from stagerun.pipeline.graph import PipelineGraph
from stagerun.pipeline.models import FailureReason, RunStatus, StageOutcome, StageStatus
from stagerun.pipeline.report import RunReport
from stagerun.pipeline.stage import execute_stage
from stagerun.steps.registry import StepExecutorRegistry
from stagerun.steps.runner import StepRunner

logger = get_logger("pipeline.controller")


class ExecutionController:
    """
    Runs one pipeline definition at a time.

    Failure policy: a failed stage stops the run and later stages are
    skipped, unless the stage has `continue_on_failure`. Stages whose
    condition is `always` or `on_failure` still run after a failure. A
    launch error or an abort skips every remaining stage.
    """

    def __init__(
        self,
        registry: Optional[StepExecutorRegistry] = None,
        progress_callback: Optional[Callable] = None,
        workspace: Optional[Union[str, Path]] = None,
        log_dir: Optional[str] = None,
        retain_artifacts: Optional[bool] = None,
    ):
        """
        Initialize the controller.

        Args:
            registry: Step executor registry (defaults to the global one)
            progress_callback: Callback(stage, message, progress) for UI updates,
                sync or async
            workspace: Working directory for steps and artifact paths
            log_dir: Directory for full per-step logs
            retain_artifacts: Copy artifacts under settings.artifact_dir on completion
        """
        self.registry = registry
        self.step_runner = StepRunner(registry)
        self.progress_callback = progress_callback
        self.workspace = Path(workspace or settings.workspace_dir)
        self.log_dir = log_dir if log_dir is not None else settings.log_dir
        self.retain_artifacts = settings.retain_artifacts if retain_artifacts is None else retain_artifacts
        self.status = RunStatus.NOT_STARTED
        self.context: Optional[RunContext] = None
        self._cancel_reason: Optional[str] = None

    @property
    def outcomes(self) -> List[StageOutcome]:
        return list(self.context.outcomes) if self.context else []

    def cancel(self, reason: str = "Aborted by operator") -> None:
        """Abort the run: the running step is terminated, the rest skipped."""
        logger.warning(f"Cancellation requested: {reason}")
        self._cancel_reason = reason
        if self.context is not None:
            self.context.cancel_token.cancel(reason)

    async def run_pipeline(
        self,
        definition: PipelineDefinition,
        branch: Optional[str] = None,
        tag: Optional[str] = None,
        external_artifacts: Optional[Dict[str, str]] = None,
        run_id: Optional[str] = None,
    ) -> RunReport:
        """
        Execute the pipeline.

        Args:
            definition: Pipeline to run
            branch: Branch name used by stage conditions
            tag: Tag name used by stage conditions
            external_artifacts: Artifact name -> path supplied from outside
            run_id: Explicit run ID (generated if omitted)

        Returns:
            RunReport with a terminal status

        Raises:
            ConfigValidationError: If the definition is invalid; nothing runs
        """
        if self.status != RunStatus.NOT_STARTED:
            raise RuntimeError("An ExecutionController runs a single pipeline; create a new one")

        context = RunContext(
            branch=branch,
            tag=tag,
            env=dict(definition.env),
            workspace=self.workspace,
            inherit_env=settings.inherit_env,
            log_dir=self.log_dir,
        )
        if run_id:
            context.run_id = run_id
        if self.log_dir:
            context.log_dir = str(Path(self.log_dir) / context.run_id)

        for name, path in (external_artifacts or {}).items():
            try:
                context.artifacts.publish(name, path)
            except FileNotFoundError as e:
                raise ConfigValidationError("Invalid external artifact", [f"{name}: {e}"])

        graph = PipelineGraph(definition, artifacts=context.artifacts, registry=self.registry)
        plan = graph.plan()

        self.context = context
        if self._cancel_reason:
            context.cancel_token.cancel(self._cancel_reason)

        self.status = RunStatus.RUNNING
        started = time.time()
        logger.info(f"Starting run {context.run_id} of pipeline '{definition.name}' with {len(plan)} stages")

        halted: Optional[str] = None  # "failed", "fatal" or "aborted"
        failed_stage: Optional[str] = None
        try:
            for idx, stage in enumerate(plan):
                if context.cancel_token.cancelled and halted != "aborted":
                    halted = "aborted"

                skip_reason = None
                if halted == "aborted":
                    skip_reason = "Run aborted"
                elif halted == "fatal":
                    skip_reason = f"Run stopped after launch error in stage '{failed_stage}'"
                elif halted == "failed" and stage.when.status == ConditionStatus.ON_SUCCESS:
                    skip_reason = f"Skipped after failure of stage '{failed_stage}'"

                if skip_reason:
                    outcome = StageOutcome(
                        stage=stage.name,
                        status=StageStatus.SKIPPED,
                        skip_reason=skip_reason,
                        continue_on_failure=stage.continue_on_failure,
                    )
                    outcome.started_at = outcome.ended_at = time.time()
                    context.record(outcome)
                    continue

                await self._send_progress(stage.name, f"Starting {stage.name}", int(idx / len(plan) * 100))
                outcome = await execute_stage(stage, context, self.step_runner)
                context.record(outcome)
                await self._send_progress(
                    stage.name, f"{stage.name} {outcome.status.value}", int((idx + 1) / len(plan) * 100)
                )

                if outcome.status != StageStatus.FAILED:
                    continue
                if outcome.reason == FailureReason.ABORTED or context.cancel_token.cancelled:
                    halted = "aborted"
                elif outcome.reason == FailureReason.LAUNCH_ERROR:
                    halted, failed_stage = "fatal", stage.name
                elif not outcome.continue_on_failure and halted is None:
                    halted, failed_stage = "failed", stage.name
                elif outcome.continue_on_failure:
                    logger.info(f"Stage {stage.name} failed but is allowed to fail; continuing")
        except asyncio.CancelledError:
            self.status = RunStatus.ABORTED
            context.artifacts.clear()
            raise

        if halted == "aborted":
            self.status = RunStatus.ABORTED
        elif halted == "fatal" or context.has_blocking_failure:
            self.status = RunStatus.FAILED
        else:
            self.status = RunStatus.SUCCEEDED

        report = self._finalize(definition, context, started)
        logger.info(
            f"Run {context.run_id} {report.status.value}: {len(report.stages)} stages, "
            f"{sum(1 for s in report.stages if s.status == StageStatus.SUCCEEDED)} succeeded, "
            f"total time: {report.duration_ms:.0f}ms"
        )
        return report

    def _finalize(self, definition: PipelineDefinition, context: RunContext, started: float) -> RunReport:
        finished = time.time()
        snapshot = context.artifacts.snapshot()
        retained: Dict[str, str] = {}
        if self.retain_artifacts and snapshot:
            retained = context.artifacts.retain(Path(settings.artifact_dir) / context.run_id)
        context.artifacts.clear()

        error = None
        if self.status == RunStatus.ABORTED:
            error = context.cancel_token.reason or "Aborted"
        elif self.status == RunStatus.FAILED:
            for outcome in context.outcomes:
                if outcome.blocking:
                    error = f"Stage '{outcome.stage}' failed: {outcome.error}"
                    break

        return RunReport(
            run_id=context.run_id,
            pipeline=definition.name,
            status=self.status,
            stages=tuple(context.outcomes),
            started_at=started,
            finished_at=finished,
            duration_ms=(finished - started) * 1000,
            artifacts=snapshot,
            branch=context.branch,
            tag=context.tag,
            error=error,
            retained=retained,
        )

    async def _send_progress(self, stage: str, message: str, progress: int) -> None:
        """Send progress update via callback."""
        if not self.progress_callback:
            return

        try:
            result = self.progress_callback(stage, message, progress)
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            logger.warning(f"Progress callback failed: {e}")


async def run_pipeline(definition: PipelineDefinition, **kwargs) -> RunReport:
    """Convenience wrapper: run a definition with a fresh controller."""
    return await ExecutionController().run_pipeline(definition, **kwargs)
