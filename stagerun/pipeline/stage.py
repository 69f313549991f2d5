"""
Stage execution: condition check, sequential steps, artifact publishing.
"""
import time
from pathlib import Path
from typing import Optional

from stagerun.core.errors import ArtifactNotFound, OptionsError, StepLaunchError
from stagerun.core.logging import get_logger
from stagerun.definition.schema import StageDefinition, StepDefinition
from stagerun.definition.templating import artifact_env_name, expand, expand_env
from stagerun.pipeline.conditions import evaluate_condition
from stagerun.pipeline.context import RunContext
from stagerun.pipeline.models import FailureReason, StageOutcome, StageStatus, StepOutcome
from stagerun.steps.runner import StepRunner

logger = get_logger("pipeline.stage")


def _failed_step(step: StepDefinition, reason: FailureReason, error: str) -> StepOutcome:
    now = time.time()
    return StepOutcome(
        step=step.name,
        status=StageStatus.FAILED,
        command=step.display_command(),
        reason=reason,
        started_at=now,
        ended_at=now,
        error=error,
    )


def _fail(outcome: StageOutcome, step: Optional[StepOutcome], reason: FailureReason, error: str) -> None:
    outcome.status = StageStatus.FAILED
    outcome.reason = reason
    outcome.error = error
    if step is not None:
        outcome.failed_step = step.step


async def execute_stage(
    stage: StageDefinition,
    context: RunContext,
    step_runner: Optional[StepRunner] = None,
) -> StageOutcome:
    """
    Execute one stage against the run context.

    Steps run in declared order and the first failure stops the stage. A
    launch error is recorded with reason `launch_error`; the controller
    treats that reason as fatal for the whole run.

    Returns:
        StageOutcome (succeeded, failed or skipped)
    """
    step_runner = step_runner or StepRunner()
    outcome = StageOutcome(stage=stage.name, continue_on_failure=stage.continue_on_failure)

    should_run, skip_reason = evaluate_condition(stage.when, context)
    if not should_run:
        now = time.time()
        outcome.status = StageStatus.SKIPPED
        outcome.skip_reason = skip_reason
        outcome.started_at = outcome.ended_at = now
        logger.info(f"Skipping stage {stage.name}: {skip_reason}")
        return outcome

    outcome.status = StageStatus.RUNNING
    outcome.started_at = time.time()
    logger.info(f"Starting stage {stage.name} ({len(stage.steps)} steps)")

    resolve = context.artifacts.resolve
    try:
        base = context.base_environment()
        stage_env = expand_env(stage.env, base.merged(), resolve)
        exports = {
            artifact_env_name(name): context.artifacts.resolve(name).path
            for name in stage.needs
        }
        env = base.with_layer({**exports, **stage_env})
        env.log_prefix = stage.name
    except ArtifactNotFound as e:
        _fail(outcome, None, FailureReason.MISSING_ARTIFACT, str(e))
        return _finish(outcome)
    except ValueError as e:
        _fail(outcome, None, FailureReason.EXECUTOR_ERROR, str(e))
        return _finish(outcome)

    for step in stage.steps:
        if context.cancel_token.cancelled:
            _fail(outcome, None, FailureReason.ABORTED, context.cancel_token.reason or "Aborted")
            break

        try:
            step_outcome = await step_runner.run(step, env, resolve)
        except StepLaunchError as e:
            logger.error(str(e))
            step_outcome = _failed_step(step, FailureReason.LAUNCH_ERROR, str(e))
        except ArtifactNotFound as e:
            step_outcome = _failed_step(step, FailureReason.MISSING_ARTIFACT, str(e))
        except (OptionsError, ValueError) as e:
            step_outcome = _failed_step(step, FailureReason.EXECUTOR_ERROR, str(e))
        except Exception as e:
            logger.error(f"Step {step.name} raised unexpectedly: {e}", exc_info=True)
            step_outcome = _failed_step(step, FailureReason.EXECUTOR_ERROR, f"{type(e).__name__}: {e}")

        outcome.steps.append(step_outcome)
        if not step_outcome.succeeded:
            _fail(outcome, step_outcome, step_outcome.reason or FailureReason.EXECUTOR_ERROR,
                  step_outcome.error or f"Step {step.name} failed")
            break
    else:
        _publish_artifacts(stage, context, outcome, env.merged())

    return _finish(outcome)


def _publish_artifacts(stage: StageDefinition, context: RunContext, outcome: StageOutcome, scope) -> None:
    """Publish declared outputs; all must exist or none are published."""
    resolve = context.artifacts.resolve
    paths = {}
    for declaration in stage.artifacts:
        try:
            path = Path(expand(declaration.path, scope, resolve))
        except (ArtifactNotFound, ValueError) as e:
            _fail(outcome, None, FailureReason.MISSING_ARTIFACT, f"Artifact '{declaration.name}': {e}")
            return
        if not path.is_absolute():
            path = context.workspace / path
        if not path.exists():
            _fail(outcome, None, FailureReason.MISSING_ARTIFACT,
                  f"Declared artifact '{declaration.name}' not found at {path}")
            return
        paths[declaration.name] = path

    for name, path in paths.items():
        context.artifacts.publish(name, path, stage=stage.name)
        outcome.artifacts.append(name)
    outcome.status = StageStatus.SUCCEEDED


def _finish(outcome: StageOutcome) -> StageOutcome:
    outcome.ended_at = time.time()
    outcome.duration_ms = (outcome.ended_at - (outcome.started_at or outcome.ended_at)) * 1000
    if outcome.status == StageStatus.SUCCEEDED:
        logger.info(f"Stage {outcome.stage} succeeded in {outcome.duration_ms:.0f}ms")
    elif outcome.status == StageStatus.FAILED:
        logger.warning(f"Stage {outcome.stage} failed ({outcome.reason.value}): {outcome.error}")
    return outcome
