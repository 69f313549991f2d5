"""
Step runner: expands a step's placeholders, merges its environment and
hands it to the executor selected by `uses`.
"""
from typing import Callable, Optional

from stagerun.core.errors import ArtifactNotFound, StepLaunchError, UnknownExecutorError
from stagerun.core.logging import get_logger
from stagerun.definition.schema import StepDefinition
from stagerun.definition.templating import expand, expand_env
from stagerun.pipeline.artifacts import ArtifactRef
from stagerun.pipeline.context import EnvironmentContext
from stagerun.pipeline.models import StepOutcome
from stagerun.steps.registry import StepExecutorRegistry, get_executor_registry

logger = get_logger("steps.runner")


def _no_artifacts(name: str) -> ArtifactRef:
    raise ArtifactNotFound(name)


class StepRunner:
    """
    Runs one step.

    The environment is layered: process env, pipeline env, stage env, step
    env; later layers win. Placeholders in `run`, `command`, `args`, `cwd`,
    `with` and env values are expanded against the merged environment.
    """

    def __init__(self, registry: Optional[StepExecutorRegistry] = None):
        self.registry = registry or get_executor_registry()

    def prepare(
        self,
        step: StepDefinition,
        env: EnvironmentContext,
        resolve_artifact: Callable[[str], ArtifactRef] = _no_artifacts,
    ) -> tuple[StepDefinition, EnvironmentContext]:
        """
        Expand placeholders and add the step's env layer.

        Raises:
            ArtifactNotFound: If a ${artifact:...} placeholder has no match
        """
        step_env = expand_env(step.env, env.merged(), resolve_artifact)
        step_context = env.with_layer(step_env)
        scope = step_context.merged()

        expanded = step.model_copy(update={
            "run": expand(step.run, scope, resolve_artifact),
            "command": expand(step.command, scope, resolve_artifact),
            "args": expand(list(step.args), scope, resolve_artifact),
            "options": expand(dict(step.options), scope, resolve_artifact),
            "cwd": expand(step.cwd, scope, resolve_artifact),
            "env": step_env,
        })
        return expanded, step_context

    async def run(
        self,
        step: StepDefinition,
        env: EnvironmentContext,
        resolve_artifact: Callable[[str], ArtifactRef] = _no_artifacts,
    ) -> StepOutcome:
        """
        Execute a step.

        Returns:
            StepOutcome; non-zero exits, timeouts and aborts are outcomes

        Raises:
            StepLaunchError: If the operation cannot be launched at all
            ArtifactNotFound: If a referenced artifact is missing
            OptionsError: If expanded options fail validation
        """
        try:
            executor = self.registry.get(step.uses)
        except UnknownExecutorError as e:
            raise StepLaunchError(step.name, step.uses, str(e)) from e

        expanded, step_context = self.prepare(step, env, resolve_artifact)

        logger.info(f"Running step {step.name} ({executor.kind}): {expanded.display_command()}")
        outcome = await executor.execute(expanded, step_context)

        if outcome.succeeded:
            logger.info(f"Step {step.name} succeeded in {outcome.duration_ms:.0f}ms")
        else:
            logger.warning(
                f"Step {step.name} failed ({outcome.reason.value if outcome.reason else 'unknown'}): "
                f"{outcome.error or ''}"
            )
        return outcome
