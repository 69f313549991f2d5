"""
Pipeline graph: load-time validation, stage plan and artifact resolution.

The graph is linear; plan() returns the stages in declared order. The
graph is bound to one run's artifact namespace so stages can resolve
earlier outputs by logical name.
"""
from typing import Dict, Iterable, List, Optional, Set

from stagerun.core.errors import ConfigValidationError
from stagerun.core.logging import get_logger
from stagerun.definition.schema import PipelineDefinition, StageDefinition
from stagerun.definition.templating import find_artifact_refs
from stagerun.pipeline.artifacts import ArtifactNamespace, ArtifactRef
from stagerun.steps.registry import StepExecutorRegistry, get_executor_registry

logger = get_logger("pipeline.graph")


def _stage_artifact_refs(stage: StageDefinition) -> Set[str]:
    """Every artifact name a stage consumes, declared or templated."""
    refs = set(stage.needs)
    refs |= find_artifact_refs(stage.env)
    refs |= find_artifact_refs([a.path for a in stage.artifacts])
    for step in stage.steps:
        refs |= find_artifact_refs([step.run, step.command, step.cwd, step.args, step.options, step.env])
    return refs


def validate_definition(
    definition: PipelineDefinition,
    registry: Optional[StepExecutorRegistry] = None,
    external_artifacts: Iterable[str] = (),
) -> List[str]:
    """
    Cross-stage validation of a definition.

    Checks stage name uniqueness, timeout positivity, executor kinds and
    their options, and that every consumed artifact is produced by an
    earlier stage or supplied externally. Pure: the same input always
    yields the same issues, in the same order.

    Returns:
        List of `path: message` issues; empty if valid
    """
    registry = registry or get_executor_registry()
    issues: List[str] = []

    seen: Dict[str, int] = {}
    for index, stage in enumerate(definition.stages):
        if stage.name in seen:
            issues.append(
                f"stages[{index}].name: duplicate stage name '{stage.name}' "
                f"(first used by stages[{seen[stage.name]}])"
            )
        else:
            seen[stage.name] = index

    available = set(definition.external_artifacts) | set(external_artifacts)
    for name in sorted(find_artifact_refs(definition.env)):
        if name not in available:
            issues.append(f"env: artifact '{name}' must be supplied externally")

    for index, stage in enumerate(definition.stages):
        path = f"stages[{index}]({stage.name})"

        for step_index, step in enumerate(stage.steps):
            step_path = f"{path}.steps[{step_index}]({step.name})"
            if step.timeout is not None and step.timeout <= 0:
                issues.append(f"{step_path}.timeout: must be > 0 or unset")
            if not registry.has(step.uses):
                issues.append(
                    f"{step_path}.uses: unknown step executor '{step.uses}'. "
                    f"Available: {', '.join(registry.list_kinds())}"
                )
                continue
            for problem in registry.get(step.uses).validate_step(step):
                issues.append(f"{step_path}: {problem}")

        for name in sorted(_stage_artifact_refs(stage)):
            if name not in available:
                issues.append(
                    f"{path}: artifact '{name}' is not produced by an earlier stage "
                    f"or supplied externally"
                )

        available |= {a.name for a in stage.artifacts}

    return issues


class PipelineGraph:
    """
    Validated, ordered view of a PipelineDefinition for one run.

    Raises ConfigValidationError on construction if the definition is
    invalid, so an invalid pipeline never starts.
    """

    def __init__(
        self,
        definition: PipelineDefinition,
        artifacts: Optional[ArtifactNamespace] = None,
        registry: Optional[StepExecutorRegistry] = None,
        external_artifacts: Iterable[str] = (),
    ):
        self.definition = definition
        self.artifacts = artifacts if artifacts is not None else ArtifactNamespace()
        external = set(external_artifacts) | set(self.artifacts.names())
        issues = validate_definition(definition, registry, external)
        if issues:
            logger.error(f"Pipeline '{definition.name}' is invalid: {len(issues)} issues")
            raise ConfigValidationError(f"Invalid pipeline '{definition.name}'", issues)

    def plan(self) -> List[StageDefinition]:
        """Stages in execution order (declared order; no branching)."""
        return list(self.definition.stages)

    def producers(self) -> Dict[str, List[str]]:
        """Artifact name -> stages declaring it, in order."""
        result: Dict[str, List[str]] = {}
        for stage in self.definition.stages:
            for artifact in stage.artifacts:
                result.setdefault(artifact.name, []).append(stage.name)
        return result

    def resolve_artifact(self, name: str) -> ArtifactRef:
        """
        Get a published artifact by logical name.

        Raises:
            ArtifactNotFound: If nothing was published under `name`
        """
        return self.artifacts.resolve(name)
