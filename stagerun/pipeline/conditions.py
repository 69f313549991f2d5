"""
Stage condition evaluation.
"""
from fnmatch import fnmatchcase
from typing import List, Optional, Tuple

from stagerun.definition.schema import Condition, ConditionStatus
from stagerun.pipeline.context import RunContext


def _matches(value: Optional[str], patterns: List[str]) -> bool:
    return value is not None and any(fnmatchcase(value, p) for p in patterns)


def evaluate_condition(condition: Condition, context: RunContext) -> Tuple[bool, Optional[str]]:
    """
    Decide whether a stage runs.

    The ref filter passes when no patterns are given, or when the run's
    branch matches `branches` or its tag matches `tags`. The status filter
    looks at blocking failures only: a failed `continue_on_failure` stage
    does not make the run "failing".

    Returns:
        (should_run, skip_reason)
    """
    if condition.branches or condition.tags:
        if not (_matches(context.branch, condition.branches) or _matches(context.tag, condition.tags)):
            ref = f"branch '{context.branch}'" if context.branch else "no branch"
            if context.tag:
                ref += f", tag '{context.tag}'"
            return False, f"Condition not met: {ref} does not match {condition.branches + condition.tags}"

    failing = context.has_blocking_failure
    if condition.status == ConditionStatus.ON_SUCCESS and failing:
        return False, "Skipped after earlier failure"
    if condition.status == ConditionStatus.ON_FAILURE and not failing:
        return False, "Condition not met: runs only after a failure"
    return True, None
