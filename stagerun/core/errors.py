"""
Error taxonomy for pipeline loading and execution.

Only conditions that stop a run outright are exceptions. A step that exits
non-zero, times out or is aborted is reported as an outcome, not raised.
"""
from typing import List, Optional


class StagerunError(Exception):
    """Base class for all stagerun errors."""


class ConfigValidationError(StagerunError):
    """Pipeline definition is invalid; the run never starts."""

    def __init__(self, message: str, issues: Optional[List[str]] = None):
        self.message = message
        self.issues = list(issues or [])
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        if not self.issues:
            return self.message
        return self.message + ":\n" + "\n".join(f"  - {issue}" for issue in self.issues)


class OptionsError(StagerunError):
    """Executor options failed validation."""

    def __init__(self, kind: str, message: str):
        self.kind = kind
        self.message = message
        super().__init__(f"Invalid options for '{kind}': {message}")


class UnknownExecutorError(StagerunError, KeyError):
    """No executor is registered under the requested kind."""

    def __init__(self, kind: str, available: List[str]):
        self.kind = kind
        self.available = available
        super().__init__(
            f"Unknown step executor: '{kind}'. "
            f"Available executors: {', '.join(available)}"
        )

    def __str__(self) -> str:
        return self.args[0]


class StepLaunchError(StagerunError):
    """The external operation could not be started at all."""

    def __init__(self, step: str, command: str, reason: str):
        self.step = step
        self.command = command
        self.reason = reason
        super().__init__(f"Step '{step}' could not launch '{command}': {reason}")


class ArtifactNotFound(StagerunError, LookupError):
    """No artifact with the given name exists in the run namespace."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Artifact not found: '{name}'")
