"""
Step executor registry for resolving `uses:` kinds.

Builtin executors are registered on first access; custom executors can be
registered at runtime.
"""
from typing import Dict, List, Optional, Type

from stagerun.core.errors import UnknownExecutorError
from stagerun.core.logging import get_logger
from stagerun.steps.base import StepExecutor

logger = get_logger("steps.registry")


class StepExecutorRegistry:
    """
    Registry for step executors.

    Provides:
    - Registration of executors by kind
    - Resolution of executors by kind
    - Listing of available executors
    """

    _instance: Optional["StepExecutorRegistry"] = None

    def __init__(self):
        self._executors: Dict[str, Type[StepExecutor]] = {}
        self._instances: Dict[str, StepExecutor] = {}

    @classmethod
    def get_instance(cls) -> "StepExecutorRegistry":
        """Get singleton instance."""
        if cls._instance is None:
            cls._instance = cls()
            cls._instance._register_builtins()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Drop the singleton (tests register throwaway executors)."""
        cls._instance = None

    def register(
        self,
        kind: str,
        executor_class: Type[StepExecutor],
        override: bool = False
    ) -> None:
        """
        Register a step executor.

        Args:
            kind: Registry key used in `uses:`
            executor_class: StepExecutor subclass
            override: If True, allow overwriting existing registration
        """
        if kind in self._executors and not override:
            raise ValueError(
                f"Step executor '{kind}' already registered. "
                f"Use override=True to replace."
            )

        self._executors[kind] = executor_class
        self._instances.pop(kind, None)
        logger.debug(f"Registered step executor: {kind}")

    def register_instance(self, executor: StepExecutor, override: bool = False) -> None:
        """Register a pre-built executor (e.g. one with an injected transport)."""
        self.register(executor.kind, type(executor), override=override)
        self._instances[executor.kind] = executor

    def get(self, kind: str) -> StepExecutor:
        """
        Get an executor instance by kind.

        Raises:
            UnknownExecutorError: If kind not registered
        """
        if kind not in self._executors:
            raise UnknownExecutorError(kind, self.list_kinds())
        # Lazy instantiation with caching
        if kind not in self._instances:
            self._instances[kind] = self._executors[kind]()
        return self._instances[kind]

    def has(self, kind: str) -> bool:
        return kind in self._executors

    def list_kinds(self) -> List[str]:
        return sorted(self._executors.keys())

    def list_info(self) -> List[Dict]:
        """Get metadata for all registered executors."""
        return [self.get(kind).get_info() for kind in self.list_kinds()]

    def _register_builtins(self) -> None:
        """Register all builtin executors."""
        # Import here to avoid circular imports
        from stagerun.steps.builtins import (
            CommandExecutor,
            GitCheckoutExecutor,
            MavenExecutor,
            S3UploadExecutor,
            SonarScannerExecutor,
            TomcatDeployExecutor,
        )

        builtin_executors = [
            CommandExecutor,
            GitCheckoutExecutor,
            MavenExecutor,
            SonarScannerExecutor,
            S3UploadExecutor,
            TomcatDeployExecutor,
        ]

        for executor_class in builtin_executors:
            # Create instance to get kind
            instance = executor_class()
            self.register(instance.kind, executor_class)

        logger.debug(f"Registered {len(builtin_executors)} builtin step executors")


def get_executor_registry() -> StepExecutorRegistry:
    """Get the global step executor registry instance."""
    return StepExecutorRegistry.get_instance()
