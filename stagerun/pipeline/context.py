"""
Run-scoped state shared by the controller, stages and step runner.

Only the ExecutionController mutates a RunContext; stages read the outcome
history to evaluate their conditions.
"""
import asyncio
import os
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Set

from stagerun.definition.templating import expand_env
from stagerun.pipeline.artifacts import ArtifactNamespace
from stagerun.pipeline.models import StageOutcome, StageStatus


class CancelToken:
    """
    Cooperative cancellation flag awaited alongside running processes.

    Not bound to an event loop: waiters may live on any loop and cancel()
    may be called from any thread or from a signal handler.
    """

    def __init__(self):
        self._cancelled = False
        self._waiters: Set[asyncio.Future] = set()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "Aborted by operator") -> None:
        if self._cancelled:
            return
        self.reason = reason
        self._cancelled = True
        for waiter in list(self._waiters):
            waiter.get_loop().call_soon_threadsafe(_resolve, waiter)

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    async def wait(self) -> None:
        if self._cancelled:
            return
        waiter = asyncio.get_running_loop().create_future()
        self._waiters.add(waiter)
        try:
            if not self._cancelled:
                await waiter
        finally:
            self._waiters.discard(waiter)


def _resolve(waiter: asyncio.Future) -> None:
    if not waiter.done():
        waiter.set_result(None)


@dataclass
class EnvironmentContext:
    """Everything a step needs besides its own definition."""
    layers: List[Dict[str, str]] = field(default_factory=list)  # Later layers win
    cwd: Optional[str] = None
    cancel_token: Optional[CancelToken] = None
    log_dir: Optional[str] = None
    log_prefix: str = ""

    def merged(self) -> Dict[str, str]:
        env: Dict[str, str] = {}
        for layer in self.layers:
            env.update(layer)
        return env

    def with_layer(self, layer: Dict[str, str]) -> "EnvironmentContext":
        return EnvironmentContext(
            layers=[*self.layers, layer],
            cwd=self.cwd,
            cancel_token=self.cancel_token,
            log_dir=self.log_dir,
            log_prefix=self.log_prefix,
        )


@dataclass
class RunContext:
    """History and resources of a single pipeline run."""
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    branch: Optional[str] = None
    tag: Optional[str] = None
    env: Dict[str, str] = field(default_factory=dict)  # Pipeline-level env
    workspace: Path = field(default_factory=lambda: Path("."))
    inherit_env: bool = True
    log_dir: Optional[str] = None
    cancel_token: CancelToken = field(default_factory=CancelToken)
    artifacts: Optional[ArtifactNamespace] = None
    outcomes: List[StageOutcome] = field(default_factory=list)

    def __post_init__(self):
        self.workspace = Path(self.workspace)
        if self.artifacts is None:
            self.artifacts = ArtifactNamespace(self.workspace)

    def record(self, outcome: StageOutcome) -> None:
        self.outcomes.append(outcome)

    @property
    def has_failure(self) -> bool:
        """True once any stage failed, advisory stages included."""
        return any(o.status == StageStatus.FAILED for o in self.outcomes)

    @property
    def has_blocking_failure(self) -> bool:
        """True once a stage failed that was not allowed to fail, or could not launch."""
        return any(o.blocking for o in self.outcomes)

    def base_environment(self) -> EnvironmentContext:
        """
        Process environment (if inherited) plus the pipeline layer.

        Raises:
            ArtifactNotFound: If a pipeline env value references a missing artifact
        """
        layers = [dict(os.environ)] if self.inherit_env else []
        layers.append({
            "STAGERUN": "true",
            "STAGERUN_RUN_ID": self.run_id,
            "STAGERUN_BRANCH": self.branch or "",
            "STAGERUN_TAG": self.tag or "",
            "STAGERUN_WORKSPACE": str(self.workspace.resolve()),
        })
        scope: Dict[str, str] = {}
        for layer in layers:
            scope.update(layer)
        layers.append(expand_env(self.env, scope, self.artifacts.resolve))
        return EnvironmentContext(
            layers=layers,
            cwd=str(self.workspace),
            cancel_token=self.cancel_token,
            log_dir=self.log_dir,
        )
