"""
Outcome records for steps and stages.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class StageStatus(str, Enum):
    """Status of a stage or step execution."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class RunStatus(str, Enum):
    """Status of a whole pipeline run."""
    NOT_STARTED = "not_started"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.SUCCEEDED, RunStatus.FAILED, RunStatus.ABORTED)


class FailureReason(str, Enum):
    """Why a step or stage failed."""
    EXIT_CODE = "exit_code"
    TIMEOUT = "timeout"
    ABORTED = "aborted"
    LAUNCH_ERROR = "launch_error"
    MISSING_ARTIFACT = "missing_artifact"
    EXECUTOR_ERROR = "executor_error"


def iso_timestamp(ts: Optional[float]) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def tail(text: str, limit: int) -> str:
    if limit <= 0 or len(text) <= limit:
        return text
    return text[-limit:]


@dataclass
class StepOutcome:
    """Record of a single step execution."""
    step: str
    status: StageStatus
    command: str = ""
    reason: Optional[FailureReason] = None
    exit_code: Optional[int] = None
    started_at: float = 0.0
    ended_at: float = 0.0
    duration_ms: float = 0.0
    stdout: str = ""
    stderr: str = ""
    stdout_truncated: bool = False
    stderr_truncated: bool = False
    log_path: Optional[str] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == StageStatus.SUCCEEDED

    def output_tail(self, limit: int = 2000) -> str:
        """Last `limit` characters of stderr, falling back to stdout."""
        return tail(self.stderr or self.stdout, limit)

    def to_dict(self, tail_chars: int = 2000) -> Dict[str, Any]:
        return {
            "step": self.step,
            "command": self.command,
            "status": self.status.value,
            "reason": self.reason.value if self.reason else None,
            "exit_code": self.exit_code,
            "duration_ms": round(self.duration_ms, 1),
            "stdout_tail": tail(self.stdout, tail_chars),
            "stderr_tail": tail(self.stderr, tail_chars),
            "stdout_truncated": self.stdout_truncated,
            "stderr_truncated": self.stderr_truncated,
            "log_path": self.log_path,
            "error": self.error,
        }


@dataclass
class StageOutcome:
    """Record of a stage execution."""
    stage: str
    status: StageStatus = StageStatus.PENDING
    reason: Optional[FailureReason] = None
    failed_step: Optional[str] = None
    steps: List[StepOutcome] = field(default_factory=list)
    started_at: Optional[float] = None
    ended_at: Optional[float] = None
    duration_ms: float = 0.0
    skip_reason: Optional[str] = None
    artifacts: List[str] = field(default_factory=list)  # Names published on success
    error: Optional[str] = None
    continue_on_failure: bool = False

    @property
    def blocking(self) -> bool:
        """Failed in a way that decides the run; launch errors always do."""
        if self.status != StageStatus.FAILED:
            return False
        return not self.continue_on_failure or self.reason == FailureReason.LAUNCH_ERROR

    @property
    def exit_code(self) -> Optional[int]:
        """Exit code of the failing step, else of the last step that ran."""
        if self.failed_step:
            for step in self.steps:
                if step.step == self.failed_step:
                    return step.exit_code
        if self.steps:
            return self.steps[-1].exit_code
        return None

    @property
    def output_tail(self) -> str:
        for step in self.steps:
            if step.step == self.failed_step:
                return step.output_tail()
        return ""

    def to_dict(self, tail_chars: int = 2000) -> Dict[str, Any]:
        return {
            "name": self.stage,
            "status": self.status.value,
            "reason": self.reason.value if self.reason else None,
            "duration_ms": round(self.duration_ms, 1),
            "exit_code": self.exit_code,
            "failed_step": self.failed_step,
            "skip_reason": self.skip_reason,
            "error": self.error,
            "continue_on_failure": self.continue_on_failure,
            "started_at": iso_timestamp(self.started_at),
            "ended_at": iso_timestamp(self.ended_at),
            "artifacts": list(self.artifacts),
            "steps": [s.to_dict(tail_chars) for s in self.steps],
        }
