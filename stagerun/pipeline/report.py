"""
Run report: the finalized, machine-readable result of one pipeline run.
"""
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from stagerun.pipeline.artifacts import ArtifactRef
from stagerun.pipeline.models import (
    FailureReason,
    RunStatus,
    StageOutcome,
    StageStatus,
    iso_timestamp,
)

# Process exit codes
EXIT_SUCCEEDED = 0
EXIT_FAILED = 1
EXIT_INVALID_CONFIG = 2
EXIT_TIMEOUT = 3
EXIT_ABORTED = 130


@dataclass(frozen=True)
class RunReport:
    """Result of running a pipeline; immutable once built."""
    run_id: str
    pipeline: str
    status: RunStatus
    stages: Tuple[StageOutcome, ...]
    started_at: float
    finished_at: float
    duration_ms: float
    artifacts: Dict[str, ArtifactRef] = field(default_factory=dict)
    branch: Optional[str] = None
    tag: Optional[str] = None
    error: Optional[str] = None
    retained: Dict[str, str] = field(default_factory=dict)  # Artifact name -> retained copy

    @property
    def succeeded(self) -> bool:
        return self.status == RunStatus.SUCCEEDED

    @property
    def statuses(self) -> Tuple[StageStatus, ...]:
        return tuple(s.status for s in self.stages)

    @property
    def failed_stage(self) -> Optional[StageOutcome]:
        """First failure that decided the run (advisory failures excluded)."""
        for outcome in self.stages:
            if outcome.blocking:
                return outcome
        return None

    def stage(self, name: str) -> StageOutcome:
        for outcome in self.stages:
            if outcome.stage == name:
                return outcome
        raise KeyError(name)

    @property
    def exit_code(self) -> int:
        """0 succeeded, 1 failed, 3 failed by timeout, 130 aborted."""
        if self.status == RunStatus.SUCCEEDED:
            return EXIT_SUCCEEDED
        if self.status == RunStatus.ABORTED:
            return EXIT_ABORTED
        failed = self.failed_stage
        if failed is not None and failed.reason == FailureReason.TIMEOUT:
            return EXIT_TIMEOUT
        return EXIT_FAILED

    def to_dict(self, tail_chars: int = 2000) -> Dict[str, Any]:
        failed = self.failed_stage
        return {
            "run_id": self.run_id,
            "pipeline": self.pipeline,
            "status": self.status.value,
            "exit_code": self.exit_code,
            "branch": self.branch,
            "tag": self.tag,
            "started_at": iso_timestamp(self.started_at),
            "finished_at": iso_timestamp(self.finished_at),
            "duration_ms": round(self.duration_ms, 1),
            "error": self.error,
            "failure": {
                "stage": failed.stage,
                "step": failed.failed_step,
                "reason": failed.reason.value if failed.reason else None,
                "exit_code": failed.exit_code,
                "output_tail": failed.output_tail[-tail_chars:],
            } if failed else None,
            "stages": [s.to_dict(tail_chars) for s in self.stages],
            "artifacts": {name: ref.to_dict() for name, ref in self.artifacts.items()},
            "retained_artifacts": dict(self.retained),
        }

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)


_STATUS_MARKS = {
    StageStatus.SUCCEEDED: "ok",
    StageStatus.FAILED: "FAIL",
    StageStatus.SKIPPED: "skip",
    StageStatus.PENDING: "..",
    StageStatus.RUNNING: "..",
}


def render_report(report: RunReport, tail_lines: int = 20) -> str:
    """Plain-text summary for the console."""
    lines = [f"Pipeline {report.pipeline} [{report.run_id}]: {report.status.value.upper()} "
             f"in {report.duration_ms / 1000:.1f}s"]
    width = max((len(s.stage) for s in report.stages), default=0)
    for outcome in report.stages:
        mark = _STATUS_MARKS[outcome.status]
        detail = ""
        if outcome.status == StageStatus.FAILED:
            detail = f"  {outcome.reason.value if outcome.reason else ''}"
            if outcome.failed_step:
                detail += f" in step '{outcome.failed_step}'"
            if outcome.exit_code is not None:
                detail += f" (exit {outcome.exit_code})"
            if outcome.continue_on_failure and not outcome.blocking:
                detail += " [allowed]"
        elif outcome.status == StageStatus.SKIPPED and outcome.skip_reason:
            detail = f"  {outcome.skip_reason}"
        lines.append(f"  {mark:>4}  {outcome.stage:<{width}}  {outcome.duration_ms / 1000:6.1f}s{detail}")

    failed = report.failed_stage
    if failed is not None:
        if failed.error:
            lines.append(f"Error: {failed.error}")
        output = failed.output_tail.rstrip()
        if output:
            lines.append(f"Last output of '{failed.failed_step}':")
            lines.extend("    " + line for line in output.splitlines()[-tail_lines:])
    elif report.error:
        lines.append(f"Error: {report.error}")

    if report.artifacts:
        lines.append("Artifacts:")
        for name, ref in report.artifacts.items():
            lines.append(f"  {name}: {ref.path} ({ref.checksum[:19]}...)")
    return "\n".join(lines)
