"""
In-memory registry of runs submitted over the HTTP API.

Each submission gets its own ExecutionController, so runs share no
mutable state. Finished runs are kept for inspection up to
settings.max_finished_runs, oldest evicted first.
"""
import time
import uuid
from collections import OrderedDict
from typing import Any, Dict, List, Optional

from stagerun.core.config import settings
from stagerun.core.errors import StagerunError
from stagerun.core.logging import get_logger
from stagerun.definition.schema import PipelineDefinition
from stagerun.pipeline.controller import ExecutionController
from stagerun.pipeline.models import RunStatus, StageStatus, iso_timestamp
from stagerun.pipeline.report import RunReport

logger = get_logger("api.manager")


class RunLimitExceeded(StagerunError):
    """Too many runs are active to accept another."""


class RunRecord:
    """One submitted run: its controller while running, its report after."""

    def __init__(
        self,
        definition: PipelineDefinition,
        branch: Optional[str] = None,
        tag: Optional[str] = None,
        external_artifacts: Optional[Dict[str, str]] = None,
    ):
        self.run_id = uuid.uuid4().hex[:12]
        self.definition = definition
        self.branch = branch
        self.tag = tag
        self.external_artifacts = dict(external_artifacts or {})
        self.controller = ExecutionController()
        self.submitted_at = time.time()
        self.report: Optional[RunReport] = None
        self.error: Optional[str] = None

    @property
    def status(self) -> RunStatus:
        if self.report is not None:
            return self.report.status
        if self.error is not None:
            return RunStatus.FAILED
        return self.controller.status

    @property
    def is_active(self) -> bool:
        return not self.status.is_terminal

    def stage_statuses(self) -> Dict[str, str]:
        """Stage name -> status; stages not reached yet are pending."""
        recorded = self.report.stages if self.report else self.controller.outcomes
        statuses = {outcome.stage: outcome.status.value for outcome in recorded}
        for name in self.definition.stage_names:
            statuses.setdefault(name, StageStatus.PENDING.value)
        return statuses

    def to_summary(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "pipeline": self.definition.name,
            "status": self.status.value,
            "branch": self.branch,
            "tag": self.tag,
            "submitted_at": iso_timestamp(self.submitted_at),
            "stages": self.stage_statuses(),
        }

    def to_dict(self) -> Dict[str, Any]:
        """Full report once finished, live progress before that."""
        if self.report is not None:
            data = self.report.to_dict(settings.output_tail_chars)
            data["submitted_at"] = iso_timestamp(self.submitted_at)
            return data

        recorded = {o.stage: o for o in self.controller.outcomes}
        stages = []
        for name in self.definition.stage_names:
            if name in recorded:
                stages.append(recorded[name].to_dict(settings.output_tail_chars))
            else:
                stages.append({"name": name, "status": StageStatus.PENDING.value})
        return {
            "run_id": self.run_id,
            "pipeline": self.definition.name,
            "status": self.status.value,
            "branch": self.branch,
            "tag": self.tag,
            "submitted_at": iso_timestamp(self.submitted_at),
            "error": self.error,
            "stages": stages,
        }


class RunManager:
    """
    Registry of API-submitted runs.

    Provides:
    - Submission with a concurrency limit
    - Execution of a submitted run
    - Lookup, listing and cancellation by run ID
    """

    _instance: Optional["RunManager"] = None

    def __init__(self, max_concurrent: Optional[int] = None, max_finished: Optional[int] = None):
        self.max_concurrent = max_concurrent or settings.max_concurrent_runs
        self.max_finished = max_finished or settings.max_finished_runs
        self._runs: "OrderedDict[str, RunRecord]" = OrderedDict()

    @classmethod
    def get_instance(cls) -> "RunManager":
        """Get singleton instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        cls._instance = None

    @property
    def active_count(self) -> int:
        return sum(1 for record in self._runs.values() if record.is_active)

    def submit(
        self,
        definition: PipelineDefinition,
        branch: Optional[str] = None,
        tag: Optional[str] = None,
        external_artifacts: Optional[Dict[str, str]] = None,
    ) -> RunRecord:
        """
        Register a run; call execute() to start it.

        Raises:
            RunLimitExceeded: If max_concurrent runs are already active
        """
        if self.active_count >= self.max_concurrent:
            raise RunLimitExceeded(f"{self.active_count} runs active (limit {self.max_concurrent})")
        record = RunRecord(definition, branch=branch, tag=tag, external_artifacts=external_artifacts)
        self._runs[record.run_id] = record
        logger.info(f"Submitted run {record.run_id} of pipeline '{definition.name}'")
        return record

    async def execute(self, record: RunRecord) -> None:
        """Run a submitted pipeline to completion and keep its report."""
        try:
            record.report = await record.controller.run_pipeline(
                record.definition,
                branch=record.branch,
                tag=record.tag,
                external_artifacts=record.external_artifacts,
                run_id=record.run_id,
            )
        except StagerunError as e:
            logger.error(f"Run {record.run_id} could not start: {e}")
            record.error = str(e)
        except Exception as e:
            logger.error(f"Run {record.run_id} crashed: {e}", exc_info=True)
            record.error = f"{type(e).__name__}: {e}"
        finally:
            self._evict()

    def get(self, run_id: str) -> Optional[RunRecord]:
        return self._runs.get(run_id)

    def list_runs(self) -> List[RunRecord]:
        """Runs, newest first."""
        return list(reversed(self._runs.values()))

    def cancel(self, run_id: str, reason: str = "Aborted by API request") -> RunRecord:
        """
        Abort an active run.

        Raises:
            KeyError: If the run ID is unknown
        """
        record = self._runs[run_id]
        if record.is_active:
            record.controller.cancel(reason)
        return record

    def _evict(self) -> None:
        finished = [rid for rid, record in self._runs.items() if not record.is_active]
        for run_id in finished[:max(0, len(finished) - self.max_finished)]:
            del self._runs[run_id]


def get_run_manager() -> RunManager:
    """Get the global run manager instance."""
    return RunManager.get_instance()
