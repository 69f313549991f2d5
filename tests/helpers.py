"""
Builders for pipeline documents used across the tests.

Steps run the current Python interpreter so the tests need no build tools.
"""
import asyncio
import sys
from typing import Any, Dict, List, Optional

from stagerun.definition.loader import definition_from_dict
from stagerun.pipeline.controller import ExecutionController


def py_step(code: str, name: str = "py", **extra) -> Dict[str, Any]:
    """A command step running `python -c code`."""
    return {"name": name, "command": sys.executable, "args": ["-c", code], **extra}


def stage(name: str, *steps: Dict[str, Any], **extra) -> Dict[str, Any]:
    return {"name": name, "steps": list(steps) or [py_step("pass")], **extra}


def pipeline(*stages: Dict[str, Any], **extra) -> Dict[str, Any]:
    return {"version": "v1", "name": extra.pop("name", "test"), "stages": list(stages), **extra}


def run_definition(data: Dict[str, Any], workspace, controller: Optional[ExecutionController] = None, **kwargs):
    """Validate and run a pipeline document; returns the RunReport."""
    controller = controller or ExecutionController(workspace=workspace, log_dir="")
    return asyncio.run(controller.run_pipeline(definition_from_dict(data), **kwargs))


def statuses(report) -> List[str]:
    return [s.value for s in report.statuses]
