"""
Tests for the execution controller: failure policy, abort, artifacts, report.
"""
import asyncio
import hashlib
import time

import pytest

from stagerun.core.config import settings
from stagerun.core.errors import ConfigValidationError
from stagerun.definition.loader import definition_from_dict
from stagerun.pipeline.controller import ExecutionController
from stagerun.pipeline.models import FailureReason, RunStatus, StageStatus
from stagerun.pipeline.report import EXIT_ABORTED, EXIT_FAILED, EXIT_SUCCEEDED, EXIT_TIMEOUT

from helpers import pipeline, py_step, run_definition, stage, statuses

FAIL = py_step("import sys; print('boom', file=sys.stderr); sys.exit(1)", name="fail")
SLEEP = py_step("import time; time.sleep(30)", name="sleep")


class TestFailurePolicy:
    """Tests for stage sequencing and the failure policy."""

    @pytest.mark.parametrize("count", [1, 3, 5])
    def test_all_stages_succeed(self, workspace, count):
        report = run_definition(pipeline(*(stage(f"s{i}") for i in range(count))), workspace)
        assert report.status == RunStatus.SUCCEEDED
        assert statuses(report) == ["succeeded"] * count
        assert report.exit_code == EXIT_SUCCEEDED
        assert report.failed_stage is None

    @pytest.mark.parametrize("k", [0, 2, 4])
    def test_failure_skips_later_stages(self, workspace, k):
        stages = [stage(f"s{i}", FAIL if i == k else py_step("pass")) for i in range(5)]
        report = run_definition(pipeline(*stages), workspace)

        assert report.status == RunStatus.FAILED
        assert statuses(report) == ["succeeded"] * k + ["failed"] + ["skipped"] * (4 - k)
        assert report.exit_code == EXIT_FAILED
        assert report.failed_stage.stage == f"s{k}"
        assert all("s%d" % k in s.skip_reason for s in report.stages[k + 1:])

    def test_build_pipeline_scenario(self, workspace):
        """checkout, compile, test (fails), analyze, package, upload, deploy."""
        names = ["checkout", "compile", "test", "analyze", "package", "upload", "deploy"]
        stages = [stage(name, FAIL if name == "test" else py_step("pass")) for name in names]
        report = run_definition(pipeline(*stages), workspace, branch="main")

        assert statuses(report) == ["succeeded", "succeeded", "failed", "skipped", "skipped", "skipped", "skipped"]
        assert report.status == RunStatus.FAILED
        failed = report.stage("test")
        assert failed.reason == FailureReason.EXIT_CODE
        assert failed.failed_step == "fail"
        assert failed.exit_code == 1
        assert "boom" in failed.output_tail

    def test_continue_on_failure(self, workspace):
        report = run_definition(pipeline(
            stage("lint", FAIL, continue_on_failure=True),
            stage("build"),
        ), workspace)

        assert statuses(report) == ["failed", "succeeded"]
        assert report.status == RunStatus.SUCCEEDED
        assert report.failed_stage is None

    def test_always_and_on_failure_stages_run_after_failure(self, workspace):
        report = run_definition(pipeline(
            stage("test", FAIL),
            stage("deploy"),
            stage("notify", when={"status": "on_failure"}),
            stage("cleanup", when={"status": "always"}),
        ), workspace)

        assert statuses(report) == ["failed", "skipped", "succeeded", "succeeded"]
        assert report.status == RunStatus.FAILED

    def test_on_failure_stage_skipped_when_green(self, workspace):
        report = run_definition(pipeline(stage("build"), stage("notify", when={"status": "on_failure"})), workspace)
        assert statuses(report) == ["succeeded", "skipped"]
        assert report.status == RunStatus.SUCCEEDED

    def test_launch_error_is_fatal(self, workspace):
        report = run_definition(pipeline(
            stage("build", {"name": "tool", "command": "/nonexistent/stagerun-test-tool"}),
            stage("cleanup", when={"status": "always"}),
        ), workspace)

        assert statuses(report) == ["failed", "skipped"]
        assert report.stage("build").reason == FailureReason.LAUNCH_ERROR
        assert "launch error" in report.stage("cleanup").skip_reason
        assert report.status == RunStatus.FAILED

    def test_launch_error_in_allowed_failure_stage_fails_run(self, workspace):
        report = run_definition(pipeline(
            stage("scan", {"name": "scanner", "command": "/nonexistent/stagerun-scanner"}, continue_on_failure=True),
            stage("package"),
            stage("deploy"),
        ), workspace)

        assert statuses(report) == ["failed", "skipped", "skipped"]
        assert report.status == RunStatus.FAILED
        assert report.exit_code == EXIT_FAILED
        assert report.failed_stage.stage == "scan"
        assert report.error.startswith("Stage 'scan' failed")
        assert report.to_dict()["failure"]["reason"] == "launch_error"

    def test_branch_filtered_stage(self, workspace):
        data = pipeline(stage("build"), stage("deploy", when={"branches": ["main"]}))
        assert statuses(run_definition(data, workspace, branch="main")) == ["succeeded", "succeeded"]
        assert statuses(run_definition(data, workspace, branch="dev")) == ["succeeded", "skipped"]

    def test_timeout_exit_code(self, workspace):
        report = run_definition(pipeline(
            stage("test", py_step("import time; time.sleep(30)", timeout=0.5)),
            stage("package"),
        ), workspace)

        assert report.stage("test").reason == FailureReason.TIMEOUT
        assert statuses(report) == ["failed", "skipped"]
        assert report.exit_code == EXIT_TIMEOUT


class TestCancellation:
    """Tests for operator aborts."""

    def test_cancel_running_stage(self, workspace):
        controller = ExecutionController(workspace=workspace, log_dir="")
        definition = definition_from_dict(pipeline(stage("build"), stage("test", SLEEP), stage("deploy")))

        async def scenario():
            asyncio.get_running_loop().call_later(1.5, controller.cancel, "Stopped by test")
            return await controller.run_pipeline(definition)

        started = time.monotonic()
        report = asyncio.run(scenario())

        assert time.monotonic() - started < 15
        assert statuses(report) == ["succeeded", "failed", "skipped"]
        assert report.stage("test").reason == FailureReason.ABORTED
        assert report.status == RunStatus.ABORTED
        assert report.exit_code == EXIT_ABORTED
        assert report.error == "Stopped by test"
        assert controller.status == RunStatus.ABORTED

    def test_cancel_before_start(self, workspace):
        controller = ExecutionController(workspace=workspace, log_dir="")
        controller.cancel()
        report = run_definition(pipeline(stage("build"), stage("test")), workspace, controller=controller)
        assert statuses(report) == ["skipped", "skipped"]
        assert report.status == RunStatus.ABORTED


class TestArtifacts:
    """Tests for artifact hand-off between stages."""

    def test_round_trip_checksum(self, workspace):
        payload = b"PK\x03\x04" + b"x" * 10000
        expected = "sha256:" + hashlib.sha256(payload).hexdigest()
        produce = py_step(f"open('app.war', 'wb').write({payload!r})", name="produce")
        consume = py_step(
            "import hashlib, os, sys\n"
            "data = open(os.environ['STAGERUN_ARTIFACT_APP'], 'rb').read()\n"
            "print('sha256:' + hashlib.sha256(data).hexdigest(), sys.argv[1])",
            name="consume",
        )
        consume["args"].append("${artifact:app.checksum}")

        report = run_definition(pipeline(
            stage("package", produce, artifacts=[{"name": "app", "path": "app.war"}]),
            stage("upload", consume, needs=["app"]),
        ), workspace)

        assert report.status == RunStatus.SUCCEEDED
        assert report.artifacts["app"].checksum == expected
        assert report.artifacts["app"].size == len(payload)
        assert report.artifacts["app"].stage == "package"
        assert report.stage("upload").steps[0].stdout.split() == [expected, expected]

    def test_directory_artifact(self, workspace):
        produce = py_step("import os; os.makedirs('site/css'); open('site/index.html', 'w').write('hi'); "
                          "open('site/css/app.css', 'w').write('body{}')")
        report = run_definition(pipeline(
            stage("docs", produce, artifacts=[{"name": "site", "path": "site"}]),
        ), workspace)
        assert report.artifacts["site"].size == len("hi") + len("body{}")

    def test_external_artifact(self, workspace, tmp_path):
        external = tmp_path / "base.tar"
        external.write_bytes(b"base")
        report = run_definition(
            pipeline(stage("build", py_step("import os; print(os.environ['STAGERUN_ARTIFACT_BASE'])"), needs=["base"])),
            workspace,
            external_artifacts={"base": str(external)},
        )
        assert report.status == RunStatus.SUCCEEDED
        assert report.stage("build").steps[0].stdout.strip() == str(external.resolve())
        assert report.artifacts["base"].stage is None

    def test_missing_external_artifact(self, workspace, tmp_path):
        with pytest.raises(ConfigValidationError, match="external artifact"):
            run_definition(pipeline(stage("build")), workspace, external_artifacts={"base": str(tmp_path / "none")})

    def test_namespace_cleared_after_run(self, workspace):
        controller = ExecutionController(workspace=workspace, log_dir="")
        produce = py_step("open('a.txt', 'w').write('a')")
        report = run_definition(
            pipeline(stage("build", produce, artifacts=[{"name": "a", "path": "a.txt"}])),
            workspace,
            controller=controller,
        )
        assert "a" in report.artifacts
        assert len(controller.context.artifacts) == 0

    def test_retention(self, workspace, tmp_path, monkeypatch):
        monkeypatch.setattr(settings, "artifact_dir", str(tmp_path / "kept"))
        controller = ExecutionController(workspace=workspace, log_dir="", retain_artifacts=True)
        produce = py_step("open('a.txt', 'w').write('a')")
        report = run_definition(
            pipeline(stage("build", produce, artifacts=[{"name": "a", "path": "a.txt"}])),
            workspace,
            controller=controller,
        )
        copy = tmp_path / "kept" / report.run_id / "a" / "a.txt"
        assert report.retained == {"a": str(copy)}
        assert copy.read_text() == "a"


class TestController:
    """Tests for controller lifecycle."""

    def test_invalid_definition_never_starts(self, workspace):
        controller = ExecutionController(workspace=workspace, log_dir="")
        with pytest.raises(ConfigValidationError):
            run_definition(pipeline(stage("deploy", needs=["app"])), workspace, controller=controller)
        assert controller.status == RunStatus.NOT_STARTED
        assert controller.outcomes == []

    def test_single_use(self, workspace):
        controller = ExecutionController(workspace=workspace, log_dir="")
        run_definition(pipeline(stage("build")), workspace, controller=controller)
        with pytest.raises(RuntimeError):
            run_definition(pipeline(stage("build")), workspace, controller=controller)

    def test_step_logs_written(self, workspace, tmp_path):
        controller = ExecutionController(workspace=workspace, log_dir=str(tmp_path / "logs"))
        report = run_definition(
            pipeline(stage("build", py_step("print('compiled')", name="compile"))),
            workspace,
            controller=controller,
        )
        log_path = report.stage("build").steps[0].log_path
        assert log_path == str(tmp_path / "logs" / report.run_id / "build-compile.log")
        assert "compiled" in open(log_path).read()

    def test_progress_callback(self, workspace):
        events = []
        controller = ExecutionController(
            workspace=workspace, log_dir="",
            progress_callback=lambda stage, message, progress: events.append((stage, progress)),
        )
        run_definition(pipeline(stage("a"), stage("b")), workspace, controller=controller)
        assert events == [("a", 0), ("a", 50), ("b", 50), ("b", 100)]

    def test_report_timestamps(self, workspace):
        report = run_definition(pipeline(stage("a")), workspace, branch="main", tag="v1")
        assert report.finished_at >= report.started_at
        assert report.duration_ms >= report.stages[0].duration_ms
        assert (report.branch, report.tag) == ("main", "v1")
        assert len(report.run_id) == 12
