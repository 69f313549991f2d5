"""
Tests for the Tomcat deploy executor, against an httpx mock transport.
"""
import asyncio
import base64
import importlib.util
import os
from pathlib import Path

import httpx
import pytest

from stagerun.core.errors import StepLaunchError
from stagerun.definition.schema import StepDefinition
from stagerun.pipeline.context import CancelToken, EnvironmentContext
from stagerun.pipeline.controller import ExecutionController
from stagerun.pipeline.models import FailureReason, RunStatus, StageStatus
from stagerun.steps.builtins import TomcatDeployExecutor
from stagerun.steps.registry import StepExecutorRegistry

from helpers import pipeline, py_step, run_definition, stage

OPTIONS = {
    "url": "http://tomcat:8080/",
    "war": "app.war",
    "context_path": "/app",
    "username": "deployer",
    "password": "pw",
}


def deploy_step(**options):
    return StepDefinition.model_validate({"uses": "tomcat_deploy", "with": {**OPTIONS, **options}})


def execute(handler, tmp_path, step=None, cancel_token=None):
    executor = TomcatDeployExecutor(transport=httpx.MockTransport(handler))
    env = EnvironmentContext(cwd=str(tmp_path), cancel_token=cancel_token)
    return asyncio.run(executor.execute(step or deploy_step(), env))


@pytest.fixture
def war(tmp_path):
    path = tmp_path / "app.war"
    path.write_bytes(b"PK\x03\x04war-bytes")
    return path


class TestTomcatDeploy:
    def test_successful_deploy(self, tmp_path, war):
        seen = {}

        def handler(request: httpx.Request):
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["params"] = dict(request.url.params)
            seen["auth"] = request.headers["authorization"]
            seen["body"] = request.content
            return httpx.Response(200, text="OK - Deployed application at context path [/app]\n")

        outcome = execute(handler, tmp_path)
        assert outcome.status == StageStatus.SUCCEEDED
        assert outcome.stdout.startswith("OK - Deployed")
        assert seen["method"] == "PUT"
        assert seen["path"] == "/manager/text/deploy"
        assert seen["params"] == {"path": "/app", "update": "true"}
        assert seen["auth"] == "Basic " + base64.b64encode(b"deployer:pw").decode()
        assert seen["body"] == war.read_bytes()

    def test_manager_reports_failure(self, tmp_path, war):
        def handler(request):
            return httpx.Response(200, text="FAIL - Application already exists at path [/app]")

        outcome = execute(handler, tmp_path)
        assert outcome.status == StageStatus.FAILED
        assert outcome.reason == FailureReason.EXECUTOR_ERROR
        assert "FAIL - Application already exists" in outcome.error

    def test_http_error_status(self, tmp_path, war):
        outcome = execute(lambda request: httpx.Response(401, text="Unauthorized"), tmp_path)
        assert outcome.reason == FailureReason.EXECUTOR_ERROR
        assert outcome.error.startswith("HTTP 401")

    def test_missing_war(self, tmp_path):
        outcome = execute(lambda request: httpx.Response(200, text="OK"), tmp_path)
        assert outcome.reason == FailureReason.MISSING_ARTIFACT
        assert "app.war" in outcome.error

    def test_connection_refused_is_launch_error(self, tmp_path, war):
        def handler(request):
            raise httpx.ConnectError("Connection refused", request=request)

        with pytest.raises(StepLaunchError):
            execute(handler, tmp_path)

    def test_request_timeout(self, tmp_path, war):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        outcome = execute(handler, tmp_path, step=deploy_step())
        assert outcome.reason == FailureReason.TIMEOUT

    def test_abort_while_deploying(self, tmp_path, war):
        async def slow_handler(request):
            await asyncio.sleep(30)
            return httpx.Response(200, text="OK")

        async def scenario():
            token = CancelToken()
            asyncio.get_running_loop().call_later(0.2, token.cancel)
            executor = TomcatDeployExecutor(transport=httpx.MockTransport(slow_handler))
            return await executor.execute(deploy_step(), EnvironmentContext(cwd=str(tmp_path), cancel_token=token))

        outcome = asyncio.run(scenario())
        assert outcome.reason == FailureReason.ABORTED

    def test_context_path_validated(self):
        issues = TomcatDeployExecutor().validate_options({**OPTIONS, "context_path": "app"})
        assert issues == ["context_path: context_path must start with '/'"]

    def test_username_without_password_rejected(self):
        options = {key: value for key, value in OPTIONS.items() if key != "password"}
        issues = TomcatDeployExecutor().validate_options(options)
        assert issues == ["<root>: username and password must be given together"]

    def test_anonymous_deploy_sends_no_auth(self, tmp_path, war):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("authorization")
            return httpx.Response(200, text="OK - Deployed")

        step = StepDefinition.model_validate({
            "uses": "tomcat_deploy",
            "with": {"url": "http://tomcat:8080", "war": "app.war", "context_path": "/app"},
        })
        outcome = execute(handler, tmp_path, step=step)
        assert outcome.status == StageStatus.SUCCEEDED
        assert seen["auth"] is None

    def test_large_war_streamed_with_length(self, tmp_path):
        payload = b"PK\x03\x04" + os.urandom(3 * 1024 * 1024)
        (tmp_path / "app.war").write_bytes(payload)
        seen = {}

        def handler(request):
            seen["length"] = request.headers["content-length"]
            seen["body"] = request.content
            return httpx.Response(200, text="OK - Deployed")

        outcome = execute(handler, tmp_path)
        assert outcome.status == StageStatus.SUCCEEDED
        assert seen["length"] == str(len(payload))
        assert seen["body"] == payload

    def test_abort_leaves_no_pending_tasks(self, tmp_path, war):
        async def slow_handler(request):
            await asyncio.sleep(30)
            return httpx.Response(200, text="OK")

        async def scenario():
            token = CancelToken()
            asyncio.get_running_loop().call_later(0.2, token.cancel)
            executor = TomcatDeployExecutor(transport=httpx.MockTransport(slow_handler))
            outcome = await executor.execute(deploy_step(), EnvironmentContext(cwd=str(tmp_path), cancel_token=token))
            pending = [t for t in asyncio.all_tasks() if t is not asyncio.current_task()]
            return outcome, pending

        outcome, pending = asyncio.run(scenario())
        assert outcome.reason == FailureReason.ABORTED
        assert pending == []


def test_deploys_published_artifact(workspace):
    """The WAR produced by one stage reaches the deploy request by logical name."""
    received = []

    def handler(request):
        received.append(request.content)
        return httpx.Response(200, text="OK - Deployed application at context path [/app]")

    registry = StepExecutorRegistry()
    registry._register_builtins()
    registry.register_instance(TomcatDeployExecutor(transport=httpx.MockTransport(handler)), override=True)

    data = pipeline(
        stage(
            "package",
            py_step("import os; os.makedirs('target', exist_ok=True); open('target/app.war', 'wb').write(b'WAR')"),
            artifacts=[{"name": "app_war", "path": "target/app.war"}],
        ),
        stage(
            "deploy",
            {"uses": "tomcat_deploy", "with": {**OPTIONS, "war": "${artifact:app_war}"}},
            needs=["app_war"],
        ),
    )
    controller = ExecutionController(registry=registry, workspace=workspace, log_dir="")
    report = run_definition(data, workspace, controller=controller)

    assert report.status == RunStatus.SUCCEEDED
    assert received == [b"WAR"]
    assert os.path.isabs(report.artifacts["app_war"].path)


def test_against_mock_manager(tmp_path, war):
    """The executor speaks the protocol the bundled mock manager implements."""
    script = Path(__file__).resolve().parents[1] / "scripts" / "mock_tomcat_manager.py"
    spec = importlib.util.spec_from_file_location("mock_tomcat_manager", script)
    mock = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(mock)

    executor = TomcatDeployExecutor(transport=httpx.ASGITransport(app=mock.app))
    step = deploy_step(password=mock.PASSWORD, username=mock.USERNAME, tag="build-42")
    outcome = asyncio.run(executor.execute(step, EnvironmentContext(cwd=str(tmp_path))))

    assert outcome.succeeded, outcome.error
    assert mock.deployments["/app"]["size"] == war.stat().st_size
    assert mock.deployments["/app"]["tag"] == "build-42"

    wrong = deploy_step(password="nope")
    outcome = asyncio.run(executor.execute(wrong, EnvironmentContext(cwd=str(tmp_path))))
    assert outcome.reason == FailureReason.EXECUTOR_ERROR
    assert outcome.error.startswith("HTTP 401")
