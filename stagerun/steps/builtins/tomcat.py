"""
Application-server deploy step - uploads a WAR through the Tomcat manager.

Uses the manager "text" interface:
    PUT {url}/manager/text/deploy?path=/app&update=true   (body: WAR bytes)
The manager answers 200 with a body starting "OK - " on success and
"FAIL - " otherwise.
"""
import asyncio
import time
from pathlib import Path
from typing import Optional

import httpx
from pydantic import Field, field_validator, model_validator

from stagerun.core.config import settings
from stagerun.core.errors import StepLaunchError
from stagerun.core.logging import get_logger
from stagerun.definition.schema import StepDefinition
from stagerun.pipeline.context import EnvironmentContext
from stagerun.pipeline.models import FailureReason, StageStatus, StepOutcome
from stagerun.steps.base import ExecutorOptions, StepExecutor

logger = get_logger("steps.tomcat")

UPLOAD_CHUNK_SIZE = 1024 * 1024


async def read_chunks(path: Path, chunk_size: int = UPLOAD_CHUNK_SIZE):
    """Yield a file's bytes without blocking the event loop."""
    loop = asyncio.get_running_loop()
    with path.open("rb") as handle:
        while True:
            chunk = await loop.run_in_executor(None, handle.read, chunk_size)
            if not chunk:
                break
            yield chunk


class TomcatDeployOptions(ExecutorOptions):
    url: str = Field(..., pattern=r'^https?://', description="Server base URL, e.g. http://tomcat:8080")
    war: str = Field(..., min_length=1, description="Path to the WAR file")
    context_path: str = Field(..., description="Context path, e.g. /app")
    username: Optional[str] = None
    password: Optional[str] = None
    update: bool = True
    tag: Optional[str] = None
    manager_path: str = "/manager/text"

    @field_validator("context_path")
    @classmethod
    def validate_context_path(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError("context_path must start with '/'")
        return v

    @model_validator(mode="after")
    def check_credentials(self):
        if (self.username is None) != (self.password is None):
            raise ValueError("username and password must be given together")
        return self


class TomcatDeployExecutor(StepExecutor):
    """Deploys a WAR to Tomcat over HTTP."""

    options_model = TomcatDeployOptions
    description = "Deploy a WAR file through the Tomcat manager text API"

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._transport = transport

    @property
    def kind(self) -> str:
        return "tomcat_deploy"

    def deploy_url(self, options: TomcatDeployOptions) -> str:
        return options.url.rstrip("/") + options.manager_path.rstrip("/") + "/deploy"

    async def _deploy(self, options: TomcatDeployOptions, war: Path, timeout: Optional[float]) -> httpx.Response:
        params = {"path": options.context_path}
        if options.update:
            params["update"] = "true"
        if options.tag:
            params["tag"] = options.tag
        auth = None
        if options.username is not None:
            auth = httpx.BasicAuth(options.username, options.password)

        async with httpx.AsyncClient(timeout=httpx.Timeout(timeout), transport=self._transport) as client:
            return await client.put(
                self.deploy_url(options),
                params=params,
                content=read_chunks(war),
                auth=auth,
                headers={
                    "Content-Type": "application/octet-stream",
                    "Content-Length": str(war.stat().st_size),
                },
            )

    async def execute(self, step: StepDefinition, env: EnvironmentContext) -> StepOutcome:
        options = self.parse_options(step.options)
        url = self.deploy_url(options)
        started = time.time()
        outcome = StepOutcome(
            step=step.name,
            status=StageStatus.FAILED,
            command=f"PUT {url}?path={options.context_path}",
            started_at=started,
        )

        war = Path(options.war)
        if not war.is_absolute() and env.cwd:
            war = Path(env.cwd) / war
        if not war.is_file():
            outcome.reason = FailureReason.MISSING_ARTIFACT
            outcome.error = f"WAR file not found: {war}"
            return self._finish(outcome)

        timeout = step.timeout if step.timeout is not None else settings.default_step_timeout
        logger.info(f"Deploying {war.name} to {url} at {options.context_path}")

        request = asyncio.ensure_future(self._deploy(options, war, timeout))
        waiters = {request}
        cancel_task = None
        if env.cancel_token is not None:
            cancel_task = asyncio.ensure_future(env.cancel_token.wait())
            waiters.add(cancel_task)

        try:
            done, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if cancel_task is not None:
                cancel_task.cancel()
                await asyncio.gather(cancel_task, return_exceptions=True)

        if request not in done:
            request.cancel()
            await asyncio.gather(request, return_exceptions=True)
            if cancel_task is not None and cancel_task in done:
                outcome.reason = FailureReason.ABORTED
                outcome.error = "Aborted while deploying"
            else:
                outcome.reason = FailureReason.TIMEOUT
                outcome.error = f"Timed out after {timeout}s"
            return self._finish(outcome)

        try:
            response = request.result()
        except httpx.TimeoutException:
            outcome.reason = FailureReason.TIMEOUT
            outcome.error = f"Timed out after {timeout}s"
            return self._finish(outcome)
        except httpx.ConnectError as e:
            raise StepLaunchError(step.name, url, str(e)) from e
        except httpx.HTTPError as e:
            outcome.reason = FailureReason.EXECUTOR_ERROR
            outcome.error = f"HTTP error: {e}"
            return self._finish(outcome)

        body = response.text.strip()
        outcome.stdout = body
        if response.status_code == 200 and body.startswith("OK"):
            outcome.status = StageStatus.SUCCEEDED
        else:
            outcome.reason = FailureReason.EXECUTOR_ERROR
            outcome.error = f"HTTP {response.status_code}: {body[:200]}"
        return self._finish(outcome)

    def _finish(self, outcome: StepOutcome) -> StepOutcome:
        outcome.ended_at = time.time()
        outcome.duration_ms = (outcome.ended_at - outcome.started_at) * 1000
        if outcome.error:
            logger.warning(f"Deploy step {outcome.step} failed: {outcome.error}")
        return outcome
