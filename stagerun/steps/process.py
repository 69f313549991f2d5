"""
Subprocess launching with bounded output capture, timeout and abort.

This is the only place a pipeline run blocks: everything else is
bookkeeping around the external process.
"""
import asyncio
import os
import signal
import time
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Dict, List, Optional

from stagerun.core.errors import StepLaunchError
from stagerun.core.logging import get_logger
from stagerun.pipeline.context import CancelToken

logger = get_logger("steps.process")

READ_CHUNK = 64 * 1024


class BoundedBuffer:
    """
    Byte buffer that keeps only the last `limit` bytes.

    Runaway output is dropped from the front so the tail, which usually
    holds the error, survives. A marker records how much was dropped.
    """

    def __init__(self, limit: int):
        self.limit = max(0, limit)
        self._data = bytearray()
        self.dropped = 0

    def append(self, chunk: bytes) -> None:
        self._data.extend(chunk)
        overflow = len(self._data) - self.limit
        if overflow > 0:
            del self._data[:overflow]
            self.dropped += overflow

    @property
    def truncated(self) -> bool:
        return self.dropped > 0

    def text(self) -> str:
        body = self._data.decode("utf-8", errors="replace")
        if self.dropped:
            return f"[... {self.dropped} bytes truncated ...]\n{body}"
        return body


@dataclass
class ProcessResult:
    """Raw result of one external process."""
    exit_code: Optional[int]
    duration_ms: float
    stdout: str
    stderr: str
    stdout_truncated: bool = False
    stderr_truncated: bool = False
    timed_out: bool = False
    aborted: bool = False
    log_path: Optional[str] = None


async def _pump(stream: asyncio.StreamReader, buffer: BoundedBuffer, sink: Optional[BinaryIO]) -> None:
    while True:
        chunk = await stream.read(READ_CHUNK)
        if not chunk:
            break
        buffer.append(chunk)
        if sink is not None:
            sink.write(chunk)


def _signal_group(proc: asyncio.subprocess.Process, sig: int) -> None:
    try:
        if os.name == "posix":
            os.killpg(proc.pid, sig)
        elif sig == signal.SIGTERM:
            proc.terminate()
        else:
            proc.kill()
    except ProcessLookupError:
        pass


async def _terminate(proc: asyncio.subprocess.Process, grace: float) -> None:
    """SIGTERM the process group, then SIGKILL it after `grace` seconds."""
    if proc.returncode is not None:
        return
    _signal_group(proc, signal.SIGTERM)
    try:
        await asyncio.wait_for(proc.wait(), timeout=grace)
    except asyncio.TimeoutError:
        logger.warning(f"Process {proc.pid} ignored SIGTERM, killing")
        _signal_group(proc, getattr(signal, "SIGKILL", signal.SIGTERM))
        await proc.wait()


async def run_process(
    argv: List[str],
    *,
    step: str,
    env: Optional[Dict[str, str]] = None,
    cwd: Optional[str] = None,
    timeout: Optional[float] = None,
    cancel_token: Optional[CancelToken] = None,
    output_limit: int = 1024 * 1024,
    log_path: Optional[str] = None,
    kill_grace: float = 5.0,
) -> ProcessResult:
    """
    Run argv to completion, timeout or abort.

    A non-zero exit is returned, not raised.

    Raises:
        StepLaunchError: If the executable cannot be located or started
    """
    if not argv:
        raise StepLaunchError(step, "", "empty command")

    sink: Optional[BinaryIO] = None
    if log_path:
        Path(log_path).parent.mkdir(parents=True, exist_ok=True)
        sink = open(log_path, "wb")

    started = time.monotonic()
    try:
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
                cwd=cwd,
                start_new_session=(os.name == "posix"),
            )
        except (FileNotFoundError, PermissionError, NotADirectoryError) as e:
            raise StepLaunchError(step, argv[0], e.strerror or str(e)) from e
        except OSError as e:
            raise StepLaunchError(step, argv[0], str(e)) from e

        logger.debug(f"Step {step}: started pid {proc.pid}: {argv}")

        stdout_buf = BoundedBuffer(output_limit)
        stderr_buf = BoundedBuffer(output_limit)
        pumps = asyncio.gather(
            _pump(proc.stdout, stdout_buf, sink),
            _pump(proc.stderr, stderr_buf, sink),
        )

        wait_task = asyncio.ensure_future(proc.wait())
        cancel_task = asyncio.ensure_future(cancel_token.wait()) if cancel_token else None
        waiters = {wait_task} if cancel_task is None else {wait_task, cancel_task}

        timed_out = aborted = False
        try:
            done, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
            if wait_task not in done:
                if cancel_task is not None and cancel_task in done:
                    aborted = True
                    logger.warning(f"Step {step}: aborted, terminating pid {proc.pid}")
                else:
                    timed_out = True
                    logger.warning(f"Step {step}: timed out after {timeout}s, terminating pid {proc.pid}")
                await _terminate(proc, kill_grace)
            await wait_task
        except asyncio.CancelledError:
            await _terminate(proc, kill_grace)
            pumps.cancel()
            raise
        finally:
            if cancel_task is not None:
                cancel_task.cancel()

        try:
            await asyncio.wait_for(pumps, timeout=kill_grace)
        except asyncio.TimeoutError:
            # A detached grandchild still holds the pipes open
            logger.warning(f"Step {step}: output streams still open after exit, giving up on them")

        return ProcessResult(
            exit_code=proc.returncode,
            duration_ms=(time.monotonic() - started) * 1000,
            stdout=stdout_buf.text(),
            stderr=stderr_buf.text(),
            stdout_truncated=stdout_buf.truncated,
            stderr_truncated=stderr_buf.truncated,
            timed_out=timed_out,
            aborted=aborted,
            log_path=log_path,
        )
    finally:
        if sink is not None:
            sink.close()
