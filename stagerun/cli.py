"""Command-line interface for stagerun.

Commands:
- run: Execute a pipeline definition and print its report
- validate: Check a definition without running it
- executors: List the registered step executors
- serve: Start the HTTP API
"""

import asyncio
import json
import signal
import sys
from pathlib import Path
from typing import Dict, Optional, Tuple

import click

from stagerun.core.config import settings
from stagerun.core.errors import ConfigValidationError
from stagerun.core.logging import LOG_LEVELS, setup_logging
from stagerun.definition.loader import load_definition
from stagerun.pipeline.controller import ExecutionController
from stagerun.pipeline.graph import PipelineGraph
from stagerun.pipeline.report import EXIT_INVALID_CONFIG, RunReport, render_report
from stagerun.steps.registry import get_executor_registry


def _parse_artifacts(values: Tuple[str, ...]) -> Dict[str, str]:
    artifacts = {}
    for value in values:
        name, sep, path = value.partition("=")
        if not sep or not name or not path:
            raise click.BadParameter(f"expected NAME=PATH, got '{value}'", param_hint="--artifact")
        artifacts[name] = path
    return artifacts


def _report_config_error(error: ConfigValidationError) -> None:
    click.echo(f"Configuration error: {error.message}", err=True)
    for issue in error.issues:
        click.echo(f"  - {issue}", err=True)


async def _run_with_signals(controller: ExecutionController, definition, **kwargs) -> RunReport:
    """Run the pipeline; SIGINT/SIGTERM abort it instead of killing stagerun."""
    loop = asyncio.get_running_loop()
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, controller.cancel, f"Received {sig.name}")
            installed.append(sig)
        except (NotImplementedError, RuntimeError, ValueError):
            # Not supported on this platform or not in the main thread
            pass
    try:
        return await controller.run_pipeline(definition, **kwargs)
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


@click.group()
@click.version_option(settings.version, prog_name="stagerun")
@click.option('--log-level', default=None, type=click.Choice(LOG_LEVELS, case_sensitive=False),
              help='Logging level (default: STAGERUN_LOG_LEVEL or INFO)')
def main(log_level: Optional[str]):
    """stagerun - run build pipelines as ordered stages of external tools."""
    setup_logging(log_level or settings.log_level)


@main.command()
@click.argument('file', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option('--branch', default=None, help='Branch name used by stage conditions')
@click.option('--tag', default=None, help='Tag name used by stage conditions')
@click.option('--artifact', 'artifacts', multiple=True, metavar='NAME=PATH',
              help='External artifact supplied to the run (repeatable)')
@click.option('--report', 'report_path', type=click.Path(dir_okay=False, path_type=Path), default=None,
              help='Write the JSON run report to this file')
@click.option('--workspace', type=click.Path(file_okay=False, path_type=Path), default=None,
              help='Working directory for steps (default: STAGERUN_WORKSPACE_DIR)')
@click.option('--log-dir', default=None, help='Directory for full per-step logs')
@click.option('--retain-artifacts/--no-retain-artifacts', default=None,
              help='Copy published artifacts under the artifact directory')
@click.option('--json', 'as_json', is_flag=True, help='Print the JSON report instead of the summary')
def run(
    file: Path,
    branch: Optional[str],
    tag: Optional[str],
    artifacts: Tuple[str, ...],
    report_path: Optional[Path],
    workspace: Optional[Path],
    log_dir: Optional[str],
    retain_artifacts: Optional[bool],
    as_json: bool,
):
    """Run the pipeline defined in FILE.

    Exit status: 0 succeeded, 1 failed, 2 invalid configuration,
    3 failed by timeout, 130 aborted.
    """
    external = _parse_artifacts(artifacts)
    try:
        definition = load_definition(file)
        controller = ExecutionController(
            workspace=workspace,
            log_dir=log_dir,
            retain_artifacts=retain_artifacts,
        )
        report = asyncio.run(_run_with_signals(
            controller, definition, branch=branch, tag=tag, external_artifacts=external,
        ))
    except ConfigValidationError as e:
        _report_config_error(e)
        sys.exit(EXIT_INVALID_CONFIG)

    if report_path is not None:
        report_path.parent.mkdir(parents=True, exist_ok=True)
        report_path.write_text(report.to_json(), encoding="utf-8")

    if as_json:
        click.echo(report.to_json())
    else:
        click.echo(render_report(report))
        if report_path is not None:
            click.echo(f"Report written to {report_path}")
    sys.exit(report.exit_code)


@main.command()
@click.argument('file', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option('--artifact', 'artifacts', multiple=True, metavar='NAME',
              help='Artifact name that will be supplied externally (repeatable)')
def validate(file: Path, artifacts: Tuple[str, ...]):
    """Validate FILE without running it."""
    try:
        definition = load_definition(file)
        PipelineGraph(definition, external_artifacts=artifacts)
    except ConfigValidationError as e:
        _report_config_error(e)
        sys.exit(EXIT_INVALID_CONFIG)

    click.echo(f"Pipeline '{definition.name}' is valid ({len(definition.stages)} stages):")
    for stage in definition.stages:
        kinds = ", ".join(sorted({step.uses for step in stage.steps}))
        click.echo(f"  {stage.name}  [{kinds}]")


@main.command()
@click.option('--json', 'as_json', is_flag=True, help='Print executor metadata as JSON')
def executors(as_json: bool):
    """List the step executors usable in `uses:`."""
    infos = get_executor_registry().list_info()
    if as_json:
        click.echo(json.dumps(infos, indent=2))
        return
    width = max(len(info["kind"]) for info in infos)
    for info in infos:
        click.echo(f"{info['kind']:<{width}}  {info['description']}")


@main.command()
@click.option('--host', default='127.0.0.1', help='Bind address')
@click.option('--port', type=int, default=8000, help='Bind port')
def serve(host: str, port: int):
    """Start the HTTP API."""
    import uvicorn

    uvicorn.run("stagerun.main:app", host=host, port=port, log_level=settings.log_level.lower())


if __name__ == '__main__':
    main()
