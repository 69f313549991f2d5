"""
Source checkout step.
"""
from typing import List, Optional

from pydantic import Field

from stagerun.definition.schema import StepDefinition
from stagerun.steps.base import CommandStepExecutor, ExecutorOptions


class GitCheckoutOptions(ExecutorOptions):
    repository: str = Field(..., min_length=1, description="Clone URL or local path")
    ref: Optional[str] = Field(default=None, description="Branch or tag to check out")
    directory: str = Field(default=".", min_length=1)
    depth: Optional[int] = Field(default=None, ge=1)
    submodules: bool = False
    executable: str = "git"


class GitCheckoutExecutor(CommandStepExecutor):
    """Clones a repository with the git CLI."""

    options_model = GitCheckoutOptions
    description = "Clone a git repository into the workspace"

    @property
    def kind(self) -> str:
        return "git_checkout"

    def build_argv(self, step: StepDefinition, options: Optional[GitCheckoutOptions]) -> List[str]:
        argv = [options.executable, "clone"]
        if options.depth:
            argv += ["--depth", str(options.depth)]
        if options.ref:
            argv += ["--branch", options.ref]
        if options.submodules:
            argv.append("--recurse-submodules")
        argv += [*step.args, options.repository, options.directory]
        return argv
