"""
Object-storage upload step using the AWS CLI.
"""
from typing import List, Optional

from pydantic import Field

from stagerun.definition.schema import StepDefinition
from stagerun.steps.base import CommandStepExecutor, ExecutorOptions


class S3UploadOptions(ExecutorOptions):
    source: str = Field(..., min_length=1, description="Local file or directory")
    bucket: str = Field(..., pattern=r'^[a-z0-9][a-z0-9.-]{1,61}[a-z0-9]$')
    key: str = Field(default="", description="Object key, or prefix when recursive")
    recursive: bool = False
    region: Optional[str] = None
    acl: Optional[str] = None
    endpoint_url: Optional[str] = None
    profile: Optional[str] = None
    executable: str = "aws"


class S3UploadExecutor(CommandStepExecutor):
    """Copies build outputs to an S3-compatible bucket."""

    options_model = S3UploadOptions
    description = "Upload files to S3 (or an S3-compatible store) with 'aws s3 cp'"

    @property
    def kind(self) -> str:
        return "s3_upload"

    def build_argv(self, step: StepDefinition, options: Optional[S3UploadOptions]) -> List[str]:
        destination = f"s3://{options.bucket}/{options.key.lstrip('/')}"
        argv = [options.executable, "s3", "cp", options.source, destination]
        if options.recursive:
            argv.append("--recursive")
        if options.region:
            argv += ["--region", options.region]
        if options.acl:
            argv += ["--acl", options.acl]
        if options.endpoint_url:
            argv += ["--endpoint-url", options.endpoint_url]
        if options.profile:
            argv += ["--profile", options.profile]
        argv += step.args
        return argv
