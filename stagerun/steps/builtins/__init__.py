"""
Builtin step executors.
"""
from stagerun.steps.builtins.command import CommandExecutor
from stagerun.steps.builtins.git import GitCheckoutExecutor
from stagerun.steps.builtins.maven import MavenExecutor
from stagerun.steps.builtins.s3 import S3UploadExecutor
from stagerun.steps.builtins.sonar import SonarScannerExecutor
from stagerun.steps.builtins.tomcat import TomcatDeployExecutor

__all__ = [
    "CommandExecutor",
    "GitCheckoutExecutor",
    "MavenExecutor",
    "S3UploadExecutor",
    "SonarScannerExecutor",
    "TomcatDeployExecutor",
]
