"""
Step execution: executors, their registry and the step runner.

- StepExecutor: Base interface for all external step kinds
- StepExecutorRegistry: Registry resolving `uses:` to an executor
- StepRunner: Expands placeholders, merges env, runs one step
"""
from stagerun.steps.base import CommandStepExecutor, ExecutorOptions, StepExecutor
from stagerun.steps.registry import StepExecutorRegistry, get_executor_registry
from stagerun.steps.runner import StepRunner

__all__ = [
    "CommandStepExecutor",
    "ExecutorOptions",
    "StepExecutor",
    "StepExecutorRegistry",
    "get_executor_registry",
    "StepRunner",
]
