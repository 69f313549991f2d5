"""
Pipeline execution: graph validation, stage execution, run control and reports.

- PipelineGraph: Validated, ordered stage plan bound to an artifact namespace
- execute_stage: Runs one stage's steps and publishes its artifacts
- ExecutionController: Drives a run to a terminal state
- RunReport: Immutable result of a run
"""
