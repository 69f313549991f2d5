"""
Configuration management for the stagerun executor.
"""
import os
from typing import Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # API Settings
    app_name: str = "stagerun - Stage Sequencing Pipeline Executor"
    version: str = "1.0.0"
    api_prefix: str = "/v1"

    # Logging
    log_level: str = os.getenv("STAGERUN_LOG_LEVEL", "INFO")

    # Step execution
    shell: str = os.getenv("STAGERUN_SHELL", "/bin/sh")
    default_step_timeout: Optional[float] = None  # None means unbounded
    output_limit_bytes: int = int(os.getenv("STAGERUN_OUTPUT_LIMIT_BYTES", str(1024 * 1024)))
    output_tail_chars: int = 2000  # Output tail kept in reports
    kill_grace_seconds: float = 5.0
    inherit_env: bool = os.getenv("STAGERUN_INHERIT_ENV", "true").lower() == "true"

    # Directories
    workspace_dir: str = os.getenv("STAGERUN_WORKSPACE_DIR", ".")
    log_dir: Optional[str] = os.getenv("STAGERUN_LOG_DIR") or None
    artifact_dir: str = os.getenv("STAGERUN_ARTIFACT_DIR", ".stagerun/artifacts")

    # Artifact retention: copy published artifacts under artifact_dir/<run_id>/
    retain_artifacts: bool = os.getenv("STAGERUN_RETAIN_ARTIFACTS", "false").lower() == "true"

    # Run manager (HTTP API)
    max_concurrent_runs: int = int(os.getenv("STAGERUN_MAX_CONCURRENT_RUNS", "4"))
    max_finished_runs: int = 100

    class Config:
        env_prefix = "STAGERUN_"
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


# Global settings instance
settings = Settings()
