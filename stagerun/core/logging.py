"""
Logging configuration for stagerun.

Log records go to stderr so that `stagerun run --json` keeps stdout for the
report.
"""
import logging
import sys
from typing import Optional

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Third-party loggers that log every request at INFO
QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Configure the root handler and the stagerun logger level."""
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        raise ValueError(f"Unknown log level: {level}")

    logging.basicConfig(
        level=numeric,
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stderr)],
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric, logging.WARNING))

    logger = logging.getLogger("stagerun")
    logger.setLevel(numeric)
    return logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Get a logger under the stagerun namespace, e.g. get_logger("steps.tomcat")."""
    if name:
        return logging.getLogger(f"stagerun.{name}")
    return logging.getLogger("stagerun")
