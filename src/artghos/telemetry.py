"""
Structured logging for artghos.

Every module logs through the shared `logger`. The console configuration is
installed once by the CLI; library users may configure structlog themselves.
"""

import logging
import os
import sys

import structlog

LOG_LEVEL_ENV_VAR = "ARTGHOS_LOG_LEVEL"

logger = structlog.get_logger("artghos")


def _stderr_logger_factory(*args: object) -> structlog.PrintLogger:
    # Resolved per call: click test runners swap sys.stderr.
    return structlog.PrintLogger(sys.stderr)


def configure_logging(level: str | None = None) -> None:
    """Installs a console renderer on stderr at the requested level."""
    level_name = (level or os.environ.get(LOG_LEVEL_ENV_VAR) or "INFO").upper()
    numeric_level = logging.getLevelName(level_name)
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=_stderr_logger_factory,
        # structlog.testing.capture_logs() needs uncached loggers.
        cache_logger_on_first_use=False,
    )
