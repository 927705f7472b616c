"""Structured Logging Configuration.

This module provides structured logging with JSON output and context binding.
Outputs JSON format for production log aggregation.

Configuration:
- JSON output format (one object per line on stdout)
- Context binding support (task ids, stage names, attempts)
- Log levels: DEBUG, INFO, WARNING, ERROR, CRITICAL

Usage:
    from shortforge.utils.logging import get_logger

    log = get_logger(__name__)
    log.info("stage_completed", task_id=task.id, stage="script_generating")
"""

import logging
import sys
from typing import Any

import structlog


def configure_logging(level: str = "INFO") -> None:
    """Configure structlog and the stdlib root handler.

    Args:
        level: Log level name (e.g. "INFO", "DEBUG").
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric_level)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str, **initial_context: Any) -> Any:
    """Get a structured logger instance for the given module.

    Args:
        name: Module name (typically __name__)
        **initial_context: Key/values bound to every event of this logger

    Returns:
        structlog bound logger
    """
    logger = structlog.get_logger(name)
    if initial_context:
        logger = logger.bind(**initial_context)
    return logger
