"""Structured logging for VisionClaw."""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from structlog.types import Processor

# Log fields carrying task text, agent output or transcripts are cut to this.
MAX_LOG_FIELD_CHARS = 200


def setup_logging(
    level: str = "INFO",
    json_output: bool = False,
    service_name: str | None = None,
) -> None:
    """Configure structured logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR).
        json_output: Output JSON format (for production).
        service_name: Component name; adds call-site fields when set.
    """
    log_level = getattr(logging, level.upper())

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )
    # websockets and httpx log every frame/request at DEBUG
    for noisy in ("websockets", "httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(max(log_level, logging.WARNING))

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if service_name:
        shared_processors.insert(
            0,
            structlog.processors.CallsiteParameterAdder(
                parameters=[
                    structlog.processors.CallsiteParameter.FILENAME,
                    structlog.processors.CallsiteParameter.LINENO,
                ]
            ),
        )

    renderer: Processor
    if json_output:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=shared_processors + [renderer],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None, **initial_values: Any) -> structlog.BoundLogger:
    """Get a structured logger.

    Args:
        name: Logger name (typically component name).
        **initial_values: Initial context values to bind.

    Returns:
        Bound structured logger.
    """
    logger = structlog.get_logger(name)
    if initial_values:
        logger = logger.bind(**initial_values)
    return logger


def truncate(value: Any, limit: int = MAX_LOG_FIELD_CHARS) -> str:
    """Shorten a value for a log field."""
    text = value if isinstance(value, str) else str(value)
    if len(text) <= limit:
        return text
    return text[:limit] + "..."
