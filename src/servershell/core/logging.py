"""Structured logging setup.

Diagnostics go to stderr only: stdout carries the interactive session
and the batch result, so a log line there would corrupt it.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional, TextIO

import structlog

from servershell.core.config import LoggingConfig


def configure_logging(
    config: Optional[LoggingConfig] = None,
    stream: Optional[TextIO] = None,
) -> None:
    """Configure structlog from the logging section of the settings.

    Args:
        config: Logging configuration. Defaults to LoggingConfig().
        stream: Output stream. Defaults to sys.stderr.
    """
    cfg = config or LoggingConfig()

    renderer: structlog.types.Processor
    if cfg.format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(cfg.level)
        ),
        logger_factory=structlog.PrintLoggerFactory(file=stream or sys.stderr),
        cache_logger_on_first_use=False,
    )
