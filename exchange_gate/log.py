"""
Structured logging setup.

All modules obtain loggers with structlog.get_logger(__name__) and log
snake_case event names with key/value context. This module wires structlog
onto the standard library logging backend once per process.
"""

import logging
import sys

import structlog

from exchange_gate.config.models import LogFormat, LoggingConfig


def setup_logging(config: LoggingConfig) -> None:
    """
    Configure structured logging.

    Args:
        config: Logging configuration (format and level).
    """
    if config.format == LogFormat.JSON:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, config.level.value),
    )

    # Reduce noise from the socket library's frame logging
    logging.getLogger("websockets").setLevel(logging.WARNING)
