"""Structured logging configuration.

Every log line goes to stderr: when the server runs over stdio, stdout carries
the MCP protocol and must not receive anything else.
"""

from __future__ import annotations

import logging
import sys
from typing import Any, List, Optional, TextIO

import structlog
from structlog.types import EventDict, Processor


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("app", "k8s-port-forward-mcp")
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    log_format: str = "console",
    stream: Optional[TextIO] = None,
) -> None:
    """Configure structlog on top of the stdlib logging module.

    Args:
        log_level: Logging level name (DEBUG, INFO, WARNING, ERROR).
        log_format: "console" for human readable output, "json" for machines.
        stream: Output stream, defaults to stderr.
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        level=numeric_level,
        stream=stream or sys.stderr,
        force=True,
    )

    # kubernetes client and the MCP transport are chatty at INFO
    logging.getLogger("kubernetes").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)

    shared_processors: List[Processor] = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_app_context,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.processors.ExceptionRenderer(),
            structlog.dev.ConsoleRenderer(
                colors=False,
                exception_formatter=structlog.dev.plain_traceback,
            ),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str, **initial_context: Any) -> structlog.stdlib.BoundLogger:
    """Get a logger, optionally bound to initial context.

    Example:
        >>> logger = get_logger(__name__, component="supervisor")
        >>> logger.info("forward_started", label="dev~api:3000")
    """
    logger = structlog.get_logger(name)
    if initial_context:
        logger = logger.bind(**initial_context)
    return logger
