"""Logging configuration for the Digiflow API.

Env vars:
- DIGIFLOW_LOG_LEVEL (default: INFO)
- DIGIFLOW_LOG_FORMAT: console (default) | json
"""

from __future__ import annotations

import logging
import os
import sys

import structlog


def get_log_level() -> str:
    return os.getenv("DIGIFLOW_LOG_LEVEL", "INFO").strip().upper() or "INFO"


def setup_stdlib_logging() -> None:
    log_level = get_log_level()

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = []

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    root_logger.addHandler(console_handler)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def setup_structlog() -> None:
    fmt = os.getenv("DIGIFLOW_LOG_FORMAT", "console").strip().lower()

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if fmt == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def configure_logging() -> None:
    """Configure stdlib logging as the sink and structlog on top of it. Call once at startup."""
    setup_stdlib_logging()
    setup_structlog()


def bind_request_context(**kwargs) -> None:
    """Attach context (e.g. session_id) to every log line for the rest of this request."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()
