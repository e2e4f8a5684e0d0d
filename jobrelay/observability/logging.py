"""
Structured logging for the engine.

Modules log through stdlib `logging.getLogger(__name__)` with `extra=`
fields. `setup_logging` renders those records with structlog, on the
`jobrelay` logger by default, or on the root logger for applications that
want one format for everything.
"""

import logging
import sys
from contextlib import AbstractContextManager
from typing import Any

import structlog
from opentelemetry import trace

from jobrelay.config import Settings, get_settings

PACKAGE_LOGGER = "jobrelay"

# Libraries the SQL store pulls in
NOISY_LOGGERS = ("sqlalchemy.engine", "aiosqlite", "asyncpg")


def add_trace_context(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """
    Add OpenTelemetry trace context to log records.

    Args:
        logger: The logger instance.
        method_name: The method name being called.
        event_dict: The event dictionary.

    Returns:
        The event dictionary with trace_id/span_id when a span is recording.
    """
    span = trace.get_current_span()
    if span and span.is_recording():
        ctx = span.get_span_context()
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")
    return event_dict


def _renderer(log_format: str) -> Any:
    if log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())


def setup_logging(settings: Settings | None = None, root: bool = False) -> logging.Logger:
    """
    Configure structured logging.

    Args:
        settings: Settings to read; defaults to the cached settings.
        root: Install the handler on the root logger instead of the
            package logger.

    Returns:
        The logger the handler was installed on.
    """
    settings = settings or get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    # Job context bound by the dispatcher arrives through contextvars
    pre_chain: list[Any] = [
        structlog.contextvars.merge_contextvars,
        add_trace_context,
        structlog.processors.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.ExtraAdder(),
    ]

    structlog.configure(
        processors=[
            *pre_chain,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer(settings.log_format),
            ],
        )
    )

    target = logging.getLogger() if root else logging.getLogger(PACKAGE_LOGGER)
    target.handlers = [handler]
    target.setLevel(level)
    if not root:
        target.propagate = False

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return target


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structlog logger, e.g. for handler code.

    Records carry the job_id/job_name of the job being handled.
    """
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> AbstractContextManager[None]:
    """Bind key-value pairs to log records emitted inside the `with` block."""
    return structlog.contextvars.bound_contextvars(**kwargs)
