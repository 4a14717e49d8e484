"""Structured logging with correlation IDs and operation tracing.

Library modules log through the standard ``logging`` module. Calling
``configure_logging`` routes those records through structlog so that they
are rendered the same way as events from ``get_logger`` loggers.
"""

from __future__ import annotations

import contextvars
import logging
import sys
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Generator, Optional

import structlog

from .config import LoggingConfig, get_config

# Context variable for correlation IDs
correlation_id: contextvars.ContextVar[str] = contextvars.ContextVar(
    "correlation_id", default=""
)


def add_correlation_id(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Add correlation ID to log events."""
    corr_id = correlation_id.get()
    if corr_id:
        event_dict["correlation_id"] = corr_id
    return event_dict


def add_timestamp(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Add timestamp to log events."""
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def _build_renderer(config: LoggingConfig) -> Any:
    if config.format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=config.output != "file")


def _build_handler(config: LoggingConfig) -> logging.Handler:
    if config.output == "file":
        if not config.file_path:
            raise ValueError("file_path is required when logging output is 'file'")
        return logging.FileHandler(config.file_path, encoding="utf-8")
    return logging.StreamHandler(sys.stdout if config.output == "stdout" else sys.stderr)


def configure_logging(config: Optional[LoggingConfig] = None) -> None:
    """Configure structured logging for structlog and stdlib loggers."""
    if config is None:
        config = get_config().logging

    shared_processors = [
        add_timestamp,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_correlation_id,
    ]

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared_processors,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            _build_renderer(config),
        ],
    )

    handler = _build_handler(config)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, config.level.upper(), logging.INFO))


def get_logger(name: str) -> Any:
    """Get a structlog logger instance."""
    return structlog.get_logger(name)


@contextmanager
def correlation_context(corr_id: Optional[str] = None) -> Generator[str, None, None]:
    """Context manager for correlation ID."""
    if corr_id is None:
        corr_id = str(uuid.uuid4())

    token = correlation_id.set(corr_id)
    try:
        yield corr_id
    finally:
        correlation_id.reset(token)


@contextmanager
def trace_operation(operation: str, **kwargs: Any) -> Generator[dict[str, Any], None, None]:
    """
    Log the start and outcome of an operation.

    Yields a mutable dict of attributes; anything added to it is included in
    the completion event.
    """
    attributes: dict[str, Any] = dict(kwargs)
    if not get_config().logging.enable_tracing:
        yield attributes
        return

    logger = get_logger(__name__)
    start_time = datetime.now(timezone.utc)
    trace_id = str(uuid.uuid4())

    logger.info("Operation started", operation=operation, trace_id=trace_id, **kwargs)

    try:
        yield attributes
    except Exception as e:
        duration = (datetime.now(timezone.utc) - start_time).total_seconds()
        logger.error(
            "Operation failed",
            operation=operation,
            trace_id=trace_id,
            duration_seconds=duration,
            status="error",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise

    duration = (datetime.now(timezone.utc) - start_time).total_seconds()
    logger.info(
        "Operation completed",
        operation=operation,
        trace_id=trace_id,
        duration_seconds=duration,
        status="success",
        **attributes,
    )
