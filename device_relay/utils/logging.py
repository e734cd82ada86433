"""Logging utilities for the Device Relay.

Structured logging via structlog with either JSON or log4j-style console output.
Every relayed message runs under its own correlation ID so that receive,
accept and forward lines for one message can be grouped.
"""

import json
import logging
import os
import sys
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog

# Context variable for correlation ID
correlation_id_context: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

_NOISY_LOGGERS = (
    "proton",
    "asyncio",
    "httpx",
    "httpcore",
    "uvicorn",
    "uvicorn.access",
    "uvicorn.error",
)


def _log4j_formatter(logger: Any, name: str, event_dict: Dict[str, Any]) -> str:
    """Format logs in log4j style: timestamp [level]: message {json_context}"""
    timestamp = event_dict.pop("timestamp", "")
    level = event_dict.pop("level", "info")
    event = event_dict.pop("event", "")
    event_dict.pop("logger", None)

    if event_dict:
        context_json = json.dumps(event_dict, sort_keys=True, separators=(",", ":"), default=str)
        return f"{timestamp} [{level}]: {event} {context_json}"
    return f"{timestamp} [{level}]: {event}"


def _add_system_context(logger: Any, name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add process ID, hostname and the active correlation ID."""
    event_dict["pid"] = os.getpid()
    event_dict["hostname"] = os.uname().nodename

    correlation_id = correlation_id_context.get()
    if correlation_id and "correlation_id" not in event_dict:
        event_dict["correlation_id"] = correlation_id

    return event_dict


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """Set correlation ID for the current context.

    Args:
        correlation_id: The correlation ID to set. If None, generates a new UUID.

    Returns:
        The correlation ID that was set.
    """
    if correlation_id is None:
        correlation_id = str(uuid.uuid4())

    correlation_id_context.set(correlation_id)
    return correlation_id


def get_correlation_id() -> Optional[str]:
    """Get the current correlation ID."""
    return correlation_id_context.get()


def configure_logging(log_level: str = "INFO", json_output: bool = True, include_system_context: bool = True) -> None:
    """Configure structured logging.

    Args:
        log_level: The minimum log level to output (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: If True, output pure JSON format. If False, use log4j-style format.
        include_system_context: If True, include system context like PID, hostname.
    """
    logging.getLogger().handlers.clear()

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
        force=True,
    )

    for noisy in _NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if include_system_context:
        processors.append(_add_system_context)

    processors.append(structlog.processors.UnicodeDecoder())

    if json_output:
        processors.append(structlog.processors.JSONRenderer(sort_keys=True, default=str))
    else:
        processors.append(_log4j_formatter)

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str, **initial_context: Any) -> structlog.stdlib.BoundLogger:
    """Get a configured logger with optional initial context."""
    logger = structlog.get_logger(name)
    if initial_context:
        logger = logger.bind(**initial_context)
    return logger


def create_contextual_logger(
    name: str,
    correlation_id: Optional[str] = None,
    **context: Any
) -> structlog.stdlib.BoundLogger:
    """Create a logger with correlation ID and additional context.

    Args:
        name: The logger name (typically __name__ or module path)
        correlation_id: Optional correlation ID. If not provided, uses current context ID.
        **context: Additional context fields to bind to the logger

    Returns:
        A bound logger with correlation ID and context
    """
    logger = get_logger(name)

    bind_context: Dict[str, Any] = {}

    if correlation_id:
        bind_context["correlation_id"] = correlation_id
    elif get_correlation_id():
        bind_context["correlation_id"] = get_correlation_id()

    if context:
        bind_context.update(context)

    if bind_context:
        logger = logger.bind(**bind_context)

    return logger


def log_exception(
    logger: structlog.stdlib.BoundLogger,
    exception: BaseException,
    message: str = "An error occurred",
    **additional_context: Any
) -> None:
    """Log an exception with full context and stack trace."""
    context = {
        "exception_type": type(exception).__name__,
        "exception_message": str(exception),
        **additional_context
    }

    logger.error(message, exc_info=exception, **context)
