"""Utility modules for the Device Relay."""

from .logging import (
    configure_logging,
    create_contextual_logger,
    get_logger,
    log_exception,
    set_correlation_id,
    get_correlation_id,
)
from .retry import BackoffPolicy
from .relay_state import RelayStateTracker

__all__ = [
    "configure_logging",
    "create_contextual_logger",
    "get_logger",
    "log_exception",
    "set_correlation_id",
    "get_correlation_id",
    "BackoffPolicy",
    "RelayStateTracker",
]
