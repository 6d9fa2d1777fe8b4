"""Utility modules for apiflow."""

from .logging_factory import LoggingFactory, get_logger
from .retry import (
    RETRIABLE_STATUS_CODES,
    RetryConfig,
    RetryExhaustedError,
    calculate_delay,
    is_retriable_exception,
    retry_sync,
)

__all__ = [
    "RETRIABLE_STATUS_CODES",
    "LoggingFactory",
    "RetryConfig",
    "RetryExhaustedError",
    "calculate_delay",
    "get_logger",
    "is_retriable_exception",
    "retry_sync",
]
