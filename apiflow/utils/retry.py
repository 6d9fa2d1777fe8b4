"""Retry utilities with exponential backoff for remote operation calls."""
from __future__ import annotations

import functools
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

RETRIABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


@dataclass
class RetryConfig:
    """Configuration for retry behavior.

    Attributes:
        max_attempts: Maximum number of attempts (including the initial attempt)
        base_delay: Base delay in seconds before the first retry
        max_delay: Maximum delay in seconds between retries
        exponential_base: Base for exponential backoff calculation
        jitter: Whether to add random jitter to delays
        retriable_exceptions: Exception types that trigger a retry when the
            exception does not declare its own ``retriable`` flag
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0
    jitter: bool = True
    retriable_exceptions: Tuple[Type[Exception], ...] = field(
        default_factory=lambda: (ConnectionError, TimeoutError)
    )

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must be non-negative")
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")
        if self.exponential_base < 1:
            raise ValueError("exponential_base must be >= 1")
        if self.max_attempts > 10:
            raise ValueError("max_attempts should not exceed 10 for practical purposes")
        if self.max_delay > 300:
            raise ValueError("max_delay should not exceed 300 seconds for practical purposes")

    def calculate_backoff_delay(self, attempt: int) -> float:
        """Delay before ``attempt`` (0-based; attempt 0 never waits)."""
        return calculate_delay(
            attempt, self.base_delay, self.max_delay, self.exponential_base, self.jitter
        )


class RetryExhaustedError(Exception):
    """Raised when all retry attempts have been exhausted.

    Attributes:
        attempts: Number of attempts made
        last_exception: The final exception that caused the retry to fail
        total_delay: Total time spent in delays
    """

    def __init__(self, attempts: int, last_exception: Exception, total_delay: float) -> None:
        self.attempts = attempts
        self.last_exception = last_exception
        self.total_delay = total_delay
        super().__init__(
            f"Retry exhausted after {attempts} attempts over {total_delay:.2f}s. "
            f"Last error: {last_exception}"
        )


def calculate_delay(
    attempt: int, base_delay: float, max_delay: float, exponential_base: float, jitter: bool = True
) -> float:
    """Exponential backoff with ±25% jitter, capped at ``max_delay``.

    Args:
        attempt: Current attempt number (0-based)
        base_delay: Base delay in seconds
        max_delay: Maximum delay in seconds
        exponential_base: Base for exponential calculation
        jitter: Whether to add random jitter

    Returns:
        Delay in seconds, always between 0 and max_delay
    """
    if attempt == 0:
        return 0.0

    backoff = min(base_delay * (exponential_base ** (attempt - 1)), max_delay)

    if jitter:
        jitter_range = backoff * 0.25
        backoff += random.uniform(-jitter_range, jitter_range)

    return max(0, min(backoff, max_delay))


def is_retriable_exception(
    exception: Exception, retriable_exceptions: Tuple[Type[Exception], ...]
) -> bool:
    """Decide whether an exception should trigger a retry.

    An explicit ``retriable`` attribute on the exception wins; then an HTTP
    ``status_code`` (on the exception or its ``response``); then the type list.
    """
    flag = getattr(exception, "retriable", None)
    if isinstance(flag, bool):
        return flag

    status_code = getattr(exception, "status_code", None)
    if status_code is None and hasattr(exception, "response"):
        status_code = getattr(exception.response, "status_code", None)
    if isinstance(status_code, int):
        if status_code in RETRIABLE_STATUS_CODES:
            return True
        if 400 <= status_code < 500:
            return False

    return isinstance(exception, retriable_exceptions)


def retry_sync(
    config: Optional[RetryConfig] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Callable[[F], F]:
    """Decorator adding bounded retry with backoff to a synchronous callable.

    Non-retriable exceptions propagate immediately. When every attempt
    fails, RetryExhaustedError is raised with the last exception attached.

    Example:
        @retry_sync(RetryConfig(max_attempts=3, base_delay=1.0))
        def call_api():
            ...
    """
    retry_config = config or RetryConfig()

    def decorator(func: F) -> F:
        name = getattr(func, "__name__", repr(func))

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            last_exception: Optional[Exception] = None
            total_delay = 0.0

            for attempt in range(retry_config.max_attempts):
                if attempt > 0:
                    logger.info(f"Retry attempt {attempt + 1}/{retry_config.max_attempts} for {name}")
                try:
                    return func(*args, **kwargs)
                except Exception as e:
                    last_exception = e

                    if not is_retriable_exception(e, retry_config.retriable_exceptions):
                        logger.debug(f"Non-retriable exception in {name}: {e}")
                        raise

                    if attempt + 1 >= retry_config.max_attempts:
                        logger.error(f"All retry attempts exhausted for {name}: {e}")
                        break

                    delay = retry_config.calculate_backoff_delay(attempt + 1)
                    logger.warning(
                        f"Attempt {attempt + 1}/{retry_config.max_attempts} failed for {name}: {e}. "
                        f"Retrying in {delay:.2f}s..."
                    )
                    sleep(delay)
                    total_delay += delay

            raise RetryExhaustedError(
                retry_config.max_attempts, last_exception or Exception("Unknown error"), total_delay
            )

        return wrapper  # type: ignore

    return decorator
