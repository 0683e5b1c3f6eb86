"""Backoff policy for execution backend calls.

Only ``BackendError`` is retried by default: job failures are outcomes, not
transient faults. A backend may attach ``retry_after`` (seconds) to the error,
which replaces the computed delay for that attempt.
"""

import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple, Type

from cigate.errors import BackendError

logger = logging.getLogger(__name__)

MIN_DELAY = 0.1
JITTER_FRACTION = 0.25


@dataclass(frozen=True)
class RetryConfig:
    """How many times to retry a backend call and how long to wait between tries.

    Attributes:
        max_retries: Retries after the first attempt (0 disables retrying)
        base_delay: Delay before the first retry, in seconds
        max_delay: Upper bound for any single delay, hints included
        multiplier: Growth factor between consecutive delays
        jitter: Spread each delay by +/- 25% so parallel jobs don't retry in step
        retry_on: Exception types treated as transient
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    multiplier: float = 2.0
    jitter: bool = True
    retry_on: Tuple[Type[BaseException], ...] = (BackendError,)

    @classmethod
    def from_settings(cls, settings) -> "RetryConfig":
        """Build from a settings object exposing BACKEND_RETRIES and RETRY_BASE_DELAY."""
        return cls(max_retries=settings.BACKEND_RETRIES, base_delay=settings.RETRY_BASE_DELAY)

    def calculate_delay(self, attempt: int, retry_after: Optional[float] = None) -> float:
        """Seconds to wait before retry number ``attempt`` (0-indexed)."""
        if retry_after is not None:
            delay = min(retry_after, self.max_delay)
        else:
            delay = min(self.base_delay * self.multiplier ** attempt, self.max_delay)

        if not self.jitter:
            return delay
        spread = delay * JITTER_FRACTION
        return max(MIN_DELAY, delay + random.uniform(-spread, spread))

    def is_retryable(self, error: BaseException) -> bool:
        return isinstance(error, self.retry_on)


DEFAULT_BACKEND_RETRY_CONFIG = RetryConfig()


def retry_sync(
    func: Callable[..., Any],
    *args,
    config: Optional[RetryConfig] = None,
    sleep: Callable[[float], None] = time.sleep,
    description: str = "backend call",
    **kwargs
) -> Any:
    """
    Call ``func`` until it succeeds, a non-retryable error escapes, or retries run out.

    Args:
        func: Callable to invoke with ``*args`` / ``**kwargs``
        config: Backoff policy (DEFAULT_BACKEND_RETRY_CONFIG if None)
        sleep: Sleep function, injectable for tests
        description: What is being retried, for log messages

    Returns:
        Whatever ``func`` returns

    Raises:
        The last retryable error once retries are exhausted, or any
        non-retryable error immediately
    """
    config = config or DEFAULT_BACKEND_RETRY_CONFIG
    attempt = 0
    while True:
        try:
            return func(*args, **kwargs)
        except Exception as e:
            if not config.is_retryable(e):
                raise
            if attempt >= config.max_retries:
                logger.error(f"{description} failed after {attempt + 1} attempt(s): {e}")
                raise

            delay = config.calculate_delay(attempt, getattr(e, "retry_after", None))
            attempt += 1
            logger.warning(f"{description} failed ({e}); retry {attempt}/{config.max_retries} in {delay:.2f}s")
            sleep(delay)
