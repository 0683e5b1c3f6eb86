"""Utility modules for cigate.

- retry: Retry logic with exponential backoff for backend calls
"""

from cigate.utils.retry import (
    DEFAULT_BACKEND_RETRY_CONFIG,
    RetryConfig,
    retry_sync,
)

__all__ = [
    "DEFAULT_BACKEND_RETRY_CONFIG",
    "RetryConfig",
    "retry_sync",
]
