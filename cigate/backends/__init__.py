"""Execution backends: where planned jobs actually run."""

from typing import Optional

from cigate.backends.base import ExecutionBackend
from cigate.backends.http import HttpBackend
from cigate.backends.local import LocalBackend, parse_metrics


def create_backend(kind: str, url: Optional[str] = None, log_dir: Optional[str] = None) -> ExecutionBackend:
    """
    Create a backend by name.

    Args:
        kind: 'local' or 'http'
        url: Base URL (required for 'http')
        log_dir: Log directory for the local backend
    """
    if kind == "local":
        return LocalBackend(log_dir=log_dir)
    if kind == "http":
        if not url:
            raise ValueError("The http backend requires a base URL")
        return HttpBackend(url)
    raise ValueError(f"Unknown backend: {kind!r} (expected 'local' or 'http')")


__all__ = [
    "ExecutionBackend",
    "HttpBackend",
    "LocalBackend",
    "create_backend",
    "parse_metrics",
]
