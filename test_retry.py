#!/usr/bin/env python3
"""Test retry backoff for backend calls."""

import pytest

from cigate.errors import BackendError
from cigate.utils.retry import RetryConfig, retry_sync


def test_exponential_delays_without_jitter():
    config = RetryConfig(base_delay=1.0, jitter=False)
    assert [config.calculate_delay(attempt) for attempt in range(4)] == [1.0, 2.0, 4.0, 8.0]


def test_delay_capped_at_max():
    config = RetryConfig(base_delay=1.0, max_delay=5.0, jitter=False)
    assert config.calculate_delay(10) == 5.0


def test_retry_after_hint_honoured():
    config = RetryConfig(base_delay=1.0, max_delay=30.0, jitter=False)
    assert config.calculate_delay(0, retry_after=7.0) == 7.0
    assert config.calculate_delay(0, retry_after=120.0) == 30.0


def test_jitter_stays_within_bounds():
    config = RetryConfig(base_delay=4.0, jitter=True)
    for _ in range(50):
        assert 3.0 <= config.calculate_delay(0) <= 5.0


def test_only_backend_errors_retryable_by_default():
    config = RetryConfig()
    assert config.is_retryable(BackendError("down"))
    assert not config.is_retryable(ValueError("bad"))


def test_retry_sync_recovers():
    calls = []
    sleeps = []

    def flaky(value):
        calls.append(value)
        if len(calls) < 3:
            raise BackendError("unavailable")
        return value * 2

    config = RetryConfig(max_retries=3, base_delay=0.5, jitter=False)
    assert retry_sync(flaky, 21, config=config, sleep=sleeps.append) == 42
    assert len(calls) == 3
    assert sleeps == [0.5, 1.0]


def test_retry_sync_exhausted():
    def always_down():
        raise BackendError("unavailable")

    config = RetryConfig(max_retries=2, base_delay=0.1, jitter=False)
    sleeps = []
    with pytest.raises(BackendError):
        retry_sync(always_down, config=config, sleep=sleeps.append)
    assert len(sleeps) == 2


def test_retry_sync_does_not_retry_other_errors():
    sleeps = []

    def broken():
        raise ValueError("bug")

    with pytest.raises(ValueError):
        retry_sync(broken, config=RetryConfig(jitter=False), sleep=sleeps.append)
    assert sleeps == []


def test_retry_sync_honours_retry_after_hint():
    slept = []
    outcomes = iter([BackendError("busy", retry_after=3.0), BackendError("busy"), "done"])

    def call():
        outcome = next(outcomes)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    config = RetryConfig(max_retries=5, base_delay=1.0, jitter=False)
    result = retry_sync(call, config=config, sleep=slept.append)
    assert result == "done"
    assert slept == [3.0, 2.0]


def test_retry_sync_uses_configured_error_types():
    calls = []

    def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise ConnectionError("reset")
        return "ok"

    config = RetryConfig(max_retries=3, base_delay=0, jitter=False, retry_on=(BackendError, ConnectionError))
    assert retry_sync(flaky, config=config, sleep=lambda seconds: None) == "ok"
    assert len(calls) == 3

    calls.clear()
    with pytest.raises(ConnectionError):
        retry_sync(flaky, sleep=lambda seconds: None)
    assert len(calls) == 1


def test_from_settings():
    class Settings:
        BACKEND_RETRIES = 5
        RETRY_BASE_DELAY = 0.25

    config = RetryConfig.from_settings(Settings)
    assert (config.max_retries, config.base_delay) == (5, 0.25)


if __name__ == "__main__":
    print("Run with: pytest test_retry.py -v")
