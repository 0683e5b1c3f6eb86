#!/usr/bin/env python3
"""Test wavefront dispatch against an in-memory backend."""

import threading

import pytest

from cigate.data_models import JobResult, JobStatus
from cigate.errors import BackendError
from cigate.events import EventEmitter, EventType
from cigate.pipeline.dispatcher import Dispatcher
from cigate.pipeline.graph import JobGraphBuilder
from cigate.pipeline.loader import TemplateCatalog
from cigate.pipeline.resolver import InputResolver
from cigate.utils.retry import RetryConfig


def _graph(template, raw=None):
    return JobGraphBuilder().build(template, InputResolver().resolve(template, raw or {}))


def _statuses(results):
    return {r.job_id: (r.status, r.reason) for r in results}


@pytest.fixture
def fan_template():
    # a and b are independent; c needs b
    return TemplateCatalog.from_dict({"fan": {"jobs": [
        {"id": "a", "command": "x"},
        {"id": "b", "command": "x"},
        {"id": "c", "command": "x", "depends_on": ["b"]},
    ]}}).get("fan")


def _no_sleep_retry(max_retries=3):
    return RetryConfig(max_retries=max_retries, base_delay=0.01, jitter=False)


def test_all_jobs_succeed(ci_template, make_backend, event_bus):
    backend = make_backend()
    dispatcher = Dispatcher(backend, emitter=EventEmitter("run-1", event_bus))
    results = list(dispatcher.dispatch(_graph(ci_template, {"run-coverage": True})))

    assert [r.job_id for r in results] == ["lint", "docs", "test", "coverage"]
    assert all(r.status == JobStatus.SUCCEEDED for r in results)
    assert backend.submitted == ["lint", "docs", "test", "coverage"]

    submitted = event_bus.get_history(run_id="run-1", event_type=EventType.JOB_SUBMITTED)
    assert len(submitted) == 4


def test_dispatch_is_lazy(ci_template, make_backend):
    backend = make_backend()
    results = Dispatcher(backend).dispatch(_graph(ci_template))
    assert backend.submitted == []
    next(results)
    assert backend.submitted == ["lint", "docs"]


def test_failure_skips_dependents_but_not_siblings(ci_template, make_backend):
    backend = make_backend(outcomes={"lint": JobResult.failed("lint", "exit code 1")})
    results = list(Dispatcher(backend).dispatch(_graph(ci_template, {"run-coverage": True})))

    assert _statuses(results) == {
        "lint": (JobStatus.FAILED, "exit code 1"),
        "docs": (JobStatus.SUCCEEDED, None),
        "test": (JobStatus.SKIPPED, "upstream failure"),
        "coverage": (JobStatus.SKIPPED, "upstream failure"),
    }
    assert backend.submitted == ["lint", "docs"]


def test_timeout_fails_job_and_cancels_it(ci_template, make_backend):
    backend = make_backend(outcomes={"lint": make_backend.HANG})
    results = list(Dispatcher(backend).dispatch(_graph(ci_template), timeout=0.05))

    assert _statuses(results)["lint"] == (JobStatus.FAILED, "timeout")
    assert _statuses(results)["test"] == (JobStatus.SKIPPED, "upstream failure")
    assert _statuses(results)["docs"] == (JobStatus.SUCCEEDED, None)
    assert backend.cancelled == ["lint"]
    assert backend.timeouts["lint"] == 0.05


def test_job_timeout_override(make_backend):
    template = TemplateCatalog.from_dict({"t": {"jobs": [
        {"id": "slow", "command": "x", "timeout_seconds": 5},
        {"id": "fast", "command": "x"},
    ]}}).get("t")
    backend = make_backend()
    list(Dispatcher(backend, default_timeout=60).dispatch(_graph(template)))
    assert backend.timeouts == {"slow": 5, "fast": 60}


def test_cancel_before_start(ci_template, make_backend):
    backend = make_backend()
    cancel = threading.Event()
    cancel.set()
    results = list(Dispatcher(backend).dispatch(_graph(ci_template), cancel_event=cancel))

    assert backend.submitted == []
    assert all(r.status == JobStatus.SKIPPED and r.reason == "cancelled" for r in results)
    assert len(results) == 3


def test_cancel_mid_run_leaves_submitted_jobs_running(ci_template, make_backend):
    cancel = threading.Event()
    backend = make_backend(on_submit=lambda job: cancel.set())
    results = list(Dispatcher(backend).dispatch(_graph(ci_template), cancel_event=cancel))

    assert backend.submitted == ["lint"]
    assert _statuses(results) == {
        "lint": (JobStatus.SUCCEEDED, None),
        "docs": (JobStatus.SKIPPED, "cancelled"),
        "test": (JobStatus.SKIPPED, "cancelled"),
    }


def test_fail_fast_stops_new_submissions(fan_template, make_backend):
    outcomes = {"a": JobResult.failed("a", "exit code 2")}

    backend = make_backend(outcomes=outcomes)
    results = list(Dispatcher(backend, fail_fast=True).dispatch(_graph(fan_template)))
    assert _statuses(results)["c"] == (JobStatus.SKIPPED, "fail-fast")
    assert backend.submitted == ["a", "b"]

    backend = make_backend(outcomes=outcomes)
    results = list(Dispatcher(backend).dispatch(_graph(fan_template)))
    assert _statuses(results)["c"] == (JobStatus.SUCCEEDED, None)


def test_submit_backend_error_retried(ci_template, make_backend, event_bus):
    sleeps = []
    backend = make_backend(submit_errors={"lint": 2})
    dispatcher = Dispatcher(
        backend,
        retry_config=_no_sleep_retry(),
        sleep=sleeps.append,
        emitter=EventEmitter("run-2", event_bus),
    )
    results = list(dispatcher.dispatch(_graph(ci_template)))

    assert _statuses(results)["lint"] == (JobStatus.SUCCEEDED, None)
    assert sleeps == [0.01, 0.02]
    assert len(event_bus.get_history(run_id="run-2", event_type=EventType.JOB_RETRIED)) == 2


def test_submit_backend_error_exhausted(ci_template, make_backend):
    sleeps = []
    backend = make_backend(submit_errors={"lint": 10})
    dispatcher = Dispatcher(backend, retry_config=_no_sleep_retry(max_retries=2), sleep=sleeps.append)
    results = list(dispatcher.dispatch(_graph(ci_template)))

    assert _statuses(results)["lint"] == (JobStatus.FAILED, "backend error: backend unavailable")
    assert _statuses(results)["test"] == (JobStatus.SKIPPED, "upstream failure")
    assert len(sleeps) == 2


def test_backend_error_while_awaiting_resubmits(fan_template, make_backend):
    backend = make_backend(outcomes={"a": BackendError("runner lost", job_id="a")})
    dispatcher = Dispatcher(backend, retry_config=_no_sleep_retry(max_retries=1), sleep=lambda s: None)
    results = list(dispatcher.dispatch(_graph(fan_template)))

    assert _statuses(results)["a"] == (JobStatus.FAILED, "backend error: runner lost")
    assert backend.submitted.count("a") == 2
    assert backend.cancelled == ["a", "a"]


def test_unexpected_backend_exception_fails_only_that_job(fan_template, make_backend):
    backend = make_backend(outcomes={"b": RuntimeError("boom")})
    results = list(Dispatcher(backend).dispatch(_graph(fan_template)))

    assert _statuses(results) == {
        "a": (JobStatus.SUCCEEDED, None),
        "b": (JobStatus.FAILED, "backend raised RuntimeError: boom"),
        "c": (JobStatus.SKIPPED, "upstream failure"),
    }


def test_unexpected_submit_exception_fails_only_that_job(fan_template, make_backend):
    backend = make_backend(submit_errors={"b": ValueError("malformed payload")})
    results = list(Dispatcher(backend, retry_config=_no_sleep_retry()).dispatch(_graph(fan_template)))

    assert _statuses(results) == {
        "a": (JobStatus.SUCCEEDED, None),
        "b": (JobStatus.FAILED, "backend raised ValueError: malformed payload"),
        "c": (JobStatus.SKIPPED, "upstream failure"),
    }
    assert backend.submitted == ["a"]


def test_retry_policy_decides_which_errors_are_transient(fan_template, make_backend):
    backend = make_backend(outcomes={"a": ConnectionError("reset")})
    results = list(Dispatcher(backend, retry_config=_no_sleep_retry()).dispatch(_graph(fan_template)))
    assert _statuses(results)["a"] == (JobStatus.FAILED, "backend raised ConnectionError: reset")
    assert backend.submitted.count("a") == 1

    backend = make_backend(outcomes={"a": ConnectionError("reset")})
    retry_config = RetryConfig(max_retries=2, base_delay=0.01, jitter=False, retry_on=(BackendError, ConnectionError))
    results = list(Dispatcher(backend, retry_config=retry_config, sleep=lambda s: None).dispatch(_graph(fan_template)))
    assert _statuses(results)["a"] == (JobStatus.FAILED, "backend error: reset")
    assert backend.submitted.count("a") == 3


if __name__ == "__main__":
    print("Run with: pytest test_dispatcher.py -v")
