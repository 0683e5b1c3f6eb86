"""Shared fixtures: an in-memory execution backend and a small CI template."""

import copy
from concurrent.futures import Future
from pathlib import Path

import pytest

from cigate.backends.base import ExecutionBackend
from cigate.data_models import JobResult, JobStatus
from cigate.errors import BackendError
from cigate.events import EventBus
from cigate.pipeline.loader import TemplateLoader

SHIPPED_CATALOG = Path(__file__).parent / "config" / "templates.yaml"

CI_SOURCE = {
    "description": "Lint, test and optionally measure coverage",
    "inputs": [
        {"name": "run-coverage", "kind": "boolean", "default": False},
        {"name": "coverage-threshold", "kind": "number", "default": 80},
        {"name": "toolchain", "kind": "string", "default": "stable"},
    ],
    "jobs": [
        {"id": "lint", "command": "lint --toolchain ${{ inputs.toolchain }}"},
        {"id": "test", "command": "run-tests", "depends_on": ["lint"]},
        {
            "id": "coverage",
            "command": "measure-coverage",
            "depends_on": ["test"],
            "condition": "run-coverage == true",
            "gates": [
                {"metric": "coverage-percent", "comparator": ">=", "threshold_input": "coverage-threshold"},
            ],
        },
        {"id": "docs", "command": "build-docs"},
    ],
}


class FakeBackend(ExecutionBackend):
    """Backend that settles jobs immediately from a table of outcomes.

    Outcomes per job id:
    - dict: job succeeds with these metrics (default: {})
    - JobResult: returned as-is
    - Exception: raised from the future
    - FakeBackend.HANG: the future never completes

    submit_errors maps a job id to a number of BackendErrors to raise from
    submit() before accepting it, or to an exception raised on every submit.
    """

    name = "fake"
    HANG = object()

    def __init__(self, outcomes=None, submit_errors=None, on_submit=None):
        self.outcomes = dict(outcomes or {})
        self.submit_errors = dict(submit_errors or {})
        self.on_submit = on_submit
        self.submitted = []
        self.commands = {}
        self.timeouts = {}
        self.cancelled = []
        self.closed = False

    def submit(self, job, timeout):
        remaining = self.submit_errors.get(job.id, 0)
        if isinstance(remaining, Exception):
            raise remaining
        if remaining:
            self.submit_errors[job.id] = remaining - 1
            raise BackendError("backend unavailable", job_id=job.id)

        self.submitted.append(job.id)
        self.commands[job.id] = job.command
        self.timeouts[job.id] = timeout
        if self.on_submit is not None:
            self.on_submit(job)

        future = Future()
        outcome = self.outcomes.get(job.id, {})
        if outcome is FakeBackend.HANG:
            return future
        if isinstance(outcome, Exception):
            future.set_exception(outcome)
        elif isinstance(outcome, JobResult):
            future.set_result(outcome)
        else:
            future.set_result(JobResult(job_id=job.id, status=JobStatus.SUCCEEDED, metrics=dict(outcome)))
        return future

    def cancel(self, job, future):
        self.cancelled.append(job.id)
        future.cancel()

    def close(self):
        self.closed = True


@pytest.fixture
def make_backend():
    return FakeBackend


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def ci_source():
    return copy.deepcopy(CI_SOURCE)


@pytest.fixture
def ci_template(ci_source):
    return TemplateLoader().build_template("ci", ci_source)


@pytest.fixture
def shipped_catalog_path():
    return SHIPPED_CATALOG
