"""Dispatcher: submit a job graph to an execution backend in dependency order.

Execution proceeds in waves. Every job whose dependencies have all settled
successfully is submitted without waiting for the others; the dispatcher
then waits for the whole wave to settle before computing the next one.

- Dependents of a failed or skipped job are skipped ("upstream failure")
  and never submitted. Independent siblings keep running.
- Each submission carries a timeout; an expired job fails with "timeout".
- Cancellation is cooperative: checked before each submission, already
  submitted jobs are left to finish.
- Only errors the retry policy marks transient (BackendError by default)
  are retried; any other backend exception fails that job alone.
"""

import logging
import threading
import time
import uuid
from concurrent.futures import CancelledError, Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from cigate.backends.base import ExecutionBackend
from cigate.data_models import (
    REASON_CANCELLED,
    REASON_FAIL_FAST,
    REASON_TIMEOUT,
    REASON_UPSTREAM_FAILURE,
    JobResult,
    JobStatus,
)
from cigate.errors import CycleError
from cigate.events import EventEmitter
from cigate.pipeline.graph import JobGraph, PlannedJob
from cigate.utils.retry import DEFAULT_BACKEND_RETRY_CONFIG, RetryConfig

logger = logging.getLogger(__name__)


class Dispatcher:
    """Execute a JobGraph against an ExecutionBackend."""

    def __init__(
        self,
        backend: ExecutionBackend,
        default_timeout: float = 3600.0,
        retry_config: Optional[RetryConfig] = None,
        fail_fast: bool = False,
        emitter: Optional[EventEmitter] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize dispatcher.

        Args:
            backend: Where jobs run
            default_timeout: Seconds per job unless the job overrides it
            retry_config: Backoff policy and which backend errors are transient
            fail_fast: Stop submitting new jobs after the first failure
            emitter: Event emitter (a fresh run id is used if omitted)
            sleep: Sleep function (injectable for tests)
            clock: Monotonic clock (injectable for tests)
        """
        self.backend = backend
        self.default_timeout = default_timeout
        self.retry_config = retry_config or DEFAULT_BACKEND_RETRY_CONFIG
        self.fail_fast = fail_fast
        self.emitter = emitter
        self._sleep = sleep
        self._clock = clock

    def dispatch(
        self,
        graph: JobGraph,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Iterator[JobResult]:
        """
        Dispatch a graph, yielding results as jobs settle.

        The returned iterator is lazy and one-shot: jobs are submitted as it
        is consumed.

        Args:
            graph: Graph to execute
            timeout: Per-job timeout in seconds (defaults to default_timeout)
            cancel_event: Set to stop submitting further jobs

        Yields:
            JobResult for every job in the graph
        """
        run_timeout = timeout if timeout is not None else self.default_timeout
        cancel_event = cancel_event or threading.Event()
        emitter = self.emitter or EventEmitter(str(uuid.uuid4()))

        settled: Dict[str, JobStatus] = {}
        attempts: Dict[str, int] = {}
        pending: List[PlannedJob] = list(graph.jobs)

        while pending:
            if cancel_event.is_set():
                logger.warning(f"Run cancelled with {len(pending)} job(s) not submitted")
                emitter.cancelled([job.id for job in pending])
                for job in pending:
                    yield self._skip(job, REASON_CANCELLED, settled, emitter)
                return

            wave: List[PlannedJob] = []
            waiting: List[PlannedJob] = []
            for job in pending:
                dep_statuses = [settled.get(dep) for dep in job.depends_on]
                if any(status is None for status in dep_statuses):
                    waiting.append(job)
                elif all(status == JobStatus.SUCCEEDED for status in dep_statuses):
                    wave.append(job)
                else:
                    yield self._skip(job, REASON_UPSTREAM_FAILURE, settled, emitter)
            pending = waiting

            if not wave:
                if pending:
                    raise CycleError(graph.template, [job.id for job in pending])
                break

            logger.info(f"Submitting wave of {len(wave)} job(s): {[job.id for job in wave]}")
            in_flight: List[Tuple[PlannedJob, Future, float, float]] = []
            for job in wave:
                if cancel_event.is_set():
                    yield self._skip(job, REASON_CANCELLED, settled, emitter)
                    continue
                if self.fail_fast and JobStatus.FAILED in settled.values():
                    yield self._skip(job, REASON_FAIL_FAST, settled, emitter)
                    continue

                job_timeout = job.timeout_seconds or run_timeout
                future, failure = self._submit(job, job_timeout, attempts, emitter)
                if failure is not None:
                    yield self._settle(failure, settled, emitter)
                else:
                    in_flight.append((job, future, self._clock() + job_timeout, job_timeout))

            for job, future, deadline, job_timeout in in_flight:
                result = self._await(job, future, deadline, job_timeout, attempts, emitter)
                yield self._settle(result, settled, emitter)

    def _skip(self, job: PlannedJob, reason: str, settled: Dict[str, JobStatus], emitter: EventEmitter) -> JobResult:
        settled[job.id] = JobStatus.SKIPPED
        logger.info(f"Skipping job '{job.id}': {reason}")
        emitter.job_skipped(job.id, reason)
        return JobResult.skipped(job.id, reason)

    def _settle(self, result: JobResult, settled: Dict[str, JobStatus], emitter: EventEmitter) -> JobResult:
        settled[result.job_id] = result.status
        if result.status == JobStatus.SUCCEEDED:
            logger.info(f"Job '{result.job_id}' succeeded")
            emitter.job_completed(result.job_id, result.metrics)
        elif result.status == JobStatus.FAILED:
            logger.warning(f"Job '{result.job_id}' failed: {result.reason}")
            emitter.job_failed(result.job_id, result.reason or "")
        else:
            emitter.job_skipped(result.job_id, result.reason or "")
        return result

    def _submit(
        self,
        job: PlannedJob,
        timeout: float,
        attempts: Dict[str, int],
        emitter: EventEmitter,
    ) -> Tuple[Optional[Future], Optional[JobResult]]:
        """Submit with backoff on retryable errors. Returns (future, None) or (None, failure)."""
        while True:
            attempts[job.id] = attempts.get(job.id, 0) + 1
            try:
                future = self.backend.submit(job, timeout)
            except Exception as e:
                if not self.retry_config.is_retryable(e):
                    logger.exception(f"Backend raised while submitting job '{job.id}'")
                    return None, JobResult.failed(job.id, f"backend raised {type(e).__name__}: {e}")
                failure = self._backoff(job, e, attempts[job.id], emitter)
                if failure is not None:
                    return None, failure
                continue
            emitter.job_submitted(job.id, attempts[job.id])
            return future, None

    def _await(
        self,
        job: PlannedJob,
        future: Future,
        deadline: float,
        timeout: float,
        attempts: Dict[str, int],
        emitter: EventEmitter,
    ) -> JobResult:
        while True:
            remaining = max(0.0, deadline - self._clock())
            try:
                return future.result(timeout=remaining)
            except FutureTimeoutError:
                logger.warning(f"Job '{job.id}' exceeded its deadline")
                self.backend.cancel(job, future)
                return JobResult.failed(job.id, REASON_TIMEOUT)
            except CancelledError:
                return JobResult.failed(job.id, "cancelled by backend")
            except Exception as e:
                if not self.retry_config.is_retryable(e):
                    # A broken backend fails this job only; siblings keep running
                    logger.exception(f"Backend raised while running job '{job.id}'")
                    return JobResult.failed(job.id, f"backend raised {type(e).__name__}: {e}")
                # The abandoned attempt may still be running remotely
                self.backend.cancel(job, future)
                failure = self._backoff(job, e, attempts[job.id], emitter)
                if failure is not None:
                    return failure
                future, failure = self._submit(job, timeout, attempts, emitter)
                if failure is not None:
                    return failure
                deadline = self._clock() + timeout

    def _backoff(self, job: PlannedJob, error: Exception, attempt: int, emitter: EventEmitter) -> Optional[JobResult]:
        """Sleep before the next attempt, or return the final failure when retries are exhausted."""
        message = getattr(error, "message", None) or str(error)
        retries_done = attempt - 1
        if retries_done >= self.retry_config.max_retries:
            logger.error(f"Backend error for job '{job.id}' after {attempt} attempt(s): {message}")
            return JobResult.failed(job.id, f"backend error: {message}")

        delay = self.retry_config.calculate_delay(retries_done, getattr(error, "retry_after", None))
        logger.warning(
            f"Backend error for job '{job.id}' (attempt {attempt}/{self.retry_config.max_retries + 1}): "
            f"{message}. Retrying in {delay:.2f}s..."
        )
        emitter.job_retried(job.id, attempt, message, delay)
        self._sleep(delay)
        return None
