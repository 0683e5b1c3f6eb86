"""HTTP backend for a remote CI execution API.

Protocol:
    POST   {base_url}/jobs         {"job_id", "command", "secret_refs", "timeout_seconds"} -> {"id"}
    GET    {base_url}/jobs/{id}    -> {"status", "metrics", "logs_ref", "reason"}
    DELETE {base_url}/jobs/{id}    best-effort cancel

Status values "queued" and "running" are non-terminal.
"""
import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Dict, Optional

import requests

from cigate.backends.base import ExecutionBackend
from cigate.data_models import REASON_TIMEOUT, JobResult
from cigate.errors import BackendError
from cigate.pipeline.graph import PlannedJob
from cigate.utils.retry import RetryConfig, retry_sync

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = {"succeeded", "failed", "skipped"}
RETRYABLE_STATUS_CODES = (429, 500, 502, 503, 504)


def _retry_after(response: requests.Response) -> Optional[float]:
    header = response.headers.get("retry-after")
    if header:
        try:
            return float(header)
        except ValueError:
            return None
    return None


class HttpBackend(ExecutionBackend):
    """Dispatch jobs to a remote execution API."""

    name = "http"

    def __init__(
        self,
        base_url: str,
        session: Optional[requests.Session] = None,
        poll_interval: float = 2.0,
        request_timeout: float = 30.0,
        max_workers: Optional[int] = None,
        poll_retry_config: Optional[RetryConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize HTTP backend.

        Args:
            base_url: Base URL of the execution API
            session: Optional requests session (auth headers, adapters)
            poll_interval: Seconds between status polls
            request_timeout: Per-request timeout in seconds
            max_workers: Threads used to await remote jobs
            poll_retry_config: Backoff for transient errors while polling
            sleep: Sleep function (injectable for tests)
        """
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.poll_interval = poll_interval
        self.request_timeout = request_timeout
        self.poll_retry_config = poll_retry_config or RetryConfig(max_retries=3, base_delay=1.0)
        self._sleep = sleep
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="cigate-http")

    def _request(self, method: str, path: str, job_id: str, **kwargs) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, timeout=self.request_timeout, **kwargs)
        except requests.RequestException as e:
            raise BackendError(f"{method} {url} failed: {e}", job_id=job_id)

        if response.status_code in RETRYABLE_STATUS_CODES:
            raise BackendError(
                f"{method} {url} returned {response.status_code}",
                job_id=job_id,
                retry_after=_retry_after(response),
            )
        return response

    def submit(self, job: PlannedJob, timeout: float) -> Future:
        payload = {
            "job_id": job.id,
            "command": job.command,
            "secret_refs": list(job.secret_refs),
            "timeout_seconds": timeout,
        }
        response = self._request("POST", "/jobs", job.id, json=payload)
        if response.status_code >= 400:
            # Rejections are about the job, not the backend; report them as a failed job
            future: Future = Future()
            future.set_result(JobResult.failed(job.id, f"backend rejected job: HTTP {response.status_code}"))
            return future

        try:
            remote_id = str(response.json()["id"])
        except (ValueError, KeyError, TypeError) as e:
            raise BackendError(
                f"POST /jobs for '{job.id}' returned HTTP {response.status_code} without a job id: {e!r}",
                job_id=job.id,
            )
        logger.info(f"Submitted job '{job.id}' as remote job {remote_id}")

        future = self._executor.submit(self._await, job, remote_id, timeout)
        # cancel() reads the remote id from the future, never from backend state
        future.remote_id = remote_id
        return future

    def _await(self, job: PlannedJob, remote_id: str, timeout: float) -> JobResult:
        deadline = time.monotonic() + timeout
        while True:
            # A transient poll failure must not lose a job that is still running remotely
            response = retry_sync(
                self._request, "GET", f"/jobs/{remote_id}", job.id,
                config=self.poll_retry_config, sleep=self._sleep,
                description=f"poll of job '{job.id}'",
            )
            if response.status_code >= 400:
                return JobResult.failed(job.id, f"backend lost job: HTTP {response.status_code}")

            data: Dict[str, Any] = response.json()
            if data.get("status") in TERMINAL_STATUSES:
                return JobResult.from_dict({**data, "job_id": job.id})

            if time.monotonic() >= deadline:
                return JobResult.failed(job.id, REASON_TIMEOUT)
            self._sleep(self.poll_interval)

    def cancel(self, job: PlannedJob, future: Future) -> None:
        future.cancel()
        remote_id = getattr(future, "remote_id", None)
        if remote_id is None:
            return
        try:
            self._request("DELETE", f"/jobs/{remote_id}", job.id)
        except BackendError as e:
            logger.warning(f"Could not cancel remote job {remote_id} ('{job.id}'): {e}")

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
        self.session.close()
