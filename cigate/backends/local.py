"""Local subprocess backend.

Runs each job's command through the shell in a worker thread. Jobs report
metrics by printing lines of the form::

    ::metric coverage-percent=83.5
"""
import logging
import os
import re
import subprocess
import tempfile
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Dict, Mapping, Optional

from cigate.backends.base import ExecutionBackend
from cigate.data_models import REASON_TIMEOUT, JobResult, JobStatus
from cigate.errors import BackendError
from cigate.pipeline.graph import PlannedJob

logger = logging.getLogger(__name__)

METRIC_LINE_RE = re.compile(r"^::metric\s+([A-Za-z0-9_.\-]+)=(\S+)\s*$", re.MULTILINE)


def parse_metrics(output: str) -> Dict[str, float]:
    """Extract ``::metric name=value`` lines from job output. Later lines win."""
    metrics: Dict[str, float] = {}
    for name, raw in METRIC_LINE_RE.findall(output):
        try:
            metrics[name] = float(raw)
        except ValueError:
            logger.warning(f"Ignoring non-numeric metric {name}={raw!r}")
    return metrics


class LocalBackend(ExecutionBackend):
    """Run jobs as local shell commands."""

    name = "local"

    def __init__(
        self,
        workdir: Optional[str] = None,
        log_dir: Optional[str] = None,
        secret_source: Optional[Mapping[str, str]] = None,
        max_workers: Optional[int] = None,
    ):
        """
        Initialize local backend.

        Args:
            workdir: Working directory for commands (defaults to cwd)
            log_dir: Where job logs are written (defaults to a temp dir)
            secret_source: Where referenced secret values are read from
                (defaults to this process's environment)
            max_workers: Thread pool size (concurrency is this backend's policy)
        """
        self.workdir = workdir
        self.log_dir = Path(log_dir) if log_dir else Path(tempfile.mkdtemp(prefix="cigate-logs-"))
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.secret_source = secret_source if secret_source is not None else os.environ
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="cigate-job")

    def submit(self, job: PlannedJob, timeout: float) -> Future:
        try:
            return self._executor.submit(self._run, job, timeout)
        except RuntimeError as e:
            raise BackendError(f"Local backend is shut down: {e}", job_id=job.id)

    def _build_env(self, job: PlannedJob) -> Optional[Dict[str, str]]:
        env = dict(os.environ)
        env["CIGATE_JOB_ID"] = job.id
        missing = []
        for name in job.secret_refs:
            value = self.secret_source.get(name)
            if value is None:
                missing.append(name)
            else:
                env[name] = value
        if missing:
            return None
        return env

    def _run(self, job: PlannedJob, timeout: float) -> JobResult:
        log_path = self.log_dir / f"{job.id}-{uuid.uuid4().hex[:8]}.log"
        env = self._build_env(job)
        if env is None:
            return JobResult.failed(job.id, "secret reference not available to local backend")

        logger.info(f"Running job '{job.id}' locally (timeout {timeout}s)")
        try:
            proc = subprocess.run(
                job.command,
                shell=True,
                cwd=self.workdir,
                env=env,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                encoding="utf-8",
                errors="replace",
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            output = e.stdout or ""
            if isinstance(output, bytes):
                output = output.decode("utf-8", errors="replace")
            log_path.write_text(output, encoding="utf-8")
            logger.warning(f"Job '{job.id}' timed out after {timeout}s")
            return JobResult.failed(job.id, REASON_TIMEOUT, logs_ref=str(log_path))
        except OSError as e:
            raise BackendError(f"Could not start job '{job.id}': {e}", job_id=job.id)

        log_path.write_text(proc.stdout or "", encoding="utf-8")
        metrics = parse_metrics(proc.stdout or "")

        if proc.returncode == 0:
            return JobResult(
                job_id=job.id,
                status=JobStatus.SUCCEEDED,
                metrics=metrics,
                logs_ref=str(log_path),
            )
        return JobResult(
            job_id=job.id,
            status=JobStatus.FAILED,
            metrics=metrics,
            logs_ref=str(log_path),
            reason=f"exit code {proc.returncode}",
        )

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
