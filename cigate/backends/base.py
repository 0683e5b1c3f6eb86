"""Base class for execution backends.

A backend runs a planned job's command somewhere (subprocess, container,
remote runner) and reports a JobResult. The dispatcher only needs
submit / await / cancel and never looks inside.
"""
from abc import ABC, abstractmethod
from concurrent.futures import Future

from cigate.pipeline.graph import PlannedJob


class ExecutionBackend(ABC):
    """Submit jobs and hand back futures of JobResult."""

    name = "base"

    @abstractmethod
    def submit(self, job: PlannedJob, timeout: float) -> Future:
        """
        Submit a job for execution.

        Args:
            job: Fully planned job (no unresolved placeholders)
            timeout: Seconds the job may run

        Returns:
            Future resolving to a JobResult. The future raises BackendError if
            the backend itself fails.

        Raises:
            BackendError: If the job could not be submitted
        """
        pass

    def cancel(self, job: PlannedJob, future: Future) -> None:
        """Best-effort cancellation of a submitted job."""
        future.cancel()

    def close(self) -> None:
        """Release backend resources."""
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
