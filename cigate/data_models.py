"""Data models for cigate runs."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from cigate.errors import EXIT_FAILURE, EXIT_PASS


class JobStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class Outcome(str, Enum):
    PASS = "pass"
    FAIL = "fail"


# Reasons attached to failed/skipped results
REASON_TIMEOUT = "timeout"
REASON_UPSTREAM_FAILURE = "upstream failure"
REASON_CONDITION_FALSE = "condition false"
REASON_CANCELLED = "cancelled"
REASON_FAIL_FAST = "fail-fast"


@dataclass(frozen=True)
class JobResult:
    """Outcome of one job as reported by the execution backend."""
    job_id: str
    status: JobStatus
    metrics: Dict[str, float] = field(default_factory=dict)
    logs_ref: Optional[str] = None
    reason: Optional[str] = None

    @classmethod
    def skipped(cls, job_id: str, reason: str) -> "JobResult":
        return cls(job_id=job_id, status=JobStatus.SKIPPED, reason=reason)

    @classmethod
    def failed(cls, job_id: str, reason: str, logs_ref: Optional[str] = None) -> "JobResult":
        return cls(job_id=job_id, status=JobStatus.FAILED, reason=reason, logs_ref=logs_ref)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "job_id": self.job_id,
            "status": self.status.value,
            "metrics": dict(self.metrics),
            "logs_ref": self.logs_ref,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JobResult":
        """Create from dictionary (backend payloads)."""
        return cls(
            job_id=data["job_id"],
            status=JobStatus(data.get("status", "failed")),
            metrics={k: float(v) for k, v in (data.get("metrics") or {}).items()},
            logs_ref=data.get("logs_ref"),
            reason=data.get("reason"),
        )


@dataclass(frozen=True)
class GateOutcome:
    """Evaluation of a single gate against a job's reported metrics."""
    job_id: str
    metric: str
    comparator: str
    expected: float
    actual: Optional[float]
    passed: bool
    missing_metric: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "metric": self.metric,
            "comparator": self.comparator,
            "expected": self.expected,
            "actual": self.actual,
            "passed": self.passed,
            "missing_metric": self.missing_metric,
        }


@dataclass
class Verdict:
    """Aggregate pass/fail outcome of one run."""
    template: str
    overall: Outcome
    results: List[JobResult] = field(default_factory=list)
    gates: List[GateOutcome] = field(default_factory=list)
    failures: List[str] = field(default_factory=list)
    contract_violations: List[str] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return self.overall == Outcome.PASS

    @property
    def exit_code(self) -> int:
        return EXIT_PASS if self.passed else EXIT_FAILURE

    def result_for(self, job_id: str) -> Optional[JobResult]:
        return next((r for r in self.results if r.job_id == job_id), None)
