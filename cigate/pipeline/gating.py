"""Gate evaluation: turn job results into a verdict.

Provides:
- GateEvaluator: Apply each planned job's gates to the metrics it reported
- Verdict assembly: per-job results in definition order plus failure lines
"""

import logging
from typing import Dict, Iterable, List, Optional

from cigate.data_models import (
    REASON_CANCELLED,
    GateOutcome,
    JobResult,
    JobStatus,
    Outcome,
    Verdict,
)
from cigate.errors import MissingMetric
from cigate.pipeline.graph import JobGraph, ResolvedGate, format_number

logger = logging.getLogger(__name__)


class GateEvaluator:
    """Evaluate gates and aggregate job results into a Verdict.

    Contributes to ``overall = fail``:
    - any job with status failed
    - any gate comparison that does not hold
    - a job that succeeded without reporting a gated metric (contract violation)
    - jobs left unrun because the run was cancelled
    """

    def evaluate(self, results: Iterable[JobResult], graph: JobGraph) -> Verdict:
        """
        Evaluate results against the graph's gates.

        Args:
            results: Results produced by the dispatcher
            graph: Graph the results belong to

        Returns:
            Verdict
        """
        by_id: Dict[str, JobResult] = {result.job_id: result for result in results}

        # Jobs excluded at build time never reach the dispatcher
        for excluded in graph.excluded:
            by_id.setdefault(excluded.id, JobResult.skipped(excluded.id, excluded.reason))

        ordered: List[JobResult] = []
        gate_outcomes: List[GateOutcome] = []
        failures: List[str] = []
        violations: List[str] = []

        for job_id in graph.definition_order:
            result = by_id.get(job_id)
            if result is None:
                continue
            ordered.append(result)

            if result.status == JobStatus.FAILED:
                failures.append(f"job '{job_id}' failed: {result.reason or 'no reason reported'}")
                continue

            if result.status == JobStatus.SKIPPED:
                if result.reason == REASON_CANCELLED:
                    failures.append(f"job '{job_id}' was not run: run cancelled")
                continue

            planned = graph.get(job_id)
            for gate in (planned.gates if planned else ()):
                outcome = self.check_gate(job_id, gate, result)
                gate_outcomes.append(outcome)

                if outcome.missing_metric:
                    message = str(MissingMetric(job_id, gate.metric))
                    violations.append(message)
                    failures.append(message)
                elif not outcome.passed:
                    failures.append(
                        f"job '{job_id}': gate {gate.metric} {gate.comparator.value} "
                        f"{format_number(gate.threshold)} failed "
                        f"(expected {gate.comparator.value} {format_number(gate.threshold)}, "
                        f"actual {format_number(outcome.actual)})"
                    )

        overall = Outcome.FAIL if failures else Outcome.PASS
        logger.info(
            f"Verdict for '{graph.template}': {overall.value} "
            f"({len(failures)} failure(s), {len(gate_outcomes)} gate(s) checked)"
        )

        return Verdict(
            template=graph.template,
            overall=overall,
            results=ordered,
            gates=gate_outcomes,
            failures=failures,
            contract_violations=violations,
        )

    def check_gate(self, job_id: str, gate: ResolvedGate, result: JobResult) -> GateOutcome:
        actual: Optional[float] = result.metrics.get(gate.metric)
        if actual is None:
            logger.warning(f"Job '{job_id}' succeeded without reporting metric '{gate.metric}'")
            return GateOutcome(
                job_id=job_id,
                metric=gate.metric,
                comparator=gate.comparator.value,
                expected=gate.threshold,
                actual=None,
                passed=False,
                missing_metric=True,
            )

        passed = gate.comparator.compare(actual, gate.threshold)
        logger.debug(
            f"Gate {job_id}:{gate.metric}={actual} {gate.comparator.value} {gate.threshold} -> {passed}"
        )
        return GateOutcome(
            job_id=job_id,
            metric=gate.metric,
            comparator=gate.comparator.value,
            expected=gate.threshold,
            actual=actual,
            passed=passed,
        )
