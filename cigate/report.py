"""Report helpers: turn verdicts and graphs into JSON-ready dicts and text."""

import json
from pathlib import Path
from typing import Any, Dict, List, Union

from cigate.data_models import Verdict
from cigate.pipeline.graph import JobGraph


def build_report(verdict: Verdict) -> Dict[str, Any]:
    """
    Build a serializable report from a verdict.

    Jobs are keyed by id in job-definition order.
    """
    return {
        "template": verdict.template,
        "overall": verdict.overall.value,
        "jobs": {
            result.job_id: {
                "status": result.status.value,
                "metrics": dict(result.metrics),
                "reason": result.reason,
                "logs_ref": result.logs_ref,
            }
            for result in verdict.results
        },
        "gates": [gate.to_dict() for gate in verdict.gates],
        "failures": list(verdict.failures),
        "contract_violations": list(verdict.contract_violations),
    }


def write_report(verdict: Verdict, path: Union[str, Path]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(build_report(verdict), f, indent=2)
    return path


def render_failures(verdict: Verdict) -> str:
    """Human-readable summary: one status line, then one line per failure."""
    lines = [f"{verdict.overall.value.upper()}: {verdict.template}"]
    for result in verdict.results:
        detail = f" ({result.reason})" if result.reason else ""
        lines.append(f"  {result.job_id:<24} {result.status.value}{detail}")
    if verdict.failures:
        lines.append("Failures:")
        lines.extend(f"  - {failure}" for failure in verdict.failures)
    return "\n".join(lines)


def render_graph(graph: JobGraph) -> str:
    """Render a planned graph level by level, followed by excluded jobs."""
    lines: List[str] = [f"Plan for '{graph.template}':"]
    for index, level in enumerate(graph.levels, start=1):
        lines.append(f"  level {index}:")
        for job_id in level:
            job = graph.get(job_id)
            lines.append(f"    {job_id}: {job.command}")
            if job.depends_on:
                lines.append(f"      needs: {', '.join(job.depends_on)}")
            for gate in job.gates:
                lines.append(f"      gate: {gate.describe()}")
            if job.secret_refs:
                lines.append(f"      secrets: {', '.join(job.secret_refs)}")
    for excluded in graph.excluded:
        lines.append(f"  excluded {excluded.id}: {excluded.reason}")
    return "\n".join(lines)
