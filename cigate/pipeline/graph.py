"""Job graph construction.

Expands a template plus resolved inputs into the concrete, dependency-ordered
set of jobs for one run:

1. Evaluate each job's condition; excluded jobs (and, transitively, jobs that
   depend on them) are recorded but not planned.
2. Substitute ``${{ inputs.NAME }}`` placeholders into commands and resolve
   gate thresholds, so the planned graph holds no unresolved references.
3. Sort the remaining jobs into topological levels.
"""

import logging
import re
import shlex
from collections import deque
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple

from cigate.errors import (
    CycleError,
    MalformedTemplate,
    MissingRequiredInput,
    UndefinedPlaceholder,
)
from cigate.data_models import REASON_CONDITION_FALSE
from cigate.pipeline import conditions
from cigate.pipeline.resolver import ResolvedConfig
from cigate.pipeline.schema import GateComparator, GateSpec, JobSpec, Template

logger = logging.getLogger(__name__)

PLACEHOLDER_RE = re.compile(r"\$\{\{\s*(.*?)\s*\}\}")


@dataclass(frozen=True)
class ResolvedGate:
    """A gate whose threshold has been fixed for this run."""
    metric: str
    comparator: GateComparator
    threshold: float

    def describe(self) -> str:
        return f"{self.metric} {self.comparator.value} {format_number(self.threshold)}"


@dataclass(frozen=True)
class PlannedJob:
    """A job ready for dispatch: fully substituted, dependencies restricted to the graph."""
    id: str
    command: str
    depends_on: Tuple[str, ...] = ()
    gates: Tuple[ResolvedGate, ...] = ()
    secret_refs: Tuple[str, ...] = ()
    timeout_seconds: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "command": self.command,
            "depends_on": list(self.depends_on),
            "gates": [gate.describe() for gate in self.gates],
            "secret_refs": list(self.secret_refs),
            "timeout_seconds": self.timeout_seconds,
        }


@dataclass(frozen=True)
class ExcludedJob:
    id: str
    reason: str


@dataclass(frozen=True)
class JobGraph:
    """Jobs selected for one run, in topological order."""
    template: str
    jobs: Tuple[PlannedJob, ...]
    levels: Tuple[Tuple[str, ...], ...]
    excluded: Tuple[ExcludedJob, ...]
    definition_order: Tuple[str, ...]

    def get(self, job_id: str) -> Optional[PlannedJob]:
        return next((job for job in self.jobs if job.id == job_id), None)

    @property
    def job_ids(self) -> Tuple[str, ...]:
        return tuple(job.id for job in self.jobs)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "template": self.template,
            "levels": [list(level) for level in self.levels],
            "jobs": [job.to_dict() for job in self.jobs],
            "excluded": [{"id": e.id, "reason": e.reason} for e in self.excluded],
        }


def format_number(value: Any) -> str:
    """Render numbers without a trailing '.0' for integral floats."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def render_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return format_number(value)
    return str(value)


def shell_value(value: Any) -> str:
    """Render a value as a single shell word; an empty value renders as nothing."""
    rendered = render_value(value)
    return shlex.quote(rendered) if rendered else ""


def placeholder_name(expression: str) -> str:
    """Input name referenced by a placeholder body ('inputs.x' or 'x')."""
    if expression.startswith("inputs."):
        return expression[len("inputs."):]
    return expression


def topo_levels(
    job_ids: List[str],
    needs: Mapping[str, Tuple[str, ...]],
    template: str,
) -> List[List[str]]:
    """
    Sort jobs into topological levels (Kahn). Jobs in a level are independent.

    Ties are broken by the order of ``job_ids`` so plans are deterministic.

    Raises:
        CycleError: If the dependency relation is not a DAG
    """
    position = {job_id: i for i, job_id in enumerate(job_ids)}
    children: Dict[str, List[str]] = {job_id: [] for job_id in job_ids}
    indeg: Dict[str, int] = {job_id: 0 for job_id in job_ids}

    for job_id in job_ids:
        for dep in needs.get(job_id, ()):
            children[dep].append(job_id)
            indeg[job_id] += 1

    queue = deque(job_id for job_id in job_ids if indeg[job_id] == 0)
    levels: List[List[str]] = []
    processed = 0

    while queue:
        level = sorted(queue, key=position.__getitem__)
        queue.clear()
        levels.append(level)
        processed += len(level)

        for node in level:
            for child in children[node]:
                indeg[child] -= 1
                if indeg[child] == 0:
                    queue.append(child)

    if processed != len(job_ids):
        raise CycleError(template, [job_id for job_id, d in indeg.items() if d > 0])

    return levels


class JobGraphBuilder:
    """Build the per-run job graph from a template and resolved inputs."""

    def build(self, template: Template, resolved: ResolvedConfig) -> JobGraph:
        """
        Build a job graph.

        Args:
            template: Template to expand
            resolved: Resolved inputs for this run

        Returns:
            JobGraph

        Raises:
            UndefinedConditionVariable: If a condition references an undeclared input
            UndefinedPlaceholder: If a command references an undeclared input
            CycleError: If included jobs form a dependency cycle
        """
        known = template.input_names
        values = resolved.as_dict()

        included: Dict[str, JobSpec] = {}
        excluded: List[ExcludedJob] = []
        excluded_ids: Set[str] = set()

        for job in template.jobs:
            if job.condition is not None and not conditions.evaluate(
                job.condition, values, known=known, template=template.name, job_id=job.id
            ):
                excluded.append(ExcludedJob(job.id, REASON_CONDITION_FALSE))
                excluded_ids.add(job.id)
            else:
                included[job.id] = job

        # depends_on may point forward, so iterate until no more jobs drop out
        changed = True
        while changed:
            changed = False
            for job_id, job in list(included.items()):
                blocked = next((dep for dep in job.depends_on if dep in excluded_ids), None)
                if blocked is not None:
                    del included[job_id]
                    excluded.append(ExcludedJob(job_id, f"dependency '{blocked}' excluded"))
                    excluded_ids.add(job_id)
                    changed = True

        order = [job.id for job in template.jobs if job.id in included]
        needs = {job_id: included[job_id].depends_on for job_id in order}
        levels = topo_levels(order, needs, template.name)

        planned = {
            job_id: self._plan_job(template, included[job_id], values)
            for job_id in order
        }
        topo_order = [job_id for level in levels for job_id in level]
        definition_index = {job.id: i for i, job in enumerate(template.jobs)}

        logger.debug(
            f"Built graph for '{template.name}': {len(topo_order)} job(s) in "
            f"{len(levels)} level(s), {len(excluded)} excluded"
        )

        return JobGraph(
            template=template.name,
            jobs=tuple(planned[job_id] for job_id in topo_order),
            levels=tuple(tuple(level) for level in levels),
            excluded=tuple(sorted(excluded, key=lambda e: definition_index[e.id])),
            definition_order=tuple(job.id for job in template.jobs),
        )

    def _plan_job(self, template: Template, job: JobSpec, values: Dict[str, Any]) -> PlannedJob:
        return PlannedJob(
            id=job.id,
            command=self.substitute(template, job, values),
            depends_on=tuple(job.depends_on),
            gates=tuple(self._resolve_gate(template, job, gate, values) for gate in job.gates),
            secret_refs=tuple(job.secrets),
            timeout_seconds=job.timeout_seconds,
        )

    def substitute(self, template: Template, job: JobSpec, values: Dict[str, Any]) -> str:
        """
        Replace ``${{ inputs.NAME }}`` placeholders with resolved values.

        Each value is shell-quoted, so caller input stays one argument and is
        never interpreted by the shell that runs the command.
        """
        known = set(template.input_names)

        def replace(match):
            name = placeholder_name(match.group(1))
            if name not in known:
                raise UndefinedPlaceholder(
                    f"Command of job '{job.id}' references undefined input '{match.group(1)}'",
                    template=template.name,
                    job_id=job.id,
                    input_name=name,
                )
            return shell_value(values.get(name))

        return PLACEHOLDER_RE.sub(replace, job.command)

    def _resolve_gate(
        self,
        template: Template,
        job: JobSpec,
        gate: GateSpec,
        values: Dict[str, Any],
    ) -> ResolvedGate:
        if gate.threshold_input is None:
            threshold = gate.threshold
        else:
            threshold = values.get(gate.threshold_input)
            if threshold is None:
                raise MissingRequiredInput(
                    f"Gate '{gate.metric}' on job '{job.id}' needs a value for input "
                    f"'{gate.threshold_input}'",
                    template=template.name,
                    job_id=job.id,
                    input_name=gate.threshold_input,
                )
            if isinstance(threshold, bool) or not isinstance(threshold, (int, float)):
                raise MalformedTemplate(
                    f"Gate '{gate.metric}' on job '{job.id}' takes its threshold from "
                    f"non-numeric input '{gate.threshold_input}'",
                    template=template.name,
                    job_id=job.id,
                )
        return ResolvedGate(metric=gate.metric, comparator=gate.comparator, threshold=threshold)
