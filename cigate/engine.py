"""Run engine: wire catalog, resolver, graph builder, dispatcher and gates.

A run moves through fixed stages:

    catalog.get -> resolver.resolve -> builder.build -> dispatcher.dispatch -> evaluator.evaluate

Everything up to ``build`` is validation. It completes (or raises) before the
first job is submitted, so a bad request never has side effects.
"""

import logging
import threading
import time
import uuid
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from cigate.backends.base import ExecutionBackend
from cigate.data_models import Verdict
from cigate.events import EventBus, EventEmitter
from cigate.pipeline.dispatcher import Dispatcher
from cigate.pipeline.gating import GateEvaluator
from cigate.pipeline.graph import JobGraph, JobGraphBuilder, format_number
from cigate.pipeline.loader import TemplateCatalog
from cigate.pipeline.resolver import InputResolver
from cigate.utils.retry import RetryConfig

logger = logging.getLogger(__name__)


class RunRequest(BaseModel):
    """A caller's request to run a template."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    template: str = Field(..., min_length=1, description="Template name")
    inputs: Dict[str, Any] = Field(default_factory=dict, description="Raw input values")
    secret_refs: List[str] = Field(default_factory=list, description="Names of secrets the caller provides")


class RunEngine:
    """Plan and execute template runs."""

    def __init__(
        self,
        catalog: TemplateCatalog,
        backend: ExecutionBackend,
        default_timeout: float = 3600.0,
        retry_config: Optional[RetryConfig] = None,
        fail_fast: bool = False,
        event_bus: Optional[EventBus] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize run engine.

        Args:
            catalog: Template catalog
            backend: Execution backend jobs are submitted to
            default_timeout: Per-job timeout in seconds when neither the job nor the caller sets one
            retry_config: Backoff policy for backend errors
            fail_fast: Stop submitting new jobs after the first failure
            event_bus: EventBus for lifecycle events (defaults to global)
            sleep: Sleep function used between retries (injectable for tests)
        """
        self.catalog = catalog
        self.backend = backend
        self.default_timeout = default_timeout
        self.retry_config = retry_config
        self.fail_fast = fail_fast
        self.event_bus = event_bus
        self._sleep = sleep

        self.resolver = InputResolver()
        self.builder = JobGraphBuilder()
        self.evaluator = GateEvaluator()

    def plan(self, request: RunRequest) -> JobGraph:
        """
        Validate a request and build its job graph without dispatching.

        Raises:
            ValidationError: If the template or inputs are invalid
            CatalogError: If the template itself is broken
        """
        template = self.catalog.get(request.template)
        resolved = self.resolver.resolve(template, request.inputs, request.secret_refs)
        graph = self.builder.build(template, resolved)
        logger.info(
            f"Planned '{template.name}': {len(graph.jobs)} job(s), {len(graph.excluded)} excluded"
        )
        return graph

    def run(
        self,
        request: RunRequest,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
        run_id: Optional[str] = None,
    ) -> Verdict:
        """
        Run a template to completion and return its verdict.

        Args:
            request: What to run
            timeout: Per-job timeout in seconds (jobs may override)
            cancel_event: Set to stop submitting further jobs
            run_id: Run ID for events (generated if omitted)

        Returns:
            Verdict
        """
        graph = self.plan(request)

        emitter = EventEmitter(run_id or str(uuid.uuid4()), self.event_bus)
        emitter.run_started(graph.template, len(graph.jobs))
        logger.info(f"Starting run {emitter.run_id} of '{graph.template}'")

        dispatcher = Dispatcher(
            self.backend,
            default_timeout=self.default_timeout,
            retry_config=self.retry_config,
            fail_fast=self.fail_fast,
            emitter=emitter,
            sleep=self._sleep,
        )
        results = list(dispatcher.dispatch(graph, timeout=timeout, cancel_event=cancel_event))

        verdict = self.evaluator.evaluate(results, graph)
        for outcome in verdict.gates:
            if not outcome.passed:
                emitter.gate_failed(
                    outcome.job_id,
                    f"{outcome.metric} {outcome.comparator} {format_number(outcome.expected)}",
                )

        emitter.run_completed(graph.template, verdict.overall.value, len(verdict.failures))
        logger.info(f"Run {emitter.run_id} finished: {verdict.overall.value}")
        return verdict
