"""Run lifecycle events.

The engine and dispatcher publish an event for every run and job transition.
The bus keeps a bounded history per run (served by the events endpoint) and
fans events out to subscribers such as the CLI's progress logger.
"""

import logging
import threading
from collections import OrderedDict, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional

logger = logging.getLogger(__name__)

Subscriber = Callable[["Event"], None]


class EventType(str, Enum):
    RUN_STARTED = "run_started"
    RUN_COMPLETED = "run_completed"
    JOB_SUBMITTED = "job_submitted"
    JOB_COMPLETED = "job_completed"
    JOB_FAILED = "job_failed"
    JOB_SKIPPED = "job_skipped"
    JOB_RETRIED = "job_retried"
    GATE_FAILED = "gate_failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class Event:
    type: EventType
    run_id: str
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def job_id(self) -> Optional[str]:
        return self.data.get("job_id")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "run_id": self.run_id,
            "timestamp": self.timestamp,
            "data": dict(self.data),
        }


class EventBus:
    """
    Thread-safe publish/subscribe hub with per-run history.

    History is bounded twice: at most ``max_events_per_run`` events per run,
    and at most ``max_runs`` runs (the oldest run is dropped first).
    """

    def __init__(self, max_runs: int = 100, max_events_per_run: int = 1000):
        self._max_runs = max_runs
        self._max_events_per_run = max_events_per_run
        self._runs: "OrderedDict[str, Deque[Event]]" = OrderedDict()
        self._subscribers: List[tuple] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber, event_type: Optional[EventType] = None) -> Callable[[], None]:
        """
        Register ``callback`` for one event type, or for every event if None.

        Returns:
            A function that removes the subscription
        """
        entry = (event_type, callback)
        with self._lock:
            self._subscribers.append(entry)

        def unsubscribe():
            with self._lock:
                if entry in self._subscribers:
                    self._subscribers.remove(entry)

        return unsubscribe

    def publish(self, event: Event) -> None:
        with self._lock:
            history = self._runs.get(event.run_id)
            if history is None:
                history = self._runs[event.run_id] = deque(maxlen=self._max_events_per_run)
                while len(self._runs) > self._max_runs:
                    self._runs.popitem(last=False)
            history.append(event)
            callbacks = [cb for wanted, cb in self._subscribers if wanted is None or wanted == event.type]

        logger.debug(f"Run {event.run_id}: {event.type.value} {event.data}")
        for callback in callbacks:
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Event subscriber failed on {event.type.value}: {e}")

    def get_history(self, run_id: Optional[str] = None, event_type: Optional[EventType] = None) -> List[Event]:
        """Events in publication order, optionally for one run and/or one type."""
        with self._lock:
            if run_id is not None:
                events = list(self._runs.get(run_id, ()))
            else:
                events = [event for history in self._runs.values() for event in history]
        if event_type is not None:
            events = [event for event in events if event.type == event_type]
        return events

    def run_ids(self) -> List[str]:
        with self._lock:
            return list(self._runs)


_global_event_bus: Optional[EventBus] = None
_global_lock = threading.Lock()


def get_event_bus() -> EventBus:
    """Process-wide bus used when no explicit bus is given."""
    global _global_event_bus
    with _global_lock:
        if _global_event_bus is None:
            _global_event_bus = EventBus()
        return _global_event_bus


class EventEmitter:
    """Publishes the events of one run."""

    def __init__(self, run_id: str, event_bus: Optional[EventBus] = None):
        self.run_id = run_id
        self.event_bus = event_bus or get_event_bus()

    def emit(self, event_type: EventType, **data: Any) -> None:
        self.event_bus.publish(Event(type=event_type, run_id=self.run_id, data=data))

    def run_started(self, template: str, job_count: int):
        self.emit(EventType.RUN_STARTED, template=template, job_count=job_count)

    def run_completed(self, template: str, overall: str, failure_count: int):
        self.emit(EventType.RUN_COMPLETED, template=template, overall=overall, failure_count=failure_count)

    def job_submitted(self, job_id: str, attempt: int = 1):
        self.emit(EventType.JOB_SUBMITTED, job_id=job_id, attempt=attempt)

    def job_completed(self, job_id: str, metrics: Dict[str, float]):
        self.emit(EventType.JOB_COMPLETED, job_id=job_id, metrics=dict(metrics))

    def job_failed(self, job_id: str, reason: str):
        self.emit(EventType.JOB_FAILED, job_id=job_id, reason=reason)

    def job_skipped(self, job_id: str, reason: str):
        self.emit(EventType.JOB_SKIPPED, job_id=job_id, reason=reason)

    def job_retried(self, job_id: str, attempt: int, error: str, delay: float):
        self.emit(EventType.JOB_RETRIED, job_id=job_id, attempt=attempt, error=error, delay_seconds=delay)

    def gate_failed(self, job_id: str, failure: str):
        self.emit(EventType.GATE_FAILED, job_id=job_id, failure=failure)

    def cancelled(self, pending: List[str]):
        self.emit(EventType.CANCELLED, pending=list(pending))
