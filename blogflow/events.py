"""BlogFlow events — the closed set of things a run reports.

Every event is a frozen dataclass carrying the live :class:`WorkflowRun`
(read it, do not mutate it).  Subscribers receive events synchronously, in
registration order, on the thread executing the run:

    manager.on(StepCompleted, lambda e: print(e.step.name, "done"))
    manager.on(ProgressUpdate, lambda e: bar.update(e.percentage))
    manager.subscribe(lambda e: log.append(type(e).__name__))   # everything

A subscriber that raises is logged and skipped; it never aborts the run.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Union

from blogflow.logging import get_logger

if TYPE_CHECKING:
    from blogflow.models import StepRecord, WorkflowRun

_log = get_logger("events")


@dataclass(frozen=True)
class RunStarted:
    run: "WorkflowRun"
    resumed_from: int | None = None


@dataclass(frozen=True)
class StepStarted:
    run: "WorkflowRun"
    step: "StepRecord"


@dataclass(frozen=True)
class StepCompleted:
    run: "WorkflowRun"
    step: "StepRecord"
    output: dict[str, Any]


@dataclass(frozen=True)
class StepError:
    run: "WorkflowRun"
    step: "StepRecord"
    error: BaseException


@dataclass(frozen=True)
class ProgressUpdate:
    run: "WorkflowRun"
    completed: int
    total: int
    percentage: int


@dataclass(frozen=True)
class RunCompleted:
    run: "WorkflowRun"
    artifacts: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class RunError:
    run: "WorkflowRun"
    error: BaseException


@dataclass(frozen=True)
class RunCancelled:
    run: "WorkflowRun"
    stopped_before: int | None = None


Event = Union[
    RunStarted, StepStarted, StepCompleted, StepError,
    ProgressUpdate, RunCompleted, RunError, RunCancelled,
]
EVENT_TYPES: tuple[type, ...] = (
    RunStarted, StepStarted, StepCompleted, StepError,
    ProgressUpdate, RunCompleted, RunError, RunCancelled,
)

Handler = Callable[[Event], None]


class EventBus:
    """One ordered list of ``(event_type | None, callback)`` subscriptions."""

    def __init__(self):
        self._subs: list[tuple[type | None, Handler]] = []

    def on(self, event_type: type, callback: Handler) -> None:
        if event_type not in EVENT_TYPES:
            raise ValueError(
                f"Unknown event type {event_type!r}. "
                f"Valid: {[t.__name__ for t in EVENT_TYPES]}"
            )
        self._subs.append((event_type, callback))

    def subscribe(self, callback: Handler) -> None:
        """Receive every event."""
        self._subs.append((None, callback))

    def off(self, event_type: type | None, callback: Handler) -> bool:
        """Remove the first matching subscription.  Returns True if found."""
        for i, (etype, cb) in enumerate(self._subs):
            if etype is event_type and cb == callback:
                del self._subs[i]
                return True
        return False

    def emit(self, event: Event) -> None:
        name = type(event).__name__
        for etype, cb in list(self._subs):
            if etype is not None and not isinstance(event, etype):
                continue
            try:
                cb(event)
            except Exception as e:
                _log.warning("Event handler for '%s' raised: %s", name, e)
