"""BlogFlow run model — inputs, step records and the workflow run.

A :class:`WorkflowRun` is the single source of truth for one pipeline
execution.  It is owned by the :class:`~blogflow.workflow.WorkflowManager`
while running and is exported to the snapshot store as a plain dict
(:meth:`WorkflowRun.to_dict`) after every step transition.

State machines
--------------
StepRecord:   pending → running → completed | error     (reset() → pending)
WorkflowRun:  pending → running → completed | error | cancelled
              error | cancelled → running                (resume only)

Any other transition raises :class:`~blogflow.errors.InvalidTransition`.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from blogflow.errors import InvalidTransition
from blogflow.parsing import count_words, slugify
from blogflow.stages import STAGES, AgentKind, Stage

SNAPSHOT_VERSION = "1.0"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _seconds_between(start: str | None, end: str | None) -> float | None:
    if not start:
        return None
    t0 = datetime.fromisoformat(start)
    t1 = datetime.fromisoformat(end) if end else datetime.now(timezone.utc)
    return (t1 - t0).total_seconds()


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"


# ── Inputs ────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class BlogInputs:
    """User-supplied subject fields.  Any of the text fields may be blank;
    the content planner fills blanks in its own output, never here."""

    title: str = ""
    keywords: str = ""
    context: str = ""
    allow_web: bool = True

    @property
    def keyword_list(self) -> list[str]:
        return [k.strip() for k in self.keywords.split(",") if k.strip()]

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "keywords": self.keywords,
            "context": self.context,
            "allow_web": self.allow_web,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BlogInputs":
        keywords = data.get("keywords", "")
        if isinstance(keywords, (list, tuple)):
            keywords = ", ".join(str(k) for k in keywords)
        return cls(
            title=str(data.get("title") or ""),
            keywords=str(keywords or ""),
            context=str(data.get("context") or ""),
            allow_web=bool(data.get("allow_web", True)),
        )


# ── Step record ───────────────────────────────────────────────────────────────

@dataclass
class StepRecord:
    index: int
    stage: Stage
    agent: AgentKind
    name: str
    status: StepStatus = StepStatus.PENDING
    output: dict[str, Any] | None = None
    error: str | None = None
    started_at: str | None = None
    ended_at: str | None = None
    model: str | None = None

    @property
    def duration(self) -> float | None:
        """Seconds spent in this step, or None if it never started."""
        return _seconds_between(self.started_at, self.ended_at)

    def start(self) -> None:
        if self.status is not StepStatus.PENDING:
            raise InvalidTransition(
                f"Step {self.index} ({self.name}) cannot start from '{self.status.value}'"
            )
        self.status = StepStatus.RUNNING
        self.started_at = _now()
        self.ended_at = None

    def complete(self, output: dict[str, Any]) -> None:
        if self.status is not StepStatus.RUNNING:
            raise InvalidTransition(
                f"Step {self.index} ({self.name}) cannot complete from '{self.status.value}'"
            )
        self.status = StepStatus.COMPLETED
        self.output = output
        self.ended_at = _now()

    def fail(self, error: str) -> None:
        if self.status is not StepStatus.RUNNING:
            raise InvalidTransition(
                f"Step {self.index} ({self.name}) cannot fail from '{self.status.value}'"
            )
        self.status = StepStatus.ERROR
        self.error = error
        self.ended_at = _now()

    def reset(self) -> None:
        self.status = StepStatus.PENDING
        self.output = None
        self.error = None
        self.started_at = None
        self.ended_at = None
        self.model = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "stage": self.stage.value,
            "agent": self.agent.value,
            "name": self.name,
            "status": self.status.value,
            "output": self.output,
            "error": self.error,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "model": self.model,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StepRecord":
        return cls(
            index=int(data["index"]),
            stage=Stage(data["stage"]),
            agent=AgentKind(data["agent"]),
            name=data.get("name", ""),
            status=StepStatus(data.get("status", "pending")),
            output=data.get("output"),
            error=data.get("error"),
            started_at=data.get("started_at"),
            ended_at=data.get("ended_at"),
            model=data.get("model"),
        )


# ── Workflow run ──────────────────────────────────────────────────────────────

@dataclass
class WorkflowRun:
    run_id: str
    inputs: BlogInputs
    steps: list[StepRecord]
    status: RunStatus = RunStatus.PENDING
    started_at: str | None = None
    ended_at: str | None = None
    final_output: dict[str, Any] | None = None
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def new(cls, inputs: BlogInputs, run_id: str | None = None) -> "WorkflowRun":
        """Build a run with one pending step per pipeline stage."""
        if run_id is None:
            run_id = f"{slugify(inputs.title) or 'blog'}-{uuid4().hex[:8]}"
        steps = [
            StepRecord(index=i, stage=d.stage, agent=d.agent, name=d.label)
            for i, d in enumerate(STAGES)
        ]
        return cls(run_id=run_id, inputs=inputs, steps=steps)

    # ── Queries ───────────────────────────────────────────────────────────────

    @property
    def total_steps(self) -> int:
        return len(self.steps)

    @property
    def completed_count(self) -> int:
        return sum(1 for s in self.steps if s.status is StepStatus.COMPLETED)

    @property
    def progress(self) -> int:
        """Completed steps as a whole-number percentage of all steps."""
        return round(self.completed_count / self.total_steps * 100)

    @property
    def duration(self) -> float | None:
        return _seconds_between(self.started_at, self.ended_at)

    @property
    def is_terminal(self) -> bool:
        return self.status in (RunStatus.COMPLETED, RunStatus.ERROR, RunStatus.CANCELLED)

    def completed_prefix(self) -> int:
        """Length of the leading run of completed steps."""
        n = 0
        for step in self.steps:
            if step.status is not StepStatus.COMPLETED:
                break
            n += 1
        return n

    def current_step(self) -> StepRecord | None:
        """The running step, else the first step not yet completed."""
        for step in self.steps:
            if step.status is StepStatus.RUNNING:
                return step
        for step in self.steps:
            if step.status is not StepStatus.COMPLETED:
                return step
        return None

    @property
    def word_count(self) -> int:
        if not self.final_output:
            return 0
        return count_words(self.final_output.get("article", ""))

    # ── Transitions ───────────────────────────────────────────────────────────

    def mark_running(self) -> None:
        if self.status not in (RunStatus.PENDING, RunStatus.ERROR, RunStatus.CANCELLED):
            raise InvalidTransition(
                f"Run {self.run_id} cannot start from '{self.status.value}'"
            )
        if self.status is RunStatus.PENDING:
            self.started_at = _now()
        self.status = RunStatus.RUNNING
        self.ended_at = None
        self.error = None

    def _finish(self, status: RunStatus) -> None:
        if self.status is not RunStatus.RUNNING:
            raise InvalidTransition(
                f"Run {self.run_id} cannot become '{status.value}' "
                f"from '{self.status.value}'"
            )
        self.status = status
        self.ended_at = _now()

    def mark_completed(self, final_output: dict[str, Any]) -> None:
        self._finish(RunStatus.COMPLETED)
        self.final_output = final_output

    def mark_failed(self, error: str) -> None:
        self._finish(RunStatus.ERROR)
        self.error = error

    def mark_cancelled(self) -> None:
        self._finish(RunStatus.CANCELLED)

    # ── Serialisation ─────────────────────────────────────────────────────────

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "version": SNAPSHOT_VERSION,
            "inputs": self.inputs.to_dict(),
            "status": self.status.value,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "error": self.error,
            "final_output": self.final_output,
            "metadata": self.metadata,
            "steps": [s.to_dict() for s in self.steps],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WorkflowRun":
        steps = [StepRecord.from_dict(s) for s in data.get("steps", [])]
        if len(steps) != len(STAGES):
            raise ValueError(
                f"Snapshot for run {data.get('run_id')!r} has {len(steps)} steps, "
                f"expected {len(STAGES)}"
            )
        return cls(
            run_id=data["run_id"],
            inputs=BlogInputs.from_dict(data.get("inputs", {})),
            steps=steps,
            status=RunStatus(data.get("status", "pending")),
            started_at=data.get("started_at"),
            ended_at=data.get("ended_at"),
            final_output=data.get("final_output"),
            error=data.get("error"),
            metadata=data.get("metadata") or {},
        )

    def to_json(self, indent: int | None = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, ensure_ascii=False, default=str)
