"""BlogFlow Workflow Manager — the resumable ten-stage pipeline runner.

Design
------
The manager owns one :class:`WorkflowRun` at a time and drives it through
``STAGES`` strictly in order.  Starting or resuming a second run
while one is active raises :class:`~blogflow.errors.InvalidTransition`;
concurrent runs need one manager each.  For each step *i*:

  1. build a :class:`RunningContext` from steps ``0..i-1``
  2. mark the step running, persist, emit ``StepStarted``
  3. ``handler.execute(context, inputs)``
  4. success → store output, mark completed, persist, emit ``StepCompleted``
     and ``ProgressUpdate``
     failure → mark step error, persist, emit ``StepError``; the run moves to
     ``error`` (persist, ``RunError``) and the exception propagates

There is no step-level retry.  Transient provider failures are retried
inside the completion client; anything that escapes it halts the run, and
:meth:`WorkflowManager.resume` is the way back in.

Events
------
    manager.on(StepStarted,    lambda e: print("→", e.step.name))
    manager.on(ProgressUpdate, lambda e: print(f"{e.percentage}%"))
    manager.on(RunCompleted,   lambda e: save(e.artifacts))

Handlers run synchronously, in registration order.  One that raises is
logged and skipped.

Cancellation
------------
``manager.cancel()`` (or ``RunHandle.cancel()``) sets a token checked before
each step.  The step in flight always finishes; the run then becomes
``cancelled`` and ``RunCancelled`` is emitted.  A cancel that arrives while
the last step is running is too late: the run completes.

Resume
------
    manager = WorkflowManager(client, store=JsonRunStore("runs"))
    run = manager.resume("improv-at-work-3f9a1b2c")

Steps after the longest completed prefix are reset to pending and run again;
completed steps are never re-executed.
"""

from __future__ import annotations

import threading
import time
from typing import Any

from blogflow.agents import StepHandler, build_handlers
from blogflow.config import BrandProfile
from blogflow.context import RunningContext
from blogflow.errors import InvalidTransition, WorkflowAlreadyCompleted, WorkflowNotFound
from blogflow.events import (
    Event, EventBus, Handler, ProgressUpdate, RunCancelled, RunCompleted, RunError,
    RunStarted, StepCompleted, StepError, StepStarted,
)
from blogflow.llm import Completion
from blogflow.logging import get_logger
from blogflow.models import BlogInputs, RunStatus, StepStatus, WorkflowRun
from blogflow.parsing import to_json_safe
from blogflow.recorder import SessionRecorder
from blogflow.runner import CancellationToken, RunHandle
from blogflow.stages import Stage
from blogflow.storage import MemoryRunStore, RunStore

_log = get_logger("workflow")


class WorkflowManager:
    """Run, cancel and resume blog pipelines.

    Parameters
    ----------
    client :
        Completion client shared by every handler.
    store :
        Snapshot store.  Defaults to an in-memory store.
    brand :
        Brand profile passed to every handler.  Defaults to the neutral
        :class:`BrandProfile`.
    handlers :
        Override the stage → handler mapping (tests, custom stages).  Must
        cover every stage.

    Example
    -------
    >>> manager = WorkflowManager(CompletionClient(), store=JsonRunStore("runs"))
    >>> manager.on(ProgressUpdate, lambda e: print(f"{e.percentage}%"))
    >>> run = manager.start(BlogInputs(title="Improv at Work", keywords="improv, teams"))
    >>> run.final_output["article"][:40]
    """

    def __init__(
        self,
        client: Completion,
        store: RunStore | None = None,
        brand: BrandProfile | None = None,
        handlers: dict[Stage, StepHandler] | None = None,
    ):
        self.client = client
        self.store = store if store is not None else MemoryRunStore()
        self.brand = brand or BrandProfile()
        self.handlers = handlers or build_handlers(client, self.brand)
        missing = [s.value for s in Stage if s not in self.handlers]
        if missing:
            raise ValueError(f"No handler for stage(s): {missing}")

        self._bus = EventBus()
        self._lock = threading.Lock()
        self._token: CancellationToken | None = None
        self.current_run: WorkflowRun | None = None
        self.recorder: SessionRecorder | None = None

    # ── Event registration ────────────────────────────────────────────────────

    def on(self, event_type: type, callback: Handler) -> "WorkflowManager":
        """Register *callback* for one event type.  Returns self for chaining."""
        self._bus.on(event_type, callback)
        return self

    def subscribe(self, callback: Handler) -> "WorkflowManager":
        """Register *callback* for every event."""
        self._bus.subscribe(callback)
        return self

    def off(self, event_type: type | None, callback: Handler) -> bool:
        """Unregister; pass ``None`` as *event_type* for a :meth:`subscribe` callback."""
        return self._bus.off(event_type, callback)

    def _emit(self, event: Event) -> None:
        self._bus.emit(event)

    # ── Public operations ─────────────────────────────────────────────────────

    def start(
        self,
        inputs: BlogInputs | dict[str, Any],
        *,
        run_id: str | None = None,
        token: CancellationToken | None = None,
    ) -> WorkflowRun:
        """Create a run for *inputs* and execute all ten steps.

        Returns the completed (or cancelled) run.  Raises the first error a
        step fails with, after the run has been marked ``error`` and
        persisted.  Raises :class:`InvalidTransition` if another run is
        still active on this manager.
        """
        if isinstance(inputs, dict):
            inputs = BlogInputs.from_dict(inputs)
        token = self._claim(token)
        try:
            run = WorkflowRun.new(inputs, run_id)
            self._persist(run)
            return self._execute(run, 0, token, resumed=False)
        finally:
            self._release(token)

    def resume(self, run_id: str, *, token: CancellationToken | None = None) -> WorkflowRun:
        """Continue a persisted run from its first non-completed step.

        Raises
        ------
        WorkflowNotFound
            No snapshot for *run_id*.
        WorkflowAlreadyCompleted
            Every step already completed.
        InvalidTransition
            Another run is still active on this manager.
        """
        token = self._claim(token)
        try:
            run = self._load(run_id)
            first = run.completed_prefix()
            if first == run.total_steps:
                raise WorkflowAlreadyCompleted(run_id)

            if run.status is RunStatus.RUNNING:
                # snapshot of a process that died mid-run
                _log.warning("Run '%s' was left running; treating as interrupted", run_id)
                run.status = RunStatus.ERROR
            elif run.status is RunStatus.COMPLETED:
                run.status = RunStatus.ERROR

            for step in run.steps[first:]:
                step.reset()
            _log.info("Resuming run=%s from step=%d (%d already completed)",
                      run_id, first, first)
            return self._execute(run, first, token, resumed=True)
        finally:
            self._release(token)

    def cancel(self) -> None:
        """Request cancellation of the active run at the next step boundary."""
        if self._token is None:
            _log.info("Cancel requested but no run is active")
            return
        _log.info("Cancel requested for run '%s'",
                  self.current_run.run_id if self.current_run else "-")
        self._token.cancel()

    def run_background(
        self,
        inputs: BlogInputs | dict[str, Any] | None = None,
        *,
        resume_id: str | None = None,
    ) -> RunHandle:
        """Start (or resume) a run in a daemon thread and return a RunHandle.

        Exactly one of *inputs* / *resume_id* must be given.  The manager is
        claimed before the thread starts, so a second call while this run is
        active raises :class:`InvalidTransition` here rather than in the thread.
        """
        if (inputs is None) == (resume_id is None):
            raise ValueError("Pass exactly one of inputs or resume_id")

        token = CancellationToken()
        done_event = threading.Event()
        result_box: list = []

        if resume_id is not None:
            run_id = resume_id
            target = lambda: self.resume(resume_id, token=token)   # noqa: E731
        else:
            if isinstance(inputs, dict):
                inputs = BlogInputs.from_dict(inputs)
            run_id = WorkflowRun.new(inputs).run_id
            target = lambda: self.start(inputs, run_id=run_id, token=token)   # noqa: E731

        def _target():
            try:
                result_box.append(target())
            except Exception as exc:
                result_box.append(exc)
            finally:
                self._release(token)
                done_event.set()

        self._claim(token)
        thread = threading.Thread(target=_target, daemon=True, name=f"blogflow-{run_id}")
        thread.start()
        _log.info("Workflow started in background  run_id=%s", run_id)

        return RunHandle(
            run_id=run_id,
            thread=thread,
            done_event=done_event,
            result_box=result_box,
            token=token,
            store=self.store,
        )

    # ── Queries ───────────────────────────────────────────────────────────────

    def status(self, run_id: str | None = None) -> dict[str, Any]:
        """Where a run is: status, current step, progress and per-step state."""
        run = self._resolve(run_id)
        current = run.current_step()
        return {
            "run_id": run.run_id,
            "title": run.inputs.title,
            "status": run.status.value,
            "current_step": current.index if current else None,
            "current_step_name": current.name if current else None,
            "progress": run.progress,
            "duration": run.duration,
            "error": run.error,
            "steps": [
                {"index": s.index, "name": s.name, "status": s.status.value,
                 "duration": s.duration}
                for s in run.steps
            ],
        }

    def results(self, run_id: str | None = None) -> dict[str, Any]:
        """Per-step outcome summary plus final word count."""
        run = self._resolve(run_id)
        return {
            "run_id": run.run_id,
            "status": run.status.value,
            "steps": [
                {
                    "index": s.index,
                    "name": s.name,
                    "agent": s.agent.value,
                    "status": s.status.value,
                    "duration": s.duration,
                    "output_length": len(str(s.output)) if s.output else 0,
                }
                for s in run.steps
            ],
            "total_duration": run.duration,
            "word_count": run.word_count,
            "final_output": run.final_output,
        }

    # ── Execution ─────────────────────────────────────────────────────────────

    def _execute(
        self,
        run: WorkflowRun,
        first: int,
        token: CancellationToken,
        *,
        resumed: bool,
    ) -> WorkflowRun:
        self.current_run = run
        self.recorder = SessionRecorder.from_run(run) if resumed else SessionRecorder(run.run_id)

        run.mark_running()
        self._persist(run)
        _log.info("Workflow starting  run=%s  title=%r  first_step=%d",
                  run.run_id, run.inputs.title, first)
        self._emit(RunStarted(run, resumed_from=first if resumed else None))
        t0 = time.time()

        for index in range(first, run.total_steps):
            if token.cancelled:
                run.mark_cancelled()
                self._persist(run)
                _log.info("Workflow '%s' cancelled before step %d", run.run_id, index)
                self._emit(RunCancelled(run, stopped_before=index))
                return run
            self._run_step(run, index)

        run.mark_completed(run.steps[-1].output or {})
        run.metadata = self.recorder.generate_metadata(run)
        self._persist(run)
        artifacts = self.recorder.build_artifacts(run)
        _log.info("Workflow '%s' complete  words=%d  total=%.2fs",
                  run.run_id, run.word_count, time.time() - t0)
        self._emit(RunCompleted(run, artifacts))
        return run

    def _run_step(self, run: WorkflowRun, index: int) -> None:
        step = run.steps[index]
        context = RunningContext.from_run(run, index)
        handler = self.handlers[step.stage]

        step.start()
        step.model = self.client.model_for(step.agent)
        self.recorder.start_step(index, step.name, step.agent.value, step.model)
        self._persist(run)
        _log.info("→ Step %d '%s' starting  run=%s  model=%s",
                  index, step.name, run.run_id, step.model)
        self._emit(StepStarted(run, step))
        t0 = time.time()

        try:
            output = to_json_safe(handler.execute(context, run.inputs))
            step.complete(output)
            self.recorder.complete_step(index, output)
            if step.stage is Stage.REVIEW:
                self.recorder.record_quality_metrics(output)
            self._persist(run)
        except Exception as exc:
            if step.status is StepStatus.COMPLETED:
                # recorder or store failed after the handler returned
                step.status = StepStatus.RUNNING
                step.output = None
            step.fail(str(exc) or type(exc).__name__)
            self.recorder.fail_step(index, exc)
            self._persist(run)
            _log.error("Workflow '%s' aborted at step %d '%s': %s",
                       run.run_id, index, step.name, exc)
            self._emit(StepError(run, step, exc))

            run.mark_failed(f"{step.name}: {exc}")
            self._persist(run)
            self._emit(RunError(run, exc))
            raise

        _log.info("← Step %d '%s' done  run=%s  %.2fs",
                  index, step.name, run.run_id, time.time() - t0)
        self._emit(StepCompleted(run, step, output))
        self._emit(ProgressUpdate(run, run.completed_count, run.total_steps, run.progress))

    # ── Active run ────────────────────────────────────────────────────────────

    def _claim(self, token: CancellationToken | None) -> CancellationToken:
        """Make *token* the active run's token; one run per manager at a time."""
        token = token or CancellationToken()
        with self._lock:
            if self._token is not None and self._token is not token:
                active = self.current_run.run_id if self.current_run else "-"
                raise InvalidTransition(
                    f"Run '{active}' is still active; use a separate WorkflowManager "
                    f"for concurrent runs"
                )
            self._token = token
        return token

    def _release(self, token: CancellationToken) -> None:
        with self._lock:
            if self._token is token:
                self._token = None

    # ── Persistence ───────────────────────────────────────────────────────────

    def _persist(self, run: WorkflowRun) -> None:
        self.store.save(run.run_id, run.to_dict())

    def _load(self, run_id: str) -> WorkflowRun:
        snapshot = self.store.load(run_id)
        if snapshot is None:
            raise WorkflowNotFound(run_id)
        return WorkflowRun.from_dict(snapshot)

    def _resolve(self, run_id: str | None) -> WorkflowRun:
        if run_id is None or (self.current_run and self.current_run.run_id == run_id):
            if self.current_run is None:
                raise WorkflowNotFound(run_id or "<current>")
            return self.current_run
        return self._load(run_id)
