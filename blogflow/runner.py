"""BlogFlow Runner — cancellation token, background thread execution, run handle.

Usage
-----
    manager = WorkflowManager(client, store=JsonRunStore("runs"))
    handle = manager.run_background(BlogInputs(title="Improv at Work"))

    # returns immediately; the pipeline runs in a daemon thread
    print(handle.status)        # "running"
    print(handle.run_id)        # e.g. "improv-at-work-3f9a1b2c"

    run = handle.wait(timeout=900)   # block until done; returns WorkflowRun
    print(handle.status)        # "completed"

    # cancel (cooperative — takes effect at the next step boundary)
    handle.cancel()
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING

from blogflow.logging import get_logger

if TYPE_CHECKING:
    from blogflow.models import WorkflowRun
    from blogflow.storage import RunStore

_log = get_logger("runner")


class CancellationToken:
    """Cooperative cancel flag, checked by the manager between steps only.

    Thread-safe: ``cancel()`` may be called from any thread, including from
    inside an event handler of the run it cancels.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.cancelled})"


class RunHandle:
    """Handle for a workflow running in a background thread.

    Returned by :meth:`WorkflowManager.run_background`.  Do not instantiate
    directly.

    Attributes
    ----------
    run_id :
        Identifier of the run (the snapshot store key).
    """

    def __init__(
        self,
        run_id: str,
        thread: threading.Thread,
        done_event: threading.Event,
        result_box: list,
        token: CancellationToken,
        store: "RunStore | None" = None,
    ):
        self.run_id = run_id
        self._thread = thread
        self._done = done_event
        self._result_box = result_box   # list[WorkflowRun | Exception], len 1 when done
        self._token = token
        self._store = store

    # ── Status ────────────────────────────────────────────────────────────────

    @property
    def status(self) -> str:
        """Live status string.

        Reads the persisted snapshot when a store is configured (updated after
        every step transition).  Otherwise infers from thread state.

        Returns one of: ``"pending"`` | ``"running"`` | ``"completed"`` |
        ``"error"`` | ``"cancelled"``.
        """
        if self._store is not None:
            snap = self._store.load(self.run_id)
            if snap:
                return snap["status"]

        if not self._done.is_set():
            return "running"
        result = self._result_box[0] if self._result_box else None
        if isinstance(result, Exception):
            return "error"
        return result.status.value

    @property
    def is_done(self) -> bool:
        """True once the run has left the ``running`` state."""
        return self._done.is_set()

    # ── Control ───────────────────────────────────────────────────────────────

    def wait(self, timeout: float | None = None) -> "WorkflowRun":
        """Block until the run finishes and return it.

        Parameters
        ----------
        timeout :
            Maximum seconds to wait.  ``None`` waits indefinitely.

        Raises
        ------
        TimeoutError
            If *timeout* elapses before the run finishes.
        Exception
            Re-raises the error that halted the run.
        """
        finished = self._done.wait(timeout=timeout)
        if not finished:
            raise TimeoutError(
                f"Workflow run '{self.run_id}' did not complete within {timeout}s"
            )
        result = self._result_box[0]
        if isinstance(result, Exception):
            raise result
        return result

    def cancel(self) -> None:
        """Request cancellation.

        The step in flight finishes first; the run then moves to
        ``cancelled`` before the next step starts.
        """
        _log.info("Cancel requested for run '%s'", self.run_id)
        self._token.cancel()
