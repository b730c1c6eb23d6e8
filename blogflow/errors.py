"""BlogFlow errors.

Every error raised on purpose by blogflow derives from :class:`BlogflowError`.
Most also subclass the builtin a caller would naturally catch, so
``except KeyError`` still works for a missing run.

    BlogflowError
    ├── CompletionError          (RuntimeError)  retries exhausted / empty reply
    ├── AuthenticationError                      bad or missing credential
    ├── MissingUpstreamOutput    (ValueError)    stage ran without its inputs
    ├── WorkflowNotFound         (KeyError)
    ├── WorkflowAlreadyCompleted
    └── InvalidTransition                        illegal status change
"""

from __future__ import annotations


class BlogflowError(Exception):
    """Base class for all blogflow errors."""


class CompletionError(BlogflowError, RuntimeError):
    """The completion service failed after all retry attempts.

    Attributes
    ----------
    attempts :
        Number of attempts made before giving up.
    last_error :
        The underlying exception from the final attempt, if any.
    """

    def __init__(self, message: str, attempts: int = 0, last_error: Exception | None = None):
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


class AuthenticationError(BlogflowError):
    """Missing or rejected API credential.  Never retried."""

    def __init__(self, message: str, provider: str = ""):
        super().__init__(message)
        self.provider = provider


class MissingUpstreamOutput(BlogflowError, ValueError):
    """A stage was invoked before the stage it depends on produced output."""

    def __init__(self, stage: str, required: str, detail: str = ""):
        msg = f"Stage '{stage}' requires output from '{required}'"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)
        self.stage = stage
        self.required = required


class WorkflowNotFound(BlogflowError, KeyError):
    def __init__(self, run_id: str):
        super().__init__(f"Workflow not found: {run_id!r}")
        self.run_id = run_id

    def __str__(self) -> str:
        return self.args[0]


class WorkflowAlreadyCompleted(BlogflowError):
    def __init__(self, run_id: str):
        super().__init__(f"Workflow already completed: {run_id!r}")
        self.run_id = run_id


class InvalidTransition(BlogflowError):
    """A step or run was moved along a path its state machine forbids."""
