"""BlogFlow logging — thin wrapper around dd-logging for consistent log format.

Usage
-----
In every blogflow module:
    from blogflow.logging import get_logger
    _log = get_logger("workflow")   # → blogflow.workflow logger

To initialise file logging at application start-up:
    from blogflow.logging import setup_logging
    setup_logging("blog_run", log_level="debug")
    # → logs/blog_run-<YYYYMMDD-HHMMSS>.log under blogflow.*

Log hierarchy
-------------
    blogflow              ← root (FileHandler attached by setup_logging)
    ├── blogflow.workflow
    ├── blogflow.agents.<stage>
    ├── blogflow.llm
    ├── blogflow.storage
    ├── blogflow.recorder
    └── blogflow.runner
"""

from __future__ import annotations

import logging
from pathlib import Path

from dd_logging import (
    disable_logging as _disable,
    get_logger as _get,
    setup_logging as _setup,
)

_ROOT = "blogflow"


def get_logger(name: str) -> logging.Logger:
    """Return a child logger under the blogflow namespace.

    Parameters
    ----------
    name :
        Dotted sub-path, e.g. ``"llm"`` → ``blogflow.llm``.
    """
    return _get(name, _ROOT)


def setup_logging(
    run_name: str = "blogflow",
    *,
    log_level: str = "info",
    log_dir: str | Path | None = None,
    console: bool = False,
    adapter: str = "",
) -> Path:
    """Attach a timestamped FileHandler to the blogflow root logger.

    Parameters
    ----------
    run_name :
        Short label used in the log filename, e.g. ``"run"`` or ``"resume"``.
    log_level :
        ``"debug"`` | ``"info"`` | ``"warning"`` | ``"error"``.
    log_dir :
        Directory for log files.  Defaults to ``./logs`` relative to CWD.
    console :
        Also attach a StreamHandler (CLI ``--verbose`` mode).
    adapter :
        LLM provider name appended to the filename (e.g. ``"anthropic"``).

    Returns
    -------
    Path
        Absolute path of the created log file.
    """
    return _setup(
        run_name,
        root_name=_ROOT,
        log_level=log_level,
        log_dir=log_dir or (Path.cwd() / "logs"),
        console=console,
        adapter=adapter,
    )


def disable_logging() -> None:
    """Remove all handlers from the blogflow root logger (silent mode)."""
    _disable(_ROOT)
