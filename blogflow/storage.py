"""BlogFlow storage — key-value snapshot stores for workflow runs.

A store maps a run id to the serialised :class:`~blogflow.models.WorkflowRun`
(``run.to_dict()``).  The workflow manager writes after every step transition
and reads on resume; nothing else writes.

Backends
--------
  MemoryRunStore   dict in process memory (tests, throw-away runs)
  JsonRunStore     one ``blog-workflow-<run_id>.json`` file per run
  SQLiteRunStore   one SQLite file: runs, an event log, and preferences

Pick one from a URL with :func:`open_store`:

    open_store("memory://")
    open_store("sqlite:///var/blogflow/runs.db")
    open_store("./blogflow_runs")          # JSON directory

Every backend also keeps a small preferences mapping (default provider,
brand file, …) alongside the runs.
"""

from __future__ import annotations

import copy
import json
import os
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

from blogflow.events import (
    Event, ProgressUpdate, RunCancelled, RunCompleted, RunError, RunStarted,
    StepCompleted, StepError, StepStarted,
)
from blogflow.logging import get_logger
from blogflow.models import SNAPSHOT_VERSION

_log = get_logger("storage")

FILE_PREFIX = "blog-workflow-"
PREFERENCES_FILE = "preferences.json"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _stamp(snapshot: dict[str, Any]) -> dict[str, Any]:
    data = copy.deepcopy(snapshot)
    data["saved_at"] = _now()
    data["version"] = SNAPSHOT_VERSION
    return data


def _summary(snapshot: dict[str, Any]) -> dict[str, Any]:
    steps = snapshot.get("steps") or []
    done = sum(1 for s in steps if s.get("status") == "completed")
    return {
        "run_id": snapshot.get("run_id"),
        "title": (snapshot.get("inputs") or {}).get("title") or "Untitled",
        "status": snapshot.get("status"),
        "saved_at": snapshot.get("saved_at"),
        "progress": round(done / len(steps) * 100) if steps else 0,
    }


def _check_id(run_id: str) -> str:
    if not run_id or "/" in run_id or "\\" in run_id or run_id.startswith("."):
        raise ValueError(f"Invalid run id: {run_id!r}")
    return run_id


class RunStore(Protocol):
    def save(self, run_id: str, snapshot: dict[str, Any]) -> None: ...
    def load(self, run_id: str) -> dict[str, Any] | None: ...
    def delete(self, run_id: str) -> bool: ...
    def list_runs(self) -> list[dict[str, Any]]: ...
    def clear(self) -> int: ...
    def save_preferences(self, prefs: dict[str, Any]) -> None: ...
    def load_preferences(self) -> dict[str, Any]: ...


# ── In-memory ─────────────────────────────────────────────────────────────────

class MemoryRunStore:
    """Snapshots kept in a dict.  Values are deep-copied in and out."""

    def __init__(self):
        self._runs: dict[str, dict[str, Any]] = {}
        self._prefs: dict[str, Any] = {}
        self.saves = 0

    def save(self, run_id: str, snapshot: dict[str, Any]) -> None:
        self._runs[run_id] = _stamp(snapshot)
        self.saves += 1

    def load(self, run_id: str) -> dict[str, Any] | None:
        snap = self._runs.get(run_id)
        return copy.deepcopy(snap) if snap is not None else None

    def delete(self, run_id: str) -> bool:
        return self._runs.pop(run_id, None) is not None

    def list_runs(self) -> list[dict[str, Any]]:
        rows = [_summary(s) for s in self._runs.values()]
        return sorted(rows, key=lambda r: r["saved_at"] or "", reverse=True)

    def clear(self) -> int:
        n = len(self._runs)
        self._runs.clear()
        return n

    def save_preferences(self, prefs: dict[str, Any]) -> None:
        self._prefs = copy.deepcopy(prefs)

    def load_preferences(self) -> dict[str, Any]:
        return copy.deepcopy(self._prefs)


# ── JSON files ────────────────────────────────────────────────────────────────

class JsonRunStore:
    """One JSON file per run under *directory*.

    Writes go to a temporary file first and are moved into place, so a crash
    mid-write never leaves a truncated snapshot behind.

    Parameters
    ----------
    directory :
        Created (with parents) if it does not exist.
    """

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, run_id: str) -> Path:
        return self.directory / f"{FILE_PREFIX}{_check_id(run_id)}.json"

    def _write(self, path: Path, data: dict[str, Any]) -> None:
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(data, indent=2, ensure_ascii=False, default=str),
                       encoding="utf-8")
        os.replace(tmp, path)

    def save(self, run_id: str, snapshot: dict[str, Any]) -> None:
        path = self._path(run_id)
        self._write(path, _stamp(snapshot))
        _log.debug("Snapshot saved  run=%s  path=%s", run_id, path)

    def load(self, run_id: str) -> dict[str, Any] | None:
        path = self._path(run_id)
        if not path.exists():
            return None
        return json.loads(path.read_text(encoding="utf-8"))

    def delete(self, run_id: str) -> bool:
        path = self._path(run_id)
        if not path.exists():
            return False
        path.unlink()
        _log.info("Snapshot deleted  run=%s", run_id)
        return True

    def list_runs(self) -> list[dict[str, Any]]:
        rows = []
        for path in self.directory.glob(f"{FILE_PREFIX}*.json"):
            try:
                rows.append(_summary(json.loads(path.read_text(encoding="utf-8"))))
            except (OSError, json.JSONDecodeError) as e:
                _log.warning("Skipping unreadable snapshot %s: %s", path.name, e)
        return sorted(rows, key=lambda r: r["saved_at"] or "", reverse=True)

    def clear(self) -> int:
        paths = list(self.directory.glob(f"{FILE_PREFIX}*.json"))
        for path in paths:
            path.unlink()
        _log.info("Cleared %d snapshot(s) from %s", len(paths), self.directory)
        return len(paths)

    def save_preferences(self, prefs: dict[str, Any]) -> None:
        self._write(self.directory / PREFERENCES_FILE, dict(prefs))

    def load_preferences(self) -> dict[str, Any]:
        path = self.directory / PREFERENCES_FILE
        if not path.exists():
            return {}
        return json.loads(path.read_text(encoding="utf-8"))


# ── SQLite ────────────────────────────────────────────────────────────────────

_DDL = """
PRAGMA journal_mode=WAL;

CREATE TABLE IF NOT EXISTS bf_runs (
    run_id        TEXT PRIMARY KEY,
    title         TEXT NOT NULL DEFAULT '',
    status        TEXT NOT NULL
        CHECK(status IN ('pending','running','completed','error','cancelled')),
    snapshot_json TEXT NOT NULL,
    created_at    TEXT NOT NULL,
    saved_at      TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS bf_events (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    run_id      TEXT NOT NULL,
    event       TEXT NOT NULL,
    step        INTEGER,
    stage       TEXT,
    percentage  INTEGER,
    error_msg   TEXT,
    ts          TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS bf_preferences (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""


class SQLiteRunStore:
    """SQLite-backed snapshot store with an append-only event log.

    Each method opens and closes its own connection, so the background
    runner thread and a polling reader never share connection state.

    Parameters
    ----------
    db_path :
        Path to the SQLite file.  Created (with parent directories) if it does
        not exist.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    # ── Internal helpers ──────────────────────────────────────────────────────

    @contextmanager
    def _conn(self) -> Iterator[sqlite3.Connection]:
        """Connection for one unit of work: committed (or rolled back), then closed."""
        conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self._conn() as conn:
            conn.executescript(_DDL)
        _log.debug("SQLiteRunStore ready  path=%s", self.db_path)

    # ── Snapshots ─────────────────────────────────────────────────────────────

    def save(self, run_id: str, snapshot: dict[str, Any]) -> None:
        data = _stamp(snapshot)
        title = (data.get("inputs") or {}).get("title", "")
        with self._conn() as conn:
            conn.execute(
                """INSERT INTO bf_runs
                   (run_id, title, status, snapshot_json, created_at, saved_at)
                   VALUES (?,?,?,?,?,?)
                   ON CONFLICT(run_id) DO UPDATE SET
                       title=excluded.title,
                       status=excluded.status,
                       snapshot_json=excluded.snapshot_json,
                       saved_at=excluded.saved_at""",
                (run_id, title, data.get("status", "pending"),
                 json.dumps(data, ensure_ascii=False, default=str),
                 data["saved_at"], data["saved_at"]),
            )
        _log.debug("Snapshot saved  run=%s  status=%s", run_id, data.get("status"))

    def load(self, run_id: str) -> dict[str, Any] | None:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT snapshot_json FROM bf_runs WHERE run_id = ?", (run_id,)
            ).fetchone()
        return json.loads(row["snapshot_json"]) if row else None

    def delete(self, run_id: str) -> bool:
        with self._conn() as conn:
            removed = conn.execute("DELETE FROM bf_runs WHERE run_id = ?", (run_id,)).rowcount
            conn.execute("DELETE FROM bf_events WHERE run_id = ?", (run_id,))
        return removed > 0

    def list_runs(self, limit: int = 100) -> list[dict[str, Any]]:
        """Most recently saved runs first."""
        with self._conn() as conn:
            rows = conn.execute(
                "SELECT snapshot_json FROM bf_runs ORDER BY saved_at DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [_summary(json.loads(r["snapshot_json"])) for r in rows]

    def clear(self) -> int:
        with self._conn() as conn:
            removed = conn.execute("DELETE FROM bf_runs").rowcount
            conn.execute("DELETE FROM bf_events")
        return removed

    # ── Events ────────────────────────────────────────────────────────────────

    def save_event(self, run_id: str, event: str, **kw: Any) -> None:
        """Append a lifecycle event.

        Keyword args (all optional): step, stage, percentage, error_msg, ts
        """
        ts = kw.pop("ts", _now())
        with self._conn() as conn:
            conn.execute(
                """INSERT INTO bf_events
                   (run_id, event, step, stage, percentage, error_msg, ts)
                   VALUES (?,?,?,?,?,?,?)""",
                (run_id, event, kw.get("step"), kw.get("stage"),
                 kw.get("percentage"), kw.get("error_msg"), ts),
            )

    def record_event(self, event: Event) -> None:
        """Event-bus subscriber: ``manager.subscribe(store.record_event)``."""
        kw: dict[str, Any] = {}
        if isinstance(event, (StepStarted, StepCompleted, StepError)):
            kw["step"] = event.step.index
            kw["stage"] = event.step.stage.value
        if isinstance(event, (StepError, RunError)):
            kw["error_msg"] = str(event.error)
        if isinstance(event, ProgressUpdate):
            kw["percentage"] = event.percentage
        if isinstance(event, RunStarted) and event.resumed_from is not None:
            kw["step"] = event.resumed_from
        if isinstance(event, RunCancelled):
            kw["step"] = event.stopped_before
        if isinstance(event, RunCompleted):
            kw["percentage"] = 100
        self.save_event(event.run.run_id, type(event).__name__, **kw)

    def get_events(self, run_id: str) -> list[dict]:
        """Return all events for a run ordered by insertion id."""
        with self._conn() as conn:
            rows = conn.execute(
                "SELECT * FROM bf_events WHERE run_id=? ORDER BY id", (run_id,)
            ).fetchall()
        return [dict(r) for r in rows]

    # ── Preferences ───────────────────────────────────────────────────────────

    def save_preferences(self, prefs: dict[str, Any]) -> None:
        with self._conn() as conn:
            conn.execute("DELETE FROM bf_preferences")
            conn.executemany(
                "INSERT INTO bf_preferences (key, value) VALUES (?, ?)",
                [(k, json.dumps(v)) for k, v in prefs.items()],
            )

    def load_preferences(self) -> dict[str, Any]:
        with self._conn() as conn:
            rows = conn.execute("SELECT key, value FROM bf_preferences").fetchall()
        return {r["key"]: json.loads(r["value"]) for r in rows}


def open_store(url: str | Path) -> RunStore:
    """Snapshot store for *url*.

    ``memory://`` → :class:`MemoryRunStore`; ``sqlite:///<path>`` →
    :class:`SQLiteRunStore`; anything else is a directory for
    :class:`JsonRunStore`.
    """
    url = str(url)
    if url == "memory://":
        return MemoryRunStore()
    if url.startswith("sqlite:///"):
        return SQLiteRunStore(url[len("sqlite:///"):])
    if url.startswith("json://"):
        url = url[len("json://"):]
    return JsonRunStore(url)
