"""Snapshot stores — memory, JSON directory and SQLite."""

import json
import sqlite3
import time

import pytest

from blogflow import WorkflowManager
from blogflow.models import BlogInputs, WorkflowRun
from blogflow.storage import (
    FILE_PREFIX, JsonRunStore, MemoryRunStore, SQLiteRunStore, open_store,
)

from conftest import ScriptedClient


def _snapshot(run_id="run-1", title="Improv at Work", status="pending"):
    run = WorkflowRun.new(BlogInputs(title=title), run_id)
    data = run.to_dict()
    data["status"] = status
    return data


@pytest.fixture(params=["memory", "json", "sqlite"])
def any_store(request, tmp_path):
    if request.param == "memory":
        return MemoryRunStore()
    if request.param == "json":
        return JsonRunStore(tmp_path / "runs")
    return SQLiteRunStore(tmp_path / "runs.db")


# ── Common behaviour ──────────────────────────────────────────────────────────

def test_save_and_load(any_store):
    any_store.save("run-1", _snapshot())
    loaded = any_store.load("run-1")
    assert loaded["run_id"] == "run-1"
    assert loaded["version"] == "1.0"
    assert "saved_at" in loaded
    assert WorkflowRun.from_dict(loaded).inputs.title == "Improv at Work"


def test_load_missing_returns_none(any_store):
    assert any_store.load("nope") is None


def test_save_overwrites(any_store):
    any_store.save("run-1", _snapshot(status="pending"))
    any_store.save("run-1", _snapshot(status="running"))
    assert any_store.load("run-1")["status"] == "running"
    assert len(any_store.list_runs()) == 1


def test_list_runs_newest_first(any_store):
    any_store.save("older", _snapshot("older", title="First"))
    time.sleep(0.01)
    any_store.save("newer", _snapshot("newer", title=""))
    rows = any_store.list_runs()
    assert [r["run_id"] for r in rows] == ["newer", "older"]
    assert rows[0]["title"] == "Untitled"
    assert rows[1]["progress"] == 0


def test_delete_and_clear(any_store):
    any_store.save("a", _snapshot("a"))
    any_store.save("b", _snapshot("b"))
    assert any_store.delete("a") is True
    assert any_store.delete("a") is False
    assert any_store.clear() == 1
    assert any_store.list_runs() == []


def test_preferences(any_store):
    assert any_store.load_preferences() == {}
    any_store.save_preferences({"provider": "openai", "brand": "brand.yaml"})
    assert any_store.load_preferences() == {"provider": "openai", "brand": "brand.yaml"}
    any_store.save_preferences({"provider": "gemini"})
    assert any_store.load_preferences() == {"provider": "gemini"}


def test_loaded_snapshot_is_a_copy(any_store):
    any_store.save("run-1", _snapshot())
    any_store.load("run-1")["status"] = "tampered"
    assert any_store.load("run-1")["status"] == "pending"


# ── JSON backend ──────────────────────────────────────────────────────────────

def test_json_file_layout(tmp_path):
    store = JsonRunStore(tmp_path)
    store.save("run-1", _snapshot())
    path = tmp_path / f"{FILE_PREFIX}run-1.json"
    assert path.exists()
    assert json.loads(path.read_text())["run_id"] == "run-1"
    assert not list(tmp_path.glob("*.tmp"))


def test_json_rejects_path_like_ids(tmp_path):
    store = JsonRunStore(tmp_path)
    for bad in ("../escape", "a/b", ".hidden", ""):
        with pytest.raises(ValueError):
            store.save(bad, _snapshot())


def test_json_skips_unreadable_files(tmp_path):
    store = JsonRunStore(tmp_path)
    store.save("good", _snapshot("good"))
    (tmp_path / f"{FILE_PREFIX}broken.json").write_text("{not json")
    assert [r["run_id"] for r in store.list_runs()] == ["good"]


# ── SQLite backend ────────────────────────────────────────────────────────────

def test_sqlite_event_log(tmp_path, inputs):
    store = SQLiteRunStore(tmp_path / "runs.db")
    manager = WorkflowManager(ScriptedClient(), store=store)
    manager.subscribe(store.record_event)
    run = manager.start(inputs, run_id="logged")

    events = store.get_events(run.run_id)
    names = [e["event"] for e in events]
    assert names[0] == "RunStarted"
    assert names[-1] == "RunCompleted"
    assert names.count("StepCompleted") == 10
    progress = [e["percentage"] for e in events if e["event"] == "ProgressUpdate"]
    assert progress[-1] == 100
    first_step = next(e for e in events if e["event"] == "StepStarted")
    assert (first_step["step"], first_step["stage"]) == (0, "plan")

    assert store.delete(run.run_id)
    assert store.get_events(run.run_id) == []


def test_sqlite_survives_reopen(tmp_path):
    SQLiteRunStore(tmp_path / "runs.db").save("run-1", _snapshot())
    assert SQLiteRunStore(tmp_path / "runs.db").load("run-1")["run_id"] == "run-1"


def test_sqlite_closes_its_connections(tmp_path, monkeypatch):
    opened = []
    connect = sqlite3.connect

    def tracking(*args, **kwargs):
        conn = connect(*args, **kwargs)
        opened.append(conn)
        return conn

    monkeypatch.setattr(sqlite3, "connect", tracking)
    store = SQLiteRunStore(tmp_path / "runs.db")
    store.save("run-1", _snapshot())
    store.load("run-1")
    store.list_runs()
    store.save_event("run-1", "RunStarted")
    assert store.delete("run-1") is True

    assert len(opened) == 6
    for conn in opened:
        with pytest.raises(sqlite3.ProgrammingError):
            conn.execute("SELECT 1")


# ── open_store ────────────────────────────────────────────────────────────────

def test_open_store_dispatch(tmp_path):
    assert isinstance(open_store("memory://"), MemoryRunStore)
    assert isinstance(open_store(f"sqlite:///{tmp_path / 'x.db'}"), SQLiteRunStore)
    assert isinstance(open_store(f"json://{tmp_path / 'j'}"), JsonRunStore)
    store = open_store(tmp_path / "plain")
    assert isinstance(store, JsonRunStore)
    assert (tmp_path / "plain").is_dir()
