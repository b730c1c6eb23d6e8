"""Run model, stage table, running context and event bus."""

import pytest

from blogflow.context import RunningContext
from blogflow.errors import InvalidTransition, MissingUpstreamOutput
from blogflow.events import EventBus, ProgressUpdate, RunStarted, StepStarted
from blogflow.models import BlogInputs, RunStatus, StepStatus, WorkflowRun
from blogflow.stages import STAGES, TOTAL_STEPS, AgentKind, Stage, stage_index


# ── Stages ────────────────────────────────────────────────────────────────────

def test_stage_table_order():
    assert TOTAL_STEPS == 10
    assert [d.stage for d in STAGES] == list(Stage)
    assert STAGES[0].agent is AgentKind.PLANNER
    assert STAGES[-1].agent is AgentKind.ORCHESTRATOR
    assert [d.stage for d in STAGES if d.agent is AgentKind.CONTENT_WRITER] == [
        Stage.SUBHEADINGS, Stage.COMPOSE, Stage.REVISE,
    ]
    assert stage_index(Stage.REVIEW) == 7


# ── Inputs ────────────────────────────────────────────────────────────────────

def test_inputs_keyword_list_and_from_dict():
    inputs = BlogInputs.from_dict({"title": "T", "keywords": ["a", " b "], "allow_web": False})
    assert inputs.keywords == "a,  b "
    assert inputs.keyword_list == ["a", "b"]
    assert inputs.context == ""
    assert inputs.allow_web is False
    assert BlogInputs.from_dict(inputs.to_dict()) == inputs


# ── Step & run state machines ─────────────────────────────────────────────────

def test_new_run_has_ten_pending_steps():
    run = WorkflowRun.new(BlogInputs(title="Improv at Work"))
    assert run.run_id.startswith("improv-at-work-")
    assert run.status is RunStatus.PENDING
    assert [s.index for s in run.steps] == list(range(10))
    assert all(s.status is StepStatus.PENDING for s in run.steps)
    assert run.progress == 0
    assert run.current_step() is run.steps[0]


def test_untitled_run_id():
    assert WorkflowRun.new(BlogInputs()).run_id.startswith("blog-")


def test_step_transitions():
    step = WorkflowRun.new(BlogInputs(), "r").steps[0]
    with pytest.raises(InvalidTransition):
        step.complete({})
    step.start()
    with pytest.raises(InvalidTransition):
        step.start()
    step.complete({"x": 1})
    assert step.status is StepStatus.COMPLETED
    assert step.duration is not None and step.duration >= 0
    with pytest.raises(InvalidTransition):
        step.fail("late")
    step.reset()
    assert step.status is StepStatus.PENDING
    assert step.output is None and step.started_at is None


def test_run_transitions():
    run = WorkflowRun.new(BlogInputs(), "r")
    with pytest.raises(InvalidTransition):
        run.mark_completed({})
    run.mark_running()
    started = run.started_at
    run.mark_failed("boom")
    assert run.status is RunStatus.ERROR and run.error == "boom"
    run.mark_running()
    assert run.started_at == started
    assert run.error is None
    run.mark_cancelled()
    run.mark_running()
    run.mark_completed({"article": "one two three"})
    assert run.is_terminal
    assert run.word_count == 3
    with pytest.raises(InvalidTransition):
        run.mark_running()


def test_progress_and_completed_prefix():
    run = WorkflowRun.new(BlogInputs(), "r")
    for step in run.steps[:3]:
        step.start()
        step.complete({})
    run.steps[4].start()
    run.steps[4].complete({})
    assert run.completed_count == 4
    assert run.progress == 40
    assert run.completed_prefix() == 3
    assert run.current_step() is run.steps[3]


def test_snapshot_round_trip():
    run = WorkflowRun.new(BlogInputs(title="T", keywords="a,b"), "r-1")
    run.mark_running()
    run.steps[0].start()
    run.steps[0].complete({"title": "T"})
    data = run.to_dict()
    assert data["version"] == "1.0"
    assert data["steps"][0]["stage"] == "plan"
    again = WorkflowRun.from_dict(data)
    assert again.to_dict() == data


def test_snapshot_with_wrong_step_count_is_rejected():
    data = WorkflowRun.new(BlogInputs(), "r").to_dict()
    data["steps"] = data["steps"][:4]
    with pytest.raises(ValueError, match="4 steps"):
        WorkflowRun.from_dict(data)


# ── Running context ───────────────────────────────────────────────────────────

def _run_with(outputs):
    run = WorkflowRun.new(BlogInputs(title="T"), "ctx")
    for step in run.steps[:len(outputs)]:
        step.start()
        step.complete(outputs[step.index])
    return run


def test_context_sees_only_earlier_steps():
    run = _run_with([{"title": "T"}, {"project_brief": "brief"}, {"headings": ["h"]}])
    ctx = RunningContext.from_run(run, 2)
    assert ctx.current_step == 2
    assert ctx.stage is Stage.BRAINSTORM
    assert set(ctx.previous_outputs) == {Stage.PLAN, Stage.BRIEF}
    assert ctx.output(Stage.BRAINSTORM) is None


def test_context_outputs_are_copies():
    run = _run_with([{"title": "T", "tags": ["x"]}])
    ctx = RunningContext.from_run(run, 1)
    ctx.output(Stage.PLAN)["tags"].append("y")
    assert run.steps[0].output["tags"] == ["x"]
    with pytest.raises(TypeError):
        ctx.previous_outputs[Stage.BRIEF] = {}


def test_context_requires_completed_prefix():
    run = _run_with([{"title": "T"}])
    with pytest.raises(InvalidTransition):
        RunningContext.from_run(run, 2)


def test_require_raises_for_missing_or_empty():
    ctx = RunningContext.build({Stage.OUTLINE: {"selected_headings": []}})
    assert ctx.stage is Stage.SUBHEADINGS
    with pytest.raises(MissingUpstreamOutput, match="outline"):
        ctx.require(Stage.OUTLINE, "selected_headings")
    with pytest.raises(MissingUpstreamOutput, match="brainstorm"):
        ctx.require(Stage.BRAINSTORM)


def test_effective_inputs_fill_blanks_only():
    ctx = RunningContext.build({Stage.PLAN: {"title": "Planned", "keywords": "k1, k2",
                                             "context": "Planned context"}})
    eff = ctx.effective_inputs(BlogInputs(title="Mine", keywords=""))
    assert eff.title == "Mine"
    assert eff.keywords == "k1, k2"
    assert eff.context == "Planned context"
    assert RunningContext.build().effective_inputs(BlogInputs(title="x")).title == "x"


# ── Event bus ─────────────────────────────────────────────────────────────────

def test_event_bus_dispatch_order_and_filtering():
    run = WorkflowRun.new(BlogInputs(), "bus")
    bus, seen = EventBus(), []
    bus.on(RunStarted, lambda e: seen.append("started"))
    bus.subscribe(lambda e: seen.append(type(e).__name__))
    bus.emit(RunStarted(run))
    bus.emit(StepStarted(run, run.steps[0]))
    assert seen == ["started", "RunStarted", "StepStarted"]


def test_event_bus_swallows_handler_errors():
    run = WorkflowRun.new(BlogInputs(), "bus")
    bus, seen = EventBus(), []

    def broken(event):
        raise RuntimeError("subscriber bug")

    bus.on(ProgressUpdate, broken)
    bus.on(ProgressUpdate, lambda e: seen.append(e.percentage))
    bus.emit(ProgressUpdate(run, 1, 10, 10))
    assert seen == [10]


def test_event_bus_off_and_unknown_type():
    bus = EventBus()
    cb = lambda e: None   # noqa: E731
    bus.on(RunStarted, cb)
    assert bus.off(RunStarted, cb) is True
    assert bus.off(RunStarted, cb) is False
    with pytest.raises(ValueError, match="Unknown event type"):
        bus.on(dict, cb)
