"""BlogFlow session recorder — step timings, usage statistics and the final report.

The recorder is fed by the workflow manager (``start_step`` /
``complete_step`` / ``fail_step``) and turns the finished run into:

  <slug>.md               the article
  <slug>-metadata.md      human-readable session report
  <slug>-workflow.json    the full run snapshot
  workflow-steps.json     per-step trace (timing, size, model)

File names and contents are plain text; writing them anywhere is the
caller's business.
"""

from __future__ import annotations

import json
import time
from collections.abc import Callable
from datetime import datetime
from typing import Any

from blogflow.logging import get_logger
from blogflow.models import StepStatus, WorkflowRun
from blogflow.parsing import (
    content_structure, count_words, keyword_density, reading_time, slugify,
)
from blogflow.stages import Stage

_log = get_logger("recorder")


def format_duration(ms: float | None) -> str:
    """``"850ms"``, ``"12.3s"`` or ``"4m 5s"``."""
    if ms is None:
        return "-"
    if ms < 1000:
        return f"{round(ms)}ms"
    if ms < 60_000:
        return f"{ms / 1000:.1f}s"
    minutes, seconds = divmod(round(ms / 1000), 60)
    return f"{minutes}m {seconds}s"


def _text_words(value: Any) -> int:
    if isinstance(value, str):
        return count_words(value)
    if isinstance(value, dict):
        return sum(_text_words(v) for v in value.values())
    if isinstance(value, (list, tuple)):
        return sum(_text_words(v) for v in value)
    return 0


def _epoch(iso: str | None) -> float | None:
    return datetime.fromisoformat(iso).timestamp() if iso else None


def final_article(run: WorkflowRun) -> str:
    """Most final article text: compiled, else revised, else first draft."""
    if run.final_output and run.final_output.get("article"):
        return run.final_output["article"]
    by_stage = {s.stage: s.output or {} for s in run.steps}
    return (
        by_stage[Stage.REVISE].get("revised_draft")
        or by_stage[Stage.COMPOSE].get("draft")
        or ""
    )


class SessionRecorder:
    """Collects per-step statistics for one run.

    Parameters
    ----------
    run_id :
        Run being recorded.
    clock :
        Wall-clock source in epoch seconds (``time.time``).
    """

    def __init__(self, run_id: str, clock: Callable[[], float] = time.time):
        self.run_id = run_id
        self._clock = clock
        self.session_start = clock()
        self.steps: dict[int, dict[str, Any]] = {}
        self.quality: dict[str, Any] = {}

    @classmethod
    def from_run(cls, run: WorkflowRun, clock: Callable[[], float] = time.time) -> "SessionRecorder":
        """Recorder pre-filled with the completed steps of a resumed run."""
        rec = cls(run.run_id, clock=clock)
        rec.session_start = _epoch(run.started_at) or rec.session_start
        for step in run.steps:
            if step.status is not StepStatus.COMPLETED:
                continue
            rec.steps[step.index] = {
                "index": step.index,
                "name": step.name,
                "agent": step.agent.value,
                "model": step.model,
                "status": "completed",
                "started": _epoch(step.started_at),
                "ended": _epoch(step.ended_at),
            }
            rec._measure(step.index, step.output or {})
            if step.stage is Stage.REVIEW:
                rec.record_quality_metrics(step.output or {})
        return rec

    # ── Recording ─────────────────────────────────────────────────────────────

    def start_step(self, index: int, name: str, agent: str, model: str | None = None) -> None:
        self.steps[index] = {
            "index": index,
            "name": name,
            "agent": agent,
            "model": model,
            "status": "running",
            "started": self._clock(),
            "ended": None,
        }

    def complete_step(self, index: int, output: dict[str, Any]) -> None:
        entry = self.steps[index]
        entry["status"] = "completed"
        entry["ended"] = self._clock()
        self._measure(index, output)
        _log.debug("step recorded  run=%s  step=%d  words=%d  duration=%s",
                   self.run_id, index, entry["word_count"],
                   format_duration(entry["duration_ms"]))

    def fail_step(self, index: int, error: BaseException | str) -> None:
        entry = self.steps[index]
        entry["status"] = "error"
        entry["ended"] = self._clock()
        entry["error"] = str(error)
        entry["duration_ms"] = (entry["ended"] - entry["started"]) * 1000

    def _measure(self, index: int, output: dict[str, Any]) -> None:
        entry = self.steps[index]
        started, ended = entry.get("started"), entry.get("ended")
        if started is None or ended is None:
            entry["duration_ms"] = None
        else:
            entry["duration_ms"] = (ended - started) * 1000
        entry["output_size"] = len(json.dumps(output, default=str))
        entry["word_count"] = _text_words(output)

    def record_quality_metrics(self, review: dict[str, Any]) -> None:
        self.quality = {
            "review_score": review.get("score", 0.0),
            "publication_ready": bool(review.get("publication_ready")),
            "strengths": len(review.get("strengths") or []),
            "critical_issues": len(review.get("critical_issues") or []),
            "improvements": len(review.get("improvements") or []),
        }

    # ── Reporting ─────────────────────────────────────────────────────────────

    def generate_metadata(self, run: WorkflowRun) -> dict[str, Any]:
        """Session report for *run* as a JSON-serialisable dict."""
        steps = [self.steps[i] for i in sorted(self.steps)]
        timed = [s for s in steps if s.get("duration_ms") is not None]

        model_usage: dict[str, dict[str, Any]] = {}
        for s in steps:
            usage = model_usage.setdefault(
                s.get("model") or "none", {"steps": 0, "agents": [], "duration_ms": 0.0}
            )
            usage["steps"] += 1
            if s["agent"] not in usage["agents"]:
                usage["agents"].append(s["agent"])
            usage["duration_ms"] += s.get("duration_ms") or 0.0

        article = final_article(run)
        words = count_words(article)
        structure = content_structure(article)

        performance: dict[str, Any] = {}
        if timed:
            fastest = min(timed, key=lambda s: s["duration_ms"])
            slowest = max(timed, key=lambda s: s["duration_ms"])
            performance = {
                "average_step_ms": sum(s["duration_ms"] for s in timed) / len(timed),
                "fastest": {"name": fastest["name"], "duration_ms": fastest["duration_ms"]},
                "slowest": {"name": slowest["name"], "duration_ms": slowest["duration_ms"]},
            }

        total_ms = (run.duration or 0.0) * 1000
        return {
            "session": {
                "run_id": run.run_id,
                "title": (run.final_output or {}).get("title") or run.inputs.title,
                "status": run.status.value,
                "started_at": run.started_at,
                "ended_at": run.ended_at,
                "total_duration_ms": total_ms,
                "total_duration": format_duration(total_ms),
            },
            "steps": [
                {
                    "index": s["index"],
                    "name": s["name"],
                    "agent": s["agent"],
                    "model": s.get("model"),
                    "status": s["status"],
                    "duration_ms": s.get("duration_ms"),
                    "output_size": s.get("output_size", 0),
                    "word_count": s.get("word_count", 0),
                }
                for s in steps
            ],
            "model_usage": model_usage,
            "content": {
                "word_count": words,
                "reading_time": reading_time(words),
                "h2_count": structure["h2_count"],
                "h3_count": structure["h3_count"],
                "keywords": keyword_density(article, run.inputs.keyword_list),
            },
            "quality": dict(self.quality),
            "performance": performance,
        }

    @staticmethod
    def render_markdown(meta: dict[str, Any]) -> str:
        session = meta["session"]
        lines = [
            f"# Workflow report: {session['title'] or session['run_id']}",
            "",
            f"- **Run:** {session['run_id']}",
            f"- **Status:** {session['status']}",
            f"- **Started:** {session['started_at']}",
            f"- **Finished:** {session['ended_at'] or '-'}",
            f"- **Total duration:** {session['total_duration']}",
            "",
            "## Steps",
            "",
            "| # | Step | Agent | Model | Status | Duration | Words |",
            "|---|------|-------|-------|--------|----------|-------|",
        ]
        for s in meta["steps"]:
            lines.append(
                f"| {s['index']} | {s['name']} | {s['agent']} | {s['model'] or '-'} "
                f"| {s['status']} | {format_duration(s['duration_ms'])} | {s['word_count']} |"
            )

        lines += ["", "## Model usage", ""]
        for model, usage in meta["model_usage"].items():
            lines.append(
                f"- **{model}**: {usage['steps']} step(s), "
                f"{format_duration(usage['duration_ms'])} ({', '.join(usage['agents'])})"
            )

        content = meta["content"]
        lines += [
            "", "## Content", "",
            f"- Word count: {content['word_count']}",
            f"- Reading time: {content['reading_time']} min",
            f"- Sections: {content['h2_count']} H2 / {content['h3_count']} H3",
        ]
        for kw, info in content["keywords"].items():
            flag = "optimal" if info["optimal"] else "outside target"
            lines.append(f"- Keyword `{kw}`: {info['occurrences']}x, {info['density']}% ({flag})")

        if meta["quality"]:
            q = meta["quality"]
            lines += [
                "", "## Quality", "",
                f"- Review score: {q['review_score']}/10",
                f"- Publication ready: {'yes' if q['publication_ready'] else 'no'}",
                f"- Critical issues: {q['critical_issues']}",
            ]

        if meta["performance"]:
            p = meta["performance"]
            lines += [
                "", "## Performance", "",
                f"- Average step: {format_duration(p['average_step_ms'])}",
                f"- Fastest: {p['fastest']['name']} ({format_duration(p['fastest']['duration_ms'])})",
                f"- Slowest: {p['slowest']['name']} ({format_duration(p['slowest']['duration_ms'])})",
            ]
        return "\n".join(lines) + "\n"

    def build_artifacts(self, run: WorkflowRun) -> dict[str, str]:
        """File name → text for the finished run."""
        meta = self.generate_metadata(run)
        slug = slugify(meta["session"]["title"]) or run.run_id
        steps = [s.to_dict() for s in run.steps]
        return {
            f"{slug}.md": final_article(run),
            f"{slug}-metadata.md": self.render_markdown(meta),
            f"{slug}-workflow.json": run.to_json(),
            "workflow-steps.json": json.dumps(steps, indent=2, ensure_ascii=False, default=str),
        }
