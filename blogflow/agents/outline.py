"""Stages 3 and 5 — Outline Writer.

Stage 3 picks 5–10 of the brainstormed headings in teaching order plus one
introduction and one conclusion.  Stage 5 folds the sub-heading advice into
a single markdown outline, which is what the writer follows.
"""

from __future__ import annotations

import re
from typing import Any

from blogflow.agents.base import StepHandler
from blogflow.context import RunningContext
from blogflow.logging import get_logger
from blogflow.models import BlogInputs
from blogflow.parsing import (
    as_text, extract_choice, extract_labeled_field, extract_section, markdown_headings,
)
from blogflow.stages import AgentKind, Stage

_log = get_logger("agents.outline")

MIN_HEADINGS = 5
MAX_HEADINGS = 10
MAX_SUBHEADINGS = 5

_NOT_A_SECTION = re.compile(
    r"^(introduction|conclusion|selected\b.*|reasoning|estimated word count)\b",
    re.IGNORECASE,
)


def estimate_word_count(h2_count: int, h3_count: int) -> int:
    """300 words per H2, 150 per H3, 200 each for intro and conclusion."""
    return h2_count * 300 + h3_count * 150 + 200 + 200


def _numbered(items: list[str]) -> str:
    return "\n".join(f"{i}. {item}" for i, item in enumerate(items, 1)) or "(none)"


def outline_structure(outline: str) -> list[dict[str, Any]]:
    """``[{"heading": str, "subheadings": [str]}]`` from a markdown outline."""
    structure: list[dict[str, Any]] = []
    for line in outline.splitlines():
        h2 = markdown_headings(line, 2)
        if h2:
            structure.append({"heading": h2[0], "subheadings": []})
            continue
        h3 = markdown_headings(line, 3)
        if h3 and structure:
            structure[-1]["subheadings"].append(h3[0])
    return structure


def render_outline(title: str, intro: str, headings: list[str],
                   subheadings: dict[str, dict[str, Any]], conclusion: str) -> str:
    """Markdown outline assembled directly from the stage 3/4 results."""
    lines = [f"# {title}", "", "## Introduction"]
    if intro:
        lines.append(f"Approach: {intro}")
    for heading in headings:
        lines += ["", f"## {heading}"]
        for sub in (subheadings.get(heading) or {}).get("items", []):
            lines.append(f"### {sub}")
    lines += ["", "## Conclusion"]
    if conclusion:
        lines.append(f"Approach: {conclusion}")
    return "\n".join(lines)


def validate_outline(structure: list[dict[str, Any]]) -> list[str]:
    body = [s for s in structure if not _NOT_A_SECTION.match(s["heading"])]
    warnings = []
    if not MIN_HEADINGS <= len(body) <= MAX_HEADINGS:
        warnings.append(
            f"{len(body)} body sections (expected {MIN_HEADINGS}-{MAX_HEADINGS})"
        )
    for s in structure:
        if len(s["subheadings"]) > MAX_SUBHEADINGS:
            warnings.append(f"'{s['heading']}' has {len(s['subheadings'])} sub-headings")
    names = [s["heading"].lower() for s in structure]
    dupes = sorted({n for n in names if names.count(n) > 1})
    if dupes:
        warnings.append(f"duplicate headings: {', '.join(dupes)}")
    return warnings


class OutlineSelector(StepHandler):
    stage = Stage.OUTLINE
    agent = AgentKind.OUTLINE_WRITER
    max_output_tokens = 2500
    temperature = 0.6
    role = "an instructional designer who structures articles for learning"

    def prep(self, context: RunningContext, inputs: BlogInputs) -> dict[str, Any]:
        ideas = context.require(Stage.BRAINSTORM)
        candidates = ideas.get("headings") or []
        if not candidates:
            context.require(Stage.BRAINSTORM, "headings")
        inputs = context.effective_inputs(inputs)
        prompt = (
            f"{self.describe_inputs(inputs)}\n\n"
            f"PROJECT BRIEF:\n{self.brief(context)}\n\n"
            f"CANDIDATE H2 HEADINGS:\n{_numbered(candidates)}\n\n"
            f"INTRODUCTION OPTIONS:\n{_numbered(ideas.get('intro_options') or [])}\n\n"
            f"CONCLUSION OPTIONS:\n{_numbered(ideas.get('conclusion_options') or [])}\n\n"
            f"Choose {MIN_HEADINGS}-{MAX_HEADINGS} of the candidate headings and order "
            "them so each section builds on the one before. Do not include the "
            "introduction or conclusion as headings. Reply in this format:\n\n"
            "## <first heading>\n## <second heading>\n...\n\n"
            "SELECTED INTRODUCTION: <option number>\n"
            "SELECTED CONCLUSION: <option number>\n"
            "REASONING: <why this order teaches well>\n"
            "ESTIMATED WORD COUNT: <number>"
        )
        return {"prompt": prompt, "ideas": ideas}

    def post(self, context, inputs, prep_result, exec_result) -> dict[str, Any]:
        text = as_text(exec_result)
        ideas = prep_result["ideas"]
        candidates = ideas.get("headings") or []
        intros = ideas.get("intro_options") or []
        conclusions = ideas.get("conclusion_options") or []

        headings = [h for h in markdown_headings(text, 2) if not _NOT_A_SECTION.match(h)]
        if not headings:
            lowered = text.lower()
            quoted = [(lowered.find(c.lower()), c) for c in candidates if c.lower() in lowered]
            headings = [c for _, c in sorted(quoted)]
            _log.warning("outline has no '## ' lines run=%s; matched %d candidates",
                         context.run_id, len(headings))
        if not headings:
            headings = candidates[:MAX_HEADINGS]
        if not MIN_HEADINGS <= len(headings) <= MAX_HEADINGS:
            _log.warning("outline selected %d headings run=%s (expected %d-%d)",
                         len(headings), context.run_id, MIN_HEADINGS, MAX_HEADINGS)

        intro = (extract_choice(text, "SELECTED INTRODUCTION", intros)
                 or extract_choice(text, "INTRO", intros)
                 or (intros[0] if intros else ""))
        conclusion = (extract_choice(text, "SELECTED CONCLUSION", conclusions)
                      or extract_choice(text, "CONCLUSION", conclusions)
                      or (conclusions[0] if conclusions else ""))

        reasoning = extract_section(
            text, "REASONING", ["ESTIMATED WORD COUNT", "SELECTED INTRODUCTION",
                                "SELECTED CONCLUSION"]
        ).lstrip(":* ").strip()
        estimate_text = extract_labeled_field(text, "ESTIMATED WORD COUNT", "") or ""
        digits = re.search(r"\d[\d,]*", estimate_text)
        estimated = (int(digits.group().replace(",", "")) if digits
                     else estimate_word_count(len(headings), 0))

        return {
            "selected_headings": headings,
            "selected_intro": intro,
            "selected_conclusion": conclusion,
            "selection_reasoning": reasoning,
            "estimated_word_count": estimated,
            "raw_outline": text,
        }


class OutlineFinalizer(StepHandler):
    stage = Stage.FINALIZE
    agent = AgentKind.OUTLINE_WRITER
    max_output_tokens = 2000
    temperature = 0.5
    role = "an instructional designer who structures articles for learning"

    def prep(self, context: RunningContext, inputs: BlogInputs) -> dict[str, Any]:
        selection = context.require(Stage.OUTLINE)
        headings = context.require(Stage.OUTLINE, "selected_headings")
        advice = context.require(Stage.SUBHEADINGS).get("subheadings") or {}
        inputs = context.effective_inputs(inputs)

        plan_lines = []
        for heading in headings:
            plan_lines.append(f"## {heading}")
            for sub in (advice.get(heading) or {}).get("items", []):
                plan_lines.append(f"### {sub}")
        prompt = (
            f"{self.describe_inputs(inputs)}\n\n"
            f"INTRODUCTION APPROACH: {selection.get('selected_intro', '')}\n"
            f"CONCLUSION APPROACH: {selection.get('selected_conclusion', '')}\n\n"
            f"SECTIONS AND RECOMMENDED SUB-HEADINGS:\n" + "\n".join(plan_lines) + "\n\n"
            "Produce the final outline in markdown: '# ' for the title, '## ' "
            "for Introduction, each section and Conclusion, '### ' for "
            "sub-headings. Keep the section order. Add a one-line note under "
            "each heading saying what it covers. Output only the outline."
        )
        return {"prompt": prompt, "selection": selection, "advice": advice,
                "title": inputs.title}

    def post(self, context, inputs, prep_result, exec_result) -> dict[str, Any]:
        outline = as_text(exec_result).strip()
        if not markdown_headings(outline, 2):
            selection = prep_result["selection"]
            _log.warning("final outline has no sections run=%s; rendering from selection",
                         context.run_id)
            outline = render_outline(
                prep_result["title"],
                selection.get("selected_intro", ""),
                selection.get("selected_headings") or [],
                prep_result["advice"],
                selection.get("selected_conclusion", ""),
            )

        structure = outline_structure(outline)
        h2_count = len(structure)
        h3_count = sum(len(s["subheadings"]) for s in structure)
        warnings = validate_outline(structure)
        for w in warnings:
            _log.warning("outline check run=%s: %s", context.run_id, w)

        return {
            "final_outline": outline,
            "heading_count": h2_count,
            "subheading_count": h3_count,
            "estimated_word_count": estimate_word_count(h2_count, h3_count),
            "structure": structure,
            "warnings": warnings,
        }
