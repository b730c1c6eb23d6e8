"""Stages 4, 6 and 8 — Content Writer.

- SubheadingAdvisor (4): for each selected heading, 0–5 sub-headings.  Zero
  is the expected answer for a section that stands on its own.
- DraftWriter (6): the full article, body sections before intro/conclusion.
- Reviser (8): rewrites the draft against the reviewer's feedback.
"""

from __future__ import annotations

import re
from typing import Any

from blogflow.agents.base import StepHandler
from blogflow.context import RunningContext
from blogflow.logging import get_logger
from blogflow.models import BlogInputs
from blogflow.parsing import (
    as_text, content_structure, count_words, extract_labeled_field, extract_section,
    keyword_density, parse_list_items, reading_time,
)
from blogflow.stages import AgentKind, Stage

_log = get_logger("agents.writer")

MAX_SUBHEADINGS = 5
_NOT_A_SUBHEADING = re.compile(r"\bh3s?\b|^(recommend|reason|number of)", re.IGNORECASE)


def content_metrics(text: str, keywords: list[str]) -> dict[str, Any]:
    """Word count, reading time, keyword density and structure of *text*."""
    words = count_words(text)
    return {
        "word_count": words,
        "reading_time": reading_time(words),
        "seo_analysis": {
            "word_count": words,
            "keywords": keyword_density(text, keywords),
        },
        "structure": content_structure(text),
    }


def parse_subheadings(text: str, headings: list[str]) -> dict[str, dict[str, Any]]:
    """Per-heading sub-heading lists (at most 5 each) and reasoning."""
    result: dict[str, dict[str, Any]] = {}
    for i, heading in enumerate(headings):
        others = headings[i + 1:] + headings[:i]
        block = extract_section(text, heading, others)
        reasoning = extract_labeled_field(block, "REASONING", "") or ""
        items = [
            item for item in parse_list_items(block, min_length=6)
            if not _NOT_A_SUBHEADING.search(item)
        ]
        if len(items) > MAX_SUBHEADINGS:
            _log.debug("capping %d sub-headings for '%s'", len(items), heading)
        result[heading] = {"items": items[:MAX_SUBHEADINGS], "reasoning": reasoning}
    return result


class SubheadingAdvisor(StepHandler):
    stage = Stage.SUBHEADINGS
    agent = AgentKind.CONTENT_WRITER
    max_output_tokens = 2000
    temperature = 0.6
    role = "a content writer who plans section structure"

    def prep(self, context: RunningContext, inputs: BlogInputs) -> dict[str, Any]:
        headings = context.require(Stage.OUTLINE, "selected_headings")
        inputs = context.effective_inputs(inputs)
        listing = "\n".join(f"- {h}" for h in headings)
        prompt = (
            f"{self.describe_inputs(inputs)}\n\n"
            f"SECTIONS:\n{listing}\n\n"
            "For each section decide whether it needs H3 sub-headings. Most "
            "sections are self-contained and need none; recommend between 0 "
            f"and {MAX_SUBHEADINGS} only where they genuinely help a reader "
            "scan. For every section reply as:\n\n"
            "SECTION: <section heading exactly as given>\n"
            "- <sub-heading>\n"
            "REASONING: <one sentence>\n"
        )
        return {"prompt": prompt, "headings": list(headings)}

    def post(self, context, inputs, prep_result, exec_result) -> dict[str, Any]:
        text = as_text(exec_result)
        advice = parse_subheadings(text, prep_result["headings"])
        return {
            "subheadings": advice,
            "total_subheadings": sum(len(a["items"]) for a in advice.values()),
            "raw_response": text,
        }


class DraftWriter(StepHandler):
    stage = Stage.COMPOSE
    agent = AgentKind.CONTENT_WRITER
    max_output_tokens = 4000
    temperature = 0.7
    role = "a skilled blog writer"

    def prep(self, context: RunningContext, inputs: BlogInputs) -> dict[str, Any]:
        outline = context.require(Stage.FINALIZE, "final_outline")
        selection = context.output(Stage.OUTLINE) or {}
        inputs = context.effective_inputs(inputs)
        prompt = (
            f"{self.describe_inputs(inputs)}\n\n"
            f"PROJECT BRIEF:\n{self.brief(context)}\n\n"
            f"FINAL OUTLINE:\n{outline}\n\n"
            f"INTRODUCTION APPROACH: {selection.get('selected_intro', '')}\n"
            f"CONCLUSION APPROACH: {selection.get('selected_conclusion', '')}\n\n"
            "Write the complete article in markdown following the outline. "
            "Work in this order: draft every body section first, then write the "
            "introduction and conclusion last so they frame what the body "
            "actually says. Present the finished article in reading order "
            "(title, introduction, body, conclusion). Use the keywords "
            "naturally, at roughly 1-2% density. Output only the article."
        )
        return {"prompt": prompt, "keywords": inputs.keyword_list}

    def post(self, context, inputs, prep_result, exec_result) -> dict[str, Any]:
        draft = as_text(exec_result).strip()
        metrics = content_metrics(draft, prep_result["keywords"])
        _log.info("draft written run=%s words=%d reading_time=%dmin",
                  context.run_id, metrics["word_count"], metrics["reading_time"])
        return {"draft": draft, **metrics}


class Reviser(StepHandler):
    stage = Stage.REVISE
    agent = AgentKind.CONTENT_WRITER
    max_output_tokens = 4000
    temperature = 0.6
    role = "a skilled blog writer revising after editorial review"

    def prep(self, context: RunningContext, inputs: BlogInputs) -> dict[str, Any]:
        draft = context.require(Stage.COMPOSE, "draft")
        review = context.require(Stage.REVIEW)
        feedback = review.get("feedback") or context.require(Stage.REVIEW, "feedback")
        priorities = "\n".join(
            f"{i}. {p}" for i, p in enumerate(review.get("revision_priorities") or [], 1)
        ) or "(see feedback)"
        inputs = context.effective_inputs(inputs)
        prompt = (
            f"{self.describe_inputs(inputs)}\n\n"
            f"ORIGINAL DRAFT:\n{draft}\n\n"
            f"REVIEWER FEEDBACK:\n{feedback}\n\n"
            f"REVISION PRIORITIES:\n{priorities}\n\n"
            "Revise the draft to address the feedback, starting with the "
            "priorities. Keep the heading structure and section order. Output "
            "only the revised article in markdown."
        )
        return {"prompt": prompt, "draft": draft, "keywords": inputs.keyword_list}

    def post(self, context, inputs, prep_result, exec_result) -> dict[str, Any]:
        revised = as_text(exec_result).strip()
        before = count_words(prep_result["draft"])
        metrics = content_metrics(revised, prep_result["keywords"])
        after = metrics["word_count"]
        change = after - before
        return {
            "revised_draft": revised,
            "revision_summary": {
                "original_word_count": before,
                "revised_word_count": after,
                "word_change": change,
                "change_percentage": round(change / before * 100, 1) if before else 0.0,
            },
            **metrics,
        }
