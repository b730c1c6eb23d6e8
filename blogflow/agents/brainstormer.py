"""Stage 2 — Brainstormer.

Asks for 20 heading candidates, 3 introduction approaches and 3 conclusion
approaches in one call.  Short counts are recorded and logged; the stage
never asks twice.
"""

from __future__ import annotations

from typing import Any

from blogflow.agents.base import StepHandler
from blogflow.context import RunningContext
from blogflow.logging import get_logger
from blogflow.models import BlogInputs
from blogflow.parsing import (
    as_text, extract_section, find_near_duplicates, markdown_headings, parse_numbered_list,
)
from blogflow.stages import AgentKind, Stage

_log = get_logger("agents.brainstormer")

TARGET_HEADINGS = 20
TARGET_INTROS = 3
TARGET_CONCLUSIONS = 3

H_HEADINGS = "MAIN H2 HEADINGS"
H_INTROS = "INTRODUCTION OPTIONS"
H_CONCLUSIONS = "CONCLUSION OPTIONS"
_MIN_ITEM = 3


def parse_brainstorm(text: str) -> dict[str, list[str]]:
    """Split a brainstorm reply into its three numbered sections."""
    headings = parse_numbered_list(
        extract_section(text, H_HEADINGS, [H_INTROS, H_CONCLUSIONS]), min_length=_MIN_ITEM
    )
    intros = parse_numbered_list(
        extract_section(text, H_INTROS, [H_CONCLUSIONS, H_HEADINGS]), min_length=_MIN_ITEM
    )
    conclusions = parse_numbered_list(
        extract_section(text, H_CONCLUSIONS, [H_HEADINGS, H_INTROS]), min_length=_MIN_ITEM
    )
    if not headings:
        # no section markers at all: take any markdown or numbered headings
        headings = markdown_headings(text, 2) or parse_numbered_list(text, min_length=_MIN_ITEM)
        headings = headings[:TARGET_HEADINGS]
    return {"headings": headings, "intro_options": intros, "conclusion_options": conclusions}


class Brainstormer(StepHandler):
    stage = Stage.BRAINSTORM
    agent = AgentKind.BRAINSTORMER
    max_output_tokens = 3000
    temperature = 0.8
    role = "a creative content strategist who generates many angles on a topic"

    def prep(self, context: RunningContext, inputs: BlogInputs) -> dict[str, Any]:
        inputs = context.effective_inputs(inputs)
        prompt = (
            f"{self.describe_inputs(inputs)}\n\n"
            f"PROJECT BRIEF:\n{self.brief(context)}\n\n"
            f"Brainstorm {TARGET_HEADINGS} distinct H2 headings for this post, "
            "each one a self-contained teaching point that works the keywords "
            f"in naturally. Then give {TARGET_INTROS} different introduction "
            f"approaches and {TARGET_CONCLUSIONS} different conclusion approaches.\n\n"
            "Use exactly this layout:\n\n"
            f"**{H_HEADINGS}:**\n1. ...\n...\n{TARGET_HEADINGS}. ...\n\n"
            f"**{H_INTROS}:**\n1. ...\n2. ...\n3. ...\n\n"
            f"**{H_CONCLUSIONS}:**\n1. ...\n2. ...\n3. ..."
        )
        return {"prompt": prompt}

    def post(self, context, inputs, prep_result, exec_result) -> dict[str, Any]:
        text = as_text(exec_result)
        parsed = parse_brainstorm(text)

        shortfalls = {}
        for key, target in (("headings", TARGET_HEADINGS),
                            ("intro_options", TARGET_INTROS),
                            ("conclusion_options", TARGET_CONCLUSIONS)):
            got = len(parsed[key])
            if got < target:
                shortfalls[key] = {"expected": target, "found": got}
                _log.warning("brainstorm shortfall run=%s %s=%d/%d",
                             context.run_id, key, got, target)

        duplicates = find_near_duplicates(parsed["headings"])
        if duplicates:
            _log.info("brainstorm near-duplicates run=%s count=%d",
                      context.run_id, len(duplicates))

        return {
            **parsed,
            "shortfalls": shortfalls,
            "duplicates": [list(pair) for pair in duplicates],
            "raw_response": text,
        }
