"""Stage 0 — Content Planner.

Fills whichever of title / keywords / context the user left blank.  Fields
the user supplied are passed through untouched, and when nothing is missing
no completion call is made at all.
"""

from __future__ import annotations

from typing import Any

from blogflow.agents.base import StepHandler
from blogflow.context import RunningContext
from blogflow.logging import get_logger
from blogflow.models import BlogInputs
from blogflow.parsing import as_text, extract_labeled_field
from blogflow.stages import AgentKind, Stage

_log = get_logger("agents.planner")

FIELDS = ("title", "keywords", "context")


def analyze_inputs(inputs: BlogInputs) -> dict[str, Any]:
    """Which subject fields were provided and which are blank."""
    values = inputs.to_dict()
    provided = [f for f in FIELDS if str(values[f]).strip()]
    missing = [f for f in FIELDS if f not in provided]
    return {
        "provided": provided,
        "missing": missing,
        "complete": not missing,
        "has_any": bool(provided),
    }


def validate_inputs(inputs: BlogInputs) -> list[str]:
    """Advisory warnings about provided fields.  Blank fields are not flagged."""
    warnings = []
    title = inputs.title.strip()
    if title and len(title) < 10:
        warnings.append("Title is shorter than 10 characters")
    if len(title) > 100:
        warnings.append("Title is longer than 100 characters")
    keywords = inputs.keyword_list
    if keywords and len(keywords) < 2:
        warnings.append("Fewer than 2 keywords given")
    if len(keywords) > 10:
        warnings.append("More than 10 keywords given")
    context = inputs.context.strip()
    if context and len(context) < 20:
        warnings.append("Context is shorter than 20 characters")
    return warnings


_FIELD_HELP = {
    "title": "TITLE: <an engaging, SEO-friendly blog post title>",
    "keywords": "KEYWORDS: <3-6 comma-separated target keywords>",
    "context": "CONTEXT: <one or two sentences on the target audience and angle>",
}


class ContentPlanner(StepHandler):
    stage = Stage.PLAN
    agent = AgentKind.PLANNER
    max_output_tokens = 1500
    temperature = 0.7
    role = "a content strategist who plans blog posts"

    def prep(self, context: RunningContext, inputs: BlogInputs) -> dict[str, Any]:
        analysis = analyze_inputs(inputs)
        warnings = validate_inputs(inputs)
        for w in warnings:
            _log.warning("input warning run=%s: %s", context.run_id, w)

        if analysis["complete"]:
            return {"prompt": None, "analysis": analysis, "warnings": warnings}

        known = "\n".join(
            f"{f.upper()}: {getattr(inputs, f)}" for f in analysis["provided"]
        ) or "(nothing provided)"
        wanted = "\n".join(_FIELD_HELP[f] for f in analysis["missing"])
        prompt = (
            "We are planning a new blog post. The author supplied:\n\n"
            f"{known}\n\n"
            "Fill in ONLY the missing fields below, consistent with what was "
            "supplied and with the brand. Reply with exactly these lines and "
            "nothing else:\n\n"
            f"{wanted}"
        )
        return {"prompt": prompt, "analysis": analysis, "warnings": warnings}

    def post(self, context, inputs, prep_result, exec_result) -> dict[str, Any]:
        analysis = prep_result["analysis"]
        planned = {f: getattr(inputs, f) for f in FIELDS}
        generated = []

        if exec_result is not None:
            text = as_text(exec_result)
            for field in analysis["missing"]:
                value = extract_labeled_field(text, field.upper())
                if value:
                    planned[field] = value
                    generated.append(field)
                else:
                    _log.warning("planner reply has no %s line  run=%s",
                                 field.upper(), context.run_id)

        return {
            **planned,
            "allow_web": inputs.allow_web,
            "provided": analysis["provided"],
            "generated": generated,
            "warnings": prep_result["warnings"],
        }
