"""Stage 7 — Reviewer.

Scores the draft and pulls out structured feedback.  The verdict is
advisory: a low score does not stop the revision and compilation stages.
"""

from __future__ import annotations

from typing import Any

from blogflow.agents.base import StepHandler
from blogflow.context import RunningContext
from blogflow.logging import get_logger
from blogflow.models import BlogInputs
from blogflow.parsing import as_text, extract_score, extract_section, parse_list_items
from blogflow.stages import AgentKind, Stage

_log = get_logger("agents.reviewer")

READY_THRESHOLD = 8.0

SECTIONS = {
    "strengths": "STRENGTHS",
    "critical_issues": "CRITICAL ISSUES",
    "improvements": "IMPROVEMENT OPPORTUNITIES",
    "seo_recommendations": "SEO RECOMMENDATIONS",
    "revision_priorities": "REVISION PRIORITIES",
}
ALL_HEADERS = ["OVERALL SCORE", *SECTIONS.values(), "BRAND ALIGNMENT"]


def is_publication_ready(score: float) -> bool:
    return score >= READY_THRESHOLD


def publication_checklist(review: dict[str, Any]) -> list[dict[str, str]]:
    """Deterministic go/no-go items derived from a review result."""
    score = review.get("score", 0.0)
    seo = review.get("seo_recommendations") or []
    critical = review.get("critical_issues") or []
    return [
        {
            "item": f"Quality score at or above {READY_THRESHOLD:g}/10 (scored {score:g})",
            "status": "pass" if is_publication_ready(score) else "needs attention",
        },
        {
            "item": "No critical issues outstanding",
            "status": "pass" if not critical else f"{len(critical)} to confirm fixed",
        },
        {
            "item": "SEO recommendations applied",
            "status": "pass" if not seo else f"{len(seo)} to verify",
        },
        {
            "item": "Brand voice confirmed",
            "status": "pass" if review.get("brand_alignment") else "not assessed",
        },
    ]


def validate_review(review: dict[str, Any]) -> list[str]:
    warnings = []
    if not review.get("score"):
        warnings.append("No score could be extracted")
    if not review.get("strengths"):
        warnings.append("No strengths listed")
    if not review.get("revision_priorities"):
        warnings.append("No revision priorities listed")
    return warnings


class Reviewer(StepHandler):
    stage = Stage.REVIEW
    agent = AgentKind.REVIEWER
    max_output_tokens = 3000
    temperature = 0.5
    role = "a senior editor who reviews drafts before publication"

    def prep(self, context: RunningContext, inputs: BlogInputs) -> dict[str, Any]:
        draft = context.require(Stage.COMPOSE, "draft")
        inputs = context.effective_inputs(inputs)
        prompt = (
            f"{self.describe_inputs(inputs)}\n\n"
            f"PROJECT BRIEF:\n{self.brief(context)}\n\n"
            f"DRAFT:\n{draft}\n\n"
            "Review the draft for clarity, accuracy, structure, SEO and brand "
            "fit. Answer using exactly these sections:\n\n"
            "**OVERALL SCORE:** <1-10>/10\n\n"
            "**STRENGTHS:**\n- ...\n\n"
            "**CRITICAL ISSUES:**\n- ...\n\n"
            "**IMPROVEMENT OPPORTUNITIES:**\n- ...\n\n"
            "**SEO RECOMMENDATIONS:**\n- ...\n\n"
            "**BRAND ALIGNMENT:** <one paragraph>\n\n"
            "**REVISION PRIORITIES:**\n1. ..."
        )
        return {"prompt": prompt}

    def post(self, context, inputs, prep_result, exec_result) -> dict[str, Any]:
        text = as_text(exec_result)
        score = extract_score(text, "OVERALL SCORE")

        review: dict[str, Any] = {"score": score}
        for key, header in SECTIONS.items():
            others = [h for h in ALL_HEADERS if h != header]
            body = extract_section(text, header, others)
            review[key] = parse_list_items(body, min_length=11)
        review["brand_alignment"] = extract_section(
            text, "BRAND ALIGNMENT", [h for h in ALL_HEADERS if h != "BRAND ALIGNMENT"]
        ).lstrip(":* ").strip()

        review["publication_ready"] = is_publication_ready(score)
        review["feedback"] = text.strip()
        review["summary"] = (
            f"Scored {score:g}/10 "
            f"({'ready' if review['publication_ready'] else 'not ready'} for publication); "
            f"{len(review['critical_issues'])} critical issue(s), "
            f"{len(review['revision_priorities'])} revision priorities"
        )
        for w in validate_review(review):
            _log.warning("review shortfall run=%s: %s", context.run_id, w)
        return review
