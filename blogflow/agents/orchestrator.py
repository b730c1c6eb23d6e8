"""Stages 1 and 9 — Orchestrator.

Opens the run with a project brief that every later prompt quotes, and
closes it by compiling the most final article into a publication package.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from blogflow.agents.base import StepHandler
from blogflow.agents.reviewer import publication_checklist
from blogflow.context import RunningContext
from blogflow.errors import MissingUpstreamOutput
from blogflow.logging import get_logger
from blogflow.models import BlogInputs
from blogflow.parsing import (
    as_text, count_words, extract_labeled_field, extract_section, keyword_density,
    markdown_headings, parse_list_items, reading_time,
)
from blogflow.stages import STAGES, TOTAL_STEPS, AgentKind, Stage

_log = get_logger("agents.orchestrator")

QUALITY_GATES = {
    Stage.BRAINSTORM.value: "20 heading candidates, 3 introductions, 3 conclusions",
    Stage.OUTLINE.value: "5-10 headings in teaching order",
    Stage.SUBHEADINGS.value: "0-5 sub-headings per section",
    Stage.COMPOSE.value: "keyword density between 0.5% and 2.5%",
    Stage.REVIEW.value: "score of 8/10 or higher for publication readiness",
}

H_POST = "FINAL BLOG POST"
H_META = "METADATA SUMMARY"
H_CHECKLIST = "PUBLICATION CHECKLIST"
H_PREDICTIONS = "PERFORMANCE PREDICTIONS"
PACKAGE_HEADERS = [H_POST, H_META, H_CHECKLIST, H_PREDICTIONS]


class ProjectBriefer(StepHandler):
    stage = Stage.BRIEF
    agent = AgentKind.ORCHESTRATOR
    max_output_tokens = 2000
    temperature = 0.6
    role = "the editorial lead coordinating a team of writing specialists"

    def prep(self, context: RunningContext, inputs: BlogInputs) -> dict[str, Any]:
        inputs = context.effective_inputs(inputs)
        prompt = (
            f"{self.describe_inputs(inputs)}\n\n"
            "Write a project brief the rest of the team will work from. Cover: "
            "the objective of the post, who the reader is and what they already "
            "know, the angle that sets this post apart, 3-5 key messages, how "
            "the keywords should be used, and what a successful post looks like. "
            "Keep it under 400 words."
        )
        return {"prompt": prompt}

    def post(self, context, inputs, prep_result, exec_result) -> dict[str, Any]:
        return {
            "project_brief": as_text(exec_result).strip(),
            "workflow_phase": "initialization",
            "next_steps": [d.label for d in STAGES[context.current_step + 1:]],
            "quality_gates": dict(QUALITY_GATES),
        }


class Compiler(StepHandler):
    stage = Stage.COMPILE
    agent = AgentKind.ORCHESTRATOR
    max_output_tokens = 3000
    temperature = 0.4
    role = "the editorial lead preparing a post for publication"

    def prep(self, context: RunningContext, inputs: BlogInputs) -> dict[str, Any]:
        revised = (context.output(Stage.REVISE) or {}).get("revised_draft")
        draft = (context.output(Stage.COMPOSE) or {}).get("draft")
        content = revised or draft
        if not content:
            raise MissingUpstreamOutput(Stage.COMPILE.value, "revise or compose",
                                        "no article text to compile")
        review = context.output(Stage.REVIEW) or {}
        inputs = context.effective_inputs(inputs)
        prompt = (
            f"{self.describe_inputs(inputs)}\n\n"
            f"ARTICLE:\n{content}\n\n"
            f"REVIEW SUMMARY: {review.get('summary', 'not reviewed')}\n\n"
            "Prepare this article for publication. Fix only typos and markdown "
            "formatting in the article itself. Reply with these sections:\n\n"
            f"**{H_POST}:**\n<the article in markdown>\n\n"
            f"**{H_META}:**\nMETA DESCRIPTION: <max 160 characters>\n"
            "SLUG: <url slug>\nTAGS: <comma-separated>\n\n"
            f"**{H_CHECKLIST}:**\n- <item>\n\n"
            f"**{H_PREDICTIONS}:**\n<short paragraph>"
        )
        return {
            "prompt": prompt,
            "content": content,
            "source": Stage.REVISE.value if revised else Stage.COMPOSE.value,
            "review": review,
            "inputs": inputs,
        }

    def post(self, context, inputs, prep_result, exec_result) -> dict[str, Any]:
        text = as_text(exec_result)
        content = prep_result["content"]
        review = prep_result["review"]
        planned: BlogInputs = prep_result["inputs"]

        def section(header: str) -> str:
            body = extract_section(text, header, [h for h in PACKAGE_HEADERS if h != header])
            return body.lstrip(":* ").strip()

        article = section(H_POST)
        if count_words(article) < count_words(content) // 2:
            _log.warning("compiled article missing or truncated run=%s; using %s output",
                         context.run_id, prep_result["source"])
            article = content

        meta_text = section(H_META)
        words = count_words(article)
        h1 = markdown_headings(article, 1)
        checklist = [{"item": item, "status": "todo"}
                     for item in parse_list_items(section(H_CHECKLIST), min_length=4)]
        if review:
            checklist = publication_checklist(review) + checklist

        metadata = {
            "title": h1[0] if h1 else planned.title,
            "meta_description": extract_labeled_field(meta_text, "META DESCRIPTION", ""),
            "slug": extract_labeled_field(meta_text, "SLUG", ""),
            "tags": [t.strip() for t in
                     (extract_labeled_field(meta_text, "TAGS", "") or "").split(",")
                     if t.strip()],
            "word_count": words,
            "reading_time": reading_time(words),
            "keywords": keyword_density(article, planned.keyword_list),
            "h2_count": len(markdown_headings(article, 2)),
            "review_score": review.get("score"),
            "publication_ready": review.get("publication_ready", False),
        }

        return {
            "article": article,
            "title": metadata["title"],
            "metadata": metadata,
            "publication_checklist": checklist,
            "performance_predictions": section(H_PREDICTIONS),
            "workflow_summary": {
                "total_steps": TOTAL_STEPS,
                "completed_at": datetime.now(timezone.utc).isoformat(),
                "original_inputs": inputs.to_dict(),
                "content_source": prep_result["source"],
                "final_word_count": words,
            },
        }
