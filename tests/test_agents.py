"""Step handlers in isolation — prompts in, structured outputs out."""

import pytest

from blogflow.agents import (
    Brainstormer, Compiler, ContentPlanner, DraftWriter, OutlineFinalizer, OutlineSelector,
    ProjectBriefer, Reviewer, Reviser, SubheadingAdvisor, build_handlers,
)
from blogflow.agents.outline import estimate_word_count, render_outline
from blogflow.agents.planner import analyze_inputs, validate_inputs
from blogflow.agents.reviewer import is_publication_ready, publication_checklist
from blogflow.agents.writer import parse_subheadings
from blogflow.config import BrandProfile
from blogflow.context import RunningContext
from blogflow.errors import MissingUpstreamOutput
from blogflow.models import BlogInputs
from blogflow.stages import Stage

from conftest import (
    BRAINSTORM_TEXT, COMPILE_TEXT, CONCLUSIONS, DRAFT_TEXT, FINAL_OUTLINE_TEXT, HEADINGS,
    INTROS, OUTLINE_TEXT, REVIEW_TEXT, REVISED_TEXT, SELECTED, SUBHEADINGS_TEXT,
    FixedClient, ScriptedClient,
)

INPUTS = BlogInputs(title="Improv at Work", keywords="improv, teamwork",
                    context="Managers who want livelier meetings")


def _run(handler_cls, reply, outputs=None, inputs=INPUTS, brand=None):
    client = FixedClient(reply)
    handler = handler_cls(client, brand)
    result = handler.execute(RunningContext.build(outputs or {}), inputs)
    return result, client


def _selection(**extra):
    return {
        Stage.OUTLINE: {
            "selected_headings": list(SELECTED),
            "selected_intro": INTROS[1],
            "selected_conclusion": CONCLUSIONS[2],
            **extra,
        }
    }


# ── Content planner ───────────────────────────────────────────────────────────

def test_planner_makes_no_call_when_inputs_complete():
    result, client = _run(ContentPlanner, "unused")
    assert client.calls == 0
    assert result["title"] == INPUTS.title
    assert result["generated"] == []
    assert result["provided"] == ["title", "keywords", "context"]


def test_planner_never_overwrites_provided_fields():
    reply = "TITLE: Something Else\nKEYWORDS: improv, teamwork\nCONTEXT: Managers of small teams"
    result, client = _run(ContentPlanner, reply, inputs=BlogInputs(title="X"))
    assert client.calls == 1
    assert result["title"] == "X"
    assert result["keywords"] == "improv, teamwork"
    assert result["context"] == "Managers of small teams"
    assert result["generated"] == ["keywords", "context"]
    assert "TITLE: X" in client.messages[0][-1]["content"]


def test_planner_leaves_field_blank_when_reply_omits_it():
    result, _ = _run(ContentPlanner, "KEYWORDS: a, b", inputs=BlogInputs(title="Some long title"))
    assert result["context"] == ""
    assert result["generated"] == ["keywords"]


def test_input_analysis_and_warnings():
    analysis = analyze_inputs(BlogInputs(title="Hi", keywords="one"))
    assert analysis["missing"] == ["context"]
    assert analysis["has_any"] and not analysis["complete"]
    warnings = validate_inputs(BlogInputs(title="Hi", keywords="one", context="short"))
    assert len(warnings) == 3
    assert validate_inputs(BlogInputs()) == []


# ── Orchestrator ──────────────────────────────────────────────────────────────

def test_project_brief():
    result, client = _run(ProjectBriefer, "  The brief.  ", outputs={Stage.PLAN: {}})
    assert result["project_brief"] == "The brief."
    assert result["workflow_phase"] == "initialization"
    assert result["next_steps"][0] == "Brainstorming"
    assert len(result["next_steps"]) == 8
    assert "brainstorm" in result["quality_gates"]


def test_brand_profile_reaches_system_prompt():
    brand = BrandProfile(name="Vegas Improv Power", voice=("warm",))
    _, client = _run(ProjectBriefer, "brief", brand=brand)
    system = client.messages[0][0]
    assert system["role"] == "system"
    assert "Vegas Improv Power" in system["content"]
    assert "VOICE: warm" in system["content"]


# ── Brainstormer ──────────────────────────────────────────────────────────────

def test_brainstorm_extracts_all_sections():
    result, _ = _run(Brainstormer, BRAINSTORM_TEXT)
    assert result["headings"] == HEADINGS
    assert result["intro_options"] == INTROS
    assert result["conclusion_options"] == CONCLUSIONS
    assert result["shortfalls"] == {}
    assert result["raw_response"] == BRAINSTORM_TEXT


def test_brainstorm_shortfall_is_recorded_not_retried():
    reply = "**MAIN H2 HEADINGS:**\n1. Only one heading\n\n**INTRODUCTION OPTIONS:**\n1. One intro"
    result, client = _run(Brainstormer, reply)
    assert client.calls == 1
    assert result["headings"] == ["Only one heading"]
    assert result["shortfalls"]["headings"] == {"expected": 20, "found": 1}
    assert result["shortfalls"]["conclusion_options"]["found"] == 0


def test_brainstorm_without_markers_falls_back_to_headings():
    result, _ = _run(Brainstormer, "## First idea\n## Second idea")
    assert result["headings"] == ["First idea", "Second idea"]


# ── Outline ───────────────────────────────────────────────────────────────────

def _ideas():
    return {Stage.BRAINSTORM: {"headings": list(HEADINGS), "intro_options": list(INTROS),
                               "conclusion_options": list(CONCLUSIONS)}}


def test_outline_selection():
    result, _ = _run(OutlineSelector, OUTLINE_TEXT, outputs=_ideas())
    assert result["selected_headings"] == SELECTED
    assert result["selected_intro"] == INTROS[1]
    assert result["selected_conclusion"] == CONCLUSIONS[2]
    assert result["selection_reasoning"] == "Starts with mindset, ends with habits."
    assert result["estimated_word_count"] == 2200


def test_outline_selection_ignores_intro_and_conclusion_headings():
    reply = "## Introduction\n## " + "\n## ".join(SELECTED[:5]) + "\n## Conclusion"
    result, _ = _run(OutlineSelector, reply, outputs=_ideas())
    assert result["selected_headings"] == SELECTED[:5]
    assert result["selected_intro"] == INTROS[0]
    assert result["estimated_word_count"] == estimate_word_count(5, 0)


def test_outline_selection_matches_quoted_candidates():
    reply = f'I would go with "{HEADINGS[3]}" and then "{HEADINGS[1]}".'
    result, _ = _run(OutlineSelector, reply, outputs=_ideas())
    assert result["selected_headings"] == [HEADINGS[3], HEADINGS[1]]


def test_outline_selection_does_not_borrow_the_next_choice():
    reply = ("\n".join(f"## {h}" for h in SELECTED)
             + "\n\nSELECTED INTRODUCTION: the story-led opener\nSELECTED CONCLUSION: 3\n")
    result, _ = _run(OutlineSelector, reply, outputs=_ideas())
    assert result["selected_intro"] == INTROS[0]
    assert result["selected_conclusion"] == CONCLUSIONS[2]


def test_outline_requires_brainstorm():
    with pytest.raises(MissingUpstreamOutput, match="brainstorm"):
        _run(OutlineSelector, OUTLINE_TEXT)
    with pytest.raises(MissingUpstreamOutput, match="headings"):
        _run(OutlineSelector, OUTLINE_TEXT, outputs={Stage.BRAINSTORM: {"headings": []}})


def test_finalize_outline():
    outputs = {**_selection(), Stage.SUBHEADINGS: {"subheadings": {}}}
    result, _ = _run(OutlineFinalizer, FINAL_OUTLINE_TEXT, outputs=outputs)
    assert result["final_outline"] == FINAL_OUTLINE_TEXT.strip()
    assert result["heading_count"] == 8
    assert result["subheading_count"] == 6
    assert result["estimated_word_count"] == estimate_word_count(8, 6)
    assert result["warnings"] == []


def test_finalize_coerces_structured_reply():
    outputs = {**_selection(), Stage.SUBHEADINGS: {"subheadings": {}}}
    reply = {"content": [{"type": "text", "text": FINAL_OUTLINE_TEXT}]}
    result, _ = _run(OutlineFinalizer, reply, outputs=outputs)
    assert isinstance(result["final_outline"], str)
    assert result["final_outline"].startswith("# T")


def test_finalize_renders_outline_when_reply_has_no_sections():
    advice = {SELECTED[0]: {"items": ["Warm-up drill"], "reasoning": ""}}
    outputs = {**_selection(), Stage.SUBHEADINGS: {"subheadings": advice}}
    result, _ = _run(OutlineFinalizer, "Sorry, I cannot help.", outputs=outputs)
    assert result["final_outline"] == render_outline(
        INPUTS.title, INTROS[1], list(SELECTED), advice, CONCLUSIONS[2])
    assert result["subheading_count"] == 1


def test_finalize_requires_subheadings():
    with pytest.raises(MissingUpstreamOutput, match="subheadings"):
        _run(OutlineFinalizer, FINAL_OUTLINE_TEXT, outputs=_selection())


# ── Content writer ────────────────────────────────────────────────────────────

def test_subheading_advice_from_canned_reply():
    result, _ = _run(SubheadingAdvisor, SUBHEADINGS_TEXT, outputs=_selection())
    advice = result["subheadings"]
    assert set(advice) == set(SELECTED)
    assert advice[SELECTED[0]]["items"] == []
    assert advice[SELECTED[1]]["items"] == ["First practical drill to try",
                                            "Second practical drill to try"]
    assert advice[SELECTED[1]]["reasoning"] == "Keeps the section scannable."
    assert result["total_subheadings"] == 6


def test_subheadings_are_capped_at_five():
    bullets = "\n".join(f"- Practical sub-point number {i}" for i in range(1, 9))
    advice = parse_subheadings(f"{SELECTED[0]}\n{bullets}", [SELECTED[0]])
    assert len(advice[SELECTED[0]]["items"]) == 5


def test_subheadings_require_outline():
    with pytest.raises(MissingUpstreamOutput):
        _run(SubheadingAdvisor, SUBHEADINGS_TEXT, outputs={Stage.OUTLINE: {}})


def test_draft_metrics():
    draft = "# T\n\n" + " ".join(["improv"] * 4 + ["word"] * 395)
    outputs = {**_selection(), Stage.FINALIZE: {"final_outline": FINAL_OUTLINE_TEXT}}
    result, client = _run(DraftWriter, draft, outputs=outputs)
    assert result["draft"] == draft
    assert result["word_count"] == 401
    assert result["reading_time"] == 3
    assert result["seo_analysis"]["keywords"]["improv"]["occurrences"] == 4
    assert FINAL_OUTLINE_TEXT in client.messages[0][-1]["content"]


def test_draft_requires_final_outline():
    with pytest.raises(MissingUpstreamOutput, match="finalize"):
        _run(DraftWriter, DRAFT_TEXT, outputs=_selection())


def test_revision_summary():
    outputs = {Stage.COMPOSE: {"draft": DRAFT_TEXT},
               Stage.REVIEW: {"feedback": REVIEW_TEXT, "revision_priorities": ["Tighten intro"]}}
    result, client = _run(Reviser, REVISED_TEXT, outputs=outputs)
    summary = result["revision_summary"]
    assert result["revised_draft"] == REVISED_TEXT
    assert summary["revised_word_count"] > summary["original_word_count"]
    assert summary["word_change"] == summary["revised_word_count"] - summary["original_word_count"]
    assert "1. Tighten intro" in client.messages[0][-1]["content"]


def test_revision_requires_review_feedback():
    with pytest.raises(MissingUpstreamOutput, match="review"):
        _run(Reviser, REVISED_TEXT, outputs={Stage.COMPOSE: {"draft": DRAFT_TEXT}})


# ── Reviewer ──────────────────────────────────────────────────────────────────

def _review(reply):
    result, _ = _run(Reviewer, reply, outputs={Stage.COMPOSE: {"draft": DRAFT_TEXT}})
    return result


def test_review_parses_sections():
    review = _review(REVIEW_TEXT)
    assert review["score"] == 8.0
    assert review["publication_ready"] is True
    assert review["strengths"] == ["Clear structure with practical examples",
                                   "Warm, encouraging tone"]
    assert review["critical_issues"] == ["The introduction repeats the title twice"]
    assert review["revision_priorities"] == ["Tighten the introduction paragraph",
                                             "Add the workplace anecdote to section two"]
    assert review["brand_alignment"] == "Matches the playful, practical voice."
    assert review["feedback"] == REVIEW_TEXT.strip()


def test_review_readiness_threshold():
    assert _review("OVERALL SCORE: 7.9/10")["publication_ready"] is False
    unparseable = _review("A lovely piece, no notes.")
    assert unparseable["score"] == 0.0
    assert unparseable["publication_ready"] is False
    assert is_publication_ready(8.0) and not is_publication_ready(7.99)


def test_review_reads_score_under_markdown_heading():
    review = _review("## OVERALL SCORE\n\n8/10\n\n## STRENGTHS\n- Vivid examples\n")
    assert review["score"] == 8.0
    assert review["publication_ready"] is True


def test_publication_checklist_from_review():
    items = publication_checklist({"score": 6.0, "critical_issues": ["a"],
                                   "seo_recommendations": [], "brand_alignment": ""})
    statuses = [i["status"] for i in items]
    assert statuses == ["needs attention", "1 to confirm fixed", "pass", "not assessed"]


# ── Compiler ──────────────────────────────────────────────────────────────────

def test_compile_uses_revision_and_builds_package():
    outputs = {Stage.COMPOSE: {"draft": DRAFT_TEXT},
               Stage.REVIEW: {"score": 8.0, "publication_ready": True, "summary": "ok"},
               Stage.REVISE: {"revised_draft": REVISED_TEXT}}
    result, _ = _run(Compiler, COMPILE_TEXT, outputs=outputs)
    assert result["article"] == REVISED_TEXT
    assert result["title"] == "T"
    meta = result["metadata"]
    assert meta["slug"] == "improv-at-work"
    assert meta["tags"] == ["improv", "teams"]
    assert meta["meta_description"] == "Improv habits for better teamwork."
    assert meta["review_score"] == 8.0
    assert meta["h2_count"] == len(SELECTED)
    assert result["workflow_summary"]["content_source"] == "revise"
    assert {"item": "Add a header image", "status": "todo"} in result["publication_checklist"]
    assert result["performance_predictions"].startswith("Steady organic traffic")


def test_compile_falls_back_to_draft_and_to_source_text():
    result, _ = _run(Compiler, "Looks good!", outputs={Stage.COMPOSE: {"draft": DRAFT_TEXT}})
    assert result["article"] == DRAFT_TEXT
    assert result["workflow_summary"]["content_source"] == "compose"
    assert result["metadata"]["publication_ready"] is False


def test_compile_requires_some_article():
    with pytest.raises(MissingUpstreamOutput, match="revise or compose"):
        _run(Compiler, COMPILE_TEXT, outputs={Stage.REVIEW: {"score": 9}})


# ── Registry ──────────────────────────────────────────────────────────────────

def test_build_handlers_covers_every_stage():
    handlers = build_handlers(ScriptedClient())
    assert list(handlers) == list(Stage)
    assert all(h.stage is s for s, h in handlers.items())
