"""Shared fixtures: canned model replies and stub completion clients."""

from collections import Counter

import pytest

from blogflow import BlogInputs, MemoryRunStore, WorkflowManager
from blogflow.stages import Stage

# ── Canned replies, one per stage ─────────────────────────────────────────────

HEADINGS = [
    "Why Saying Yes Changes Meetings",
    "Listening Harder Than You Talk",
    "Turning Mistakes Into Offers",
    "Building Trust Through Shared Scenes",
    "Status Games at the Office",
    "Finding the Game of the Conversation",
    "Staying Present Under Pressure",
    "Making Your Partner Look Good",
    "Specificity Beats Cleverness",
    "Heightening Ideas Together",
    "Reading the Room Like a Performer",
    "Editing Scenes and Meetings",
    "Emotional Honesty at Work",
    "The Power of the Pause",
    "Object Work for Presenters",
    "Callbacks That Build Culture",
    "Group Mind in Remote Teams",
    "Failing Cheerfully",
    "Warmups Before Big Calls",
    "Keeping Improv Habits Alive",
]
INTROS = [
    "Open with a story about a nervous first class",
    "Start with a surprising statistic about meetings",
    "Ask the reader when they last improvised at work",
]
CONCLUSIONS = [
    "Invite readers to a beginner workshop",
    "Summarize the three habits to practise this week",
    "Return to the nervous first-class story",
]
SELECTED = HEADINGS[:6]


def numbered(items):
    return "\n".join(f"{i}. {item}" for i, item in enumerate(items, 1))


BRIEF_TEXT = "Objective: show adults how improv habits make everyday work easier."

BRAINSTORM_TEXT = (
    "Here are my ideas.\n\n"
    f"**MAIN H2 HEADINGS:**\n{numbered(HEADINGS)}\n\n"
    f"**INTRODUCTION OPTIONS:**\n{numbered(INTROS)}\n\n"
    f"**CONCLUSION OPTIONS:**\n{numbered(CONCLUSIONS)}\n"
)

OUTLINE_TEXT = (
    "I picked these because they build on each other.\n\n"
    + "\n".join(f"## {h}" for h in SELECTED)
    + "\n\nSELECTED INTRODUCTION: 2\n"
    "SELECTED CONCLUSION: 3\n"
    "REASONING: Starts with mindset, ends with habits.\n"
    "ESTIMATED WORD COUNT: 2,200\n"
)

SUBHEADINGS_TEXT = "\n\n".join(
    f"SECTION: {h}\n"
    + ("- First practical drill to try\n- Second practical drill to try\n" if i % 2 else "")
    + "REASONING: Keeps the section scannable."
    for i, h in enumerate(SELECTED)
)

FINAL_OUTLINE_TEXT = "# T\n\n## Introduction\n" + "".join(
    f"\n## {h}\n### First practical drill to try\n" for h in SELECTED
) + "\n## Conclusion\n"


def article(words_per_section=60):
    body = " ".join(["improv helps teams communicate"] * (words_per_section // 4))
    parts = ["# T", "", body]
    for h in SELECTED:
        parts += ["", f"## {h}", "", body]
    return "\n".join(parts)


DRAFT_TEXT = article(60)
REVISED_TEXT = article(80)

REVIEW_TEXT = (
    "**OVERALL SCORE:** 8/10\n\n"
    "**STRENGTHS:**\n- Clear structure with practical examples\n- Warm, encouraging tone\n\n"
    "**CRITICAL ISSUES:**\n- The introduction repeats the title twice\n\n"
    "**IMPROVEMENT OPPORTUNITIES:**\n- Add one concrete workplace anecdote\n\n"
    "**SEO RECOMMENDATIONS:**\n- Use the keyword in the first paragraph\n\n"
    "**BRAND ALIGNMENT:** Matches the playful, practical voice.\n\n"
    "**REVISION PRIORITIES:**\n1. Tighten the introduction paragraph\n"
    "2. Add the workplace anecdote to section two\n"
)

COMPILE_TEXT = (
    f"**FINAL BLOG POST:**\n{REVISED_TEXT}\n\n"
    "**METADATA SUMMARY:**\nMETA DESCRIPTION: Improv habits for better teamwork.\n"
    "SLUG: improv-at-work\nTAGS: improv, teams\n\n"
    "**PUBLICATION CHECKLIST:**\n- Add a header image\n- Schedule social posts\n\n"
    "**PERFORMANCE PREDICTIONS:**\nSteady organic traffic from team-building searches.\n"
)

PLAN_TEXT = 'TITLE: "Generated Title For Teams"\nKEYWORDS: improv, teamwork\nCONTEXT: Managers of small teams'

CANNED = {
    Stage.PLAN: PLAN_TEXT,
    Stage.BRIEF: BRIEF_TEXT,
    Stage.BRAINSTORM: BRAINSTORM_TEXT,
    Stage.OUTLINE: OUTLINE_TEXT,
    Stage.SUBHEADINGS: SUBHEADINGS_TEXT,
    Stage.FINALIZE: FINAL_OUTLINE_TEXT,
    Stage.COMPOSE: DRAFT_TEXT,
    Stage.REVIEW: REVIEW_TEXT,
    Stage.REVISE: REVISED_TEXT,
    Stage.COMPILE: COMPILE_TEXT,
}

# Phrase in each stage's user prompt that identifies it.
_MARKERS = [
    (Stage.PLAN, "Fill in ONLY the missing fields"),
    (Stage.BRIEF, "Write a project brief"),
    (Stage.BRAINSTORM, "Brainstorm "),
    (Stage.OUTLINE, "CANDIDATE H2 HEADINGS"),
    (Stage.SUBHEADINGS, "needs H3 sub-headings"),
    (Stage.FINALIZE, "Produce the final outline"),
    (Stage.COMPOSE, "Write the complete article"),
    (Stage.REVIEW, "Review the draft"),
    (Stage.REVISE, "Revise the draft"),
    (Stage.COMPILE, "Prepare this article for publication"),
]


def stage_of(messages):
    prompt = messages[-1]["content"]
    for stage, marker in _MARKERS:
        if marker in prompt:
            return stage
    raise AssertionError(f"unrecognised prompt: {prompt[:80]!r}")


# ── Stub clients ──────────────────────────────────────────────────────────────

class ScriptedClient:
    """Answers each stage with its canned reply and counts calls per stage.

    ``fail`` maps a stage to an exception raised on every call for it;
    ``on_call`` maps a stage to a callback run before replying.
    """

    def __init__(self, replies=None, fail=None, on_call=None):
        self.replies = {**CANNED, **(replies or {})}
        self.fail = dict(fail or {})
        self.on_call = dict(on_call or {})
        self.calls = Counter()
        self.requests = []

    def model_for(self, agent_kind):
        return f"stub-{agent_kind.value}" if agent_kind else "stub"

    def complete(self, messages, *, agent_kind=None, max_output_tokens=4000,
                 temperature=0.7, model=None):
        stage = stage_of(messages)
        self.calls[stage] += 1
        self.requests.append({
            "stage": stage, "agent_kind": agent_kind, "messages": messages,
            "max_output_tokens": max_output_tokens, "temperature": temperature,
        })
        if stage in self.on_call:
            self.on_call[stage]()
        if stage in self.fail:
            raise self.fail[stage]
        return self.replies[stage]


class FixedClient:
    """Returns the same reply to every call."""

    def __init__(self, reply):
        self.reply = reply
        self.calls = 0
        self.messages = []

    def model_for(self, agent_kind):
        return "fixed"

    def complete(self, messages, **kwargs):
        self.calls += 1
        self.messages.append(messages)
        return self.reply


# ── Fixtures ──────────────────────────────────────────────────────────────────

@pytest.fixture
def client():
    return ScriptedClient()


@pytest.fixture
def store():
    return MemoryRunStore()


@pytest.fixture
def manager(client, store):
    return WorkflowManager(client, store=store)


@pytest.fixture
def inputs():
    return BlogInputs(title="T", keywords="a,b", context="adults")


@pytest.fixture(autouse=True)
def _clean_llm_env(monkeypatch):
    for name in ("LLM_MODEL", "LLM_MODEL_ANTHROPIC", "LLM_MODEL_ANTHROPIC_FAST",
                 "LLM_PROVIDER", "LLM_MAX_RETRIES", "LLM_MIN_INTERVAL"):
        monkeypatch.delenv(name, raising=False)


