"""The fixed ten-stage blog pipeline.

Several stages reuse the same agent for different responsibilities, so the
pipeline is described twice: :class:`AgentKind` names *who* does the work
(and drives model selection), :class:`Stage` names *what* is done at each
position.  ``STAGES`` ties them together in execution order.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class AgentKind(str, Enum):
    PLANNER = "content_planner"
    ORCHESTRATOR = "orchestrator"
    BRAINSTORMER = "brainstormer"
    OUTLINE_WRITER = "outline_writer"
    CONTENT_WRITER = "content_writer"
    REVIEWER = "reviewer"


class Stage(str, Enum):
    PLAN = "plan"
    BRIEF = "brief"
    BRAINSTORM = "brainstorm"
    OUTLINE = "outline"
    SUBHEADINGS = "subheadings"
    FINALIZE = "finalize"
    COMPOSE = "compose"
    REVIEW = "review"
    REVISE = "revise"
    COMPILE = "compile"


@dataclass(frozen=True)
class StageDefinition:
    """One pipeline position.

    Attributes
    ----------
    stage :
        What the step does.
    agent :
        Which agent performs it.
    label :
        Human-readable name shown in events, reports and the CLI.
    """

    stage: Stage
    agent: AgentKind
    label: str


STAGES: tuple[StageDefinition, ...] = (
    StageDefinition(Stage.PLAN, AgentKind.PLANNER, "Content Planning"),
    StageDefinition(Stage.BRIEF, AgentKind.ORCHESTRATOR, "Workflow Orchestration"),
    StageDefinition(Stage.BRAINSTORM, AgentKind.BRAINSTORMER, "Brainstorming"),
    StageDefinition(Stage.OUTLINE, AgentKind.OUTLINE_WRITER, "Outline Creation"),
    StageDefinition(Stage.SUBHEADINGS, AgentKind.CONTENT_WRITER, "H3 Suggestions"),
    StageDefinition(Stage.FINALIZE, AgentKind.OUTLINE_WRITER, "Outline Finalization"),
    StageDefinition(Stage.COMPOSE, AgentKind.CONTENT_WRITER, "Content Writing"),
    StageDefinition(Stage.REVIEW, AgentKind.REVIEWER, "Content Review"),
    StageDefinition(Stage.REVISE, AgentKind.CONTENT_WRITER, "Revision"),
    StageDefinition(Stage.COMPILE, AgentKind.ORCHESTRATOR, "Final Compilation"),
)

TOTAL_STEPS = len(STAGES)


def stage_index(stage: Stage) -> int:
    """Return the pipeline position of *stage*."""
    for i, definition in enumerate(STAGES):
        if definition.stage is stage:
            return i
    raise ValueError(f"Unknown stage: {stage!r}")
