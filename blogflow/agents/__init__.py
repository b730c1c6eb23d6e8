"""Step handlers, one per pipeline stage.

``HANDLERS`` maps each :class:`~blogflow.stages.Stage` to the class that
implements it; the workflow manager builds one instance per stage with
:func:`build_handlers`.
"""

from __future__ import annotations

from blogflow.agents.base import StepHandler
from blogflow.agents.brainstormer import Brainstormer
from blogflow.agents.orchestrator import Compiler, ProjectBriefer
from blogflow.agents.outline import OutlineFinalizer, OutlineSelector
from blogflow.agents.planner import ContentPlanner
from blogflow.agents.reviewer import Reviewer
from blogflow.agents.writer import DraftWriter, Reviser, SubheadingAdvisor
from blogflow.config import BrandProfile
from blogflow.llm import Completion
from blogflow.stages import Stage

HANDLERS: dict[Stage, type[StepHandler]] = {
    Stage.PLAN: ContentPlanner,
    Stage.BRIEF: ProjectBriefer,
    Stage.BRAINSTORM: Brainstormer,
    Stage.OUTLINE: OutlineSelector,
    Stage.SUBHEADINGS: SubheadingAdvisor,
    Stage.FINALIZE: OutlineFinalizer,
    Stage.COMPOSE: DraftWriter,
    Stage.REVIEW: Reviewer,
    Stage.REVISE: Reviser,
    Stage.COMPILE: Compiler,
}


def build_handler(stage: Stage, client: Completion, brand: BrandProfile | None = None) -> StepHandler:
    return HANDLERS[stage](client, brand)


def build_handlers(client: Completion, brand: BrandProfile | None = None) -> dict[Stage, StepHandler]:
    return {stage: cls(client, brand) for stage, cls in HANDLERS.items()}


__all__ = [
    "HANDLERS", "StepHandler", "build_handler", "build_handlers",
    "ContentPlanner", "ProjectBriefer", "Brainstormer", "OutlineSelector",
    "SubheadingAdvisor", "OutlineFinalizer", "DraftWriter", "Reviewer",
    "Reviser", "Compiler",
]
