"""StepHandler — the nano-ETL unit behind every pipeline stage.

Every handler is a three-phase unit:

    prep(context, inputs)             → Extract: read upstream outputs, render the prompt
    exec(prep_result)                 → Transform: one completion call (or none)
    post(context, inputs, prep, raw)  → Load: parse the reply into a result dict

:meth:`StepHandler.execute` runs the three phases and is the only method the
workflow manager calls.

``prep`` raises :class:`~blogflow.errors.MissingUpstreamOutput` when a
required earlier result is absent.  ``post`` never raises on odd model text:
it degrades to partial lists, defaults and a logged warning.

Retry lives in the completion client, not here: a failed ``exec`` fails the
step.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from typing import Any

from blogflow.config import BrandProfile
from blogflow.context import RunningContext
from blogflow.llm import Completion
from blogflow.logging import get_logger
from blogflow.models import BlogInputs
from blogflow.stages import AgentKind, Stage

_log = get_logger("agents")


class StepHandler(ABC):
    """Base class for the ten stage handlers.

    Attributes
    ----------
    stage, agent :
        Pipeline position handled and the agent that owns it.
    max_output_tokens, temperature :
        Generation budget for the single completion call.
    role :
        One-line description of the agent, used in the system prompt.
    """

    stage: Stage
    agent: AgentKind
    max_output_tokens: int = 2000
    temperature: float = 0.7
    role: str = "a professional content specialist"

    def __init__(self, client: Completion, brand: BrandProfile | None = None):
        self.client = client
        self.brand = brand or BrandProfile()
        self.name = self.__class__.__name__

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    @abstractmethod
    def prep(self, context: RunningContext, inputs: BlogInputs) -> dict[str, Any]:
        """Return at least ``{"prompt": str | None}``.  ``None`` skips the call."""

    def exec(self, prep_result: dict[str, Any]) -> Any:
        prompt = prep_result.get("prompt")
        if prompt is None:
            return None
        return self.client.complete(
            [
                {"role": "system", "content": self.system_prompt()},
                {"role": "user", "content": prompt},
            ],
            agent_kind=self.agent,
            max_output_tokens=self.max_output_tokens,
            temperature=self.temperature,
        )

    @abstractmethod
    def post(
        self,
        context: RunningContext,
        inputs: BlogInputs,
        prep_result: dict[str, Any],
        exec_result: Any,
    ) -> dict[str, Any]:
        """Parse *exec_result* into this stage's structured output."""

    def execute(self, context: RunningContext, inputs: BlogInputs) -> dict[str, Any]:
        """prep → exec → post.  Returns the stage output."""
        t0 = time.time()
        _log.info("→ %s starting  run=%s  step=%d", self.name, context.run_id,
                  context.current_step)
        prep_result = self.prep(context, inputs)
        exec_result = self.exec(prep_result)
        result = self.post(context, inputs, prep_result, exec_result)
        _log.info("← %s done  run=%s  keys=%s  %.2fs", self.name, context.run_id,
                  sorted(result), time.time() - t0)
        return result

    # ── Prompt helpers ────────────────────────────────────────────────────────

    def system_prompt(self) -> str:
        return (
            f"You are {self.role} working on the blog of {self.brand.name}.\n\n"
            f"{self.brand.render()}\n\n"
            "Follow the requested output format exactly."
        )

    @staticmethod
    def brief(context: RunningContext) -> str:
        """Project brief from the orchestrator, or ``""`` before it exists."""
        return (context.output(Stage.BRIEF) or {}).get("project_brief", "")

    @staticmethod
    def describe_inputs(inputs: BlogInputs) -> str:
        return (
            f"TITLE: {inputs.title}\n"
            f"KEYWORDS: {inputs.keywords}\n"
            f"AUDIENCE / CONTEXT: {inputs.context}\n"
            f"WEB RESEARCH ALLOWED: {'yes' if inputs.allow_web else 'no'}"
        )
