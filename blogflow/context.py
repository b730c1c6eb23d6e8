"""RunningContext — the read-only view a step gets of everything before it.

Rebuilt by the workflow manager for every step invocation.  It holds deep
copies of the outputs of steps ``0..i-1`` keyed by :class:`Stage`, so a
handler can neither mutate an earlier result nor see a later one.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from dataclasses import dataclass, replace
from types import MappingProxyType
from typing import Any

from blogflow.errors import InvalidTransition, MissingUpstreamOutput
from blogflow.models import BlogInputs, StepStatus, WorkflowRun
from blogflow.stages import STAGES, TOTAL_STEPS, Stage


@dataclass(frozen=True)
class RunningContext:
    run_id: str
    current_step: int
    total_steps: int
    previous_outputs: Mapping[Stage, dict[str, Any]]

    @classmethod
    def from_run(cls, run: WorkflowRun, index: int) -> "RunningContext":
        """Context for step *index* of *run*.

        Raises
        ------
        InvalidTransition
            If any step before *index* is not completed.
        """
        outputs: dict[Stage, dict[str, Any]] = {}
        for step in run.steps[:index]:
            if step.status is not StepStatus.COMPLETED:
                raise InvalidTransition(
                    f"Step {index} cannot run: step {step.index} ({step.name}) "
                    f"is '{step.status.value}'"
                )
            outputs[step.stage] = copy.deepcopy(step.output or {})
        return cls(
            run_id=run.run_id,
            current_step=index,
            total_steps=run.total_steps,
            previous_outputs=MappingProxyType(outputs),
        )

    @classmethod
    def build(cls, outputs: Mapping[Stage, dict[str, Any]] | None = None,
              run_id: str = "adhoc", current_step: int | None = None) -> "RunningContext":
        """Context from explicit outputs (tests, one-off handler calls)."""
        outputs = dict(outputs or {})
        if current_step is None:
            done = [i for i, d in enumerate(STAGES) if d.stage in outputs]
            current_step = max(done) + 1 if done else 0
        return cls(run_id, current_step, TOTAL_STEPS,
                   MappingProxyType(copy.deepcopy(outputs)))

    @property
    def stage(self) -> Stage | None:
        if self.current_step < len(STAGES):
            return STAGES[self.current_step].stage
        return None

    def output(self, stage: Stage) -> dict[str, Any] | None:
        return self.previous_outputs.get(stage)

    def require(self, stage: Stage, key: str | None = None) -> Any:
        """Output of *stage* (or one field of it), else :class:`MissingUpstreamOutput`.

        A field counts as missing when absent, ``None`` or empty.
        """
        current = self.stage.value if self.stage else str(self.current_step)
        out = self.previous_outputs.get(stage)
        if out is None:
            raise MissingUpstreamOutput(current, stage.value)
        if key is None:
            return out
        value = out.get(key)
        if value is None or value == "" or value == [] or value == {}:
            raise MissingUpstreamOutput(current, stage.value, f"field '{key}' is empty")
        return value

    def effective_inputs(self, inputs: BlogInputs) -> BlogInputs:
        """*inputs* with blanks filled by the content planner, if it has run."""
        plan = self.previous_outputs.get(Stage.PLAN)
        if not plan:
            return inputs
        return replace(
            inputs,
            title=inputs.title.strip() or plan.get("title", ""),
            keywords=inputs.keywords.strip() or plan.get("keywords", ""),
            context=inputs.context.strip() or plan.get("context", ""),
        )
