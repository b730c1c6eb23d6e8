"""BlogFlow — write one post end to end.

Run:
    export ANTHROPIC_API_KEY=...
    python examples/write_post.py "Improv Skills for Remote Teams"
"""

import sys
from pathlib import Path

from blogflow import (
    BlogInputs, BrandProfile, CompletionClient, JsonRunStore, ProgressUpdate,
    RunCompleted, StepCompleted, WorkflowManager,
)
from blogflow.logging import setup_logging


if __name__ == "__main__":
    title = sys.argv[1] if len(sys.argv) > 1 else "Improv Skills for Remote Teams"
    setup_logging("write_post", log_level="debug")

    manager = WorkflowManager(
        CompletionClient("anthropic"),
        store=JsonRunStore("blogflow_runs"),
        brand=BrandProfile.from_yaml(Path(__file__).with_name("brand.yaml")),
    )
    manager.on(StepCompleted, lambda e: print(f"  ✓ {e.step.name}  ({e.step.duration:.1f}s)"))
    manager.on(ProgressUpdate, lambda e: print(f"    {e.percentage}%"))
    manager.on(RunCompleted, lambda e: print(f"\n{e.artifacts.keys()}"))

    print(f"Writing: {title}")
    run = manager.start(BlogInputs(title=title, keywords="improv, remote teams, communication"))
    print(f"run_id   : {run.run_id}")
    print(f"words    : {run.word_count}")
    print(f"score    : {run.final_output['metadata']['review_score']}")
