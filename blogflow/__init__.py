"""BlogFlow — a resumable, event-driven ten-stage LLM pipeline for blog posts.

Every stage is a nano-ETL unit  →  prep | exec | post
stages run strictly in order     →  each reads only what came before it
the run is snapshotted after every step  →  cancel, crash, resume

Public API
----------
from blogflow import WorkflowManager, CompletionClient, BlogInputs, BrandProfile
"""

from blogflow.config   import BrandProfile, Settings
from blogflow.errors   import (
    AuthenticationError, BlogflowError, CompletionError, MissingUpstreamOutput,
    WorkflowAlreadyCompleted, WorkflowNotFound,
)
from blogflow.events   import (
    ProgressUpdate, RunCancelled, RunCompleted, RunError, RunStarted,
    StepCompleted, StepError, StepStarted,
)
from blogflow.llm      import CompletionClient
from blogflow.models   import BlogInputs, RunStatus, StepStatus, WorkflowRun
from blogflow.runner   import CancellationToken, RunHandle
from blogflow.stages   import STAGES, AgentKind, Stage
from blogflow.storage  import JsonRunStore, MemoryRunStore, SQLiteRunStore, open_store
from blogflow.workflow import WorkflowManager

__all__ = [
    "WorkflowManager", "CompletionClient", "BlogInputs", "BrandProfile", "Settings",
    "WorkflowRun", "RunStatus", "StepStatus", "Stage", "AgentKind", "STAGES",
    "CancellationToken", "RunHandle",
    "JsonRunStore", "MemoryRunStore", "SQLiteRunStore", "open_store",
    "RunStarted", "StepStarted", "StepCompleted", "StepError", "ProgressUpdate",
    "RunCompleted", "RunError", "RunCancelled",
    "BlogflowError", "CompletionError", "AuthenticationError",
    "MissingUpstreamOutput", "WorkflowNotFound", "WorkflowAlreadyCompleted",
]
__version__ = "0.1.0"
