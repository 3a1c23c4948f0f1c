"""Triage execution engine.

This package runs the triage pipeline: bounded-concurrency agent execution,
run-scoped artifact storage, the global run lock, phase checkpoints and
the phases themselves.

Key Components:
    - TriagePipeline: Sequences the phases under the run lock
    - TaskExecutor: Runs agent tasks with a slot pool and retry policy
    - ArtifactStore: Atomic JSON artifacts inside one run directory
    - RunLock: Process-identity lock preventing concurrent runs
    - CheckpointStore: Phase checkpoints used by resume
    - AGENT_REGISTRY: Ordered investigation agent definitions

Example:
    >>> from repo_triage.engine.pipeline import TriagePipeline
    >>> pipeline = TriagePipeline(settings, tracker, runner, vcs, repo_root, lock)
    >>> summary = await pipeline.run_single(42)
"""

from repo_triage.engine.artifact_store import ArtifactStore
from repo_triage.engine.checkpoint import CheckpointStore, Phase
from repo_triage.engine.run_lock import RunLock
from repo_triage.engine.task_executor import AgentTask, TaskExecutor, TaskOutcome

__all__ = [
    "AgentTask",
    "ArtifactStore",
    "CheckpointStore",
    "Phase",
    "RunLock",
    "TaskExecutor",
    "TaskOutcome",
]
