"""
Base class for triage pipeline phases.

Phase Lifecycle:
    Phases are instantiated once per run by the pipeline and receive the
    shared resources they operate on:

    1. Instantiation: Phase receives tracker, settings, store and repo root
    2. Execution: the phase's entry point is called with the game plan
    3. Persistence: the phase writes its own artifact into the run directory

Phase Responsibilities:
    Each phase implementation is responsible for:
    - Reading its inputs from the game plan (never from tracker listings)
    - Guarding every tracker mutation so a re-run does not duplicate it
    - Recording per-item failures on the item instead of raising

Interaction with the Pipeline:
    The pipeline decides which failures halt the run. Investigate and act
    failures stop the run after a checkpoint; verify and link failures are
    logged and the run continues.
"""

from pathlib import Path

import structlog

from repo_triage.config.settings import TriageSettings
from repo_triage.engine.artifact_store import ArtifactStore
from repo_triage.providers.base import IssueTracker

log = structlog.get_logger(__name__)


class TriagePhase:
    """Shared state for all triage phases.

    Attributes:
        tracker: Issue tracker used for reads and idempotent mutations.
        settings: Read-only configuration snapshot.
        store: Artifact store of the current run.
        repo_root: Checkout of the repository under triage.
    """

    name = "phase"

    def __init__(
        self,
        tracker: IssueTracker,
        settings: TriageSettings,
        store: ArtifactStore,
        repo_root: Path,
    ) -> None:
        self.tracker = tracker
        self.settings = settings
        self.store = store
        self.repo_root = Path(repo_root)

    @property
    def repo(self) -> str:
        return self.settings.repository.full_name

    def signature(self, issue_number: int) -> str:
        """Hidden marker embedded in every comment this run posts on an issue."""
        return f"<!-- triage-bot:{self.store.run_id}:{issue_number} -->"
