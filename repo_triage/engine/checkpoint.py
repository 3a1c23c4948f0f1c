"""
Phase checkpoints for resumable runs.

A checkpoint is written after every completed phase::

    {
        "last_completed_phase": "investigate",
        "game_plan": {...},
        "saved_at": "2026-01-15T10:30:00+00:00"
    }

Resume re-enters the pipeline at ``last_completed_phase.next()``.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

import structlog
from pydantic import BaseModel, Field, field_validator

from repo_triage.engine.artifact_store import CHECKPOINT, ArtifactStore
from repo_triage.exceptions import ArtifactError
from repo_triage.models.game_plan import GamePlan

log = structlog.get_logger(__name__)


class Phase(str, Enum):
    """Triage pipeline phases, in execution order."""

    PLAN = "plan"
    INVESTIGATE = "investigate"
    ACT = "act"
    VERIFY = "verify"
    LINK = "link"
    CROSS_REPO_LINK = "cross_repo_link"

    @property
    def order(self) -> int:
        return list(Phase).index(self)

    def next(self) -> "Phase | None":
        phases = list(Phase)
        return phases[self.order + 1] if self.order + 1 < len(phases) else None

    def covers(self, other: "Phase") -> bool:
        """Whether a run whose last completed phase is ``self`` has finished ``other``."""
        return self.order >= other.order


class Checkpoint(BaseModel):
    last_completed_phase: Phase
    game_plan: GamePlan
    saved_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @field_validator("last_completed_phase", mode="before")
    @classmethod
    def tolerant_phase(cls, value: Any) -> Phase:
        if isinstance(value, Phase):
            return value
        # Older runs called the last phase "cross_repo"
        text = str(value)
        if text == "cross_repo":
            return Phase.CROSS_REPO_LINK
        try:
            return Phase(text)
        except ValueError:
            return Phase.PLAN


class CheckpointStore:
    """Reads and writes ``checkpoint.json`` in a run directory."""

    def __init__(self, store: ArtifactStore) -> None:
        self.store = store

    async def save(self, plan: GamePlan, phase: Phase) -> Checkpoint:
        checkpoint = Checkpoint(last_completed_phase=phase, game_plan=plan)
        await self.store.write_json(CHECKPOINT, checkpoint)
        log.info("checkpoint_saved", phase=phase.value, plan_id=plan.plan_id)
        return checkpoint

    async def load(self) -> Checkpoint:
        """Load the run's checkpoint.

        Raises:
            ArtifactError: If no checkpoint exists or it cannot be parsed
        """
        data = await self.store.read_json(CHECKPOINT)
        if data is None:
            raise ArtifactError(
                f"No checkpoint found for run {self.store.run_id}",
                path=str(self.store.path(CHECKPOINT)),
            )
        try:
            return Checkpoint.model_validate(data)
        except ValueError as e:
            raise ArtifactError(f"Invalid checkpoint for run {self.store.run_id}: {e}") from e
