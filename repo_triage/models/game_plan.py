"""Game plan: the root aggregate of one triage run.

The plan is created by the plan phase and mutated in place by every later
phase (task status, cached findings, decisions, links). It is persisted as
``triage_game_plan.json`` after each phase and embedded in the checkpoint.

Enum fields parse tolerantly: an unknown ``status`` loads as ``pending`` and
an unknown ``agent`` as ``code_analysis``. Resume relies on this to read
plans written by a different version of the tool.
"""

import os
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from repo_triage.models.decision import TriageDecision, normalize_enum_name
from repo_triage.models.investigation import InvestigationResult


class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class AgentType(str, Enum):
    """Investigation agents, in dispatch order."""

    CODE_ANALYSIS = "code_analysis"
    PR_CORRELATION = "pr_correlation"
    DUPLICATE = "duplicate"
    SENTIMENT = "sentiment"
    CHANGELOG = "changelog"

    @property
    def task_suffix(self) -> str:
        return _TASK_SUFFIXES[self]


_TASK_SUFFIXES = {
    AgentType.CODE_ANALYSIS: "code",
    AgentType.PR_CORRELATION: "prs",
    AgentType.DUPLICATE: "dupes",
    AgentType.SENTIMENT: "sentiment",
    AgentType.CHANGELOG: "changelog",
}

TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED})


class InvalidTransitionError(ValueError):
    """Raised when a task is moved backwards through its lifecycle."""


class TriageTask(BaseModel):
    """One (issue, agent) investigation.

    Lifecycle: ``pending -> running -> completed | failed``. A failed or
    interrupted task may be dispatched again on resume; nothing ever
    returns to ``pending``.
    """

    id: str
    agent: AgentType = AgentType.CODE_ANALYSIS
    status: TaskStatus = TaskStatus.PENDING
    error: str | None = None
    result: InvestigationResult | None = None

    @field_validator("agent", mode="before")
    @classmethod
    def tolerant_agent(cls, value: Any) -> AgentType:
        if isinstance(value, AgentType):
            return value
        try:
            return AgentType(normalize_enum_name(value))
        except ValueError:
            return AgentType.CODE_ANALYSIS

    @field_validator("status", mode="before")
    @classmethod
    def tolerant_status(cls, value: Any) -> TaskStatus:
        if isinstance(value, TaskStatus):
            return value
        try:
            return TaskStatus(str(value).lower())
        except ValueError:
            return TaskStatus.PENDING

    @field_validator("result", mode="before")
    @classmethod
    def drop_unusable_result(cls, value: Any) -> Any:
        return value if isinstance(value, dict | InvestigationResult) else None

    def mark_running(self) -> None:
        if self.status == TaskStatus.COMPLETED:
            raise InvalidTransitionError(f"Task {self.id} is already completed")
        self.status = TaskStatus.RUNNING
        self.error = None

    def mark_completed(self, result: InvestigationResult) -> None:
        if self.status != TaskStatus.RUNNING:
            raise InvalidTransitionError(f"Task {self.id} cannot complete from {self.status.value}")
        self.status = TaskStatus.COMPLETED
        self.error = None
        self.result = result

    def mark_failed(self, error: str, result: InvestigationResult | None = None) -> None:
        if self.status != TaskStatus.RUNNING:
            raise InvalidTransitionError(f"Task {self.id} cannot fail from {self.status.value}")
        self.status = TaskStatus.FAILED
        self.error = error
        self.result = result


class IssuePlan(BaseModel):
    number: int
    title: str = ""
    author: str = "unknown"
    existing_labels: list[str] = Field(default_factory=list)
    tasks: list[TriageTask] = Field(default_factory=list)
    decision: TriageDecision | None = None

    @property
    def investigation_complete(self) -> bool:
        """True iff every task has finished, successfully or not."""
        return all(task.status in TERMINAL_STATUSES for task in self.tasks)

    def find_task(self, task_id: str) -> TriageTask | None:
        return next((t for t in self.tasks if t.id == task_id), None)

    def cached_results(self) -> list[InvestigationResult]:
        return [t.result for t in self.tasks if t.result is not None]


class LinkSpec(BaseModel):
    """A proposed or realized cross-reference.

    ``applied`` covers both links this run created and links that were
    already present.
    """

    source_type: str
    source_id: str
    target_type: str
    target_id: str
    description: str = ""
    applied: bool = False

    @field_validator("source_id", "target_id", mode="before")
    @classmethod
    def coerce_id(cls, value: Any) -> str:
        return str(value)


class GamePlan(BaseModel):
    plan_id: str
    created_at: datetime
    issues: list[IssuePlan] = Field(default_factory=list)
    links_to_create: list[LinkSpec] = Field(default_factory=list)

    @classmethod
    def for_issues(cls, issues: list[dict[str, Any]]) -> "GamePlan":
        """Seed a plan with one task per agent type for every issue.

        The roster is always complete; enablement is applied at dispatch
        time, so tasks of disabled agents simply stay ``pending``.

        Args:
            issues: Dicts with ``number``, ``title``, ``author`` and ``labels``

        Returns:
            New plan, every task ``pending``
        """
        now = datetime.now(UTC)
        plan_id = f"triage-{now.date().isoformat()}-{os.getpid()}_{int(now.timestamp() * 1000)}"
        return cls(
            plan_id=plan_id,
            created_at=now,
            issues=[
                IssuePlan(
                    number=data["number"],
                    title=data.get("title") or "",
                    author=data.get("author") or "unknown",
                    existing_labels=list(data.get("labels") or []),
                    tasks=[
                        TriageTask(id=f"issue-{data['number']}-{agent.task_suffix}", agent=agent)
                        for agent in AgentType
                    ],
                )
                for data in issues
            ],
        )

    @classmethod
    def empty(cls) -> "GamePlan":
        now = datetime.now(UTC)
        return cls(plan_id=f"triage-empty-{int(now.timestamp() * 1000)}", created_at=now)

    @property
    def is_empty(self) -> bool:
        return not self.issues

    @property
    def task_count(self) -> int:
        return sum(len(issue.tasks) for issue in self.issues)

    def find_issue(self, number: int) -> IssuePlan | None:
        return next((i for i in self.issues if i.number == number), None)

    def decisions(self) -> list[TriageDecision]:
        return [i.decision for i in self.issues if i.decision is not None]
