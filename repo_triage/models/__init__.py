"""Data models for the triage pipeline.

All persisted artifacts are pydantic models with snake_case JSON keys.
Agent output and older artifacts are validated here, at the boundary, so
the engine only ever handles typed objects.

Key Components:
    - GamePlan / IssuePlan / TriageTask: run aggregate and task lifecycle
    - InvestigationResult / RelatedEntity: per-agent findings
    - TriageDecision / TriageAction: aggregated decision and its actions
    - VerificationReport: post-act tracker snapshot
    - IssueManifest: release correlation output
"""

from repo_triage.models.decision import (
    ActionType,
    RiskLevel,
    TriageAction,
    TriageDecision,
    aggregate_confidence,
)
from repo_triage.models.game_plan import (
    AgentType,
    GamePlan,
    InvalidTransitionError,
    IssuePlan,
    LinkSpec,
    TaskStatus,
    TriageTask,
)
from repo_triage.models.investigation import InvestigationResult, RelatedEntity
from repo_triage.models.manifest import IssueManifest, ManifestIssue, MonitoredError
from repo_triage.models.verification import IssueVerification, VerificationCheck, VerificationReport

__all__ = [
    "ActionType",
    "AgentType",
    "GamePlan",
    "InvalidTransitionError",
    "InvestigationResult",
    "IssueManifest",
    "IssuePlan",
    "IssueVerification",
    "LinkSpec",
    "ManifestIssue",
    "MonitoredError",
    "RelatedEntity",
    "RiskLevel",
    "TaskStatus",
    "TriageAction",
    "TriageDecision",
    "TriageTask",
    "VerificationCheck",
    "VerificationReport",
    "aggregate_confidence",
]
