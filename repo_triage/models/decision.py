"""Aggregated triage decisions.

``TriageDecision.from_results`` is the single place where agent findings
are turned into tracker actions. It is a pure function of the findings and
the configured thresholds: the same inputs always produce the same
decision, which is what makes a resumed run equivalent to an uninterrupted
one.

Aggregation:
    aggregate = clamp(mean(confidence) + 0.05 * max(0, high - 1), 0, 1)

    where ``high`` counts findings with confidence >= 0.7. Downstream
    thresholds are tuned against this exact shape.

Tiers (evaluated high to low):
    >= auto_close     risk high, detailed comment and close
    >= suggest_close  risk medium, comment suggesting closure
    >= comment        risk low, informational comment
    otherwise         risk low, needs-investigation label
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from repo_triage.config.settings import ThresholdsConfig
from repo_triage.models.investigation import InvestigationResult

HIGH_CONFIDENCE = 0.7
AGREEMENT_BOOST = 0.05
PR_LINK_RELEVANCE = 0.6
ISSUE_LINK_RELEVANCE = 0.7


def normalize_enum_name(value: Any) -> str:
    """Accept ``linkPr`` as well as ``link_pr`` from older artifacts."""
    text = value.value if isinstance(value, Enum) else str(value)
    return "".join(f"_{c.lower()}" if c.isupper() else c for c in text).lstrip("_")


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ActionType(str, Enum):
    LABEL = "label"
    COMMENT = "comment"
    CLOSE = "close"
    LINK_PR = "link_pr"
    LINK_ISSUE = "link_issue"
    NONE = "none"


class TriageAction(BaseModel):
    """One tracker mutation derived from a decision.

    ``executed`` is owned by the action executor and ``verified`` by the
    verifier. An action can be executed and still fail verification.
    """

    type: ActionType = ActionType.NONE
    description: str = ""
    parameters: dict[str, Any] = Field(default_factory=dict)
    executed: bool = False
    verified: bool = False
    error: str | None = None

    @field_validator("type", mode="before")
    @classmethod
    def tolerant_type(cls, value: Any) -> ActionType:
        if isinstance(value, ActionType):
            return value
        # Unknown action types degrade to NONE so older or newer plans still load
        try:
            return ActionType(normalize_enum_name(value))
        except ValueError:
            return ActionType.NONE


class TriageDecision(BaseModel):
    """Aggregated outcome for one issue."""

    issue_number: int
    aggregate_confidence: float = 0.0
    risk_level: RiskLevel = RiskLevel.LOW
    rationale: str = ""
    actions: list[TriageAction] = Field(default_factory=list)
    investigation_results: list[InvestigationResult] = Field(default_factory=list)

    @field_validator("risk_level", mode="before")
    @classmethod
    def tolerant_risk(cls, value: Any) -> RiskLevel:
        if isinstance(value, RiskLevel):
            return value
        try:
            return RiskLevel(str(value).lower())
        except ValueError:
            return RiskLevel.LOW

    def actions_of(self, action_type: ActionType) -> list[TriageAction]:
        return [a for a in self.actions if a.type == action_type]

    @property
    def expected_labels(self) -> list[str]:
        labels: list[str] = []
        for action in self.actions_of(ActionType.LABEL):
            for label in action.parameters.get("labels", []):
                if label not in labels:
                    labels.append(label)
        return labels

    @classmethod
    def from_results(
        cls,
        issue_number: int,
        results: list[InvestigationResult],
        thresholds: ThresholdsConfig,
        needs_investigation_label: str = "needs-investigation",
    ) -> "TriageDecision":
        """Aggregate agent findings into a decision.

        Args:
            issue_number: Issue the findings belong to
            results: One finding per agent, failed findings included
            thresholds: Configured auto-close / suggest-close / comment levels
            needs_investigation_label: Label applied when confidence is too low

        Returns:
            Decision with an ordered action list: recommended labels first,
            then the tier action(s), then link actions
        """
        if not results:
            return cls(
                issue_number=issue_number,
                aggregate_confidence=0.0,
                risk_level=RiskLevel.LOW,
                rationale="No investigation results available.",
                actions=[_needs_investigation(needs_investigation_label)],
            )

        aggregate = aggregate_confidence([r.confidence for r in results])

        actions: list[TriageAction] = []
        labels: list[str] = []
        for result in results:
            for label in result.recommended_labels:
                if label not in labels:
                    labels.append(label)
        if labels:
            actions.append(
                TriageAction(
                    type=ActionType.LABEL,
                    description=f"Apply recommended labels: {', '.join(labels)}",
                    parameters={"labels": labels},
                )
            )

        if aggregate >= thresholds.auto_close:
            risk = RiskLevel.HIGH
            close_source = next((r for r in results if r.suggest_close), results[0])
            actions.append(
                TriageAction(
                    type=ActionType.COMMENT,
                    description="Post detailed findings comment",
                    parameters={"body": build_close_comment(results, aggregate)},
                )
            )
            actions.append(
                TriageAction(
                    type=ActionType.CLOSE,
                    description=f"Auto-close with high confidence ({aggregate:.0%})",
                    parameters={
                        "state": "closed",
                        "state_reason": close_source.close_reason or "completed",
                    },
                )
            )
        elif aggregate >= thresholds.suggest_close:
            risk = RiskLevel.MEDIUM
            actions.append(
                TriageAction(
                    type=ActionType.COMMENT,
                    description="Post findings and suggest closure",
                    parameters={"body": build_suggest_comment(results, aggregate)},
                )
            )
        elif aggregate >= thresholds.comment:
            risk = RiskLevel.LOW
            actions.append(
                TriageAction(
                    type=ActionType.COMMENT,
                    description="Post informational findings",
                    parameters={"body": build_info_comment(results)},
                )
            )
        else:
            risk = RiskLevel.LOW
            actions.append(_needs_investigation(needs_investigation_label))

        actions.extend(_link_actions(results))

        rationale = [
            f"Aggregate confidence: {aggregate * 100:.1f}%",
            f"Results from {len(results)} agents:",
        ]
        rationale.extend(f"  - {r.agent_id}: {r.confidence:.0%} -- {r.summary}" for r in results)

        return cls(
            issue_number=issue_number,
            aggregate_confidence=aggregate,
            risk_level=risk,
            rationale="\n".join(rationale) + "\n",
            actions=actions,
            investigation_results=list(results),
        )


def aggregate_confidence(confidences: list[float]) -> float:
    """Mean confidence plus the agreement boost, clamped to [0, 1]."""
    if not confidences:
        return 0.0
    mean = sum(confidences) / len(confidences)
    high = sum(1 for c in confidences if c >= HIGH_CONFIDENCE)
    boost = AGREEMENT_BOOST * max(0, high - 1)
    return min(max(mean + boost, 0.0), 1.0)


def _needs_investigation(label: str) -> TriageAction:
    return TriageAction(
        type=ActionType.LABEL,
        description=f"Add {label} label",
        parameters={"labels": [label]},
    )


def _link_actions(results: list[InvestigationResult]) -> list[TriageAction]:
    actions: list[TriageAction] = []
    seen: set[tuple[ActionType, str]] = set()
    for result in results:
        for entity in result.related_entities:
            if not entity.id:
                continue
            if entity.type == "pr" and entity.relevance >= PR_LINK_RELEVANCE:
                key = (ActionType.LINK_PR, entity.id)
                action = TriageAction(
                    type=ActionType.LINK_PR,
                    description=f"Link to related PR #{entity.id}",
                    parameters={"pr_number": entity.id},
                )
            elif entity.type == "issue" and entity.relevance >= ISSUE_LINK_RELEVANCE:
                key = (ActionType.LINK_ISSUE, entity.id)
                action = TriageAction(
                    type=ActionType.LINK_ISSUE,
                    description=f"Link to related issue #{entity.id}",
                    parameters={"issue_number": entity.id},
                )
            else:
                continue
            if key not in seen:
                seen.add(key)
                actions.append(action)
    return actions


# Comment builders


def build_close_comment(results: list[InvestigationResult], confidence: float) -> str:
    lines = [
        "## Automated Triage: Resolved",
        "",
        "Our automated triage has analyzed this issue with "
        f"**{confidence:.0%} confidence** that it has been resolved.",
        "",
        "### Investigation Summary",
    ]
    lines.extend(f"- **{r.agent_id}** ({r.confidence:.0%}): {r.summary}" for r in results if r.summary)

    related_prs = [e for r in results for e in r.related_entities if e.type == "pr"]
    if related_prs:
        lines.extend(["", "### Related Pull Requests"])
        lines.extend(f"- #{pr.id}: {pr.description}" for pr in related_prs)

    lines.extend(["", "If this was closed in error, please reopen and we will re-investigate."])
    return "\n".join(lines) + "\n"


def build_suggest_comment(results: list[InvestigationResult], confidence: float) -> str:
    lines = [
        "## Automated Triage: Likely Resolved",
        "",
        f"Our analysis suggests this issue may be resolved ({confidence:.0%} confidence), "
        "but we want a human to confirm.",
        "",
        "### Findings",
    ]
    lines.extend(f"- **{r.agent_id}**: {r.summary}" for r in results if r.summary)
    lines.extend(["", "Please review and close if appropriate."])
    return "\n".join(lines) + "\n"


def build_info_comment(results: list[InvestigationResult]) -> str:
    lines = [
        "## Automated Triage: Investigation Update",
        "",
        "Our automated triage has gathered the following information:",
        "",
    ]
    lines.extend(f"- **{r.agent_id}**: {r.summary}" for r in results if r.summary)

    related = [e for r in results for e in r.related_entities]
    if related:
        lines.extend(["", "### Related"])
        lines.extend(f"- {e.type} #{e.id}: {e.description}" for e in related)
    return "\n".join(lines) + "\n"
