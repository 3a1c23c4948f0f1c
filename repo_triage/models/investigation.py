"""Findings returned by investigation agents.

Each agent writes one ``InvestigationResult`` per issue. Agent output is
untrusted JSON, so every field has a default and numeric fields are
coerced and clamped here rather than by consumers.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _clamp_unit(value: Any, default: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return min(max(number, 0.0), 1.0)


class RelatedEntity(BaseModel):
    """A PR, issue, commit or file an agent found relevant to the issue."""

    model_config = ConfigDict(frozen=True)

    type: str = "unknown"
    id: str = ""
    description: str = ""
    relevance: float = 0.5

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, value: Any) -> str:
        if value is None:
            return ""
        return str(value).lstrip("#")

    @field_validator("relevance", mode="before")
    @classmethod
    def clamp_relevance(cls, value: Any) -> float:
        return _clamp_unit(value, 0.5)


class InvestigationResult(BaseModel):
    """Outcome of one agent investigating one issue.

    A crashed or unparseable agent is represented by ``failed()``: zero
    confidence, no evidence and a populated ``error``, so it can always be
    told apart from an agent that ran and found nothing.
    """

    model_config = ConfigDict(frozen=True)

    agent_id: str = "unknown"
    issue_number: int = 0
    confidence: float = 0.0
    summary: str = ""
    evidence: list[str] = Field(default_factory=list)
    recommended_labels: list[str] = Field(default_factory=list)
    suggested_comment: str | None = None
    suggest_close: bool = False
    close_reason: str | None = None
    related_entities: list[RelatedEntity] = Field(default_factory=list)
    turns_used: int = 0
    tool_calls_made: int = 0
    duration_ms: int = 0
    error: str | None = None

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, value: Any) -> float:
        return _clamp_unit(value, 0.0)

    @field_validator("evidence", "recommended_labels", mode="before")
    @classmethod
    def coerce_string_list(cls, value: Any) -> list[str]:
        if not value:
            return []
        if isinstance(value, str):
            return [value]
        return [str(item) for item in value]

    @property
    def is_failed(self) -> bool:
        return self.error is not None

    @classmethod
    def failed(cls, agent_id: str, issue_number: int, error: str) -> "InvestigationResult":
        return cls(
            agent_id=agent_id,
            issue_number=issue_number,
            confidence=0.0,
            summary=f"Investigation failed: {error}",
            error=error,
        )

    def with_run_stats(self, turns_used: int, tool_calls_made: int, duration_ms: int) -> "InvestigationResult":
        """Return a copy carrying executor statistics instead of agent-reported ones."""
        return self.model_copy(
            update={
                "turns_used": turns_used,
                "tool_calls_made": tool_calls_made,
                "duration_ms": duration_ms,
            }
        )
