"""
Tracker-side domain models.

Normalized views of issue tracker and agent backend responses. Providers
convert their native payloads into these dataclasses so the engine never
handles provider-specific objects.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class IssueState(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


@dataclass
class TrackerComment:
    body: str
    author: str = ""


@dataclass
class TrackerIssue:
    """Issue snapshot as returned by the tracker.

    ``state_reason`` is the tracker's closure reason (``completed``,
    ``not_planned``) when the issue is closed.
    """

    number: int
    title: str
    author: str = "unknown"
    body: str = ""
    labels: list[str] = field(default_factory=list)
    state: IssueState = IssueState.OPEN
    state_reason: str | None = None
    comments: list[TrackerComment] = field(default_factory=list)
    repo: str = ""

    @property
    def is_closed(self) -> bool:
        return self.state == IssueState.CLOSED

    def has_comment_containing(self, text: str) -> bool:
        return any(text in comment.body for comment in self.comments)

    def has_reference(self, text: str) -> bool:
        """Like ``has_comment_containing`` but ``#4`` does not match ``#42``."""
        pattern = re.compile(rf"{re.escape(text)}(?!\d)")
        return any(pattern.search(comment.body) for comment in self.comments)

    def summary(self) -> dict[str, Any]:
        """Shape consumed by ``GamePlan.for_issues``."""
        return {"number": self.number, "title": self.title, "author": self.author, "labels": list(self.labels)}


@dataclass
class AgentResponse:
    """Outcome of one agent CLI invocation.

    Attributes:
        success: Whether the agent exited cleanly and produced JSON
        text: The agent's final response text
        stats: Usage statistics reported by the agent CLI
        error_type: Classification used by the retry policy, e.g. ``RateLimitError``
        error_message: Human-readable failure description
    """

    success: bool
    text: str = ""
    stats: dict[str, Any] = field(default_factory=dict)
    error_type: str | None = None
    error_message: str | None = None

    @property
    def tool_calls(self) -> int:
        tools = self.stats.get("tools") or {}
        return int(tools.get("totalCalls", tools.get("total_calls", 0)) or 0)

    @property
    def turns_used(self) -> int:
        return int(self.stats.get("turns", self.stats.get("turns_used", 0)) or 0)
