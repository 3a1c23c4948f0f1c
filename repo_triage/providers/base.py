"""
Abstract base classes for providers.

This module defines the three narrow interfaces the triage engine depends
on: the issue tracker, read-only version-control history, and the
reasoning-agent backend. Each can be replaced by a fake in tests.
"""

from abc import ABC, abstractmethod
from pathlib import Path

from repo_triage.models.tracker import AgentResponse, IssueState, TrackerIssue


class IssueTracker(ABC):
    """Abstract base class for issue tracker implementations.

    Every operation targets the configured repository unless ``repo`` is
    given as ``"owner/name"``; cross-repository linking and release
    notification pass it explicitly.

    All methods are async so implementations can wrap blocking clients in
    a thread pool without stalling the event loop.
    """

    @abstractmethod
    async def fetch_issue(self, number: int, repo: str | None = None) -> TrackerIssue:
        """Fetch one issue with its labels, state and comments.

        Raises:
            TrackerAuthError: If the tracker rejects our credentials.
            TrackerError: If the issue cannot be fetched.
        """

    @abstractmethod
    async def list_open_issues(self, repo: str | None = None, limit: int = 100) -> list[TrackerIssue]:
        """List open issues. Comments are not populated.

        Raises:
            TrackerAuthError: If the tracker rejects our credentials.
            TrackerError: If the listing fails.
        """

    @abstractmethod
    async def apply_labels(self, number: int, labels: list[str], repo: str | None = None) -> None:
        """Add labels to an issue, keeping the ones already present.

        Raises:
            UnknownLabelError: If one of the labels does not exist in the repository.
            TrackerError: On any other failure.
        """

    @abstractmethod
    async def create_label(self, name: str, repo: str | None = None) -> None:
        """Create a repository label. Creating an existing label is not an error."""

    @abstractmethod
    async def post_comment(self, number: int, body: str, repo: str | None = None) -> None:
        pass

    @abstractmethod
    async def close_issue(self, number: int, reason: str = "completed", repo: str | None = None) -> None:
        """Close an issue.

        Args:
            number: Issue number
            reason: ``completed`` or ``not_planned``
            repo: Target repository, defaults to the configured one
        """

    @abstractmethod
    async def search_issues(self, repo: str, query: str, limit: int = 5) -> list[TrackerIssue]:
        """Full-text search over open issues of ``repo``."""

    async def get_labels(self, number: int, repo: str | None = None) -> list[str]:
        return (await self.fetch_issue(number, repo)).labels

    async def get_state(self, number: int, repo: str | None = None) -> IssueState:
        return (await self.fetch_issue(number, repo)).state

    async def has_comment_containing(self, number: int, text: str, repo: str | None = None) -> bool:
        """Whether any existing comment on the issue contains ``text`` verbatim."""
        return (await self.fetch_issue(number, repo)).has_comment_containing(text)

    async def has_reference(self, number: int, text: str, repo: str | None = None) -> bool:
        """Whether a comment mentions ``text`` not followed by another digit."""
        return (await self.fetch_issue(number, repo)).has_reference(text)


class VersionControl(ABC):
    """Read-only access to commit history between two revisions."""

    @abstractmethod
    async def changed_files(self, base: str, head: str = "HEAD") -> list[str]:
        pass

    @abstractmethod
    async def commit_subjects(self, base: str, head: str = "HEAD") -> list[str]:
        """Subjects of non-merge commits in ``base..head``, newest first."""


class AgentRunner(ABC):
    """Single invocation of an external reasoning agent.

    Implementations must not raise for agent-side failures; they report
    them through ``AgentResponse.error_type`` so the task executor can
    decide whether to retry. Exceptions are treated as process errors.
    """

    @abstractmethod
    async def invoke(
        self,
        prompt: str,
        model: str,
        allowed_tools: list[str],
        working_dir: Path,
        task_id: str,
        audit_dir: Path | None = None,
    ) -> AgentResponse:
        """Run the agent once.

        Args:
            prompt: Full prompt text
            model: Model identifier
            allowed_tools: Tools the agent may call
            working_dir: Directory the agent runs in; it may write files here
            task_id: Identifier used for audit file names
            audit_dir: If set, prompt and raw response are saved under ``agents/``

        Returns:
            Response with success flag, text and usage statistics
        """
