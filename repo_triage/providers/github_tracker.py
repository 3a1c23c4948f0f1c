"""GitHub issue tracker implementation using PyGithub."""

import asyncio
from collections.abc import Callable
from itertools import islice
from typing import TypeVar

import structlog
from github import Github, GithubException  # type: ignore[import-not-found]
from github.Issue import Issue as GHIssue  # type: ignore[import-not-found]
from github.Repository import Repository as GHRepository  # type: ignore[import-not-found]

from repo_triage.exceptions import TrackerAuthError, TrackerError, UnknownLabelError
from repo_triage.models.tracker import IssueState, TrackerComment, TrackerIssue
from repo_triage.providers.base import IssueTracker

log = structlog.get_logger(__name__)

T = TypeVar("T")

DEFAULT_LABEL_COLOR = "ededed"


async def _run_sync(func: Callable[[], T]) -> T:
    """Run a synchronous function in a thread pool.

    This prevents blocking the event loop when calling synchronous
    PyGithub methods.
    """
    return await asyncio.to_thread(func)


def _translate(e: GithubException, repo: str, action: str) -> TrackerError:
    status = getattr(e, "status", None)
    message = f"GitHub {action} failed for {repo}: {e}"
    if status in (401, 403):
        return TrackerAuthError(message, status_code=status, repo=repo)
    return TrackerError(message, status_code=status, repo=repo)


class GitHubTracker(IssueTracker):
    """GitHub implementation using PyGithub library."""

    def __init__(
        self,
        token: str,
        owner: str,
        repo: str,
        base_url: str = "https://api.github.com",
    ):
        """Initialize GitHub tracker.

        Args:
            token: GitHub personal access token or App token
            owner: Default repository owner (user or organization)
            repo: Default repository name
            base_url: GitHub API base URL (for GitHub Enterprise)
        """
        self.token = token.strip() if token else token
        self.default_repo = f"{owner}/{repo}"
        self.base_url = base_url.rstrip("/")
        self._client: Github | None = None
        self._repos: dict[str, GHRepository] = {}

    async def connect(self) -> None:
        """Initialize GitHub client and resolve the default repository."""
        self._client = Github(self.token, base_url=self.base_url)
        await self._repo(None)
        log.info("github_connected", base_url=self.base_url, repo=self.default_repo)

    async def disconnect(self) -> None:
        if self._client:
            await _run_sync(self._client.close)
            self._client = None
            self._repos.clear()

    async def _repo(self, repo: str | None) -> GHRepository:
        full_name = repo or self.default_repo
        if full_name not in self._repos:
            if self._client is None:
                self._client = Github(self.token, base_url=self.base_url)
            client = self._client
            try:
                self._repos[full_name] = await _run_sync(lambda: client.get_repo(full_name))
            except GithubException as e:
                raise _translate(e, full_name, "repository lookup") from e
        return self._repos[full_name]

    async def _issue(self, number: int, repo: str | None) -> GHIssue:
        gh_repo = await self._repo(repo)
        try:
            return await _run_sync(lambda: gh_repo.get_issue(number))
        except GithubException as e:
            raise _translate(e, gh_repo.full_name, f"fetch of #{number}") from e

    async def fetch_issue(self, number: int, repo: str | None = None) -> TrackerIssue:
        log.debug("fetch_issue", number=number, repo=repo or self.default_repo)
        gh_issue = await self._issue(number, repo)
        try:
            comments = await _run_sync(lambda: list(gh_issue.get_comments()))
        except GithubException as e:
            raise _translate(e, repo or self.default_repo, f"comment listing of #{number}") from e
        return self._convert_issue(gh_issue, repo or self.default_repo, comments)

    async def list_open_issues(self, repo: str | None = None, limit: int = 100) -> list[TrackerIssue]:
        gh_repo = await self._repo(repo)
        log.info("list_open_issues", repo=gh_repo.full_name, limit=limit)
        try:
            gh_issues = await _run_sync(lambda: list(islice(gh_repo.get_issues(state="open"), limit)))
        except GithubException as e:
            raise _translate(e, gh_repo.full_name, "issue listing") from e
        # The issues endpoint also returns pull requests
        return [
            self._convert_issue(i, gh_repo.full_name, []) for i in gh_issues if getattr(i, "pull_request", None) is None
        ]

    async def apply_labels(self, number: int, labels: list[str], repo: str | None = None) -> None:
        gh_issue = await self._issue(number, repo)
        try:
            await _run_sync(lambda: gh_issue.add_to_labels(*labels))
        except GithubException as e:
            if getattr(e, "status", None) in (404, 422):
                raise UnknownLabelError(
                    f"GitHub rejected labels {labels} on #{number}: {e}",
                    labels=labels,
                    status_code=e.status,
                    repo=repo or self.default_repo,
                ) from e
            raise _translate(e, repo or self.default_repo, f"labeling of #{number}") from e
        log.info("labels_applied", number=number, labels=labels)

    async def create_label(self, name: str, repo: str | None = None) -> None:
        gh_repo = await self._repo(repo)
        try:
            await _run_sync(lambda: gh_repo.create_label(name=name, color=DEFAULT_LABEL_COLOR))
        except GithubException as e:
            # 422 means the label already exists
            if getattr(e, "status", None) != 422:
                raise _translate(e, gh_repo.full_name, f"creation of label {name}") from e
        log.info("label_created", name=name, repo=gh_repo.full_name)

    async def post_comment(self, number: int, body: str, repo: str | None = None) -> None:
        gh_issue = await self._issue(number, repo)
        try:
            await _run_sync(lambda: gh_issue.create_comment(body))
        except GithubException as e:
            raise _translate(e, repo or self.default_repo, f"comment on #{number}") from e
        log.info("comment_posted", number=number, repo=repo or self.default_repo)

    async def close_issue(self, number: int, reason: str = "completed", repo: str | None = None) -> None:
        gh_issue = await self._issue(number, repo)
        state_reason = "not_planned" if reason in ("not_planned", "not planned") else "completed"
        try:
            await _run_sync(lambda: gh_issue.edit(state="closed", state_reason=state_reason))
        except GithubException as e:
            raise _translate(e, repo or self.default_repo, f"close of #{number}") from e
        log.info("issue_closed", number=number, reason=state_reason)

    async def search_issues(self, repo: str, query: str, limit: int = 5) -> list[TrackerIssue]:
        if self._client is None:
            self._client = Github(self.token, base_url=self.base_url)
        client = self._client
        search = f"{query} repo:{repo} is:issue is:open"
        try:
            hits = await _run_sync(lambda: list(islice(client.search_issues(query=search), limit)))
        except GithubException as e:
            raise _translate(e, repo, "search") from e
        return [self._convert_issue(hit, repo, []) for hit in hits]

    def _convert_issue(self, gh_issue: GHIssue, repo: str, comments: list) -> TrackerIssue:
        return TrackerIssue(
            number=gh_issue.number,
            title=gh_issue.title or "",
            author=gh_issue.user.login if gh_issue.user else "unknown",
            body=gh_issue.body or "",
            labels=[label.name for label in gh_issue.labels],
            state=IssueState.CLOSED if gh_issue.state == "closed" else IssueState.OPEN,
            state_reason=getattr(gh_issue, "state_reason", None),
            comments=[TrackerComment(body=c.body or "", author=c.user.login if c.user else "") for c in comments],
            repo=repo,
        )
