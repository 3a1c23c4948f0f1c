"""Pytest configuration and shared fixtures."""

import asyncio
import copy
import json
from pathlib import Path

import pytest

from repo_triage.config.settings import TriageSettings
from repo_triage.engine.artifact_store import META, RESULTS_DIR, ArtifactStore
from repo_triage.engine.task_executor import TaskExecutor
from repo_triage.exceptions import TrackerError, UnknownLabelError
from repo_triage.models.investigation import InvestigationResult
from repo_triage.models.tracker import AgentResponse, IssueState, TrackerComment, TrackerIssue
from repo_triage.providers.base import AgentRunner, IssueTracker, VersionControl

REPO = "acme/widget"


class FakeTracker(IssueTracker):
    """In-memory issue tracker.

    Issues are keyed by ``(repo, number)``. Every mutation is appended to
    ``calls`` so tests can assert exactly what was changed.
    """

    def __init__(self, default_repo: str = REPO):
        self.default_repo = default_repo
        self.issues: dict[tuple[str, int], TrackerIssue] = {}
        self.search_results: dict[str, list[TrackerIssue]] = {}
        self.known_labels: set[str] = set()
        self.strict_labels = False
        self.failures: dict[str, Exception] = {}
        self.calls: list[tuple] = []

    def add_issue(
        self, number: int, title: str = "Crash on startup", repo: str | None = None, **fields
    ) -> TrackerIssue:
        repo = repo or self.default_repo
        issue = TrackerIssue(number=number, title=title, repo=repo, **fields)
        self.issues[(repo, number)] = issue
        return issue

    def issue(self, number: int, repo: str | None = None) -> TrackerIssue:
        return self.issues[(repo or self.default_repo, number)]

    def mutations(self, kind: str) -> list[tuple]:
        return [call for call in self.calls if call[0] == kind]

    def _maybe_fail(self, operation: str) -> None:
        if operation in self.failures:
            raise self.failures[operation]

    async def fetch_issue(self, number: int, repo: str | None = None) -> TrackerIssue:
        self._maybe_fail("fetch_issue")
        key = (repo or self.default_repo, number)
        if key not in self.issues:
            raise TrackerError(f"Issue {number} not found", status_code=404, repo=key[0])
        return copy.deepcopy(self.issues[key])

    async def list_open_issues(self, repo: str | None = None, limit: int = 100) -> list[TrackerIssue]:
        self._maybe_fail("list_open_issues")
        repo = repo or self.default_repo
        found = [i for (r, _), i in sorted(self.issues.items()) if r == repo and not i.is_closed]
        return copy.deepcopy(found[:limit])

    async def apply_labels(self, number: int, labels: list[str], repo: str | None = None) -> None:
        self._maybe_fail("apply_labels")
        missing = [label for label in labels if label not in self.known_labels]
        if self.strict_labels and missing:
            raise UnknownLabelError(f"Unknown labels: {missing}", labels=missing)
        issue = self.issue(number, repo)
        for label in labels:
            if label not in issue.labels:
                issue.labels.append(label)
        self.calls.append(("apply_labels", repo or self.default_repo, number, list(labels)))

    async def create_label(self, name: str, repo: str | None = None) -> None:
        self._maybe_fail("create_label")
        self.known_labels.add(name)
        self.calls.append(("create_label", repo or self.default_repo, name))

    async def post_comment(self, number: int, body: str, repo: str | None = None) -> None:
        self._maybe_fail("post_comment")
        self.issue(number, repo).comments.append(TrackerComment(body=body, author="triage-bot"))
        self.calls.append(("post_comment", repo or self.default_repo, number, body))

    async def close_issue(self, number: int, reason: str = "completed", repo: str | None = None) -> None:
        self._maybe_fail("close_issue")
        issue = self.issue(number, repo)
        issue.state = IssueState.CLOSED
        issue.state_reason = reason
        self.calls.append(("close_issue", repo or self.default_repo, number, reason))

    async def search_issues(self, repo: str, query: str, limit: int = 5) -> list[TrackerIssue]:
        self._maybe_fail("search_issues")
        self.calls.append(("search_issues", repo, query))
        return copy.deepcopy(self.search_results.get(repo, [])[:limit])


class FakeRunner(AgentRunner):
    """Agent backend that writes canned result files.

    ``results`` maps a task id to the JSON the agent writes to
    ``results/<task_id>.json``. ``responses`` maps a task id to responses
    returned on successive attempts; the last one repeats. Concurrency is
    tracked so tests can assert on the peak.
    """

    def __init__(self) -> None:
        self.results: dict[str, dict] = {}
        self.responses: dict[str, list[AgentResponse]] = {}
        self.files: dict[str, tuple[str, object]] = {}
        self.delay = 0.0
        self.invocations: list[str] = []
        self.active = 0
        self.peak = 0

    def attempts(self, task_id: str) -> int:
        return self.invocations.count(task_id)

    def _next_response(self, task_id: str) -> AgentResponse:
        queued = self.responses.get(task_id)
        if not queued:
            return AgentResponse(success=True, text="done", stats={"tools": {"totalCalls": 2}})
        return queued.pop(0) if len(queued) > 1 else queued[0]

    async def invoke(
        self,
        prompt: str,
        model: str,
        allowed_tools: list[str],
        working_dir: Path,
        task_id: str,
        audit_dir: Path | None = None,
    ) -> AgentResponse:
        self.invocations.append(task_id)
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(self.delay)
            response = self._next_response(task_id)
            if not response.success or audit_dir is None:
                return response

            if task_id in self.results:
                path = audit_dir / RESULTS_DIR / f"{task_id}.json"
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_text(json.dumps(self.results[task_id]))
            if task_id in self.files:
                name, content = self.files[task_id]
                (audit_dir / name).write_text(json.dumps(content))
            return response
        finally:
            self.active -= 1


class FakeHistory(VersionControl):
    def __init__(self) -> None:
        self.files: list[str] = []
        self.subjects: list[str] = []

    async def changed_files(self, base: str, head: str = "HEAD") -> list[str]:
        return list(self.files)

    async def commit_subjects(self, base: str, head: str = "HEAD") -> list[str]:
        return list(self.subjects)


async def _no_sleep(delay: float) -> None:
    await asyncio.sleep(0)


@pytest.fixture
def repo_root(tmp_path: Path) -> Path:
    """Empty repository checkout."""
    root = tmp_path / "repo"
    root.mkdir()
    return root


@pytest.fixture
def settings(tmp_path: Path) -> TriageSettings:
    """Settings pointing the runs directory and lock file into tmp_path."""
    return TriageSettings(
        repository={"owner": "acme", "name": "widget"},
        workflow={
            "runs_directory": str(tmp_path / "runs"),
            "lock_file": str(tmp_path / "triage.lock"),
        },
        cross_repo={"enabled": False},
        runner={"max_concurrent": 3, "initial_backoff": 0.01, "max_backoff": 0.05},
    )


@pytest.fixture
def tracker() -> FakeTracker:
    return FakeTracker()


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def history() -> FakeHistory:
    return FakeHistory()


@pytest.fixture
def executor(runner: FakeRunner) -> TaskExecutor:
    """Executor over the fake runner whose retries do not wait."""
    return TaskExecutor(runner, max_concurrent=3, max_retries=3, sleep=_no_sleep)


@pytest.fixture
def store(tmp_path: Path) -> ArtifactStore:
    """Fresh run directory."""
    run_dir = tmp_path / "runs" / "triage_2026-01-15T10-30-00_4242"
    (run_dir / RESULTS_DIR).mkdir(parents=True)
    (run_dir / META).write_text(json.dumps({"command": "test", "status": "running"}))
    return ArtifactStore(run_dir)


@pytest.fixture
def make_result():
    """Factory for InvestigationResult objects."""

    def make(agent_id: str = "code_analysis", confidence: float = 0.5, issue_number: int = 1, **fields):
        return InvestigationResult(agent_id=agent_id, issue_number=issue_number, confidence=confidence, **fields)

    return make


@pytest.fixture
def agent_json():
    """Factory for the JSON an investigation agent writes."""

    def make(agent_id: str, issue_number: int, confidence: float, **fields) -> dict:
        data = {
            "agent_id": agent_id,
            "issue_number": issue_number,
            "confidence": confidence,
            "summary": f"{agent_id} finding",
            "evidence": ["commit abc123"],
        }
        data.update(fields)
        return data

    return make
