"""Tests for the agent CLI runner, git history and the tracker base class."""

import subprocess
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from github import GithubException

from repo_triage.exceptions import TrackerAuthError, UnknownLabelError
from repo_triage.models.tracker import AgentResponse, IssueState, TrackerComment
from repo_triage.providers.external_agent import (
    ExternalAgentRunner,
    classify_process_failure,
    parse_agent_output,
)
from repo_triage.providers.git_history import GitHistory
from repo_triage.providers.github_tracker import GitHubTracker


class TestParseAgentOutput:
    def test_envelope_after_warning_lines(self):
        stdout = 'Loaded cached credentials.\n{"response": "done", "stats": {"tools": {"totalCalls": 4}}}'

        response = parse_agent_output(stdout)

        assert response.success
        assert response.text == "done"
        assert response.tool_calls == 4

    def test_no_json(self):
        response = parse_agent_output("nothing to see")
        assert (response.success, response.error_type) == (False, "NoJsonOutput")

    def test_broken_json(self):
        response = parse_agent_output('{"response": ')
        assert response.error_type == "JsonParseError"

    def test_reported_error(self):
        response = parse_agent_output('{"error": {"type": "RateLimitError", "message": "quota"}}')
        assert (response.success, response.error_type, response.error_message) == (False, "RateLimitError", "quota")


@pytest.mark.parametrize(
    "stderr,expected",
    [
        ("HTTP 429 Too Many Requests", "RateLimitError"),
        ("RESOURCE_EXHAUSTED: quota", "RateLimitError"),
        ("503 Service Unavailable", "ServiceUnavailable"),
        ("401 Unauthorized", "AuthError"),
        ("500 internal error", "InternalError"),
        ("segmentation fault", "ProcessError"),
    ],
)
def test_classify_process_failure(stderr, expected):
    assert classify_process_failure(stderr) == expected


class TestExternalAgentRunner:
    @pytest.mark.asyncio
    async def test_invoke_pipes_prompt_and_audits(self, tmp_path):
        runner = ExternalAgentRunner(command="agent-cli", timeout=30.0)
        with patch(
            "repo_triage.providers.external_agent.run_command",
            new=AsyncMock(return_value=('{"response": "ok", "stats": {}}', "", 0)),
        ) as mock_run:
            response = await runner.invoke(
                prompt="investigate",
                model="pro",
                allowed_tools=["run_shell_command(git)", "run_shell_command(gh)"],
                working_dir=tmp_path,
                task_id="issue-1-code",
                audit_dir=tmp_path,
            )

        assert response.success
        args, kwargs = mock_run.call_args
        assert args == (
            "agent-cli",
            "-o",
            "json",
            "--yolo",
            "-m",
            "pro",
            "--allowed-tools",
            "run_shell_command(git),run_shell_command(gh)",
        )
        assert kwargs["input_text"] == "investigate"
        assert kwargs["timeout"] == 30.0
        assert (tmp_path / "agents" / "issue-1-code_prompt.txt").read_text() == "investigate"
        assert (tmp_path / "agents" / "issue-1-code_response.json").exists()

    @pytest.mark.asyncio
    async def test_nonzero_exit_classified(self, tmp_path):
        runner = ExternalAgentRunner()
        with patch(
            "repo_triage.providers.external_agent.run_command",
            new=AsyncMock(return_value=("", "Error 429: rate limit exceeded", 1)),
        ):
            response = await runner.invoke("p", "m", [], tmp_path, "t")

        assert response.error_type == "RateLimitError"
        assert response.error_message.startswith("Exit code 1")

    @pytest.mark.asyncio
    async def test_timeout(self, tmp_path):
        runner = ExternalAgentRunner(timeout=1.0)
        with patch("repo_triage.providers.external_agent.run_command", new=AsyncMock(side_effect=TimeoutError())):
            response = await runner.invoke("p", "m", [], tmp_path, "t")

        assert response.error_type == "TimeoutError"

    @pytest.mark.asyncio
    async def test_missing_cli(self, tmp_path):
        runner = ExternalAgentRunner(command="no-such-agent")
        with patch("repo_triage.providers.external_agent.run_command", new=AsyncMock(side_effect=FileNotFoundError())):
            response = await runner.invoke("p", "m", [], tmp_path, "t")

        assert response.error_type == "CommandNotFound"


class TestGitHistory:
    @pytest.mark.asyncio
    async def test_changed_files(self, tmp_path):
        with patch(
            "repo_triage.providers.git_history.run_command",
            new=AsyncMock(return_value=("a.py\n\nb/c.py\n", "", 0)),
        ) as mock_run:
            files = await GitHistory(tmp_path).changed_files("v1.0.0")

        assert files == ["a.py", "b/c.py"]
        assert mock_run.call_args.args == ("git", "diff", "--name-only", "v1.0.0..HEAD")

    @pytest.mark.asyncio
    async def test_failure_yields_empty(self, tmp_path):
        error = subprocess.CalledProcessError(128, ["git"], "", "unknown revision")
        with patch("repo_triage.providers.git_history.run_command", new=AsyncMock(side_effect=error)):
            assert await GitHistory(tmp_path).commit_subjects("v0.0.0") == []


class TestTrackerDefaults:
    @pytest.mark.asyncio
    async def test_derived_reads(self, tracker):
        tracker.add_issue(
            3, labels=["bug"], state=IssueState.CLOSED, comments=[TrackerComment(body="hello <!-- x -->")]
        )

        assert await tracker.get_labels(3) == ["bug"]
        assert await tracker.get_state(3) == IssueState.CLOSED
        assert await tracker.has_comment_containing(3, "<!-- x -->")
        assert not await tracker.has_comment_containing(3, "<!-- y -->")

    @pytest.mark.asyncio
    async def test_reference_matches_on_number_boundary(self, tracker):
        tracker.add_issue(3, comments=[TrackerComment(body="Related PR: #42, see #7.")])

        assert await tracker.has_reference(3, "Related PR: #42")
        assert await tracker.has_reference(3, "#7")
        assert not await tracker.has_reference(3, "#4")
        assert not await tracker.has_reference(3, "Related PR: #4")

    def test_agent_response_stats(self):
        response = AgentResponse(success=True, stats={"turns": 3, "tools": {"total_calls": 5}})
        assert (response.turns_used, response.tool_calls) == (3, 5)


def make_gh_issue(number=1, state="open", labels=(), pull_request=None):
    gh_issue = MagicMock()
    gh_issue.number = number
    gh_issue.title = f"Issue {number}"
    gh_issue.body = "body"
    gh_issue.state = state
    gh_issue.state_reason = None
    gh_issue.user.login = "ana"
    gh_issue.labels = [MagicMock() for _ in labels]
    for label, name in zip(gh_issue.labels, labels, strict=True):
        label.name = name
    gh_issue.pull_request = pull_request
    return gh_issue


class TestGitHubTracker:
    @pytest.fixture
    def gh_repo(self):
        repo = MagicMock()
        repo.full_name = "acme/widget"
        return repo

    @pytest.fixture
    def github_tracker(self, gh_repo):
        with patch("repo_triage.providers.github_tracker.Github") as mock_github:
            mock_github.return_value.get_repo.return_value = gh_repo
            yield GitHubTracker(token="token", owner="acme", repo="widget")

    @pytest.mark.asyncio
    async def test_fetch_issue_converts(self, github_tracker, gh_repo):
        gh_issue = make_gh_issue(labels=["bug"], state="closed")
        comment = MagicMock()
        comment.body = "thanks"
        comment.user.login = "bo"
        gh_issue.get_comments.return_value = [comment]
        gh_repo.get_issue.return_value = gh_issue

        await github_tracker.connect()
        issue = await github_tracker.fetch_issue(1)

        assert issue.labels == ["bug"]
        assert issue.is_closed
        assert issue.comments == [TrackerComment(body="thanks", author="bo")]

    @pytest.mark.asyncio
    async def test_list_skips_pull_requests(self, github_tracker, gh_repo):
        gh_repo.get_issues.return_value = [make_gh_issue(1), make_gh_issue(2, pull_request=object())]

        issues = await github_tracker.list_open_issues()

        assert [i.number for i in issues] == [1]

    @pytest.mark.asyncio
    async def test_unknown_label(self, github_tracker, gh_repo):
        gh_issue = make_gh_issue()
        gh_issue.add_to_labels.side_effect = GithubException(422, {"message": "Validation Failed"}, None)
        gh_repo.get_issue.return_value = gh_issue

        with pytest.raises(UnknownLabelError) as exc_info:
            await github_tracker.apply_labels(1, ["new-label"])

        assert exc_info.value.labels == ["new-label"]

    @pytest.mark.asyncio
    async def test_auth_failure(self, github_tracker, gh_repo):
        gh_repo.get_issue.side_effect = GithubException(401, {"message": "Bad credentials"}, None)

        with pytest.raises(TrackerAuthError):
            await github_tracker.fetch_issue(1)

    @pytest.mark.asyncio
    async def test_close_with_reason(self, github_tracker, gh_repo):
        gh_issue = make_gh_issue()
        gh_repo.get_issue.return_value = gh_issue

        await github_tracker.close_issue(1, reason="not_planned")

        gh_issue.edit.assert_called_once_with(state="closed", state_reason="not_planned")

    @pytest.mark.asyncio
    async def test_existing_label_creation_ignored(self, github_tracker, gh_repo):
        gh_repo.create_label.side_effect = GithubException(422, {"message": "already_exists"}, None)

        await github_tracker.create_label("triaged")
