"""Tests for game plan, investigation and manifest models."""

import pytest

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
from repo_triage.models.manifest import IssueManifest, ManifestIssue
from repo_triage.models.verification import IssueVerification, VerificationCheck, VerificationReport


class TestGamePlan:
    def test_for_issues_seeds_full_roster(self):
        plan = GamePlan.for_issues(
            [
                {"number": 5, "title": "Crash", "author": "ana", "labels": ["bug"]},
                {"number": 9, "title": "Slow"},
            ]
        )

        assert plan.plan_id.startswith("triage-")
        assert plan.task_count == 10
        first = plan.issues[0]
        assert [t.id for t in first.tasks] == [
            "issue-5-code",
            "issue-5-prs",
            "issue-5-dupes",
            "issue-5-sentiment",
            "issue-5-changelog",
        ]
        assert [t.agent for t in first.tasks] == list(AgentType)
        assert all(t.status == TaskStatus.PENDING for t in first.tasks)
        assert first.existing_labels == ["bug"]
        assert plan.issues[1].author == "unknown"

    def test_empty(self):
        plan = GamePlan.empty()
        assert plan.is_empty
        assert plan.task_count == 0

    def test_round_trips_through_json(self):
        plan = GamePlan.for_issues([{"number": 1, "title": "t"}])
        plan.issues[0].tasks[0].mark_running()
        plan.issues[0].tasks[0].mark_completed(InvestigationResult(agent_id="code_analysis", confidence=0.4))

        restored = GamePlan.model_validate_json(plan.model_dump_json())

        assert restored == plan

    def test_unknown_enum_values_fall_back(self):
        plan = GamePlan.model_validate(
            {
                "plan_id": "p",
                "created_at": "2026-01-15T10:30:00+00:00",
                "issues": [
                    {
                        "number": 1,
                        "tasks": [
                            {"id": "a", "agent": "astrology", "status": "exploded"},
                            {"id": "b", "agent": "prCorrelation", "status": "COMPLETED"},
                        ],
                    }
                ],
            }
        )

        a, b = plan.issues[0].tasks
        assert (a.agent, a.status) == (AgentType.CODE_ANALYSIS, TaskStatus.PENDING)
        assert (b.agent, b.status) == (AgentType.PR_CORRELATION, TaskStatus.COMPLETED)

    @pytest.mark.parametrize("agent", list(AgentType))
    def test_enum_members_kept(self, agent):
        task = TriageTask(id="t", agent=agent, status=TaskStatus.FAILED)
        assert (task.agent, task.status) == (agent, TaskStatus.FAILED)

    def test_link_ids_coerced_to_strings(self):
        link = LinkSpec(source_type="issue", source_id=4, target_type="pr", target_id=12)
        assert (link.source_id, link.target_id) == ("4", "12")

    def test_decisions_only_for_decided_issues(self):
        plan = GamePlan.for_issues([{"number": 1}, {"number": 2}])
        assert plan.decisions() == []


class TestTaskLifecycle:
    def test_happy_path(self):
        task = TriageTask(id="t")
        task.mark_running()
        result = InvestigationResult(agent_id="code_analysis")
        task.mark_completed(result)

        assert task.status == TaskStatus.COMPLETED
        assert task.result == result

    def test_failed_task_can_be_redispatched(self):
        task = TriageTask(id="t")
        task.mark_running()
        task.mark_failed("boom")
        task.mark_running()

        assert task.status == TaskStatus.RUNNING
        assert task.error is None

    def test_completed_task_cannot_restart(self):
        task = TriageTask(id="t")
        task.mark_running()
        task.mark_completed(InvestigationResult())

        with pytest.raises(InvalidTransitionError):
            task.mark_running()

    def test_cannot_complete_without_running(self):
        with pytest.raises(InvalidTransitionError):
            TriageTask(id="t").mark_completed(InvestigationResult())

    def test_garbage_result_dropped(self):
        assert TriageTask.model_validate({"id": "t", "result": "oops"}).result is None


class TestInvestigationComplete:
    def test_true_when_every_task_terminal(self):
        issue = IssuePlan(
            number=1,
            tasks=[
                TriageTask(id="a", status=TaskStatus.COMPLETED),
                TriageTask(id="b", status=TaskStatus.FAILED),
            ],
        )
        assert issue.investigation_complete

    @pytest.mark.parametrize("status", [TaskStatus.PENDING, TaskStatus.RUNNING, TaskStatus.SKIPPED])
    def test_false_with_unfinished_task(self, status):
        issue = IssuePlan(
            number=1, tasks=[TriageTask(id="a", status=TaskStatus.COMPLETED), TriageTask(id="b", status=status)]
        )
        assert not issue.investigation_complete


class TestInvestigationResult:
    def test_confidence_clamped(self):
        assert InvestigationResult(confidence=1.7).confidence == 1.0
        assert InvestigationResult(confidence=-2).confidence == 0.0
        assert InvestigationResult(confidence="high").confidence == 0.0

    def test_string_lists_coerced(self):
        result = InvestigationResult.model_validate({"evidence": "one line", "recommended_labels": None})
        assert result.evidence == ["one line"]
        assert result.recommended_labels == []

    def test_missing_fields_default(self):
        result = InvestigationResult.model_validate({})
        assert result.agent_id == "unknown"
        assert result.suggest_close is False
        assert not result.is_failed

    def test_failed(self):
        result = InvestigationResult.failed("sentiment", 3, "TimeoutError: slow")
        assert result.is_failed
        assert result.confidence == 0.0
        assert result.evidence == []
        assert result.summary == "Investigation failed: TimeoutError: slow"

    def test_related_entity_normalization(self):
        entity = RelatedEntity.model_validate({"type": "issue", "id": "#17", "relevance": 3})
        assert entity.id == "17"
        assert entity.relevance == 1.0

    def test_run_stats_replace_agent_reported(self):
        result = InvestigationResult(turns_used=99).with_run_stats(4, 7, 1200)
        assert (result.turns_used, result.tool_calls_made, result.duration_ms) == (4, 7, 1200)


class TestManifest:
    def test_malformed_entries_dropped(self):
        manifest = IssueManifest.model_validate(
            {
                "version": "1.2.0",
                "github_issues": [{"number": 1, "confidence": "0.9"}, {"title": "no number"}],
                "error_monitor_issues": [{"id": 55, "confidence": 2}],
            }
        )

        assert [i.number for i in manifest.github_issues] == [1]
        assert manifest.github_issues[0].confidence == 0.9
        assert manifest.error_monitor_issues[0].id == "55"
        assert manifest.error_monitor_issues[0].confidence == 1.0

    def test_merge_replaces_only_present_lists(self):
        manifest = IssueManifest(
            version="1.2.0",
            github_issues=[ManifestIssue(number=1), ManifestIssue(number=2)],
            cross_repo_issues=[ManifestIssue(number=3, repo="acme/app")],
        )

        manifest.merge_correlated(
            {
                "github_issues": [
                    {"number": 1, "confidence": 0.95, "category": "fixed"},
                    {"number": 2, "confidence": 0.1},
                ]
            }
        )

        assert [(i.number, i.category) for i in manifest.github_issues] == [(1, "fixed")]
        assert [i.number for i in manifest.cross_repo_issues] == [3]

    def test_summary(self):
        manifest = IssueManifest(version="1.0.0", github_issues=[ManifestIssue(number=1)])
        assert manifest.build_summary().startswith("This release likely addresses 1 issues")
        assert manifest.total == 1

    def test_evidence_list_joined(self):
        assert ManifestIssue(number=1, evidence=["a", "b"]).evidence == "a; b"


class TestVerificationReport:
    def test_artifact_shape(self):
        report = VerificationReport(
            verifications=[
                IssueVerification(issue_number=1, checks=[VerificationCheck(name="triaged_label", passed=True)]),
                IssueVerification(issue_number=2, checks=[VerificationCheck(name="state_closed", passed=False)]),
            ]
        )

        artifact = report.to_artifact()

        assert artifact["all_passed"] is False
        assert [v["passed"] for v in artifact["verifications"]] == [True, False]
        assert report.passed_count == 1
        assert report.verifications[1].check("state_closed").passed is False
