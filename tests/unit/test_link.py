"""Tests for the link and cross-repository link phases."""

import json

import pytest

from repo_triage.config.settings import CrossRepoConfig, CrossRepoTarget
from repo_triage.engine.artifact_store import CROSS_REPO_LINKS, LINKS
from repo_triage.engine.phases.cross_repo_link import CrossRepoLinker
from repo_triage.engine.phases.link import LINKED_ISSUES, Linker, add_linked_issue
from repo_triage.exceptions import TrackerError
from repo_triage.models.decision import RiskLevel, TriageDecision
from repo_triage.models.game_plan import GamePlan
from repo_triage.models.investigation import InvestigationResult, RelatedEntity
from repo_triage.models.tracker import TrackerComment


def decision_with(*entities: RelatedEntity, number: int = 1) -> TriageDecision:
    return TriageDecision(
        issue_number=number,
        aggregate_confidence=0.82,
        risk_level=RiskLevel.MEDIUM,
        investigation_results=[InvestigationResult(agent_id="pr_correlation", related_entities=list(entities))],
    )


@pytest.fixture
def plan() -> GamePlan:
    return GamePlan.for_issues([{"number": 1, "title": "Crash when parsing YAML config"}])


class TestLinker:
    @pytest.fixture
    def linker(self, tracker, settings, store, repo_root) -> Linker:
        return Linker(tracker, settings, store, repo_root)

    @pytest.mark.asyncio
    async def test_related_pr_and_issue_comments(self, linker, tracker, plan, store):
        tracker.add_issue(1)
        decision = decision_with(
            RelatedEntity(type="pr", id="12", description="fix parser", relevance=0.6),
            RelatedEntity(type="issue", id="30", description="same crash", relevance=0.7),
            RelatedEntity(type="issue", id="31", relevance=0.5),
        )

        links = await linker.link(plan, [decision])

        bodies = [call[3] for call in tracker.mutations("post_comment")]
        assert bodies == ["Linked by triage: PR #12 -- fix parser", "Related: #30 -- same crash"]
        assert [(link.target_type, link.target_id, link.applied) for link in links] == [
            ("pr", "12", True),
            ("issue", "30", True),
        ]
        assert plan.links_to_create == links
        artifact = json.loads(store.path(LINKS).read_text())
        assert len(artifact["links_created"]) == 2

    @pytest.mark.asyncio
    async def test_existing_reference_not_reposted(self, linker, tracker, plan):
        tracker.add_issue(1, comments=[TrackerComment(body="see PR #12")])

        (link,) = await linker.link(plan, [decision_with(RelatedEntity(type="pr", id="12", relevance=0.9))])

        assert tracker.mutations("post_comment") == []
        assert link.applied

    @pytest.mark.asyncio
    async def test_longer_number_is_not_a_reference(self, linker, tracker, plan):
        tracker.add_issue(1, comments=[TrackerComment(body="see PR #120")])

        await linker.link(plan, [decision_with(RelatedEntity(type="pr", id="12", description="fix", relevance=0.9))])

        assert [call[3] for call in tracker.mutations("post_comment")] == ["Linked by triage: PR #12 -- fix"]

    @pytest.mark.asyncio
    async def test_duplicate_entities_linked_once(self, linker, tracker, plan):
        tracker.add_issue(1)
        entity = RelatedEntity(type="pr", id="12", relevance=0.9)
        decision = decision_with(entity)
        decision.investigation_results.append(InvestigationResult(agent_id="code_analysis", related_entities=[entity]))

        links = await linker.link(plan, [decision])

        assert len(links) == 1
        assert len(tracker.mutations("post_comment")) == 1

    @pytest.mark.asyncio
    async def test_tracker_failure_leaves_link_unapplied(self, linker, tracker, plan):
        tracker.add_issue(1)
        tracker.failures["post_comment"] = TrackerError("rate limited")

        (link,) = await linker.link(plan, [decision_with(RelatedEntity(type="pr", id="12", relevance=0.9))])

        assert link.applied is False

    @pytest.mark.asyncio
    async def test_release_docs_referencing_issue(self, linker, tracker, plan, repo_root):
        tracker.add_issue(1)
        (repo_root / "CHANGELOG.md").write_text("## 1.2.0\n- Fix YAML crash (#1)\n")
        for version, text in (("v1.2.0", "Fixes #1"), ("v1.1.0", "Fixes #14")):
            (repo_root / "release_notes" / version).mkdir(parents=True)
            (repo_root / "release_notes" / version / "release_notes.md").write_text(text)

        links = await linker.link(plan, [decision_with()])

        assert [(link.target_type, link.target_id) for link in links] == [
            ("changelog", "CHANGELOG.md"),
            ("release_notes", "v1.2.0"),
        ]
        assert all(link.applied for link in links)
        linked = json.loads((repo_root / "release_notes" / "v1.2.0" / LINKED_ISSUES).read_text())
        assert [i["number"] for i in linked["issues"]] == [1]
        assert linked["issues"][0]["risk_level"] == "medium"
        assert not (repo_root / "release_notes" / "v1.1.0" / LINKED_ISSUES).exists()
        assert tracker.calls == []

    @pytest.mark.asyncio
    async def test_add_linked_issue_is_idempotent(self, tmp_path):
        path = tmp_path / LINKED_ISSUES

        assert await add_linked_issue(path, {"number": 3}) is True
        assert await add_linked_issue(path, {"number": 3}) is False
        assert json.loads(path.read_text()) == {"issues": [{"number": 3}]}

    @pytest.mark.asyncio
    async def test_add_linked_issue_resets_garbage(self, tmp_path):
        path = tmp_path / LINKED_ISSUES
        path.write_text("{not json")

        assert await add_linked_issue(path, {"number": 3}) is True
        assert json.loads(path.read_text()) == {"issues": [{"number": 3}]}


class TestCrossRepoLinker:
    @pytest.fixture
    def cross_settings(self, settings):
        settings.cross_repo = CrossRepoConfig(
            enabled=True,
            repos=[CrossRepoTarget(owner="acme", repo="app"), CrossRepoTarget(owner="acme", repo="docs")],
        )
        return settings

    @pytest.fixture
    def linker(self, tracker, cross_settings, store, repo_root) -> CrossRepoLinker:
        return CrossRepoLinker(tracker, cross_settings, store, repo_root)

    @pytest.mark.asyncio
    async def test_comments_on_matches(self, linker, tracker, plan, store):
        tracker.add_issue(1)
        related = tracker.add_issue(88, title="YAML crash after upgrade", repo="acme/app")
        tracker.search_results["acme/app"] = [related]

        links = await linker.link(plan, [decision_with()])

        assert links == [
            {
                "source_repo": "acme/widget",
                "source_issue": 1,
                "target_repo": "acme/app",
                "target_issue": 88,
                "target_title": "YAML crash after upgrade",
            }
        ]
        (call,) = tracker.mutations("post_comment")
        assert call[1:3] == ("acme/app", 88)
        body = call[3]
        assert "[#1](https://github.com/acme/widget/issues/1)" in body
        assert "Confidence: 82% | Risk: medium" in body
        assert body.endswith("<!-- cross-repo-triage:acme/widget#1 -->")
        searches = tracker.mutations("search_issues")
        assert searches[0][2] == "Crash parsing YAML config"
        artifact = json.loads(store.path(CROSS_REPO_LINKS).read_text())
        assert artifact["repos_searched"] == ["acme/app", "acme/docs"]

    @pytest.mark.asyncio
    async def test_existing_reference_skipped(self, linker, tracker, plan):
        tracker.add_issue(1)
        related = tracker.add_issue(
            88, repo="acme/app", comments=[TrackerComment(body="Upstream: acme/widget#1")]
        )
        tracker.search_results["acme/app"] = [related]

        assert await linker.link(plan, [decision_with()]) == []
        assert tracker.mutations("post_comment") == []

    @pytest.mark.asyncio
    async def test_failing_repo_does_not_block_others(self, linker, tracker, plan):
        tracker.add_issue(1)
        tracker.search_results["acme/docs"] = [tracker.add_issue(5, repo="acme/docs")]

        original = tracker.search_issues

        async def flaky(repo, query, limit=5):
            if repo == "acme/app":
                raise TrackerError("502")
            return await original(repo, query, limit)

        tracker.search_issues = flaky

        links = await linker.link(plan, [decision_with()])

        assert [link["target_repo"] for link in links] == ["acme/docs"]

    @pytest.mark.asyncio
    async def test_disabled(self, tracker, settings, store, repo_root, plan):
        linker = CrossRepoLinker(tracker, settings, store, repo_root)

        assert await linker.link(plan, [decision_with()]) == []
        assert tracker.calls == []

    @pytest.mark.asyncio
    async def test_never_labels_or_closes(self, linker, tracker, plan):
        tracker.add_issue(1)
        tracker.search_results["acme/app"] = [tracker.add_issue(88, repo="acme/app")]

        await linker.link(plan, [decision_with()])

        assert tracker.mutations("apply_labels") == []
        assert tracker.mutations("close_issue") == []
