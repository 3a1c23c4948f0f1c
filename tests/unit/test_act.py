"""Tests for the act phase."""

import json

import pytest

from repo_triage.engine.artifact_store import DECISIONS
from repo_triage.engine.phases.act import ActionExecutor
from repo_triage.exceptions import TrackerError
from repo_triage.models.decision import ActionType
from repo_triage.models.game_plan import GamePlan
from repo_triage.models.investigation import RelatedEntity
from repo_triage.models.tracker import IssueState, TrackerComment


@pytest.fixture
def actor(tracker, settings, store, repo_root) -> ActionExecutor:
    return ActionExecutor(tracker, settings, store, repo_root)


def plan_for(*numbers: int) -> GamePlan:
    return GamePlan.for_issues([{"number": n, "title": f"Issue {n}"} for n in numbers])


@pytest.mark.asyncio
async def test_high_confidence_labels_comments_and_closes(actor, tracker, make_result):
    tracker.add_issue(1)
    results = {1: [make_result(a, 0.95, recommended_labels=["fixed"]) for a in ("a", "b", "c")]}

    (decision,) = await actor.act(plan_for(1), results)

    issue = tracker.issue(1)
    assert issue.state == IssueState.CLOSED
    assert "fixed" in issue.labels
    assert "triaged" in issue.labels
    assert len(issue.comments) == 1
    assert issue.comments[0].body.endswith(actor.signature(1))
    assert all(a.executed and a.error is None for a in decision.actions)


@pytest.mark.asyncio
async def test_existing_signature_suppresses_comment(actor, tracker, make_result):
    """Re-running a comment action whose signature is already present posts nothing."""
    tracker.add_issue(1, comments=[TrackerComment(body=f"earlier\n\n{actor.signature(1)}")])

    (decision,) = await actor.act(plan_for(1), {1: [make_result("a", 0.55)]})

    comment = decision.actions_of(ActionType.COMMENT)[0]
    assert comment.executed is True
    assert tracker.mutations("post_comment") == []


@pytest.mark.asyncio
async def test_second_run_is_a_no_op(actor, tracker, make_result):
    tracker.add_issue(1)
    results = {1: [make_result("a", 0.55, recommended_labels=["bug"])]}

    await actor.act(plan_for(1), results)
    first = list(tracker.calls)
    await actor.act(plan_for(1), results)

    assert tracker.calls == first


@pytest.mark.asyncio
async def test_closed_issue_skipped(actor, tracker, make_result):
    tracker.add_issue(1, state=IssueState.CLOSED)
    tracker.add_issue(2)

    decisions = await actor.act(plan_for(1, 2), {1: [make_result("a", 0.95)], 2: [make_result("a", 0.1)]})

    assert [d.issue_number for d in decisions] == [2]
    assert all(call[2] != 1 for call in tracker.calls)


@pytest.mark.asyncio
async def test_missing_label_created_then_retried(actor, tracker, make_result):
    tracker.strict_labels = True
    tracker.known_labels = {"triaged"}
    tracker.add_issue(1)

    (decision,) = await actor.act(plan_for(1), {1: [make_result("a", 0.1)]})

    assert tracker.mutations("create_label") == [("create_label", "acme/widget", "needs-investigation")]
    assert "needs-investigation" in tracker.issue(1).labels
    assert decision.actions[0].executed is True


@pytest.mark.asyncio
async def test_failing_action_does_not_stop_siblings(actor, tracker, make_result):
    tracker.add_issue(1)
    tracker.failures["close_issue"] = TrackerError("forbidden", status_code=403)
    results = {1: [make_result(a, 0.95, recommended_labels=["fixed"]) for a in ("a", "b")]}

    (decision,) = await actor.act(plan_for(1), results)

    close = decision.actions_of(ActionType.CLOSE)[0]
    assert close.executed is False
    assert "forbidden" in close.error
    assert decision.actions_of(ActionType.LABEL)[0].executed is True
    assert decision.actions_of(ActionType.COMMENT)[0].executed is True
    assert "triaged" in tracker.issue(1).labels


@pytest.mark.asyncio
async def test_link_actions_guarded_by_existing_reference(actor, tracker, make_result):
    tracker.add_issue(1, comments=[TrackerComment(body="Related PR: #12")])
    entities = [RelatedEntity(type="pr", id="12", relevance=0.9), RelatedEntity(type="issue", id="30", relevance=0.9)]

    await actor.act(plan_for(1), {1: [make_result("a", 0.3, related_entities=entities)]})

    bodies = [call[3] for call in tracker.mutations("post_comment")]
    assert "Related issue: #30" in bodies
    assert not any(body.startswith("Related PR") for body in bodies)


@pytest.mark.asyncio
async def test_dry_run_reads_but_never_mutates(tracker, settings, store, repo_root, make_result):
    tracker.add_issue(1)
    actor = ActionExecutor(tracker, settings, store, repo_root, dry_run=True)
    plan = plan_for(1)

    (decision,) = await actor.act(plan, {1: [make_result("a", 0.95)]})

    assert tracker.calls == []
    assert not any(a.executed for a in decision.actions)
    assert plan.issues[0].decision == decision
    assert store.path(DECISIONS).exists()


@pytest.mark.asyncio
async def test_decisions_persisted(actor, tracker, store, make_result):
    tracker.add_issue(1)
    plan = plan_for(1)

    await actor.act(plan, {1: [make_result("a", 0.55)]})

    data = json.loads(store.path(DECISIONS).read_text())
    assert data["decisions"][0]["issue_number"] == 1
    saved = await store.load_game_plan()
    assert saved.issues[0].decision is not None


@pytest.mark.asyncio
async def test_unknown_state_treated_as_open(actor, tracker, make_result):
    tracker.add_issue(1)
    tracker.failures["fetch_issue"] = TrackerError("timeout")

    (decision,) = await actor.act(plan_for(1), {1: [make_result("a", 0.95)]})

    # Every action needing a fresh read fails on its own
    assert decision.actions_of(ActionType.CLOSE)[0].error is not None
    assert tracker.mutations("close_issue") == []


@pytest.mark.asyncio
async def test_cached_decisions_fall_back_to_artifact(actor, tracker, store, make_result):
    tracker.add_issue(1)
    await actor.act(plan_for(1), {1: [make_result("a", 0.55)]})

    cached = await actor.load_cached_decisions(plan_for(1))

    assert [d.issue_number for d in cached] == [1]


@pytest.mark.asyncio
async def test_second_run_with_links_is_a_no_op(actor, tracker, make_result):
    tracker.add_issue(1)
    entities = [RelatedEntity(type="pr", id="99", relevance=0.9), RelatedEntity(type="issue", id="30", relevance=0.9)]
    results = {1: [make_result("a", 0.3, related_entities=entities)]}

    await actor.act(plan_for(1), results)
    first = list(tracker.calls)
    await actor.act(plan_for(1), results)

    bodies = [call[3] for call in first if call[0] == "post_comment"]
    assert "Related PR: #99" in bodies
    assert "Related issue: #30" in bodies
    assert tracker.calls == first


@pytest.mark.asyncio
async def test_issue_link_not_satisfied_by_longer_number(actor, tracker, make_result):
    tracker.add_issue(1, comments=[TrackerComment(body="Possibly related to #42")])
    entities = [RelatedEntity(type="issue", id="4", relevance=0.9)]

    await actor.act(plan_for(1), {1: [make_result("a", 0.3, related_entities=entities)]})

    bodies = [call[3] for call in tracker.mutations("post_comment")]
    assert bodies == ["Related issue: #4"]
