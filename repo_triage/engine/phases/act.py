"""
Act phase: turn findings into decisions and apply them to the tracker.

Idempotency guards:
    - Issues already closed are skipped entirely
    - Labels already present are not re-applied
    - Comments carry a hidden signature ``<!-- triage-bot:<run_id>:<n> -->``
      and are skipped when a comment with that signature exists
    - Close re-checks the issue state immediately before closing
    - Link comments are skipped when the reference is already present;
      ``#4`` never matches ``#42``

Each action records its own ``error``; a failing action never stops its
siblings. After the actions the triaged label is applied, the decision is
stored on the issue plan, and both the plan and ``triage_decisions.json``
are saved.

In dry-run mode decisions are computed and persisted but the tracker is
only read, never mutated.
"""

from pathlib import Path

import structlog

from repo_triage.config.settings import TriageSettings
from repo_triage.engine.artifact_store import DECISIONS, ArtifactStore, utc_now_iso
from repo_triage.engine.phases.base import TriagePhase
from repo_triage.exceptions import TrackerError, UnknownLabelError
from repo_triage.models.decision import ActionType, TriageAction, TriageDecision
from repo_triage.models.game_plan import GamePlan
from repo_triage.models.investigation import InvestigationResult
from repo_triage.providers.base import IssueTracker

log = structlog.get_logger(__name__)


class ActionExecutor(TriagePhase):
    """Apply triage decisions with per-action idempotency checks."""

    name = "act"

    def __init__(
        self,
        tracker: IssueTracker,
        settings: TriageSettings,
        store: ArtifactStore,
        repo_root: Path,
        dry_run: bool = False,
    ) -> None:
        super().__init__(tracker, settings, store, repo_root)
        self.dry_run = dry_run

    async def act(self, plan: GamePlan, results: dict[int, list[InvestigationResult]]) -> list[TriageDecision]:
        """Decide and apply actions for every issue in ``plan``.

        Args:
            plan: Game plan; decisions are stored on its issues
            results: Findings per issue number from the investigate phase

        Returns:
            Decisions for the issues that were still open
        """
        log.info("act_started", issues=len(plan.issues), dry_run=self.dry_run)
        decisions: list[TriageDecision] = []

        for issue in plan.issues:
            if await self._is_closed(issue.number):
                log.info("issue_already_closed", issue=issue.number)
                continue

            decision = TriageDecision.from_results(
                issue.number,
                results.get(issue.number, []),
                self.settings.thresholds,
                self.settings.repository.needs_investigation_label,
            )
            log.info(
                "decision_made",
                issue=issue.number,
                risk=decision.risk_level.value,
                confidence=round(decision.aggregate_confidence, 3),
                actions=len(decision.actions),
            )

            if not self.dry_run:
                for action in decision.actions:
                    await self._execute_action(action, issue.number)
                await self._apply_triaged_label(issue.number)

            issue.decision = decision
            decisions.append(decision)

        await self.store.save_game_plan(plan)
        await self.store.write_json(
            DECISIONS,
            {"decisions": [d.model_dump(mode="json") for d in decisions], "timestamp": utc_now_iso()},
        )

        errors = sum(1 for d in decisions for a in d.actions if a.error)
        log.info("act_complete", decisions=len(decisions), action_errors=errors)
        return decisions

    async def load_cached_decisions(self, plan: GamePlan) -> list[TriageDecision]:
        """Decisions from an earlier act phase of this run.

        Prefers the decisions stored on the plan and falls back to
        ``triage_decisions.json``.
        """
        decisions = plan.decisions()
        if decisions:
            return decisions

        data = await self.store.read_json(DECISIONS)
        if not isinstance(data, dict):
            return []
        return [TriageDecision.model_validate(d) for d in data.get("decisions", [])]

    async def _is_closed(self, issue_number: int) -> bool:
        try:
            issue = await self.tracker.fetch_issue(issue_number)
        except TrackerError as e:
            # Unknown state: proceed, each action re-checks what it needs
            log.warning("issue_state_unavailable", issue=issue_number, error=e.message)
            return False
        return issue.is_closed

    async def _execute_action(self, action: TriageAction, issue_number: int) -> None:
        try:
            params = action.parameters
            if action.type == ActionType.LABEL:
                await self._apply_labels(issue_number, list(params.get("labels", [])))
            elif action.type == ActionType.COMMENT:
                await self._post_signed_comment(issue_number, str(params.get("body", "")))
            elif action.type == ActionType.CLOSE:
                await self._close(issue_number, str(params.get("state_reason") or "completed"))
            elif action.type == ActionType.LINK_PR:
                pr_number = str(params.get("pr_number", ""))
                if pr_number:
                    await self._post_reference(issue_number, f"Related PR: #{pr_number}")
            elif action.type == ActionType.LINK_ISSUE:
                related = str(params.get("issue_number", ""))
                if related:
                    await self._post_reference(issue_number, f"Related issue: #{related}", f"#{related}")
            action.executed = True
        except Exception as e:
            action.error = str(e)
            log.warning(
                "action_failed",
                issue=issue_number,
                action=action.type.value,
                error=str(e),
                exc_info=True,
            )

    async def _apply_labels(self, issue_number: int, labels: list[str]) -> None:
        existing = set(await self.tracker.get_labels(issue_number))
        for label in labels:
            if label not in existing:
                await self._apply_label(issue_number, label)
                existing.add(label)

    async def _apply_label(self, issue_number: int, label: str) -> None:
        try:
            await self.tracker.apply_labels(issue_number, [label])
        except UnknownLabelError:
            log.info("label_created", label=label)
            await self.tracker.create_label(label)
            await self.tracker.apply_labels(issue_number, [label])

    async def _post_signed_comment(self, issue_number: int, body: str) -> None:
        if not body:
            return
        signature = self.signature(issue_number)
        if await self.tracker.has_comment_containing(issue_number, signature):
            log.info("duplicate_comment_skipped", issue=issue_number)
            return
        await self.tracker.post_comment(issue_number, f"{body}\n\n{signature}")

    async def _close(self, issue_number: int, reason: str) -> None:
        issue = await self.tracker.fetch_issue(issue_number)
        if issue.is_closed:
            log.info("issue_closed_elsewhere", issue=issue_number)
            return
        await self.tracker.close_issue(issue_number, reason=reason)
        log.info("issue_closed", issue=issue_number, reason=reason)

    async def _post_reference(self, issue_number: int, text: str, guard: str | None = None) -> None:
        if await self.tracker.has_reference(issue_number, guard or text):
            return
        await self.tracker.post_comment(issue_number, text)

    async def _apply_triaged_label(self, issue_number: int) -> None:
        try:
            await self._apply_labels(issue_number, [self.settings.repository.triaged_label])
        except TrackerError as e:
            log.error("triaged_label_failed", issue=issue_number, error=e.message)
