"""
Verify phase: re-read tracker state and compare it with the decisions.

One fetch per issue. Checks:

- ``label_<name>`` for every label a label action asked for
- ``state_closed`` for a close action
- ``comments_posted`` when the decision had comment actions; this only
  confirms the issue has at least one comment, not that it is ours
- ``triaged_label`` always

A fetch failure yields a single failed ``fetch_state`` check for that issue.
The verifier never retries and never mutates the tracker; it only sets
``TriageAction.verified`` and writes ``triage_verification.json``.
"""

import structlog

from repo_triage.engine.artifact_store import VERIFICATION
from repo_triage.engine.phases.base import TriagePhase
from repo_triage.exceptions import TrackerError
from repo_triage.models.decision import ActionType, TriageDecision
from repo_triage.models.tracker import TrackerIssue
from repo_triage.models.verification import IssueVerification, VerificationCheck, VerificationReport

log = structlog.get_logger(__name__)


class Verifier(TriagePhase):
    name = "verify"

    async def verify(self, decisions: list[TriageDecision]) -> VerificationReport:
        log.info("verify_started", decisions=len(decisions))
        report = VerificationReport()

        for decision in decisions:
            try:
                issue = await self.tracker.fetch_issue(decision.issue_number)
            except TrackerError as e:
                log.warning("verify_fetch_failed", issue=decision.issue_number, error=e.message)
                report.verifications.append(
                    IssueVerification(
                        issue_number=decision.issue_number,
                        checks=[
                            VerificationCheck(name="fetch_state", passed=False, message="Could not fetch issue state")
                        ],
                    )
                )
                continue

            verification = self._check_issue(decision, issue)
            report.verifications.append(verification)
            log.info(
                "issue_verified",
                issue=decision.issue_number,
                passed=verification.passed,
                checks=len(verification.checks),
            )

        await self.store.write_json(VERIFICATION, report.to_artifact())
        log.info("verify_complete", verified=report.passed_count, total=len(report.verifications))
        return report

    def _check_issue(self, decision: TriageDecision, issue: TrackerIssue) -> IssueVerification:
        checks: list[VerificationCheck] = []

        for action in decision.actions_of(ActionType.LABEL):
            label_checks = [_label_check(label, issue.labels) for label in action.parameters.get("labels", [])]
            checks.extend(label_checks)
            action.verified = all(c.passed for c in label_checks)

        for action in decision.actions_of(ActionType.CLOSE):
            closed = issue.is_closed
            message = "Issue correctly closed" if closed else f'Issue state is "{issue.state.value}", expected "closed"'
            checks.append(VerificationCheck(name="state_closed", passed=closed, message=message))
            action.verified = closed

        comment_actions = decision.actions_of(ActionType.COMMENT)
        if comment_actions:
            count = len(issue.comments)
            checks.append(
                VerificationCheck(name="comments_posted", passed=count > 0, message=f"Issue has {count} comments")
            )
            for action in comment_actions:
                action.verified = count > 0

        triaged = self.settings.repository.triaged_label
        has_triaged = triaged in issue.labels
        checks.append(
            VerificationCheck(
                name="triaged_label",
                passed=has_triaged,
                message=f'"{triaged}" label applied' if has_triaged else f'"{triaged}" label NOT found',
            )
        )
        return IssueVerification(issue_number=decision.issue_number, checks=checks)


def _label_check(label: str, present: list[str]) -> VerificationCheck:
    found = label in present
    return VerificationCheck(
        name=f"label_{label}",
        passed=found,
        message=f'Label "{label}" applied' if found else f'Label "{label}" NOT found on issue',
    )
