"""
Plan phase: decide which issues a run processes.

Two entry points:

- ``plan_single_issue(n)`` fetches one issue and wraps it in a one-issue plan.
- ``plan_auto_triage()`` lists open issues, drops the ones already carrying
  the triaged label and wraps the rest.

Tracker failures here are fatal for the run. The builder never writes to
the run directory; the pipeline persists the plan only after it has been
built successfully.
"""

import structlog

from repo_triage.config.settings import TriageSettings
from repo_triage.models.game_plan import GamePlan
from repo_triage.providers.base import IssueTracker

log = structlog.get_logger(__name__)


class PlanBuilder:
    """Build a ``GamePlan`` from tracker state.

    Attributes:
        tracker: Issue tracker queried for issue metadata.
        settings: Supplies the triaged label.
    """

    name = "plan"

    def __init__(self, tracker: IssueTracker, settings: TriageSettings, issue_limit: int = 100) -> None:
        self.tracker = tracker
        self.settings = settings
        self.issue_limit = issue_limit

    async def plan_single_issue(self, issue_number: int) -> GamePlan:
        """Plan a run over one issue.

        Raises:
            TrackerError: If the issue cannot be fetched
        """
        issue = await self.tracker.fetch_issue(issue_number)
        plan = GamePlan.for_issues([issue.summary()])
        log.info("plan_built", plan_id=plan.plan_id, issues=1, tasks=plan.task_count)
        return plan

    async def plan_auto_triage(self) -> GamePlan:
        """Plan a run over every open issue without the triaged label.

        Raises:
            TrackerError: If open issues cannot be listed
        """
        triaged = self.settings.repository.triaged_label
        open_issues = await self.tracker.list_open_issues(limit=self.issue_limit)
        untriaged = [issue for issue in open_issues if triaged not in issue.labels]

        log.info("open_issues_listed", open=len(open_issues), untriaged=len(untriaged))
        if not untriaged:
            return GamePlan.empty()

        plan = GamePlan.for_issues([issue.summary() for issue in untriaged])
        log.info("plan_built", plan_id=plan.plan_id, issues=len(plan.issues), tasks=plan.task_count)
        return plan
