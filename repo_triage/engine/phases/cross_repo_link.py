"""
Cross-repository link phase.

For each triaged issue, up to five meaningful title words are used to
search every configured dependent repository for open issues. Each match
gets one reference comment naming the source issue, its aggregate
confidence and risk level, signed with
``<!-- cross-repo-triage:<owner/repo>#<n> -->``. A match whose comments
already mention ``<owner/repo>#<n>`` is left alone.

This phase only comments. It never labels or closes anything outside the
triaged repository. A failing search or comment affects only that target
repository.
"""

from typing import Any

import structlog

from repo_triage.engine.artifact_store import CROSS_REPO_LINKS, utc_now_iso
from repo_triage.engine.phases.base import TriagePhase
from repo_triage.exceptions import TrackerError
from repo_triage.models.decision import TriageDecision
from repo_triage.models.game_plan import GamePlan
from repo_triage.utils.keywords import extract_title_terms

log = structlog.get_logger(__name__)

SEARCH_LIMIT = 5


class CrossRepoLinker(TriagePhase):
    name = "cross_repo_link"

    async def link(self, plan: GamePlan, decisions: list[TriageDecision]) -> list[dict[str, Any]]:
        """Post cross-references in dependent repositories.

        Returns:
            One record per comment posted by this run
        """
        config = self.settings.cross_repo
        if not config.enabled:
            log.info("cross_repo_disabled")
            return []
        if not config.repos:
            log.info("cross_repo_no_targets")
            return []

        log.info("cross_repo_started", repos=[r.full_name for r in config.repos], decisions=len(decisions))
        links: list[dict[str, Any]] = []

        for decision in decisions:
            issue = plan.find_issue(decision.issue_number)
            if issue is None:
                continue
            query = " ".join(extract_title_terms(issue.title))
            if not query:
                continue

            for target in config.repos:
                try:
                    links.extend(await self._link_in_repo(target.full_name, query, decision, issue.title))
                except TrackerError as e:
                    log.warning(
                        "cross_repo_search_failed",
                        repo=target.full_name,
                        issue=decision.issue_number,
                        error=e.message,
                    )

        await self.store.write_json(
            CROSS_REPO_LINKS,
            {
                "links": links,
                "timestamp": utc_now_iso(),
                "repos_searched": [r.full_name for r in config.repos],
            },
        )
        log.info("cross_repo_complete", links=len(links))
        return links

    async def _link_in_repo(
        self,
        target_repo: str,
        query: str,
        decision: TriageDecision,
        title: str,
    ) -> list[dict[str, Any]]:
        number = decision.issue_number
        reference = f"{self.repo}#{number}"
        links: list[dict[str, Any]] = []

        for related in await self.tracker.search_issues(target_repo, query, limit=SEARCH_LIMIT):
            if await self.tracker.has_reference(related.number, reference, repo=target_repo):
                continue
            await self.tracker.post_comment(related.number, self._comment(decision, title), repo=target_repo)
            links.append(
                {
                    "source_repo": self.repo,
                    "source_issue": number,
                    "target_repo": target_repo,
                    "target_issue": related.number,
                    "target_title": related.title,
                }
            )
            log.info("cross_repo_linked", target=f"{target_repo}#{related.number}", source_issue=number)

        return links

    def _comment(self, decision: TriageDecision, title: str) -> str:
        number = decision.issue_number
        url = self.settings.tracker.issue_url(self.repo, number)
        return "\n".join(
            [
                "## Cross-Repository Reference",
                "",
                f"Related issue in **{self.repo}**: [#{number}]({url})",
                "",
                f"**{title}**",
                "",
                f"Confidence: {decision.aggregate_confidence:.0%} | Risk: {decision.risk_level.value}",
                "",
                f"<!-- cross-repo-triage:{self.repo}#{number} -->",
            ]
        )
