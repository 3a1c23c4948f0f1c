"""
Pre-release correlation: which open issues does the upcoming release address?

Steps:
    1. Read changed files and commit subjects for ``<prev_tag>..HEAD``
    2. Derive search keywords and search the own repository (and, when
       cross-repo linking is enabled, every dependent repository)
    3. Add issues referenced as ``#N`` in commit subjects at 0.8 confidence,
       after confirming they exist
    4. Optionally ask an agent to scan the error-monitoring system for
       errors whose stack traces touch the changed files
    5. Ask the correlation agent to score every candidate against the diff.
       It rewrites ``issue_manifest.json``; lists it produced replace the
       candidates, lists it did not produce keep their unscored entries

The result is a single ``issue_manifest.json`` in the run directory, later
consumed by the post-release phase.
"""

import json
from pathlib import Path

import structlog

from repo_triage.config.settings import TriageSettings
from repo_triage.engine.artifact_store import ERROR_MONITOR_SCAN, MANIFEST, ArtifactStore
from repo_triage.engine.phases.base import TriagePhase
from repo_triage.engine.task_executor import AgentTask, TaskExecutor
from repo_triage.exceptions import ArtifactError, TrackerError
from repo_triage.models.manifest import (
    REFERENCED_CONFIDENCE,
    IssueManifest,
    ManifestIssue,
    MonitoredError,
    parse_entries,
)
from repo_triage.providers.base import IssueTracker, VersionControl
from repo_triage.utils.keywords import extract_release_keywords, referenced_issue_numbers

log = structlog.get_logger(__name__)

MAX_KEYWORDS = 10
RESULTS_PER_KEYWORD = 5
ERROR_MONITOR_TASK = "error-monitor-scan"
CORRELATION_TASK = "correlation"


class ReleaseCorrelator(TriagePhase):
    """Build the issue manifest for an upcoming release."""

    name = "pre_release"

    def __init__(
        self,
        tracker: IssueTracker,
        settings: TriageSettings,
        store: ArtifactStore,
        repo_root: Path,
        executor: TaskExecutor,
        vcs: VersionControl,
    ) -> None:
        super().__init__(tracker, settings, store, repo_root)
        self.executor = executor
        self.vcs = vcs

    async def pre_release(self, prev_tag: str, version: str) -> IssueManifest:
        """Correlate open issues with the changes since ``prev_tag``.

        Args:
            prev_tag: Tag of the previous release
            version: Version being released

        Returns:
            The manifest written to ``issue_manifest.json``
        """
        manifest = IssueManifest(version=version, prev_tag=prev_tag)

        changed_files = await self.vcs.changed_files(prev_tag)
        subjects = await self.vcs.commit_subjects(prev_tag)
        keywords = extract_release_keywords(changed_files, subjects)
        log.info(
            "pre_release_started",
            version=version,
            prev_tag=prev_tag,
            changed_files=len(changed_files),
            commits=len(subjects),
            keywords=len(keywords),
        )

        release = self.settings.release
        if release.scan_tracker:
            manifest.github_issues = await self._find_candidates(self.repo, keywords, subjects)
            log.info("candidates_found", repo=self.repo, count=len(manifest.github_issues))

            if self.settings.cross_repo.enabled:
                for target in self.settings.cross_repo.repos:
                    found = await self._find_candidates(target.full_name, keywords, subjects)
                    manifest.cross_repo_issues.extend(found)
                    log.info("candidates_found", repo=target.full_name, count=len(found))

        if release.scan_error_monitor and self.settings.error_monitor.configured:
            manifest.error_monitor_issues = await self._scan_error_monitor(changed_files)
            log.info("monitored_errors_found", count=len(manifest.error_monitor_issues))

        if manifest.total:
            await self._correlate(manifest, prev_tag, changed_files)

        manifest.build_summary()
        await self.store.write_json(MANIFEST, manifest)
        log.info("manifest_written", path=str(self.store.path(MANIFEST)), summary=manifest.summary)
        return manifest

    async def _find_candidates(self, repo: str, keywords: list[str], subjects: list[str]) -> list[ManifestIssue]:
        found: dict[int, ManifestIssue] = {}

        for keyword in keywords[:MAX_KEYWORDS]:
            try:
                issues = await self.tracker.search_issues(repo, keyword, limit=RESULTS_PER_KEYWORD)
            except TrackerError as e:
                log.warning("keyword_search_failed", repo=repo, keyword=keyword, error=e.message)
                continue
            for issue in issues:
                if issue.number not in found:
                    found[issue.number] = ManifestIssue(
                        number=issue.number,
                        title=issue.title,
                        repo=repo,
                        confidence=0.0,
                        evidence=f"Matched keyword: {keyword}",
                    )

        for number in referenced_issue_numbers(subjects):
            if number in found:
                continue
            try:
                issue = await self.tracker.fetch_issue(number, repo=repo)
            except TrackerError:
                log.debug("referenced_issue_not_found", repo=repo, issue=number)
                continue
            found[number] = ManifestIssue(
                number=number,
                title=issue.title,
                repo=repo,
                confidence=REFERENCED_CONFIDENCE,
                evidence="Directly referenced in commit message",
                category="referenced",
            )

        return list(found.values())

    async def _scan_error_monitor(self, changed_files: list[str]) -> list[MonitoredError]:
        monitor = self.settings.error_monitor
        output = self.store.path(ERROR_MONITOR_SCAN)
        example = [
            {
                "id": "PROJECT-123",
                "title": "Error title",
                "project": "project-slug",
                "confidence": 0.7,
                "evidence": "Stack trace references a changed file",
            }
        ]
        prompt = "\n".join(
            [
                "You have access to the error-monitoring MCP server. Query it for recent unresolved errors.",
                "",
                f"Organization: {monitor.organization}",
                f"Projects: {', '.join(monitor.projects)}",
                f"Time range: last {monitor.recent_errors_hours} hours",
                "",
                "Changed files in this release:",
                *changed_files,
                "",
                "Instructions:",
                "1. Search for recent unresolved issues",
                "2. For each, check whether any changed file appears in its stack trace",
                f"3. Write a JSON array to {output} in this format:",
                "```json",
                json.dumps(example, indent=2),
                "```",
                "",
                "Only include errors whose stack trace or message references a changed file.",
                "Write valid JSON only.",
            ]
        )

        (outcome,) = await self.executor.execute_batch([self._agent_task(ERROR_MONITOR_TASK, prompt)])
        if not outcome.success:
            log.warning("error_monitor_scan_failed", error=outcome.error_summary)
            return []
        try:
            data = await self.store.read_json(ERROR_MONITOR_SCAN)
        except ArtifactError as e:
            log.warning("error_monitor_scan_unreadable", error=e.message)
            return []
        return parse_entries(MonitoredError, data)

    async def _correlate(self, manifest: IssueManifest, prev_tag: str, changed_files: list[str]) -> None:
        output = self.store.path(MANIFEST)
        prompt = "\n".join(
            [
                "You are a release correlation agent. Decide whether the code changes in this",
                "release actually fix or address the listed issues.",
                "",
                "For each issue in the manifest below:",
                f"1. Run `git diff {prev_tag}..HEAD` to see what changed",
                "2. Read the issue to understand what it reports",
                "3. Assess whether the diff fixes it",
                "4. Assign a confidence score (0.0-1.0) and a category",
                "",
                "Confidence guide:",
                "- 0.9-1.0: the diff clearly and directly fixes this exact issue",
                "- 0.7-0.8: the diff very likely addresses this issue",
                "- 0.5-0.6: the diff is related but may not fully fix it",
                "- 0.0-0.4: weak or no connection",
                "",
                'Categories: "fixed", "improved", "related", "unrelated"',
                "",
                f"Changed files: {len(changed_files)}",
                "",
                "Current issue manifest:",
                manifest.model_dump_json(indent=2),
                "",
                f"Write the UPDATED manifest to {output}. Keep the same JSON structure and",
                'only update the "confidence", "evidence" and "category" fields.',
                "Remove issues with confidence < 0.3.",
                "Write valid JSON only.",
            ]
        )

        (outcome,) = await self.executor.execute_batch([self._agent_task(CORRELATION_TASK, prompt)])
        if not outcome.success:
            log.warning("correlation_failed", error=outcome.error_summary)
            return
        try:
            data = await self.store.read_json(MANIFEST)
        except ArtifactError as e:
            log.warning("correlation_output_unreadable", error=e.message)
            return
        if not isinstance(data, dict):
            log.warning("correlation_output_missing")
            return
        manifest.merge_correlated(data)
        log.info("correlation_merged", total=manifest.total)

    def _agent_task(self, task_id: str, prompt: str) -> AgentTask:
        return AgentTask(
            id=task_id,
            prompt=prompt,
            model=self.settings.runner.model,
            working_dir=self.repo_root,
            audit_dir=self.store.run_dir,
            max_turns=self.settings.runner.max_turns,
        )
