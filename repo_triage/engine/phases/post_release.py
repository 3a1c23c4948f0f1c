"""
Post-release notification: close the loop on issues a release addressed.

Consumes the ``issue_manifest.json`` written by the pre-release phase:

- Own-repo issues at or above the comment threshold get a signed release
  comment (``<!-- post-release:<run_id>:<n> -->``); issues already signed
  or closed are skipped. Issues at or above the auto-close threshold are
  closed when ``release.close_own_repo`` is set.
- Cross-repo issues get a signed recommendation comment. They are never
  closed.
- Monitored errors are handed to an agent that annotates them with the
  release. The agent is told not to resolve or close anything.
- ``<release_notes>/v<version>/linked_issues.json`` is rewritten when that
  directory exists.

A missing or unreadable manifest is logged and the phase does nothing.
"""

from pathlib import Path
from typing import Any

import structlog

from repo_triage.config.settings import TriageSettings
from repo_triage.engine.artifact_store import (
    MANIFEST,
    POST_RELEASE_REPORT,
    ArtifactStore,
    find_latest,
    read_json_file,
    utc_now_iso,
    write_json_file,
)
from repo_triage.engine.phases.base import TriagePhase
from repo_triage.engine.phases.link import LINKED_ISSUES
from repo_triage.engine.task_executor import AgentTask, TaskExecutor
from repo_triage.exceptions import ArtifactError, TrackerError
from repo_triage.models.manifest import IssueManifest, ManifestIssue
from repo_triage.providers.base import IssueTracker

log = structlog.get_logger(__name__)

ANNOTATION_TASK = "error-monitor-annotate"
ANNOTATION_MAX_TURNS = 30


class ReleaseCloser(TriagePhase):
    """Notify, and where confident enough close, issues fixed by a release."""

    name = "post_release"

    def __init__(
        self,
        tracker: IssueTracker,
        settings: TriageSettings,
        store: ArtifactStore,
        repo_root: Path,
        executor: TaskExecutor,
    ) -> None:
        super().__init__(tracker, settings, store, repo_root)
        self.executor = executor

    async def post_release(
        self,
        version: str,
        release_tag: str,
        release_url: str = "",
        manifest_path: Path | None = None,
    ) -> list[dict[str, Any]]:
        """Act on the release manifest.

        Args:
            version: Released version, without the ``v`` prefix
            release_tag: Git tag of the release
            release_url: Release page; derived from the tag when empty
            manifest_path: Manifest to use; defaults to the newest one on disk

        Returns:
            Actions taken, as recorded in ``post_release_report.json``
        """
        manifest = await self._load_manifest(manifest_path)
        if manifest is None:
            return []

        web = self.settings.tracker.web_url.rstrip("/")
        release_url = release_url or f"{web}/{self.repo}/releases/tag/{release_tag}"
        log.info(
            "post_release_started",
            version=version,
            own=len(manifest.github_issues),
            cross_repo=len(manifest.cross_repo_issues),
            monitored_errors=len(manifest.error_monitor_issues),
        )

        thresholds = self.settings.thresholds
        release = self.settings.release
        actions: list[dict[str, Any]] = []

        for issue in manifest.github_issues:
            if issue.confidence < thresholds.comment:
                continue
            try:
                actions.extend(await self._notify_own_issue(issue, version, release_url))
            except TrackerError as e:
                log.warning("release_notification_failed", issue=issue.number, error=e.message)

        if release.comment_cross_repo:
            for issue in manifest.cross_repo_issues:
                if issue.confidence < thresholds.comment or not issue.repo:
                    continue
                try:
                    action = await self._notify_cross_repo_issue(issue, version, release_url)
                except TrackerError as e:
                    log.warning("release_notification_failed", repo=issue.repo, issue=issue.number, error=e.message)
                    continue
                if action is not None:
                    actions.append(action)

        if release.annotate_errors and manifest.error_monitor_issues:
            await self._annotate_errors(manifest, version, release_tag)

        await self._update_linked_issues(manifest, version)

        await self.store.write_json(
            POST_RELEASE_REPORT,
            {"version": version, "release_tag": release_tag, "actions_taken": actions, "timestamp": utc_now_iso()},
        )
        log.info("post_release_complete", actions=len(actions))
        return actions

    async def _load_manifest(self, manifest_path: Path | None) -> IssueManifest | None:
        path = manifest_path or find_latest(self.settings.runs_dir(self.repo_root), MANIFEST)
        if path is None:
            log.warning("manifest_not_found", hint="run pre-release first")
            return None
        try:
            data = await read_json_file(Path(path))
        except ArtifactError as e:
            log.error("manifest_unreadable", path=str(path), error=e.message)
            return None
        if data is None:
            log.warning("manifest_not_found", path=str(path), hint="run pre-release first")
            return None
        try:
            return IssueManifest.model_validate(data)
        except ValueError as e:
            log.error("manifest_invalid", path=str(path), error=str(e))
            return None

    async def _notify_own_issue(self, issue: ManifestIssue, version: str, release_url: str) -> list[dict[str, Any]]:
        signature = f"<!-- post-release:{self.store.run_id}:{issue.number} -->"
        current = await self.tracker.fetch_issue(issue.number)
        if current.has_comment_containing(signature):
            log.info("release_comment_exists", issue=issue.number)
            return []
        if current.is_closed:
            log.info("issue_already_closed", issue=issue.number)
            return []

        await self.tracker.post_comment(issue.number, self._own_comment(issue, version, release_url, signature))
        actions = [{"type": "comment", "issue": issue.number, "repo": self.repo}]

        if issue.confidence >= self.settings.thresholds.auto_close and self.settings.release.close_own_repo:
            await self.tracker.close_issue(issue.number)
            actions.append({"type": "close", "issue": issue.number, "repo": self.repo})
            log.info("issue_closed", issue=issue.number, confidence=issue.confidence)
        return actions

    def _own_comment(self, issue: ManifestIssue, version: str, release_url: str, signature: str) -> str:
        repository = self.settings.repository
        web = f"{self.settings.tracker.web_url.rstrip('/')}/{self.repo}"
        lines = [
            f"## Release Update: v{version}",
            "",
            f"This issue appears to be addressed in **[v{version}]({release_url})** "
            f"({issue.confidence:.0%} confidence).",
            "",
            "**Resources:**",
            f"- [Release Notes]({release_url})",
            f"- [CHANGELOG]({web}/blob/main/{repository.changelog_path})",
            f"- [Release Notes Folder]({web}/tree/main/{repository.release_notes_path}/v{version}/)",
        ]
        thresholds = self.settings.thresholds
        if issue.confidence >= thresholds.auto_close:
            lines.extend(
                [
                    "",
                    "This issue is being **automatically closed** as the fix has been verified with high confidence.",
                    "If this was closed in error, please reopen.",
                ]
            )
        elif issue.confidence >= thresholds.suggest_close:
            lines.extend(["", "We recommend reviewing and closing this issue if the fix is confirmed."])
        lines.extend(["", signature])
        return "\n".join(lines) + "\n"

    async def _notify_cross_repo_issue(
        self,
        issue: ManifestIssue,
        version: str,
        release_url: str,
    ) -> dict[str, Any] | None:
        signature = f"<!-- cross-repo-release:{self.store.run_id}:{issue.number} -->"
        if await self.tracker.has_comment_containing(issue.number, signature, repo=issue.repo):
            log.info("release_comment_exists", repo=issue.repo, issue=issue.number)
            return None

        name = self.settings.repository.name
        thresholds = self.settings.thresholds
        if issue.confidence >= thresholds.auto_close:
            advice = (
                "**Recommendation:** This fix appears highly relevant. Consider closing this issue after "
                f"verifying the fix by updating your `{name}` dependency to v{version} or later."
            )
        elif issue.confidence >= thresholds.suggest_close:
            advice = (
                "**Note:** This may be related. Please review the release notes and test whether "
                f"updating your `{name}` dependency resolves this issue."
            )
        else:
            advice = "This release contains changes that may be related to this issue."

        body = "\n".join(
            [
                "## Cross-Repository Release Notification",
                "",
                f"A potentially related fix has been released in **[{self.repo} v{version}]({release_url})** "
                f"({issue.confidence:.0%} confidence).",
                "",
                advice,
                "",
                signature,
            ]
        )
        await self.tracker.post_comment(issue.number, body + "\n", repo=issue.repo)
        log.info("cross_repo_release_comment", repo=issue.repo, issue=issue.number)
        return {"type": "cross_repo_comment", "issue": issue.number, "repo": issue.repo}

    async def _annotate_errors(self, manifest: IssueManifest, version: str, release_tag: str) -> None:
        errors = ", ".join(f"{e.id} ({e.project})" for e in manifest.error_monitor_issues)
        prompt = "\n".join(
            [
                "You have access to the error-monitoring MCP server. For each of the following errors,",
                "add a note linking it to the release.",
                "",
                f"Errors: {errors}",
                f"Release: {self.repo} v{version}",
                f"Release tag: {release_tag}",
                "",
                f"For each error, add a note that it may be addressed in release v{version}.",
                "If notes cannot be added, report which errors you could not annotate.",
                "",
                "Do not close or resolve any errors.",
            ]
        )
        task = AgentTask(
            id=ANNOTATION_TASK,
            prompt=prompt,
            model=self.settings.runner.model,
            working_dir=self.repo_root,
            audit_dir=self.store.run_dir,
            max_turns=ANNOTATION_MAX_TURNS,
        )
        (outcome,) = await self.executor.execute_batch([task])
        if outcome.success:
            log.info("monitored_errors_annotated", count=len(manifest.error_monitor_issues))
        else:
            log.warning("monitored_error_annotation_failed", error=outcome.error_summary)

    async def _update_linked_issues(self, manifest: IssueManifest, version: str) -> None:
        release_dir = self.repo_root / self.settings.repository.release_notes_path / f"v{version}"
        if not release_dir.is_dir():
            return

        threshold = self.settings.thresholds.comment
        data = {
            "version": version,
            "updated_at": utc_now_iso(),
            "github_issues": [
                {"number": i.number, "title": i.title, "confidence": i.confidence, "category": i.category}
                for i in manifest.github_issues
                if i.confidence >= threshold
            ],
            "cross_repo_issues": [
                {"number": i.number, "repo": i.repo, "title": i.title, "confidence": i.confidence}
                for i in manifest.cross_repo_issues
                if i.confidence >= threshold
            ],
            "error_monitor_issues": [
                {"id": e.id, "project": e.project, "title": e.title, "confidence": e.confidence}
                for e in manifest.error_monitor_issues
                if e.confidence >= threshold
            ],
        }
        path = await write_json_file(release_dir / LINKED_ISSUES, data)
        log.info("linked_issues_updated", path=str(path))
