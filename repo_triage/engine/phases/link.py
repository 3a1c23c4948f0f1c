"""
Link phase: cross-reference triaged issues with PRs, issues and release docs.

For every decision:

- Related PRs with relevance >= 0.6 get ``Linked by triage: PR #<id>``
  unless a comment already mentions ``PR #<id>``.
- Related issues with relevance >= 0.7 get ``Related: #<id>`` unless a
  comment already mentions ``#<id>``. References match on a number
  boundary, so ``#4`` is not satisfied by ``#42``.
- If the changelog or a ``<release_notes>/<version>/release_notes.md`` file
  mentions ``#<n>``, a read-only link is recorded as already applied, and
  the issue is added to that version's ``linked_issues.json``.

All links are appended to ``plan.links_to_create`` and written to
``triage_links.json``.
"""

import re
from pathlib import Path
from typing import Any

import aiofiles
import structlog

from repo_triage.engine.artifact_store import LINKS, read_json_file, utc_now_iso, write_json_file
from repo_triage.engine.phases.base import TriagePhase
from repo_triage.exceptions import ArtifactError, TrackerError
from repo_triage.models.decision import ISSUE_LINK_RELEVANCE, PR_LINK_RELEVANCE, TriageDecision
from repo_triage.models.game_plan import GamePlan, LinkSpec

log = structlog.get_logger(__name__)

LINKED_ISSUES = "linked_issues.json"
RELEASE_NOTES_FILE = "release_notes.md"


async def _read_text(path: Path) -> str | None:
    if not path.is_file():
        return None
    async with aiofiles.open(path) as f:
        return await f.read()


async def add_linked_issue(path: Path, entry: dict[str, Any]) -> bool:
    """Add ``entry`` to a ``linked_issues.json`` unless its number is present.

    An unreadable file is replaced by a fresh list.

    Returns:
        True if the file was updated
    """
    try:
        data = await read_json_file(path)
    except ArtifactError:
        data = None
    if not isinstance(data, dict) or not isinstance(data.get("issues"), list):
        data = {"issues": []}

    if any(isinstance(i, dict) and i.get("number") == entry["number"] for i in data["issues"]):
        return False
    data["issues"].append(entry)
    await write_json_file(path, data)
    return True


class Linker(TriagePhase):
    name = "link"

    async def link(self, plan: GamePlan, decisions: list[TriageDecision]) -> list[LinkSpec]:
        log.info("link_started", decisions=len(decisions))
        links: list[LinkSpec] = []

        for decision in decisions:
            links.extend(await self._link_related(decision))
            links.extend(await self._link_release_docs(decision))

        plan.links_to_create.extend(links)
        await self.store.save_game_plan(plan)
        await self.store.write_json(
            LINKS,
            {"links_created": [link.model_dump() for link in links], "timestamp": utc_now_iso()},
        )

        applied = sum(1 for link in links if link.applied)
        log.info("link_complete", applied=applied, total=len(links))
        return links

    async def _link_related(self, decision: TriageDecision) -> list[LinkSpec]:
        number = decision.issue_number
        links: list[LinkSpec] = []
        seen: set[tuple[str, str]] = set()

        for result in decision.investigation_results:
            for entity in result.related_entities:
                if not entity.id or (entity.type, entity.id) in seen:
                    continue
                if entity.type == "pr" and entity.relevance >= PR_LINK_RELEVANCE:
                    guard = f"PR #{entity.id}"
                    body = f"Linked by triage: PR #{entity.id} -- {entity.description}"
                    description = f"Related PR: {entity.description}"
                elif entity.type == "issue" and entity.relevance >= ISSUE_LINK_RELEVANCE:
                    guard = f"#{entity.id}"
                    body = f"Related: #{entity.id} -- {entity.description}"
                    description = f"Related issue: {entity.description}"
                else:
                    continue
                seen.add((entity.type, entity.id))

                link = LinkSpec(
                    source_type="issue",
                    source_id=number,
                    target_type=entity.type,
                    target_id=entity.id,
                    description=description,
                )
                try:
                    if not await self.tracker.has_reference(number, guard):
                        await self.tracker.post_comment(number, body)
                    link.applied = True
                except TrackerError as e:
                    log.warning("link_comment_failed", issue=number, target=guard, error=e.message)
                links.append(link)

        return links

    async def _link_release_docs(self, decision: TriageDecision) -> list[LinkSpec]:
        number = decision.issue_number
        reference = re.compile(rf"#{number}(?!\d)")
        repository = self.settings.repository
        links: list[LinkSpec] = []

        changelog = await _read_text(self.repo_root / repository.changelog_path)
        if changelog is not None and reference.search(changelog):
            links.append(
                LinkSpec(
                    source_type="issue",
                    source_id=number,
                    target_type="changelog",
                    target_id=repository.changelog_path,
                    description=f"Issue referenced in {repository.changelog_path}",
                    applied=True,
                )
            )

        notes_root = self.repo_root / repository.release_notes_path
        if not notes_root.is_dir():
            return links

        for version_dir in sorted(p for p in notes_root.iterdir() if p.is_dir()):
            notes = await _read_text(version_dir / RELEASE_NOTES_FILE)
            if notes is None or not reference.search(notes):
                continue
            links.append(
                LinkSpec(
                    source_type="issue",
                    source_id=number,
                    target_type="release_notes",
                    target_id=version_dir.name,
                    description=f"Issue referenced in release notes {version_dir.name}",
                    applied=True,
                )
            )
            await add_linked_issue(
                version_dir / LINKED_ISSUES,
                {
                    "number": number,
                    "confidence": decision.aggregate_confidence,
                    "risk_level": decision.risk_level.value,
                    "linked_at": utc_now_iso(),
                },
            )

        return links
