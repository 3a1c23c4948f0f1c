"""
Triage pipeline: sequence the phases of one run under the global lock.

Phase order::

    plan -> investigate -> act -> verify -> link -> cross_repo_link

A checkpoint is written after every completed phase. Failure handling
follows three tiers:

1. Fatal: the lock cannot be acquired, or the tracker fails while planning.
   The exception propagates and nothing is written.
2. Phase-fatal: any exception in investigate or act. The checkpoint of the
   last completed phase is saved and ``PhaseError`` is raised; the run can
   be resumed with ``repo-triage resume <run_id>``.
3. Best effort: verify, link and cross-repo failures are logged, recorded
   in ``meta.json`` and the run continues.

Resume loads the checkpoint and re-enters at the first phase it does not
cover. Completed investigation tasks are reused rather than re-dispatched,
and if act already ran its decisions are loaded from the run directory.

Dry-run mode stops after act, never mutates the tracker, and does not
checkpoint act, so the run can later be resumed for real.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TypeVar

import structlog

from repo_triage.config.settings import TriageSettings
from repo_triage.engine.artifact_store import ArtifactStore
from repo_triage.engine.checkpoint import CheckpointStore, Phase
from repo_triage.engine.phases.act import ActionExecutor
from repo_triage.engine.phases.cross_repo_link import CrossRepoLinker
from repo_triage.engine.phases.investigate import InvestigationCoordinator
from repo_triage.engine.phases.link import Linker
from repo_triage.engine.phases.plan import PlanBuilder
from repo_triage.engine.phases.post_release import ReleaseCloser
from repo_triage.engine.phases.pre_release import ReleaseCorrelator
from repo_triage.engine.phases.verify import Verifier
from repo_triage.engine.run_lock import RunLock
from repo_triage.engine.task_executor import TaskExecutor
from repo_triage.exceptions import PhaseError
from repo_triage.models.decision import TriageDecision
from repo_triage.models.game_plan import GamePlan, LinkSpec
from repo_triage.models.manifest import IssueManifest
from repo_triage.models.verification import VerificationReport
from repo_triage.providers.base import AgentRunner, IssueTracker, VersionControl
from repo_triage.utils.logging_config import bind_run, unbind_run

log = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass
class PipelineSummary:
    """What a triage run did. ``run_id`` is None when there was nothing to triage."""

    run_id: str | None
    run_dir: Path | None
    issues: int = 0
    decisions: list[TriageDecision] = field(default_factory=list)
    verification: VerificationReport | None = None
    links: list[LinkSpec] = field(default_factory=list)
    cross_repo_links: list[dict[str, Any]] = field(default_factory=list)
    phase_errors: dict[str, str] = field(default_factory=dict)
    dry_run: bool = False


class TriagePipeline:
    """Entry point for triage and release-correlation runs.

    Attributes:
        settings: Read-only configuration snapshot.
        tracker: Issue tracker client.
        vcs: Version-control history, used by pre-release correlation.
        repo_root: Checkout of the repository under triage.
        lock: Global run lock.
        executor: Agent task executor shared by all phases.
    """

    def __init__(
        self,
        settings: TriageSettings,
        tracker: IssueTracker,
        runner: AgentRunner,
        vcs: VersionControl,
        repo_root: Path,
        lock: RunLock,
        executor: TaskExecutor | None = None,
        force: bool = False,
    ) -> None:
        self.settings = settings
        self.tracker = tracker
        self.vcs = vcs
        self.repo_root = Path(repo_root)
        self.lock = lock
        self.force = force
        runner_config = settings.runner
        self.executor = executor or TaskExecutor(
            runner,
            max_concurrent=runner_config.max_concurrent,
            max_retries=runner_config.max_retries,
            initial_backoff=runner_config.initial_backoff,
            max_backoff=runner_config.max_backoff,
        )

    @property
    def runs_dir(self) -> Path:
        return self.settings.runs_dir(self.repo_root)

    async def run_single(self, issue_number: int, dry_run: bool = False) -> PipelineSummary:
        """Triage one issue."""
        with self.lock.held(force=self.force):
            plan = await PlanBuilder(self.tracker, self.settings).plan_single_issue(issue_number)
            return await self._start(plan, "single", dry_run)

    async def run_auto(self, dry_run: bool = False) -> PipelineSummary:
        """Triage every open issue without the triaged label."""
        with self.lock.held(force=self.force):
            plan = await PlanBuilder(self.tracker, self.settings).plan_auto_triage()
            if plan.is_empty:
                log.info("nothing_to_triage")
                return PipelineSummary(run_id=None, run_dir=None, dry_run=dry_run)
            return await self._start(plan, "auto", dry_run)

    async def resume(self, run_id: str, dry_run: bool = False) -> PipelineSummary:
        """Continue an interrupted run from its checkpoint.

        Raises:
            ArtifactError: If the run or its checkpoint cannot be loaded
        """
        with self.lock.held(force=self.force):
            store = ArtifactStore.open(self.runs_dir, run_id)
            checkpoint = await CheckpointStore(store).load()
            log.info(
                "run_resuming",
                run_id=store.run_id,
                last_completed_phase=checkpoint.last_completed_phase.value,
                issues=len(checkpoint.game_plan.issues),
            )
            return await self._run_phases(store, checkpoint.game_plan, checkpoint.last_completed_phase, dry_run)

    async def pre_release(self, prev_tag: str, version: str) -> tuple[ArtifactStore, IssueManifest]:
        """Correlate open issues with the changes since ``prev_tag``."""
        with self.lock.held(force=self.force):
            store = await ArtifactStore.create(self.runs_dir, "pre-release", prefix="pre_release")
            bind_run(store.run_id)
            try:
                correlator = ReleaseCorrelator(
                    self.tracker, self.settings, store, self.repo_root, self.executor, self.vcs
                )
                manifest = await correlator.pre_release(prev_tag, version)
                await store.finalize("completed", version=version, candidates=manifest.total)
                return store, manifest
            finally:
                unbind_run()

    async def post_release(
        self,
        version: str,
        release_tag: str,
        release_url: str = "",
        manifest: Path | None = None,
    ) -> tuple[ArtifactStore, list[dict[str, Any]]]:
        """Notify and close issues the release addressed."""
        with self.lock.held(force=self.force):
            store = await ArtifactStore.create(self.runs_dir, "post-release", prefix="post_release")
            bind_run(store.run_id)
            try:
                closer = ReleaseCloser(self.tracker, self.settings, store, self.repo_root, self.executor)
                actions = await closer.post_release(version, release_tag, release_url, manifest)
                await store.finalize("completed", version=version, actions=len(actions))
                return store, actions
            finally:
                unbind_run()

    async def _start(self, plan: GamePlan, command: str, dry_run: bool) -> PipelineSummary:
        store = await ArtifactStore.create(self.runs_dir, command)
        await store.save_game_plan(plan)
        await CheckpointStore(store).save(plan, Phase.PLAN)
        return await self._run_phases(store, plan, Phase.PLAN, dry_run)

    async def _run_phases(
        self,
        store: ArtifactStore,
        plan: GamePlan,
        last: Phase,
        dry_run: bool,
    ) -> PipelineSummary:
        bind_run(store.run_id)
        checkpoints = CheckpointStore(store)
        summary = PipelineSummary(run_id=store.run_id, run_dir=store.run_dir, issues=len(plan.issues), dry_run=dry_run)
        coordinator = InvestigationCoordinator(self.tracker, self.settings, store, self.repo_root, self.executor)
        actor = ActionExecutor(self.tracker, self.settings, store, self.repo_root, dry_run=dry_run)

        try:
            if last.covers(Phase.INVESTIGATE):
                results = coordinator.load_cached_results(plan)
            else:
                results = await self._critical(
                    Phase.INVESTIGATE, last, store, plan, lambda: coordinator.investigate(plan)
                )
                last = Phase.INVESTIGATE
                await checkpoints.save(plan, last)

            if last.covers(Phase.ACT):
                summary.decisions = await actor.load_cached_decisions(plan)
            else:
                summary.decisions = await self._critical(Phase.ACT, last, store, plan, lambda: actor.act(plan, results))
                if dry_run:
                    await store.finalize("dry_run", decisions=len(summary.decisions))
                    log.info("dry_run_complete", decisions=len(summary.decisions))
                    return summary
                last = Phase.ACT
                await checkpoints.save(plan, last)

            if not last.covers(Phase.VERIFY):
                verifier = Verifier(self.tracker, self.settings, store, self.repo_root)
                summary.verification = await self._best_effort(
                    Phase.VERIFY, summary, lambda: verifier.verify(summary.decisions)
                )
                last = Phase.VERIFY
                await checkpoints.save(plan, last)

            if not last.covers(Phase.LINK):
                linker = Linker(self.tracker, self.settings, store, self.repo_root)
                summary.links = await self._best_effort(
                    Phase.LINK, summary, lambda: linker.link(plan, summary.decisions)
                ) or []
                last = Phase.LINK
                await checkpoints.save(plan, last)

            if not last.covers(Phase.CROSS_REPO_LINK):
                if self.settings.cross_repo.enabled:
                    cross_linker = CrossRepoLinker(self.tracker, self.settings, store, self.repo_root)
                    summary.cross_repo_links = await self._best_effort(
                        Phase.CROSS_REPO_LINK, summary, lambda: cross_linker.link(plan, summary.decisions)
                    ) or []
                last = Phase.CROSS_REPO_LINK
                await checkpoints.save(plan, last)

            await store.finalize(
                "completed",
                decisions=len(summary.decisions),
                phase_errors=summary.phase_errors,
            )
            log.info(
                "run_complete",
                issues=summary.issues,
                decisions=len(summary.decisions),
                verified=summary.verification.passed_count if summary.verification else None,
                links=len(summary.links),
                cross_repo_links=len(summary.cross_repo_links),
            )
            return summary
        finally:
            unbind_run()

    async def _critical(
        self,
        phase: Phase,
        last: Phase,
        store: ArtifactStore,
        plan: GamePlan,
        operation: Callable[[], Awaitable[T]],
    ) -> T:
        log.info("phase_started", phase=phase.value)
        try:
            return await operation()
        except Exception as e:
            log.error("phase_failed", phase=phase.value, error=str(e), exc_info=True)
            await CheckpointStore(store).save(plan, last)
            await store.finalize("failed", failed_phase=phase.value, error=str(e))
            raise PhaseError(
                f"Phase {phase.value} failed: {e}",
                phase=phase.value,
                last_completed_phase=last.value,
                run_id=store.run_id,
            ) from e

    async def _best_effort(
        self,
        phase: Phase,
        summary: PipelineSummary,
        operation: Callable[[], Awaitable[T]],
    ) -> T | None:
        log.info("phase_started", phase=phase.value)
        try:
            return await operation()
        except Exception as e:
            log.error("phase_failed_continuing", phase=phase.value, error=str(e), exc_info=True)
            summary.phase_errors[phase.value] = str(e)
            return None
