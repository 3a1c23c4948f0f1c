"""
Investigate phase: fan out one agent task per (issue, runnable agent).

Dispatch:
    For every issue in the plan, one ``AgentTask`` is built for each agent
    that is enabled and whose file precondition holds. Tasks already
    ``completed`` (from an interrupted run) are not dispatched again; their
    cached result is reused. Everything else goes to the executor as a
    single batch.

Result parsing:
    Each agent is told to write ``results/<task_id>.json``. After the batch
    the coordinator tries, in order:

    1. The result file
    2. A JSON object containing ``"agent_id"`` embedded in the response text
    3. ``InvestigationResult.failed(...)``

    A task is ``completed`` only when the agent succeeded and a result was
    parsed; otherwise it is ``failed`` and carries the failed result, so a
    resumed run dispatches it again.
"""

import json
import re
from pathlib import Path

import structlog
from pydantic import ValidationError

from repo_triage.config.settings import TriageSettings
from repo_triage.engine.agents import AgentSpec, runnable_agents
from repo_triage.engine.artifact_store import ArtifactStore, read_json_file
from repo_triage.engine.phases.base import TriagePhase
from repo_triage.engine.task_executor import AgentTask, TaskExecutor, TaskOutcome
from repo_triage.exceptions import ArtifactError
from repo_triage.models.game_plan import GamePlan, IssuePlan, TaskStatus, TriageTask
from repo_triage.models.investigation import InvestigationResult
from repo_triage.providers.base import IssueTracker

log = structlog.get_logger(__name__)

EMBEDDED_RESULT = re.compile(r'\{[\s\S]*"agent_id"[\s\S]*\}')

InvestigationResults = dict[int, list[InvestigationResult]]


class InvestigationCoordinator(TriagePhase):
    """Dispatch investigation agents and collect their findings."""

    name = "investigate"

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

    async def investigate(self, plan: GamePlan) -> InvestigationResults:
        """Run all outstanding investigations for ``plan``.

        Mutates task status, error and result in place and saves the plan.

        Returns:
            Findings per issue number, in agent registry order
        """
        specs = runnable_agents(self.settings, self.repo_root)
        log.info("investigation_started", issues=len(plan.issues), agents=[s.agent_id for s in specs])

        dispatched: list[tuple[AgentTask, AgentSpec, IssuePlan, TriageTask]] = []
        reused = 0
        for issue in plan.issues:
            for spec in specs:
                task = self._plan_task(issue, spec)
                if task.status == TaskStatus.COMPLETED:
                    reused += 1
                    continue
                task.mark_running()
                dispatched.append((self._build_task(spec, issue), spec, issue, task))

        if reused:
            log.info("cached_results_reused", tasks=reused)

        outcomes = await self.executor.execute_batch([agent_task for agent_task, _, _, _ in dispatched])

        dispatched_ids: set[str] = set()
        for (agent_task, spec, issue, task), outcome in zip(dispatched, outcomes, strict=True):
            dispatched_ids.add(task.id)
            result = await self._parse_outcome(agent_task, spec, issue.number, outcome)
            if outcome.success and not result.is_failed:
                task.mark_completed(result)
            else:
                task.mark_failed(result.error or outcome.error_summary, result)
                log.warning("investigation_task_failed", task_id=task.id, error=task.error)

        await self.store.save_game_plan(plan)

        results = {issue.number: self._collect(issue, dispatched_ids) for issue in plan.issues}
        failed = sum(1 for found in results.values() for r in found if r.is_failed)
        log.info(
            "investigation_complete",
            dispatched=len(dispatched),
            reused=reused,
            failed=failed,
        )
        return results

    def load_cached_results(self, plan: GamePlan) -> InvestigationResults:
        """Findings already stored on the plan, for resuming past investigate."""
        return {issue.number: self._collect(issue, set()) for issue in plan.issues}

    @staticmethod
    def _collect(issue: IssuePlan, dispatched_ids: set[str]) -> list[InvestigationResult]:
        # Failed results only count when produced by this run
        return [
            task.result
            for task in issue.tasks
            if task.result is not None and (task.status == TaskStatus.COMPLETED or task.id in dispatched_ids)
        ]

    @staticmethod
    def _plan_task(issue: IssuePlan, spec: AgentSpec) -> TriageTask:
        task_id = spec.task_id(issue.number)
        task = issue.find_task(task_id)
        if task is None:
            task = TriageTask(id=task_id, agent=spec.agent_type)
            issue.tasks.append(task)
        return task

    def _build_task(self, spec: AgentSpec, issue: IssuePlan) -> AgentTask:
        task_id = spec.task_id(issue.number)
        max_turns = self.settings.runner.max_turns
        return AgentTask(
            id=task_id,
            prompt=spec.build_prompt(issue, self.store.result_path(task_id), max_turns),
            model=self.settings.runner.model,
            working_dir=self.repo_root,
            allowed_tools=list(spec.allowed_tools),
            audit_dir=self.store.run_dir,
            max_turns=max_turns,
            metadata={"issue": issue.number, "agent": spec.agent_id},
        )

    async def _parse_outcome(
        self,
        agent_task: AgentTask,
        spec: AgentSpec,
        issue_number: int,
        outcome: TaskOutcome,
    ) -> InvestigationResult:
        result = await self._read_result_file(agent_task.id)
        if result is None:
            result = _parse_embedded(outcome.text)
        if result is None:
            error = outcome.error_summary if not outcome.success else "Agent produced no result"
            return InvestigationResult.failed(spec.agent_id, issue_number, error)

        if result.issue_number != issue_number:
            result = result.model_copy(update={"issue_number": issue_number})
        return result.with_run_stats(outcome.turns_used, outcome.tool_calls, outcome.duration_ms)

    async def _read_result_file(self, task_id: str) -> InvestigationResult | None:
        path = self.store.result_path(task_id)
        try:
            data = await read_json_file(path)
        except ArtifactError as e:
            log.warning("result_file_unreadable", task_id=task_id, error=e.message)
            return None
        if data is None:
            return None
        try:
            return InvestigationResult.model_validate(data)
        except ValidationError as e:
            log.warning("result_file_invalid", task_id=task_id, error=str(e))
            return None


def _parse_embedded(text: str) -> InvestigationResult | None:
    match = EMBEDDED_RESULT.search(text or "")
    if match is None:
        return None
    try:
        return InvestigationResult.model_validate(json.loads(match.group(0)))
    except (json.JSONDecodeError, ValidationError):
        return None
