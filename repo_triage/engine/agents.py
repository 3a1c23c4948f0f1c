"""
Investigation agent registry.

Maps every ``AgentType`` to a precondition and a prompt builder. The
registry is an ordered tuple and is always iterated in ``AgentType``
order, so task dispatch order is deterministic.

An agent is dispatched for an issue when it is listed in
``agents.enabled`` and, if ``agents.conditional.<id>.require_file`` is set,
that file exists in the repository checkout.
"""

import json
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from repo_triage.config.settings import TriageSettings
from repo_triage.models.game_plan import AgentType, IssuePlan

RESULT_SCHEMA = {
    "agent_id": "<agent id>",
    "issue_number": 0,
    "confidence": 0.0,
    "summary": "One-sentence summary of findings",
    "evidence": ["Evidence item"],
    "recommended_labels": ["label"],
    "suggested_comment": None,
    "suggest_close": False,
    "close_reason": None,
    "related_entities": [{"type": "pr|issue|commit|file", "id": "123", "description": "", "relevance": 0.8}],
}

CONFIDENCE_GUIDE = """Confidence scoring guide:
- 0.9-1.0: conclusive evidence
- 0.7-0.8: strong evidence, not fully confirmed
- 0.5-0.6: related findings, unclear relevance
- 0.0-0.4: no meaningful evidence"""


@dataclass(frozen=True)
class AgentSpec:
    """Static description of one investigation agent.

    Attributes:
        agent_type: Agent identifier, also the ``agents.enabled`` entry.
        instructions: Investigation steps specific to this agent.
        allowed_tools: Tools the agent may call.
    """

    agent_type: AgentType
    instructions: Callable[[IssuePlan], str]
    allowed_tools: tuple[str, ...] = ("run_shell_command(git)", "run_shell_command(gh)")

    @property
    def agent_id(self) -> str:
        return self.agent_type.value

    def task_id(self, issue_number: int) -> str:
        return f"issue-{issue_number}-{self.agent_type.task_suffix}"

    def build_prompt(self, issue: IssuePlan, result_path: Path, max_turns: int) -> str:
        schema = dict(RESULT_SCHEMA, agent_id=self.agent_id, issue_number=issue.number)
        labels = ", ".join(issue.existing_labels) or "none"
        return "\n".join(
            [
                f"You are the {self.agent_id} investigation agent for issue #{issue.number}.",
                "",
                "## Issue",
                f"- Title: {issue.title}",
                f"- Author: @{issue.author}",
                f"- Existing labels: {labels}",
                "",
                "## Instructions",
                self.instructions(issue),
                "",
                f"You have at most {max_turns} turns.",
                "",
                "## Required Output",
                f"Write a JSON file to {result_path} with exactly this structure:",
                "```json",
                json.dumps(schema, indent=2),
                "```",
                "",
                CONFIDENCE_GUIDE,
                "",
                "Write valid JSON only.",
            ]
        )


def _code_analysis(issue: IssuePlan) -> str:
    keywords = " ".join(issue.title.split()[:3])
    return (
        f"1. Read the full issue with `gh issue view {issue.number}`.\n"
        f'2. Search history with `git log --oneline --all --grep="{keywords}"` and recent commits.\n'
        f"3. Look for commits referencing #{issue.number} and check whether the described behavior changed.\n"
        "4. Check for new tests covering the issue."
    )


def _pr_correlation(issue: IssuePlan) -> str:
    return (
        f"1. Search merged and open pull requests mentioning #{issue.number} or the title keywords.\n"
        "2. For each candidate, inspect its diff and description.\n"
        "3. Report every relevant PR as a related entity of type `pr` with a relevance score."
    )


def _duplicate(issue: IssuePlan) -> str:
    return (
        "1. Search open and closed issues with similar titles and symptoms.\n"
        "2. Report likely duplicates as related entities of type `issue`.\n"
        "3. Recommend closing as `not_planned` only if a clear duplicate is still open."
    )


def _sentiment(issue: IssuePlan) -> str:
    return (
        f"1. Read the comment thread of issue #{issue.number}.\n"
        "2. Determine whether reporters confirm a fix, still see the problem, or have gone silent.\n"
        "3. Recommend labels reflecting the discussion state."
    )


def _changelog(issue: IssuePlan) -> str:
    return (
        f"1. Search the changelog and release notes for #{issue.number} and the title keywords.\n"
        "2. Identify the release that shipped a fix, if any.\n"
        "3. Cite the changelog entry in the evidence."
    )


AGENT_REGISTRY: tuple[AgentSpec, ...] = (
    AgentSpec(AgentType.CODE_ANALYSIS, _code_analysis),
    AgentSpec(AgentType.PR_CORRELATION, _pr_correlation),
    AgentSpec(AgentType.DUPLICATE, _duplicate, allowed_tools=("run_shell_command(gh)",)),
    AgentSpec(AgentType.SENTIMENT, _sentiment, allowed_tools=("run_shell_command(gh)",)),
    AgentSpec(AgentType.CHANGELOG, _changelog),
)


def get_agent(agent_type: AgentType) -> AgentSpec:
    return next(spec for spec in AGENT_REGISTRY if spec.agent_type == agent_type)


def should_run(spec: AgentSpec, settings: TriageSettings, repo_root: Path) -> bool:
    """Whether ``spec`` is enabled and its file precondition holds."""
    if not settings.agents.is_enabled(spec.agent_id):
        return False
    required = settings.agents.required_file(spec.agent_id)
    return required is None or (repo_root / required).exists()


def runnable_agents(settings: TriageSettings, repo_root: Path) -> list[AgentSpec]:
    return [spec for spec in AGENT_REGISTRY if should_run(spec, settings, repo_root)]
