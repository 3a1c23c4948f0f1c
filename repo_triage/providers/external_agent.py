"""Agent runner that drives an external reasoning-agent CLI.

The CLI is invoked as::

    <command> -o json --yolo -m <model> [--allowed-tools a,b]

with the prompt piped on stdin. Its stdout is expected to carry one JSON
object (possibly preceded by warning lines) with ``response`` and
``stats`` keys.
"""

import json
import re
from pathlib import Path

import aiofiles
import structlog

from repo_triage.models.tracker import AgentResponse
from repo_triage.providers.base import AgentRunner
from repo_triage.utils.async_subprocess import run_command

log = structlog.get_logger(__name__)

_STDERR_CLASSIFIERS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"\b429\b|rate.?limit|quota|resource.?exhausted", re.IGNORECASE), "RateLimitError"),
    (re.compile(r"\b503\b|unavailable|overloaded", re.IGNORECASE), "ServiceUnavailable"),
    (re.compile(r"\b40[13]\b|unauthori[sz]ed|permission denied|invalid api key", re.IGNORECASE), "AuthError"),
    (re.compile(r"\b500\b|internal error", re.IGNORECASE), "InternalError"),
]


def classify_process_failure(stderr: str) -> str:
    """Map agent CLI stderr to an error type understood by the retry policy."""
    for pattern, error_type in _STDERR_CLASSIFIERS:
        if pattern.search(stderr):
            return error_type
    return "ProcessError"


def parse_agent_output(stdout: str) -> AgentResponse:
    """Parse the CLI's JSON envelope; leading non-JSON lines are ignored."""
    start = stdout.find("{")
    if start < 0:
        return AgentResponse(success=False, error_type="NoJsonOutput", error_message="No JSON found in agent output")
    try:
        payload = json.loads(stdout[start:])
    except json.JSONDecodeError as e:
        return AgentResponse(
            success=False, error_type="JsonParseError", error_message=f"Failed to parse agent JSON output: {e}"
        )
    if not isinstance(payload, dict):
        return AgentResponse(success=False, error_type="JsonParseError", error_message="Agent output is not an object")

    stats = payload.get("stats") if isinstance(payload.get("stats"), dict) else {}
    error = payload.get("error")
    if isinstance(error, dict):
        return AgentResponse(
            success=False,
            text=payload.get("response") or "",
            stats=stats,
            error_type=str(error.get("type") or "InternalError"),
            error_message=str(error.get("message") or "Agent reported an error"),
        )
    return AgentResponse(success=True, text=payload.get("response") or "", stats=stats)


class ExternalAgentRunner(AgentRunner):
    """Runs prompts through an external agent CLI as a subprocess."""

    def __init__(self, command: str = "gemini", timeout: float = 1800.0):
        """Initialize the runner.

        Args:
            command: Agent CLI executable
            timeout: Seconds before an invocation is killed
        """
        self.command = command
        self.timeout = timeout

    async def invoke(
        self,
        prompt: str,
        model: str,
        allowed_tools: list[str],
        working_dir: Path,
        task_id: str,
        audit_dir: Path | None = None,
    ) -> AgentResponse:
        args = [self.command, "-o", "json", "--yolo", "-m", model]
        if allowed_tools:
            args.extend(["--allowed-tools", ",".join(allowed_tools)])

        if audit_dir is not None:
            await self._audit(audit_dir, f"{task_id}_prompt.txt", prompt)

        log.debug("agent_invoke", task_id=task_id, model=model, prompt_length=len(prompt))
        try:
            stdout, stderr, code = await run_command(
                *args, cwd=working_dir, check=False, timeout=self.timeout, input_text=prompt
            )
        except TimeoutError:
            log.warning("agent_timeout", task_id=task_id, timeout=self.timeout)
            return AgentResponse(
                success=False, error_type="TimeoutError", error_message=f"Agent exceeded {self.timeout}s"
            )
        except FileNotFoundError:
            return AgentResponse(
                success=False,
                error_type="CommandNotFound",
                error_message=f"{self.command} CLI not found in PATH",
            )

        if code != 0:
            return AgentResponse(
                success=False,
                error_type=classify_process_failure(stderr),
                error_message=f"Exit code {code}: {stderr.strip()}",
            )

        if audit_dir is not None:
            await self._audit(audit_dir, f"{task_id}_response.json", stdout)

        return parse_agent_output(stdout)

    async def _audit(self, audit_dir: Path, name: str, content: str) -> None:
        agents_dir = audit_dir / "agents"
        agents_dir.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(agents_dir / name, "w") as f:
            await f.write(content)
