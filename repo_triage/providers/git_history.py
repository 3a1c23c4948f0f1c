"""Read-only git history access via the git CLI."""

import subprocess
from pathlib import Path

import structlog

from repo_triage.providers.base import VersionControl
from repo_triage.utils.async_subprocess import run_command

log = structlog.get_logger(__name__)


class GitHistory(VersionControl):
    """Version-control collaborator backed by a local git checkout."""

    def __init__(self, repo_root: Path | str, timeout: float = 60.0):
        self.repo_root = Path(repo_root)
        self.timeout = timeout

    async def _git(self, *args: str) -> list[str]:
        try:
            stdout, _, _ = await run_command("git", *args, cwd=self.repo_root, timeout=self.timeout)
        except subprocess.CalledProcessError as e:
            log.warning("git_command_failed", args=args, code=e.returncode, stderr=(e.stderr or "").strip())
            return []
        return [line for line in stdout.splitlines() if line.strip()]

    async def changed_files(self, base: str, head: str = "HEAD") -> list[str]:
        return await self._git("diff", "--name-only", f"{base}..{head}")

    async def commit_subjects(self, base: str, head: str = "HEAD") -> list[str]:
        return await self._git("log", f"{base}..{head}", "--format=%s", "--no-merges")
