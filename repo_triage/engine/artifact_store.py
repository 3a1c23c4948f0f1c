"""
Run-scoped artifact storage.

Every pipeline run owns one directory under the configured runs root::

    <runs_root>/<prefix>_<YYYY-MM-DDTHH-MM-SS>_<pid>/
        meta.json
        checkpoint.json
        triage_game_plan.json
        triage_decisions.json
        triage_verification.json
        triage_links.json
        triage_cross_repo_links.json
        issue_manifest.json            (release variant)
        post_release_report.json       (release variant)
        results/<task_id>.json         (written by agents)
        agents/<task_id>_prompt.txt    (audit trail)
        agents/<task_id>_response.json

JSON writes are atomic: content goes to a ``.tmp`` sibling which is then
renamed over the target, so a crash never leaves a half-written artifact.
Run directories are never deleted by the pipeline.
"""

import json
import os
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import aiofiles
import structlog
from pydantic import BaseModel, ValidationError

from repo_triage.exceptions import ArtifactError
from repo_triage.models.game_plan import GamePlan

log = structlog.get_logger(__name__)

META = "meta.json"
GAME_PLAN = "triage_game_plan.json"
DECISIONS = "triage_decisions.json"
VERIFICATION = "triage_verification.json"
LINKS = "triage_links.json"
CROSS_REPO_LINKS = "triage_cross_repo_links.json"
CHECKPOINT = "checkpoint.json"
MANIFEST = "issue_manifest.json"
POST_RELEASE_REPORT = "post_release_report.json"
ERROR_MONITOR_SCAN = "error_monitor_scan.json"
RESULTS_DIR = "results"

GAME_PLAN_REQUIRED_KEYS = ("plan_id", "created_at", "issues")


def _to_jsonable(data: Any) -> Any:
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json")
    return data


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


class ArtifactStore:
    """Read and write JSON artifacts inside one run directory.

    Attributes:
        run_dir: Absolute path of the run directory.
    """

    def __init__(self, run_dir: Path | str) -> None:
        self.run_dir = Path(run_dir)

    @classmethod
    async def create(cls, runs_root: Path | str, command: str, prefix: str = "triage") -> "ArtifactStore":
        """Create a fresh run directory and write its ``meta.json``.

        Args:
            runs_root: Parent directory holding all runs
            command: Pipeline entry point, recorded in the metadata
            prefix: Directory name prefix

        Returns:
            Store for the new run
        """
        timestamp = datetime.now(UTC).strftime("%Y-%m-%dT%H-%M-%S")
        run_dir = Path(runs_root) / f"{prefix}_{timestamp}_{os.getpid()}"
        suffix = 1
        while run_dir.exists():
            run_dir = Path(runs_root) / f"{prefix}_{timestamp}_{os.getpid()}_{suffix}"
            suffix += 1
        (run_dir / RESULTS_DIR).mkdir(parents=True)

        store = cls(run_dir)
        await store.write_json(
            META,
            {"command": command, "started_at": utc_now_iso(), "pid": os.getpid(), "status": "running"},
        )
        log.info("run_directory_created", run_dir=str(run_dir))
        return store

    @classmethod
    def open(cls, runs_root: Path | str, run_id: str) -> "ArtifactStore":
        """Open an existing run by id or by path.

        Raises:
            ArtifactError: If the run directory does not exist
        """
        candidate = Path(run_id)
        run_dir = candidate if candidate.is_absolute() else Path(runs_root) / run_id
        if not run_dir.is_dir():
            raise ArtifactError(f"Run directory not found: {run_dir}", path=str(run_dir))
        return cls(run_dir)

    @property
    def run_id(self) -> str:
        return self.run_dir.name

    @property
    def results_dir(self) -> Path:
        return self.subdir(RESULTS_DIR)

    def path(self, name: str) -> Path:
        return self.run_dir / name

    def subdir(self, name: str) -> Path:
        directory = self.run_dir / name
        directory.mkdir(parents=True, exist_ok=True)
        return directory

    def result_path(self, task_id: str) -> Path:
        return self.results_dir / f"{task_id}.json"

    async def write_json(self, name: str, data: Any) -> Path:
        """Atomically write ``data`` (dict, list or pydantic model) as JSON."""
        return await write_json_file(self.path(name), data)

    async def read_json(self, name: str) -> Any | None:
        """Read a JSON artifact.

        Returns:
            Parsed content, or None if the artifact does not exist

        Raises:
            ArtifactError: If the file exists but is not valid JSON
        """
        return await read_json_file(self.path(name))

    async def save_game_plan(self, plan: GamePlan) -> Path:
        return await self.write_json(GAME_PLAN, plan)

    async def load_game_plan(self) -> GamePlan | None:
        """Load and validate the persisted game plan.

        Raises:
            ArtifactError: If the plan is present but malformed
        """
        data = await self.read_json(GAME_PLAN)
        if data is None:
            return None
        return parse_game_plan(data, str(self.path(GAME_PLAN)))

    async def finalize(self, status: str, **extra: Any) -> None:
        meta = await self.read_json(META) or {}
        meta.update({"status": status, "finished_at": utc_now_iso(), **extra})
        await self.write_json(META, meta)


async def write_json_file(target: Path, data: Any) -> Path:
    """Write JSON to ``target`` through a ``.tmp`` sibling and rename."""
    target.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = target.with_name(target.name + ".tmp")

    async with aiofiles.open(tmp_path, "w") as f:
        await f.write(json.dumps(_to_jsonable(data), indent=2, default=str) + "\n")

    tmp_path.replace(target)
    return target


async def read_json_file(path: Path) -> Any | None:
    if not path.exists():
        return None
    try:
        async with aiofiles.open(path) as f:
            content = await f.read()
        return json.loads(content)
    except (OSError, json.JSONDecodeError) as e:
        raise ArtifactError(f"Cannot read artifact {path}: {e}", path=str(path)) from e


def parse_game_plan(data: Any, source: str) -> GamePlan:
    """Validate raw JSON as a game plan, checking required keys first."""
    if not isinstance(data, dict):
        raise ArtifactError(f"Game plan in {source} is not an object", path=source)
    missing = [key for key in GAME_PLAN_REQUIRED_KEYS if key not in data]
    if missing:
        raise ArtifactError(f"Game plan in {source} is missing {', '.join(missing)}", path=source)
    try:
        return GamePlan.model_validate(data)
    except ValidationError as e:
        raise ArtifactError(f"Invalid game plan in {source}: {e}", path=source) from e


def list_runs(runs_root: Path | str) -> list[Path]:
    """Run directories under ``runs_root``, newest first."""
    root = Path(runs_root)
    if not root.is_dir():
        return []
    runs = [p for p in root.iterdir() if p.is_dir() and (p / META).exists()]
    return sorted(runs, key=lambda p: p.stat().st_mtime, reverse=True)


def find_latest(runs_root: Path | str, name: str) -> Path | None:
    """Most recent run artifact called ``name``, if any run produced one."""
    for run_dir in list_runs(runs_root):
        candidate = run_dir / name
        if candidate.exists():
            return candidate
    return None
