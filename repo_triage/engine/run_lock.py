"""
Global advisory lock preventing concurrent triage runs on one host.

The lock file lives outside any repository (by default in the system temp
directory) and stores ``{"pid": ..., "started_at": ...}``. Liveness of the
recorded process is probed with signal 0. The check-then-remove sequence is
not atomic: two processes racing on a stale lock can both proceed. This is
accepted; the lock is best effort, not a distributed mutex.
"""

import json
import os
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import structlog

from repo_triage.exceptions import RunLockError

log = structlog.get_logger(__name__)


def process_alive(pid: int) -> bool:
    """Whether a process with ``pid`` exists (signal 0 probe)."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but belongs to another user
        return True
    except OSError:
        return False
    return True


class RunLock:
    """File-based run lock keyed on process identity.

    Example:
        >>> lock = RunLock(Path("/tmp/repo-triage.lock"))
        >>> with lock.held(force=False):
        ...     ...  # run the pipeline
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._owned = False

    def read(self) -> dict[str, Any] | None:
        """Current lock record, or None if absent or unreadable."""
        try:
            data = json.loads(self.path.read_text())
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError):
            return {}
        return data if isinstance(data, dict) else {}

    def acquire(self, force: bool = False) -> None:
        """Take the lock.

        Args:
            force: Override a lock held by a live process

        Raises:
            RunLockError: If a live process holds the lock and ``force`` is False
        """
        record = self.read()
        if record is not None:
            holder = record.get("pid")
            holder_pid = holder if isinstance(holder, int) else None
            if holder_pid is not None and holder_pid != os.getpid() and process_alive(holder_pid):
                if not force:
                    raise RunLockError(
                        f"Triage already running (PID: {holder_pid}, started: {record.get('started_at', 'unknown')})",
                        holder_pid=holder_pid,
                        lock_path=str(self.path),
                    )
                log.warning("run_lock_forced", holder_pid=holder_pid, lock_path=str(self.path))
            else:
                log.info("run_lock_stale_removed", holder_pid=holder_pid, lock_path=str(self.path))
            self.path.unlink(missing_ok=True)

        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps({"pid": os.getpid(), "started_at": datetime.now(UTC).isoformat()}))
        self._owned = True
        log.debug("run_lock_acquired", lock_path=str(self.path))

    def release(self) -> None:
        """Remove the lock file if this process still owns it."""
        if not self._owned:
            return
        record = self.read()
        if record and record.get("pid") == os.getpid():
            self.path.unlink(missing_ok=True)
            log.debug("run_lock_released", lock_path=str(self.path))
        self._owned = False

    def status(self) -> dict[str, Any]:
        """Describe the lock for ``repo-triage status``."""
        record = self.read()
        if record is None:
            return {"locked": False}
        pid = record.get("pid")
        alive = isinstance(pid, int) and process_alive(pid)
        return {"locked": alive, "stale": not alive, "pid": pid, "started_at": record.get("started_at")}

    @contextmanager
    def held(self, force: bool = False) -> Iterator["RunLock"]:
        """Hold the lock for the duration of a ``with`` block."""
        self.acquire(force=force)
        try:
            yield self
        finally:
            self.release()
