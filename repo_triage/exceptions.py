"""Custom exception hierarchy for the repo-triage pipeline.

Exceptions are grouped by how far they are allowed to propagate. Fatal
errors stop a run before anything is written, phase errors stop a run after
a checkpoint has been saved, and everything else is handled where it occurs.

Exception Hierarchy:
    RepoTriageError (base)
    ├── ConfigurationError
    ├── RunLockError
    ├── ArtifactError
    ├── TrackerError
    │   ├── TrackerAuthError
    │   └── UnknownLabelError
    ├── AgentError
    │   └── AgentTimeoutError
    └── PhaseError

Example Usage:
    >>> from repo_triage.exceptions import ConfigurationError
    >>> try:
    ...     settings = TriageSettings.from_yaml(path)
    ... except ConfigurationError as e:
    ...     print(e.message)
"""


class RepoTriageError(Exception):
    """Base exception for all repo-triage errors.

    Attributes:
        message: Human-readable error description
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ConfigurationError(RepoTriageError):
    """Configuration file is missing, malformed, or holds invalid values."""

    pass


class RunLockError(RepoTriageError):
    """Another live process holds the global run lock.

    Attributes:
        message: Human-readable error description
        holder_pid: PID recorded in the lock file
        lock_path: Location of the lock file
    """

    def __init__(
        self,
        message: str,
        holder_pid: int | None = None,
        lock_path: str | None = None,
    ) -> None:
        super().__init__(message)
        self.holder_pid = holder_pid
        self.lock_path = lock_path


class ArtifactError(RepoTriageError):
    """A persisted run artifact is unreadable or fails validation.

    Attributes:
        message: Human-readable error description
        path: Artifact path that failed
    """

    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path


class TrackerError(RepoTriageError):
    """The issue tracker rejected or failed a request.

    Attributes:
        message: Human-readable error description
        status_code: HTTP status code, if the backend reported one
        repo: ``owner/name`` the request targeted
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        repo: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.repo = repo


class TrackerAuthError(TrackerError):
    """The tracker refused our credentials (401/403)."""

    pass


class UnknownLabelError(TrackerError):
    """The tracker refused to apply a label that does not exist yet.

    Attributes:
        labels: Labels that were being applied when the request failed
    """

    def __init__(
        self,
        message: str,
        labels: list[str] | None = None,
        status_code: int | None = None,
        repo: str | None = None,
    ) -> None:
        super().__init__(message, status_code=status_code, repo=repo)
        self.labels = labels or []


class AgentError(RepoTriageError):
    """The reasoning agent backend could not be invoked.

    Attributes:
        message: Human-readable error description
        error_type: Classification used by the retry policy
        task_id: Task being executed when the error occurred
    """

    def __init__(
        self,
        message: str,
        error_type: str = "ProcessError",
        task_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.error_type = error_type
        self.task_id = task_id


class AgentTimeoutError(AgentError):
    """Agent invocation exceeded its time limit."""

    def __init__(self, message: str, task_id: str | None = None) -> None:
        super().__init__(message, error_type="TimeoutError", task_id=task_id)


class PhaseError(RepoTriageError):
    """A pipeline phase failed after the run had started.

    The pipeline saves a checkpoint before raising this, so the run can be
    resumed past ``last_completed_phase``.

    Attributes:
        message: Human-readable error description
        phase: Phase that failed
        last_completed_phase: Last phase recorded in the checkpoint
        run_id: Identifier to pass to ``repo-triage resume``
    """

    def __init__(
        self,
        message: str,
        phase: str,
        last_completed_phase: str | None = None,
        run_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.phase = phase
        self.last_completed_phase = last_completed_phase
        self.run_id = run_id

    @property
    def resume_command(self) -> str | None:
        if self.run_id is None:
            return None
        return f"repo-triage resume {self.run_id}"
