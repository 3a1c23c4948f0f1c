"""
Bounded-concurrency execution of external agent invocations.

This module runs a batch of independent agent tasks with:

- A fixed number of concurrency slots, handed out in arrival order
- Per-task retry with exponential backoff and jitter
- Structured per-task outcomes; a batch never raises

Architecture:
    1. AgentTask: what to run (prompt, model, tools, working directory).

    2. TaskOutcome: what happened (success, response text, usage stats,
       error classification, attempts, duration).

    3. SlotPool: counter plus FIFO wait queue guarded by one lock. Each
       release hands the slot directly to the oldest waiter, so there is
       no lock-step barrier between tasks.

    4. TaskExecutor: ties the pool to an ``AgentRunner`` and applies the
       retry policy.

Retry Policy:
    Only errors whose type is in ``RETRYABLE_ERRORS`` are retried. Parse
    errors, malformed output and authorization failures are returned after
    the first attempt. An exception raised by the runner counts as a
    ``ProcessError``.

    Delay before attempt ``n + 1``::

        min(max_backoff, initial_backoff * 2 ** (n - 1) * (1 +/- 0.25))

Example:
    >>> executor = TaskExecutor(runner, max_concurrent=3)
    >>> outcomes = await executor.execute_batch(tasks)
    >>> [o.task_id for o in outcomes] == [t.id for t in tasks]
    True
"""

import asyncio
import random
import time
from collections import deque
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog

from repo_triage.exceptions import AgentError
from repo_triage.models.tracker import AgentResponse
from repo_triage.providers.base import AgentRunner

log = structlog.get_logger(__name__)

RETRYABLE_ERRORS = frozenset({"RateLimitError", "ServiceUnavailable", "InternalError", "TimeoutError", "ProcessError"})
JITTER = 0.25

DEFAULT_ALLOWED_TOOLS = ["run_shell_command(git)", "run_shell_command(gh)"]


@dataclass
class AgentTask:
    """A single agent invocation.

    Attributes:
        id: Unique task identifier; also names audit and result files.
        prompt: Full prompt text.
        model: Model identifier passed to the agent CLI.
        working_dir: Directory the agent runs in.
        allowed_tools: Tools the agent may call.
        audit_dir: If set, prompt and raw response are saved there.
        max_turns: Turn budget communicated to the agent.
        metadata: Caller-owned data, e.g. the issue number.
    """

    id: str
    prompt: str
    model: str
    working_dir: Path
    allowed_tools: list[str] = field(default_factory=lambda: list(DEFAULT_ALLOWED_TOOLS))
    audit_dir: Path | None = None
    max_turns: int = 100
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class TaskOutcome:
    """Result of running one task to completion or retry exhaustion."""

    task_id: str
    success: bool
    text: str = ""
    stats: dict[str, Any] = field(default_factory=dict)
    error_type: str | None = None
    error_message: str | None = None
    attempts: int = 0
    duration_ms: int = 0

    @property
    def tool_calls(self) -> int:
        tools = self.stats.get("tools") or {}
        return int(tools.get("totalCalls", tools.get("total_calls", 0)) or 0)

    @property
    def turns_used(self) -> int:
        # The agent CLI reports no turn count; tool calls are the closest proxy
        return int(self.stats.get("turns", 0) or 0) or self.tool_calls

    @property
    def error_summary(self) -> str:
        if self.success:
            return ""
        return f"{self.error_type or 'UnknownError'}: {self.error_message or 'Unknown error'}"


class SlotPool:
    """Counting slot pool with a FIFO wait queue.

    A release with waiters queued transfers the slot to the oldest waiter
    instead of decrementing the counter, so at most ``size`` holders exist
    at any moment and waiters are served in arrival order.
    """

    def __init__(self, size: int) -> None:
        if size < 1:
            raise ValueError("size must be at least 1")
        self.size = size
        self._active = 0
        self._waiters: deque[asyncio.Future[None]] = deque()
        self._lock = asyncio.Lock()
        self.peak = 0

    @property
    def active(self) -> int:
        return self._active

    @property
    def waiting(self) -> int:
        return len(self._waiters)

    async def acquire(self) -> None:
        async with self._lock:
            if self._active < self.size and not self._waiters:
                self._active += 1
                self.peak = max(self.peak, self._active)
                return
            waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
            self._waiters.append(waiter)
        await waiter

    async def release(self) -> None:
        async with self._lock:
            while self._waiters:
                waiter = self._waiters.popleft()
                if not waiter.done():
                    waiter.set_result(None)
                    return
            self._active -= 1

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        await self.acquire()
        try:
            yield
        finally:
            await self.release()


class TaskExecutor:
    """Run agent tasks with bounded concurrency and retry.

    Attributes:
        runner: Backend that performs a single invocation.
        max_concurrent: Maximum simultaneous invocations.
        max_retries: Maximum attempts per task, first attempt included.
    """

    def __init__(
        self,
        runner: AgentRunner,
        max_concurrent: int = 4,
        max_retries: int = 3,
        initial_backoff: float = 0.5,
        max_backoff: float = 30.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ) -> None:
        """Initialize the executor.

        Args:
            runner: Agent backend
            max_concurrent: Slot count
            max_retries: Attempts per task
            initial_backoff: Seconds before the first retry
            max_backoff: Upper bound on any retry delay
            sleep: Awaitable delay function
            rng: Source of uniform [0, 1) values for jitter
        """
        self.runner = runner
        self.max_concurrent = max_concurrent
        self.max_retries = max(1, max_retries)
        self.initial_backoff = initial_backoff
        self.max_backoff = max_backoff
        self._sleep = sleep
        self._rng = rng
        self.pool = SlotPool(max_concurrent)

    async def execute_batch(self, tasks: list[AgentTask]) -> list[TaskOutcome]:
        """Run every task and return outcomes in input order.

        Never raises: any failure, including an unexpected exception inside
        the executor itself, is reported as an unsuccessful outcome.
        """
        if not tasks:
            return []

        log.info("agent_batch_started", tasks=len(tasks), max_concurrent=self.max_concurrent)
        gathered = await asyncio.gather(*(self._execute_in_slot(task) for task in tasks), return_exceptions=True)

        outcomes: list[TaskOutcome] = []
        for task, outcome in zip(tasks, gathered, strict=True):
            if isinstance(outcome, BaseException):
                log.error("agent_task_crashed", task_id=task.id, error=str(outcome))
                outcome = TaskOutcome(
                    task_id=task.id, success=False, error_type="ExecutorError", error_message=str(outcome)
                )
            outcomes.append(outcome)

        succeeded = sum(1 for o in outcomes if o.success)
        log.info(
            "agent_batch_complete",
            succeeded=succeeded,
            failed=len(outcomes) - succeeded,
            peak_concurrency=self.pool.peak,
        )
        return outcomes

    async def _execute_in_slot(self, task: AgentTask) -> TaskOutcome:
        async with self.pool.slot():
            return await self._execute_with_retry(task)

    async def _execute_with_retry(self, task: AgentTask) -> TaskOutcome:
        started = time.monotonic()
        response = AgentResponse(success=False, error_type="ProcessError", error_message="Task was not attempted")
        attempt = 0

        for attempt in range(1, self.max_retries + 1):
            log.debug("agent_task_attempt", task_id=task.id, attempt=attempt, max_retries=self.max_retries)
            response = await self._invoke_once(task)

            if response.success:
                break
            if response.error_type not in RETRYABLE_ERRORS or attempt >= self.max_retries:
                log.warning(
                    "agent_task_failed",
                    task_id=task.id,
                    attempts=attempt,
                    error_type=response.error_type,
                    error=response.error_message,
                )
                break

            delay = self.backoff_delay(attempt)
            log.info("agent_task_retry", task_id=task.id, attempt=attempt, error_type=response.error_type, delay=delay)
            await self._sleep(delay)

        return TaskOutcome(
            task_id=task.id,
            success=response.success,
            text=response.text,
            stats=response.stats,
            error_type=None if response.success else response.error_type,
            error_message=None if response.success else response.error_message,
            attempts=attempt,
            duration_ms=int((time.monotonic() - started) * 1000),
        )

    async def _invoke_once(self, task: AgentTask) -> AgentResponse:
        try:
            return await self.runner.invoke(
                prompt=task.prompt,
                model=task.model,
                allowed_tools=task.allowed_tools,
                working_dir=task.working_dir,
                task_id=task.id,
                audit_dir=task.audit_dir,
            )
        except AgentError as e:
            return AgentResponse(success=False, error_type=e.error_type, error_message=e.message)
        except Exception as e:
            log.warning("agent_invoke_exception", task_id=task.id, error=str(e), exc_info=True)
            return AgentResponse(success=False, error_type="ProcessError", error_message=str(e))

    def backoff_delay(self, attempt: int) -> float:
        """Delay in seconds before retrying after ``attempt`` failed attempts."""
        base = self.initial_backoff * (2 ** (attempt - 1))
        jittered = base * (1 + (self._rng() * 2 - 1) * JITTER)
        return max(0.0, min(self.max_backoff, jittered))
