"""
Task Runner: runs one task to a terminal result.

Each attempt resolves the task's action, takes a slot from the process-wide
action semaphore and calls it under a hard timeout. The slot is held until
the call really returns, so an attempt abandoned by its timeout still counts
against the cap. Retryable failures are retried with the task's backoff
policy until ``max_attempts``; anything else fails the task on the spot.
``run`` never raises for task-level failures: the outcome is always a
``TaskResult``.

    attempt 1 ──► action ──ok──► succeeded
                    │
                    └─err──► retryable and attempts left?
                                 yes: sleep(backoff) ──► attempt n+1
                                 no:  failed(error)
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Mapping
from typing import Any

from conductor.core.errors import ConductorError, TaskActionError
from conductor.core.logging import get_logger
from conductor.execution.actions import ActionRegistry, describe_action
from conductor.execution.retry import RetryPolicy
from conductor.execution.timeout import run_with_timeout
from conductor.orchestration.models import Task, TaskResult, TaskStatus, utcnow

logger = get_logger(__name__)


class TaskRunner:
    """Executes tasks with retry, timeout and a global cap on action calls.

    Args:
        actions: Registry used to resolve task action references
        default_timeout: Per-attempt timeout for tasks that don't set one
        default_retry: Retry policy for tasks that don't set one
        max_concurrent_actions: Process-wide limit on in-flight action calls
        sleep: Backoff sleeper (tests pass a no-op)
    """

    def __init__(
        self,
        actions: ActionRegistry,
        *,
        default_timeout: float = 300.0,
        default_retry: RetryPolicy | None = None,
        max_concurrent_actions: int = 10,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.actions = actions
        self.default_timeout = default_timeout
        self.default_retry = default_retry or RetryPolicy()
        self.max_concurrent_actions = max_concurrent_actions
        self._action_slots = threading.BoundedSemaphore(max_concurrent_actions)
        self._sleep = sleep

    def run(self, task: Task, *, environment: Mapping[str, str] | None = None) -> TaskResult:
        """Run ``task`` until it succeeds or its retry budget is spent."""
        policy = task.retry_policy or self.default_retry
        timeout = task.timeout_seconds or self.default_timeout
        payload = {**task.resolve_environment(environment), **task.payload}
        label = describe_action(task.action)

        started_at = utcnow()
        start = time.monotonic()
        attempts = 0

        while True:
            attempts += 1
            logger.debug("task.attempt", task=task.id, action=label, attempt=attempts)
            try:
                output = self._attempt(task, payload, timeout)
            except ConductorError as e:
                error: ConductorError = e
            except Exception as e:
                logger.exception("task.unexpected_error", task=task.id, action=label)
                error = TaskActionError(
                    f"{e.__class__.__name__}: {e}", retryable=False, cause=e
                )
            else:
                elapsed = time.monotonic() - start
                logger.info(
                    "task.succeeded", task=task.id, attempts=attempts, duration=round(elapsed, 3)
                )
                return TaskResult(
                    task_id=task.id,
                    status=TaskStatus.SUCCEEDED,
                    attempts=attempts,
                    duration_seconds=elapsed,
                    output=output,
                    started_at=started_at,
                    finished_at=utcnow(),
                )

            if not policy.should_retry(attempts, error):
                elapsed = time.monotonic() - start
                logger.warning(
                    "task.failed",
                    task=task.id,
                    attempts=attempts,
                    error=error.message,
                    retryable=error.retryable,
                )
                return TaskResult(
                    task_id=task.id,
                    status=TaskStatus.FAILED,
                    attempts=attempts,
                    error=error.message,
                    duration_seconds=elapsed,
                    started_at=started_at,
                    finished_at=utcnow(),
                )

            delay = policy.next_delay(attempts - 1)
            logger.info(
                "task.retry",
                task=task.id,
                attempt=attempts,
                max_attempts=policy.max_attempts,
                delay=round(delay, 3),
                error=error.message,
            )
            if delay > 0:
                self._sleep(delay)

    def _attempt(self, task: Task, payload: dict[str, Any], timeout: float) -> Any:
        fn = self.actions.resolve(task.action)
        slot = _ActionSlot(self._action_slots)
        try:
            return run_with_timeout(
                slot.call, timeout, operation=f"task {task.id}", args=(fn, payload, timeout)
            )
        finally:
            slot.abandon()


class _ActionSlot:
    """One acquired action slot, released exactly once.

    The worker thread releases it when the action call returns, so a call
    abandoned by a timeout keeps its slot until it really finishes. If the
    caller gives up before the worker starts, ``abandon`` reclaims the slot
    and the late worker skips the call.
    """

    def __init__(self, semaphore: threading.BoundedSemaphore):
        self._semaphore = semaphore
        self._lock = threading.Lock()
        self._state = "pending"  # pending -> running -> done, or pending -> abandoned
        semaphore.acquire()

    def call(self, fn: Callable[..., Any], *args: Any) -> Any:
        with self._lock:
            if self._state != "pending":
                return None
            self._state = "running"
        try:
            return fn(*args)
        finally:
            with self._lock:
                self._state = "done"
            self._semaphore.release()

    def abandon(self) -> None:
        with self._lock:
            if self._state != "pending":
                return
            self._state = "abandoned"
        self._semaphore.release()
