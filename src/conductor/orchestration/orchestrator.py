"""
Orchestrator: runs a workflow DAG to completion and returns an Execution.

Execution model
───────────────
Tasks run on a ThreadPoolExecutor bounded by ``max_concurrency``. A task is
submitted as soon as every dependency has succeeded; if any dependency
failed or was skipped the task is marked skipped without being attempted,
and that propagates to its own dependents. A task whose ``condition`` does
not match the environment is skipped before anything runs. The loop waits
for the first running task to finish, then re-evaluates what became ready.

::

    pending ──(all deps succeeded)──► running ──► succeeded | failed
       │
       ├──(condition not met)────────► skipped
       ├──(a dep failed/skipped)─────► skipped
       └──(workflow deadline passed)─► skipped

Running tasks are never interrupted by the workflow deadline; they end
under their own per-task timeout.

The orchestrator has no side effects besides the task actions themselves.
Recording the Execution in the monitor is the caller's responsibility.
"""

from __future__ import annotations

import contextvars
import time
from collections.abc import Mapping
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import TYPE_CHECKING, Any

from conductor.core.errors import DefinitionError
from conductor.core.logging import LogContext, get_logger
from conductor.execution.actions import ActionRef
from conductor.execution.retry import RetryPolicy
from conductor.orchestration.graph import transitive_dependents, validate_workflow
from conductor.orchestration.models import (
    Execution,
    ExecutionStatus,
    Task,
    TaskResult,
    TaskStatus,
    TriggerSource,
    WorkflowDefinition,
    new_execution_id,
    utcnow,
)

if TYPE_CHECKING:
    from conductor.execution.task_runner import TaskRunner

logger = get_logger(__name__)

DEADLINE_EXCEEDED = "workflow deadline exceeded"


class Orchestrator:
    """Dependency-ordered, bounded-concurrency workflow executor."""

    def __init__(self, runner: TaskRunner, *, max_concurrency: int = 5):
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be >= 1, got {max_concurrency}")
        self.runner = runner
        self.max_concurrency = max_concurrency

    def execute(
        self,
        workflow: WorkflowDefinition,
        *,
        job_id: str | None = None,
        triggered_by: TriggerSource = TriggerSource.API,
    ) -> Execution:
        """Run every task of ``workflow`` and return the finalized Execution.

        A malformed definition is not raised: it yields a failed Execution
        with no task results and the validation message in ``error``.
        """
        execution_id = new_execution_id()
        started_at = utcnow()

        with LogContext(execution_id=execution_id, workflow=workflow.name):
            try:
                validate_workflow(workflow)
            except DefinitionError as e:
                logger.warning("orchestrator.invalid_workflow", error=e.message)
                return Execution(
                    id=execution_id,
                    workflow_id=workflow.id,
                    workflow_name=workflow.name,
                    job_id=job_id,
                    triggered_by=triggered_by,
                    status=ExecutionStatus.FAILED,
                    started_at=started_at,
                    finished_at=utcnow(),
                    error=e.message,
                )

            logger.info(
                "orchestrator.start",
                tasks=len(workflow.tasks),
                job_id=job_id,
                triggered_by=triggered_by.value,
            )
            results = self._run_graph(workflow)
            status = self.compute_status(workflow, results)
            execution = Execution(
                id=execution_id,
                workflow_id=workflow.id,
                workflow_name=workflow.name,
                job_id=job_id,
                triggered_by=triggered_by,
                status=status,
                started_at=started_at,
                finished_at=utcnow(),
                task_results=tuple(results[t.id] for t in workflow.tasks),
            )

            log = logger.info if status == ExecutionStatus.SUCCEEDED else logger.warning
            log(
                "orchestrator.finished",
                status=status.value,
                duration=round(execution.duration_seconds or 0.0, 3),
                failed=execution.tasks_with_status(TaskStatus.FAILED),
                skipped=execution.tasks_with_status(TaskStatus.SKIPPED),
            )
            return execution

    def execute_action(
        self,
        name: str,
        action: ActionRef,
        *,
        payload: Mapping[str, Any] | None = None,
        retry_policy: RetryPolicy | None = None,
        timeout_seconds: float | None = None,
        job_id: str | None = None,
        triggered_by: TriggerSource = TriggerSource.SCHEDULE,
    ) -> Execution:
        """Run a bare action (a cron job with no task graph) as a one-task execution."""
        execution_id = new_execution_id()
        started_at = utcnow()
        task = Task(
            id=name,
            action=action,
            payload=dict(payload or {}),
            retry_policy=retry_policy,
            timeout_seconds=timeout_seconds,
        )

        with LogContext(execution_id=execution_id, workflow=name):
            logger.info("orchestrator.action.start", job_id=job_id, triggered_by=triggered_by.value)
            result = self.runner.run(task)
            status = (
                ExecutionStatus.SUCCEEDED
                if result.status == TaskStatus.SUCCEEDED
                else ExecutionStatus.FAILED
            )
            logger.info("orchestrator.action.finished", status=status.value)

        return Execution(
            id=execution_id,
            workflow_id=None,
            workflow_name=name,
            job_id=job_id,
            triggered_by=triggered_by,
            status=status,
            started_at=started_at,
            finished_at=utcnow(),
            task_results=(result,),
        )

    @staticmethod
    def compute_status(
        workflow: WorkflowDefinition, results: Mapping[str, TaskResult]
    ) -> ExecutionStatus:
        """succeeded iff all tasks succeeded; failed iff every leaf failed or was skipped.

        Tasks switched off by their condition, and everything downstream of
        them, are left out of both checks.
        """
        excluded: set[str] = set()
        for task in workflow.tasks:
            if task.id not in excluded and task.unmet_conditions(workflow.environment):
                excluded.add(task.id)
                excluded |= transitive_dependents(workflow.tasks, task.id)

        considered = [r for tid, r in results.items() if tid not in excluded]
        if all(r.status == TaskStatus.SUCCEEDED for r in considered):
            return ExecutionStatus.SUCCEEDED
        terminal = (workflow.leaf_ids() - excluded) or {r.task_id for r in considered}
        if all(results[tid].status != TaskStatus.SUCCEEDED for tid in terminal):
            return ExecutionStatus.FAILED
        return ExecutionStatus.PARTIAL

    # ── Graph scheduling ─────────────────────────────────────────

    def _run_graph(self, workflow: WorkflowDefinition) -> dict[str, TaskResult]:
        tasks = {t.id: t for t in workflow.tasks}
        pending: list[str] = list(tasks)
        results: dict[str, TaskResult] = {}
        deadline = (
            time.monotonic() + workflow.timeout_seconds
            if workflow.timeout_seconds is not None
            else None
        )

        for tid in list(pending):
            unmet = tasks[tid].unmet_conditions(workflow.environment)
            if unmet:
                results[tid] = _skipped(tid, f"condition not met: {', '.join(unmet)}")
                pending.remove(tid)
                logger.info("orchestrator.task.condition_not_met", task=tid, keys=unmet)

        with ThreadPoolExecutor(
            max_workers=self.max_concurrency, thread_name_prefix="conductor-task"
        ) as executor:
            running: dict[Future[TaskResult], str] = {}

            while pending or running:
                self._skip_blocked(tasks, pending, results)

                deadline_passed = deadline is not None and time.monotonic() >= deadline
                if deadline_passed and pending:
                    for tid in pending:
                        results[tid] = _skipped(tid, DEADLINE_EXCEEDED)
                    logger.warning("orchestrator.deadline_exceeded", skipped=list(pending))
                    pending.clear()

                for tid in list(pending):
                    if len(running) >= self.max_concurrency:
                        break
                    if all(
                        dep in results and results[dep].status == TaskStatus.SUCCEEDED
                        for dep in tasks[tid].depends_on
                    ):
                        pending.remove(tid)
                        future = executor.submit(
                            contextvars.copy_context().run,
                            self.runner.run,
                            tasks[tid],
                            environment=workflow.environment,
                        )
                        running[future] = tid
                        logger.debug("orchestrator.task.submitted", task=tid, running=len(running))

                if not running:
                    # Valid DAG: everything left was resolved above
                    break

                # Only wake up for the deadline while there is something left to skip
                timeout = None
                if deadline is not None and pending:
                    timeout = max(0.0, deadline - time.monotonic())
                done, _ = wait(running, timeout=timeout, return_when=FIRST_COMPLETED)

                for future in done:
                    tid = running.pop(future)
                    try:
                        results[tid] = future.result()
                    except Exception as e:
                        logger.exception("orchestrator.task.crashed", task=tid)
                        results[tid] = TaskResult(
                            task_id=tid,
                            status=TaskStatus.FAILED,
                            attempts=1,
                            error=f"{e.__class__.__name__}: {e}",
                        )

        return results

    @staticmethod
    def _skip_blocked(
        tasks: Mapping[str, Task], pending: list[str], results: dict[str, TaskResult]
    ) -> None:
        """Mark pending tasks with a failed or skipped dependency as skipped, to a fixpoint."""
        changed = True
        while changed:
            changed = False
            for tid in list(pending):
                blocked = sorted(
                    dep
                    for dep in tasks[tid].depends_on
                    if dep in results and results[dep].status != TaskStatus.SUCCEEDED
                )
                if blocked:
                    results[tid] = _skipped(tid, f"dependency not satisfied: {', '.join(blocked)}")
                    pending.remove(tid)
                    changed = True
                    logger.info("orchestrator.task.skipped", task=tid, blocked_by=blocked)


def _skipped(task_id: str, reason: str) -> TaskResult:
    now = utcnow()
    return TaskResult(
        task_id=task_id,
        status=TaskStatus.SKIPPED,
        attempts=0,
        error=reason,
        started_at=now,
        finished_at=now,
    )
