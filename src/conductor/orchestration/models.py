"""
Domain model for workflow orchestration.

WorkflowDefinition and Task describe what to run; TaskResult and Execution
record what happened. All of them are frozen: an Execution is immutable
once the orchestrator finalizes it, and the monitor hands the same objects
to every reader.

Status semantics::

    TaskStatus:       succeeded | failed | skipped
    ExecutionStatus:  running | succeeded | failed | partial

    succeeded  every task succeeded
    failed     every leaf task failed or was skipped (or the definition
               was rejected before dispatch)
    partial    anything in between
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from conductor.execution.actions import ActionRef
from conductor.execution.retry import RetryPolicy


def utcnow() -> datetime:
    return datetime.now(UTC)


def new_execution_id() -> str:
    return f"exec_{uuid.uuid4().hex[:16]}"


class TaskStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class ExecutionStatus(str, Enum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    PARTIAL = "partial"

    @property
    def is_failure(self) -> bool:
        return self in (ExecutionStatus.FAILED, ExecutionStatus.PARTIAL)


class TriggerSource(str, Enum):
    """Who asked for an execution."""

    MANUAL = "manual"
    SCHEDULE = "schedule"
    API = "api"
    CLI = "cli"


@dataclass(frozen=True)
class Task:
    """One unit of work inside a workflow.

    ``retry_policy`` and ``timeout_seconds`` fall back to the runner's
    defaults when left as None. ``environment`` is layered over the
    workflow's environment for this task only. ``condition`` maps
    environment keys to required values; the task runs only when every
    pair matches, otherwise it is skipped along with its dependents.
    """

    id: str
    action: ActionRef
    depends_on: frozenset[str] = frozenset()
    payload: Mapping[str, Any] = field(default_factory=dict)
    retry_policy: RetryPolicy | None = None
    timeout_seconds: float | None = None
    name: str | None = None
    environment: Mapping[str, str] = field(default_factory=dict)
    condition: Mapping[str, str] = field(default_factory=dict)

    @property
    def display_name(self) -> str:
        return self.name or self.id

    def resolve_environment(self, environment: Mapping[str, str] | None = None) -> dict[str, str]:
        return {**(environment or {}), **self.environment}

    def unmet_conditions(self, environment: Mapping[str, str] | None = None) -> list[str]:
        """Condition keys whose value differs from the resolved environment."""
        env = self.resolve_environment(environment)
        return sorted(key for key, value in self.condition.items() if env.get(key) != value)


@dataclass(frozen=True)
class WorkflowDefinition:
    """An immutable DAG of tasks.

    Graph validity (unique ids, known dependencies, no cycles) is checked
    when the workflow is executed, not here, so a malformed definition still
    produces a recorded failed execution.
    """

    name: str
    tasks: tuple[Task, ...]
    id: str | None = None
    description: str = ""
    version: int = 1
    environment: Mapping[str, str] = field(default_factory=dict)
    timeout_seconds: float | None = None

    @property
    def task_ids(self) -> list[str]:
        return [t.id for t in self.tasks]

    def get_task(self, task_id: str) -> Task | None:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def leaf_ids(self) -> set[str]:
        """Tasks no other task depends on."""
        depended_on: set[str] = set()
        for task in self.tasks:
            depended_on.update(task.depends_on)
        return {t.id for t in self.tasks if t.id not in depended_on}


@dataclass(frozen=True)
class TaskResult:
    """Outcome of one task within an execution."""

    task_id: str
    status: TaskStatus
    attempts: int = 0
    error: str | None = None
    duration_seconds: float = 0.0
    output: Any = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "status": self.status.value,
            "attempts": self.attempts,
            "error": self.error,
            "duration_seconds": round(self.duration_seconds, 4),
            "output": self.output,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


@dataclass(frozen=True)
class Execution:
    """Result of one orchestration run."""

    id: str
    workflow_name: str
    status: ExecutionStatus
    started_at: datetime
    finished_at: datetime | None = None
    task_results: tuple[TaskResult, ...] = ()
    workflow_id: str | None = None
    job_id: str | None = None
    triggered_by: TriggerSource = TriggerSource.API
    error: str | None = None

    @property
    def duration_seconds(self) -> float | None:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    @property
    def succeeded(self) -> bool:
        return self.status == ExecutionStatus.SUCCEEDED

    def result_for(self, task_id: str) -> TaskResult | None:
        for result in self.task_results:
            if result.task_id == task_id:
                return result
        return None

    def tasks_with_status(self, status: TaskStatus) -> list[str]:
        return [r.task_id for r in self.task_results if r.status == status]

    @property
    def failure_reason(self) -> str | None:
        """Top-level error, else the first failed task's error."""
        if self.error:
            return self.error
        for result in self.task_results:
            if result.status == TaskStatus.FAILED:
                return f"{result.task_id}: {result.error}"
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "workflow_name": self.workflow_name,
            "job_id": self.job_id,
            "triggered_by": self.triggered_by.value,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_seconds": self.duration_seconds,
            "error": self.error,
            "task_results": [r.to_dict() for r in self.task_results],
        }
