"""Job model: a schedule bound to either a workflow or a bare action.

``Job`` is a tagged union (``kind`` is ``"workflow"`` or ``"cron"``). Jobs are
frozen; the scheduler replaces a job with an updated copy instead of
mutating it, so any job handed out is already a safe snapshot.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

from conductor.execution.actions import ActionRef, describe_action
from conductor.execution.retry import RetryPolicy
from conductor.orchestration.models import ExecutionStatus, WorkflowDefinition


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass(frozen=True, kw_only=True)
class _JobBase:
    """Scheduling state shared by both job kinds."""

    id: str
    schedule: str
    registered_at: datetime
    enabled: bool = True
    description: str = ""
    last_run: datetime | None = None
    last_success_at: datetime | None = None
    next_run: datetime | None = None
    run_count: int = 0
    last_attempt_at: datetime | None = None
    last_status: ExecutionStatus | None = None
    last_error: str | None = None

    def _state_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "schedule": self.schedule,
            "enabled": self.enabled,
            "description": self.description,
            "registered_at": _iso(self.registered_at),
            "last_run": _iso(self.last_run),
            "last_success_at": _iso(self.last_success_at),
            "next_run": _iso(self.next_run),
            "run_count": self.run_count,
            "last_attempt_at": _iso(self.last_attempt_at),
            "last_status": self.last_status.value if self.last_status else None,
            "last_error": self.last_error,
        }


@dataclass(frozen=True, kw_only=True)
class WorkflowJob(_JobBase):
    workflow: WorkflowDefinition
    kind: Literal["workflow"] = "workflow"

    @property
    def name(self) -> str:
        return self.workflow.name

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "name": self.name,
            "workflow_id": self.workflow.id,
            "tasks": self.workflow.task_ids,
            **self._state_dict(),
        }


@dataclass(frozen=True, kw_only=True)
class CronJob(_JobBase):
    name: str
    action: ActionRef
    payload: Mapping[str, Any] = field(default_factory=dict)
    retry_policy: RetryPolicy | None = None
    timeout_seconds: float | None = None
    kind: Literal["cron"] = "cron"

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "name": self.name,
            "action": describe_action(self.action),
            **self._state_dict(),
        }


Job = WorkflowJob | CronJob
