"""
Monitor: execution history, rolling metrics and health classification.

Executions are appended to a fixed-capacity ring buffer and folded into
lifetime per-workflow and per-task accumulators. Both happen under one lock
so readers never observe a half-recorded execution.

Health classification (thresholds come from settings)::

    window = the most recent ``health_window`` executions
    failure_rate = (failed + partial) / len(window)

    unhealthy  failure_rate > unhealthy_failure_rate
               or a workflow's share of failed runs > unhealthy_failure_rate
               or the most recent execution is ``failed``
               or more than ``failing_task_limit`` tasks are failing
    degraded   failure_rate > degraded_failure_rate
               or a workflow's share of failed runs > degraded_failure_rate
               or a task's lifetime failure rate > ``task_failure_rate``
               or a task's retry rate is rising
               or a task's average duration exceeds ``slow_task_seconds``
    healthy    otherwise

Each triggering condition becomes a ``HealthIssue``; recommendations are
templates keyed by issue kind.
"""

from __future__ import annotations

import math
import threading
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from conductor.core.logging import get_logger
from conductor.observability.history import RingBuffer
from conductor.observability.metrics import ConductorMetrics, MetricsRegistry
from conductor.orchestration.models import (
    Execution,
    ExecutionStatus,
    TaskResult,
    TaskStatus,
    utcnow,
)

logger = get_logger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class IssueKind(str, Enum):
    HIGH_FAILURE_RATE = "high_failure_rate"
    ELEVATED_FAILURE_RATE = "elevated_failure_rate"
    LAST_EXECUTION_FAILED = "last_execution_failed"
    WORKFLOW_FAILURES = "workflow_failures"
    TASK_FAILURES = "task_failures"
    RISING_RETRY_RATE = "rising_retry_rate"
    SLOW_TASK = "slow_task"


RECOMMENDATIONS: dict[IssueKind, str] = {
    IssueKind.HIGH_FAILURE_RATE: (
        "Most recent executions are failing; check the automation endpoints "
        "and recent deploys before re-enabling traffic."
    ),
    IssueKind.ELEVATED_FAILURE_RATE: (
        "Failure rate is above normal; review the failing workflows' task errors."
    ),
    IssueKind.LAST_EXECUTION_FAILED: (
        "The latest execution of '{subject}' failed; inspect its task results "
        "and trigger it manually once the cause is fixed."
    ),
    IssueKind.WORKFLOW_FAILURES: (
        "Workflow '{subject}' keeps failing; consider disabling its job until "
        "the failing task is fixed."
    ),
    IssueKind.TASK_FAILURES: (
        "Task '{subject}' fails often; review its errors and fix or retire the endpoint."
    ),
    IssueKind.RISING_RETRY_RATE: (
        "Task '{subject}' needs more attempts than before; the endpoint may be "
        "degrading. Consider increasing its timeout or backoff."
    ),
    IssueKind.SLOW_TASK: (
        "Task '{subject}' is slow; consider increasing its timeout or splitting the work."
    ),
}


@dataclass(frozen=True)
class HealthIssue:
    kind: IssueKind
    subject: str
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "subject": self.subject, "message": self.message}


@dataclass(frozen=True)
class WorkflowMetrics:
    """Lifetime counts plus window-based durations for one workflow name."""

    workflow_name: str
    run_count: int
    succeeded: int
    failed: int
    partial: int
    success_rate: float
    p50_duration_seconds: float | None
    p95_duration_seconds: float | None
    last_run_at: datetime | None
    last_status: ExecutionStatus | None
    last_failure_reason: str | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "workflow_name": self.workflow_name,
            "run_count": self.run_count,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "partial": self.partial,
            "success_rate": round(self.success_rate, 4),
            "p50_duration_seconds": self.p50_duration_seconds,
            "p95_duration_seconds": self.p95_duration_seconds,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_status": self.last_status.value if self.last_status else None,
            "last_failure_reason": self.last_failure_reason,
        }


@dataclass(frozen=True)
class TaskMetrics:
    task_id: str
    runs: int
    attempts: int
    successes: int
    failures: int
    skips: int
    failure_rate: float
    average_attempts_to_success: float | None
    average_duration_seconds: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "runs": self.runs,
            "attempts": self.attempts,
            "successes": self.successes,
            "failures": self.failures,
            "skips": self.skips,
            "failure_rate": round(self.failure_rate, 4),
            "average_attempts_to_success": self.average_attempts_to_success,
            "average_duration_seconds": round(self.average_duration_seconds, 4),
        }


@dataclass(frozen=True)
class AggregateMetrics:
    total_executions: int
    succeeded: int
    failed: int
    partial: int
    success_rate: float
    average_duration_seconds: float
    retained: int
    capacity: int
    workflows: int
    last_execution_at: datetime | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_executions": self.total_executions,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "partial": self.partial,
            "success_rate": round(self.success_rate, 4),
            "average_duration_seconds": round(self.average_duration_seconds, 4),
            "retained": self.retained,
            "capacity": self.capacity,
            "workflows": self.workflows,
            "last_execution_at": (
                self.last_execution_at.isoformat() if self.last_execution_at else None
            ),
        }


@dataclass(frozen=True)
class HealthReport:
    status: HealthStatus
    metrics: AggregateMetrics
    issues: tuple[HealthIssue, ...]
    recommendations: tuple[str, ...]
    window: int
    window_failure_rate: float
    generated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "metrics": self.metrics.to_dict(),
            "issues": [i.to_dict() for i in self.issues],
            "recommendations": list(self.recommendations),
            "window": self.window,
            "window_failure_rate": round(self.window_failure_rate, 4),
            "generated_at": self.generated_at.isoformat(),
        }


@dataclass
class _WorkflowTotals:
    run_count: int = 0
    succeeded: int = 0
    failed: int = 0
    partial: int = 0
    last_run_at: datetime | None = None
    last_status: ExecutionStatus | None = None
    last_failure_reason: str | None = None


@dataclass
class _TaskTotals:
    runs: int = 0
    attempts: int = 0
    successes: int = 0
    failures: int = 0
    skips: int = 0
    attempts_on_success: int = 0
    duration_total: float = 0.0


def _percentile(values: list[float], pct: float) -> float | None:
    """Nearest-rank percentile."""
    if not values:
        return None
    ordered = sorted(values)
    rank = max(1, math.ceil(pct / 100 * len(ordered)))
    return round(ordered[rank - 1], 4)


class Monitor:
    """Thread-safe execution history and health reporting.

    Args:
        capacity: Executions retained in the ring buffer
        health_window: Recent executions considered by ``get_health_report``
        unhealthy_failure_rate: Window failure rate above which status is unhealthy
        degraded_failure_rate: Window failure rate above which status is degraded
        slow_task_seconds: Average task duration above which a task is slow
        task_failure_rate: Lifetime task failure rate above which a task is failing
        failing_task_limit: Failing tasks tolerated before status is unhealthy
        registry: Prometheus registry fed on every record
    """

    def __init__(
        self,
        capacity: int = 100,
        *,
        health_window: int = 5,
        unhealthy_failure_rate: float = 0.5,
        degraded_failure_rate: float = 0.2,
        slow_task_seconds: float = 60.0,
        task_failure_rate: float = 0.2,
        failing_task_limit: int = 3,
        registry: MetricsRegistry | None = None,
    ):
        self._history: RingBuffer[Execution] = RingBuffer(capacity)
        self.health_window = health_window
        self.unhealthy_failure_rate = unhealthy_failure_rate
        self.degraded_failure_rate = degraded_failure_rate
        self.slow_task_seconds = slow_task_seconds
        self.task_failure_rate = task_failure_rate
        self.failing_task_limit = failing_task_limit
        self.registry = registry or MetricsRegistry()
        self.metrics = ConductorMetrics(self.registry)
        self._lock = threading.Lock()
        self._workflows: dict[str, _WorkflowTotals] = {}
        self._tasks: dict[str, _TaskTotals] = {}

    @property
    def capacity(self) -> int:
        return self._history.capacity

    # ── Ingest ───────────────────────────────────────────────────

    def record_execution(self, execution: Execution) -> None:
        """Append a finalized execution and fold it into the accumulators."""
        if execution.status == ExecutionStatus.RUNNING:
            raise ValueError(f"Cannot record unfinished execution {execution.id}")

        with self._lock:
            self._history.append(execution)

            totals = self._workflows.setdefault(execution.workflow_name, _WorkflowTotals())
            totals.run_count += 1
            match execution.status:
                case ExecutionStatus.SUCCEEDED:
                    totals.succeeded += 1
                case ExecutionStatus.FAILED:
                    totals.failed += 1
                case ExecutionStatus.PARTIAL:
                    totals.partial += 1
            totals.last_run_at = execution.finished_at or execution.started_at
            totals.last_status = execution.status
            if execution.status.is_failure:
                totals.last_failure_reason = execution.failure_reason

            for result in execution.task_results:
                self._fold_task(result)

            retained = len(self._history)

        self.metrics.executions.labels(
            workflow=execution.workflow_name, status=execution.status.value
        ).inc()
        if execution.duration_seconds is not None:
            self.metrics.duration.labels(workflow=execution.workflow_name).observe(
                execution.duration_seconds
            )
        for result in execution.task_results:
            if result.attempts:
                self.metrics.task_attempts.labels(task=result.task_id).inc(result.attempts)
            self.metrics.task_outcomes.labels(
                task=result.task_id, status=result.status.value
            ).inc()
        self.metrics.retained.set(retained)

        logger.debug(
            "monitor.recorded",
            execution_id=execution.id,
            workflow=execution.workflow_name,
            status=execution.status.value,
        )

    def _fold_task(self, result: TaskResult) -> None:
        totals = self._tasks.setdefault(result.task_id, _TaskTotals())
        totals.runs += 1
        totals.attempts += result.attempts
        totals.duration_total += result.duration_seconds
        match result.status:
            case TaskStatus.SUCCEEDED:
                totals.successes += 1
                totals.attempts_on_success += result.attempts
            case TaskStatus.FAILED:
                totals.failures += 1
            case TaskStatus.SKIPPED:
                totals.skips += 1

    # ── Queries ──────────────────────────────────────────────────

    def get_recent_executions(self, limit: int | None = None) -> list[Execution]:
        """Most recent first; ``limit`` defaults to the full retained window."""
        with self._lock:
            return self._history.newest_first(limit)

    def get_executions_by_status(self, status: ExecutionStatus | str) -> list[Execution]:
        wanted = ExecutionStatus(status)
        return [e for e in self.get_recent_executions() if e.status == wanted]

    def get_executions_for(
        self, *, workflow_name: str | None = None, job_id: str | None = None, limit: int | None = None
    ) -> list[Execution]:
        """Retained executions filtered by workflow name and/or job id, most recent first."""
        matches = [
            e
            for e in self.get_recent_executions()
            if (workflow_name is None or e.workflow_name == workflow_name)
            and (job_id is None or e.job_id == job_id)
        ]
        return matches if limit is None else matches[:limit]

    def get_workflow_metrics(self, workflow_name: str | None = None) -> list[WorkflowMetrics]:
        with self._lock:
            totals = {
                name: _WorkflowTotals(**vars(t))
                for name, t in self._workflows.items()
                if workflow_name is None or name == workflow_name
            }
            retained = self._history.newest_first()

        result = []
        for name in sorted(totals):
            t = totals[name]
            durations = [
                e.duration_seconds
                for e in retained
                if e.workflow_name == name and e.duration_seconds is not None
            ]
            result.append(
                WorkflowMetrics(
                    workflow_name=name,
                    run_count=t.run_count,
                    succeeded=t.succeeded,
                    failed=t.failed,
                    partial=t.partial,
                    success_rate=t.succeeded / t.run_count if t.run_count else 0.0,
                    p50_duration_seconds=_percentile(durations, 50),
                    p95_duration_seconds=_percentile(durations, 95),
                    last_run_at=t.last_run_at,
                    last_status=t.last_status,
                    last_failure_reason=t.last_failure_reason,
                )
            )
        return result

    def get_task_metrics(self, task_ids: Iterable[str] | None = None) -> list[TaskMetrics]:
        wanted = set(task_ids) if task_ids is not None else None
        with self._lock:
            totals = {
                tid: _TaskTotals(**vars(t))
                for tid, t in self._tasks.items()
                if wanted is None or tid in wanted
            }

        result = []
        for tid in sorted(totals):
            t = totals[tid]
            attempted = t.successes + t.failures
            result.append(
                TaskMetrics(
                    task_id=tid,
                    runs=t.runs,
                    attempts=t.attempts,
                    successes=t.successes,
                    failures=t.failures,
                    skips=t.skips,
                    failure_rate=t.failures / attempted if attempted else 0.0,
                    average_attempts_to_success=(
                        round(t.attempts_on_success / t.successes, 4) if t.successes else None
                    ),
                    average_duration_seconds=t.duration_total / attempted if attempted else 0.0,
                )
            )
        return result

    def get_aggregate_metrics(self) -> AggregateMetrics:
        with self._lock:
            totals = [_WorkflowTotals(**vars(t)) for t in self._workflows.values()]
            retained = self._history.newest_first()
            capacity = self._history.capacity

        total = sum(t.run_count for t in totals)
        succeeded = sum(t.succeeded for t in totals)
        durations = [e.duration_seconds for e in retained if e.duration_seconds is not None]
        return AggregateMetrics(
            total_executions=total,
            succeeded=succeeded,
            failed=sum(t.failed for t in totals),
            partial=sum(t.partial for t in totals),
            success_rate=succeeded / total if total else 0.0,
            average_duration_seconds=sum(durations) / len(durations) if durations else 0.0,
            retained=len(retained),
            capacity=capacity,
            workflows=len(totals),
            last_execution_at=(retained[0].finished_at if retained else None),
        )

    # ── Health ───────────────────────────────────────────────────

    def get_health_report(self) -> HealthReport:
        """Classify recent behaviour as healthy, degraded or unhealthy."""
        metrics = self.get_aggregate_metrics()
        retained = self.get_recent_executions()
        window = retained[: self.health_window]

        if not window:
            return HealthReport(
                status=HealthStatus.HEALTHY,
                metrics=metrics,
                issues=(),
                recommendations=(),
                window=0,
                window_failure_rate=0.0,
            )

        issues: list[HealthIssue] = []
        unhealthy = False
        degraded = False

        failures = [e for e in window if e.status.is_failure]
        failure_rate = len(failures) / len(window)
        if failure_rate > self.unhealthy_failure_rate:
            unhealthy = True
            issues.append(
                HealthIssue(
                    IssueKind.HIGH_FAILURE_RATE,
                    "all",
                    f"{len(failures)} of last {len(window)} executions failed",
                )
            )
        elif failure_rate > self.degraded_failure_rate:
            degraded = True
            issues.append(
                HealthIssue(
                    IssueKind.ELEVATED_FAILURE_RATE,
                    "all",
                    f"{len(failures)} of last {len(window)} executions failed",
                )
            )

        latest = window[0]
        if latest.status == ExecutionStatus.FAILED:
            unhealthy = True
            issues.append(
                HealthIssue(
                    IssueKind.LAST_EXECUTION_FAILED,
                    latest.workflow_name,
                    f"most recent execution of '{latest.workflow_name}' failed: "
                    f"{latest.failure_reason or 'unknown error'}",
                )
            )

        per_workflow: dict[str, list[Execution]] = {}
        for execution in window:
            per_workflow.setdefault(execution.workflow_name, []).append(execution)
        for name in sorted(per_workflow):
            runs = per_workflow[name]
            failed = sum(1 for e in runs if e.status.is_failure)
            rate = failed / len(runs)
            if rate > self.unhealthy_failure_rate:
                unhealthy = True
            elif rate > self.degraded_failure_rate:
                degraded = True
            else:
                continue
            issues.append(
                HealthIssue(
                    IssueKind.WORKFLOW_FAILURES,
                    name,
                    f"workflow '{name}' failed {failed} of last {len(runs)} runs",
                )
            )

        for task_id in self._rising_retry_tasks(retained):
            degraded = True
            issues.append(
                HealthIssue(
                    IssueKind.RISING_RETRY_RATE,
                    task_id,
                    f"task '{task_id}' retry rate is rising",
                )
            )

        task_metrics = self.get_task_metrics()
        failing_tasks = [t for t in task_metrics if t.failure_rate > self.task_failure_rate]
        for task in failing_tasks:
            degraded = True
            issues.append(
                HealthIssue(
                    IssueKind.TASK_FAILURES,
                    task.task_id,
                    f"task '{task.task_id}' failed {task.failures} of "
                    f"{task.successes + task.failures} runs",
                )
            )
        if len(failing_tasks) > self.failing_task_limit:
            unhealthy = True

        for task in task_metrics:
            if task.average_duration_seconds > self.slow_task_seconds:
                degraded = True
                issues.append(
                    HealthIssue(
                        IssueKind.SLOW_TASK,
                        task.task_id,
                        f"task '{task.task_id}' averages {task.average_duration_seconds:.1f}s "
                        f"(threshold {self.slow_task_seconds:.0f}s)",
                    )
                )

        if unhealthy:
            status = HealthStatus.UNHEALTHY
        elif degraded:
            status = HealthStatus.DEGRADED
        else:
            status = HealthStatus.HEALTHY

        recommendations: list[str] = []
        for issue in issues:
            text = RECOMMENDATIONS[issue.kind].format(subject=issue.subject)
            if text not in recommendations:
                recommendations.append(text)

        return HealthReport(
            status=status,
            metrics=metrics,
            issues=tuple(issues),
            recommendations=tuple(recommendations),
            window=len(window),
            window_failure_rate=failure_rate,
        )

    def _rising_retry_tasks(self, retained: list[Execution]) -> list[str]:
        """Tasks whose newer half of recent attempts averages more than the older half."""
        attempts: dict[str, list[int]] = {}
        limit = self.health_window * 2
        for execution in retained:
            for result in execution.task_results:
                if result.status == TaskStatus.SKIPPED:
                    continue
                series = attempts.setdefault(result.task_id, [])
                if len(series) < limit:
                    series.append(result.attempts)

        rising = []
        for task_id in sorted(attempts):
            series = attempts[task_id]  # newest first
            if len(series) < 4:
                continue
            half = len(series) // 2
            newer = series[:half]
            older = series[-half:]
            newer_avg = sum(newer) / len(newer)
            older_avg = sum(older) / len(older)
            if newer_avg > 1 and newer_avg > older_avg:
                rising.append(task_id)
        return rising

    # ── Maintenance / export ─────────────────────────────────────

    def reset(self) -> None:
        with self._lock:
            self._history.clear()
            self._workflows.clear()
            self._tasks.clear()
        self.registry.reset()
        logger.info("monitor.reset")

    def export_metrics(self) -> dict[str, Any]:
        """JSON-ready snapshot of everything the monitor knows."""
        return {
            "aggregate": self.get_aggregate_metrics().to_dict(),
            "workflows": [m.to_dict() for m in self.get_workflow_metrics()],
            "tasks": [m.to_dict() for m in self.get_task_metrics()],
            "health": self.get_health_report().to_dict(),
            "recent_executions": [e.to_dict() for e in self.get_recent_executions()],
        }

    def export_prometheus(self) -> str:
        return self.registry.export_prometheus()
