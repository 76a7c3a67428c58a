"""
Scheduler / Job Registry.

Owns every job, decides whether a trigger should run it, dispatches it
through the orchestrator and records the resulting execution in the
monitor.

::

    handle_cron_request(job_id)            run_job(job_id)
        │ unknown?   → success=False           │ unknown? → NotFoundError
        │ disabled?  → success=True (skip)     │ (disabled jobs still run)
        ▼                                      ▼
    ┌──────────── per-job lock (non-blocking) ────────────┐
    │ held by another trigger → duplicate                 │
    │ cron only: success in current due-window → skip     │
    │ global job slot → orchestrator → monitor.record     │
    │ run_count += 1; last_run = attempt time             │
    │ next_run advances, except after a failed cron run   │
    └─────────────────────────────────────────────────────┘

A failed time-based run leaves ``next_run`` where it was, so the job stays
due and the next delivery of the trigger retries it. Duplicate suppression
compares the due-window with ``last_success_at``, which only successful
runs set.

The due-window check and the dispatch happen under the same per-job lock,
so two deliveries of the same trigger can never both reach the action.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterator, Mapping
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, assert_never

from conductor.core.errors import DuplicateTriggerError, NotFoundError, ScheduleError
from conductor.core.logging import get_logger
from conductor.execution.actions import ActionRef
from conductor.execution.retry import RetryPolicy
from conductor.observability.monitor import Monitor
from conductor.orchestration.models import (
    Execution,
    TriggerSource,
    WorkflowDefinition,
    utcnow,
)
from conductor.orchestration.orchestrator import Orchestrator
from conductor.scheduling.cron import next_fire, previous_fire, validate_cron
from conductor.scheduling.jobs import CronJob, Job, WorkflowJob

logger = get_logger(__name__)


@dataclass(frozen=True)
class TriggerResult:
    """Outcome of a time-based trigger."""

    job_id: str
    success: bool
    message: str
    skipped: bool = False
    execution: Execution | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "success": self.success,
            "message": self.message,
            "skipped": self.skipped,
            "execution": self.execution.to_dict() if self.execution else None,
        }


@dataclass(frozen=True)
class JobListing:
    workflows: list[WorkflowJob]
    cron: list[CronJob]

    def to_dict(self) -> dict[str, Any]:
        return {
            "workflows": [j.to_dict() for j in self.workflows],
            "cron": [j.to_dict() for j in self.cron],
        }


class Scheduler:
    """Job registry plus trigger handling.

    Args:
        orchestrator: Runs workflows and bare actions
        monitor: Receives every completed execution (optional)
        max_concurrent_jobs: Process-wide cap on jobs running at once
        clock: Source of "now" (tests pin it)
    """

    def __init__(
        self,
        orchestrator: Orchestrator,
        monitor: Monitor | None = None,
        *,
        max_concurrent_jobs: int = 4,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.orchestrator = orchestrator
        self.monitor = monitor
        self.max_concurrent_jobs = max_concurrent_jobs
        self._clock = clock
        self._jobs: dict[str, Job] = {}
        self._job_locks: dict[str, threading.Lock] = {}
        self._lock = threading.Lock()
        self._job_slots = threading.BoundedSemaphore(max_concurrent_jobs)

    # ── Registration ─────────────────────────────────────────────

    def register_workflow(
        self,
        workflow: WorkflowDefinition,
        schedule: str,
        *,
        job_id: str | None = None,
        enabled: bool = True,
        description: str = "",
    ) -> str:
        """Bind ``workflow`` to a cron schedule. Returns the job id.

        Raises:
            ScheduleError: Invalid cron expression or duplicate job id
        """
        now = self._clock()
        expression = validate_cron(schedule)
        job = WorkflowJob(
            id=job_id or workflow.id or workflow.name,
            schedule=expression,
            registered_at=now,
            enabled=enabled,
            description=description or workflow.description,
            next_run=next_fire(expression, now),
            workflow=workflow,
        )
        return self._add(job)

    def register_cron(
        self,
        job_id: str,
        schedule: str,
        action: ActionRef,
        *,
        name: str | None = None,
        payload: Mapping[str, Any] | None = None,
        retry_policy: RetryPolicy | None = None,
        timeout_seconds: float | None = None,
        enabled: bool = True,
        description: str = "",
    ) -> str:
        """Bind a bare action to a cron schedule. Returns the job id."""
        now = self._clock()
        expression = validate_cron(schedule)
        job = CronJob(
            id=job_id,
            schedule=expression,
            registered_at=now,
            enabled=enabled,
            description=description,
            next_run=next_fire(expression, now),
            name=name or job_id,
            action=action,
            payload=dict(payload or {}),
            retry_policy=retry_policy,
            timeout_seconds=timeout_seconds,
        )
        return self._add(job)

    def _add(self, job: Job) -> str:
        if not job.id:
            raise ScheduleError("Job id must be non-empty")
        with self._lock:
            if job.id in self._jobs:
                raise ScheduleError(f"Job already registered: {job.id}")
            self._jobs[job.id] = job
            self._job_locks[job.id] = threading.Lock()
        logger.info(
            "scheduler.job_registered",
            job_id=job.id,
            kind=job.kind,
            schedule=job.schedule,
            enabled=job.enabled,
            next_run=job.next_run.isoformat() if job.next_run else None,
        )
        return job.id

    # ── Queries ──────────────────────────────────────────────────

    def get_job(self, job_id: str) -> Job | None:
        with self._lock:
            return self._jobs.get(job_id)

    def get_all_jobs(self) -> JobListing:
        with self._lock:
            jobs = list(self._jobs.values())
        workflows: list[WorkflowJob] = []
        cron: list[CronJob] = []
        for job in jobs:
            match job:
                case WorkflowJob():
                    workflows.append(job)
                case CronJob():
                    cron.append(job)
                case _:
                    assert_never(job)
        return JobListing(workflows=workflows, cron=cron)

    def get_enabled_jobs(self) -> list[Job]:
        with self._lock:
            return [j for j in self._jobs.values() if j.enabled]

    def is_running(self, job_id: str) -> bool:
        with self._lock:
            lock = self._job_locks.get(job_id)
        return lock is not None and lock.locked()

    # ── Mutation ─────────────────────────────────────────────────

    def disable_job(self, job_id: str) -> bool:
        """Soft-disable a job. Idempotent; False if the id is unknown."""
        return self._set_enabled(job_id, False)

    def enable_job(self, job_id: str) -> bool:
        return self._set_enabled(job_id, True)

    def _set_enabled(self, job_id: str, enabled: bool) -> bool:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return False
            if job.enabled != enabled:
                self._jobs[job_id] = replace(job, enabled=enabled)
        logger.info("scheduler.job_enabled" if enabled else "scheduler.job_disabled", job_id=job_id)
        return True

    # ── Triggers ─────────────────────────────────────────────────

    def run_job(self, job_id: str, *, triggered_by: TriggerSource = TriggerSource.MANUAL) -> Execution:
        """Run a job now, ignoring its schedule and enabled flag.

        Raises:
            NotFoundError: Unknown job id
            DuplicateTriggerError: The job is already running
        """
        if self.get_job(job_id) is None:
            raise NotFoundError("Job", job_id)
        with self._claim(job_id):
            job = self._require(job_id)
            return self._run_claimed(job, triggered_by, advance_on_failure=True)

    def handle_cron_request(self, job_id: str, *, now: datetime | None = None) -> TriggerResult:
        """Entry point for an external time-based trigger.

        Idempotent under duplicate delivery: a repeat within the current
        due-window after a successful run is a success no-op.
        """
        now = now or self._clock()
        job = self.get_job(job_id)
        if job is None:
            logger.warning("scheduler.cron.unknown_job", job_id=job_id)
            return TriggerResult(job_id, False, f"Job not found: {job_id}")
        if not job.enabled:
            return self._skip(job_id, f"Job '{job_id}' is disabled; skipped")

        try:
            with self._claim(job_id):
                job = self._require(job_id)
                if not job.enabled:
                    return self._skip(job_id, f"Job '{job_id}' is disabled; skipped")
                window_start = previous_fire(job.schedule, now)
                if job.last_success_at is not None and job.last_success_at >= window_start:
                    return self._skip(job_id, f"Job '{job_id}' already run this cycle")
                execution = self._run_claimed(
                    job, TriggerSource.SCHEDULE, now, advance_on_failure=False
                )
        except DuplicateTriggerError:
            return self._skip(job_id, f"Job '{job_id}' is already running; duplicate trigger ignored")

        if execution.succeeded:
            return TriggerResult(
                job_id, True, f"Job '{job_id}' completed successfully", execution=execution
            )
        return TriggerResult(
            job_id,
            False,
            f"Job '{job_id}' {execution.status.value}: {execution.failure_reason or 'unknown error'}",
            execution=execution,
        )

    def due_jobs(self, now: datetime | None = None) -> list[Job]:
        now = now or self._clock()
        return [
            j for j in self.get_enabled_jobs() if j.next_run is not None and j.next_run <= now
        ]

    def run_due(self, now: datetime | None = None) -> list[TriggerResult]:
        """Dispatch every enabled job whose ``next_run`` has passed."""
        now = now or self._clock()
        due = self.due_jobs(now)
        if not due:
            return []
        logger.info("scheduler.run_due", jobs=[j.id for j in due])
        with ThreadPoolExecutor(
            max_workers=self.max_concurrent_jobs, thread_name_prefix="conductor-job"
        ) as pool:
            return list(pool.map(lambda j: self.handle_cron_request(j.id, now=now), due))

    # ── Internals ────────────────────────────────────────────────

    def _require(self, job_id: str) -> Job:
        job = self.get_job(job_id)
        if job is None:
            raise NotFoundError("Job", job_id)
        return job

    def _skip(self, job_id: str, message: str) -> TriggerResult:
        logger.info("scheduler.cron.skipped", job_id=job_id, reason=message)
        return TriggerResult(job_id, True, message, skipped=True)

    @contextmanager
    def _claim(self, job_id: str) -> Iterator[None]:
        with self._lock:
            lock = self._job_locks[job_id]
        if not lock.acquire(blocking=False):
            logger.warning("scheduler.duplicate_trigger", job_id=job_id)
            raise DuplicateTriggerError(job_id)
        try:
            yield
        finally:
            lock.release()

    def _run_claimed(
        self,
        job: Job,
        triggered_by: TriggerSource,
        now: datetime | None = None,
        *,
        advance_on_failure: bool,
    ) -> Execution:
        with self._job_slots:
            attempted_at = now or self._clock()
            self._update(job.id, last_attempt_at=attempted_at)
            logger.info("scheduler.job.start", job_id=job.id, triggered_by=triggered_by.value)
            execution = self._execute(job, triggered_by)
            self._record(job.id, execution, attempted_at, advance_on_failure)
        if self.monitor is not None:
            self.monitor.record_execution(execution)
        return execution

    def _execute(self, job: Job, triggered_by: TriggerSource) -> Execution:
        match job:
            case WorkflowJob(workflow=workflow):
                return self.orchestrator.execute(workflow, job_id=job.id, triggered_by=triggered_by)
            case CronJob():
                return self.orchestrator.execute_action(
                    job.name,
                    job.action,
                    payload=job.payload,
                    retry_policy=job.retry_policy,
                    timeout_seconds=job.timeout_seconds,
                    job_id=job.id,
                    triggered_by=triggered_by,
                )
            case _:
                assert_never(job)

    def _record(
        self,
        job_id: str,
        execution: Execution,
        attempted_at: datetime,
        advance_on_failure: bool,
    ) -> None:
        with self._lock:
            job = self._jobs[job_id]
            changes: dict[str, Any] = {
                "run_count": job.run_count + 1,
                "last_run": attempted_at,
                "last_status": execution.status,
                "last_error": execution.failure_reason,
            }
            if execution.succeeded:
                changes["last_success_at"] = attempted_at
            if execution.succeeded or advance_on_failure:
                changes["next_run"] = next_fire(job.schedule, attempted_at)
            self._jobs[job_id] = updated = replace(job, **changes)

        logger.info(
            "scheduler.job.finished",
            job_id=job_id,
            status=execution.status.value,
            run_count=updated.run_count,
            next_run=updated.next_run.isoformat() if updated.next_run else None,
        )

    def _update(self, job_id: str, **changes: Any) -> None:
        with self._lock:
            self._jobs[job_id] = replace(self._jobs[job_id], **changes)
