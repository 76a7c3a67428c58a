"""Composition root: builds and owns the orchestration components.

There are no module-level singletons. ``ConductorService.from_settings``
wires runner → orchestrator → scheduler → monitor from one settings object;
the API stores the instance on ``app.state`` and the CLI builds its own.

Lifecycle:
    ``start()`` loads static jobs (built-in list, jobs file) once and starts
    the in-process ticker when enabled. ``stop()`` stops the ticker.
    Both are idempotent.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from datetime import datetime
from typing import Any

import httpx

from conductor.core.logging import get_logger
from conductor.core.settings import ConductorSettings
from conductor.execution.actions import ActionRegistry
from conductor.execution.retry import RetryPolicy
from conductor.execution.task_runner import TaskRunner
from conductor.observability.metrics import MetricsRegistry
from conductor.observability.monitor import Monitor
from conductor.orchestration.models import Execution, TriggerSource, WorkflowDefinition, utcnow
from conductor.orchestration.orchestrator import Orchestrator
from conductor.scheduling.backend import ThreadTickBackend
from conductor.scheduling.loader import load_jobs_file, register_builtin_jobs
from conductor.scheduling.scheduler import Scheduler

logger = get_logger(__name__)


class ConductorService:
    """Owns the action registry, runner, orchestrator, scheduler and monitor."""

    def __init__(
        self,
        settings: ConductorSettings,
        *,
        actions: ActionRegistry | None = None,
        http_transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings
        self.actions = actions or ActionRegistry(http_transport=http_transport)
        self.runner = TaskRunner(
            self.actions,
            default_timeout=settings.default_task_timeout,
            default_retry=RetryPolicy(
                max_attempts=settings.default_max_attempts,
                base_delay=settings.default_retry_delay,
                multiplier=settings.default_retry_multiplier,
                max_delay=settings.default_retry_max_delay,
            ),
            max_concurrent_actions=settings.max_concurrent_actions,
            sleep=sleep,
        )
        self.orchestrator = Orchestrator(self.runner, max_concurrency=settings.max_concurrency)
        self.monitor = Monitor(
            settings.history_capacity,
            health_window=settings.health_window,
            unhealthy_failure_rate=settings.unhealthy_failure_rate,
            degraded_failure_rate=settings.degraded_failure_rate,
            slow_task_seconds=settings.slow_task_seconds,
            task_failure_rate=settings.task_failure_rate,
            failing_task_limit=settings.failing_task_limit,
            registry=MetricsRegistry(),
        )
        self.scheduler = Scheduler(
            self.orchestrator,
            self.monitor,
            max_concurrent_jobs=settings.max_concurrent_jobs,
            clock=clock,
        )
        self.backend = ThreadTickBackend(self.scheduler, settings.tick_interval)
        self._started = False
        self._jobs_loaded = False
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: ConductorSettings | None = None, **kwargs: Any) -> ConductorService:
        return cls(settings or ConductorSettings(), **kwargs)

    @property
    def started(self) -> bool:
        return self._started

    def load_static_jobs(self) -> list[str]:
        """Register built-in jobs and the jobs file. Runs once per service."""
        with self._lock:
            if self._jobs_loaded:
                return []
            self._jobs_loaded = True
        ids: list[str] = []
        if self.settings.register_builtin_jobs:
            ids.extend(register_builtin_jobs(self.scheduler))
        if self.settings.jobs_file is not None:
            ids.extend(load_jobs_file(self.settings.jobs_file, self.scheduler))
        return ids

    def start(self) -> None:
        with self._lock:
            if self._started:
                return
            self._started = True
        jobs = self.load_static_jobs()
        if self.settings.tick_enabled:
            self.backend.start()
        logger.info(
            "service.started",
            jobs=len(jobs),
            ticker=self.settings.tick_enabled,
            max_concurrency=self.settings.max_concurrency,
        )

    def stop(self) -> None:
        with self._lock:
            if not self._started:
                return
            self._started = False
        self.backend.stop()
        logger.info("service.stopped")

    def execute_workflow(
        self, workflow: WorkflowDefinition, *, triggered_by: TriggerSource = TriggerSource.API
    ) -> Execution:
        """Run an ad hoc workflow now and record it."""
        execution = self.orchestrator.execute(workflow, triggered_by=triggered_by)
        self.monitor.record_execution(execution)
        return execution

    def __enter__(self) -> ConductorService:
        self.start()
        return self

    def __exit__(self, *args: Any) -> None:
        self.stop()
