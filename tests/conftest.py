"""
Shared pytest fixtures for conductor tests.

Everything is built per test: no service, registry or settings object
survives between tests. Backoff sleeps are recorded instead of slept and the
scheduler clock is pinned to a Monday morning so cron windows are
deterministic.

Fixtures:
    settings      ConductorSettings isolated from the environment
    clock         FixedClock starting at 2026-01-05 08:30 UTC
    sleeps        list of backoff delays the runner asked for
    calls         list of task payloads seen by the ``record`` handler
    actions       ActionRegistry with a handful of test handlers
    runner / orchestrator / monitor / scheduler / service
"""

from __future__ import annotations

import os
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest
import structlog

from conductor.core.errors import TaskActionError
from conductor.core.settings import ConductorSettings, get_settings
from conductor.execution.actions import ActionRegistry
from conductor.execution.retry import RetryPolicy
from conductor.execution.task_runner import TaskRunner
from conductor.observability.monitor import Monitor
from conductor.orchestration.orchestrator import Orchestrator
from conductor.scheduling.scheduler import Scheduler
from conductor.service import ConductorService

MONDAY_0830 = datetime(2026, 1, 5, 8, 30, tzinfo=UTC)


# =============================================================================
# Markers
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Mark API, CLI and service tests as integration, everything else as unit."""
    root = Path(__file__).parent
    for item in items:
        rel = item.path.relative_to(root)
        markers = {mark.name for mark in item.iter_markers()}
        if rel.parts[0] in {"api", "cli"} or rel.name == "test_service.py":
            item.add_marker(pytest.mark.integration)
        elif not markers.intersection({"integration", "slow"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Isolation
# =============================================================================


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch):
    """Drop CONDUCTOR_* variables and the cached settings around every test."""
    for key in list(os.environ):
        if key.startswith("CONDUCTOR_"):
            monkeypatch.delenv(key, raising=False)
    get_settings.cache_clear()
    structlog.contextvars.clear_contextvars()
    yield
    get_settings.cache_clear()
    structlog.contextvars.clear_contextvars()


# =============================================================================
# Helpers
# =============================================================================


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def set(self, value: datetime) -> datetime:
        self.now = value
        return value

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class Flaky:
    """Handler that raises a retryable error ``failures`` times, then succeeds."""

    def __init__(self, failures: int, *, retryable: bool = True):
        self.failures = failures
        self.retryable = retryable
        self.calls = 0

    def __call__(self, payload: dict[str, Any]) -> dict[str, Any]:
        self.calls += 1
        if self.calls <= self.failures:
            raise TaskActionError(f"attempt {self.calls} failed", retryable=self.retryable)
        return {"status": "success", "calls": self.calls}


# =============================================================================
# Components
# =============================================================================


@pytest.fixture
def make_flaky() -> type[Flaky]:
    return Flaky


@pytest.fixture
def settings() -> ConductorSettings:
    return ConductorSettings(
        _env_file=None,
        cron_secret="test-secret",
        register_builtin_jobs=False,
        tick_enabled=False,
        default_task_timeout=5.0,
        default_max_attempts=1,
        default_retry_delay=0.0,
    )


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(MONDAY_0830)


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def calls() -> list[dict[str, Any]]:
    return []


@pytest.fixture
def actions(calls: list[dict[str, Any]]) -> ActionRegistry:
    """Registry with handlers:

    ok      always succeeds
    echo    returns the payload it received
    record  appends the payload to ``calls``
    boom    raises RuntimeError (non-retryable once wrapped)
    reject  answers with a non-retryable error envelope
    """
    registry = ActionRegistry()

    def record(payload: dict[str, Any]) -> dict[str, Any]:
        calls.append(dict(payload))
        return {"status": "success"}

    def boom(payload: dict[str, Any]) -> None:
        raise RuntimeError("boom")

    registry.register("ok", lambda payload: {"status": "success"})
    registry.register("echo", lambda payload: {"status": "success", "payload": payload})
    registry.register("record", record)
    registry.register("boom", boom)
    registry.register(
        "reject", lambda payload: {"status": "error", "error": "rejected", "retryable": False}
    )
    return registry


@pytest.fixture
def runner(actions: ActionRegistry, sleeps: list[float]) -> TaskRunner:
    return TaskRunner(
        actions,
        default_timeout=5.0,
        default_retry=RetryPolicy.no_retry(),
        sleep=sleeps.append,
    )


@pytest.fixture
def orchestrator(runner: TaskRunner) -> Orchestrator:
    return Orchestrator(runner, max_concurrency=4)


@pytest.fixture
def monitor() -> Monitor:
    return Monitor(capacity=50, health_window=5)


@pytest.fixture
def scheduler(orchestrator: Orchestrator, monitor: Monitor, clock: FixedClock) -> Scheduler:
    return Scheduler(orchestrator, monitor, max_concurrent_jobs=4, clock=clock)


@pytest.fixture
def service(
    settings: ConductorSettings,
    actions: ActionRegistry,
    sleeps: list[float],
    clock: FixedClock,
) -> ConductorService:
    return ConductorService(settings, actions=actions, sleep=sleeps.append, clock=clock)
