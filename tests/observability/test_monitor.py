"""
Tests for conductor.observability.monitor.

Tests cover:
- Recording and the bounded history, including concurrent writers
- Status and workflow/job filters
- Workflow, task and aggregate metrics
- Health classification and recommendations
- Prometheus export
"""

import itertools
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime, timedelta

import pytest

from conductor.observability.monitor import HealthStatus, IssueKind, Monitor
from conductor.orchestration.models import (
    Execution,
    ExecutionStatus,
    TaskResult,
    TaskStatus,
)

_seq = itertools.count(1)
T0 = datetime(2026, 1, 5, 9, 0, tzinfo=UTC)


def make_execution(
    name="welcome",
    status=ExecutionStatus.SUCCEEDED,
    *,
    duration=1.0,
    results=(),
    job_id=None,
    error=None,
):
    n = next(_seq)
    started = T0 + timedelta(minutes=n)
    return Execution(
        id=f"exec_{n:04d}",
        workflow_name=name,
        status=status,
        started_at=started,
        finished_at=started + timedelta(seconds=duration),
        task_results=tuple(results),
        job_id=job_id,
        error=error,
    )


def ok(task_id, attempts=1, duration=0.0):
    return TaskResult(task_id, TaskStatus.SUCCEEDED, attempts=attempts, duration_seconds=duration)


def failed(task_id, attempts=1, error="HTTP 503"):
    return TaskResult(task_id, TaskStatus.FAILED, attempts=attempts, error=error)


class TestRecording:
    def test_rejects_running_execution(self, monitor):
        with pytest.raises(ValueError, match="unfinished"):
            monitor.record_execution(make_execution(status=ExecutionStatus.RUNNING))

    def test_recent_is_newest_first(self, monitor):
        first = make_execution()
        second = make_execution()
        monitor.record_execution(first)
        monitor.record_execution(second)

        assert [e.id for e in monitor.get_recent_executions()] == [second.id, first.id]
        assert [e.id for e in monitor.get_recent_executions(1)] == [second.id]

    def test_capacity_evicts_but_totals_persist(self):
        monitor = Monitor(capacity=3)
        executions = [make_execution() for _ in range(5)]
        for e in executions:
            monitor.record_execution(e)

        assert [e.id for e in monitor.get_recent_executions()] == [
            e.id for e in reversed(executions[2:])
        ]
        aggregate = monitor.get_aggregate_metrics()
        assert aggregate.total_executions == 5
        assert aggregate.retained == 3
        assert aggregate.capacity == 3
        assert monitor.get_workflow_metrics()[0].run_count == 5

    def test_concurrent_record_and_read(self):
        monitor = Monitor(capacity=50)
        writers, per_writer = 4, 50
        batches = [
            [make_execution(f"wf-{w}", results=[ok(f"task-{w}")]) for _ in range(per_writer)]
            for w in range(writers)
        ]
        done = threading.Event()
        problems = []

        def write(batch):
            for execution in batch:
                monitor.record_execution(execution)

        def read():
            while not done.is_set():
                recent = monitor.get_recent_executions()
                if len(recent) > 50 or len({e.id for e in recent}) != len(recent):
                    problems.append(f"bad history of {len(recent)}")
                aggregate = monitor.get_aggregate_metrics()
                counted = aggregate.succeeded + aggregate.failed + aggregate.partial
                if aggregate.total_executions != counted:
                    problems.append(f"inconsistent totals {aggregate}")
                for metrics in monitor.get_workflow_metrics():
                    if metrics.run_count > per_writer:
                        problems.append(f"{metrics.workflow_name} over-counted")

        readers = [threading.Thread(target=read) for _ in range(2)]
        for reader in readers:
            reader.start()
        with ThreadPoolExecutor(max_workers=writers) as pool:
            list(pool.map(write, batches))
        done.set()
        for reader in readers:
            reader.join(5)

        assert problems == []
        aggregate = monitor.get_aggregate_metrics()
        assert aggregate.total_executions == writers * per_writer
        assert aggregate.succeeded == writers * per_writer
        assert aggregate.retained == 50
        assert [m.run_count for m in monitor.get_workflow_metrics()] == [per_writer] * writers
        assert [m.runs for m in monitor.get_task_metrics()] == [per_writer] * writers
        recent = monitor.get_recent_executions()
        assert len({e.id for e in recent}) == 50


class TestFilters:
    def test_by_status(self, monitor):
        monitor.record_execution(make_execution())
        bad = make_execution(status=ExecutionStatus.FAILED)
        monitor.record_execution(bad)

        assert [e.id for e in monitor.get_executions_by_status("failed")] == [bad.id]
        assert monitor.get_executions_by_status(ExecutionStatus.PARTIAL) == []

    def test_by_workflow_and_job(self, monitor):
        a = make_execution("welcome", job_id="welcome-daily")
        b = make_execution("digest")
        c = make_execution("welcome")
        for e in (a, b, c):
            monitor.record_execution(e)

        assert [e.id for e in monitor.get_executions_for(workflow_name="welcome")] == [c.id, a.id]
        assert [e.id for e in monitor.get_executions_for(job_id="welcome-daily")] == [a.id]
        assert len(monitor.get_executions_for(workflow_name="welcome", limit=1)) == 1


class TestMetrics:
    def test_workflow_metrics(self, monitor):
        for d in (4, 1, 10, 2, 3):
            monitor.record_execution(make_execution("nightly", duration=d))
        monitor.record_execution(
            make_execution(
                "nightly",
                ExecutionStatus.PARTIAL,
                duration=2,
                results=[ok("a"), failed("b")],
            )
        )

        (metrics,) = monitor.get_workflow_metrics("nightly")

        assert metrics.run_count == 6
        assert metrics.succeeded == 5
        assert metrics.partial == 1
        assert metrics.success_rate == pytest.approx(5 / 6)
        assert metrics.last_status == ExecutionStatus.PARTIAL
        assert metrics.last_failure_reason == "b: HTTP 503"
        assert monitor.get_workflow_metrics("ghost") == []

    def test_duration_percentiles(self, monitor):
        for d in (4, 1, 10, 2, 3):
            monitor.record_execution(make_execution("nightly", duration=d))

        (metrics,) = monitor.get_workflow_metrics()

        assert metrics.p50_duration_seconds == 3
        assert metrics.p95_duration_seconds == 10

    def test_task_metrics(self, monitor):
        monitor.record_execution(make_execution(results=[ok("send", attempts=1, duration=2.0)]))
        monitor.record_execution(make_execution(results=[ok("send", attempts=3, duration=4.0)]))
        monitor.record_execution(
            make_execution(
                status=ExecutionStatus.FAILED,
                results=[
                    failed("send", attempts=3),
                    TaskResult("log", TaskStatus.SKIPPED),
                ],
            )
        )

        send, log = sorted(monitor.get_task_metrics(), key=lambda m: m.task_id, reverse=True)

        assert send.task_id == "send"
        assert send.runs == 3
        assert send.attempts == 7
        assert send.successes == 2
        assert send.failures == 1
        assert send.failure_rate == pytest.approx(1 / 3)
        assert send.average_attempts_to_success == 2.0
        assert send.average_duration_seconds == pytest.approx(2.0)
        assert log.skips == 1
        assert log.average_attempts_to_success is None
        assert [m.task_id for m in monitor.get_task_metrics(["log"])] == ["log"]


class TestHealth:
    def test_empty_is_healthy(self, monitor):
        report = monitor.get_health_report()

        assert report.status == HealthStatus.HEALTHY
        assert report.issues == ()
        assert report.window == 0

    def test_all_successes_healthy(self, monitor):
        for _ in range(5):
            monitor.record_execution(make_execution())

        report = monitor.get_health_report()

        assert report.status == HealthStatus.HEALTHY
        assert report.window_failure_rate == 0.0
        assert report.recommendations == ()

    def test_repeated_failures_unhealthy(self, monitor):
        for _ in range(5):
            monitor.record_execution(
                make_execution("nightly", ExecutionStatus.FAILED, error="endpoint down")
            )

        report = monitor.get_health_report()

        assert report.status == HealthStatus.UNHEALTHY
        kinds = {i.kind for i in report.issues}
        assert kinds == {
            IssueKind.HIGH_FAILURE_RATE,
            IssueKind.LAST_EXECUTION_FAILED,
            IssueKind.WORKFLOW_FAILURES,
        }
        messages = [i.message for i in report.issues]
        assert "workflow 'nightly' failed 5 of last 5 runs" in messages
        assert any("endpoint down" in m for m in messages)
        assert any("nightly" in r for r in report.recommendations)

    def test_partial_failures_degraded(self, monitor):
        monitor.record_execution(make_execution(status=ExecutionStatus.PARTIAL))
        monitor.record_execution(make_execution(status=ExecutionStatus.PARTIAL))
        for _ in range(3):
            monitor.record_execution(make_execution())

        report = monitor.get_health_report()

        assert report.status == HealthStatus.DEGRADED
        assert report.window_failure_rate == pytest.approx(0.4)
        assert IssueKind.ELEVATED_FAILURE_RATE in {i.kind for i in report.issues}

    def test_latest_failure_is_unhealthy(self, monitor):
        for _ in range(4):
            monitor.record_execution(make_execution())
        monitor.record_execution(make_execution(status=ExecutionStatus.FAILED, error="boom"))

        report = monitor.get_health_report()

        assert report.status == HealthStatus.UNHEALTHY
        assert report.window_failure_rate == pytest.approx(0.2)
        assert IssueKind.LAST_EXECUTION_FAILED in {i.kind for i in report.issues}
        assert IssueKind.WORKFLOW_FAILURES not in {i.kind for i in report.issues}

    def test_one_workflow_failing_is_unhealthy(self, monitor):
        monitor.record_execution(make_execution("x", ExecutionStatus.FAILED, error="boom"))
        for _ in range(4):
            monitor.record_execution(make_execution("y"))

        report = monitor.get_health_report()

        assert report.status == HealthStatus.UNHEALTHY
        assert report.window_failure_rate == pytest.approx(0.2)
        assert [(i.kind, i.subject) for i in report.issues] == [(IssueKind.WORKFLOW_FAILURES, "x")]
        assert report.issues[0].message == "workflow 'x' failed 1 of last 1 runs"

    def test_workflow_failing_most_runs_is_unhealthy(self, monitor):
        for _ in range(2):
            monitor.record_execution(make_execution("x", ExecutionStatus.FAILED, error="boom"))
        for _ in range(3):
            monitor.record_execution(make_execution("y"))

        report = monitor.get_health_report()

        assert report.status == HealthStatus.UNHEALTHY
        assert {i.kind for i in report.issues} == {
            IssueKind.ELEVATED_FAILURE_RATE,
            IssueKind.WORKFLOW_FAILURES,
        }

    def test_workflow_failing_some_runs_is_degraded(self, monitor):
        monitor.record_execution(make_execution("digest", ExecutionStatus.PARTIAL))
        for _ in range(2):
            monitor.record_execution(make_execution("digest"))
        for _ in range(2):
            monitor.record_execution(make_execution("welcome"))

        report = monitor.get_health_report()

        assert report.status == HealthStatus.DEGRADED
        assert [(i.kind, i.subject) for i in report.issues] == [
            (IssueKind.WORKFLOW_FAILURES, "digest")
        ]

    def test_only_recent_window_counts(self, monitor):
        for _ in range(5):
            monitor.record_execution(make_execution(status=ExecutionStatus.FAILED))
        for _ in range(5):
            monitor.record_execution(make_execution())

        report = monitor.get_health_report()

        assert report.status == HealthStatus.HEALTHY
        assert report.window == 5
        assert report.metrics.failed == 5

    def test_rising_retry_rate_degraded(self, monitor):
        for attempts in (1, 1, 3, 3):
            monitor.record_execution(make_execution(results=[ok("send-email", attempts=attempts)]))

        report = monitor.get_health_report()

        assert report.status == HealthStatus.DEGRADED
        (issue,) = report.issues
        assert issue.kind == IssueKind.RISING_RETRY_RATE
        assert issue.subject == "send-email"
        assert "send-email" in report.recommendations[0]

    def test_falling_retry_rate_healthy(self, monitor):
        for attempts in (3, 3, 1, 1):
            monitor.record_execution(make_execution(results=[ok("send-email", attempts=attempts)]))

        assert monitor.get_health_report().status == HealthStatus.HEALTHY

    def test_failing_task_degraded(self, monitor):
        monitor.record_execution(
            make_execution(status=ExecutionStatus.PARTIAL, results=[ok("send"), failed("sync")])
        )
        for _ in range(3):
            monitor.record_execution(make_execution(results=[ok("send"), ok("sync")]))
        for _ in range(2):
            monitor.record_execution(make_execution(results=[ok("send")]))

        report = monitor.get_health_report()

        assert report.status == HealthStatus.DEGRADED
        assert [(i.kind, i.subject) for i in report.issues] == [(IssueKind.TASK_FAILURES, "sync")]
        assert report.issues[0].message == "task 'sync' failed 1 of 4 runs"

    def test_many_failing_tasks_unhealthy(self, monitor):
        monitor.record_execution(
            make_execution(
                status=ExecutionStatus.FAILED,
                results=[failed("a"), failed("b"), failed("c"), failed("d")],
            )
        )
        for _ in range(5):
            monitor.record_execution(make_execution())

        report = monitor.get_health_report()

        assert report.status == HealthStatus.UNHEALTHY
        assert [i.subject for i in report.issues] == ["a", "b", "c", "d"]
        assert {i.kind for i in report.issues} == {IssueKind.TASK_FAILURES}

    def test_failing_task_limit_configurable(self):
        monitor = Monitor(failing_task_limit=0)
        monitor.record_execution(make_execution(results=[failed("a")]))
        for _ in range(5):
            monitor.record_execution(make_execution())

        assert monitor.get_health_report().status == HealthStatus.UNHEALTHY

    def test_slow_task_degraded(self):
        monitor = Monitor(slow_task_seconds=1)
        monitor.record_execution(make_execution(results=[ok("render", duration=5.0)]))

        report = monitor.get_health_report()

        assert report.status == HealthStatus.DEGRADED
        assert [i.kind for i in report.issues] == [IssueKind.SLOW_TASK]
        assert "render" in report.issues[0].message

    def test_to_dict(self, monitor):
        monitor.record_execution(make_execution())

        data = monitor.get_health_report().to_dict()

        assert data["status"] == "healthy"
        assert data["metrics"]["total_executions"] == 1
        assert data["issues"] == []


class TestExport:
    def test_prometheus(self, monitor):
        monitor.record_execution(make_execution(results=[ok("send", attempts=2)]))

        text = monitor.export_prometheus()

        assert 'conductor_executions_total{status="succeeded",workflow="welcome"} 1.0' in text
        assert 'conductor_task_attempts_total{task="send"} 2.0' in text
        assert "conductor_executions_retained 1" in text

    def test_export_metrics(self, monitor):
        execution = make_execution(results=[ok("send")])
        monitor.record_execution(execution)

        data = monitor.export_metrics()

        assert set(data) == {"aggregate", "workflows", "tasks", "health", "recent_executions"}
        assert data["recent_executions"][0]["id"] == execution.id
        assert data["workflows"][0]["workflow_name"] == "welcome"

    def test_reset(self, monitor):
        monitor.record_execution(make_execution())

        monitor.reset()

        assert monitor.get_recent_executions() == []
        assert monitor.get_aggregate_metrics().total_executions == 0
        assert "conductor_executions_total{" not in monitor.export_prometheus()
