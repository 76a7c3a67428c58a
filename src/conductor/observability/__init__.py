"""Execution history, health reporting and metrics."""

from conductor.observability.history import RingBuffer
from conductor.observability.metrics import ConductorMetrics, MetricsRegistry
from conductor.observability.monitor import (
    HealthIssue,
    HealthReport,
    HealthStatus,
    IssueKind,
    Monitor,
)

__all__ = [
    "ConductorMetrics",
    "HealthIssue",
    "HealthReport",
    "HealthStatus",
    "IssueKind",
    "MetricsRegistry",
    "Monitor",
    "RingBuffer",
]
