"""Prometheus-style metrics for conductor.

Counters, gauges and histograms keyed by label sets, collected into a
``MetricsRegistry`` that renders the Prometheus text exposition format for
the ``/metrics`` endpoint. Each ``ConductorService`` owns its own registry;
there is no process-global one.

Example:
    >>> registry = MetricsRegistry()
    >>> metrics = ConductorMetrics(registry)
    >>> metrics.executions.labels(workflow="welcome", status="succeeded").inc()
    >>> "conductor_executions_total" in registry.export_prometheus()
    True
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class Labels:
    """Immutable, sorted label set."""

    items: tuple[tuple[str, str], ...]

    @classmethod
    def from_dict(cls, d: dict[str, str] | None) -> Labels:
        if not d:
            return cls(())
        return cls(tuple(sorted((k, str(v)) for k, v in d.items())))

    def to_dict(self) -> dict[str, str]:
        return dict(self.items)

    def render(self, extra: tuple[tuple[str, str], ...] = ()) -> str:
        pairs = self.items + extra
        if not pairs:
            return ""
        body = ",".join(f'{k}="{_escape(v)}"' for k, v in pairs)
        return "{" + body + "}"


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


class Metric(ABC):
    """Base class for metrics."""

    kind: str = "untyped"

    def __init__(self, name: str, description: str = "", labels: list[str] | None = None):
        self.name = name
        self.description = description
        self.label_names = tuple(labels or ())
        self._lock = threading.Lock()

    def _labels(self, kwargs: dict[str, str]) -> Labels:
        unknown = set(kwargs) - set(self.label_names)
        if unknown:
            raise ValueError(f"{self.name}: unknown labels {sorted(unknown)}")
        return Labels.from_dict(kwargs)

    @abstractmethod
    def collect(self) -> list[dict[str, Any]]:
        """Collect metric values for export."""
        ...

    @abstractmethod
    def reset(self) -> None:
        ...


class Counter(Metric):
    """A monotonically increasing counter."""

    kind = "counter"

    def __init__(self, name: str, description: str = "", labels: list[str] | None = None):
        super().__init__(name, description, labels)
        self._values: dict[Labels, float] = {}

    def labels(self, **kwargs: str) -> _CounterChild:
        return _CounterChild(self, self._labels(kwargs))

    def inc(self, value: float = 1.0) -> None:
        self.labels().inc(value)

    def value(self, **kwargs: str) -> float:
        with self._lock:
            return self._values.get(self._labels(kwargs), 0.0)

    def _inc(self, labels: Labels, value: float) -> None:
        with self._lock:
            self._values[labels] = self._values.get(labels, 0.0) + value

    def collect(self) -> list[dict[str, Any]]:
        with self._lock:
            return [
                {"labels": labels, "value": value} for labels, value in self._values.items()
            ]

    def reset(self) -> None:
        with self._lock:
            self._values.clear()


class _CounterChild:
    def __init__(self, counter: Counter, labels: Labels):
        self._counter = counter
        self._labels = labels

    def inc(self, value: float = 1.0) -> None:
        if value < 0:
            raise ValueError("Counter can only increase")
        self._counter._inc(self._labels, value)


class Gauge(Metric):
    """A value that can go up or down."""

    kind = "gauge"

    def __init__(self, name: str, description: str = "", labels: list[str] | None = None):
        super().__init__(name, description, labels)
        self._values: dict[Labels, float] = {}

    def set(self, value: float, **kwargs: str) -> None:
        labels = self._labels(kwargs)
        with self._lock:
            self._values[labels] = value

    def inc(self, value: float = 1.0, **kwargs: str) -> None:
        labels = self._labels(kwargs)
        with self._lock:
            self._values[labels] = self._values.get(labels, 0.0) + value

    def dec(self, value: float = 1.0, **kwargs: str) -> None:
        self.inc(-value, **kwargs)

    def value(self, **kwargs: str) -> float:
        with self._lock:
            return self._values.get(self._labels(kwargs), 0.0)

    def collect(self) -> list[dict[str, Any]]:
        with self._lock:
            return [
                {"labels": labels, "value": value} for labels, value in self._values.items()
            ]

    def reset(self) -> None:
        with self._lock:
            self._values.clear()


class Histogram(Metric):
    """A cumulative-bucket distribution of observed values."""

    kind = "histogram"

    DEFAULT_BUCKETS = (0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, float("inf"))

    def __init__(
        self,
        name: str,
        description: str = "",
        labels: list[str] | None = None,
        buckets: tuple[float, ...] | None = None,
    ):
        super().__init__(name, description, labels)
        buckets = tuple(sorted(buckets or self.DEFAULT_BUCKETS))
        if buckets[-1] != float("inf"):
            buckets = buckets + (float("inf"),)
        self.buckets = buckets
        self._data: dict[Labels, dict[str, Any]] = {}

    def labels(self, **kwargs: str) -> _HistogramChild:
        return _HistogramChild(self, self._labels(kwargs))

    def observe(self, value: float) -> None:
        self.labels().observe(value)

    def _observe(self, labels: Labels, value: float) -> None:
        with self._lock:
            data = self._data.setdefault(
                labels, {"counts": [0] * len(self.buckets), "sum": 0.0, "count": 0}
            )
            data["sum"] += value
            data["count"] += 1
            for i, bound in enumerate(self.buckets):
                if value <= bound:
                    data["counts"][i] += 1

    def snapshot(self, **kwargs: str) -> dict[str, Any]:
        labels = self._labels(kwargs)
        with self._lock:
            data = self._data.get(labels)
            if data is None:
                return {"sum": 0.0, "count": 0, "buckets": dict.fromkeys(self.buckets, 0)}
            return {
                "sum": data["sum"],
                "count": data["count"],
                "buckets": dict(zip(self.buckets, data["counts"], strict=True)),
            }

    def collect(self) -> list[dict[str, Any]]:
        with self._lock:
            return [
                {
                    "labels": labels,
                    "buckets": list(zip(self.buckets, data["counts"], strict=True)),
                    "sum": data["sum"],
                    "count": data["count"],
                }
                for labels, data in self._data.items()
            ]

    def reset(self) -> None:
        with self._lock:
            self._data.clear()


class _HistogramChild:
    def __init__(self, histogram: Histogram, labels: Labels):
        self._histogram = histogram
        self._labels = labels

    def observe(self, value: float) -> None:
        self._histogram._observe(self._labels, value)


class MetricsRegistry:
    """Registry of metrics for collection and export."""

    def __init__(self) -> None:
        self._metrics: dict[str, Metric] = {}
        self._lock = threading.Lock()

    def _get_or_create(self, cls: type[Metric], name: str, *args: Any) -> Any:
        with self._lock:
            metric = self._metrics.get(name)
            if metric is None:
                metric = cls(name, *args)
                self._metrics[name] = metric
            elif not isinstance(metric, cls):
                raise ValueError(f"Metric {name} already registered as {metric.kind}")
            return metric

    def counter(self, name: str, description: str = "", labels: list[str] | None = None) -> Counter:
        return self._get_or_create(Counter, name, description, labels)

    def gauge(self, name: str, description: str = "", labels: list[str] | None = None) -> Gauge:
        return self._get_or_create(Gauge, name, description, labels)

    def histogram(
        self,
        name: str,
        description: str = "",
        labels: list[str] | None = None,
        buckets: tuple[float, ...] | None = None,
    ) -> Histogram:
        return self._get_or_create(Histogram, name, description, labels, buckets)

    def reset(self) -> None:
        with self._lock:
            metrics = list(self._metrics.values())
        for metric in metrics:
            metric.reset()

    def export_prometheus(self) -> str:
        """Render all metrics in the Prometheus text exposition format."""
        with self._lock:
            metrics = sorted(self._metrics.values(), key=lambda m: m.name)

        lines: list[str] = []
        for metric in metrics:
            if metric.description:
                lines.append(f"# HELP {metric.name} {metric.description}")
            lines.append(f"# TYPE {metric.name} {metric.kind}")
            for sample in metric.collect():
                labels: Labels = sample["labels"]
                if isinstance(metric, Histogram):
                    for bound, count in sample["buckets"]:
                        le = "+Inf" if bound == float("inf") else repr(float(bound))
                        lines.append(f"{metric.name}_bucket{labels.render((('le', le),))} {count}")
                    lines.append(f"{metric.name}_sum{labels.render()} {sample['sum']}")
                    lines.append(f"{metric.name}_count{labels.render()} {sample['count']}")
                else:
                    lines.append(f"{metric.name}{labels.render()} {sample['value']}")
        return "\n".join(lines) + "\n"


class ConductorMetrics:
    """Pre-defined metrics fed by the monitor."""

    def __init__(self, registry: MetricsRegistry):
        self.registry = registry
        self.executions = registry.counter(
            "conductor_executions_total",
            "Executions recorded, by workflow and final status",
            ["workflow", "status"],
        )
        self.duration = registry.histogram(
            "conductor_execution_duration_seconds",
            "Execution wall-clock duration in seconds",
            ["workflow"],
        )
        self.task_attempts = registry.counter(
            "conductor_task_attempts_total",
            "Task action attempts, including retries",
            ["task"],
        )
        self.task_outcomes = registry.counter(
            "conductor_task_results_total",
            "Task results by status",
            ["task", "status"],
        )
        self.retained = registry.gauge(
            "conductor_executions_retained",
            "Executions currently held in the history window",
        )
