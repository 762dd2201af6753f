"""
Metrics Collector: Prometheus-Compatible Storage Metrics

Provides:
- Thread-safe counters, gauges and latency histograms
- Label dimensions (operation, outcome)
- Prometheus text exposition
- StorageMetrics: the fixed metric set recorded by adapters
"""

from __future__ import annotations

import threading
import time
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Iterator, Optional, Sequence


@dataclass(frozen=True)
class MetricLabels:
    """Immutable, hashable label set for metric dimensions."""
    labels: tuple[tuple[str, str], ...]

    @classmethod
    def from_dict(cls, d: dict[str, str]) -> MetricLabels:
        return cls(labels=tuple(sorted(d.items())))

    def to_dict(self) -> dict[str, str]:
        return dict(self.labels)


class _Metric:
    """Shared naming and label handling."""

    __slots__ = ("_name", "_help", "_label_names", "_lock")

    def __init__(self, name: str, label_names: Sequence[str], help_text: str) -> None:
        self._name = name
        self._help = help_text
        self._label_names = tuple(label_names)
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return self._name

    @property
    def help_text(self) -> str:
        return self._help

    def _make_key(self, labels: dict[str, str]) -> MetricLabels:
        filtered = {k: str(labels.get(k, "")) for k in self._label_names}
        return MetricLabels.from_dict(filtered)


class Counter(_Metric):
    """
    Monotonically increasing counter metric.

    Usage:
        ops = Counter("blobmesh_operations_total", ["operation", "outcome"])
        ops.inc(operation="write", outcome="ok")
    """

    __slots__ = ("_values",)

    def __init__(
        self,
        name: str,
        label_names: Sequence[str] = (),
        help_text: str = "",
    ) -> None:
        super().__init__(name, label_names, help_text)
        self._values: dict[MetricLabels, float] = defaultdict(float)

    def inc(self, value: float = 1.0, **labels: str) -> None:
        if value < 0:
            raise ValueError("Counter can only increase")
        key = self._make_key(labels)
        with self._lock:
            self._values[key] += value

    def get(self, **labels: str) -> float:
        key = self._make_key(labels)
        with self._lock:
            return self._values.get(key, 0.0)

    def collect(self) -> Iterator[tuple[dict[str, str], float]]:
        """Snapshot of all label combinations."""
        with self._lock:
            items = list(self._values.items())
        for key, value in items:
            yield (key.to_dict(), value)


class Gauge(_Metric):
    """
    Gauge metric that can go up and down.

    Usage:
        in_flight = Gauge("blobmesh_multipart_uploads_in_progress")
        in_flight.inc()
        in_flight.dec()
    """

    __slots__ = ("_values",)

    def __init__(
        self,
        name: str,
        label_names: Sequence[str] = (),
        help_text: str = "",
    ) -> None:
        super().__init__(name, label_names, help_text)
        self._values: dict[MetricLabels, float] = {}

    def set(self, value: float, **labels: str) -> None:
        key = self._make_key(labels)
        with self._lock:
            self._values[key] = value

    def inc(self, value: float = 1.0, **labels: str) -> None:
        key = self._make_key(labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + value

    def dec(self, value: float = 1.0, **labels: str) -> None:
        self.inc(-value, **labels)

    def get(self, **labels: str) -> float:
        key = self._make_key(labels)
        with self._lock:
            return self._values.get(key, 0.0)

    def collect(self) -> Iterator[tuple[dict[str, str], float]]:
        with self._lock:
            items = list(self._values.items())
        for key, value in items:
            yield (key.to_dict(), value)


class Histogram(_Metric):
    """
    Histogram with configurable buckets.

    Usage:
        latency = Histogram("blobmesh_operation_seconds", ["operation"])

        with latency.time(operation="read"):
            adapter.read(key)
    """

    __slots__ = ("_buckets", "_bucket_counts", "_sums", "_counts")

    DEFAULT_BUCKETS = (
        0.001, 0.005, 0.01, 0.025, 0.05, 0.075,
        0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 10.0, float("inf"),
    )

    def __init__(
        self,
        name: str,
        label_names: Sequence[str] = (),
        help_text: str = "",
        buckets: Optional[Sequence[float]] = None,
    ) -> None:
        super().__init__(name, label_names, help_text)
        self._buckets = tuple(sorted(buckets or self.DEFAULT_BUCKETS))

        # Ensure +Inf bucket
        if self._buckets[-1] != float("inf"):
            self._buckets = self._buckets + (float("inf"),)

        self._bucket_counts: dict[MetricLabels, list[int]] = {}
        self._sums: dict[MetricLabels, float] = defaultdict(float)
        self._counts: dict[MetricLabels, int] = defaultdict(int)

    def observe(self, value: float, **labels: str) -> None:
        key = self._make_key(labels)

        with self._lock:
            counts = self._bucket_counts.setdefault(key, [0] * len(self._buckets))
            # Cumulative buckets
            for i, bound in enumerate(self._buckets):
                if value <= bound:
                    counts[i] += 1
            self._sums[key] += value
            self._counts[key] += 1

    def time(self, **labels: str) -> HistogramTimer:
        """Context manager for timing operations."""
        return HistogramTimer(self, labels)

    def count(self, **labels: str) -> int:
        key = self._make_key(labels)
        with self._lock:
            return self._counts.get(key, 0)

    def get_percentile(self, percentile: float, **labels: str) -> Optional[float]:
        """
        Estimate percentile from histogram buckets.

        Note: Approximation based on bucket boundaries.
        """
        key = self._make_key(labels)

        with self._lock:
            total = self._counts.get(key, 0)
            if total == 0:
                return None

            target_count = total * (percentile / 100.0)
            for i, count in enumerate(self._bucket_counts[key]):
                if count >= target_count:
                    return self._buckets[i]

        return None

    def collect(self) -> Iterator[dict[str, Any]]:
        """Snapshot of all histogram series."""
        with self._lock:
            series = [
                {
                    "labels": key.to_dict(),
                    "buckets": list(zip(self._buckets, counts)),
                    "sum": self._sums.get(key, 0.0),
                    "count": self._counts.get(key, 0),
                }
                for key, counts in self._bucket_counts.items()
            ]
        yield from series


class HistogramTimer:
    """Context manager for histogram timing."""

    __slots__ = ("_histogram", "_labels", "_start")

    def __init__(self, histogram: Histogram, labels: dict[str, str]) -> None:
        self._histogram = histogram
        self._labels = labels
        self._start = 0.0

    def __enter__(self) -> HistogramTimer:
        self._start = time.perf_counter()
        return self

    def __exit__(self, *args: Any) -> None:
        elapsed = time.perf_counter() - self._start
        self._histogram.observe(elapsed, **self._labels)


class MetricsCollector:
    """
    Central registry for all metrics.

    Usage:
        collector = MetricsCollector()
        ops = collector.counter("blobmesh_operations_total", ["operation", "outcome"])
        output = collector.export_prometheus()
    """

    __slots__ = ("_counters", "_gauges", "_histograms", "_lock")

    _instance: Optional[MetricsCollector] = None
    _instance_lock = threading.Lock()

    def __init__(self) -> None:
        self._counters: dict[str, Counter] = {}
        self._gauges: dict[str, Gauge] = {}
        self._histograms: dict[str, Histogram] = {}
        self._lock = threading.Lock()

    @classmethod
    def get_instance(cls) -> MetricsCollector:
        """Process-wide default collector."""
        with cls._instance_lock:
            if cls._instance is None:
                cls._instance = cls()
            return cls._instance

    def counter(
        self,
        name: str,
        label_names: Sequence[str] = (),
        help_text: str = "",
    ) -> Counter:
        """Get or create counter."""
        with self._lock:
            if name not in self._counters:
                self._counters[name] = Counter(name, label_names, help_text)
            return self._counters[name]

    def gauge(
        self,
        name: str,
        label_names: Sequence[str] = (),
        help_text: str = "",
    ) -> Gauge:
        """Get or create gauge."""
        with self._lock:
            if name not in self._gauges:
                self._gauges[name] = Gauge(name, label_names, help_text)
            return self._gauges[name]

    def histogram(
        self,
        name: str,
        label_names: Sequence[str] = (),
        help_text: str = "",
        buckets: Optional[Sequence[float]] = None,
    ) -> Histogram:
        """Get or create histogram."""
        with self._lock:
            if name not in self._histograms:
                self._histograms[name] = Histogram(name, label_names, help_text, buckets)
            return self._histograms[name]

    def export_prometheus(self) -> str:
        """Export all metrics in Prometheus text format."""
        lines: list[str] = []

        with self._lock:
            counters = list(self._counters.items())
            gauges = list(self._gauges.items())
            histograms = list(self._histograms.items())

        for name, counter in counters:
            self._header(lines, name, counter.help_text, "counter")
            for labels, value in counter.collect():
                lines.append(f"{name}{self._format_labels(labels)} {value}")

        for name, gauge in gauges:
            self._header(lines, name, gauge.help_text, "gauge")
            for labels, value in gauge.collect():
                lines.append(f"{name}{self._format_labels(labels)} {value}")

        for name, histogram in histograms:
            self._header(lines, name, histogram.help_text, "histogram")
            for data in histogram.collect():
                labels = data["labels"]
                for bound, count in data["buckets"]:
                    bound_str = "+Inf" if bound == float("inf") else str(bound)
                    bucket_labels = {**labels, "le": bound_str}
                    lines.append(f"{name}_bucket{self._format_labels(bucket_labels)} {count}")
                label_str = self._format_labels(labels)
                lines.append(f'{name}_sum{label_str} {data["sum"]}')
                lines.append(f'{name}_count{label_str} {data["count"]}')

        return "\n".join(lines)

    @staticmethod
    def _header(lines: list[str], name: str, help_text: str, kind: str) -> None:
        if help_text:
            lines.append(f"# HELP {name} {help_text}")
        lines.append(f"# TYPE {name} {kind}")

    @staticmethod
    def _format_labels(labels: dict[str, str]) -> str:
        """Format labels as Prometheus label string."""
        if not labels:
            return ""
        pairs = [f'{k}="{v}"' for k, v in sorted(labels.items())]
        return "{" + ",".join(pairs) + "}"


# =============================================================================
# STORAGE METRIC SET
# =============================================================================

class StorageMetrics:
    """
    Metrics recorded by storage adapters.

    All instruments are registered on one collector, so several adapters
    sharing a collector aggregate into the same series.
    """

    __slots__ = (
        "_collector",
        "operations",
        "latency",
        "bytes_written",
        "multipart_parts",
        "multipart_uploads",
        "multipart_in_progress",
    )

    def __init__(self, collector: Optional[MetricsCollector] = None) -> None:
        self._collector = collector or MetricsCollector()
        self.operations = self._collector.counter(
            "blobmesh_operations_total",
            ["operation", "outcome"],
            "Adapter operations by outcome",
        )
        self.latency = self._collector.histogram(
            "blobmesh_operation_seconds",
            ["operation"],
            "Adapter operation latency",
        )
        self.bytes_written = self._collector.counter(
            "blobmesh_bytes_written_total",
            help_text="Bytes accepted by write operations",
        )
        self.multipart_parts = self._collector.counter(
            "blobmesh_multipart_parts_total",
            help_text="Multipart parts uploaded",
        )
        self.multipart_uploads = self._collector.counter(
            "blobmesh_multipart_uploads_total",
            ["outcome"],
            "Multipart uploads by terminal state",
        )
        self.multipart_in_progress = self._collector.gauge(
            "blobmesh_multipart_uploads_in_progress",
            help_text="Multipart uploads not yet completed or aborted",
        )

    @property
    def collector(self) -> MetricsCollector:
        return self._collector

    def record(self, operation: str, ok: bool, elapsed_seconds: float) -> None:
        """Count one operation and observe its latency."""
        self.operations.inc(operation=operation, outcome="ok" if ok else "error")
        self.latency.observe(elapsed_seconds, operation=operation)
