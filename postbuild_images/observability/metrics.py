"""
Metrics — Per-build counters and timings for the media pass.

A registry is created for each build and handed to the cache store,
the processor and the pipeline. Nothing here is process-global.

## Usage

    from postbuild_images.observability.metrics import MetricsRegistry

    metrics = MetricsRegistry()
    metrics.increment("cache_hits_total")
    metrics.timing("reference_duration_seconds", 0.42)

    summary = metrics.export_json()
"""

from __future__ import annotations

import time
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Dict, List, Optional


@dataclass
class MetricPoint:
    """A single metric data point."""

    name: str
    value: float
    timestamp: float
    labels: Dict[str, str] = field(default_factory=dict)


def _labels_key(labels: Optional[Dict[str, str]]) -> str:
    if not labels:
        return ""
    return ",".join(f"{k}={v}" for k, v in sorted(labels.items()))


def _parse_labels(key: str) -> Dict[str, str]:
    labels = {}
    if key:
        for pair in key.split(","):
            k, v = pair.split("=", 1)
            labels[k] = v
    return labels


class Counter:
    """A monotonically increasing counter."""

    def __init__(self, name: str, help_text: str = ""):
        self.name = name
        self.help_text = help_text
        self._values: Dict[str, float] = defaultdict(float)
        self._lock = Lock()

    def inc(self, value: float = 1, labels: Optional[Dict[str, str]] = None) -> None:
        """Increment the counter."""
        key = _labels_key(labels)
        with self._lock:
            self._values[key] += value

    def get(self, labels: Optional[Dict[str, str]] = None) -> float:
        """Get current value."""
        return self._values.get(_labels_key(labels), 0)

    def total(self) -> float:
        """Sum across all label sets."""
        return sum(self._values.values())

    def export(self) -> List[MetricPoint]:
        now = time.time()
        return [
            MetricPoint(self.name, value, now, _parse_labels(key))
            for key, value in self._values.items()
        ]


class Histogram:
    """A histogram for timing distributions."""

    DEFAULT_BUCKETS = (0.01, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30, float("inf"))

    def __init__(self, name: str, help_text: str = "", buckets: Optional[tuple] = None):
        self.name = name
        self.help_text = help_text
        self.buckets = buckets or self.DEFAULT_BUCKETS
        self._counts: Dict[str, Dict[float, int]] = defaultdict(lambda: defaultdict(int))
        self._sums: Dict[str, float] = defaultdict(float)
        self._totals: Dict[str, int] = defaultdict(int)
        self._lock = Lock()

    def observe(self, value: float, labels: Optional[Dict[str, str]] = None) -> None:
        """Observe a value."""
        key = _labels_key(labels)
        with self._lock:
            self._sums[key] += value
            self._totals[key] += 1
            for bucket in self.buckets:
                if value <= bucket:
                    self._counts[key][bucket] += 1

    def count(self) -> int:
        return sum(self._totals.values())

    def sum(self) -> float:
        return sum(self._sums.values())

    def export(self) -> List[MetricPoint]:
        """Export histogram as metric points."""
        points = []
        now = time.time()

        for key in set(self._sums.keys()) | set(self._counts.keys()):
            labels = _parse_labels(key)
            for bucket in self.buckets:
                # Buckets are already cumulative: observe() fills every bucket >= value
                bucket_labels = {**labels, "le": str(bucket) if bucket != float("inf") else "+Inf"}
                points.append(
                    MetricPoint(f"{self.name}_bucket", self._counts[key].get(bucket, 0), now, bucket_labels)
                )
            points.append(MetricPoint(f"{self.name}_sum", self._sums[key], now, labels))
            points.append(MetricPoint(f"{self.name}_count", self._totals[key], now, labels))

        return points


class MetricsRegistry:
    """
    Registry for one build's metrics.

    Provides a simple interface plus JSON and Prometheus text export.
    """

    def __init__(self, prefix: str = "postbuild_images"):
        self.prefix = prefix
        self._counters: Dict[str, Counter] = {}
        self._histograms: Dict[str, Histogram] = {}
        self._lock = Lock()
        self._register_build_metrics()

    def _register_build_metrics(self) -> None:
        # Cache
        self.counter("cache_hits_total", "Outputs restored from the cache")
        self.counter("cache_misses_total", "Outputs computed because no cache entry existed")
        self.counter("cache_copy_skipped_total", "Cache restore/populate copies that failed")

        # Transcoding
        self.counter("transcodes_total", "Encoder or optimizer invocations")
        self.counter("references_total", "Media references processed")
        self.histogram("reference_duration_seconds", "Time spent per media reference")

    def _full_name(self, name: str) -> str:
        return f"{self.prefix}_{name}"

    def counter(self, name: str, help_text: str = "") -> Counter:
        """Get or create a counter."""
        full_name = self._full_name(name)
        with self._lock:
            if full_name not in self._counters:
                self._counters[full_name] = Counter(full_name, help_text)
            return self._counters[full_name]

    def histogram(self, name: str, help_text: str = "") -> Histogram:
        """Get or create a histogram."""
        full_name = self._full_name(name)
        with self._lock:
            if full_name not in self._histograms:
                self._histograms[full_name] = Histogram(full_name, help_text)
            return self._histograms[full_name]

    def increment(self, name: str, value: float = 1, labels: Optional[Dict[str, str]] = None) -> None:
        """Increment a counter."""
        self.counter(name).inc(value, labels)

    def timing(self, name: str, seconds: float, labels: Optional[Dict[str, str]] = None) -> None:
        """Record a timing."""
        self.histogram(name).observe(seconds, labels)

    def value(self, name: str) -> float:
        """Total of a counter across labels."""
        return self.counter(name).total()

    def export_prometheus(self) -> str:
        """Export metrics in Prometheus text format."""
        lines = []

        for counter in self._counters.values():
            lines.append(f"# HELP {counter.name} {counter.help_text}")
            lines.append(f"# TYPE {counter.name} counter")
            for point in counter.export():
                lines.append(f"{point.name}{self._format_labels(point.labels)} {point.value}")

        for histogram in self._histograms.values():
            lines.append(f"# HELP {histogram.name} {histogram.help_text}")
            lines.append(f"# TYPE {histogram.name} histogram")
            for point in histogram.export():
                lines.append(f"{point.name}{self._format_labels(point.labels)} {point.value}")

        return "\n".join(lines)

    def export_json(self) -> Dict[str, Any]:
        """Export metrics as JSON."""
        result: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "counters": {},
            "histograms": {},
        }

        for name, counter in self._counters.items():
            result["counters"][name] = counter.total()

        for name, histogram in self._histograms.items():
            result["histograms"][name] = {
                "sum": histogram.sum(),
                "count": histogram.count(),
            }

        return result

    def _format_labels(self, labels: Dict[str, str]) -> str:
        if not labels:
            return ""
        pairs = [f'{k}="{v}"' for k, v in sorted(labels.items())]
        return "{" + ",".join(pairs) + "}"
