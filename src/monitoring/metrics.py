"""
Metrics collection for PassBook.

Thread-safe counters, gauges and histograms with optional labels,
exported as JSON or in the Prometheus text format.

Metrics recorded by the engine:
- operations_total{operation,outcome}: committed / rejected / failed
- operation_duration_ms{operation}: processor latency
- passes_sold_total{asset}: successful purchases
- distributed_amount_total{asset}: value credited to payouts
- ledger_commit_ms: time spent inside a ledger commit
- http_requests_total / http_request_duration_ms: API traffic
"""

import threading
import time
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

PROMETHEUS_PREFIX = "passbook_"

# Default latency buckets in milliseconds
DEFAULT_BUCKETS = (1, 5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000)


@dataclass
class Histogram:
    """Cumulative bucket counts plus sum and count."""

    bounds: tuple[float, ...] = DEFAULT_BUCKETS
    counts: list[int] = field(default_factory=list)
    sum: float = 0.0
    count: int = 0

    def __post_init__(self):
        if not self.counts:
            self.counts = [0] * (len(self.bounds) + 1)

    def observe(self, value: float) -> None:
        self.sum += value
        self.count += 1
        for i, bound in enumerate(self.bounds):
            if value <= bound:
                self.counts[i] += 1
        self.counts[-1] += 1

    def buckets(self) -> list[tuple[str, int]]:
        labels = [str(b) for b in self.bounds] + ["+Inf"]
        return list(zip(labels, self.counts, strict=True))


def _labels_key(labels: dict[str, str] | None) -> str:
    """Render labels as a stable Prometheus label string."""
    if not labels:
        return ""
    return ",".join(f'{k}="{v}"' for k, v in sorted(labels.items()))


class MetricsCollector:
    """
    Thread-safe metrics collector.

    Collects counters, gauges, and histograms with optional labels.
    """

    def __init__(self, prefix: str = PROMETHEUS_PREFIX):
        self.prefix = prefix
        self._lock = threading.RLock()
        self._counters: dict[str, dict[str, int]] = defaultdict(lambda: defaultdict(int))
        self._gauges: dict[str, dict[str, float]] = defaultdict(lambda: defaultdict(float))
        self._histograms: dict[str, dict[str, Histogram]] = defaultdict(dict)
        self._start_time = time.time()

    # Counters

    def increment(self, name: str, value: int = 1, labels: dict[str, str] | None = None) -> None:
        with self._lock:
            self._counters[name][_labels_key(labels)] += value

    def get_counter(self, name: str, labels: dict[str, str] | None = None) -> int:
        with self._lock:
            return self._counters[name].get(_labels_key(labels), 0)

    # Gauges

    def set_gauge(self, name: str, value: float, labels: dict[str, str] | None = None) -> None:
        with self._lock:
            self._gauges[name][_labels_key(labels)] = value

    def increment_gauge(
        self, name: str, value: float = 1.0, labels: dict[str, str] | None = None
    ) -> None:
        with self._lock:
            self._gauges[name][_labels_key(labels)] += value

    def decrement_gauge(
        self, name: str, value: float = 1.0, labels: dict[str, str] | None = None
    ) -> None:
        self.increment_gauge(name, -value, labels)

    def get_gauge(self, name: str, labels: dict[str, str] | None = None) -> float:
        with self._lock:
            return self._gauges[name].get(_labels_key(labels), 0.0)

    # Histograms

    def timing(self, name: str, value_ms: float, labels: dict[str, str] | None = None) -> None:
        """Record a timing observation in milliseconds."""
        with self._lock:
            series = self._histograms[name]
            key = _labels_key(labels)
            if key not in series:
                series[key] = Histogram()
            series[key].observe(value_ms)

    def get_histogram(self, name: str, labels: dict[str, str] | None = None) -> Histogram | None:
        with self._lock:
            return self._histograms[name].get(_labels_key(labels))

    @contextmanager
    def timer(self, name: str, labels: dict[str, str] | None = None):
        """Context manager for timing code blocks."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.timing(name, (time.perf_counter() - start) * 1000, labels)

    # Export

    @staticmethod
    def _flatten(series: dict[str, Any]) -> Any:
        if len(series) == 1 and "" in series:
            return series[""]
        return dict(series)

    def get_all(self) -> dict[str, Any]:
        """Get all metrics as a dictionary."""
        with self._lock:
            return {
                "uptime_seconds": time.time() - self._start_time,
                "counters": {n: self._flatten(v) for n, v in self._counters.items()},
                "gauges": {n: self._flatten(v) for n, v in self._gauges.items()},
                "histograms": {
                    name: {
                        key or "_total": {
                            "count": hist.count,
                            "sum": hist.sum,
                            "avg": hist.sum / hist.count if hist.count else 0,
                            "buckets": dict(hist.buckets()),
                        }
                        for key, hist in series.items()
                    }
                    for name, series in self._histograms.items()
                },
            }

    def _sample(self, metric: str, key: str, value: Any, extra: str = "") -> str:
        labels = ",".join(part for part in (key, extra) if part)
        return f"{metric}{{{labels}}} {value}" if labels else f"{metric} {value}"

    def to_prometheus(self) -> str:
        """Export metrics in Prometheus text format."""
        uptime = f"{self.prefix}uptime_seconds"
        lines = [
            f"# HELP {uptime} Time since application start",
            f"# TYPE {uptime} gauge",
            f"{uptime} {time.time() - self._start_time:.2f}",
            "",
        ]

        with self._lock:
            for kind, families in (("counter", self._counters), ("gauge", self._gauges)):
                for name, series in families.items():
                    metric = f"{self.prefix}{name}"
                    lines.append(f"# TYPE {metric} {kind}")
                    lines.extend(self._sample(metric, k, v) for k, v in series.items())
                    lines.append("")

            for name, series in self._histograms.items():
                metric = f"{self.prefix}{name}"
                lines.append(f"# TYPE {metric} histogram")
                for key, hist in series.items():
                    for le, count in hist.buckets():
                        lines.append(self._sample(f"{metric}_bucket", key, count, f'le="{le}"'))
                    lines.append(self._sample(f"{metric}_sum", key, f"{hist.sum:.2f}"))
                    lines.append(self._sample(f"{metric}_count", key, hist.count))
                lines.append("")

        return "\n".join(lines)

    def reset(self) -> None:
        """Reset all metrics (useful for testing)."""
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._histograms.clear()
            self._start_time = time.time()


# Global metrics instance
metrics = MetricsCollector()
