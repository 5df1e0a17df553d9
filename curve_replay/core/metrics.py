"""
In-process metrics for decode and replay runs
Counts decoded accounts, classified trades, applied/skipped replay events
and times each curve replay
"""

import statistics
import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from curve_replay.core.config import MetricsConfig


LabelKey = Tuple[str, Tuple[Tuple[str, str], ...]]


@dataclass
class HistogramStats:
    """Statistical summary of recorded latencies for one operation"""
    operation: str
    count: int
    p50: float
    p95: float
    p99: float
    mean: float
    min: float
    max: float


class MetricsCollector:
    """Counters, gauges and latency histograms keyed by name and optional labels

    Safe to update from executor threads; batch replays fold curves in parallel.
    """

    def __init__(self, enable_histogram: bool = True, max_samples: int = 10000):
        self.enable_histogram = enable_histogram
        self._latencies: Dict[str, deque] = defaultdict(lambda: deque(maxlen=max_samples))
        self._counters: Dict[LabelKey, int] = defaultdict(int)
        self._gauges: Dict[LabelKey, float] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _key(metric_name: str, labels: Optional[Dict[str, str]]) -> LabelKey:
        return metric_name, tuple(sorted((labels or {}).items()))

    def increment_counter(
        self,
        metric_name: str,
        value: int = 1,
        labels: Optional[Dict[str, str]] = None
    ) -> None:
        """
        Increment a counter

        Args:
            metric_name: Counter name (e.g. "replay_events_skipped")
            value: Amount to add
            labels: Optional labels such as {"reason": "out_of_order"}
        """
        key = self._key(metric_name, labels)
        with self._lock:
            self._counters[key] += value

    def set_gauge(
        self,
        metric_name: str,
        value: float,
        labels: Optional[Dict[str, str]] = None
    ) -> None:
        """Set a gauge to an absolute value"""
        key = self._key(metric_name, labels)
        with self._lock:
            self._gauges[key] = value

    def record_latency(self, operation: str, latency_ms: float) -> None:
        """Record one latency sample (milliseconds) and bump its count"""
        with self._lock:
            if self.enable_histogram:
                self._latencies[operation].append(latency_ms)
            self._counters[self._key(f"{operation}_count", None)] += 1

    def get_counter(self, metric_name: str, labels: Optional[Dict[str, str]] = None) -> int:
        return self._counters.get(self._key(metric_name, labels), 0)

    def get_gauge(self, metric_name: str, labels: Optional[Dict[str, str]] = None) -> float:
        return self._gauges.get(self._key(metric_name, labels), 0.0)

    def get_histogram_stats(self, operation: str) -> Optional[HistogramStats]:
        """
        Summarize recorded latencies

        Returns:
            HistogramStats or None if nothing was recorded
        """
        with self._lock:
            samples = sorted(self._latencies.get(operation, []))
        if not samples:
            return None

        return HistogramStats(
            operation=operation,
            count=len(samples),
            p50=self._percentile(samples, 50),
            p95=self._percentile(samples, 95),
            p99=self._percentile(samples, 99),
            mean=statistics.mean(samples),
            min=samples[0],
            max=samples[-1]
        )

    def export_metrics(self) -> Dict:
        """
        Export everything as a JSON-serializable dict

        Labelled series are flattened to "name{label=value,...}".
        """
        def flatten(key: LabelKey) -> str:
            name, labels = key
            if not labels:
                return name
            rendered = ",".join(f"{k}={v}" for k, v in labels)
            return f"{name}{{{rendered}}}"

        with self._lock:
            operations = list(self._latencies)
            counters = dict(self._counters)
            gauges = dict(self._gauges)

        histograms = {}
        for operation in operations:
            stats = self.get_histogram_stats(operation)
            if stats:
                histograms[operation] = {
                    "count": stats.count,
                    "p50": stats.p50,
                    "p95": stats.p95,
                    "p99": stats.p99,
                    "mean": stats.mean,
                    "min": stats.min,
                    "max": stats.max
                }

        return {
            "counters": {flatten(k): v for k, v in counters.items()},
            "gauges": {flatten(k): v for k, v in gauges.items()},
            "histograms": histograms
        }

    def reset(self) -> None:
        """Reset all metrics (used between tests)"""
        with self._lock:
            self._latencies.clear()
            self._counters.clear()
            self._gauges.clear()

    @staticmethod
    def _percentile(sorted_data: List[float], percentile: float) -> float:
        if len(sorted_data) == 1:
            return sorted_data[0]

        index = (percentile / 100) * (len(sorted_data) - 1)
        lower = int(index)
        upper = lower + 1

        if upper >= len(sorted_data):
            return sorted_data[-1]

        weight = index - lower
        return sorted_data[lower] * (1 - weight) + sorted_data[upper] * weight


class LatencyTimer:
    """Context manager recording the wall time of a block into a collector"""

    def __init__(self, metrics: MetricsCollector, operation: str):
        self.metrics = metrics
        self.operation = operation
        self.start_time: Optional[float] = None
        self.latency_ms: Optional[float] = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.start_time is not None:
            self.latency_ms = (time.perf_counter() - self.start_time) * 1000
            self.metrics.record_latency(self.operation, self.latency_ms)


_global_metrics: Optional[MetricsCollector] = None


def get_metrics() -> MetricsCollector:
    """Get the process-wide metrics collector, creating it on first use"""
    global _global_metrics
    if _global_metrics is None:
        _global_metrics = MetricsCollector()
    return _global_metrics


def init_metrics(enable_histogram: bool = True) -> MetricsCollector:
    """Replace the process-wide collector (called once at startup)"""
    global _global_metrics
    _global_metrics = MetricsCollector(enable_histogram)
    return _global_metrics


def init_metrics_from_config(metrics_config: MetricsConfig) -> MetricsCollector:
    """Replace the process-wide collector using the `metrics` section of the YAML config"""
    return init_metrics(enable_histogram=metrics_config.enable_histogram)
