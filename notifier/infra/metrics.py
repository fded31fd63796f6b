# notifier/infra/metrics.py
from __future__ import annotations
import time
from collections import defaultdict, deque
from threading import Lock
from typing import Dict
from dataclasses import dataclass, field
from notifier.infra.logging_config import get_logger

logger = get_logger(__name__)

# Samples kept per histogram; the dispatcher runs for the process lifetime
HISTOGRAM_WINDOW = 1000


@dataclass
class Counter:
    """Monotonic counter"""
    value: int = 0

    def inc(self, amount: int = 1) -> None:
        self.value += amount


@dataclass
class Gauge:
    """Last observed value (e.g. subscriptions selected by the latest tick)"""
    value: float = 0.0

    def set(self, value: float) -> None:
        self.value = value


@dataclass
class Histogram:
    """Distribution over the most recent samples, plus a lifetime count"""
    values: deque = field(default_factory=lambda: deque(maxlen=HISTOGRAM_WINDOW))
    total_count: int = 0

    def observe(self, value: float) -> None:
        self.values.append(value)
        self.total_count += 1

    def get_stats(self) -> dict:
        if not self.values:
            return {"count": 0, "min": 0, "max": 0, "avg": 0, "p95": 0, "p99": 0}

        window = sorted(self.values)
        n = len(window)

        def percentile(p: float) -> float:
            return window[min(int(n * p), n - 1)]

        return {
            "count": self.total_count,
            "min": window[0],
            "max": window[-1],
            "avg": sum(window) / n,
            "p95": percentile(0.95),
            "p99": percentile(0.99),
        }


class MetricsCollector:
    """
    In-process metrics: labelled counters, gauges and histograms.

    Keys are ``name`` or ``name{label=value,...}`` with labels sorted, which is
    also how they appear in ``GET /metrics``.
    """

    def __init__(self):
        self._counters: Dict[str, Counter] = defaultdict(Counter)
        self._gauges: Dict[str, Gauge] = defaultdict(Gauge)
        self._histograms: Dict[str, Histogram] = defaultdict(Histogram)
        self._lock = Lock()

    def inc_counter(self, name: str, amount: int = 1, labels: dict | None = None) -> None:
        key = self._make_key(name, labels)
        with self._lock:
            self._counters[key].inc(amount)

    def set_gauge(self, name: str, value: float, labels: dict | None = None) -> None:
        key = self._make_key(name, labels)
        with self._lock:
            self._gauges[key].set(value)

    def observe_histogram(self, name: str, value: float, labels: dict | None = None) -> None:
        key = self._make_key(name, labels)
        with self._lock:
            self._histograms[key].observe(value)

    def get_metrics(self) -> dict:
        """Snapshot of every metric"""
        with self._lock:
            return {
                "counters": {k: v.value for k, v in self._counters.items()},
                "gauges": {k: v.value for k, v in self._gauges.items()},
                "histograms": {k: v.get_stats() for k, v in self._histograms.items()},
            }

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._histograms.clear()
        logger.info("Metrics reset")

    @staticmethod
    def _make_key(name: str, labels: dict | None) -> str:
        if not labels:
            return name
        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"


_metrics = MetricsCollector()


def get_metrics_collector() -> MetricsCollector:
    return _metrics


def inc_counter(name: str, amount: int = 1, **labels) -> None:
    _metrics.inc_counter(name, amount, labels or None)


def set_gauge(name: str, value: float, **labels) -> None:
    _metrics.set_gauge(name, value, labels or None)


def observe_histogram(name: str, value: float, **labels) -> None:
    _metrics.observe_histogram(name, value, labels or None)


class Timer:
    """Context manager recording the duration of a block into a histogram"""

    def __init__(self, metric_name: str, **labels):
        self.metric_name = metric_name
        self.labels = labels
        self.start_time: float | None = None

    def __enter__(self):
        self.start_time = time.monotonic()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.start_time is not None:
            observe_histogram(self.metric_name, time.monotonic() - self.start_time, **self.labels)


class DispatchMetrics:
    """Subscription dispatch metrics"""

    @staticmethod
    def dispatched(handler: str, count: int) -> None:
        inc_counter("subscriptions_dispatched_total", handler=handler)
        inc_counter("notifications_delivered_total", count, handler=handler)

    @staticmethod
    def failed(handler: str, reason: str) -> None:
        inc_counter("subscriptions_failed_total", handler=handler, reason=reason)

    @staticmethod
    def skipped_empty(handler: str) -> None:
        inc_counter("subscriptions_skipped_empty_total", handler=handler)

    @staticmethod
    def tick_overlap() -> None:
        inc_counter("dispatch_ticks_skipped_total")

    @staticmethod
    def tick_completed(recipients: int, selected: int, disabled: int) -> None:
        inc_counter("dispatch_ticks_total")
        set_gauge("dispatch_last_tick_recipients", recipients)
        set_gauge("dispatch_last_tick_selected", selected)
        set_gauge("dispatch_last_tick_disabled", disabled)

    @staticmethod
    def database_error(operation: str) -> None:
        inc_counter("database_errors_total", operation=operation)

    @staticmethod
    def track_tick() -> Timer:
        return Timer("dispatch_tick_duration_seconds")
