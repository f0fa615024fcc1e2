"""Delivery metrics collector. Thread-safe, in-memory counters and latency histograms."""

import threading
from typing import Any

EVENTS_PUBLISHED = "events_published"
EVENTS_SUCCEEDED = "events_succeeded"
EVENTS_RETRIED = "events_retried"
EVENTS_FAILED = "events_failed"
DISPATCH_TIMEOUTS = "dispatch_timeouts"
FETCH_ERRORS = "fetch_errors"
STORE_UPDATE_ERRORS = "store_update_errors"
DISPATCH_LATENCY = "dispatch_latency_ms"


class MetricsCollector:
    """
    In-memory Prometheus-style registry. Counters may carry an event_type label.
    Thread-safe: handler threads and the event loop both record.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[str, float] = {}
        self._counters_by_labels: dict[str, dict[str, float]] = {}
        # Running aggregates per histogram; samples are not retained.
        self._histograms: dict[str, dict[str, float]] = {}

    def increment(
        self,
        name: str,
        value: float = 1.0,
        *,
        event_type: str | None = None,
    ) -> None:
        """Increment a counter; the unlabelled total is always kept."""
        with self._lock:
            self._counters[name] = self._counters.get(name, 0) + value
            if event_type is not None:
                key = f"{name}:event_type={event_type}"
                labels = self._counters_by_labels.setdefault(name, {})
                labels[key] = labels.get(key, 0) + value

    def observe_latency(self, name: str, latency_ms: float) -> None:
        with self._lock:
            agg = self._histograms.setdefault(name, {"count": 0, "sum": 0.0, "max": 0.0})
            agg["count"] += 1
            agg["sum"] += latency_ms
            if latency_ms > agg["max"]:
                agg["max"] = latency_ms

    def counter(self, name: str) -> float:
        with self._lock:
            return self._counters.get(name, 0)

    def export_metrics(self) -> dict[str, Any]:
        """Export all metrics as a dict."""
        with self._lock:
            return {
                "counters": dict(self._counters),
                "counters_by_labels": {
                    k: dict(v) for k, v in self._counters_by_labels.items()
                },
                "histograms": {k: dict(v) for k, v in self._histograms.items()},
            }

    def reset(self) -> None:
        """Reset all metrics (for tests)."""
        with self._lock:
            self._counters.clear()
            self._counters_by_labels.clear()
            self._histograms.clear()
