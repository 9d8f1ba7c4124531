"""
In-process metrics for the Service Checker

Counters and timers for probe attempts, check runs and notifications.
Values live in memory only and reset when the process restarts.
"""

import threading
import time
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional


@dataclass
class MetricValue:
    """Base class for metric values."""

    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class CounterValue(MetricValue):
    """Counter metric value."""

    count: int = 0


@dataclass
class TimerValue(MetricValue):
    """Timer metric value with statistics."""

    count: int = 0
    total_ms: float = 0.0
    min_ms: float = float("inf")
    max_ms: float = 0.0

    @property
    def avg_ms(self) -> float:
        """Average duration in milliseconds."""
        return self.total_ms / self.count if self.count > 0 else 0.0

    def record(self, duration_ms: float):
        self.count += 1
        self.total_ms += duration_ms
        self.min_ms = min(self.min_ms, duration_ms)
        self.max_ms = max(self.max_ms, duration_ms)
        self.timestamp = datetime.now(timezone.utc)

    def as_dict(self) -> Dict:
        return {
            "count": self.count,
            "total_ms": self.total_ms,
            "avg_ms": self.avg_ms,
            "min_ms": self.min_ms if self.min_ms != float("inf") else 0,
            "max_ms": self.max_ms,
            "timestamp": self.timestamp.isoformat(),
        }


class MetricsCollector:
    """Thread-safe metrics collector."""

    def __init__(self):
        self._lock = threading.RLock()
        self._counters: Dict[str, CounterValue] = {}
        self._timers: Dict[str, TimerValue] = {}

        # Service-specific metrics
        self._service_counters: Dict[str, Dict[str, CounterValue]] = defaultdict(dict)
        self._service_timers: Dict[str, Dict[str, TimerValue]] = defaultdict(dict)

    def increment_counter(
        self,
        name: str,
        value: int = 1,
        service_id: Optional[str] = None,
        labels: Optional[Dict[str, str]] = None,
    ):
        """Increment a counter metric."""
        with self._lock:
            key = self._build_key(name, labels)
            counters = self._service_counters[service_id] if service_id else self._counters

            if key not in counters:
                counters[key] = CounterValue()
            counters[key].count += value
            counters[key].timestamp = datetime.now(timezone.utc)

    def record_timer(
        self,
        name: str,
        duration_ms: float,
        service_id: Optional[str] = None,
        labels: Optional[Dict[str, str]] = None,
    ):
        """Record a timer metric."""
        with self._lock:
            key = self._build_key(name, labels)
            timers = self._service_timers[service_id] if service_id else self._timers

            if key not in timers:
                timers[key] = TimerValue()
            timers[key].record(duration_ms)

    def get_counter(
        self, name: str, service_id: Optional[str] = None, labels: Optional[Dict[str, str]] = None
    ) -> Optional[CounterValue]:
        """Get counter metric value."""
        with self._lock:
            key = self._build_key(name, labels)

            if service_id:
                return self._service_counters.get(service_id, {}).get(key)
            return self._counters.get(key)

    def get_timer(
        self, name: str, service_id: Optional[str] = None, labels: Optional[Dict[str, str]] = None
    ) -> Optional[TimerValue]:
        """Get timer metric value."""
        with self._lock:
            key = self._build_key(name, labels)

            if service_id:
                return self._service_timers.get(service_id, {}).get(key)
            return self._timers.get(key)

    def get_all_metrics(self) -> Dict[str, Dict]:
        """Get all metrics as a dictionary."""
        with self._lock:
            return {
                "counters": {
                    k: {"count": v.count, "timestamp": v.timestamp.isoformat()}
                    for k, v in self._counters.items()
                },
                "timers": {k: v.as_dict() for k, v in self._timers.items()},
                "services": {
                    service_id: self._service_snapshot(service_id)
                    for service_id in self._service_counters.keys() | self._service_timers.keys()
                },
            }

    def get_service_metrics(self, service_id: str) -> Dict[str, Dict]:
        """Get metrics for a specific service."""
        with self._lock:
            return self._service_snapshot(service_id)

    def reset_metrics(self, service_id: Optional[str] = None):
        """Reset metrics (useful for testing)."""
        with self._lock:
            if service_id:
                self._service_counters.pop(service_id, None)
                self._service_timers.pop(service_id, None)
            else:
                self._counters.clear()
                self._timers.clear()
                self._service_counters.clear()
                self._service_timers.clear()

    def _service_snapshot(self, service_id: str) -> Dict[str, Dict]:
        counters = self._service_counters.get(service_id, {})
        timers = self._service_timers.get(service_id, {})
        return {
            "counters": {
                k: {"count": v.count, "timestamp": v.timestamp.isoformat()}
                for k, v in counters.items()
            },
            "timers": {k: v.as_dict() for k, v in timers.items()},
        }

    def _build_key(self, name: str, labels: Optional[Dict[str, str]] = None) -> str:
        """Build metric key with labels."""
        if not labels:
            return name

        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}[{label_str}]"


class Timer:
    """Context manager for timing operations."""

    def __init__(
        self,
        metrics: MetricsCollector,
        name: str,
        service_id: Optional[str] = None,
        labels: Optional[Dict[str, str]] = None,
    ):
        self.metrics = metrics
        self.name = name
        self.service_id = service_id
        self.labels = labels
        self.start_time = None
        self.duration_ms: Optional[float] = None

    def __enter__(self):
        self.start_time = time.monotonic()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.start_time is not None:
            self.duration_ms = (time.monotonic() - self.start_time) * 1000
            self.metrics.record_timer(self.name, self.duration_ms, self.service_id, self.labels)


# Global metrics collector instance
metrics = MetricsCollector()


def get_metrics() -> MetricsCollector:
    """Get the global metrics collector."""
    return metrics


class MetricNames:
    """Common metric names for consistency."""

    # Trigger requests
    REQUESTS_TOTAL = "requests_total"
    REQUEST_DURATION = "request_duration_ms"

    # Check runs
    RUNS_TOTAL = "check_runs_total"
    RUN_DURATION = "check_run_duration_ms"
    SERVICES_DISABLED = "services_disabled_total"

    # Probes
    PROBE_ATTEMPTS = "probe_attempts_total"
    PROBE_ATTEMPT_FAILURES = "probe_attempt_failures_total"
    PROBE_DURATION = "probe_duration_ms"
    PROBE_FAILURES = "probe_failures_total"

    # Notifications and persistence
    ALERTS_SENT = "alerts_sent_total"
    RECOVERIES_SENT = "recoveries_sent_total"
    NOTIFICATION_ERRORS = "notification_errors_total"
    REGISTRY_ERRORS = "registry_errors_total"
