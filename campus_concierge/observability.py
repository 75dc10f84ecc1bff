"""Observability for the concierge: metrics and structured logging.

This module provides:
- Counter and histogram metrics (Prometheus-compatible)
- Structured JSON logging with request_id correlation
- Metrics export (JSON and Prometheus text formats)

Metrics are observability only; nothing in the resolution pipeline reads them.

Usage:
    from campus_concierge.observability import metrics, get_logger

    metrics.increment("concierge_resolve_total", labels={"path": "deterministic"})
    metrics.observe("concierge_fallback_duration_seconds", 0.84)

    log = get_logger("engine", request_id="req-abc123")
    log.info("resolved", intent="location_lookup", locations=1)
"""

import json
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


# =============================================================================
# Metric Types
# =============================================================================

@dataclass
class Counter:
    """A monotonically increasing counter with optional labels."""
    name: str
    help_text: str
    values: dict[tuple, int] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def increment(self, labels: Optional[dict[str, str]] = None, value: int = 1) -> None:
        label_key = tuple(sorted((labels or {}).items()))
        with self._lock:
            self.values[label_key] = self.values.get(label_key, 0) + value

    def get(self, labels: Optional[dict[str, str]] = None) -> int:
        label_key = tuple(sorted((labels or {}).items()))
        return self.values.get(label_key, 0)

    def total(self) -> int:
        """Sum across all label sets."""
        with self._lock:
            return sum(self.values.values())

    def reset(self) -> None:
        with self._lock:
            self.values.clear()


@dataclass
class Histogram:
    """Latency histogram with cumulative Prometheus buckets."""
    name: str
    help_text: str
    buckets: tuple[float, ...] = (0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0)
    values: list[float] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def observe(self, value: float) -> None:
        with self._lock:
            self.values.append(value)

    @property
    def count(self) -> int:
        return len(self.values)

    def get_percentile(self, percentile: float) -> float:
        """Get a percentile value (e.g., 0.95 for p95)."""
        with self._lock:
            if not self.values:
                return 0.0
            sorted_vals = sorted(self.values)
        idx = int(len(sorted_vals) * percentile)
        return sorted_vals[min(idx, len(sorted_vals) - 1)]

    def bucket_counts(self) -> list[tuple[str, int]]:
        """Cumulative counts per upper bound, ending with +Inf."""
        with self._lock:
            observed = list(self.values)
        counts = [(f"{bound:g}", sum(1 for v in observed if v <= bound)) for bound in self.buckets]
        counts.append(("+Inf", len(observed)))
        return counts

    def reset(self) -> None:
        with self._lock:
            self.values.clear()


# =============================================================================
# Metrics Registry
# =============================================================================

class MetricsRegistry:
    """Central registry for all concierge metrics."""

    def __init__(self):
        self._counters: dict[str, Counter] = {}
        self._histograms: dict[str, Histogram] = {}
        self._lock = threading.Lock()
        self._register_default_metrics()

    def _register_default_metrics(self) -> None:
        # Resolution paths
        self.register_counter(
            "concierge_resolve_total",
            "Resolved queries by path (deterministic, fallback, fallback_malformed)"
        )

        # Generative fallback
        self.register_counter(
            "concierge_fallback_total",
            "Generative fallback invocations"
        )
        self.register_counter(
            "concierge_fallback_quota_exceeded_total",
            "Fallback calls rejected for quota or rate limits"
        )
        self.register_counter(
            "concierge_fallback_malformed_total",
            "Fallback responses that failed schema validation"
        )
        self.register_counter(
            "concierge_fallback_error_total",
            "Fallback calls that failed for any other reason"
        )

        self.register_histogram(
            "concierge_fallback_duration_seconds",
            "Generative fallback latency"
        )

    def register_counter(self, name: str, help_text: str) -> Counter:
        with self._lock:
            if name not in self._counters:
                self._counters[name] = Counter(name=name, help_text=help_text)
            return self._counters[name]

    def register_histogram(self, name: str, help_text: str) -> Histogram:
        with self._lock:
            if name not in self._histograms:
                self._histograms[name] = Histogram(name=name, help_text=help_text)
            return self._histograms[name]

    def increment(self, name: str, labels: Optional[dict[str, str]] = None, value: int = 1) -> None:
        """Increment a counter; unknown names are ignored."""
        if name in self._counters:
            self._counters[name].increment(labels, value)

    def observe(self, name: str, value: float) -> None:
        """Record a histogram observation; unknown names are ignored."""
        if name in self._histograms:
            self._histograms[name].observe(value)

    def get_counter(self, name: str) -> Optional[Counter]:
        return self._counters.get(name)

    def get_histogram(self, name: str) -> Optional[Histogram]:
        return self._histograms.get(name)

    def to_json(self) -> dict[str, Any]:
        """Export all metrics as JSON."""
        result: dict[str, Any] = {
            "timestamp": _utc_timestamp(),
            "counters": {},
            "histograms": {},
        }

        for name, counter in self._counters.items():
            result["counters"][name] = [
                {"labels": dict(labels), "value": value}
                for labels, value in counter.values.items()
            ]

        for name, histogram in self._histograms.items():
            result["histograms"][name] = {
                "count": histogram.count,
                "p50": histogram.get_percentile(0.50),
                "p95": histogram.get_percentile(0.95),
                "p99": histogram.get_percentile(0.99),
            }

        return result

    def to_prometheus(self) -> str:
        """Export all metrics in Prometheus text format."""
        lines = []

        for name, counter in self._counters.items():
            lines.append(f"# HELP {name} {counter.help_text}")
            lines.append(f"# TYPE {name} counter")
            if not counter.values:
                lines.append(f"{name} 0")
            for labels, value in counter.values.items():
                if labels:
                    label_str = ",".join(f'{k}="{v}"' for k, v in labels)
                    lines.append(f"{name}{{{label_str}}} {value}")
                else:
                    lines.append(f"{name} {value}")

        for name, histogram in self._histograms.items():
            lines.append(f"# HELP {name} {histogram.help_text}")
            lines.append(f"# TYPE {name} histogram")
            for bound, count in histogram.bucket_counts():
                lines.append(f'{name}_bucket{{le="{bound}"}} {count}')
            lines.append(f"{name}_count {histogram.count}")
            lines.append(f"{name}_sum {sum(histogram.values):.6f}")

        return "\n".join(lines) + "\n"

    def reset_all(self) -> None:
        """Reset all metrics (for testing)."""
        for counter in self._counters.values():
            counter.reset()
        for histogram in self._histograms.values():
            histogram.reset()


# Global metrics instance
metrics = MetricsRegistry()


# =============================================================================
# Structured Logging
# =============================================================================

class StructuredLogger:
    """Logger that emits JSON events with request_id correlation."""

    def __init__(self, component: str, request_id: Optional[str] = None):
        self.component = component
        self.request_id = request_id
        self._logger = logging.getLogger(f"concierge.{component}")

    def _format(self, level: str, event: str, **kwargs) -> str:
        entry = {
            "timestamp": _utc_timestamp(),
            "level": level,
            "component": self.component,
            "event": event,
        }
        if self.request_id:
            entry["request_id"] = self.request_id
        entry.update(kwargs)
        return json.dumps(entry, default=str)

    def info(self, event: str, **kwargs) -> None:
        self._logger.info(self._format("INFO", event, **kwargs))

    def warn(self, event: str, **kwargs) -> None:
        self._logger.warning(self._format("WARN", event, **kwargs))

    def error(self, event: str, **kwargs) -> None:
        self._logger.error(self._format("ERROR", event, **kwargs))

    def debug(self, event: str, **kwargs) -> None:
        self._logger.debug(self._format("DEBUG", event, **kwargs))


def new_request_id() -> str:
    """Short random id for correlating one request's log lines."""
    return f"req-{uuid.uuid4().hex[:12]}"


def get_logger(component: str, request_id: Optional[str] = None) -> StructuredLogger:
    """Get a structured logger for a component.

    Args:
        component: Name of the component (e.g., "engine", "chat_api")
        request_id: Optional request ID for correlation
    """
    return StructuredLogger(component, request_id)
