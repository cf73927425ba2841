"""Prometheus-compatible metrics for session and broadcast observability.

This module provides in-memory metrics collection for monitoring:
- Session lifecycle (created, expired, active)
- Connection churn (active connections, joins)
- Protocol traffic (messages per type, validation and protocol errors)
- Broadcast fan-out (deliveries, failed deliveries, latency)

Metrics are exposed via the /metrics endpoint in Prometheus exposition
format and via /metrics/summary as JSON.
"""

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class MetricType(Enum):
    """Metric types following Prometheus conventions."""

    COUNTER = "counter"  # Monotonically increasing (e.g., messages_total)
    GAUGE = "gauge"  # Can go up or down (e.g., sessions_active)
    HISTOGRAM = "histogram"  # Distribution (e.g., broadcast_latency_seconds)


@dataclass
class HistogramBucket:
    """Histogram bucket for latency distributions."""

    le: float  # Upper bound (less-than-or-equal)
    count: int = 0  # Number of observations <= le


@dataclass
class Histogram:
    """Histogram metric for tracking distributions.

    Uses fixed bucket boundaries for consistent memory footprint.
    """

    name: str
    help: str
    labels: dict[str, str] = field(default_factory=dict)

    # Covers 0.5ms to 5s of broadcast fan-out time
    buckets: list[HistogramBucket] = field(
        default_factory=lambda: [
            HistogramBucket(le=0.0005),
            HistogramBucket(le=0.001),
            HistogramBucket(le=0.005),
            HistogramBucket(le=0.010),
            HistogramBucket(le=0.050),
            HistogramBucket(le=0.100),
            HistogramBucket(le=0.500),
            HistogramBucket(le=1.000),
            HistogramBucket(le=5.000),
            HistogramBucket(le=float("inf")),
        ]
    )

    sum: float = 0.0
    count: int = 0

    def observe(self, value: float) -> None:
        """Record an observation.

        Args:
            value: Observed value (in base units, e.g., seconds)
        """
        self.sum += value
        self.count += 1

        for bucket in self.buckets:
            if value <= bucket.le:
                bucket.count += 1

    def quantile(self, q: float) -> float | None:
        """Approximate quantile from cumulative bucket counts.

        Args:
            q: Quantile to calculate (0.0 to 1.0)

        Returns:
            Upper bound of the first bucket reaching the target rank, or None
            if no data
        """
        if self.count == 0:
            return None

        target_rank = max(1, int(q * self.count))
        for bucket in self.buckets:
            if bucket.count >= target_rank:
                return bucket.le
        return self.buckets[-1].le


@dataclass
class Counter:
    """Counter metric (monotonically increasing)."""

    name: str
    help: str
    labels: dict[str, str] = field(default_factory=dict)
    value: float = 0.0

    def inc(self, amount: float = 1.0) -> None:
        self.value += amount


@dataclass
class Gauge:
    """Gauge metric (can go up or down)."""

    name: str
    help: str
    labels: dict[str, str] = field(default_factory=dict)
    value: float = 0.0

    def set(self, value: float) -> None:
        self.value = value

    def inc(self, amount: float = 1.0) -> None:
        self.value += amount

    def dec(self, amount: float = 1.0) -> None:
        self.value -= amount


class MetricsCollector:
    """Thread-safe metrics collector with Prometheus-compatible output.

    Thread-safety: All public methods are thread-safe via mutex.
    """

    def __init__(self) -> None:
        """Initialize metrics collector."""
        self._lock = threading.RLock()

        self._counters: dict[str, Counter] = {}
        self._gauges: dict[str, Gauge] = {}
        self._histograms: dict[str, Histogram] = {}

        self._init_session_metrics()
        self._init_connection_metrics()
        self._init_message_metrics()
        self._init_broadcast_metrics()

    def _init_session_metrics(self) -> None:
        self._counters["sessions_created_total"] = Counter(
            name="sessions_created_total",
            help="Total number of sessions created",
        )
        self._counters["sessions_expired_total"] = Counter(
            name="sessions_expired_total",
            help="Total number of sessions evicted after timing out",
        )
        self._gauges["sessions_active"] = Gauge(
            name="sessions_active",
            help="Number of sessions in the store",
        )

    def _init_connection_metrics(self) -> None:
        self._gauges["connections_active"] = Gauge(
            name="connections_active",
            help="Number of open client connections",
        )
        self._counters["joins_total"] = Counter(
            name="joins_total",
            help="Total number of accepted join messages",
        )

    def _init_message_metrics(self) -> None:
        self._counters["messages_total"] = Counter(
            name="messages_total",
            help="Total number of inbound messages with a recognized type",
        )
        self._counters["validation_errors_total"] = Counter(
            name="validation_errors_total",
            help="Total number of messages rejected by validation",
        )
        self._counters["protocol_errors_total"] = Counter(
            name="protocol_errors_total",
            help="Total number of undecodable or malformed messages",
        )
        # Per-type counters are created lazily in record_message()

    def _init_broadcast_metrics(self) -> None:
        self._counters["broadcasts_total"] = Counter(
            name="broadcasts_total",
            help="Total number of session-wide broadcasts",
        )
        self._counters["deliveries_total"] = Counter(
            name="deliveries_total",
            help="Total number of messages handed to connections",
        )
        self._counters["delivery_failures_total"] = Counter(
            name="delivery_failures_total",
            help="Total number of messages dropped for closed or slow connections",
        )
        self._histograms["broadcast_latency_seconds"] = Histogram(
            name="broadcast_latency_seconds",
            help="Time to fan one snapshot out to every connection of a session",
        )

    # === Session metrics ===

    def record_session_created(self) -> None:
        with self._lock:
            self._counters["sessions_created_total"].inc()
            self._gauges["sessions_active"].inc()

    def record_session_deleted(self) -> None:
        with self._lock:
            self._gauges["sessions_active"].dec()

    def record_session_expired(self) -> None:
        with self._lock:
            self._counters["sessions_expired_total"].inc()

    # === Connection metrics ===

    def record_connection_opened(self) -> None:
        with self._lock:
            self._gauges["connections_active"].inc()

    def record_connection_closed(self) -> None:
        with self._lock:
            self._gauges["connections_active"].dec()

    def record_join(self) -> None:
        with self._lock:
            self._counters["joins_total"].inc()

    # === Message metrics ===

    def record_message(self, message_type: str) -> None:
        """Count one inbound message of a recognized type.

        Args:
            message_type: Protocol message type (e.g., "add_order")
        """
        with self._lock:
            self._counters["messages_total"].inc()
            key = f"messages_total:{message_type}"
            if key not in self._counters:
                self._counters[key] = Counter(
                    name="messages_by_type_total",
                    help="Inbound messages by protocol type",
                    labels={"type": message_type},
                )
            self._counters[key].inc()

    def record_validation_error(self) -> None:
        with self._lock:
            self._counters["validation_errors_total"].inc()

    def record_protocol_error(self) -> None:
        with self._lock:
            self._counters["protocol_errors_total"].inc()

    # === Broadcast metrics ===

    def record_broadcast(self, delivered: int, failed: int, latency_seconds: float) -> None:
        """Record the outcome of one broadcast.

        Args:
            delivered: Connections the snapshot was handed to
            failed: Connections skipped or dropped
            latency_seconds: Total fan-out time
        """
        with self._lock:
            self._counters["broadcasts_total"].inc()
            self._counters["deliveries_total"].inc(delivered)
            self._counters["delivery_failures_total"].inc(failed)
            self._histograms["broadcast_latency_seconds"].observe(latency_seconds)

    # === Export ===

    def export_prometheus(self) -> str:
        """Export all metrics in Prometheus exposition format.

        Returns:
            Metrics in Prometheus text format for scraping
        """
        with self._lock:
            lines: list[str] = []
            seen_headers: set[str] = set()

            def header(name: str, help_text: str, metric_type: MetricType) -> None:
                if name in seen_headers:
                    return
                seen_headers.add(name)
                lines.append(f"# HELP {name} {help_text}")
                lines.append(f"# TYPE {name} {metric_type.value}")

            for counter in self._counters.values():
                header(counter.name, counter.help, MetricType.COUNTER)
                lines.append(f"{counter.name}{self._format_labels(counter.labels)} {counter.value}")

            for gauge in self._gauges.values():
                header(gauge.name, gauge.help, MetricType.GAUGE)
                lines.append(f"{gauge.name}{self._format_labels(gauge.labels)} {gauge.value}")

            for histogram in self._histograms.values():
                header(histogram.name, histogram.help, MetricType.HISTOGRAM)
                labels_str = self._format_labels(histogram.labels)

                for bucket in histogram.buckets:
                    le = "+Inf" if bucket.le == float("inf") else str(bucket.le)
                    bucket_labels_str = self._format_labels({**histogram.labels, "le": le})
                    lines.append(f"{histogram.name}_bucket{bucket_labels_str} {bucket.count}")

                lines.append(f"{histogram.name}_sum{labels_str} {histogram.sum}")
                lines.append(f"{histogram.name}_count{labels_str} {histogram.count}")

            return "\n".join(lines) + "\n"

    def _format_labels(self, labels: dict[str, str]) -> str:
        """Format labels for Prometheus output (e.g., '{type="join"}')."""
        if not labels:
            return ""

        label_pairs = [f'{k}="{v}"' for k, v in sorted(labels.items())]
        return "{" + ",".join(label_pairs) + "}"

    # === Summary statistics ===

    def get_summary(self) -> dict[str, float | None]:
        """Get summary statistics for monitoring dashboards.

        Returns:
            Dictionary with key metrics and broadcast latency percentiles
        """
        with self._lock:
            latency = self._histograms["broadcast_latency_seconds"]
            p50 = latency.quantile(0.50)
            p95 = latency.quantile(0.95)

            summary: dict[str, float | None] = {
                "sessions_created": self._counters["sessions_created_total"].value,
                "sessions_expired": self._counters["sessions_expired_total"].value,
                "sessions_active": self._gauges["sessions_active"].value,
                "connections_active": self._gauges["connections_active"].value,
                "joins": self._counters["joins_total"].value,
                "messages": self._counters["messages_total"].value,
                "validation_errors": self._counters["validation_errors_total"].value,
                "protocol_errors": self._counters["protocol_errors_total"].value,
                "broadcasts": self._counters["broadcasts_total"].value,
                "deliveries": self._counters["deliveries_total"].value,
                "delivery_failures": self._counters["delivery_failures_total"].value,
                "broadcast_latency_p50_ms": p50 * 1000 if p50 is not None else None,
                "broadcast_latency_p95_ms": p95 * 1000 if p95 is not None else None,
            }
            for key, counter in self._counters.items():
                if key.startswith("messages_total:"):
                    summary[f"messages_{counter.labels['type']}"] = counter.value
            return summary


# Global metrics collector singleton
_metrics_collector: MetricsCollector | None = None
_collector_lock = threading.Lock()


def get_metrics_collector() -> MetricsCollector:
    """Get global metrics collector singleton.

    Thread-safety: Safe for concurrent access.
    """
    global _metrics_collector

    if _metrics_collector is None:
        with _collector_lock:
            if _metrics_collector is None:
                _metrics_collector = MetricsCollector()

    return _metrics_collector
