"""
Prometheus metrics collection for conduit

Counts records at every stage boundary, errors by type, and stage
latencies, so a stuck or failing stage is visible without reading logs.
"""
import os
from typing import ContextManager, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

# Registry shared by every conduit metric
REGISTRY = CollectorRegistry()


# =======================
# POLLER METRICS
# =======================

polls_total = Counter(
    name="conduit_polls_total",
    documentation="Total number of receive calls against the queue",
    labelnames=["status"],  # status: success, failure
    registry=REGISTRY,
)

messages_received_total = Counter(
    name="conduit_messages_received_total",
    documentation="Total number of queue messages received",
    registry=REGISTRY,
)

notifications_emitted_total = Counter(
    name="conduit_notifications_emitted_total",
    documentation="Total number of well-formed single-event notifications emitted by the poller",
    registry=REGISTRY,
)

schema_violations_total = Counter(
    name="conduit_schema_violations_total",
    documentation="Total number of messages rejected as malformed or multi-event",
    labelnames=["reason"],  # reason: malformed, multiple_records, invalid_record
    registry=REGISTRY,
)

# =======================
# STAGE METRICS
# =======================

stage_duration_seconds = Histogram(
    name="conduit_stage_duration_seconds",
    documentation="Time spent in each pipeline stage in seconds",
    labelnames=["stage"],  # stage: poll, fetch, transform, load, ack
    buckets=[0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0],
    registry=REGISTRY,
)

artifacts_written_total = Counter(
    name="conduit_artifacts_written_total",
    documentation="Total number of artifacts written to the egress bucket",
    registry=REGISTRY,
)

bytes_written_total = Counter(
    name="conduit_bytes_written_total",
    documentation="Total number of bytes written to the egress bucket",
    registry=REGISTRY,
)

records_acknowledged_total = Counter(
    name="conduit_records_acknowledged_total",
    documentation="Total number of notifications deleted from the queue",
    labelnames=["outcome"],  # outcome: loaded, empty
    registry=REGISTRY,
)

in_flight_units = Gauge(
    name="conduit_in_flight_units",
    documentation="Stage units currently running per lane",
    labelnames=["lane"],
    registry=REGISTRY,
)

# =======================
# ERROR METRICS
# =======================

errors_total = Counter(
    name="conduit_errors_total",
    documentation="Total number of per-record errors",
    labelnames=["error_type", "component"],
    registry=REGISTRY,
)


def start_metrics_server(port: Optional[int] = None) -> int:
    """
    Expose REGISTRY over HTTP for Prometheus to scrape.

    Args:
        port: Listen port (defaults to METRICS_PORT, then 8000)

    Returns:
        The port the server listens on
    """
    # Binding a port only happens when the endpoint is requested
    from prometheus_client import start_http_server

    listen_port = port or int(os.getenv("METRICS_PORT", "8000"))
    start_http_server(listen_port, registry=REGISTRY)
    return listen_port


# =======================
# COLLECTOR
# =======================

class MetricsCollector:
    """
    Metrics collector for pipeline stages.

    Stages hold a collector instead of touching the module-level metrics
    directly, so tests can pass a stub.
    """

    def record_poll(self, message_count: int, success: bool = True) -> None:
        polls_total.labels(status="success" if success else "failure").inc()
        if message_count > 0:
            messages_received_total.inc(message_count)

    def record_notification(self) -> None:
        notifications_emitted_total.inc()

    def record_schema_violation(self, reason: str) -> None:
        schema_violations_total.labels(reason=reason).inc()

    def time_stage(self, stage: str) -> ContextManager:
        """
        Time one unit of work in ``stage``.

        Usage:
            with metrics.time_stage("fetch"):
                data = store.get(bucket, key)
        """
        return stage_duration_seconds.labels(stage=stage).time()

    def record_write(self, size: int) -> None:
        artifacts_written_total.inc()
        bytes_written_total.inc(size)

    def record_ack(self, outcome: str = "loaded") -> None:
        records_acknowledged_total.labels(outcome=outcome).inc()

    def record_error(self, error: Exception, component: str) -> None:
        errors_total.labels(error_type=type(error).__name__, component=component).inc()

    def set_in_flight(self, lane: int, count: int) -> None:
        in_flight_units.labels(lane=str(lane)).set(count)
