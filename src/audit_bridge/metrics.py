"""
Prometheus metrics for the audit bridge.

Metrics live in the default prometheus_client registry; the CLI exposes them
with start_http_server when --metrics-port is given.
"""

from prometheus_client import Counter, Gauge, Histogram

# =============================================================================
# Shard reader metrics
# =============================================================================

records_received_counter = Counter(
    "audit_bridge_records_received_total",
    "Total records fetched from the stream",
    labelnames=["shard_id"],
)

events_published_counter = Counter(
    "audit_bridge_events_published_total",
    "Total decoded events published to the event channel",
    labelnames=["shard_id", "event_kind"],
)

decode_failures_counter = Counter(
    "audit_bridge_decode_failures_total",
    "Total records that failed to decode",
    labelnames=["shard_id", "error_type"],
)

millis_behind_latest_gauge = Gauge(
    "audit_bridge_millis_behind_latest",
    "How far the last fetch was behind the tip of the shard",
    labelnames=["shard_id"],
)

fetch_duration_seconds = Histogram(
    "audit_bridge_fetch_duration_seconds",
    "Time spent in one GetRecords call",
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

shard_failures_counter = Counter(
    "audit_bridge_shard_failures_total",
    "Shard readers that ended with a fatal error",
    labelnames=["error_category"],
)

# =============================================================================
# Sink metrics
# =============================================================================

events_written_counter = Counter(
    "audit_bridge_events_written_total",
    "Total events written to the sink",
    labelnames=["sink", "success"],
)


def record_decode_failure(shard_id: str, error_type: str) -> None:
    decode_failures_counter.labels(shard_id=shard_id, error_type=error_type).inc()


def record_event_published(shard_id: str, event_kind: str) -> None:
    events_published_counter.labels(shard_id=shard_id, event_kind=event_kind).inc()


def record_event_written(sink: str, success: bool = True) -> None:
    """Record a sink write."""
    events_written_counter.labels(sink=sink, success="true" if success else "false").inc()


__all__ = [
    "records_received_counter",
    "events_published_counter",
    "decode_failures_counter",
    "millis_behind_latest_gauge",
    "fetch_duration_seconds",
    "shard_failures_counter",
    "events_written_counter",
    "record_decode_failure",
    "record_event_published",
    "record_event_written",
]
