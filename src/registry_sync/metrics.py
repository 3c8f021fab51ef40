"""
Prometheus metrics for registry sync.

Focused on what operators look at:
- Job throughput, failures and dead-lettered jobs per queue
- Deduplicated enqueues
- Change feed progress
- Search index writes
- Backfill progress
- Delivery outcomes per channel
"""

from prometheus_client import Counter, Gauge, Histogram

# =============================================================================
# Job queue
# =============================================================================

jobs_enqueued_counter = Counter(
    "registry_sync_jobs_enqueued_total",
    "Jobs accepted by the queue",
    labelnames=["queue"],
)

jobs_deduplicated_counter = Counter(
    "registry_sync_jobs_deduplicated_total",
    "Enqueues dropped because the job id was already seen",
    labelnames=["queue"],
)

jobs_processed_counter = Counter(
    "registry_sync_jobs_processed_total",
    "Jobs that completed successfully",
    labelnames=["queue"],
)

jobs_failed_counter = Counter(
    "registry_sync_jobs_failed_total",
    "Job attempts that raised",
    labelnames=["queue", "error_category"],
)

jobs_dead_counter = Counter(
    "registry_sync_jobs_dead_total",
    "Jobs that exhausted all attempts",
    labelnames=["queue"],
)

job_duration_seconds = Histogram(
    "registry_sync_job_duration_seconds",
    "Time spent running a job handler",
    labelnames=["queue"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

# =============================================================================
# Change feed
# =============================================================================

changes_received_counter = Counter(
    "registry_sync_changes_received_total",
    "Change records read from the registry feed",
)

changes_skipped_counter = Counter(
    "registry_sync_changes_skipped_total",
    "Change records dropped before enqueue",
    labelnames=["reason"],
)

# =============================================================================
# Search index
# =============================================================================

index_upserts_counter = Counter(
    "registry_sync_index_upserts_total",
    "Documents sent to the search index",
    labelnames=["success"],
)

index_deletes_counter = Counter(
    "registry_sync_index_deletes_total",
    "Documents deleted from the search index",
)

# =============================================================================
# Backfill
# =============================================================================

backfill_offset_gauge = Gauge(
    "registry_sync_backfill_offset",
    "Packages queued so far by the backfill",
)

backfill_total_gauge = Gauge(
    "registry_sync_backfill_total",
    "Packages in the backfill catalog",
)

# =============================================================================
# Delivery
# =============================================================================

deliveries_counter = Counter(
    "registry_sync_deliveries_total",
    "Notification deliveries by channel and outcome",
    labelnames=["channel", "outcome"],
)

# =============================================================================
# Outbound HTTP
# =============================================================================

http_request_duration_seconds = Histogram(
    "registry_sync_http_request_duration_seconds",
    "Outbound API request latency",
    labelnames=["service", "status"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0],
)


def record_job_failed(queue: str, error_category: str) -> None:
    jobs_failed_counter.labels(queue=queue, error_category=error_category).inc()


def record_dead_job(queue: str) -> None:
    jobs_dead_counter.labels(queue=queue).inc()


def record_delivery(channel: str, outcome: str) -> None:
    """Record a delivery outcome: ``sent``, ``failed`` or ``skipped``."""
    deliveries_counter.labels(channel=channel, outcome=outcome).inc()


def update_backfill_progress(offset: int, total: int) -> None:
    backfill_offset_gauge.set(offset)
    backfill_total_gauge.set(total)


__all__ = [
    "jobs_enqueued_counter",
    "jobs_deduplicated_counter",
    "jobs_processed_counter",
    "jobs_failed_counter",
    "jobs_dead_counter",
    "job_duration_seconds",
    "changes_received_counter",
    "changes_skipped_counter",
    "index_upserts_counter",
    "index_deletes_counter",
    "backfill_offset_gauge",
    "backfill_total_gauge",
    "deliveries_counter",
    "http_request_duration_seconds",
    "record_job_failed",
    "record_dead_job",
    "record_delivery",
    "update_backfill_progress",
]
