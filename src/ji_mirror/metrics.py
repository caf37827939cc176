"""
Prometheus metrics definitions for ji-mirror.

Counters and histograms covering remote calls, retries, page streaming,
sync outcomes and batch outcomes. Naming follows snake_case with the
ji_mirror_ prefix.
"""

from prometheus_client import Counter, Gauge, Histogram

# ==============================================================================
# TRANSPORT
# ==============================================================================

transport_requests_total = Counter(
    "ji_mirror_transport_requests_total",
    "Total remote call attempts",
    ["method", "outcome"],
    # outcome: success, or the error tag of the failure
)

transport_retries_total = Counter(
    "ji_mirror_transport_retries_total",
    "Retries scheduled after a failed remote call",
    ["error_tag"],
)

transport_duration_seconds = Histogram(
    "ji_mirror_transport_duration_seconds",
    "Time spent in a single remote call attempt",
    ["method"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

# ==============================================================================
# PAGINATION
# ==============================================================================

stream_pages_total = Counter(
    "ji_mirror_stream_pages_total",
    "Pages fetched by paginated streams",
    ["status"],
    # status: success, failed, cancelled
)

# ==============================================================================
# SYNC
# ==============================================================================

sync_items_total = Counter(
    "ji_mirror_sync_items_total",
    "Items processed by sync runs",
    ["source", "outcome"],
    # outcome: upserted, unchanged, failed, deleted
)

sync_runs_total = Counter(
    "ji_mirror_sync_runs_total",
    "Sync runs by final status",
    ["source", "mode", "status"],
    # status: completed, aborted
)

sync_duration_seconds = Histogram(
    "ji_mirror_sync_duration_seconds",
    "Duration of a full sync run for one scope",
    ["source"],
    buckets=[0.5, 1.0, 5.0, 15.0, 60.0, 300.0, 900.0],
)

mirrored_items = Gauge(
    "ji_mirror_mirrored_items",
    "Items currently held in the local mirror",
    ["source"],
)

# ==============================================================================
# BATCH
# ==============================================================================

batch_items_total = Counter(
    "ji_mirror_batch_items_total",
    "Items processed by the batch executor",
    ["outcome"],
    # outcome: success, failure
)
