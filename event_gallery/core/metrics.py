"""
Prometheus Metrics for Observability

Tracks ingestion stage latency, remote uploads, batch outcomes and orphaned
remote objects. Exposes /metrics endpoint for Prometheus scraping.
"""

import time
from contextlib import contextmanager

from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    Info,
    generate_latest,
    CONTENT_TYPE_LATEST,
    REGISTRY
)

# =============================================================================
# Metrics Definitions
# =============================================================================

# Pipeline Latency - Per Stage
pipeline_latency_seconds = Histogram(
    "ingest_stage_latency_seconds",
    "Time spent in each ingestion stage",
    labelnames=["stage", "status"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0]
)

# Total Batch Duration
batch_total_duration = Histogram(
    "ingest_batch_duration_seconds",
    "Total time for a batch-create request",
    labelnames=["status"],
    buckets=[0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0]
)

# Batches Counter
batches_total = Counter(
    "ingest_batches_total",
    "Total number of ingestion batches",
    labelnames=["status", "failure_stage"]
)

# Active Batches
active_batches_gauge = Gauge(
    "ingest_active_batches",
    "Number of batches currently in flight"
)

# Remote Uploads
uploads_total = Counter(
    "remote_uploads_total",
    "Remote store upload attempts",
    labelnames=["category", "status"]
)

# Orphans left behind by failed batches, and those cleaned up afterwards
orphaned_assets_total = Counter(
    "orphaned_assets_total",
    "Remote objects left without committed metadata"
)

reconciled_assets_total = Counter(
    "reconciled_assets_total",
    "Orphaned remote objects deleted by the reconciliation sweep",
    labelnames=["status"]
)

# API Request Metrics
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "endpoint", "status"]
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration",
    labelnames=["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# Application Info
app_info = Info(
    "event_gallery_app",
    "Application information"
)


# =============================================================================
# Helper Functions
# =============================================================================

def set_app_info(version: str, environment: str):
    """Set application info metric."""
    app_info.info({
        "version": version,
        "environment": environment
    })


@contextmanager
def track_stage_latency(stage: str):
    """
    Context manager to track stage latency.

    Usage:
        with track_stage_latency("transcode"):
            # do work
    """
    start = time.time()
    status = "success"
    try:
        yield
    except BaseException:
        status = "error"
        raise
    finally:
        duration = time.time() - start
        pipeline_latency_seconds.labels(stage=stage, status=status).observe(duration)


def record_upload(category: str, status: str):
    """Record a remote upload attempt. Category is collapsed to its last segment."""
    uploads_total.labels(category=category.rsplit("/", 1)[-1], status=status).inc()


def record_batch_started():
    active_batches_gauge.inc()


def record_batch_finished(status: str, duration_seconds: float, failure_stage: str = "none"):
    """Record batch completion."""
    active_batches_gauge.dec()
    batches_total.labels(status=status, failure_stage=failure_stage).inc()
    batch_total_duration.labels(status=status).observe(duration_seconds)


def record_orphaned_assets(count: int):
    if count > 0:
        orphaned_assets_total.inc(count)


def record_reconciled_asset(status: str):
    reconciled_assets_total.labels(status=status).inc()


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest(REGISTRY)


def get_metrics_content_type() -> str:
    """Get the content type for Prometheus metrics."""
    return CONTENT_TYPE_LATEST
