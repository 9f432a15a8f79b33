"""Prometheus metrics for the Lyon transit ingestion service."""

import time
from collections.abc import Mapping

from prometheus_client import Counter, Gauge, Histogram

# In-memory last-success timestamps per job (for the /health endpoint)
_last_success_timestamps: dict[str, float] = {}

TIMING_BUCKETS = [0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0]

runs_total = Counter(
    "ingest_runs_total",
    "Total ingestion job runs",
    ["job"],
)

errors_total = Counter(
    "ingest_errors_total",
    "Ingestion job runs that failed",
    ["job", "error_type"],
)

skipped_records_total = Counter(
    "ingest_skipped_records_total",
    "Provider records dropped during normalization",
    ["job", "reason"],
)

missing_fields_total = Counter(
    "ingest_missing_fields_total",
    "Optional fields absent from accepted provider records",
    ["job", "field"],
)

rows_written_total = Counter(
    "ingest_rows_written_total",
    "Rows written to the transit store",
    ["job"],
)

duration = Histogram(
    "ingest_duration_seconds",
    "Time to fetch, normalize and write one job",
    ["job"],
    buckets=TIMING_BUCKETS,
    unit="seconds",
)

overlap_skips_total = Counter(
    "ingest_overlap_skips_total",
    "Job runs skipped because the previous run was still in progress",
    ["job"],
)

feed_rejected_total = Counter(
    "ingest_feed_rejected_total",
    "Feed requests rejected by the provider with a 4xx status",
    ["job", "status_code"],
)

last_success_timestamp = Gauge(
    "ingest_last_success_timestamp",
    "Unix timestamp of the last successful job run",
    ["job"],
)


def record_run(job: str) -> None:
    """Record the start of a job run.

    Args:
        job: Job name.
    """
    runs_total.labels(job=job).inc()


def record_success(job: str, duration_seconds: float, rows_written: int) -> None:
    """Record a completed job run.

    Also updates the in-memory timestamp used by the /health endpoint.

    Args:
        job: Job name.
        duration_seconds: Time taken by the run.
        rows_written: Rows written to the store.
    """
    duration.labels(job=job).observe(duration_seconds)
    rows_written_total.labels(job=job).inc(rows_written)
    last_success_timestamp.labels(job=job).set_to_current_time()
    _last_success_timestamps[job] = time.time()


def record_error(job: str, error_type: str) -> None:
    """Record a failed job run.

    Args:
        job: Job name.
        error_type: Type of error (e.g., "timeout", "transport", "database").
    """
    errors_total.labels(job=job, error_type=error_type).inc()


def record_skipped(job: str, reason: str, count: int = 1) -> None:
    skipped_records_total.labels(job=job, reason=reason).inc(count)


def record_missing_fields(job: str, counts: Mapping[str, int]) -> None:
    """Count optional fields absent from the records of one run.

    Args:
        job: Job name.
        counts: Number of records lacking each field.
    """
    for field, count in counts.items():
        missing_fields_total.labels(job=job, field=field).inc(count)


def record_overlap_skip(job: str) -> None:
    overlap_skips_total.labels(job=job).inc()


def record_feed_rejected(job: str, status_code: int) -> None:
    feed_rejected_total.labels(job=job, status_code=str(status_code)).inc()


def get_last_success_timestamp(job: str) -> float | None:
    """Get the timestamp of the last successful run of a job.

    Args:
        job: Job name.

    Returns:
        Unix timestamp of last success, or None if never succeeded.
    """
    return _last_success_timestamps.get(job)
