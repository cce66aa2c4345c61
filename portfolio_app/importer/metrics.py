"""Prometheus metrics helpers for the importer."""

from __future__ import annotations

from typing import Literal

from prometheus_client import Counter, Histogram

_jobs_counter = Counter(
    "importer_jobs_total",
    "Import jobs reaching a terminal or validated state, by outcome.",
    ["outcome"],
)
_rows_counter = Counter(
    "importer_rows_total",
    "Staging rows handled by the importer, by stage and outcome.",
    ["stage", "outcome"],
)
_chunk_duration = Histogram(
    "importer_chunk_duration_seconds",
    "Duration of a single processing chunk in seconds.",
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30, 60),
)
_run_duration = Histogram(
    "importer_run_duration_seconds",
    "Duration of a full processing run in seconds.",
    buckets=(0.5, 1, 2, 5, 10, 30, 60, 120, 300, 600),
)


def record_job_outcome(outcome: str) -> None:
    """Increment the job outcome counter (``validated``, ``completed``, ``failed`` ...)."""

    _jobs_counter.labels(outcome=outcome).inc()


def record_validation_rows(*, valid: int, invalid: int) -> None:
    if valid:
        _rows_counter.labels(stage="validate", outcome="valid").inc(valid)
    if invalid:
        _rows_counter.labels(stage="validate", outcome="invalid").inc(invalid)


def record_processed_rows(*, succeeded: int, failed: int) -> None:
    if succeeded:
        _rows_counter.labels(stage="process", outcome="success").inc(succeeded)
    if failed:
        _rows_counter.labels(stage="process", outcome="failure").inc(failed)


def record_duration(kind: Literal["chunk", "run"], duration_seconds: float) -> None:
    """Observe how long a chunk or a full run took."""

    histogram = _chunk_duration if kind == "chunk" else _run_duration
    histogram.observe(max(duration_seconds, 0.0))
