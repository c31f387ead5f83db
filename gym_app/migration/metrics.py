"""Prometheus metrics helpers for the migration engine."""

from __future__ import annotations

from typing import Literal

from prometheus_client import Counter, Histogram

_migration_runs = Counter(
    "migration_runs_total",
    "Migration invocations by mode and outcome.",
    ["mode", "outcome"],
)
_migration_batches = Counter(
    "migration_batches_total",
    "Migration upsert batches by entity and status.",
    ["entity", "status"],
)
_migration_batch_duration = Histogram(
    "migration_batch_duration_seconds",
    "Duration of one migration upsert batch in seconds.",
    ["entity"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30),
)
_migration_skipped_rows = Counter(
    "migration_skipped_rows_total",
    "Legacy rows skipped during planning.",
    ["kind"],
)


def record_migration_run(
    *,
    mode: Literal["preview", "run", "dry_run", "generate"],
    outcome: Literal["success", "failure"],
) -> None:
    """Increment the run counter."""

    _migration_runs.labels(mode=mode, outcome=outcome).inc()


def record_migration_batch(
    *,
    entity: Literal["members", "staff"],
    status: Literal["success", "failure"],
    duration_seconds: float,
) -> None:
    """Capture metrics for one upsert batch."""

    _migration_batches.labels(entity=entity, status=status).inc()
    _migration_batch_duration.labels(entity=entity).observe(duration_seconds)


def record_skipped_rows(kind: Literal["payments", "members"], count: int) -> None:
    if count <= 0:
        return
    _migration_skipped_rows.labels(kind=kind).inc(count)
