"""Prometheus metrics helpers for the sync engine."""

from __future__ import annotations

from typing import Literal

from flask import current_app, has_app_context
from prometheus_client import Counter, Histogram

_sync_runs_counter = Counter(
    "sync_runs_total",
    "Sync runs by connector kind and terminal status.",
    ["connector", "status"],
)
_sync_run_duration = Histogram(
    "sync_run_duration_seconds",
    "Duration of sync runs in seconds.",
    ["connector"],
    buckets=(0.5, 1, 2, 5, 10, 30, 60, 120, 300, 600),
)
_sync_rows_counter = Counter(
    "sync_rows_total",
    "Rows handled by the sync engine by outcome.",
    ["outcome"],
)
_sync_batch_failures = Counter(
    "sync_batch_failures_total",
    "Create batches that failed and were downgraded to skips.",
)
_cache_refresh_counter = Counter(
    "sync_cache_refreshes_total",
    "Background connector cache refreshes by outcome.",
    ["outcome"],
)


def _metrics_enabled() -> bool:
    if not has_app_context():
        return True
    return bool(current_app.config.get("SYNC_METRICS_ENABLED", True))


def record_sync_run(*, connector: str, status: str, duration_seconds: float) -> None:
    """Count a finished run and observe its duration."""

    if not _metrics_enabled():
        return
    _sync_runs_counter.labels(connector=connector, status=status).inc()
    _sync_run_duration.labels(connector=connector).observe(duration_seconds)


def record_sync_rows(*, created: int, updated: int, skipped: int) -> None:
    if not _metrics_enabled():
        return
    for outcome, count in (("created", created), ("updated", updated), ("skipped", skipped)):
        if count:
            _sync_rows_counter.labels(outcome=outcome).inc(count)


def record_batch_failure() -> None:
    if not _metrics_enabled():
        return
    _sync_batch_failures.inc()


def record_cache_refresh(outcome: Literal["success", "failure"]) -> None:
    """Increment the background cache refresh counter."""

    _cache_refresh_counter.labels(outcome=outcome).inc()
