"""Prometheus metrics for the evaluator API.

Tracks evaluation runs, per-item failures and worker usage.
Metrics are exposed via the /api/metrics endpoint in Prometheus format.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, generate_latest


# ---------------------------------------------------------------------------
# Metric definitions
# ---------------------------------------------------------------------------

EVALUATIONS_STARTED = Counter(
    "evaluator_evaluations_started_total",
    "Total evaluation runs started",
)
EVALUATIONS_FINISHED = Counter(
    "evaluator_evaluations_finished_total",
    "Total evaluation runs finished",
    ["status"],
)
ITEM_FAILURES = Counter(
    "evaluator_item_failures_total",
    "Dataset items whose generation or grading failed",
    ["stage"],
)
ACTIVE_WORKERS = Gauge(
    "evaluator_active_workers",
    "Currently executing evaluation runs",
)
QUEUE_DEPTH = Gauge(
    "evaluator_queue_depth",
    "Submitted runs waiting for a worker slot",
)


# ---------------------------------------------------------------------------
# Helper functions
# ---------------------------------------------------------------------------


def record_evaluation_started() -> None:
    EVALUATIONS_STARTED.inc()


def record_evaluation_finished(status: str) -> None:
    EVALUATIONS_FINISHED.labels(status=status).inc()


def record_item_failure(stage: str) -> None:
    ITEM_FAILURES.labels(stage=stage).inc()


def set_active_workers(count: int) -> None:
    ACTIVE_WORKERS.set(count)


def set_queue_depth(depth: int) -> None:
    QUEUE_DEPTH.set(depth)


def get_metrics_text() -> str:
    """Generate Prometheus metrics text output."""
    return generate_latest().decode("utf-8")
