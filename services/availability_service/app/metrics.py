"""Prometheus metrics for the availability service."""

from __future__ import annotations

from typing import Final

from prometheus_client import Counter, Histogram

_TRANSITION_KINDS: Final = (
    "activate",
    "deactivate",
    "seasonal_start",
    "seasonal_end",
)

# Evaluation -------------------------------------------------------------------------------
AVAILABILITY_EVALUATIONS_TOTAL: Final = Counter(
    "availability_evaluations_total",
    "Product availability evaluations grouped by resulting state.",
    labelnames=("state",),
)

AVAILABILITY_EVALUATION_FALLBACK_TOTAL: Final = Counter(
    "availability_evaluation_fallback_total",
    "Evaluations that failed internally and fell back to AVAILABLE.",
)

# Authoring --------------------------------------------------------------------------------
AVAILABILITY_RULE_VALIDATION_FAILURES_TOTAL: Final = Counter(
    "availability_rule_validation_failures_total",
    "Rule payloads rejected by validation.",
    labelnames=("operation",),
)

# Scheduling -------------------------------------------------------------------------------
AVAILABILITY_SCHEDULES_CREATED_TOTAL: Final = Counter(
    "availability_schedules_created_total",
    "Schedule entries materialized from rules.",
    labelnames=("kind",),
)

AVAILABILITY_SCHEDULES_PROCESSED_TOTAL: Final = Counter(
    "availability_schedules_processed_total",
    "Due schedule entries processed, by notification outcome.",
    labelnames=("outcome",),
)

AVAILABILITY_JOB_RUNS_TOTAL: Final = Counter(
    "availability_job_runs_total",
    "Processing job invocations by outcome.",
    labelnames=("outcome",),
)

AVAILABILITY_JOB_LOCK_ERRORS_TOTAL: Final = Counter(
    "availability_job_lock_errors_total",
    "Redis errors handled while acquiring or releasing the processing lock.",
    labelnames=("operation",),
)

AVAILABILITY_JOB_DURATION_SECONDS: Final = Histogram(
    "availability_job_duration_seconds",
    "Wall time of a processing job run.",
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30, 60),
)


def transition_kind(label: str) -> str:
    """Return a bounded label value for a transition label such as ``seasonal_end_AVAILABLE``."""

    for kind in sorted(_TRANSITION_KINDS, key=len, reverse=True):
        if label.startswith(f"{kind}_"):
            return kind
    return "other"
