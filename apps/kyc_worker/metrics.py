"""Prometheus instrumentation helpers for the verification worker."""
from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

JOB_DURATION_SECONDS = Histogram(
    "kyc_worker_job_duration_seconds",
    "Duration of document pipeline runs.",
    labelnames=("outcome",),
    buckets=(0.5, 1, 2, 5, 10, 20, 30, 60, 120, 300),
)

JOBS_TOTAL = Counter(
    "kyc_worker_jobs_total",
    "Documents handled by the worker loop, by outcome.",
    labelnames=("outcome",),
)

QUEUE_DEPTH = Gauge(
    "kyc_worker_queue_depth",
    "Documents per queue state.",
    labelnames=("state",),
)

DELAYED_PROMOTED_TOTAL = Counter(
    "kyc_worker_delayed_promoted_total",
    "Delayed documents promoted back to the queue.",
)

RECOVERED_TOTAL = Counter(
    "kyc_worker_recovered_total",
    "Documents recovered from the processing set.",
    labelnames=("mode",),
)

ESCALATIONS_TOTAL = Counter(
    "kyc_worker_escalations_total",
    "Escalations to manual review.",
    labelnames=("reason", "result"),
)

STORE_AVAILABLE = Gauge(
    "kyc_worker_store_available",
    "1 when the queue store answered the last health probe.",
)


def observe_job(outcome: str, seconds: float) -> None:
    JOBS_TOTAL.labels(outcome=outcome).inc()
    JOB_DURATION_SECONDS.labels(outcome=outcome).observe(seconds)


def update_queue_depth(queued: int, processing: int, delayed: int) -> None:
    QUEUE_DEPTH.labels(state="queued").set(queued)
    QUEUE_DEPTH.labels(state="processing").set(processing)
    QUEUE_DEPTH.labels(state="delayed").set(delayed)


def record_promoted(count: int) -> None:
    if count > 0:
        DELAYED_PROMOTED_TOTAL.inc(count)


def record_recovered(mode: str, count: int) -> None:
    if count > 0:
        RECOVERED_TOTAL.labels(mode=mode).inc(count)


def record_escalation(reason: str, result: str) -> None:
    ESCALATIONS_TOTAL.labels(reason=reason, result=result).inc()


def update_store_available(available: bool) -> None:
    STORE_AVAILABLE.set(1 if available else 0)
