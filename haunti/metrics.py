from __future__ import annotations

"""
Prometheus metrics for Haunti settlement.

We expose counters and histograms covering:
- tasks: transitions by resulting state
- proofs: generated by circuit, verified by circuit and result
- artifacts: fetches by circuit and artifact kind
- slashes: slash events by pool and reason, amount distribution
- retries: orchestrator retry attempts by operation and error code
- ledger: commits by result
- latencies: proof generation, proof verification, settlement

All metrics live on a dedicated registry so embedding apps can choose to
merge or expose it directly.
"""


import time
from contextlib import contextmanager
from typing import Optional

from prometheus_client import (CONTENT_TYPE_LATEST, CollectorRegistry, Counter,
                               Histogram, generate_latest)

REGISTRY = CollectorRegistry()

# ────────────────────────────────────────────────────────────────────────────────
# Label conventions
#   state:   "pending" | "claimed" | "proof_submitted" | "completed" | "failed" | "cancelled" | "expired"
#   result:  "valid" | "invalid" | "error"
#   pool:    "gpu" | "validator" | "trainer"
# ────────────────────────────────────────────────────────────────────────────────

TASK_TRANSITIONS = Counter(
    "haunti_task_transitions_total",
    "Task status transitions committed, by resulting state.",
    labelnames=("state",),
    registry=REGISTRY,
)

PROOFS_GENERATED = Counter(
    "haunti_proofs_generated_total",
    "Proofs generated, by circuit.",
    labelnames=("circuit",),
    registry=REGISTRY,
)

PROOFS_VERIFIED = Counter(
    "haunti_proofs_verified_total",
    "Proofs verified, by circuit and result.",
    labelnames=("circuit", "result"),
    registry=REGISTRY,
)

ARTIFACT_FETCHES = Counter(
    "haunti_artifact_fetches_total",
    "Circuit artifact fetches from blob storage.",
    labelnames=("circuit", "artifact"),
    registry=REGISTRY,
)

SLASHES = Counter(
    "haunti_slashes_total",
    "Slash events, by pool and reason.",
    labelnames=("pool", "reason"),
    registry=REGISTRY,
)

RETRY_ATTEMPTS = Counter(
    "haunti_retry_attempts_total",
    "Retries after transient failures, by operation and error code.",
    labelnames=("op", "code"),
    registry=REGISTRY,
)

LEDGER_COMMITS = Counter(
    "haunti_ledger_commits_total",
    "Ledger commit attempts made by the settlement layer, by result.",
    labelnames=("result",),  # "ok" | "duplicate" | "conflict" | "error"
    registry=REGISTRY,
)

_LATENCY_BUCKETS = (0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0)

PROOF_SECONDS = Histogram(
    "haunti_proof_generation_seconds",
    "Time spent generating a proof, by circuit.",
    labelnames=("circuit",),
    buckets=_LATENCY_BUCKETS,
    registry=REGISTRY,
)

VERIFY_SECONDS = Histogram(
    "haunti_proof_verify_seconds",
    "Time spent verifying a proof, by circuit.",
    labelnames=("circuit",),
    buckets=_LATENCY_BUCKETS,
    registry=REGISTRY,
)

SETTLEMENT_SECONDS = Histogram(
    "haunti_settlement_seconds",
    "Time from settle() entry to the committed outcome.",
    buckets=_LATENCY_BUCKETS,
    registry=REGISTRY,
)

SLASH_AMOUNT = Histogram(
    "haunti_slash_amount",
    "Distribution of slashed amounts (smallest token unit).",
    buckets=(1, 10, 100, 1_000, 10_000, 100_000, 1_000_000, 10_000_000, 100_000_000),
    registry=REGISTRY,
)

# ────────────────────────────────────────────────────────────────────────────────
# Recording helpers
# ────────────────────────────────────────────────────────────────────────────────


def record_transition(state: str) -> None:
    TASK_TRANSITIONS.labels(state=state).inc()


def record_proof_generated(circuit: str, seconds: float) -> None:
    PROOFS_GENERATED.labels(circuit=circuit).inc()
    PROOF_SECONDS.labels(circuit=circuit).observe(seconds)


def record_proof_verified(circuit: str, result: str) -> None:
    PROOFS_VERIFIED.labels(circuit=circuit, result=result).inc()


def record_artifact_fetch(circuit: str, artifact: str) -> None:
    """Matches the ArtifactCache `on_fetch` hook signature."""
    ARTIFACT_FETCHES.labels(circuit=circuit, artifact=artifact).inc()


def record_slash(pool: str, reason: str, amount: int) -> None:
    SLASHES.labels(pool=pool, reason=reason).inc()
    if amount > 0:
        SLASH_AMOUNT.observe(float(amount))


def record_retry(op: str, code: str) -> None:
    RETRY_ATTEMPTS.labels(op=op, code=code).inc()


def record_commit(result: str) -> None:
    LEDGER_COMMITS.labels(result=result).inc()


@contextmanager
def time_verify(circuit: str):
    start = time.perf_counter()
    try:
        yield
    finally:
        VERIFY_SECONDS.labels(circuit=circuit).observe(time.perf_counter() - start)


@contextmanager
def time_settlement():
    start = time.perf_counter()
    try:
        yield
    finally:
        SETTLEMENT_SECONDS.observe(time.perf_counter() - start)


def mount_fastapi(app, path: str = "/metrics", registry: Optional[CollectorRegistry] = None) -> None:
    """
    Mount a GET {path} endpoint on a FastAPI app to serve metrics.

        app = FastAPI()
        mount_fastapi(app)
    """
    from fastapi import Response

    reg = registry or REGISTRY

    @app.get(path, include_in_schema=False)
    def _metrics() -> Response:
        return Response(generate_latest(reg), media_type=CONTENT_TYPE_LATEST)


__all__ = [
    "REGISTRY",
    "TASK_TRANSITIONS",
    "PROOFS_GENERATED",
    "PROOFS_VERIFIED",
    "ARTIFACT_FETCHES",
    "SLASHES",
    "RETRY_ATTEMPTS",
    "LEDGER_COMMITS",
    "PROOF_SECONDS",
    "VERIFY_SECONDS",
    "SETTLEMENT_SECONDS",
    "SLASH_AMOUNT",
    "record_transition",
    "record_proof_generated",
    "record_proof_verified",
    "record_artifact_fetch",
    "record_slash",
    "record_retry",
    "record_commit",
    "time_verify",
    "time_settlement",
    "mount_fastapi",
]
