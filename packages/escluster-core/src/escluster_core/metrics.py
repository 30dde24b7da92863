"""Prometheus metrics for the cluster operator."""

from prometheus_client import Counter, Gauge, Histogram

# Reconciliation metrics
RECONCILES = Counter(
    "escluster_reconciles_total",
    "Total reconciliation passes",
    ["result"],  # "ok", "requeue", "error"
)

RECONCILE_LATENCY = Histogram(
    "escluster_reconcile_duration_seconds",
    "Reconciliation pass latency in seconds",
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

# Rollout metrics
ROLLOUT_STEPS = Counter(
    "escluster_rollout_steps_total",
    "Rollout sequencer transitions",
    ["event"],  # "applied", "advanced", "deferred", "waiting", ...
)

ROLLOUT_PENDING = Gauge(
    "escluster_rollout_pending_changes",
    "Changes still queued in the current rollout",
    ["cluster"],
)

# Certificate metrics
CERT_ROTATIONS = Counter(
    "escluster_certificate_rotations_total",
    "Certificate bundles reissued",
    ["identity"],
)


def record_reconcile(result: str, seconds: float) -> None:
    """Record one reconciliation pass."""
    RECONCILES.labels(result=result).inc()
    RECONCILE_LATENCY.observe(seconds)


def record_step(event: str) -> None:
    """Record one sequencer transition."""
    ROLLOUT_STEPS.labels(event=event).inc()


def set_pending_changes(cluster: str, count: int) -> None:
    """Set number of outstanding rollout changes of a cluster."""
    ROLLOUT_PENDING.labels(cluster=cluster).set(count)


def record_rotation(identity: str) -> None:
    """Record a certificate rotation."""
    CERT_ROTATIONS.labels(identity=identity).inc()
