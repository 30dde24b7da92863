"""Rollout sequencing: ordered, quorum-safe, health-gated workload changes."""

from escluster_core.rollout.diff import CERT_ROTATION, compute_changes
from escluster_core.rollout.retry import RetryConfig
from escluster_core.rollout.sequencer import (
    HEALTH_DEFERRED,
    QUORUM_DEFERRED,
    RolloutPolicy,
    RolloutSequencer,
    StepOutcome,
)
from escluster_core.rollout.types import ChangeKind, RolloutPhase, RolloutState, WorkloadChange

__all__ = [
    "CERT_ROTATION",
    "ChangeKind",
    "HEALTH_DEFERRED",
    "QUORUM_DEFERRED",
    "RetryConfig",
    "RolloutPhase",
    "RolloutPolicy",
    "RolloutSequencer",
    "RolloutState",
    "StepOutcome",
    "WorkloadChange",
    "compute_changes",
]
