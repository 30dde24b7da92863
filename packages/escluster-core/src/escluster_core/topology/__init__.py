"""Topology planning: node pools to workloads, quorum and redundancy rules."""

from escluster_core.topology.planner import (
    TopologyPlan,
    mint_generation_id,
    plan_topology,
    validate_spec,
    workload_name,
)
from escluster_core.topology.quorum import (
    QuorumRequirement,
    QuorumState,
    is_ready,
    quorum_for,
)
from escluster_core.topology.redundancy import DEFAULT_REPLICA_RULES, replica_count

__all__ = [
    "TopologyPlan",
    "plan_topology",
    "validate_spec",
    "mint_generation_id",
    "workload_name",
    "QuorumRequirement",
    "QuorumState",
    "quorum_for",
    "is_ready",
    "replica_count",
    "DEFAULT_REPLICA_RULES",
]
