"""
Redundancy policy to replica-shard mapping.

The mapping is a policy choice, so it lives in one table that callers can
override. Defaults:
- ZeroRedundancy: 0 replicas
- SingleRedundancy: 1 replica
- MultipleRedundancy: (data - 1) // 2 replicas, at least 1
- FullRedundancy: data - 1 replicas

A replica can never share a node with its primary, so the result is
clamped to data - 1. When clamping lowers the policy's target the cluster
is degraded: surfaced on status, never an error.
"""

from typing import Callable

from escluster_core.types import RedundancyPolicy

ReplicaRule = Callable[[int], int]

DEFAULT_REPLICA_RULES: dict[RedundancyPolicy, ReplicaRule] = {
    RedundancyPolicy.ZERO: lambda data: 0,
    RedundancyPolicy.SINGLE: lambda data: 1,
    RedundancyPolicy.MULTIPLE: lambda data: max(1, (data - 1) // 2),
    RedundancyPolicy.FULL: lambda data: max(1, data - 1),
}


def replica_count(
    policy: RedundancyPolicy,
    data_nodes: int,
    rules: dict[RedundancyPolicy, ReplicaRule] | None = None,
) -> tuple[int, bool]:
    """
    Compute the replica count for a policy.

    Args:
        policy: Requested redundancy policy.
        data_nodes: Planned number of data-role nodes.
        rules: Optional override of the policy table.

    Returns:
        Tuple of (replicas to apply, degraded). degraded is True when the
        data node count cannot satisfy the policy.
    """
    rules = rules or DEFAULT_REPLICA_RULES
    wanted = rules[policy](data_nodes)
    achievable = max(0, data_nodes - 1)
    replicas = min(wanted, achievable)
    return replicas, replicas < wanted
