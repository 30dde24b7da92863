"""
Topology planner: desired spec to concrete workload descriptors.

plan_topology() is pure and deterministic. It performs no I/O, reads no
clock and draws no randomness, so calling it twice with the same inputs
yields identical workload names and counts. All state lives in the
returned TopologyPlan.

Generation IDs keep workload names stable across reconciliations. They
are resolved in order: explicit gen_uuid on the pool, the generation
recorded on status for that pool, then a newly minted one. Minting hashes
the cluster identity, pool name and role class, which is reproducible and
collision resistant without a random source.
"""

import hashlib
import json
from dataclasses import dataclass, field, replace
from typing import Mapping

from escluster_core.errors import InvalidSpecError
from escluster_core.topology.quorum import QuorumRequirement
from escluster_core.topology.redundancy import ReplicaRule, replica_count
from escluster_core.types import (
    ClusterSpec,
    NodePool,
    PoolGeneration,
    RedundancyPolicy,
    ResourceRequirements,
    WorkloadDescriptor,
)

GENERATION_ID_LENGTH = 8


@dataclass(frozen=True)
class TopologyPlan:
    """
    Result of planning one cluster.

    Attributes:
        cluster: Cluster name the workloads belong to.
        namespace: Namespace of the cluster.
        workloads: Descriptors in pool order, then ordinal order.
        quorum: Master count and quorum of the target topology.
        data_nodes: Planned number of data-role nodes.
        redundancy_policy: Policy the replica count was derived from.
        replicas: Replica-shard count to apply to the live cluster.
        redundancy_degraded: True if data nodes cannot satisfy the policy.
        generations: Generation record per pool, to persist on status.
        revision: Short content hash of the workloads.
    """

    cluster: str
    namespace: str
    workloads: tuple[WorkloadDescriptor, ...]
    quorum: QuorumRequirement
    data_nodes: int
    redundancy_policy: RedundancyPolicy
    replicas: int
    redundancy_degraded: bool
    generations: dict[str, PoolGeneration] = field(default_factory=dict)
    revision: str = ""

    def with_certificates(self, tls_secret: str, cert_revision: str) -> "TopologyPlan":
        """
        Stamp every workload with its certificate secret and revision.

        A revision change makes every live workload differ from its target,
        which is how certificate rotation enters the rollout.
        """
        workloads = tuple(
            w.model_copy(update={"tls_secret": tls_secret, "cert_revision": cert_revision})
            for w in self.workloads
        )
        return replace(self, workloads=workloads, revision=plan_revision(workloads))


def mint_generation_id(cluster_uid: str, pool: NodePool) -> str:
    """Derive a stable generation ID for a pool that has none recorded."""
    seed = f"{cluster_uid}/{pool.name}/{pool.role_class}".encode()
    return hashlib.sha256(seed).hexdigest()[:GENERATION_ID_LENGTH]


def workload_name(cluster: str, roleclass: str, generation_id: str, ordinal: int) -> str:
    """Name of the workload for a 0-based ordinal (the suffix is 1-based)."""
    return f"{cluster}-{roleclass}-{generation_id}-{ordinal + 1}"


def plan_revision(workloads: tuple[WorkloadDescriptor, ...]) -> str:
    payload = json.dumps(
        sorted((w.model_dump(mode="json") for w in workloads), key=lambda d: d["name"]),
        sort_keys=True,
    )
    return hashlib.sha256(payload.encode()).hexdigest()[:12]


def validate_spec(
    cluster: str,
    spec: ClusterSpec,
    existing: Mapping[str, PoolGeneration],
) -> None:
    """
    Check the invariants planning depends on.

    Collects ALL problems before raising, giving users complete feedback
    rather than failing on the first issue.

    Raises:
        InvalidSpecError: If any invariant is violated.
    """
    problems: list[str] = []
    seen: set[str] = set()

    masters = [pool for pool in spec.node_pools if pool.is_master]
    if not masters:
        problems.append("no node pool carries the master role")
    elif sum(pool.node_count for pool in masters) <= 0:
        problems.append("master node pools have nodeCount 0; at least one master is required")

    for pool in spec.node_pools:
        if pool.name in seen:
            problems.append(f"node pool name {pool.name!r} is used more than once")
        seen.add(pool.name)

        if not pool.roles:
            problems.append(f"node pool {pool.name!r} has no roles")
        if pool.node_count < 0:
            problems.append(f"node pool {pool.name!r} has negative nodeCount {pool.node_count}")

        recorded = existing.get(pool.name)
        if recorded is not None and set(recorded.roles) != set(pool.roles):
            problems.append(
                f"roles of node pool {pool.name!r} changed from "
                f"{sorted(r.value for r in recorded.roles)} to "
                f"{sorted(r.value for r in pool.roles)}; "
                "create a new pool instead"
            )

    if problems:
        raise InvalidSpecError(cluster, problems)


def plan_topology(
    spec: ClusterSpec,
    cluster: str,
    namespace: str,
    existing: Mapping[str, PoolGeneration] | None = None,
    cluster_uid: str = "",
    replica_rules: dict[RedundancyPolicy, ReplicaRule] | None = None,
) -> TopologyPlan:
    """
    Plan the concrete workloads for a cluster spec.

    Args:
        spec: Desired cluster spec.
        cluster: Cluster (resource) name.
        namespace: Cluster namespace.
        existing: Generation records of pools that already have workloads.
        cluster_uid: Stable cluster identity used to mint generation IDs;
            defaults to the namespaced name.
        replica_rules: Optional override of the redundancy table.

    Returns:
        TopologyPlan with one descriptor per pool ordinal.

    Raises:
        InvalidSpecError: No master pool, negative count, duplicate pool
            name, empty role set or changed role set.
    """
    existing = existing or {}
    validate_spec(cluster, spec, existing)
    uid = cluster_uid or f"{namespace}/{cluster}"

    workloads: list[WorkloadDescriptor] = []
    generations: dict[str, PoolGeneration] = {}
    master_count = 0
    data_nodes = 0

    for pool in spec.node_pools:
        recorded = existing.get(pool.name)
        generation_id = (
            pool.gen_uuid
            or (recorded.generation_id if recorded else None)
            or mint_generation_id(uid, pool)
        )
        generations[pool.name] = PoolGeneration(
            generation_id=generation_id, roles=list(pool.roles)
        )
        resources = (pool.resources or ResourceRequirements()).merged_over(spec.resources)

        for ordinal in range(pool.node_count):
            workloads.append(
                WorkloadDescriptor(
                    name=workload_name(cluster, pool.role_class, generation_id, ordinal),
                    cluster=cluster,
                    namespace=namespace,
                    pool=pool.name,
                    roles=tuple(pool.roles),
                    ordinal=ordinal,
                    generation_id=generation_id,
                    image=spec.image,
                    resources=resources,
                    storage=pool.storage,
                )
            )

        if pool.is_master:
            master_count += pool.node_count
        if pool.is_data:
            data_nodes += pool.node_count

    replicas, degraded = replica_count(spec.redundancy_policy, data_nodes, replica_rules)
    planned = tuple(workloads)

    return TopologyPlan(
        cluster=cluster,
        namespace=namespace,
        workloads=planned,
        quorum=QuorumRequirement.for_masters(master_count),
        data_nodes=data_nodes,
        redundancy_policy=spec.redundancy_policy,
        replicas=replicas,
        redundancy_degraded=degraded,
        generations=generations,
        revision=plan_revision(planned),
    )
