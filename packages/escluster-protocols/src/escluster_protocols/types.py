"""
Generic types shared across the operator protocol seams.

This module defines the small value types that cross the boundary between
the reconciliation core and its external collaborators (the managed
cluster's administrative API, the secret store, the workload platform).
They carry no behaviour beyond simple comparisons.

All types use @dataclass for simplicity. Pydantic models are reserved for
documents parsed from the outside world (resources, API responses).
"""

from dataclasses import dataclass, field
from enum import Enum


class ClusterHealth(str, Enum):
    """
    Classified health of a managed cluster.

    GREEN: all shards allocated
    YELLOW: primaries allocated, some replicas missing (data still served)
    RED: at least one primary shard unallocated
    UNKNOWN: the cluster could not be reached or answered unintelligibly
    """

    GREEN = "green"
    YELLOW = "yellow"
    RED = "red"
    UNKNOWN = "unknown"

    @property
    def rank(self) -> int:
        """Ordering used for threshold comparisons (UNKNOWN is lowest)."""
        return _HEALTH_RANK[self]

    def at_least(self, threshold: "ClusterHealth") -> bool:
        """True if this health meets or exceeds the given threshold."""
        return self.rank >= threshold.rank


_HEALTH_RANK = {
    ClusterHealth.UNKNOWN: 0,
    ClusterHealth.RED: 1,
    ClusterHealth.YELLOW: 2,
    ClusterHealth.GREEN: 3,
}


@dataclass(frozen=True)
class ClusterKey:
    """
    Identity of one desired-state resource.

    Attributes:
        namespace: Namespace the cluster and its secrets live in.
        name: Resource name, also the prefix of every derived object name.
    """

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass
class NodeReadiness:
    """
    Readiness of a single cluster member as reported by the cluster itself.

    Attributes:
        name: Node name (the pod name, prefixed by its workload name).
        roles: Role letters reported by the node (e.g. "cdm", "dim").
        master_eligible: Whether the node is a voting master candidate.
        elected_master: Whether the node is the currently elected master.
        ready: Whether the node has joined the cluster.
    """

    name: str
    roles: str = ""
    master_eligible: bool = False
    elected_master: bool = False
    ready: bool = True


@dataclass
class HealthSnapshot:
    """
    One observation of cluster health.

    Attributes:
        health: Classified cluster health.
        nodes: Per-node readiness (empty when health is UNKNOWN).
        detail: Free-form explanation, set when health is UNKNOWN.
        relocating_shards: Shards currently moving between nodes.
    """

    health: ClusterHealth
    nodes: list[NodeReadiness] = field(default_factory=list)
    detail: str = ""
    relocating_shards: int = 0

    @classmethod
    def unknown(cls, detail: str) -> "HealthSnapshot":
        """Snapshot for an unreachable or unintelligible cluster."""
        return cls(health=ClusterHealth.UNKNOWN, detail=detail)


@dataclass
class Secret:
    """
    Named key/value bundle persisted next to the managed cluster.

    Attributes:
        namespace: Namespace of the owning cluster.
        name: Secret name, derived deterministically from the cluster name.
        data: Raw values by key.
        labels: Free-form metadata used for lookups and pruning.
    """

    namespace: str
    name: str
    data: dict[str, bytes] = field(default_factory=dict)
    labels: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ClientCredentials:
    """
    PEM material used to open a mutually authenticated admin connection.

    Attributes:
        ca_pem: CA certificate that signed the cluster's serving certificates.
        cert_pem: Client certificate of the admin identity.
        key_pem: Private key of the admin identity.
    """

    ca_pem: bytes
    cert_pem: bytes
    key_pem: bytes
