"""
Desired-state data model for managed search clusters.

This module defines the declarative spec (ClusterSpec, NodePool and the
enums they use) and the concrete per-node unit the planner derives from it
(WorkloadDescriptor).

Per project patterns:
- Use str enum for JSON serialization compatibility
- Pydantic BaseModel for documents parsed from resources and persisted on
  status; camelCase aliases accepted so resource documents load as written
- Dataclasses for purely in-process values (LiveWorkload)
"""

from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class NodeRole(str, Enum):
    """
    Closed set of roles a cluster node can hold.

    A node holds any non-empty subset of the three.
    """

    CLIENT = "client"
    """Coordinates requests; holds no data and does not vote."""

    DATA = "data"
    """Holds shards."""

    MASTER = "master"
    """Votes in master election; counted for quorum."""

    @property
    def letter(self) -> str:
        """Single-letter tag used in role-class names."""
        return self.value[0]


def role_class(roles) -> str:
    """
    Build the role-class tag for a role set.

    The tag is the sorted first letters of the roles, so the full set
    {client, data, master} is "cdm" and a dedicated master is "m".
    """
    return "".join(sorted({NodeRole(r).letter for r in roles}))


class ManagementState(str, Enum):
    """Whether the operator may change the cluster."""

    MANAGED = "Managed"
    UNMANAGED = "Unmanaged"


class RedundancyPolicy(str, Enum):
    """Declarative replication target for data-role nodes."""

    ZERO = "ZeroRedundancy"
    """No replica shards."""

    SINGLE = "SingleRedundancy"
    """One replica of every primary."""

    MULTIPLE = "MultipleRedundancy"
    """Replicas on about half of the remaining data nodes."""

    FULL = "FullRedundancy"
    """A replica on every other data node."""


class _Model(BaseModel):
    """Base for resource models: accept both field names and aliases."""

    model_config = ConfigDict(populate_by_name=True)


class ResourceRequirements(_Model):
    """Compute requests and limits, as quantity strings (e.g. "1Gi")."""

    requests: dict[str, str] = Field(default_factory=dict)
    limits: dict[str, str] = Field(default_factory=dict)

    def merged_over(self, base: "ResourceRequirements") -> "ResourceRequirements":
        """Return these requirements with unset keys filled from base."""
        return ResourceRequirements(
            requests={**base.requests, **self.requests},
            limits={**base.limits, **self.limits},
        )


class StorageSpec(_Model):
    """Persistent storage for a node; ephemeral when size is unset."""

    size: str | None = None
    storage_class_name: str | None = Field(default=None, alias="storageClassName")


class NodePool(_Model):
    """
    A named group of identical nodes.

    Attributes:
        name: Pool name, unique within the cluster.
        roles: Ordered role set. Immutable once the pool has workloads.
        node_count: Number of nodes; the only legal resize vector.
        storage: Storage for every node of the pool.
        resources: Per-pool override of the cluster-wide resources.
        gen_uuid: Explicit generation identifier for workload names.
    """

    name: str
    roles: list[NodeRole] = Field(default_factory=list)
    node_count: int = Field(default=0, alias="nodeCount")
    storage: StorageSpec = Field(default_factory=StorageSpec)
    resources: ResourceRequirements | None = None
    gen_uuid: str | None = Field(default=None, alias="genUUID")

    @property
    def role_class(self) -> str:
        return role_class(self.roles)

    @property
    def is_master(self) -> bool:
        return NodeRole.MASTER in self.roles

    @property
    def is_data(self) -> bool:
        return NodeRole.DATA in self.roles


class ClusterSpec(_Model):
    """
    Desired state of one managed cluster.

    Attributes:
        node_pools: Ordered node pools (resource key "nodes").
        redundancy_policy: Replication target for data nodes.
        management_state: When Unmanaged the operator changes nothing.
        resources: Default compute resources for every node.
        image: Node image reference; empty means the operator default.
    """

    node_pools: list[NodePool] = Field(default_factory=list, alias="nodes")
    redundancy_policy: RedundancyPolicy = Field(
        default=RedundancyPolicy.ZERO, alias="redundancyPolicy"
    )
    management_state: ManagementState = Field(
        default=ManagementState.MANAGED, alias="managementState"
    )
    resources: ResourceRequirements = Field(default_factory=ResourceRequirements)
    image: str = ""


class PoolGeneration(_Model):
    """Recorded generation of a pool: its workload-name ID and role set."""

    generation_id: str = Field(alias="generationId")
    roles: list[NodeRole] = Field(default_factory=list)


class WorkloadDescriptor(_Model):
    """
    One concrete, individually addressable cluster node.

    Identity is pool generation + role class + ordinal; the name is
    "<cluster>-<roleclass>-<generation>-<ordinal+1>". Descriptors are never
    mutated in place: a role change produces a different name.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    name: str
    cluster: str
    namespace: str
    pool: str
    roles: tuple[NodeRole, ...]
    ordinal: int
    generation_id: str
    image: str
    resources: ResourceRequirements = Field(default_factory=ResourceRequirements)
    storage: StorageSpec = Field(default_factory=StorageSpec)
    tls_secret: str = ""
    cert_revision: str = ""

    @property
    def role_class(self) -> str:
        return role_class(self.roles)

    @property
    def is_master(self) -> bool:
        return NodeRole.MASTER in self.roles

    @property
    def is_data(self) -> bool:
        return NodeRole.DATA in self.roles

    def needs_update(self, live: "WorkloadDescriptor") -> bool:
        """True if the live workload must be replaced to match this one."""
        return self.differences(live) != []

    def differences(self, live: "WorkloadDescriptor") -> list[str]:
        """Names of the fields that differ from a live workload."""
        fields = ("image", "resources", "storage", "tls_secret", "cert_revision")
        return [f for f in fields if getattr(self, f) != getattr(live, f)]


@dataclass
class LiveWorkload:
    """
    A workload as observed on the platform.

    Attributes:
        descriptor: The descriptor the workload was last applied with.
        ready: Whether the platform reports the workload as ready.
    """

    descriptor: WorkloadDescriptor
    ready: bool = False

    @property
    def name(self) -> str:
        return self.descriptor.name
