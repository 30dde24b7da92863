"""
Persistence and workload platform protocols.

These protocols describe the external collaborators the reconciler reads
from and writes to: the desired-state resource store, the secret store and
the workload platform. Object shapes specific to the core (resources,
descriptors) are typed as Any here so this package stays dependency-free.

Error contract for implementations:
- Reads that fail for infrastructure reasons raise a transient error
- Writes that fail raise a persistence failure
- write_secrets is atomic: readers see all of the batch or none of it
"""

from typing import Any, Protocol, runtime_checkable

from escluster_protocols.types import ClusterKey, Secret


@runtime_checkable
class ClusterStoreProtocol(Protocol):
    """Protocol for the desired-state resource store."""

    async def list_clusters(self) -> list[ClusterKey]:
        """List keys of every known cluster resource."""
        ...

    async def get_cluster(self, key: ClusterKey) -> Any | None:
        """Load a cluster resource, or None if it no longer exists."""
        ...

    async def update_status(self, key: ClusterKey, status: Any) -> None:
        """Persist the status subresource of a cluster."""
        ...

    async def remove_cluster(self, key: ClusterKey) -> None:
        """Forget a cluster after teardown completed."""
        ...


@runtime_checkable
class SecretStoreProtocol(Protocol):
    """Protocol for the named secret store."""

    async def get_secret(self, namespace: str, name: str) -> Secret | None:
        """Load one secret by name."""
        ...

    async def list_secrets(self, namespace: str, prefix: str) -> list[Secret]:
        """List secrets whose name starts with prefix."""
        ...

    async def write_secrets(self, secrets: list[Secret]) -> None:
        """Create or replace a batch of secrets atomically."""
        ...

    async def delete_secrets(self, namespace: str, names: list[str]) -> int:
        """Delete secrets by name, returning how many existed."""
        ...


@runtime_checkable
class WorkloadClientProtocol(Protocol):
    """Protocol for the platform that runs cluster nodes."""

    async def list_workloads(self, namespace: str, cluster: str) -> list[Any]:
        """List live workloads owned by a cluster."""
        ...

    async def apply_workload(self, descriptor: Any) -> None:
        """Create or replace (restart) one workload. Idempotent."""
        ...

    async def delete_workload(self, descriptor: Any) -> None:
        """Delete one workload. Deleting a missing workload is a no-op."""
        ...
