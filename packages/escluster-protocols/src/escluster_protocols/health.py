"""
Health and administration protocols for the managed cluster.

The HealthProberProtocol defines read-only health observation; the
ClusterAdminProtocol defines the settings changes the reconciler pushes to
a live cluster. A ClusterConnectionProtocol bundles both for one endpoint,
and a ConnectionFactory opens one per reconciliation pass.
"""

from typing import Protocol, runtime_checkable

from escluster_protocols.types import ClientCredentials, HealthSnapshot


@runtime_checkable
class HealthProberProtocol(Protocol):
    """
    Protocol for cluster health probes.

    Implementations must:
    - Bound every remote call by a short timeout
    - Return an UNKNOWN snapshot (not raise) on connectivity failure
    - Never retry internally; backoff belongs to the caller
    """

    async def status(self) -> HealthSnapshot:
        """
        Observe current cluster health and node readiness.

        Returns:
            HealthSnapshot with classified health and per-node readiness.
        """
        ...


@runtime_checkable
class ClusterAdminProtocol(Protocol):
    """Protocol for settings changes applied through the admin API."""

    async def set_replica_count(self, replicas: int) -> None:
        """
        Apply the replica-shard count to existing and future indices.

        Args:
            replicas: Number of replica shards per primary.
        """
        ...


@runtime_checkable
class ClusterConnectionProtocol(Protocol):
    """An open admin connection to one cluster endpoint."""

    prober: HealthProberProtocol
    admin: ClusterAdminProtocol

    async def aclose(self) -> None:
        """Release the underlying transport."""
        ...


class ConnectionFactory(Protocol):
    """Callable that opens a ClusterConnectionProtocol for an endpoint."""

    def __call__(
        self, endpoint: str, credentials: ClientCredentials
    ) -> ClusterConnectionProtocol:
        ...
