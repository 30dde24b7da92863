"""
Protocol definitions for the search-cluster operator.

This package provides the structural Protocols every external collaborator
of the reconciliation core implements. It has zero dependencies on other
escluster-* packages.

Key protocols:
- ClusterStoreProtocol: Desired-state resource store
- SecretStoreProtocol: Named secret store for PKI material
- WorkloadClientProtocol: Platform that runs cluster nodes
- HealthProberProtocol: Live cluster health observation
- ClusterAdminProtocol: Settings changes pushed to the live cluster

Key types:
- ClusterHealth, HealthSnapshot, NodeReadiness
- ClusterKey, Secret, ClientCredentials
"""

from escluster_protocols.health import (
    ClusterAdminProtocol,
    ClusterConnectionProtocol,
    ConnectionFactory,
    HealthProberProtocol,
)
from escluster_protocols.stores import (
    ClusterStoreProtocol,
    SecretStoreProtocol,
    WorkloadClientProtocol,
)
from escluster_protocols.types import (
    ClientCredentials,
    ClusterHealth,
    ClusterKey,
    HealthSnapshot,
    NodeReadiness,
    Secret,
)

__all__ = [
    # Protocols
    "ClusterStoreProtocol",
    "SecretStoreProtocol",
    "WorkloadClientProtocol",
    "HealthProberProtocol",
    "ClusterAdminProtocol",
    "ClusterConnectionProtocol",
    "ConnectionFactory",
    # Data types
    "ClusterHealth",
    "ClusterKey",
    "HealthSnapshot",
    "NodeReadiness",
    "Secret",
    "ClientCredentials",
]
