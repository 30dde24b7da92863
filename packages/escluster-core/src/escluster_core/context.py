"""
Operator context: every capability the reconciler needs, passed explicitly.

Built once at startup (by the CLI, or by a test) and threaded through
Reconciler and ControllerLoop. There is no process-wide registry of
clients or settings.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from escluster_core.config import OperatorSettings
from escluster_protocols import (
    ClusterStoreProtocol,
    ConnectionFactory,
    SecretStoreProtocol,
    WorkloadClientProtocol,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class OperatorContext:
    """
    Capabilities of one operator process.

    Attributes:
        store: Desired-state resources and their status.
        secrets: Secret store for PKI material.
        workloads: Platform running the cluster nodes.
        connect: Opens an admin connection to a cluster endpoint.
        settings: Operator settings.
        clock: Returns the current UTC time.
    """

    store: ClusterStoreProtocol
    secrets: SecretStoreProtocol
    workloads: WorkloadClientProtocol
    connect: ConnectionFactory
    settings: OperatorSettings = field(default_factory=OperatorSettings)
    clock: Callable[[], datetime] = utcnow
