"""
Operator Core Library

Reconciliation core of the search-cluster operator. This package provides:

- Data Types: ClusterSpec, NodePool, WorkloadDescriptor and the resource
- Topology planner with quorum and redundancy rules
- Certificate manager (self-managed PKI)
- Rollout sequencer and reconciler
- Local SQLite state store and Typer-based CLI
"""

__version__ = "0.1.0"

# Re-export public types for convenient imports
from escluster_core.config import OperatorSettings
from escluster_core.errors import (
    CACorruptionError,
    InvalidSpecError,
    OperatorError,
    PersistenceFailure,
    StepError,
    TransientError,
)
from escluster_core.resource import ClusterResource, ClusterStatus
from escluster_core.types import (
    ClusterSpec,
    LiveWorkload,
    ManagementState,
    NodePool,
    NodeRole,
    RedundancyPolicy,
    WorkloadDescriptor,
)

__all__ = [
    "__version__",
    # Settings
    "OperatorSettings",
    # Errors
    "OperatorError",
    "InvalidSpecError",
    "TransientError",
    "PersistenceFailure",
    "CACorruptionError",
    "StepError",
    # Resource
    "ClusterResource",
    "ClusterStatus",
    # Data Types
    "ClusterSpec",
    "NodePool",
    "NodeRole",
    "ManagementState",
    "RedundancyPolicy",
    "WorkloadDescriptor",
    "LiveWorkload",
]
