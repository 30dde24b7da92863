"""
Desired-state resource and its status subresource.

ClusterResource parses documents in the custom-resource shape:

    apiVersion: logging.escluster.io/v1
    kind: Elasticsearch
    metadata: {name: elasticsearch, namespace: logging}
    spec:
      redundancyPolicy: SingleRedundancy
      nodes:
        - name: cdm
          roles: [client, data, master]
          nodeCount: 3

ClusterStatus is written back by the reconciler after every pass. It also
carries what the next pass needs: pool generation records and the
persisted RolloutState.
"""

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

import yaml
from pydantic import Field

from escluster_core.rollout.types import RolloutState
from escluster_core.types import ClusterSpec, PoolGeneration, _Model
from escluster_protocols import ClusterKey

API_VERSION = "logging.escluster.io/v1"
KIND = "Elasticsearch"


class ClusterPhase(str, Enum):
    """Coarse, user-facing state of a cluster."""

    PENDING = "Pending"
    READY = "Ready"
    ROLLING_OUT = "RollingOut"
    DEGRADED = "Degraded"
    PAUSED = "Paused"
    FAILED = "Failed"


class ConditionType(str, Enum):
    """Status conditions the reconciler maintains."""

    INVALID_SPEC = "InvalidSpec"
    CA_CORRUPTED = "CACorrupted"
    UNMANAGED = "Unmanaged"
    REDUNDANCY_DEGRADED = "RedundancyDegraded"
    QUORUM_DEFERRED = "QuorumDeferred"
    HEALTH_DEFERRED = "HealthDeferred"
    HEALTH_WAIT_EXCEEDED = "HealthWaitExceeded"
    TRANSIENT_RETRY_EXHAUSTED = "TransientRetryExhausted"
    PERSISTENCE_BLOCKED = "PersistenceBlocked"
    STEP_FAILED = "StepFailed"


class Condition(_Model):
    """
    One observation about the cluster, as on platform status objects.

    Attributes:
        type: Condition type.
        status: "True" or "False".
        reason: CamelCase machine-readable reason.
        message: Human-readable details.
        last_transition: When status last changed.
    """

    type: ConditionType
    status: str = "True"
    reason: str = ""
    message: str = ""
    last_transition: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), alias="lastTransitionTime"
    )


class ClusterStatus(_Model):
    """
    Status subresource of a cluster.

    Attributes:
        phase: Coarse state.
        pools: Live workload count per pool.
        generations: Generation record per pool (names stay stable).
        replicas: Replica count last applied to the cluster, if any.
        cert_versions: Current certificate version per identity.
        rollout: Persisted rollout progress.
        conditions: Active conditions.
        observed_revision: Plan revision of the last successful plan.
        last_reconciled: Time of the last completed pass.
    """

    phase: ClusterPhase = ClusterPhase.PENDING
    pools: dict[str, int] = Field(default_factory=dict)
    generations: dict[str, PoolGeneration] = Field(default_factory=dict)
    replicas: int | None = None
    cert_versions: dict[str, int] = Field(default_factory=dict, alias="certVersions")
    rollout: RolloutState = Field(default_factory=RolloutState)
    conditions: list[Condition] = Field(default_factory=list)
    observed_revision: str = Field(default="", alias="observedRevision")
    last_reconciled: datetime | None = Field(default=None, alias="lastReconciled")

    def get_condition(self, type: ConditionType) -> Condition | None:
        return next((c for c in self.conditions if c.type is type), None)

    def has_condition(self, type: ConditionType) -> bool:
        return self.get_condition(type) is not None

    def set_condition(self, type: ConditionType, reason: str, message: str = "") -> None:
        """Add or refresh a condition, keeping its transition time if unchanged."""
        current = self.get_condition(type)
        if current is not None:
            current.reason = reason
            current.message = message
            return
        self.conditions.append(Condition(type=type, reason=reason, message=message))

    def clear_condition(self, type: ConditionType) -> None:
        self.conditions = [c for c in self.conditions if c.type is not type]


class ClusterMeta(_Model):
    """Resource metadata."""

    name: str
    namespace: str = "default"
    uid: str = ""
    deletion_requested: bool = Field(default=False, alias="deletionRequested")


class ClusterResource(_Model):
    """A desired-state resource: metadata, spec and status."""

    api_version: str = Field(default=API_VERSION, alias="apiVersion")
    kind: str = KIND
    metadata: ClusterMeta
    spec: ClusterSpec = Field(default_factory=ClusterSpec)
    status: ClusterStatus = Field(default_factory=ClusterStatus)

    @property
    def key(self) -> ClusterKey:
        return ClusterKey(namespace=self.metadata.namespace, name=self.metadata.name)


def load_resource(path: Path) -> ClusterResource:
    """Load and validate a cluster resource from a YAML (or JSON) file.

    Raises:
        FileNotFoundError: If file doesn't exist
        pydantic.ValidationError: If the document doesn't match the schema
    """
    with open(path) as f:
        data = yaml.safe_load(f)
    return ClusterResource.model_validate(data)
