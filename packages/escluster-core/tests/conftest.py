"""
Shared fixtures and in-memory fakes for operator-core tests.

The fakes implement the escluster_protocols seams with plain dicts so the
planner, certificate manager, sequencer and reconciler can be driven end
to end without a platform or a live cluster.
"""

from datetime import datetime, timedelta, timezone

import pytest

from escluster_core.config import OperatorSettings
from escluster_core.context import OperatorContext
from escluster_core.errors import PersistenceFailure
from escluster_core.resource import ClusterMeta, ClusterResource
from escluster_core.rollout import RetryConfig, RolloutPolicy
from escluster_core.types import ClusterSpec, LiveWorkload, NodePool, NodeRole, WorkloadDescriptor
from escluster_protocols import (
    ClusterHealth,
    ClusterKey,
    HealthSnapshot,
    NodeReadiness,
    Secret,
)

TEST_KEY_SIZE = 1024


class FakeClock:
    """Controllable UTC clock."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeWorkloads:
    """WorkloadClientProtocol over a dict, recording every call."""

    def __init__(self, auto_ready: bool = True):
        self.auto_ready = auto_ready
        self.live: dict[str, LiveWorkload] = {}
        self.history: list[tuple[str, str]] = []
        self.errors: list[Exception] = []
        self.observers: list = []

    async def list_workloads(self, namespace: str, cluster: str) -> list[LiveWorkload]:
        return [
            LiveWorkload(descriptor=w.descriptor, ready=w.ready)
            for w in self.live.values()
            if w.descriptor.namespace == namespace and w.descriptor.cluster == cluster
        ]

    async def apply_workload(self, descriptor: WorkloadDescriptor) -> None:
        self._maybe_fail()
        self.live[descriptor.name] = LiveWorkload(descriptor=descriptor, ready=self.auto_ready)
        self._record("apply", descriptor.name)

    async def delete_workload(self, descriptor: WorkloadDescriptor) -> None:
        self._maybe_fail()
        self.live.pop(descriptor.name, None)
        self._record("delete", descriptor.name)

    def seed(self, descriptors, ready: bool = True) -> None:
        for d in descriptors:
            self.live[d.name] = LiveWorkload(descriptor=d, ready=ready)

    def set_ready(self, name: str, ready: bool = True) -> None:
        self.live[name].ready = ready

    def ready_masters(self) -> int:
        return sum(1 for w in self.live.values() if w.descriptor.is_master and w.ready)

    def _maybe_fail(self) -> None:
        if self.errors:
            raise self.errors.pop(0)

    def _record(self, op: str, name: str) -> None:
        self.history.append((op, name))
        for observer in self.observers:
            observer(op, name, self)


class FakeProber:
    """
    HealthProberProtocol returning a fixed health.

    When workloads are attached, every ready workload is reported as a
    joined node named after it.
    """

    def __init__(self, health: ClusterHealth = ClusterHealth.GREEN, workloads: FakeWorkloads | None = None):
        self.health = health
        self.workloads = workloads
        self.relocating = 0
        self.calls = 0

    async def status(self) -> HealthSnapshot:
        self.calls += 1
        if self.health is ClusterHealth.UNKNOWN:
            return HealthSnapshot.unknown("unreachable")
        nodes = []
        if self.workloads is not None:
            nodes = [
                NodeReadiness(name=w.name, master_eligible=w.descriptor.is_master)
                for w in self.workloads.live.values()
                if w.ready
            ]
        return HealthSnapshot(health=self.health, nodes=nodes, relocating_shards=self.relocating)


class FakeAdmin:
    """ClusterAdminProtocol recording replica changes."""

    def __init__(self):
        self.replicas: list[int] = []

    async def set_replica_count(self, replicas: int) -> None:
        self.replicas.append(replicas)


class FakeConnection:
    """ClusterConnectionProtocol bundling a fake prober and admin."""

    def __init__(self, prober: FakeProber, admin: FakeAdmin):
        self.prober = prober
        self.admin = admin
        self.closed = False

    async def aclose(self) -> None:
        self.closed = True


class FakeSecrets:
    """SecretStoreProtocol over a dict; batches are all-or-nothing."""

    def __init__(self):
        self.secrets: dict[tuple[str, str], Secret] = {}
        self.fail_writes = False
        self.batches: list[list[str]] = []

    async def get_secret(self, namespace: str, name: str) -> Secret | None:
        return self.secrets.get((namespace, name))

    async def list_secrets(self, namespace: str, prefix: str) -> list[Secret]:
        return sorted(
            (s for (ns, n), s in self.secrets.items() if ns == namespace and n.startswith(prefix)),
            key=lambda s: s.name,
        )

    async def write_secrets(self, secrets: list[Secret]) -> None:
        if self.fail_writes:
            raise PersistenceFailure("secret store unavailable")
        self.batches.append([s.name for s in secrets])
        for s in secrets:
            self.secrets[(s.namespace, s.name)] = s

    async def delete_secrets(self, namespace: str, names: list[str]) -> int:
        deleted = 0
        for name in names:
            if self.secrets.pop((namespace, name), None) is not None:
                deleted += 1
        return deleted

    def names(self, namespace: str = "logging") -> list[str]:
        return sorted(n for ns, n in self.secrets if ns == namespace)


class FakeStore:
    """ClusterStoreProtocol over a dict of resources."""

    def __init__(self):
        self.clusters: dict[ClusterKey, ClusterResource] = {}
        self.failing_updates = 0
        self.update_calls = 0

    def put(self, resource: ClusterResource) -> None:
        self.clusters[resource.key] = resource

    async def list_clusters(self) -> list[ClusterKey]:
        return list(self.clusters)

    async def get_cluster(self, key: ClusterKey) -> ClusterResource | None:
        resource = self.clusters.get(key)
        return resource.model_copy(deep=True) if resource else None

    async def update_status(self, key: ClusterKey, status) -> None:
        self.update_calls += 1
        if self.failing_updates > 0:
            self.failing_updates -= 1
            raise PersistenceFailure("status write rejected")
        if key in self.clusters:
            self.clusters[key].status = status.model_copy(deep=True)

    async def remove_cluster(self, key: ClusterKey) -> None:
        self.clusters.pop(key, None)


# =============================================================================
# Builders
# =============================================================================


def make_pool(
    name: str = "cdm",
    roles: tuple[str, ...] = ("client", "data", "master"),
    count: int = 3,
    **kwargs,
) -> NodePool:
    return NodePool(name=name, roles=[NodeRole(r) for r in roles], node_count=count, **kwargs)


def make_spec(*pools: NodePool, **kwargs) -> ClusterSpec:
    return ClusterSpec(node_pools=list(pools) or [make_pool()], **kwargs)


def make_resource(spec: ClusterSpec | None = None, name: str = "elasticsearch", namespace: str = "logging") -> ClusterResource:
    return ClusterResource(
        metadata=ClusterMeta(name=name, namespace=namespace, uid="uid-1234"),
        spec=spec or make_spec(),
    )


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def workloads() -> FakeWorkloads:
    return FakeWorkloads()


@pytest.fixture
def prober(workloads) -> FakeProber:
    return FakeProber(ClusterHealth.GREEN, workloads)


@pytest.fixture
def admin() -> FakeAdmin:
    return FakeAdmin()


@pytest.fixture
def secrets() -> FakeSecrets:
    return FakeSecrets()


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def policy() -> RolloutPolicy:
    """Deterministic policy: no jitter, short waits."""
    return RolloutPolicy(
        retry=RetryConfig(
            max_attempts=3,
            min_wait_seconds=1.0,
            max_wait_seconds=30.0,
            jitter_fraction=0.0,
        ),
        max_wait_seconds=60.0,
        deferral_seconds=15.0,
    )


@pytest.fixture
def settings(tmp_path) -> OperatorSettings:
    return OperatorSettings(
        cert_key_size=TEST_KEY_SIZE,
        backoff_min_seconds=1.0,
        backoff_max_seconds=30.0,
        backoff_jitter=0.0,
        health_max_wait_seconds=60.0,
        transient_retry_budget=3,
        persistence_failure_threshold=2,
        default_image="registry.local/elasticsearch:6.8",
        db_path=tmp_path / "state.db",
    )


@pytest.fixture
def connection(prober, admin) -> FakeConnection:
    return FakeConnection(prober, admin)


@pytest.fixture
def ctx(store, secrets, workloads, connection, settings, clock) -> OperatorContext:
    opened = []

    def connect(endpoint, credentials):
        opened.append((endpoint, credentials))
        return connection

    context = OperatorContext(
        store=store,
        secrets=secrets,
        workloads=workloads,
        connect=connect,
        settings=settings,
        clock=clock,
    )
    context.opened = opened
    return context
