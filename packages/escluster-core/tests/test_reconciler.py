"""
Tests for the reconciler.

Each test runs real passes against the in-memory fakes: planner, certificate
manager and sequencer are the production ones.
"""

from datetime import timedelta

import httpx
import pytest

from conftest import make_pool, make_resource, make_spec
from escluster_core.errors import (
    CACorruptionError,
    InvalidSpecError,
    PersistenceFailure,
    TransientError,
)
from escluster_core.reconcile import Reconciler
from escluster_core.resource import ClusterPhase, ConditionType
from escluster_core.rollout import RolloutPhase, RolloutState
from escluster_core.types import ManagementState, RedundancyPolicy
from escluster_elasticsearch import create_es_connection
from escluster_protocols import ClusterHealth, Secret

KEY_NAME = "elasticsearch"


async def converge(reconciler, key, clock, max_passes=20):
    """Run passes, advancing the clock by each requeue, until none is asked for."""
    results = []
    for _ in range(max_passes):
        result = await reconciler.reconcile(key)
        results.append(result)
        if result.requeue_after is None:
            break
        clock.advance(result.requeue_after)
    return results


@pytest.fixture
def reconciler(ctx) -> Reconciler:
    return Reconciler(ctx)


@pytest.fixture
def resource(store):
    r = make_resource(make_spec(make_pool(count=1)))
    store.put(r)
    return r


class TestConvergence:
    """Tests for a cluster reaching its declared topology."""

    @pytest.mark.asyncio
    async def test_fresh_cluster_converges(self, reconciler, resource, store, workloads, admin, connection, ctx, clock):
        results = await converge(reconciler, resource.key, clock)

        assert [r.error for r in results] == [None] * len(results)
        assert len(results) == 4
        status = store.clusters[resource.key].status
        assert status.phase is ClusterPhase.READY
        assert status.rollout.phase is RolloutPhase.IDLE
        assert status.pools == {"cdm": 1}
        assert status.replicas == 0
        assert status.cert_versions == {
            "elasticsearch": 1,
            "logging-es": 1,
            "system.admin": 1,
            "kibana-internal": 1,
        }
        assert status.rollout.last_step.startswith("create elasticsearch-cdm-")
        assert admin.replicas == [0]
        assert connection.closed
        assert ctx.opened[0][0] == "https://elasticsearch.logging.svc:9200"

    @pytest.mark.asyncio
    async def test_workloads_carry_default_image_and_certificates(self, reconciler, resource, workloads, clock, settings):
        await converge(reconciler, resource.key, clock)

        (live,) = workloads.live.values()
        assert live.descriptor.image == settings.default_image
        assert live.descriptor.tls_secret == KEY_NAME
        assert live.descriptor.cert_revision == "elasticsearch.v1+logging-es.v1"

    @pytest.mark.asyncio
    async def test_one_transition_per_pass(self, reconciler, resource, store, workloads):
        """A pass never drains the queue."""
        store.put(make_resource(make_spec(make_pool(count=3))))

        for expected in (RolloutPhase.DIFFING, RolloutPhase.APPLYING, RolloutPhase.AWAITING_HEALTH):
            result = await reconciler.reconcile(resource.key)
            assert result.requeue_after is not None
            assert store.clusters[resource.key].status.rollout.phase is expected

        assert len(workloads.history) == 1
        assert store.clusters[resource.key].status.phase is ClusterPhase.ROLLING_OUT

    @pytest.mark.asyncio
    async def test_generations_recorded_and_stable(self, reconciler, resource, store, workloads, clock):
        await converge(reconciler, resource.key, clock)
        names = set(workloads.live)

        await converge(reconciler, resource.key, clock)

        assert set(workloads.live) == names
        assert "cdm" in store.clusters[resource.key].status.generations

    @pytest.mark.asyncio
    async def test_missing_resource_is_noop(self, reconciler, resource, store):
        store.clusters.clear()

        result = await reconciler.reconcile(resource.key)

        assert result.requeue_after is None
        assert result.error is None


class TestUnmanaged:
    @pytest.mark.asyncio
    async def test_pending_diff_left_untouched(self, reconciler, store, secrets, workloads, prober):
        """Unmanaged keeps the rollout state exactly and reports Paused."""
        resource = make_resource(make_spec(make_pool(count=3), management_state=ManagementState.UNMANAGED))
        resource.status.rollout = RolloutState(
            phase=RolloutPhase.APPLYING,
            queue=[],
            cursor=0,
            target_revision="abc",
            baseline_masters=3,
        )
        store.put(resource)
        before = resource.status.rollout.model_copy(deep=True)

        result = await reconciler.reconcile(resource.key)

        status = store.clusters[resource.key].status
        assert result.requeue_after is None
        assert status.rollout == before
        assert status.phase is ClusterPhase.PAUSED
        assert status.has_condition(ConditionType.UNMANAGED)
        assert workloads.history == []
        assert secrets.names() == []
        assert prober.calls == 0

    @pytest.mark.asyncio
    async def test_returning_to_managed_resumes(self, reconciler, store, clock):
        resource = make_resource(make_spec(make_pool(count=1), management_state=ManagementState.UNMANAGED))
        store.put(resource)
        await reconciler.reconcile(resource.key)

        store.clusters[resource.key].spec.management_state = ManagementState.MANAGED
        await converge(reconciler, resource.key, clock)

        status = store.clusters[resource.key].status
        assert not status.has_condition(ConditionType.UNMANAGED)
        assert status.phase is ClusterPhase.READY


class TestFatalErrors:
    """InvalidSpec and CA corruption halt the cluster with a condition."""

    @pytest.mark.asyncio
    async def test_invalid_spec_fails_without_changes(self, reconciler, store, workloads, secrets):
        resource = make_resource(make_spec(make_pool("data", ("data",), 3)))
        store.put(resource)

        result = await reconciler.reconcile(resource.key)

        assert isinstance(result.error, InvalidSpecError)
        assert result.requeue_after is None
        status = store.clusters[resource.key].status
        assert status.phase is ClusterPhase.FAILED
        assert status.rollout.phase is RolloutPhase.FAILED
        assert status.has_condition(ConditionType.INVALID_SPEC)
        assert workloads.history == []
        assert secrets.names() == []

    @pytest.mark.asyncio
    async def test_corrected_spec_recovers(self, reconciler, store, clock):
        resource = make_resource(make_spec(make_pool("data", ("data",), 3)))
        store.put(resource)
        await reconciler.reconcile(resource.key)

        store.clusters[resource.key].spec = make_spec(make_pool(count=1))
        results = await converge(reconciler, resource.key, clock)

        status = store.clusters[resource.key].status
        assert results[-1].error is None
        assert status.phase is ClusterPhase.READY
        assert not status.has_condition(ConditionType.INVALID_SPEC)

    @pytest.mark.asyncio
    async def test_corrupt_ca_halts(self, reconciler, resource, store, secrets, workloads):
        secrets.secrets[("logging", "elasticsearch-ca")] = Secret(
            namespace="logging",
            name="elasticsearch-ca",
            data={"ca.key": b"broken", "ca.crt": b"broken"},
        )

        result = await reconciler.reconcile(resource.key)

        assert isinstance(result.error, CACorruptionError)
        assert result.requeue_after is None
        status = store.clusters[resource.key].status
        assert status.phase is ClusterPhase.FAILED
        assert status.has_condition(ConditionType.CA_CORRUPTED)
        assert workloads.history == []
        assert secrets.names() == ["elasticsearch-ca"]


class TestPersistence:
    """Status writes that fail are retried before any further step."""

    @pytest.mark.asyncio
    async def test_failed_write_blocks_then_recovers(self, reconciler, resource, store):
        store.failing_updates = 2

        first = await reconciler.reconcile(resource.key)
        second = await reconciler.reconcile(resource.key)

        assert isinstance(first.error, PersistenceFailure)
        assert isinstance(second.error, PersistenceFailure)
        assert second.requeue_after > 0
        unsaved = reconciler._unsaved[resource.key]
        assert unsaved.has_condition(ConditionType.PERSISTENCE_BLOCKED)
        assert unsaved.rollout.phase is RolloutPhase.DIFFING

        third = await reconciler.reconcile(resource.key)

        assert third.error is None
        status = store.clusters[resource.key].status
        assert not status.has_condition(ConditionType.PERSISTENCE_BLOCKED)
        assert status.rollout.phase is RolloutPhase.APPLYING
        assert store.update_calls == 4
        assert resource.key not in reconciler._unsaved

    @pytest.mark.asyncio
    async def test_no_step_while_unsaved(self, reconciler, resource, store, workloads, clock):
        await reconciler.reconcile(resource.key)
        await reconciler.reconcile(resource.key)
        store.failing_updates = 1

        await reconciler.reconcile(resource.key)
        assert len(workloads.history) == 1
        store.failing_updates = 1
        await reconciler.reconcile(resource.key)

        assert len(workloads.history) == 1
        assert store.clusters[resource.key].status.rollout.phase is RolloutPhase.APPLYING

    @pytest.mark.asyncio
    async def test_secret_write_failure_requeues(self, reconciler, resource, secrets):
        secrets.fail_writes = True

        result = await reconciler.reconcile(resource.key)

        assert isinstance(result.error, PersistenceFailure)
        assert result.requeue_after == 1.0


class TestTransientFailures:
    @pytest.mark.asyncio
    async def test_retry_budget_surfaces_condition(self, reconciler, resource, store, workloads, clock):
        await reconciler.reconcile(resource.key)
        await reconciler.reconcile(resource.key)
        workloads.errors = [TransientError("platform unavailable")] * 3

        for _ in range(3):
            result = await reconciler.reconcile(resource.key)
            assert result.requeue_after is not None

        status = store.clusters[resource.key].status
        assert status.has_condition(ConditionType.TRANSIENT_RETRY_EXHAUSTED)
        assert status.phase is ClusterPhase.DEGRADED
        assert status.rollout.phase is RolloutPhase.APPLYING

        await converge(reconciler, resource.key, clock)

        status = store.clusters[resource.key].status
        assert not status.has_condition(ConditionType.TRANSIENT_RETRY_EXHAUSTED)
        assert status.phase is ClusterPhase.READY

    @pytest.mark.asyncio
    async def test_store_read_failure_requeues(self, reconciler, resource, store):
        async def unreachable(key):
            raise TransientError("store unreachable")

        store.get_cluster = unreachable

        result = await reconciler.reconcile(resource.key)

        assert isinstance(result.error, TransientError)
        assert result.requeue_after == 1.0


class TestHealthConditions:
    @pytest.mark.asyncio
    async def test_quorum_deferral_condition(self, reconciler, store, workloads, clock):
        resource = make_resource(make_spec(make_pool(count=3)))
        store.put(resource)
        await converge(reconciler, resource.key, clock)

        store.clusters[resource.key].spec = make_spec(make_pool(count=1))
        await converge(reconciler, resource.key, clock, max_passes=10)

        status = store.clusters[resource.key].status
        assert status.has_condition(ConditionType.QUORUM_DEFERRED)
        assert status.phase is ClusterPhase.ROLLING_OUT
        assert len(workloads.live) == 2

    @pytest.mark.asyncio
    async def test_health_wait_exceeded_is_degraded(self, reconciler, resource, store, prober, clock):
        for _ in range(3):
            await reconciler.reconcile(resource.key)
        prober.health = ClusterHealth.RED

        await converge(reconciler, resource.key, clock, max_passes=10)

        status = store.clusters[resource.key].status
        assert status.rollout.phase is RolloutPhase.AWAITING_HEALTH
        assert status.has_condition(ConditionType.HEALTH_WAIT_EXCEEDED)
        assert status.phase is ClusterPhase.DEGRADED


class TestReplicas:
    """Tests for applying the redundancy policy to the live cluster."""

    @pytest.mark.asyncio
    async def test_replicas_follow_policy(self, reconciler, store, admin, clock):
        resource = make_resource(make_spec(make_pool(count=3), redundancy_policy=RedundancyPolicy.SINGLE))
        store.put(resource)

        await converge(reconciler, resource.key, clock)

        assert admin.replicas == [1]
        assert store.clusters[resource.key].status.replicas == 1

    @pytest.mark.asyncio
    async def test_replicas_wait_for_health(self, reconciler, store, admin, prober, clock):
        """A policy change on an idle cluster is applied once health allows."""
        resource = make_resource(make_spec(make_pool(count=3)))
        store.put(resource)
        await converge(reconciler, resource.key, clock)
        assert admin.replicas == [0]

        store.clusters[resource.key].spec.redundancy_policy = RedundancyPolicy.SINGLE
        prober.health = ClusterHealth.RED
        await reconciler.reconcile(resource.key)

        assert admin.replicas == [0]
        assert store.clusters[resource.key].status.replicas == 0

        prober.health = ClusterHealth.GREEN
        await reconciler.reconcile(resource.key)

        assert admin.replicas == [0, 1]
        assert store.clusters[resource.key].status.replicas == 1

    @pytest.mark.asyncio
    async def test_rejected_replica_update_requeues(self, reconciler, resource, store, ctx, clock):
        """An admin API failure is retried on later passes, never raised."""
        settings_status = [503]

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/_cluster/health":
                return httpx.Response(200, json={"status": "green"})
            if request.url.path == "/_cat/nodes":
                return httpx.Response(200, json=[])
            if settings_status[0] != 200:
                return httpx.Response(settings_status[0], text="unavailable")
            return httpx.Response(200, json={"acknowledged": True})

        def connect(endpoint, credentials):
            http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=endpoint)
            return create_es_connection(endpoint, credentials, http=http)

        ctx.connect = connect
        results = []
        for _ in range(6):
            results.append(await reconciler.reconcile(resource.key))
            clock.advance(results[-1].requeue_after or 0)

        assert isinstance(results[-1].error, TransientError)
        assert "503" in str(results[-1].error)
        assert results[-1].requeue_after == 1.0
        status = store.clusters[resource.key].status
        assert status.rollout.phase is RolloutPhase.IDLE
        assert status.replicas is None

        settings_status[0] = 200
        result = await reconciler.reconcile(resource.key)

        assert result.error is None
        assert result.requeue_after is None
        assert store.clusters[resource.key].status.replicas == 0

    @pytest.mark.asyncio
    async def test_degraded_redundancy_condition(self, reconciler, resource, store, clock):
        store.clusters[resource.key].spec.redundancy_policy = RedundancyPolicy.SINGLE

        await converge(reconciler, resource.key, clock)

        status = store.clusters[resource.key].status
        assert status.has_condition(ConditionType.REDUNDANCY_DEGRADED)
        assert status.phase is ClusterPhase.DEGRADED


class TestCertificateRotation:
    """Expiring certificates roll the nodes like any other change."""

    @pytest.mark.asyncio
    async def test_expiring_certificates_roll_nodes(self, reconciler, resource, store, secrets, workloads, clock):
        await converge(reconciler, resource.key, clock)
        clock.advance(timedelta(days=710).total_seconds())

        results = await converge(reconciler, resource.key, clock)

        status = store.clusters[resource.key].status
        assert [r.error for r in results] == [None] * len(results)
        assert status.cert_versions == {
            "elasticsearch": 2,
            "logging-es": 2,
            "system.admin": 2,
            "kibana-internal": 2,
        }
        (live,) = workloads.live.values()
        assert live.descriptor.cert_revision == "elasticsearch.v2+logging-es.v2"
        assert status.rollout.last_step.endswith("(cert-rotation)")
        assert not any(name.endswith("-v1") for name in secrets.names())

    @pytest.mark.asyncio
    async def test_node_rotation_waits_for_idle(self, reconciler, resource, store, clock):
        """Node-mounted identities are not rotated mid-rollout."""
        await reconciler.reconcile(resource.key)
        clock.advance(timedelta(days=710).total_seconds())

        await reconciler.reconcile(resource.key)

        versions = store.clusters[resource.key].status.cert_versions
        assert versions["elasticsearch"] == 1
        assert versions["logging-es"] == 1
        assert versions["system.admin"] == 2


class TestTeardown:
    @pytest.mark.asyncio
    async def test_deletion_removes_everything(self, reconciler, resource, store, secrets, workloads, clock):
        await converge(reconciler, resource.key, clock)
        store.clusters[resource.key].metadata.deletion_requested = True

        result = await reconciler.reconcile(resource.key)

        assert result.requeue_after is None
        assert workloads.live == {}
        assert secrets.names() == []
        assert resource.key not in store.clusters

    @pytest.mark.asyncio
    async def test_deletion_cancels_rollout_in_any_phase(self, reconciler, store, workloads, prober, clock):
        resource = make_resource(make_spec(make_pool(count=3)))
        store.put(resource)
        for _ in range(3):
            await reconciler.reconcile(resource.key)
        prober.health = ClusterHealth.RED
        await reconciler.reconcile(resource.key)
        assert store.clusters[resource.key].status.rollout.phase is RolloutPhase.AWAITING_HEALTH

        store.clusters[resource.key].metadata.deletion_requested = True
        result = await reconciler.reconcile(resource.key)

        assert result.error is None
        assert workloads.live == {}
        assert resource.key not in store.clusters
