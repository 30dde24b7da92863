"""Tests for the ControllerLoop daemon."""

import asyncio

import pytest

from conftest import make_pool, make_resource, make_spec
from escluster_core.errors import TransientError
from escluster_core.reconcile import ControllerLoop, ReconcileResult, Reconciler
from escluster_protocols import ClusterKey


class RecordingReconciler:
    """Reconciler stand-in recording the keys it is called with."""

    def __init__(self, requeue_after: float | None = None):
        self.requeue_after = requeue_after
        self.calls: list[ClusterKey] = []

    async def reconcile(self, key: ClusterKey) -> ReconcileResult:
        self.calls.append(key)
        return ReconcileResult(requeue_after=self.requeue_after)


async def wait_until(predicate, timeout: float = 2.0) -> None:
    async def _poll():
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(_poll(), timeout=timeout)


class TestRunOnce:
    """Tests for a single concurrent pass over every cluster."""

    @pytest.mark.asyncio
    async def test_reconciles_every_cluster(self, ctx, store, clock):
        store.put(make_resource(make_spec(make_pool(count=1)), name="one"))
        store.put(make_resource(make_spec(make_pool(count=1)), name="two"))
        loop = ControllerLoop(Reconciler(ctx), store)

        results = await loop.run_once()

        assert set(results) == {ClusterKey("logging", "one"), ClusterKey("logging", "two")}
        assert all(r.error is None for r in results.values())
        assert all(r.requeue_after == 0 for r in results.values())

    @pytest.mark.asyncio
    async def test_clusters_are_isolated(self, ctx, store):
        """An invalid cluster does not affect its neighbour."""
        store.put(make_resource(make_spec(make_pool(count=1)), name="good"))
        store.put(make_resource(make_spec(make_pool("d", ("data",), 1)), name="bad"))
        loop = ControllerLoop(Reconciler(ctx), store)

        results = await loop.run_once()

        assert results[ClusterKey("logging", "bad")].error is not None
        assert results[ClusterKey("logging", "good")].error is None


class TestRun:
    """Tests for the long-running loop."""

    @pytest.mark.asyncio
    async def test_runs_until_stopped(self, store):
        store.put(make_resource(name="one"))
        reconciler = RecordingReconciler()
        loop = ControllerLoop(reconciler, store, resync_interval=0.01, discovery_interval=0.01)

        task = asyncio.create_task(loop.run())
        await wait_until(lambda: len(reconciler.calls) >= 3)
        loop.stop()
        await asyncio.wait_for(task, timeout=2.0)

        assert set(reconciler.calls) == {ClusterKey("logging", "one")}
        assert loop._workers == {}

    @pytest.mark.asyncio
    async def test_discovers_new_and_drops_removed_clusters(self, store):
        store.put(make_resource(name="one"))
        reconciler = RecordingReconciler(requeue_after=60.0)
        loop = ControllerLoop(reconciler, store, discovery_interval=0.01)

        task = asyncio.create_task(loop.run())
        await wait_until(lambda: ClusterKey("logging", "one") in loop._workers)
        store.put(make_resource(name="two"))
        await wait_until(lambda: ClusterKey("logging", "two") in reconciler.calls)
        del store.clusters[ClusterKey("logging", "one")]
        await wait_until(lambda: ClusterKey("logging", "one") not in loop._workers)
        loop.stop()
        await asyncio.wait_for(task, timeout=2.0)

        assert reconciler.calls.count(ClusterKey("logging", "one")) == 1

    @pytest.mark.asyncio
    async def test_wake_runs_pass_early(self, store):
        key = ClusterKey("logging", "one")
        store.put(make_resource(name="one"))
        reconciler = RecordingReconciler(requeue_after=60.0)
        loop = ControllerLoop(reconciler, store, discovery_interval=0.01)

        task = asyncio.create_task(loop.run())
        await wait_until(lambda: len(reconciler.calls) == 1)
        loop.wake(key)
        await wait_until(lambda: len(reconciler.calls) == 2)
        loop.stop()
        await asyncio.wait_for(task, timeout=2.0)

    @pytest.mark.asyncio
    async def test_listing_failure_keeps_running(self, store):
        reconciler = RecordingReconciler()
        loop = ControllerLoop(reconciler, store, discovery_interval=0.01)
        failures = []

        async def flaky():
            if len(failures) < 2:
                failures.append(1)
                raise TransientError("store unreachable")
            return [ClusterKey("logging", "one")]

        store.list_clusters = flaky

        task = asyncio.create_task(loop.run())
        await wait_until(lambda: reconciler.calls)
        loop.stop()
        await asyncio.wait_for(task, timeout=2.0)

        assert len(failures) == 2
