"""Tests for change ordering between plan and live workloads."""

from conftest import make_pool, make_spec
from escluster_core.rollout import CERT_ROTATION, ChangeKind, compute_changes
from escluster_core.topology import plan_topology
from escluster_core.types import LiveWorkload


def _plan(*pools, **kwargs):
    return plan_topology(make_spec(*pools, **kwargs), "es", "logging", cluster_uid="uid")


def _live_from(plan):
    return [LiveWorkload(descriptor=w, ready=True) for w in plan.workloads]


class TestComputeChanges:
    """Tests for compute_changes()."""

    def test_converged_is_empty(self):
        plan = _plan(make_pool(count=3))

        assert compute_changes(plan, _live_from(plan)) == []

    def test_fresh_cluster_creates_everything_in_plan_order(self):
        plan = _plan(make_pool("m", ("master",), 3), make_pool("d", ("data",), 2))

        changes = compute_changes(plan, [])

        assert [c.kind for c in changes] == [ChangeKind.CREATE] * 5
        assert [c.name for c in changes] == [w.name for w in plan.workloads]
        assert all(c.reason == "scale-up" for c in changes)

    def test_scale_down_removes_highest_ordinal_first(self):
        before = _plan(make_pool(count=5))
        after = _plan(make_pool(count=3))

        changes = compute_changes(after, _live_from(before))

        assert [c.kind for c in changes] == [ChangeKind.DELETE, ChangeKind.DELETE]
        assert [c.descriptor.ordinal for c in changes] == [4, 3]
        assert all(c.reason == "scale-down" for c in changes)

    def test_scale_ups_before_scale_downs(self):
        """Replacing a pool adds the new nodes before removing the old ones."""
        before = _plan(make_pool("old", count=3))
        after = _plan(make_pool("new", count=3))

        changes = compute_changes(after, _live_from(before))

        kinds = [c.kind for c in changes]
        assert kinds == [ChangeKind.CREATE] * 3 + [ChangeKind.DELETE] * 3

    def test_non_master_deletes_before_master(self):
        before = _plan(make_pool("m", ("master",), 3), make_pool("d", ("data",), 3))
        after = _plan(make_pool("m", ("master",), 1), make_pool("d", ("data",), 1))

        changes = compute_changes(after, _live_from(before))

        masters = [c.descriptor.is_master for c in changes]
        assert masters == [False, False, True, True]

    def test_non_master_updates_before_master(self):
        pools = (make_pool("m", ("master",), 2), make_pool("d", ("data",), 2))
        before = _plan(*pools, image="es:6.7")
        after = _plan(*pools, image="es:6.8")

        changes = compute_changes(after, _live_from(before))

        assert all(c.kind is ChangeKind.UPDATE for c in changes)
        assert [c.descriptor.pool for c in changes] == ["d", "d", "m", "m"]
        assert all(c.reason == "image" for c in changes)

    def test_cert_revision_change_is_rotation(self):
        plan = _plan(make_pool(count=3))
        before = plan.with_certificates("es", "elasticsearch.v1+logging-es.v1")
        after = plan.with_certificates("es", "elasticsearch.v2+logging-es.v1")

        changes = compute_changes(after, _live_from(before))

        assert len(changes) == 3
        assert all(c.reason == CERT_ROTATION for c in changes)
        assert all(c.destructive for c in changes)

    def test_describe(self):
        plan = _plan(make_pool(count=1))

        change = compute_changes(plan, [])[0]

        assert change.describe() == f"create {change.name} (scale-up)"
        assert not change.destructive
