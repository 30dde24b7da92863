"""
Diff target topology against live workloads.

Ordering is what keeps quorum and data availability intact while changes
are outstanding:
1. Creates, in plan order (scale-ups before any scale-down)
2. Updates, non-master before master
3. Deletes, non-master before master, highest ordinal first
"""

from typing import Iterable

from escluster_core.rollout.types import ChangeKind, WorkloadChange
from escluster_core.topology.planner import TopologyPlan
from escluster_core.types import LiveWorkload, WorkloadDescriptor

CERT_ROTATION = "cert-rotation"


def update_reason(target: WorkloadDescriptor, live: WorkloadDescriptor) -> str:
    """Reason recorded on an update: cert-rotation or the changed fields."""
    fields = target.differences(live)
    if "cert_revision" in fields:
        return CERT_ROTATION
    return ",".join(fields)


def compute_changes(plan: TopologyPlan, live: Iterable[LiveWorkload]) -> list[WorkloadChange]:
    """
    Build the ordered change list that converges live onto plan.

    Returns:
        Changes in the order they must be applied; empty when converged.
    """
    live_by_name = {w.name: w.descriptor for w in live}
    target_names = {d.name for d in plan.workloads}

    creates = [
        WorkloadChange(kind=ChangeKind.CREATE, descriptor=d, reason="scale-up")
        for d in plan.workloads
        if d.name not in live_by_name
    ]

    updates = [
        WorkloadChange(
            kind=ChangeKind.UPDATE,
            descriptor=d,
            reason=update_reason(d, live_by_name[d.name]),
        )
        for d in plan.workloads
        if d.name in live_by_name and d.needs_update(live_by_name[d.name])
    ]
    # Stable sort keeps plan order within each group
    updates.sort(key=lambda c: c.descriptor.is_master)

    removed = [d for name, d in live_by_name.items() if name not in target_names]
    removed.sort(key=lambda d: (d.is_master, d.pool, -d.ordinal, d.name))
    deletes = [
        WorkloadChange(kind=ChangeKind.DELETE, descriptor=d, reason="scale-down")
        for d in removed
    ]

    return creates + updates + deletes
