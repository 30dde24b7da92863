"""
Master quorum rules.

Quorum is never stored. It is derived on every reconciliation pass from
the live master workloads and the master count recorded when the current
rollout was diffed, so a multi-step scale-down cannot erode the floor one
step at a time.
"""

from dataclasses import dataclass
from typing import Iterable

from escluster_core.types import LiveWorkload
from escluster_protocols import NodeReadiness


def quorum_for(master_count: int) -> int:
    """Minimum voting members that avoid split-brain: floor(n/2)+1."""
    return master_count // 2 + 1


@dataclass(frozen=True)
class QuorumRequirement:
    """Quorum implied by a planned topology."""

    master_count: int
    quorum: int

    @classmethod
    def for_masters(cls, master_count: int) -> "QuorumRequirement":
        return cls(master_count=master_count, quorum=quorum_for(master_count))


@dataclass(frozen=True)
class QuorumState:
    """
    Quorum view of the live cluster at one instant.

    Attributes:
        master_count: Voting membership the floor is computed from.
        ready_masters: Master workloads currently ready.
    """

    master_count: int
    ready_masters: int

    @property
    def quorum(self) -> int:
        return quorum_for(self.master_count)

    def may_take_down(self, target_ready: bool) -> bool:
        """
        Whether one master may be removed or restarted.

        Args:
            target_ready: Whether the master being taken down is ready.
                Taking down a master that is already not ready does not
                reduce the ready count.
        """
        remaining = self.ready_masters - (1 if target_ready else 0)
        return remaining >= self.quorum

    @classmethod
    def observe(
        cls,
        live: Iterable[LiveWorkload],
        nodes: Iterable[NodeReadiness] = (),
        baseline: int = 0,
    ) -> "QuorumState":
        """
        Derive quorum state from live workloads.

        Args:
            live: Live workloads of the cluster.
            nodes: Node readiness from the health probe. When present, a
                master counts as ready only if a joined node belongs to it.
            baseline: Master count recorded at the start of the rollout.
        """
        masters = [w for w in live if w.descriptor.is_master]
        joined = [n.name for n in nodes if n.ready]
        ready = sum(1 for w in masters if is_ready(w, joined))
        return cls(master_count=max(baseline, len(masters)), ready_masters=ready)


def is_ready(workload: LiveWorkload, joined: list[str]) -> bool:
    """
    Whether a workload is ready, cross-checked against joined node names.

    Node names are pod names, which start with the workload name. An empty
    joined list means no probe data is available and the platform's own
    readiness is trusted.
    """
    if not workload.ready:
        return False
    if not joined:
        return True
    return any(n == workload.name or n.startswith(f"{workload.name}-") for n in joined)
