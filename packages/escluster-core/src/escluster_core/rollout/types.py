"""
Rollout state machine types.

RolloutState is persisted on the cluster status between reconciliation
passes, so it is a pydantic model: everything the sequencer needs to resume
after a restart (queue, cursor, backoff counter) lives in it.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from escluster_core.types import WorkloadDescriptor


class RolloutPhase(str, Enum):
    """Phases of the rollout sequencer."""

    IDLE = "Idle"
    DIFFING = "Diffing"
    APPLYING = "Applying"
    AWAITING_HEALTH = "AwaitingHealth"
    PAUSED = "Paused"
    FAILED = "Failed"


class ChangeKind(str, Enum):
    """What a single rollout step does to one workload."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class WorkloadChange(BaseModel):
    """
    One queued workload change.

    Attributes:
        kind: Create, update or delete.
        descriptor: Target descriptor (the live one for deletes).
        reason: Why the change exists, e.g. "scale-up" or "cert-rotation".
    """

    kind: ChangeKind
    descriptor: WorkloadDescriptor
    reason: str = ""

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def destructive(self) -> bool:
        """True if the step takes a running node down."""
        return self.kind is not ChangeKind.CREATE

    def describe(self) -> str:
        suffix = f" ({self.reason})" if self.reason else ""
        return f"{self.kind.value} {self.name}{suffix}"


class RolloutState(BaseModel):
    """
    Persisted progress of a rollout.

    Attributes:
        phase: Current phase.
        queue: Ordered changes of the current rollout.
        cursor: Index of the change being applied or awaited.
        attempt: Backoff counter of the current step.
        target_revision: Plan revision the queue was diffed against.
        baseline_masters: Master count observed when the queue was diffed.
        awaiting_since: When the current step entered AwaitingHealth.
        last_step: Description of the last applied change.
        deferred_reason: Why the current step is held back, if it is.
        transient_failures: Consecutive transient failures of the current step.
        health_wait_exceeded: The current step waited longer than max wait.
        last_error: Last error message, if any.
    """

    phase: RolloutPhase = RolloutPhase.IDLE
    queue: list[WorkloadChange] = Field(default_factory=list)
    cursor: int = 0
    attempt: int = 0
    target_revision: str = ""
    baseline_masters: int = 0
    awaiting_since: datetime | None = None
    last_step: str = ""
    deferred_reason: str = ""
    transient_failures: int = 0
    health_wait_exceeded: bool = False
    last_error: str = ""

    def current(self) -> WorkloadChange | None:
        """The change at the cursor, or None when the queue is exhausted."""
        if 0 <= self.cursor < len(self.queue):
            return self.queue[self.cursor]
        return None

    @property
    def remaining(self) -> int:
        return max(0, len(self.queue) - self.cursor)

    def reset_step(self) -> None:
        """Clear per-step bookkeeping before moving to another step."""
        self.attempt = 0
        self.awaiting_since = None
        self.deferred_reason = ""
        self.transient_failures = 0
        self.health_wait_exceeded = False
        self.last_error = ""
