"""
RolloutSequencer: the health-gated, one-change-at-a-time state machine.

Phases:
    Idle -> Diffing -> Applying -> AwaitingHealth -> Applying -> ... -> Idle

plus Paused (permanent step error, or Unmanaged) and Failed (invalid spec).

step() performs exactly one transition per call and never drains the queue,
which bounds every reconciliation pass and makes crash-resume trivial: the
returned RolloutState is persisted by the caller and the next pass picks up
at the same cursor.

Hard rules enforced here:
- A master is restarted or removed only if QuorumState allows it; otherwise
  the step is deferred (stays Applying, reason recorded). Never overridden.
- A destructive step needs health >= min_health beforehand, and
  >= data_removal_health before deleting a data node when the redundancy
  policy keeps replicas.
- A data node is never deleted while shards are relocating.
- AwaitingHealth never advances on RED or UNKNOWN, no matter how long it
  has waited. Exceeding max wait only raises a flag on the state.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from escluster_core.calls import bounded
from escluster_core.errors import PersistenceFailure, StepError, TransientError
from escluster_core.rollout.diff import compute_changes
from escluster_core.rollout.retry import RetryConfig
from escluster_core.rollout.types import ChangeKind, RolloutPhase, RolloutState, WorkloadChange
from escluster_core.topology.planner import TopologyPlan
from escluster_core.topology.quorum import QuorumState, is_ready
from escluster_core.types import LiveWorkload, RedundancyPolicy
from escluster_protocols import (
    ClusterHealth,
    HealthProberProtocol,
    HealthSnapshot,
    WorkloadClientProtocol,
)

logger = logging.getLogger(__name__)

QUORUM_DEFERRED = "quorum-deferred"
HEALTH_DEFERRED = "health-deferred"


@dataclass
class RolloutPolicy:
    """
    Tunable thresholds of the sequencer.

    Attributes:
        retry: Backoff for transient failures and health polling.
        max_wait_seconds: Health wait after which HealthWaitExceeded is set.
        deferral_seconds: Requeue interval of a deferred step.
        min_health: Health required before and after every step.
        data_removal_health: Health required before deleting a data node
            when the redundancy policy keeps replicas.
        single_master_restart: Allow restarting the only master of a
            single-master cluster (removing it is never allowed).
        probe_timeout: Bound on one health probe.
        call_timeout: Bound on one workload platform call.
    """

    retry: RetryConfig = field(default_factory=RetryConfig)
    max_wait_seconds: float = 600.0
    deferral_seconds: float = 15.0
    min_health: ClusterHealth = ClusterHealth.YELLOW
    data_removal_health: ClusterHealth = ClusterHealth.GREEN
    single_master_restart: bool = True
    probe_timeout: float = 5.0
    call_timeout: float = 10.0

    @classmethod
    def from_settings(cls, settings) -> "RolloutPolicy":
        """Build a policy from OperatorSettings."""
        return cls(
            retry=RetryConfig(
                max_attempts=settings.transient_retry_budget,
                min_wait_seconds=settings.backoff_min_seconds,
                max_wait_seconds=settings.backoff_max_seconds,
                exponential_base=settings.backoff_base,
                jitter_fraction=settings.backoff_jitter,
            ),
            max_wait_seconds=settings.health_max_wait_seconds,
            deferral_seconds=settings.deferral_requeue_seconds,
            min_health=settings.min_step_health,
            data_removal_health=settings.data_removal_health,
            single_master_restart=settings.single_master_restart,
            probe_timeout=settings.probe_timeout_seconds,
            call_timeout=settings.call_timeout_seconds,
        )


@dataclass
class StepOutcome:
    """
    Result of one sequencer transition.

    Attributes:
        state: State to persist.
        phase: Phase to report. Differs from state.phase only when the
            cluster is Unmanaged (state untouched, outcome Paused).
        requeue_after: Seconds until the next pass, None if no work remains.
        event: Short machine-readable name of what happened.
        message: Human-readable description.
    """

    state: RolloutState
    phase: RolloutPhase
    requeue_after: float | None = None
    event: str = ""
    message: str = ""

    @property
    def deferred(self) -> bool:
        return self.event in (QUORUM_DEFERRED, HEALTH_DEFERRED)


class RolloutSequencer:
    """
    Drives one cluster's rollout, one transition per step() call.

    The sequencer holds no state of its own between calls; everything lives
    in the RolloutState passed in and returned.

    Example:
        sequencer = RolloutSequencer(workloads, connection.prober, policy)
        outcome = await sequencer.step(status.rollout, plan, live)
        status.rollout = outcome.state
    """

    def __init__(
        self,
        workloads: WorkloadClientProtocol,
        prober: HealthProberProtocol,
        policy: RolloutPolicy | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.workloads = workloads
        self.prober = prober
        self.policy = policy or RolloutPolicy()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # -------------------------------------------------------------------------
    # Transitions that need no cluster access
    # -------------------------------------------------------------------------

    @staticmethod
    def pause(state: RolloutState, reason: str = "cluster is Unmanaged") -> StepOutcome:
        """Report Paused without touching state (Unmanaged clusters)."""
        return StepOutcome(state=state, phase=RolloutPhase.PAUSED, event="paused", message=reason)

    @staticmethod
    def fail(state: RolloutState, reason: str) -> StepOutcome:
        """Enter Failed and drop any queued changes (invalid spec)."""
        failed = state.model_copy(deep=True)
        failed.phase = RolloutPhase.FAILED
        failed.queue = []
        failed.cursor = 0
        failed.reset_step()
        failed.last_error = reason
        return StepOutcome(state=failed, phase=failed.phase, event="failed", message=reason)

    @staticmethod
    def cancel(state: RolloutState) -> StepOutcome:
        """Abandon the rollout from any phase (teardown)."""
        cancelled = RolloutState(last_step=state.last_step)
        return StepOutcome(
            state=cancelled,
            phase=RolloutPhase.IDLE,
            event="cancelled",
            message=f"cancelled with {state.remaining} change(s) outstanding",
        )

    # -------------------------------------------------------------------------
    # Main entry point
    # -------------------------------------------------------------------------

    async def step(
        self,
        state: RolloutState,
        plan: TopologyPlan,
        live: list[LiveWorkload],
    ) -> StepOutcome:
        """
        Perform exactly one transition.

        Args:
            state: Persisted rollout state (not mutated).
            plan: Target topology of this pass.
            live: Live workloads of the cluster.

        Returns:
            StepOutcome with the new state and requeue interval.
        """
        state = state.model_copy(deep=True)

        if state.phase is RolloutPhase.IDLE:
            return self._idle(state, plan, live)
        if state.phase is RolloutPhase.DIFFING:
            return self._diff(state, plan, live)
        if state.phase is RolloutPhase.APPLYING:
            return await self._apply(state, plan, live)
        if state.phase is RolloutPhase.AWAITING_HEALTH:
            return await self._await_health(state, plan, live)
        if state.phase is RolloutPhase.PAUSED:
            return self._paused(state, plan)
        # Failed: a plan exists again, so the spec was corrected
        state.phase = RolloutPhase.DIFFING
        state.last_error = ""
        return StepOutcome(state=state, phase=state.phase, requeue_after=0, event="recovered")

    # -------------------------------------------------------------------------
    # Phase handlers
    # -------------------------------------------------------------------------

    def _idle(self, state: RolloutState, plan: TopologyPlan, live: list[LiveWorkload]) -> StepOutcome:
        if not compute_changes(plan, live):
            state.target_revision = plan.revision
            return StepOutcome(state=state, phase=state.phase, event="converged")
        state.phase = RolloutPhase.DIFFING
        return StepOutcome(
            state=state,
            phase=state.phase,
            requeue_after=0,
            event="drift",
            message="live topology differs from plan",
        )

    def _diff(self, state: RolloutState, plan: TopologyPlan, live: list[LiveWorkload]) -> StepOutcome:
        changes = compute_changes(plan, live)
        state.queue = changes
        state.cursor = 0
        state.reset_step()
        state.target_revision = plan.revision
        state.baseline_masters = sum(1 for w in live if w.descriptor.is_master)

        if not changes:
            state.phase = RolloutPhase.IDLE
            return StepOutcome(state=state, phase=state.phase, event="converged")

        state.phase = RolloutPhase.APPLYING
        logger.info(
            "Queued %d change(s) for %s/%s: %s",
            len(changes),
            plan.namespace,
            plan.cluster,
            ", ".join(c.describe() for c in changes),
        )
        return StepOutcome(
            state=state,
            phase=state.phase,
            requeue_after=0,
            event="diffed",
            message=f"{len(changes)} change(s) queued",
        )

    async def _apply(self, state: RolloutState, plan: TopologyPlan, live: list[LiveWorkload]) -> StepOutcome:
        # No step is in flight here, so a changed target re-diffs right away
        if state.target_revision != plan.revision:
            return self._rediff(state)

        change = state.current()
        if change is None:
            return self._finish(state)

        live_by_name = {w.name: w for w in live}
        if change.kind is ChangeKind.DELETE and change.name not in live_by_name:
            logger.info("Skipping %s: workload already gone", change.describe())
            return self._advance(state, plan)

        if change.destructive:
            snapshot = await self._probe()
            hold = self._hold(state, plan, change, live, snapshot)
            if hold is not None:
                return self._defer(state, *hold)

        try:
            if change.kind is ChangeKind.DELETE:
                await bounded(
                    self.workloads.delete_workload(change.descriptor),
                    self.policy.call_timeout,
                    f"deleting {change.name}",
                )
            else:
                await bounded(
                    self.workloads.apply_workload(change.descriptor),
                    self.policy.call_timeout,
                    f"applying {change.name}",
                )
        except StepError as e:
            state.phase = RolloutPhase.PAUSED
            state.last_error = str(e)
            logger.error("Rollout paused at %s: %s", change.describe(), e)
            return StepOutcome(state=state, phase=state.phase, event="step-error", message=str(e))
        except (TransientError, PersistenceFailure) as e:
            state.transient_failures += 1
            state.last_error = str(e)
            delay = self.policy.retry.delay_seconds(state.attempt)
            state.attempt += 1
            logger.warning(
                "Transient failure %d on %s, retrying in %.1fs: %s",
                state.transient_failures,
                change.describe(),
                delay,
                e,
            )
            return StepOutcome(
                state=state,
                phase=state.phase,
                requeue_after=delay,
                event="retrying",
                message=str(e),
            )

        state.reset_step()
        state.phase = RolloutPhase.AWAITING_HEALTH
        state.awaiting_since = self._clock()
        state.last_step = change.describe()
        logger.info("Applied %s (%d/%d)", change.describe(), state.cursor + 1, len(state.queue))
        return StepOutcome(
            state=state,
            phase=state.phase,
            requeue_after=self.policy.retry.delay_seconds(0),
            event="applied",
            message=change.describe(),
        )

    async def _await_health(
        self, state: RolloutState, plan: TopologyPlan, live: list[LiveWorkload]
    ) -> StepOutcome:
        change = state.current()
        if change is None:
            return self._finish(state)

        snapshot = await self._probe()
        converged = self._converged(change, live, snapshot)
        if snapshot.health.at_least(self.policy.min_health) and converged:
            return self._advance(state, plan)

        if state.awaiting_since is None:
            state.awaiting_since = self._clock()
        waited = (self._clock() - state.awaiting_since).total_seconds()
        if waited >= self.policy.max_wait_seconds and not state.health_wait_exceeded:
            state.health_wait_exceeded = True
            logger.warning(
                "Still waiting for %s after %.0fs (health %s)",
                change.describe(),
                waited,
                snapshot.health.value,
            )

        delay = min(self.policy.retry.delay_seconds(state.attempt), self.policy.max_wait_seconds)
        state.attempt += 1
        waiting_on = "workload" if not converged else f"health {snapshot.health.value}"
        return StepOutcome(
            state=state,
            phase=state.phase,
            requeue_after=delay,
            event="waiting",
            message=f"waiting on {waiting_on} after {change.describe()}",
        )

    def _paused(self, state: RolloutState, plan: TopologyPlan) -> StepOutcome:
        if state.target_revision != plan.revision:
            return self._rediff(state)
        return StepOutcome(
            state=state,
            phase=state.phase,
            event="paused",
            message=state.last_error or "rollout paused",
        )

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _rediff(self, state: RolloutState) -> StepOutcome:
        state.phase = RolloutPhase.DIFFING
        return StepOutcome(
            state=state,
            phase=state.phase,
            requeue_after=0,
            event="retarget",
            message="target changed, re-diffing",
        )

    def _advance(self, state: RolloutState, plan: TopologyPlan) -> StepOutcome:
        state.cursor += 1
        state.reset_step()
        if state.target_revision != plan.revision:
            return self._rediff(state)
        if state.current() is None:
            return self._finish(state)
        state.phase = RolloutPhase.APPLYING
        return StepOutcome(
            state=state,
            phase=state.phase,
            requeue_after=0,
            event="advanced",
            message=f"{state.remaining} change(s) remaining",
        )

    def _finish(self, state: RolloutState) -> StepOutcome:
        state.phase = RolloutPhase.IDLE
        state.queue = []
        state.cursor = 0
        state.reset_step()
        return StepOutcome(state=state, phase=state.phase, event="completed", message="rollout complete")

    def _defer(self, state: RolloutState, event: str, reason: str) -> StepOutcome:
        if state.deferred_reason != reason:
            logger.info("Deferring step: %s", reason)
        state.deferred_reason = reason
        return StepOutcome(
            state=state,
            phase=state.phase,
            requeue_after=self.policy.deferral_seconds,
            event=event,
            message=reason,
        )

    async def _probe(self) -> HealthSnapshot:
        try:
            return await bounded(self.prober.status(), self.policy.probe_timeout, "health probe")
        except TransientError as e:
            return HealthSnapshot.unknown(str(e))

    def _hold(
        self,
        state: RolloutState,
        plan: TopologyPlan,
        change: WorkloadChange,
        live: list[LiveWorkload],
        snapshot: HealthSnapshot,
    ) -> tuple[str, str] | None:
        """(event, reason) holding a destructive step back, or None if it may run."""
        required = self.policy.min_health
        if (
            change.kind is ChangeKind.DELETE
            and change.descriptor.is_data
            and plan.redundancy_policy is not RedundancyPolicy.ZERO
        ):
            required = self.policy.data_removal_health
        if not snapshot.health.at_least(required):
            return HEALTH_DEFERRED, (
                f"cluster health {snapshot.health.value} is below {required.value} "
                f"required to {change.kind.value} {change.name}"
            )
        if change.kind is ChangeKind.DELETE and change.descriptor.is_data and snapshot.relocating_shards:
            return HEALTH_DEFERRED, (
                f"{snapshot.relocating_shards} shard(s) still relocating, holding delete of {change.name}"
            )

        if not change.descriptor.is_master:
            return None

        quorum = QuorumState.observe(live, snapshot.nodes, baseline=state.baseline_masters)
        if (
            change.kind is ChangeKind.UPDATE
            and quorum.master_count == 1
            and self.policy.single_master_restart
        ):
            return None

        target = next((w for w in live if w.name == change.name), None)
        target_ready = target is not None and is_ready(target, [n.name for n in snapshot.nodes if n.ready])
        if quorum.may_take_down(target_ready):
            return None
        remaining = quorum.ready_masters - (1 if target_ready else 0)
        return QUORUM_DEFERRED, (
            f"{change.kind.value} of master {change.name} would leave {remaining} ready "
            f"master(s), quorum of {quorum.master_count} is {quorum.quorum}"
        )

    def _converged(self, change: WorkloadChange, live: list[LiveWorkload], snapshot: HealthSnapshot) -> bool:
        workload = next((w for w in live if w.name == change.name), None)
        if change.kind is ChangeKind.DELETE:
            return workload is None
        if workload is None or change.descriptor.needs_update(workload.descriptor):
            return False
        return is_ready(workload, [n.name for n in snapshot.nodes if n.ready])
