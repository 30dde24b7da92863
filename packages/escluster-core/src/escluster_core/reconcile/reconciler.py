"""
Reconciler: one bounded pass of the control loop for one cluster.

Each pass:
1. Retries a status write left over from a failed pass (no step runs
   while rollout progress is unsaved)
2. Loads the resource; tears down if deletion was requested
3. Unmanaged: records Paused and stops (no certificate write, no probe)
4. Plans the topology (InvalidSpecError -> Failed, no changes)
5. Ensures certificates, rotating those close to expiry
6. Lists live workloads and calls the sequencer for ONE transition
7. Applies the replica count once idle and healthy
8. Persists the status and returns the requeue interval

reconcile() never raises for the operator error taxonomy: failures become
status conditions plus a requeue, never a crash of the control loop.
"""

import logging
import time
from dataclasses import dataclass
from datetime import timedelta

from escluster_core.calls import bounded
from escluster_core.certs import (
    NODE_MOUNTED,
    CertIdentity,
    CertificateBundle,
    CertificateManager,
    cert_revision,
    expiring_soon,
)
from escluster_core.context import OperatorContext
from escluster_core.errors import (
    CACorruptionError,
    InvalidSpecError,
    OperatorError,
    PersistenceFailure,
    TransientError,
)
from escluster_core.metrics import (
    record_reconcile,
    record_rotation,
    record_step,
    set_pending_changes,
)
from escluster_core.resource import ClusterPhase, ClusterResource, ClusterStatus, ConditionType
from escluster_core.rollout import (
    HEALTH_DEFERRED,
    QUORUM_DEFERRED,
    RolloutPhase,
    RolloutPolicy,
    RolloutSequencer,
    StepOutcome,
)
from escluster_core.topology import TopologyPlan, plan_topology
from escluster_core.types import LiveWorkload, ManagementState
from escluster_protocols import ClusterConnectionProtocol, ClusterKey

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    """
    Outcome of one reconciliation pass.

    Attributes:
        requeue_after: Seconds until the next pass, None if nothing is pending.
        error: Error that ended or degraded the pass, if any.
    """

    requeue_after: float | None = None
    error: OperatorError | None = None


class Reconciler:
    """
    Reconciles clusters one pass at a time.

    Passes for different clusters may run concurrently; passes for the same
    cluster must not (the ControllerLoop serializes them).

    Example:
        reconciler = Reconciler(ctx)
        result = await reconciler.reconcile(ClusterKey("logging", "elasticsearch"))
    """

    def __init__(self, ctx: OperatorContext) -> None:
        self.ctx = ctx
        self.settings = ctx.settings
        self.policy = RolloutPolicy.from_settings(ctx.settings)
        self._unsaved: dict[ClusterKey, ClusterStatus] = {}
        self._save_failures: dict[ClusterKey, int] = {}
        self._errors: dict[ClusterKey, int] = {}

    async def reconcile(self, key: ClusterKey) -> ReconcileResult:
        """
        Run one reconciliation pass for a cluster.

        Returns:
            ReconcileResult with requeue interval and the error, if any.
        """
        started = time.monotonic()
        try:
            result = await self._reconcile(key)
        except OperatorError as e:
            attempt = self._errors.get(key, 0)
            self._errors[key] = attempt + 1
            logger.warning("Reconcile of %s failed (attempt %d): %s", key, attempt + 1, e)
            result = ReconcileResult(requeue_after=self.policy.retry.delay_seconds(attempt), error=e)
        else:
            if result.error is None or result.error.fatal:
                self._errors.pop(key, None)

        if result.error is None:
            outcome = "ok" if result.requeue_after is None else "requeue"
        else:
            outcome = "error"
        record_reconcile(outcome, time.monotonic() - started)
        return result

    async def _reconcile(self, key: ClusterKey) -> ReconcileResult:
        if key in self._unsaved:
            error = await self._save(key, self._unsaved[key])
            if error is not None:
                return self._blocked(key, error)

        resource = await bounded(
            self.ctx.store.get_cluster(key),
            self.settings.call_timeout_seconds,
            f"loading {key}",
        )
        if resource is None:
            self._forget(key)
            return ReconcileResult()

        if resource.metadata.deletion_requested:
            return await self._teardown(resource)

        status = resource.status.model_copy(deep=True)

        if resource.spec.management_state is ManagementState.UNMANAGED:
            outcome = RolloutSequencer.pause(status.rollout)
            status.phase = ClusterPhase.PAUSED
            status.set_condition(ConditionType.UNMANAGED, "ManagementStateUnmanaged", outcome.message)
            return await self._finish(key, status, None)
        status.clear_condition(ConditionType.UNMANAGED)

        spec = resource.spec
        if not spec.image:
            spec = spec.model_copy(update={"image": self.settings.default_image})

        try:
            plan = plan_topology(
                spec,
                key.name,
                key.namespace,
                existing=status.generations,
                cluster_uid=resource.metadata.uid,
            )
        except InvalidSpecError as e:
            logger.error("%s", e)
            outcome = RolloutSequencer.fail(status.rollout, str(e))
            status.rollout = outcome.state
            status.phase = ClusterPhase.FAILED
            status.set_condition(ConditionType.INVALID_SPEC, "InvalidSpec", str(e))
            saved = await self._finish(key, status, None)
            return ReconcileResult(requeue_after=saved.requeue_after, error=saved.error or e)
        status.clear_condition(ConditionType.INVALID_SPEC)

        manager = CertificateManager(
            key,
            self.ctx.secrets,
            validity=timedelta(days=self.settings.cert_validity_days),
            ca_validity=timedelta(days=self.settings.ca_validity_days),
            key_size=self.settings.cert_key_size,
            call_timeout=self.settings.call_timeout_seconds,
            clock=self.ctx.clock,
        )
        try:
            bundles = await self._ensure_certificates(manager, status)
        except CACorruptionError as e:
            logger.error("Halting %s: %s", key, e)
            status.phase = ClusterPhase.FAILED
            status.set_condition(ConditionType.CA_CORRUPTED, "CACorrupted", str(e))
            saved = await self._finish(key, status, None)
            return ReconcileResult(requeue_after=saved.requeue_after, error=saved.error or e)
        status.clear_condition(ConditionType.CA_CORRUPTED)

        plan = plan.with_certificates(manager.node_secret_name, cert_revision(bundles))
        status.generations = plan.generations
        status.observed_revision = plan.revision
        self._set(status, ConditionType.REDUNDANCY_DEGRADED, plan.redundancy_degraded,
                  "InsufficientDataNodes",
                  f"{plan.data_nodes} data node(s) cannot hold the replicas "
                  f"{plan.redundancy_policy.value} asks for; using {plan.replicas}")

        connection = self.ctx.connect(
            self.settings.endpoint_for(key.name, key.namespace),
            CertificateManager.credentials(bundles[CertIdentity.ADMIN]),
        )
        try:
            return await self._step(key, status, plan, manager, bundles, connection)
        finally:
            await connection.aclose()

    async def _step(
        self,
        key: ClusterKey,
        status: ClusterStatus,
        plan: TopologyPlan,
        manager: CertificateManager,
        bundles: dict[CertIdentity, CertificateBundle],
        connection: ClusterConnectionProtocol,
    ) -> ReconcileResult:
        live = await self._live(key)
        sequencer = RolloutSequencer(self.ctx.workloads, connection.prober, self.policy, self.ctx.clock)
        outcome = await sequencer.step(status.rollout, plan, live)
        status.rollout = outcome.state
        record_step(outcome.event)
        set_pending_changes(str(key), outcome.state.remaining)

        error: OperatorError | None = None
        try:
            if outcome.phase is RolloutPhase.IDLE:
                await self._apply_replicas(status, plan, connection)
                for identity in CertIdentity:
                    await manager.release(identity, bundles[identity].version)
            status.pools = _pool_counts(await self._live(key))
        except (TransientError, PersistenceFailure) as e:
            logger.warning("Post-step work for %s failed: %s", key, e)
            error = e

        self._apply_outcome(status, plan, outcome)
        result = await self._finish(key, status, outcome.requeue_after)
        if result.error is None and error is not None:
            return ReconcileResult(
                requeue_after=self.policy.retry.delay_seconds(0),
                error=error,
            )
        return result

    # -------------------------------------------------------------------------
    # Certificates
    # -------------------------------------------------------------------------

    async def _ensure_certificates(
        self, manager: CertificateManager, status: ClusterStatus
    ) -> dict[CertIdentity, CertificateBundle]:
        """
        Ensure every identity, rotating bundles close to expiry.

        Node-mounted identities rotate only while no rollout is running, so
        the rotation rolls out as its own queue of updates.
        """
        horizon = timedelta(days=self.settings.cert_rotation_horizon_days)
        idle = status.rollout.phase is RolloutPhase.IDLE
        bundles = await manager.ensure_all()

        for identity, bundle in bundles.items():
            if not expiring_soon(bundle, horizon, self.ctx.clock()):
                continue
            if identity in NODE_MOUNTED and not idle:
                continue
            logger.info(
                "Rotating %s certificate of %s (expires %s)",
                identity.value,
                manager.cluster,
                bundle.not_after.isoformat(),
            )
            bundles[identity] = await manager.rotate(identity)
            record_rotation(identity.value)

        await manager.write_node_secret(bundles)
        status.cert_versions = {i.value: b.version for i, b in bundles.items()}
        return bundles

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _live(self, key: ClusterKey) -> list[LiveWorkload]:
        return await bounded(
            self.ctx.workloads.list_workloads(key.namespace, key.name),
            self.settings.call_timeout_seconds,
            f"listing workloads of {key}",
        )

    async def _apply_replicas(
        self, status: ClusterStatus, plan: TopologyPlan, connection: ClusterConnectionProtocol
    ) -> None:
        if status.replicas == plan.replicas or not plan.workloads:
            return
        snapshot = await bounded(
            connection.prober.status(),
            self.settings.probe_timeout_seconds,
            "health probe",
        )
        if not snapshot.health.at_least(self.policy.min_health):
            return
        await bounded(
            connection.admin.set_replica_count(plan.replicas),
            self.settings.call_timeout_seconds,
            "setting replica count",
        )
        logger.info("Set replica count of %s/%s to %d", plan.namespace, plan.cluster, plan.replicas)
        status.replicas = plan.replicas

    def _apply_outcome(self, status: ClusterStatus, plan: TopologyPlan, outcome: StepOutcome) -> None:
        state = outcome.state
        self._set(status, ConditionType.QUORUM_DEFERRED, outcome.event == QUORUM_DEFERRED,
                  "QuorumProtected", outcome.message)
        self._set(status, ConditionType.HEALTH_DEFERRED, outcome.event == HEALTH_DEFERRED,
                  "ClusterNotHealthy", outcome.message)
        self._set(status, ConditionType.HEALTH_WAIT_EXCEEDED, state.health_wait_exceeded,
                  "HealthWaitExceeded", outcome.message)
        exhausted = not self.policy.retry.should_retry(state.transient_failures)
        self._set(status, ConditionType.TRANSIENT_RETRY_EXHAUSTED, exhausted,
                  "RetryBudgetExhausted",
                  f"{state.transient_failures} consecutive failures: {state.last_error}")
        step_failed = outcome.phase is RolloutPhase.PAUSED and bool(state.last_error)
        self._set(status, ConditionType.STEP_FAILED, step_failed, "StepRejected", state.last_error)

        if outcome.phase is RolloutPhase.PAUSED:
            status.phase = ClusterPhase.PAUSED
        elif outcome.phase is RolloutPhase.FAILED:
            status.phase = ClusterPhase.FAILED
        elif state.health_wait_exceeded or exhausted:
            status.phase = ClusterPhase.DEGRADED
        elif outcome.phase is not RolloutPhase.IDLE:
            status.phase = ClusterPhase.ROLLING_OUT
        elif plan.redundancy_degraded:
            status.phase = ClusterPhase.DEGRADED
        else:
            status.phase = ClusterPhase.READY

    @staticmethod
    def _set(status: ClusterStatus, type: ConditionType, active: bool, reason: str, message: str) -> None:
        if active:
            status.set_condition(type, reason, message)
        else:
            status.clear_condition(type)

    async def _teardown(self, resource: ClusterResource) -> ReconcileResult:
        """Cancel any rollout and delete everything the cluster owns."""
        key = resource.key
        outcome = RolloutSequencer.cancel(resource.status.rollout)
        logger.info("Tearing down %s: %s", key, outcome.message)

        for workload in await self._live(key):
            await bounded(
                self.ctx.workloads.delete_workload(workload.descriptor),
                self.settings.call_timeout_seconds,
                f"deleting {workload.name}",
            )
        manager = CertificateManager(key, self.ctx.secrets, call_timeout=self.settings.call_timeout_seconds)
        await manager.delete_all()
        await bounded(
            self.ctx.store.remove_cluster(key),
            self.settings.call_timeout_seconds,
            f"removing {key}",
            PersistenceFailure,
        )
        record_step(outcome.event)
        set_pending_changes(str(key), 0)
        self._forget(key)
        return ReconcileResult()

    async def _finish(self, key: ClusterKey, status: ClusterStatus, requeue_after: float | None) -> ReconcileResult:
        status.last_reconciled = self.ctx.clock()
        error = await self._save(key, status)
        if error is not None:
            return self._blocked(key, error)
        return ReconcileResult(requeue_after=requeue_after)

    async def _save(self, key: ClusterKey, status: ClusterStatus) -> PersistenceFailure | None:
        """Persist status; on failure keep it to retry first on the next pass."""
        blocked = status.has_condition(ConditionType.PERSISTENCE_BLOCKED)
        status.clear_condition(ConditionType.PERSISTENCE_BLOCKED)
        try:
            await bounded(
                self.ctx.store.update_status(key, status),
                self.settings.call_timeout_seconds,
                f"writing status of {key}",
                PersistenceFailure,
            )
        except PersistenceFailure as e:
            failures = self._save_failures.get(key, 0) + 1
            self._save_failures[key] = failures
            if blocked or failures >= self.settings.persistence_failure_threshold:
                status.set_condition(
                    ConditionType.PERSISTENCE_BLOCKED,
                    "StatusWriteFailing",
                    f"{failures} consecutive status writes failed: {e}",
                )
                logger.error("Rollout of %s blocked: status write failed %d times", key, failures)
            self._unsaved[key] = status
            return e
        self._unsaved.pop(key, None)
        self._save_failures.pop(key, None)
        return None

    def _blocked(self, key: ClusterKey, error: PersistenceFailure) -> ReconcileResult:
        failures = self._save_failures.get(key, 1)
        return ReconcileResult(requeue_after=self.policy.retry.delay_seconds(failures - 1), error=error)

    def _forget(self, key: ClusterKey) -> None:
        self._unsaved.pop(key, None)
        self._save_failures.pop(key, None)
        self._errors.pop(key, None)


def _pool_counts(live: list[LiveWorkload]) -> dict[str, int]:
    counts: dict[str, int] = {}
    for workload in live:
        counts[workload.descriptor.pool] = counts.get(workload.descriptor.pool, 0) + 1
    return counts
