"""
ControllerLoop daemon driving reconciliations.

This module implements the control loop that:
- Discovers cluster resources from the store at a fixed interval
- Runs one worker task per cluster (sequential within a cluster,
  parallel across clusters)
- Honours each pass's requeue interval, resyncing idle clusters
- Handles graceful shutdown on SIGINT/SIGTERM

Daemon Loop with Signal Handling:
- Uses asyncio.Event for shutdown coordination
- Registers signal handlers inside run() with get_running_loop()
- Uses wait_for with timeout for interruptible sleep
"""

import asyncio
import functools
import logging
import signal

from escluster_core.errors import OperatorError
from escluster_core.reconcile.reconciler import Reconciler, ReconcileResult
from escluster_protocols import ClusterKey, ClusterStoreProtocol

logger = logging.getLogger(__name__)


class ControllerLoop:
    """
    Long-running daemon reconciling every known cluster.

    Example:
        loop = ControllerLoop(Reconciler(ctx), ctx.store, resync_interval=300.0)
        await loop.run()  # Runs until SIGINT/SIGTERM
    """

    def __init__(
        self,
        reconciler: Reconciler,
        store: ClusterStoreProtocol,
        resync_interval: float = 300.0,
        discovery_interval: float = 5.0,
    ) -> None:
        """
        Initialize the control loop.

        Args:
            reconciler: Reconciler running the passes
            store: Store the cluster resources are listed from
            resync_interval: Seconds between passes of an idle cluster
            discovery_interval: Seconds between cluster listings
        """
        self.reconciler = reconciler
        self.store = store
        self.resync_interval = resync_interval
        self.discovery_interval = discovery_interval
        self._shutdown = asyncio.Event()
        self._workers: dict[ClusterKey, asyncio.Task] = {}
        self._wakeups: dict[ClusterKey, asyncio.Event] = {}

    async def run(self) -> None:
        """
        Run the control loop until shutdown signal.

        Registers SIGINT and SIGTERM handlers for graceful shutdown.
        """
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, functools.partial(self._handle_signal, sig))

        logger.info("Controller loop starting (resync: %.0fs)", self.resync_interval)
        try:
            while not self._shutdown.is_set():
                await self._discover()
                try:
                    await asyncio.wait_for(self._shutdown.wait(), timeout=self.discovery_interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            await self._stop_workers()
        logger.info("Controller loop stopped")

    def stop(self) -> None:
        """Request shutdown."""
        self._shutdown.set()

    def wake(self, key: ClusterKey) -> None:
        """Run the next pass of a cluster now instead of at its requeue time."""
        event = self._wakeups.get(key)
        if event is not None:
            event.set()

    async def run_once(self) -> dict[ClusterKey, ReconcileResult]:
        """Reconcile every known cluster once, concurrently."""
        keys = await self.store.list_clusters()
        results = await asyncio.gather(*(self.reconciler.reconcile(k) for k in keys))
        return dict(zip(keys, results))

    def _handle_signal(self, sig: signal.Signals) -> None:
        """Handle shutdown signal by setting shutdown event."""
        logger.info("Received %s, shutting down...", sig.name)
        self._shutdown.set()

    async def _discover(self) -> None:
        try:
            keys = set(await self.store.list_clusters())
        except OperatorError as e:
            logger.warning("Listing clusters failed: %s", e)
            return

        for key in keys - self._workers.keys():
            logger.info("Watching %s", key)
            self._wakeups[key] = asyncio.Event()
            self._workers[key] = asyncio.create_task(self._drive(key), name=f"reconcile:{key}")

        for key in list(self._workers):
            if key not in keys or self._workers[key].done():
                await self._stop_worker(key)

    async def _drive(self, key: ClusterKey) -> None:
        """Reconcile one cluster until shutdown, one pass at a time."""
        wakeup = self._wakeups[key]
        while not self._shutdown.is_set():
            result = await self.reconciler.reconcile(key)
            delay = self.resync_interval if result.requeue_after is None else result.requeue_after
            if delay <= 0:
                continue
            wakeup.clear()
            shutdown = asyncio.create_task(self._shutdown.wait())
            woken = asyncio.create_task(wakeup.wait())
            try:
                await asyncio.wait({shutdown, woken}, timeout=delay, return_when=asyncio.FIRST_COMPLETED)
            finally:
                shutdown.cancel()
                woken.cancel()

    async def _stop_worker(self, key: ClusterKey) -> None:
        task = self._workers.pop(key)
        self._wakeups.pop(key, None)
        if not task.done():
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("Worker for %s crashed", key)

    async def _stop_workers(self) -> None:
        for key in list(self._workers):
            await self._stop_worker(key)
