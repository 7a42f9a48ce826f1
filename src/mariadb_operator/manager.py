"""Work queue that decides when claims are reconciled.

The manager resyncs the list of claims on an interval, runs due reconciles in
worker threads, and schedules the next run from each result:

- requeue_after: run again after the requested delay
- error: exponential backoff per claim, reset on the next success
- neither: wait for the next resync

At most one reconcile per claim is in flight at any time; total parallelism
is bounded by MAX_CONCURRENT_RECONCILES.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable

from .config import OperatorConfig
from .models import ClaimKey, MariaDBDatabase
from .reconciler import MariaDBDatabaseReconciler, ReconcileResult
from .store import ObjectStore, TransientStoreError

logger = logging.getLogger(__name__)


class ReconcileManager:
    """Schedules reconcile invocations for all claims in scope."""

    def __init__(
        self,
        reconciler: MariaDBDatabaseReconciler,
        store: ObjectStore,
        config: OperatorConfig,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._reconciler = reconciler
        self._store = store
        self._config = config
        self._clock = clock

        self._due: dict[ClaimKey, float] = {}
        self._failures: dict[ClaimKey, int] = {}
        self._in_flight: set[ClaimKey] = set()
        self._tasks: set[asyncio.Task[None]] = set()
        self._semaphore = asyncio.Semaphore(config.max_concurrent_reconciles)

        self._shutdown_event = asyncio.Event()
        self._wakeup = asyncio.Event()
        self._last_resync: float | None = None

    @property
    def in_flight(self) -> frozenset[ClaimKey]:
        return frozenset(self._in_flight)

    def due_at(self, key: ClaimKey) -> float | None:
        """Clock time at which a claim is next due, if scheduled."""
        return self._due.get(key)

    def failure_count(self, key: ClaimKey) -> int:
        return self._failures.get(key, 0)

    def enqueue(self, key: ClaimKey, delay: float = 0.0) -> None:
        """Schedule a claim; an earlier existing schedule wins."""
        due = self._clock() + delay
        current = self._due.get(key)
        if current is None or due < current:
            self._due[key] = due
        self._wakeup.set()

    async def resync(self) -> None:
        """Enqueue every claim in scope for an immediate reconcile.

        Claims with consecutive failures are skipped; their backoff decides
        when they run next.
        """
        self._last_resync = self._clock()
        try:
            claims = await asyncio.to_thread(
                self._store.list, MariaDBDatabase, self._config.watch_namespace
            )
        except TransientStoreError as e:
            logger.warning("Claim resync failed", extra={"error": str(e)})
            return

        for claim in claims:
            # A claim backing off after errors keeps its retry schedule
            if self._failures.get(claim.identity):
                continue
            self.enqueue(claim.identity)
        logger.debug("Claims resynced", extra={"claim_count": len(claims)})

    def dispatch_due(self) -> int:
        """Start reconciles for every due claim not already in flight.

        Returns:
            Number of reconciles started.
        """
        now = self._clock()
        started = 0
        for key, due in list(self._due.items()):
            if due > now or key in self._in_flight:
                continue
            del self._due[key]
            self._in_flight.add(key)
            task = asyncio.create_task(self._process(key))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            started += 1
        return started

    async def drain(self) -> None:
        """Wait for all in-flight reconciles to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def run(self) -> None:
        """Run until shutdown is requested."""
        logger.info(
            "Starting reconcile manager",
            extra={
                "watch_namespace": self._config.watch_namespace or "*",
                "max_concurrent_reconciles": self._config.max_concurrent_reconciles,
                "resync_interval_seconds": self._config.resync_interval_seconds,
            },
        )

        while not self._shutdown_event.is_set():
            if (
                self._last_resync is None
                or self._clock() - self._last_resync >= self._config.resync_interval_seconds
            ):
                await self.resync()

            self._wakeup.clear()
            self.dispatch_due()

            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self._next_wait())
            except TimeoutError:
                # Normal timeout, next resync or requeue is due
                pass

        await self.drain()
        logger.info("Reconcile manager shutdown complete")

    def shutdown(self) -> None:
        """Signal the manager to stop after in-flight reconciles finish."""
        logger.info("Shutdown requested")
        self._shutdown_event.set()
        self._wakeup.set()

    def _next_wait(self) -> float:
        now = self._clock()
        last = self._last_resync if self._last_resync is not None else now
        wait = last + self._config.resync_interval_seconds - now
        pending = [due for key, due in self._due.items() if key not in self._in_flight]
        if pending:
            wait = min(wait, min(pending) - now)
        return max(wait, 0.0)

    async def _process(self, key: ClaimKey) -> None:
        try:
            async with self._semaphore:
                result = await asyncio.to_thread(self._reconciler.reconcile, key)
        except Exception:
            logger.exception("Reconcile raised", extra={"claim": str(key)})
            self._backoff(key)
            return
        finally:
            self._in_flight.discard(key)
            self._wakeup.set()

        self._schedule_next(key, result)

    def _schedule_next(self, key: ClaimKey, result: ReconcileResult) -> None:
        if result.error is not None:
            self._backoff(key)
            return

        self._failures.pop(key, None)
        if result.requeue_after is not None:
            self.enqueue(key, result.requeue_after)

    def _backoff(self, key: ClaimKey) -> None:
        failures = self._failures.get(key, 0) + 1
        self._failures[key] = failures
        delay = min(
            self._config.error_backoff_base_seconds * 2 ** (failures - 1),
            self._config.max_error_backoff_seconds,
        )
        logger.warning(
            "Reconcile failed, backing off",
            extra={"claim": str(key), "consecutive_failures": failures, "delay_seconds": delay},
        )
        self.enqueue(key, delay)
