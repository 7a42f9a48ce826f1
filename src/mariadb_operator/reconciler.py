"""Core reconciliation loop for MariaDBDatabase claims.

One invocation of `reconcile`:
1. Fetch the claim (gone: nothing to do)
2. Resolve its Galera or MariaDB backing store
3. Being deleted: release finalizers (store side first) and stop
4. Backing store missing: requeue
5. Attach finalizers; a newly added claim finalizer ends this invocation
6. Backing store not ready: requeue
7. Run the DbCreate job if its definition changed since the last success
8. Record the job hash and mark the claim completed
9. Persist the claim status, whatever happened in 2-8

Every decision is re-derived from stored state, so invocations can be
repeated, interleaved across claims, and restarted at any point. Waiting is
expressed as a requeue delay in the result, never as a blocking wait.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from .config import OperatorConfig
from .database_job import JobDefinitionError, database_job
from .finalizers import FinalizerCoordinator
from .job import JobDone, JobExecutor, JobFailedError, JobRequeue, JobRunner
from .models import (
    DB_CREATE_HASH,
    BackingStore,
    ClaimKey,
    MariaDBDatabase,
    StoreKind,
    store_connection,
)
from .resolver import BackingStoreNotFoundError, DependencyResolver, InvalidClaimError
from .store import ObjectNotFoundError, ObjectStore, TransientStoreError

logger = logging.getLogger(__name__)


class ReconcilePhase(str, Enum):
    """Furthest state a reconcile invocation reached."""

    FETCHING = "Fetching"
    DELETING = "Deleting"
    RESOLVING_DEPENDENCY = "ResolvingDependency"
    WAITING_FOR_DEPENDENCY = "WaitingForDependencyReady"
    PROVISIONING = "Provisioning"
    COMPLETED = "Completed"


@dataclass
class ReconcileResult:
    """Result of a single reconcile invocation."""

    claim: ClaimKey
    phase: ReconcilePhase = ReconcilePhase.FETCHING
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    requeue_after: float | None = None  # Seconds until the next invocation
    error: Exception | None = None

    @property
    def duration_seconds(self) -> float:
        """Calculate duration in seconds."""
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def success(self) -> bool:
        """Check if reconciliation succeeded."""
        return self.error is None


class MariaDBDatabaseReconciler:
    """Reconciles MariaDBDatabase claims against their backing stores.

    The object store and job runner are injected so that invocations are
    independently testable and share no ambient state.
    """

    def __init__(self, store: ObjectStore, jobs: JobRunner, config: OperatorConfig) -> None:
        """Initialize reconciler.

        Args:
            store: Object store holding claims, Galeras and MariaDBs.
            jobs: Substrate that runs provisioning jobs.
            config: Validated operator configuration.
        """
        self._config = config
        self._store = store
        self._resolver = DependencyResolver(store)
        self._finalizers = FinalizerCoordinator(store, config.finalizer)
        self._executor = JobExecutor(jobs, preserve=config.preserve_jobs)

    @property
    def config(self) -> OperatorConfig:
        return self._config

    @property
    def finalizers(self) -> FinalizerCoordinator:
        return self._finalizers

    def reconcile(self, key: ClaimKey) -> ReconcileResult:
        """Execute a single reconcile invocation for one claim.

        Errors are returned in the result for the caller's retry policy,
        never retried here.
        """
        result = ReconcileResult(claim=key)

        try:
            claim = self._store.get(MariaDBDatabase, key.namespace, key.name)
        except ObjectNotFoundError:
            logger.debug("Claim no longer exists", extra={"claim": str(key)})
            result.end_time = datetime.now(UTC)
            return result
        except TransientStoreError as e:
            result.error = e
            result.end_time = datetime.now(UTC)
            self._log_result(result)
            return result

        try:
            self._reconcile_claim(claim, result)
        except InvalidClaimError as e:
            logger.error("Invalid claim", extra={"claim": str(key), "error": str(e)})
            result.error = e
        except JobDefinitionError as e:
            logger.error("Cannot build database job", extra={"claim": str(key), "error": str(e)})
            result.error = e
        except JobFailedError as e:
            logger.error(
                "Database creation job failed",
                extra={"claim": str(key), "job": e.handle.name},
            )
            result.error = e
        except TransientStoreError as e:
            logger.warning(
                "Object store error",
                extra={"claim": str(key), "error": str(e), "status_code": e.status},
            )
            result.error = e
        except Exception as e:
            logger.exception("Unexpected error during reconciliation", extra={"claim": str(key)})
            result.error = e
        finally:
            self._persist_status(claim, result)

        result.end_time = datetime.now(UTC)
        self._log_result(result)
        return result

    def _reconcile_claim(self, claim: MariaDBDatabase, result: ReconcileResult) -> None:
        """Drive one fetched claim; outcome is recorded on `result`."""
        result.phase = ReconcilePhase.RESOLVING_DEPENDENCY
        deleting = claim.metadata.is_deleting

        try:
            resolved = self._resolver.resolve(claim)
        except BackingStoreNotFoundError as e:
            if deleting:
                self._release(claim, None, result)
                return
            logger.info(
                "Backing store not found. Requeue...",
                extra={"claim": str(claim.identity), "store": e.name},
            )
            result.requeue_after = self._config.dependency_requeue_seconds
            return
        except InvalidClaimError:
            if deleting:
                # A store that could not be resolved holds no token to release
                self._release(claim, None, result)
                return
            raise

        if deleting:
            self._release(claim, resolved.store, result)
            return

        if self._finalizers.attach_all(claim, resolved.store):
            # The claim finalizer is committed on its own; provisioning starts next cycle
            return

        result.phase = ReconcilePhase.WAITING_FOR_DEPENDENCY
        if not resolved.ready:
            extra = {"claim": str(claim.identity), "store": resolved.store.name}
            match resolved.kind:
                case StoreKind.CLUSTERED:
                    logger.info("DB bootstrap not complete. Requeue...", extra=extra)
                case StoreKind.STANDALONE:
                    logger.info("DB initialization not complete. Requeue...", extra=extra)
            result.requeue_after = self._config.dependency_requeue_seconds
            return

        result.phase = ReconcilePhase.PROVISIONING
        definition = database_job(claim, store_connection(resolved.store))
        outcome = self._executor.run(
            DB_CREATE_HASH,
            definition,
            claim.status.hash.get(DB_CREATE_HASH),
            self._config.job_poll_seconds,
        )

        match outcome:
            case JobRequeue(after_seconds=after):
                result.requeue_after = after
            case JobDone(changed=changed, hash=new_hash):
                if changed:
                    claim.status.hash[DB_CREATE_HASH] = new_hash
                    logger.info(
                        f"Job {definition.name} hash added - {new_hash}",
                        extra={"claim": str(claim.identity)},
                    )
                claim.status.completed = True
                result.phase = ReconcilePhase.COMPLETED

    def _release(
        self, claim: MariaDBDatabase, backing: BackingStore | None, result: ReconcileResult
    ) -> None:
        """Release finalizers of a claim being deleted; readiness is irrelevant here."""
        result.phase = ReconcilePhase.DELETING
        self._finalizers.release_all(claim, backing)

    def _persist_status(self, claim: MariaDBDatabase, result: ReconcileResult) -> None:
        """Write the claim status back; runs once at the end of every invocation."""
        try:
            self._store.patch_status(claim)
        except ObjectNotFoundError:
            # Claim finished deleting once its last finalizer was removed
            logger.debug("Claim removed before status patch", extra={"claim": str(result.claim)})
        except TransientStoreError as e:
            if result.error is None:
                result.error = e
            else:
                logger.warning(
                    "Status patch failed",
                    extra={"claim": str(result.claim), "error": str(e)},
                )

    def _log_result(self, result: ReconcileResult) -> None:
        """Log reconcile result with structured data."""
        extra: dict[str, Any] = {
            "claim": str(result.claim),
            "phase": result.phase.value,
            "duration_seconds": result.duration_seconds,
        }
        if result.requeue_after is not None:
            extra["requeue_after"] = result.requeue_after

        if result.error is not None:
            extra["error"] = str(result.error)
            extra["error_type"] = type(result.error).__name__
            logger.error("Reconciliation failed", extra=extra)
        else:
            logger.info("Reconciliation result", extra=extra)
