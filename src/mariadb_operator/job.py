"""Hash-gated execution of one-shot provisioning jobs.

A job runs only when the hash of its definition differs from the hash recorded
after its last successful run. While a dispatched job is in flight the
executor asks to be polled again later instead of waiting for it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from kubernetes import client
from kubernetes.client.rest import ApiException

from .database_job import JobDefinition
from .store import translate_api_error

logger = logging.getLogger(__name__)


class JobState(str, Enum):
    """Observed state of a dispatched job."""

    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class JobHandle:
    namespace: str
    name: str


class JobFailedError(Exception):
    """Raised when a provisioning job terminated unsuccessfully.

    Not retried automatically: running the same definition again would
    produce the same hash, so the failure needs outside diagnosis.
    """

    def __init__(self, action: str, handle: JobHandle) -> None:
        super().__init__(f"Job {handle.namespace}/{handle.name} for {action} failed")
        self.action = action
        self.handle = handle


@dataclass(frozen=True)
class JobRequeue:
    """The job is still in flight; poll again after the delay."""

    after_seconds: float


@dataclass(frozen=True)
class JobDone:
    """The job's definition is satisfied."""

    changed: bool
    hash: str


JobOutcome = JobRequeue | JobDone


class JobRunner(Protocol):
    """Job substrate the executor dispatches to."""

    def ensure_running(self, definition: JobDefinition, definition_hash: str) -> JobHandle:
        """Create the job for this definition unless it already exists."""
        ...

    def query_state(self, handle: JobHandle) -> JobState:
        ...

    def delete(self, handle: JobHandle) -> None:
        """Delete a finished job; a missing job is not an error."""
        ...


class JobExecutor:
    """Runs provisioning actions when, and only when, their input changed."""

    def __init__(self, runner: JobRunner, preserve: bool = False) -> None:
        """Initialize the executor.

        Args:
            runner: Job substrate.
            preserve: Keep finished jobs instead of deleting them.
        """
        self._runner = runner
        self._preserve = preserve

    def run(
        self,
        action: str,
        definition: JobDefinition,
        last_hash: str | None,
        stale_after: float,
    ) -> JobOutcome:
        """Run an action if its definition changed since the last success.

        Args:
            action: Action name, e.g. "DbCreate".
            definition: Job definition; its content hash gates execution.
            last_hash: Hash recorded after the last successful run, if any.
            stale_after: Seconds to wait before polling an in-flight job.

        Returns:
            JobDone(changed=False) if last_hash matches, JobRequeue while the
            job runs, JobDone(changed=True) once it has succeeded.

        Raises:
            JobFailedError: If the job terminated unsuccessfully.
        """
        definition_hash = definition.compute_hash()
        if last_hash and definition_hash == last_hash:
            logger.debug("Job definition unchanged", extra={"action": action, "hash": last_hash})
            return JobDone(changed=False, hash=definition_hash)

        handle = self._runner.ensure_running(definition, definition_hash)
        state = self._runner.query_state(handle)

        match state:
            case JobState.RUNNING:
                logger.info(
                    "Job still running, requeue",
                    extra={"action": action, "job": handle.name, "requeue_after": stale_after},
                )
                return JobRequeue(after_seconds=stale_after)
            case JobState.FAILED:
                logger.error(
                    "Job failed",
                    extra={"action": action, "job": handle.name, "namespace": handle.namespace},
                )
                raise JobFailedError(action, handle)
            case JobState.SUCCEEDED:
                # Deleted before the caller records the hash. If that record is
                # lost, the next run dispatches the same idempotent job again.
                if not self._preserve:
                    self._runner.delete(handle)
                logger.info(
                    "Job completed",
                    extra={"action": action, "job": handle.name, "hash": definition_hash},
                )
                return JobDone(changed=True, hash=definition_hash)


class KubernetesJobRunner:
    """JobRunner backed by the batch/v1 API."""

    def __init__(self, api: client.BatchV1Api | None = None) -> None:
        self._api = api or client.BatchV1Api()

    def ensure_running(self, definition: JobDefinition, definition_hash: str) -> JobHandle:
        handle = JobHandle(definition.namespace, definition.instance_name(definition_hash))
        try:
            self._api.read_namespaced_job(handle.name, handle.namespace)
            return handle
        except ApiException as e:
            if e.status != 404:
                raise translate_api_error(e, "Job", handle.namespace, handle.name) from e

        try:
            self._api.create_namespaced_job(handle.namespace, definition.to_manifest(definition_hash))
        except ApiException as e:
            # Lost a create race against another dispatch of the same definition
            if e.status != 409:
                raise translate_api_error(e, "Job", handle.namespace, handle.name) from e
        logger.info("Job created", extra={"job": handle.name, "namespace": handle.namespace})
        return handle

    def query_state(self, handle: JobHandle) -> JobState:
        try:
            job = self._api.read_namespaced_job(handle.name, handle.namespace)
        except ApiException as e:
            raise translate_api_error(e, "Job", handle.namespace, handle.name) from e

        status = job.status
        if status is None:
            return JobState.RUNNING
        for condition in status.conditions or []:
            if condition.status != "True":
                continue
            if condition.type == "Complete":
                return JobState.SUCCEEDED
            if condition.type == "Failed":
                return JobState.FAILED
        if status.succeeded:
            return JobState.SUCCEEDED
        # Pods have failed more often than the job tolerates
        backoff_limit = job.spec.backoff_limit if job.spec is not None else None
        if status.failed and backoff_limit is not None and status.failed > backoff_limit:
            return JobState.FAILED
        return JobState.RUNNING

    def delete(self, handle: JobHandle) -> None:
        try:
            self._api.delete_namespaced_job(
                handle.name, handle.namespace, propagation_policy="Background"
            )
        except ApiException as e:
            if e.status == 404:
                return
            raise translate_api_error(e, "Job", handle.namespace, handle.name) from e
        logger.info("Job deleted", extra={"job": handle.name, "namespace": handle.namespace})
