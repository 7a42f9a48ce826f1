"""Configuration management with validation.

All settings come from environment variables and are validated when the
configuration is constructed, so a misconfigured operator fails at startup
rather than in the middle of a reconcile.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_FINALIZER = "openstack.org/mariadbdatabase"

DEFAULT_DEPENDENCY_REQUEUE_SECONDS = 10
DEFAULT_JOB_POLL_SECONDS = 5
MIN_REQUEUE_SECONDS = 1
MAX_REQUEUE_SECONDS = 3600

DEFAULT_MAX_CONCURRENT_RECONCILES = 4
MAX_CONCURRENT_RECONCILES = 64

DEFAULT_RESYNC_INTERVAL_SECONDS = 60
MIN_RESYNC_INTERVAL_SECONDS = 5
MAX_RESYNC_INTERVAL_SECONDS = 3600

DEFAULT_ERROR_BACKOFF_BASE_SECONDS = 5
DEFAULT_MAX_ERROR_BACKOFF_SECONDS = 300

# Input validation patterns
VALID_NAMESPACE_PATTERN = r"^[a-z0-9]([-a-z0-9]{0,61}[a-z0-9])?$"
VALID_FINALIZER_PATTERN = r"^[a-z0-9.-]+/[a-z0-9._-]+$"
MAX_FINALIZER_LENGTH = 63

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class OperatorConfig:
    """Operator configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing at runtime.
    """

    # Namespace to watch; None watches all namespaces
    watch_namespace: str | None = None

    # Finalizer the reconciler places on claims. The claim-specific token on
    # the backing store is "<finalizer>-<claim name>".
    finalizer: str = DEFAULT_FINALIZER

    # Timing
    dependency_requeue_seconds: int = DEFAULT_DEPENDENCY_REQUEUE_SECONDS
    job_poll_seconds: int = DEFAULT_JOB_POLL_SECONDS

    # Keep finished provisioning jobs instead of deleting them
    preserve_jobs: bool = False

    # Work queue
    max_concurrent_reconciles: int = DEFAULT_MAX_CONCURRENT_RECONCILES
    resync_interval_seconds: int = DEFAULT_RESYNC_INTERVAL_SECONDS
    error_backoff_base_seconds: int = DEFAULT_ERROR_BACKOFF_BASE_SECONDS
    max_error_backoff_seconds: int = DEFAULT_MAX_ERROR_BACKOFF_SECONDS

    # Logging
    log_level: str = "INFO"
    enable_json_logging: bool = True

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if self.watch_namespace is not None and not re.match(
            VALID_NAMESPACE_PATTERN, self.watch_namespace
        ):
            errors.append(f"WATCH_NAMESPACE is not a valid namespace name: {self.watch_namespace}")

        if not re.match(VALID_FINALIZER_PATTERN, self.finalizer):
            errors.append(f"FINALIZER_NAME must look like 'prefix/name': {self.finalizer}")
        elif len(self.finalizer) > MAX_FINALIZER_LENGTH:
            errors.append(f"FINALIZER_NAME exceeds maximum length of {MAX_FINALIZER_LENGTH}")

        for label, value in (
            ("DEPENDENCY_REQUEUE_SECONDS", self.dependency_requeue_seconds),
            ("JOB_POLL_SECONDS", self.job_poll_seconds),
        ):
            if not (MIN_REQUEUE_SECONDS <= value <= MAX_REQUEUE_SECONDS):
                errors.append(
                    f"{label} must be between {MIN_REQUEUE_SECONDS} and {MAX_REQUEUE_SECONDS} seconds"
                )

        if not (1 <= self.max_concurrent_reconciles <= MAX_CONCURRENT_RECONCILES):
            errors.append(
                f"MAX_CONCURRENT_RECONCILES must be between 1 and {MAX_CONCURRENT_RECONCILES}"
            )

        if not (
            MIN_RESYNC_INTERVAL_SECONDS
            <= self.resync_interval_seconds
            <= MAX_RESYNC_INTERVAL_SECONDS
        ):
            errors.append(
                f"RESYNC_INTERVAL_SECONDS must be between {MIN_RESYNC_INTERVAL_SECONDS} "
                f"and {MAX_RESYNC_INTERVAL_SECONDS} seconds"
            )

        if self.error_backoff_base_seconds < 1:
            errors.append("ERROR_BACKOFF_BASE_SECONDS must be at least 1")
        elif self.max_error_backoff_seconds < self.error_backoff_base_seconds:
            errors.append("MAX_ERROR_BACKOFF_SECONDS must not be lower than ERROR_BACKOFF_BASE_SECONDS")

        if self.log_level.upper() not in VALID_LOG_LEVELS:
            errors.append(f"LOG_LEVEL must be one of {list(VALID_LOG_LEVELS)}: {self.log_level}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @property
    def log_level_value(self) -> int:
        return logging.getLevelName(self.log_level.upper())

    @classmethod
    def from_env(cls) -> OperatorConfig:
        """Load configuration from environment variables.

        Environment Variables:
            WATCH_NAMESPACE: Namespace to reconcile (default: all namespaces)
            FINALIZER_NAME: Finalizer placed on claims (default: openstack.org/mariadbdatabase)
            DEPENDENCY_REQUEUE_SECONDS: Wait for a missing or unready backing store (default: 10)
            JOB_POLL_SECONDS: Poll interval while the provisioning job runs (default: 5)
            PRESERVE_JOBS: If "true", keep finished provisioning jobs (default: false)
            MAX_CONCURRENT_RECONCILES: Parallel reconciles across claims (default: 4)
            RESYNC_INTERVAL_SECONDS: Seconds between full claim resyncs (default: 60)
            ERROR_BACKOFF_BASE_SECONDS: First retry delay after an error (default: 5)
            MAX_ERROR_BACKOFF_SECONDS: Upper bound of the error backoff (default: 300)
            LOG_LEVEL: Root log level (default: INFO)
            ENABLE_JSON_LOGGING: Emit JSON log lines (default: true)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        return cls(
            watch_namespace=os.environ.get("WATCH_NAMESPACE") or None,
            finalizer=os.environ.get("FINALIZER_NAME", DEFAULT_FINALIZER),
            dependency_requeue_seconds=get_int(
                "DEPENDENCY_REQUEUE_SECONDS", DEFAULT_DEPENDENCY_REQUEUE_SECONDS
            ),
            job_poll_seconds=get_int("JOB_POLL_SECONDS", DEFAULT_JOB_POLL_SECONDS),
            preserve_jobs=get_bool("PRESERVE_JOBS", False),
            max_concurrent_reconciles=get_int(
                "MAX_CONCURRENT_RECONCILES", DEFAULT_MAX_CONCURRENT_RECONCILES
            ),
            resync_interval_seconds=get_int(
                "RESYNC_INTERVAL_SECONDS", DEFAULT_RESYNC_INTERVAL_SECONDS
            ),
            error_backoff_base_seconds=get_int(
                "ERROR_BACKOFF_BASE_SECONDS", DEFAULT_ERROR_BACKOFF_BASE_SECONDS
            ),
            max_error_backoff_seconds=get_int(
                "MAX_ERROR_BACKOFF_SECONDS", DEFAULT_MAX_ERROR_BACKOFF_SECONDS
            ),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
            enable_json_logging=get_bool("ENABLE_JSON_LOGGING", True),
        )
