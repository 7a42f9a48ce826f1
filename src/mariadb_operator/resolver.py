"""Backing store resolution for MariaDBDatabase claims.

A claim names its backing store through the `dbName` label. The store is
either a Galera cluster or a standalone MariaDB; when both exist under the
same name, Galera wins.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .models import (
    BackingStore,
    Galera,
    MariaDB,
    MariaDBDatabase,
    StoreKind,
    store_is_ready,
    store_kind,
)
from .store import ObjectNotFoundError, ObjectStore

logger = logging.getLogger(__name__)


class DependencyError(Exception):
    """Raised when a claim's backing store cannot be used."""

    pass


class BackingStoreNotFoundError(DependencyError):
    """Raised when neither a Galera nor a MariaDB exists under the name.

    Expected while the backing store is still being created; callers requeue.
    """

    def __init__(self, namespace: str, name: str) -> None:
        super().__init__(f"No Galera or MariaDB named {namespace}/{name}")
        self.namespace = namespace
        self.name = name


class InvalidClaimError(DependencyError):
    """Raised when a claim does not name a backing store."""

    pass


@dataclass(frozen=True)
class ResolvedStore:
    """A backing store together with its variant tag."""

    store: BackingStore
    kind: StoreKind

    @property
    def ready(self) -> bool:
        return store_is_ready(self.store)


class DependencyResolver:
    """Locates the backing store a claim refers to. Read-only."""

    def __init__(self, store: ObjectStore) -> None:
        self._store = store

    def resolve(self, claim: MariaDBDatabase) -> ResolvedStore:
        """Find the Galera or MariaDB named by the claim.

        Returns:
            The resolved store; Galera is returned even if not bootstrapped.
            A Galera shadows a MariaDB of the same name, including one the
            claim attached to earlier.

        Raises:
            InvalidClaimError: If the claim has no dbName label.
            BackingStoreNotFoundError: If neither variant exists.
            TransientStoreError: For any other lookup failure.
        """
        name = claim.backing_store_name
        if not name:
            raise InvalidClaimError(f"MariaDBDatabase {claim.identity} has no dbName label")

        namespace = claim.namespace
        found: BackingStore
        try:
            found = self._store.get(Galera, namespace, name)
        except ObjectNotFoundError:
            try:
                found = self._store.get(MariaDB, namespace, name)
            except ObjectNotFoundError as e:
                raise BackingStoreNotFoundError(namespace, name) from e

        resolved = ResolvedStore(found, store_kind(found))
        logger.debug(
            "Backing store resolved",
            extra={"claim": str(claim.identity), "store": name, "store_kind": resolved.kind.value},
        )
        return resolved
