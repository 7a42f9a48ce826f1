"""Two-sided finalizer protocol between claims and backing stores.

The claim's token on the backing store keeps the store alive while the claim
uses it. The reconciler's token on the claim keeps the claim alive until the
store-side token has been removed. Attach order is store first, then claim;
release order is store first, then claim. Each change is persisted before the
next one is made.
"""

from __future__ import annotations

import logging
from typing import TypeVar

from .models import BackingStore, KubeObject, MariaDBDatabase
from .store import ObjectStore

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=KubeObject)


def attach(obj: KubeObject, token: str) -> bool:
    """Add a finalizer token; returns whether the set changed."""
    return obj.metadata.add_finalizer(token)


def detach(obj: KubeObject, token: str) -> bool:
    """Remove a finalizer token; returns whether the set changed."""
    return obj.metadata.remove_finalizer(token)


class FinalizerCoordinator:
    """Applies and persists the finalizer protocol."""

    def __init__(self, store: ObjectStore, finalizer: str) -> None:
        self._store = store
        self._finalizer = finalizer

    @property
    def finalizer(self) -> str:
        return self._finalizer

    def store_token(self, claim: MariaDBDatabase) -> str:
        """Token marking the claim's use of its backing store."""
        return f"{self._finalizer}-{claim.name}"

    def attach_all(self, claim: MariaDBDatabase, backing: BackingStore) -> bool:
        """Attach both tokens, persisting each change as it happens.

        Returns:
            True if the reconciler's token was newly added to the claim.
        """
        if attach(backing, self.store_token(claim)):
            self._persist(backing)
            logger.info(
                "Finalizer added to backing store",
                extra={"claim": str(claim.identity), "store": backing.name},
            )

        if attach(claim, self._finalizer):
            self._persist(claim)
            logger.info("Finalizer added to claim", extra={"claim": str(claim.identity)})
            return True
        return False

    def release_all(self, claim: MariaDBDatabase, backing: BackingStore | None) -> None:
        """Release both tokens during claim deletion.

        The store-side token is removed and persisted first. With no backing
        store (already gone), there is nothing to release on that side.

        Only the store passed in is released. A claim that attached to a
        MariaDB and later resolves to a same-named Galera leaves its token on
        the MariaDB, which then has to be removed by hand.
        """
        if backing is not None and detach(backing, self.store_token(claim)):
            self._persist(backing)
            logger.info(
                "Finalizer removed from backing store",
                extra={"claim": str(claim.identity), "store": backing.name},
            )

        if detach(claim, self._finalizer):
            self._persist(claim)
            logger.info("Finalizer removed from claim", extra={"claim": str(claim.identity)})

    def _persist(self, obj: T) -> None:
        stored = self._store.update(obj)
        # Later writes in this reconcile must carry the new resourceVersion
        obj.metadata.resource_version = stored.metadata.resource_version
