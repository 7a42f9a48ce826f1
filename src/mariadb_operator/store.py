"""Object store access for the custom resources.

The reconciler depends only on the ObjectStore protocol. KubernetesObjectStore
implements it over the CustomObjectsApi using JSON merge patches, so fields the
operator does not model (ownerReferences, managedFields, ...) are never
overwritten.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol, TypeVar

from kubernetes import client
from kubernetes.client.rest import ApiException
from pydantic import ValidationError

from .models import KubeObject

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=KubeObject)


class ObjectNotFoundError(Exception):
    """Raised when the requested object does not exist."""

    def __init__(self, kind: str, namespace: str, name: str) -> None:
        super().__init__(f"{kind} {namespace}/{name} not found")
        self.kind = kind
        self.namespace = namespace
        self.name = name


class TransientStoreError(Exception):
    """Raised for object store failures other than not-found.

    These are returned to the caller for its own retry policy and are never
    retried inside a reconcile.
    """

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class ConflictError(TransientStoreError):
    """Raised when an optimistic write lost against a newer resourceVersion."""

    pass


class ObjectStore(Protocol):
    """Read/write interface the reconciler needs from the object store."""

    def get(self, model: type[T], namespace: str, name: str) -> T:
        """Fetch one object.

        Raises:
            ObjectNotFoundError: If the object does not exist.
            TransientStoreError: For any other failure.
        """
        ...

    def update(self, obj: T) -> T:
        """Persist the object's finalizers and return the stored object."""
        ...

    def patch_status(self, obj: KubeObject) -> None:
        """Persist the object's status subresource."""
        ...

    def list(self, model: type[T], namespace: str | None = None) -> list[T]:
        """List objects of a kind, in one namespace or all of them."""
        ...


def translate_api_error(e: ApiException, kind: str, namespace: str, name: str) -> Exception:
    if e.status == 404:
        return ObjectNotFoundError(kind, namespace, name)
    message = f"{kind} {namespace}/{name}: API error {e.status} {e.reason}"
    if e.status == 409:
        return ConflictError(message, status=e.status)
    return TransientStoreError(message, status=e.status)


class KubernetesObjectStore:
    """ObjectStore backed by the Kubernetes CustomObjectsApi."""

    def __init__(self, api: client.CustomObjectsApi | None = None) -> None:
        self._api = api or client.CustomObjectsApi()

    def get(self, model: type[T], namespace: str, name: str) -> T:
        kind = model.KIND
        try:
            raw = self._api.get_namespaced_custom_object(
                kind.group, kind.version, namespace, kind.plural, name
            )
        except ApiException as e:
            raise translate_api_error(e, kind.kind, namespace, name) from e
        return self._parse(model, raw)

    def update(self, obj: T) -> T:
        kind = obj.KIND
        metadata: dict[str, Any] = {"finalizers": list(obj.metadata.finalizers)}
        if obj.metadata.resource_version:
            # Merge patches honour resourceVersion as an optimistic lock
            metadata["resourceVersion"] = obj.metadata.resource_version
        try:
            raw = self._api.patch_namespaced_custom_object(
                kind.group,
                kind.version,
                obj.namespace,
                kind.plural,
                obj.name,
                {"metadata": metadata},
            )
        except ApiException as e:
            raise translate_api_error(e, kind.kind, obj.namespace, obj.name) from e
        logger.debug(
            "Finalizers updated",
            extra={
                "kind": kind.kind,
                "object": f"{obj.namespace}/{obj.name}",
                "finalizers": metadata["finalizers"],
            },
        )
        return self._parse(type(obj), raw)

    def patch_status(self, obj: KubeObject) -> None:
        kind = obj.KIND
        status = getattr(obj, "status", None)
        if status is None:
            return
        body = {"status": status.model_dump(by_alias=True, mode="json")}
        try:
            self._api.patch_namespaced_custom_object_status(
                kind.group, kind.version, obj.namespace, kind.plural, obj.name, body
            )
        except ApiException as e:
            raise translate_api_error(e, kind.kind, obj.namespace, obj.name) from e

    def list(self, model: type[T], namespace: str | None = None) -> list[T]:
        kind = model.KIND
        try:
            if namespace:
                raw = self._api.list_namespaced_custom_object(
                    kind.group, kind.version, namespace, kind.plural
                )
            else:
                raw = self._api.list_cluster_custom_object(kind.group, kind.version, kind.plural)
        except ApiException as e:
            raise translate_api_error(e, kind.kind, namespace or "*", "") from e

        items: list[T] = []
        for item in raw.get("items", []):
            try:
                items.append(model.model_validate(item))
            except ValidationError as e:
                # One malformed object must not hide the others
                logger.warning(
                    "Skipping malformed object",
                    extra={
                        "kind": kind.kind,
                        "object": item.get("metadata", {}).get("name"),
                        "error": str(e),
                    },
                )
        return items

    @staticmethod
    def _parse(model: type[T], raw: dict[str, Any]) -> T:
        try:
            return model.model_validate(raw)
        except ValidationError as e:
            name = raw.get("metadata", {}).get("name", "")
            raise TransientStoreError(f"{model.KIND.kind} {name} is malformed: {e}") from e
