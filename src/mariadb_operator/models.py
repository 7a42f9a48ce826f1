"""Pydantic models for the custom resources this operator reads and writes.

These models provide:
1. Type-safe parsing of Kubernetes custom objects (camelCase JSON)
2. Finalizer set operations on object metadata
3. The backing-store sum type (Galera | MariaDB) with exhaustive matching
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, NamedTuple, assert_never

from pydantic import BaseModel, Field

# Label on a MariaDBDatabase naming the Galera or MariaDB instance that hosts it
DB_NAME_LABEL = "dbName"

# Status hash key of the database creation job
DB_CREATE_HASH = "DbCreate"

API_GROUP = "mariadb.openstack.org"
API_VERSION = "v1beta1"


@dataclass(frozen=True)
class ResourceKind:
    """Coordinates of a namespaced custom resource type."""

    group: str
    version: str
    plural: str
    kind: str

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}"


class ClaimKey(NamedTuple):
    """Identity of a MariaDBDatabase claim."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


# =============================================================================
# Metadata
# =============================================================================


class ObjectMeta(BaseModel):
    """Subset of Kubernetes ObjectMeta the operator cares about."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    name: str
    namespace: str = "default"
    uid: str | None = None
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)
    finalizers: list[str] = Field(default_factory=list)
    resource_version: str | None = Field(None, alias="resourceVersion")
    deletion_timestamp: str | None = Field(None, alias="deletionTimestamp")

    @property
    def is_deleting(self) -> bool:
        """Whether deletion has been requested for the object."""
        return bool(self.deletion_timestamp)

    def has_finalizer(self, token: str) -> bool:
        return token in self.finalizers

    def add_finalizer(self, token: str) -> bool:
        """Add a finalizer token.

        Returns:
            True if the token was added, False if it was already present.
        """
        if token in self.finalizers:
            return False
        self.finalizers.append(token)
        return True

    def remove_finalizer(self, token: str) -> bool:
        """Remove every occurrence of a finalizer token.

        Returns:
            True if the token was present, False otherwise.
        """
        if token not in self.finalizers:
            return False
        self.finalizers = [f for f in self.finalizers if f != token]
        return True


class KubeObject(BaseModel):
    """Base class for custom resources."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    KIND: ClassVar[ResourceKind]

    metadata: ObjectMeta

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    def to_manifest(self) -> dict[str, Any]:
        """Serialize to the Kubernetes JSON representation."""
        body = self.model_dump(by_alias=True, exclude_none=True, mode="json")
        body["apiVersion"] = self.KIND.api_version
        body["kind"] = self.KIND.kind
        return body


# =============================================================================
# MariaDBDatabase (the claim)
# =============================================================================


class MariaDBDatabaseSpec(BaseModel):
    """Desired database inside the backing store."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    # Database name to create; defaults to the claim name
    name: str | None = None
    # Secret holding the DatabasePassword key for the database user
    secret: str | None = None
    default_character_set: str = Field("utf8", alias="defaultCharacterSet")
    default_collation: str = Field("utf8_general_ci", alias="defaultCollation")


class MariaDBDatabaseStatus(BaseModel):
    """Observed state, owned by the reconciler."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    # Action name -> hash of the last input that ran to completion
    hash: dict[str, str] = Field(default_factory=dict)
    completed: bool = False


class MariaDBDatabase(KubeObject):
    """A request for a database inside a Galera or MariaDB instance."""

    KIND: ClassVar[ResourceKind] = ResourceKind(
        API_GROUP, API_VERSION, "mariadbdatabases", "MariaDBDatabase"
    )

    spec: MariaDBDatabaseSpec = Field(default_factory=MariaDBDatabaseSpec)
    status: MariaDBDatabaseStatus = Field(default_factory=MariaDBDatabaseStatus)

    @property
    def identity(self) -> ClaimKey:
        return ClaimKey(self.metadata.namespace, self.metadata.name)

    @property
    def backing_store_name(self) -> str:
        """Name of the Galera or MariaDB instance, empty when unset."""
        return self.metadata.labels.get(DB_NAME_LABEL, "")

    @property
    def database_name(self) -> str:
        return self.spec.name or self.metadata.name


# =============================================================================
# Backing stores
# =============================================================================


class StoreKind(str, Enum):
    """Variant tag of a backing store."""

    CLUSTERED = "clustered"
    STANDALONE = "standalone"


class GaleraSpec(BaseModel):
    model_config = {"extra": "ignore", "populate_by_name": True}

    secret: str
    container_image: str = Field(alias="containerImage")
    replicas: int = 1


class GaleraStatus(BaseModel):
    model_config = {"extra": "ignore", "populate_by_name": True}

    bootstrapped: bool = False


class Galera(KubeObject):
    """Clustered backing store."""

    KIND: ClassVar[ResourceKind] = ResourceKind(API_GROUP, API_VERSION, "galeras", "Galera")

    spec: GaleraSpec
    status: GaleraStatus = Field(default_factory=GaleraStatus)


class MariaDBSpec(BaseModel):
    model_config = {"extra": "ignore", "populate_by_name": True}

    secret: str
    container_image: str = Field(alias="containerImage")


class MariaDBStatus(BaseModel):
    model_config = {"extra": "ignore", "populate_by_name": True}

    db_init_hash: str = Field("", alias="dbInitHash")


class MariaDB(KubeObject):
    """Standalone backing store."""

    KIND: ClassVar[ResourceKind] = ResourceKind(API_GROUP, API_VERSION, "mariadbs", "MariaDB")

    spec: MariaDBSpec
    status: MariaDBStatus = Field(default_factory=MariaDBStatus)


BackingStore = Galera | MariaDB


@dataclass(frozen=True)
class StoreConnection:
    """Values the provisioning job needs from a backing store."""

    name: str
    secret: str
    container_image: str


def store_kind(store: BackingStore) -> StoreKind:
    match store:
        case Galera():
            return StoreKind.CLUSTERED
        case MariaDB():
            return StoreKind.STANDALONE
        case _:
            assert_never(store)


def store_is_ready(store: BackingStore) -> bool:
    """Readiness signal of a backing store.

    Galera is ready once bootstrapped; MariaDB once its init hash is recorded.
    """
    match store:
        case Galera():
            return store.status.bootstrapped
        case MariaDB():
            return store.status.db_init_hash != ""
        case _:
            assert_never(store)


def store_connection(store: BackingStore) -> StoreConnection:
    match store:
        case Galera():
            return StoreConnection(store.name, store.spec.secret, store.spec.container_image)
        case MariaDB():
            return StoreConnection(store.name, store.spec.secret, store.spec.container_image)
        case _:
            assert_never(store)
