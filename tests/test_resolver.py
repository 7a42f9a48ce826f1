"""Tests for backing store resolution."""

from __future__ import annotations

import pytest
from k8s_mock import FakeObjectStore, make_claim, make_galera, make_mariadb

from mariadb_operator.models import Galera, MariaDB, StoreKind
from mariadb_operator.resolver import (
    BackingStoreNotFoundError,
    DependencyResolver,
    InvalidClaimError,
)
from mariadb_operator.store import TransientStoreError


class TestDependencyResolver:
    """Tests for DependencyResolver."""

    def test_resolves_galera(self, store: FakeObjectStore) -> None:
        store.add(make_galera(bootstrapped=True))

        resolved = DependencyResolver(store).resolve(make_claim())

        assert isinstance(resolved.store, Galera)
        assert resolved.kind == StoreKind.CLUSTERED
        assert resolved.ready is True

    def test_returns_galera_even_if_not_ready(self, store: FakeObjectStore) -> None:
        store.add(make_galera(bootstrapped=False))

        resolved = DependencyResolver(store).resolve(make_claim())

        assert resolved.kind == StoreKind.CLUSTERED
        assert resolved.ready is False
        # Standalone lookup is never attempted once Galera is found
        assert store.count("get", "MariaDB") == 0

    def test_falls_back_to_mariadb(self, store: FakeObjectStore) -> None:
        store.add(make_mariadb(db_init_hash="abc"))

        resolved = DependencyResolver(store).resolve(make_claim())

        assert isinstance(resolved.store, MariaDB)
        assert resolved.kind == StoreKind.STANDALONE
        assert resolved.ready is True

    def test_galera_takes_priority_over_mariadb(self, store: FakeObjectStore) -> None:
        store.add(make_galera(bootstrapped=False))
        store.add(make_mariadb(db_init_hash="abc"))

        resolved = DependencyResolver(store).resolve(make_claim())

        assert resolved.kind == StoreKind.CLUSTERED

    def test_not_found(self, store: FakeObjectStore) -> None:
        with pytest.raises(BackingStoreNotFoundError) as exc_info:
            DependencyResolver(store).resolve(make_claim(db_name="missing"))

        assert exc_info.value.name == "missing"
        assert exc_info.value.namespace == "openstack"

    def test_other_namespace_is_not_found(self, store: FakeObjectStore) -> None:
        store.add(make_galera(namespace="elsewhere"))

        with pytest.raises(BackingStoreNotFoundError):
            DependencyResolver(store).resolve(make_claim())

    def test_galera_error_is_not_treated_as_not_found(self, store: FakeObjectStore) -> None:
        store.add(make_mariadb(db_init_hash="abc"))
        store.fail("get", "Galera", TransientStoreError("forbidden", status=403))

        with pytest.raises(TransientStoreError):
            DependencyResolver(store).resolve(make_claim())

        assert store.count("get", "MariaDB") == 0

    def test_mariadb_error_propagates(self, store: FakeObjectStore) -> None:
        store.fail("get", "MariaDB", TransientStoreError("timeout", status=504))

        with pytest.raises(TransientStoreError):
            DependencyResolver(store).resolve(make_claim())

    def test_missing_label(self, store: FakeObjectStore) -> None:
        with pytest.raises(InvalidClaimError, match="dbName"):
            DependencyResolver(store).resolve(make_claim(db_name=None))

        assert store.calls == []

    def test_has_no_side_effects(self, store: FakeObjectStore) -> None:
        store.add(make_galera(bootstrapped=True))

        DependencyResolver(store).resolve(make_claim())

        assert {c.operation for c in store.calls} == {"get"}
