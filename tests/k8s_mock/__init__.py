"""Kubernetes API fakes for reconcile testing.

This package provides in-memory implementations of the object store and job
substrate so the reconciler can be exercised end to end without a cluster.

Key Features:
- Fresh copies on every read, like an API server
- resourceVersion bumps and optimistic-lock conflicts on write
- Garbage collection of deleting objects once their finalizers are gone
- Jobs that stay running until a test completes or fails them
- Error injection per operation and kind

Usage:
    from k8s_mock import FakeJobRunner, FakeObjectStore, make_claim, make_galera

    store = FakeObjectStore()
    store.add(make_galera(bootstrapped=True))
    store.add(make_claim())
    reconciler = MariaDBDatabaseReconciler(store, FakeJobRunner(), OperatorConfig())
"""

from .jobs import FakeJob, FakeJobRunner
from .objects import (
    DEFAULT_NAMESPACE,
    DEFAULT_STORE_NAME,
    make_claim,
    make_galera,
    make_mariadb,
)
from .store import FakeObjectStore, StoreCall

__all__ = [
    "DEFAULT_NAMESPACE",
    "DEFAULT_STORE_NAME",
    "FakeJob",
    "FakeJobRunner",
    "FakeObjectStore",
    "StoreCall",
    "make_claim",
    "make_galera",
    "make_mariadb",
]
