"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for k8s_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from k8s_mock import FakeJobRunner, FakeObjectStore  # noqa: E402

from mariadb_operator.config import OperatorConfig  # noqa: E402
from mariadb_operator.reconciler import MariaDBDatabaseReconciler  # noqa: E402


@pytest.fixture
def config() -> OperatorConfig:
    return OperatorConfig()


@pytest.fixture
def store() -> FakeObjectStore:
    return FakeObjectStore()


@pytest.fixture
def jobs() -> FakeJobRunner:
    return FakeJobRunner()


@pytest.fixture
def reconciler(
    store: FakeObjectStore, jobs: FakeJobRunner, config: OperatorConfig
) -> MariaDBDatabaseReconciler:
    return MariaDBDatabaseReconciler(store, jobs, config)
