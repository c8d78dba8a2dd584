"""
Shared pytest fixtures for all tests.

Every test gets a fresh InMemoryEntityStore; API tests get an app built
around that same store so assertions can inspect documents directly.
"""

import pytest
from fastapi.testclient import TestClient

from taskboard.api.main import create_app
from taskboard.domain.services import (
    AssignmentReconciler,
    TaskLifecycleOps,
    UserLifecycleOps,
)
from taskboard.persistence import InMemoryEntityStore
from taskboard.settings import Settings


# =============================================================================
# STORE / SERVICE FIXTURES
# =============================================================================

@pytest.fixture
def store() -> InMemoryEntityStore:
    return InMemoryEntityStore()


@pytest.fixture
def reconciler(store) -> AssignmentReconciler:
    return AssignmentReconciler(store)


@pytest.fixture
def task_ops(store, reconciler) -> TaskLifecycleOps:
    return TaskLifecycleOps(store, reconciler)


@pytest.fixture
def user_ops(store, reconciler) -> UserLifecycleOps:
    return UserLifecycleOps(store, reconciler)


# =============================================================================
# API FIXTURES
# =============================================================================

@pytest.fixture
def settings() -> Settings:
    return Settings(store_backend="memory", task_list_limit=100, log_level="WARNING")


@pytest.fixture
def app(settings, store):
    return create_app(settings=settings, store=store)


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)
