"""FastAPI dependency injection for API endpoints.

The entity store and settings are owned by the application
(``app.state``) and handed to the lifecycle services per request; there
is no module-level store.
"""

from fastapi import Depends, Request

from taskboard.domain.services import (
    AssignmentReconciler,
    TaskLifecycleOps,
    UserLifecycleOps,
)
from taskboard.persistence.store import EntityStore
from taskboard.settings import Settings


def get_store(request: Request) -> EntityStore:
    """Get the store attached to the running app."""
    return request.app.state.store


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_reconciler(store: EntityStore = Depends(get_store)) -> AssignmentReconciler:
    return AssignmentReconciler(store)


def get_task_ops(
    store: EntityStore = Depends(get_store),
    reconciler: AssignmentReconciler = Depends(get_reconciler),
    settings: Settings = Depends(get_app_settings),
) -> TaskLifecycleOps:
    return TaskLifecycleOps(store, reconciler, list_limit=settings.task_list_limit)


def get_user_ops(
    store: EntityStore = Depends(get_store),
    reconciler: AssignmentReconciler = Depends(get_reconciler),
) -> UserLifecycleOps:
    return UserLifecycleOps(store, reconciler)
