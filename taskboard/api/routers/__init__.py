"""API routers."""

from fastapi import APIRouter

from taskboard.api.routers.admin import router as admin_router
from taskboard.api.routers.health import router as health_router
from taskboard.api.routers.tasks import router as tasks_router
from taskboard.api.routers.users import router as users_router

api_router = APIRouter(prefix="/api")
api_router.include_router(users_router)
api_router.include_router(tasks_router)
api_router.include_router(admin_router)


__all__ = [
    "api_router",
    "admin_router",
    "health_router",
    "tasks_router",
    "users_router",
]
