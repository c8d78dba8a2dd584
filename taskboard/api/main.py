"""
Main FastAPI application for the Taskboard API.

Users, tasks, and the pendingTasks sets that tie them together.
"""

import logging
from typing import Optional

from fastapi import FastAPI

from taskboard.api.error_handlers import register_error_handlers
from taskboard.api.middleware.logging import LoggingMiddleware
from taskboard.api.middleware.request_id import RequestIDMiddleware
from taskboard.api.routers import api_router, health_router
from taskboard.core.logging import configure_logging
from taskboard.persistence.sql_store import SqlEntityStore, create_sql_store
from taskboard.persistence.store import EntityStore, InMemoryEntityStore
from taskboard.settings import Settings, get_settings

logger = logging.getLogger(__name__)


def build_store(settings: Settings) -> EntityStore:
    """Construct the configured store backend."""
    if settings.store_backend == "sql":
        return create_sql_store(settings.database_url, echo=settings.debug)
    return InMemoryEntityStore()


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[EntityStore] = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Defaults to settings loaded from the environment.
        store: Overrides the backend named in ``settings`` (tests pass an
            InMemoryEntityStore here).
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level, settings.log_format)

    app = FastAPI(
        title=settings.app_name,
        description="Users, tasks and pending-task assignment",
        version=settings.app_version,
        debug=settings.debug,
    )
    app.state.settings = settings
    app.state.store = store if store is not None else build_store(settings)

    # ========================================================================
    # STARTUP / SHUTDOWN
    # ========================================================================

    @app.on_event("startup")
    async def startup_event():
        logger.info(
            "Starting %s (store=%s, environment=%s)",
            settings.app_name,
            type(app.state.store).__name__,
            settings.environment,
        )
        if isinstance(app.state.store, SqlEntityStore):
            await app.state.store.init_schema()

    @app.on_event("shutdown")
    async def shutdown_event():
        logger.info("Shutting down %s", settings.app_name)
        close = getattr(app.state.store, "close", None)
        if close is not None:
            await close()

    # ========================================================================
    # MIDDLEWARE (last added = first executed)
    # ========================================================================

    app.add_middleware(LoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    register_error_handlers(app)

    # ========================================================================
    # ROUTERS
    # ========================================================================

    app.include_router(health_router)
    app.include_router(api_router)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    _settings = get_settings()
    uvicorn.run(
        "taskboard.api.main:app",
        host=_settings.host,
        port=_settings.port,
        reload=_settings.debug,
        log_level=_settings.log_level.lower(),
    )
