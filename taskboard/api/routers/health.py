"""Health check endpoint."""

from fastapi import APIRouter, Request, status

router = APIRouter(tags=["health"])


@router.get("/health", status_code=status.HTTP_200_OK)
async def liveness_check(request: Request):
    """Confirms the app is running. Does not touch the store."""
    return {
        "status": "healthy",
        "version": request.app.state.settings.app_version,
        "store": type(request.app.state.store).__name__,
    }
