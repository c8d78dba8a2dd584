"""
Logging middleware for the Taskboard API.

Logs every request line with its status code and duration.
"""

import logging
import time
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

logger = logging.getLogger(__name__)


class LoggingMiddleware(BaseHTTPMiddleware):
    """Log method, path, status and duration for each HTTP request."""

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()

        try:
            response = await call_next(request)
        except Exception:
            duration_ms = (time.time() - start_time) * 1000
            logger.error(
                "Error processing request: %s %s (%.2fms)",
                request.method, request.url.path, duration_ms,
                exc_info=True,
            )
            raise

        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            "%s %s -> %s (%.2fms)",
            request.method, request.url.path, response.status_code, duration_ms,
            extra={"request_id": getattr(request.state, "request_id", None)},
        )
        response.headers["X-Process-Time"] = f"{duration_ms:.2f}ms"
        return response
