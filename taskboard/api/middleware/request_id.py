"""
Request ID middleware.

Generates or extracts a unique identifier for request tracing.
"""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from uuid import uuid4


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Extract X-Request-ID from the request or generate one.

    Stored in request.state.request_id and echoed in the response headers.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid4())
        request.state.request_id = request_id

        response = await call_next(request)

        response.headers["X-Request-ID"] = request_id
        return response
