# backend/app/middleware/performance.py
"""
Request performance middleware.

Tracks for every request:
- Request ID (propagated to logs and Celery task headers)
- Request duration
- Slow request warnings
"""

import logging
import time
from typing import Callable
import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from ..core.request_context import reset_request_id, set_request_id

logger = logging.getLogger(__name__)

SLOW_REQUEST_MS = 1000


class PerformanceMiddleware(BaseHTTPMiddleware):
    """
    Middleware for request ID tracking and duration monitoring.

    Features:
    - Request ID and correlation ID tracking
    - Request duration monitoring
    - Automatic slow request detection
    """

    def __init__(self, app: ASGIApp):
        """Initialize performance middleware."""
        super().__init__(app)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Process request with performance monitoring."""
        # Generate or extract request ID
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        correlation_id = request.headers.get("X-Correlation-ID", request_id)

        # Store in request state for access in handlers
        request.state.request_id = request_id
        request.state.correlation_id = correlation_id
        token = set_request_id(request_id)
        start_time = time.time()

        try:
            response = await call_next(request)
        finally:
            reset_request_id(token)

        duration_ms = (time.time() - start_time) * 1000
        if duration_ms > SLOW_REQUEST_MS:
            logger.warning(
                f"Slow request: {request.method} {request.url.path} took {duration_ms:.0f}ms",
                extra={"request_id": request_id, "status_code": response.status_code},
            )

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Correlation-ID"] = correlation_id
        response.headers["X-Response-Time-MS"] = str(int(duration_ms))
        return response
