"""HTTP request/response logging middleware."""

from __future__ import annotations

import logging
import time
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

# Paths to skip logging (health checks, etc.)
SKIP_LOGGING_PATHS = {"/healthz", "/"}

# OAuth callbacks carry a one-time authorization code in the query string
REDACTED_QUERY_PATHS = {"/api/v1/calendar/callback"}


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware to log HTTP requests and responses."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in SKIP_LOGGING_PATHS:
            return await call_next(request)

        start_time = time.time()

        method = request.method
        path = request.url.path
        query_string = str(request.url.query) if request.url.query else ""
        if query_string and path in REDACTED_QUERY_PATHS:
            query_string = "<redacted>"
        full_path = f"{path}?{query_string}" if query_string else path

        logger.info(f"{method} {full_path}")

        try:
            response = await call_next(request)
        except Exception as e:
            duration = time.time() - start_time
            logger.error(
                f"{method} {full_path} ERROR {duration:.3f}s: {type(e).__name__}: {str(e)}",
                exc_info=True,
            )
            raise

        duration = time.time() - start_time
        status_code = response.status_code
        status_text = "OK" if 200 <= status_code < 300 else "ERROR" if status_code >= 400 else "REDIRECT"

        logger.info(f"{method} {full_path} {status_code} {status_text} {duration:.3f}s")

        return response
