"""Request logging middleware."""

import logging
import time
from typing import Callable
from uuid import uuid4

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

SLOW_REQUEST_MS = 500


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs each request with its duration and tags it with a request ID."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid4())
        request.state.request_id = request_id
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = round((time.perf_counter() - start_time) * 1000, 2)
            logger.error(
                f"{request.method} {request.url.path} failed after {duration_ms}ms: {e}",
                extra={"request_id": request_id},
            )
            raise

        duration_ms = round((time.perf_counter() - start_time) * 1000, 2)
        message = f"{request.method} {request.url.path} {response.status_code} {duration_ms}ms"
        if duration_ms > SLOW_REQUEST_MS:
            logger.warning(f"Slow request: {message}", extra={"request_id": request_id})
        else:
            logger.info(message, extra={"request_id": request_id})

        response.headers["X-Request-ID"] = request_id
        return response
