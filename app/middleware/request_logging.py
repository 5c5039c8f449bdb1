"""Per-request access logging with a short request id."""

import logging
import time
import uuid
from typing import Callable

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

# Writes on these paths are logged even when they succeed.
AUDITED_PREFIXES = ("/api/dispatch",)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())[:8]
        request.state.request_id = request_id
        start_time = time.perf_counter()
        path = request.url.path
        extra = {"request_id": request_id, "method": request.method, "path": path}

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error("request_failed", extra={**extra, "error": str(exc)})
            raise

        extra["status_code"] = response.status_code
        extra["duration_ms"] = int((time.perf_counter() - start_time) * 1000)
        if response.status_code >= 500:
            logger.error("request_completed", extra=extra)
        elif response.status_code >= 400:
            logger.warning("request_completed", extra=extra)
        elif request.method != "GET" and path.startswith(AUDITED_PREFIXES):
            logger.info("request_completed", extra=extra)

        response.headers["X-Request-ID"] = request_id
        return response


def setup_request_logging(app: FastAPI) -> None:
    app.add_middleware(RequestLoggingMiddleware)
