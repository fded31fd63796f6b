# notifier/transport/middleware.py
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from notifier.infra.logging_config import LogContext, get_logger
from notifier.infra.metrics import inc_counter, observe_histogram

logger = get_logger(__name__)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Attach a request ID (client supplied or generated) to request and response"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log each request with status and duration"""

    def __init__(self, app: ASGIApp, enabled: bool = True):
        super().__init__(app)
        self.enabled = enabled

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not self.enabled:
            return await call_next(request)

        log_ctx = LogContext(logger, request_id=getattr(request.state, "request_id", "unknown"))
        started = time.monotonic()
        try:
            response = await call_next(request)
        except Exception as exc:
            duration_ms = (time.monotonic() - started) * 1000
            log_ctx.error(
                f"Request failed: {request.method} {request.url.path} "
                f"error={exc.__class__.__name__} duration={duration_ms:.2f}ms",
                exc_info=True,
            )
            raise

        duration_ms = (time.monotonic() - started) * 1000
        log_ctx.info(
            f"{request.method} {request.url.path} status={response.status_code} duration={duration_ms:.2f}ms",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            },
        )
        inc_counter("http_requests_total", method=request.method, status=str(response.status_code))
        observe_histogram("http_request_duration_ms", duration_ms, method=request.method)
        return response


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Turn unhandled exceptions into a JSON 500 carrying the request ID"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception as exc:
            request_id = getattr(request.state, "request_id", "unknown")
            logger.error(
                f"Unhandled exception: {exc.__class__.__name__}: {exc}",
                extra={"request_id": request_id},
                exc_info=True,
            )
            return JSONResponse(
                status_code=500,
                content={"error": "Internal server error", "request_id": request_id},
            )
