"""Request logging middleware."""
import contextvars
import logging
import time
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger("drivefetch")

request_id_ctx: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default="-")


class RequestIdFilter(logging.Filter):
    """Attach request_id to all log records for correlation."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_ctx.get()
        return True


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Tags each request with an X-Request-ID and logs its duration."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        token = request_id_ctx.set(request_id)
        start = time.monotonic()
        try:
            logger.info("Request start method=%s path=%s", request.method, request.url.path)
            response = await call_next(request)
            elapsed_ms = int((time.monotonic() - start) * 1000)
            logger.info(
                "Request end method=%s path=%s status=%d elapsed_ms=%d",
                request.method,
                request.url.path,
                response.status_code,
                elapsed_ms,
            )
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            request_id_ctx.reset(token)
