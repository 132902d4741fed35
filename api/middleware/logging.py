"""
Access log middleware: one line per request with status and duration.

Bodies are never logged; payment requests carry buyer documents.
"""
import time

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from core.logging_config import get_logger


logger = get_logger(__name__)


class LoggingMiddleware(BaseHTTPMiddleware):

    SKIP_PATHS = {"/health", "/docs", "/redoc", "/openapi.json"}

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.SKIP_PATHS:
            return await call_next(request)

        start_time = time.time()
        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "request_failed",
                duration=round(time.time() - start_time, 4),
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=True,
            )
            raise

        duration = time.time() - start_time
        level = "warning" if response.status_code >= 400 else "info"
        getattr(logger, level)(
            "request_completed",
            status_code=response.status_code,
            duration=round(duration, 4),
        )
        response.headers["X-Process-Time"] = f"{duration:.3f}"
        return response
