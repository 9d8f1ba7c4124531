"""
Logging Middleware for the Service Checker trigger

Assigns or propagates X-Request-ID so every log line of a check run can be
correlated with the request that triggered it, and records request timing.
"""

import time
import uuid
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from .logging import EventType, clear_request_id, get_logger, set_request_id
from .metrics import MetricNames, get_metrics


class LoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for structured request/response logging and metrics."""

    def __init__(
        self,
        app: ASGIApp,
        logger_name: str = "service_checker.middleware",
        exclude_paths: Optional[list] = None,
    ):
        super().__init__(app)
        self.logger = get_logger(logger_name)
        self.metrics = get_metrics()
        self.exclude_paths = exclude_paths or ["/health", "/v1/metrics", "/favicon.ico"]

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if self._should_exclude_path(request.url.path):
            return await call_next(request)

        request_id = request.headers.get("x-request-id") or f"req_{uuid.uuid4().hex[:12]}"
        set_request_id(request_id)

        start_time = time.time()
        method = request.method
        path = request.url.path

        try:
            self.logger.log_request_start(
                method=method,
                path=path,
                metadata={"client_ip": self._get_client_ip(request)},
            )

            response = await call_next(request)

            duration_ms = (time.time() - start_time) * 1000
            self.logger.log_request_end(
                method=method,
                path=path,
                status_code=response.status_code,
                duration_ms=duration_ms,
            )

            labels = {"method": method, "path": path, "status": str(response.status_code)}
            self.metrics.record_timer(MetricNames.REQUEST_DURATION, duration_ms, labels=labels)
            self.metrics.increment_counter(MetricNames.REQUESTS_TOTAL, labels=labels)

            response.headers["X-Request-ID"] = request_id
            return response

        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            self.logger.error(
                f"Request processing error: {method} {path}",
                event_type=EventType.RUN_ERROR,
                method=method,
                path=path,
                duration_ms=duration_ms,
                metadata={"error": str(e), "error_type": type(e).__name__},
            )
            raise

        finally:
            clear_request_id()

    def _should_exclude_path(self, path: str) -> bool:
        return path in self.exclude_paths

    def _get_client_ip(self, request: Request) -> str:
        """Get client IP address from request."""
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()

        if request.client:
            return request.client.host

        return "unknown"


def add_logging_middleware(app, **kwargs):
    """Add logging middleware to FastAPI app."""
    app.add_middleware(LoggingMiddleware, **kwargs)
    return app
