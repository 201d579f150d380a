"""
FastAPI middleware for structured request logging
"""

import time
from typing import Callable, Iterable, Optional
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from .config import (
    LogContext,
    log_request_start,
    log_request_end,
    generate_request_id,
    get_logger
)

REQUEST_ID_HEADER = "X-Request-ID"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs every HTTP request and tags the response with X-Request-ID.

    The request id (taken from the incoming header when present) is bound
    to the structlog context for the duration of the request, so plan and
    step events emitted while serving it carry the same id.
    """

    def __init__(
        self,
        app: ASGIApp,
        exclude_prefixes: Optional[Iterable[str]] = None
    ):
        super().__init__(app)
        self.exclude_prefixes = tuple(exclude_prefixes or ("/health", "/metrics"))
        self.logger = get_logger("stepflow.middleware")

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        request_id = request.headers.get(REQUEST_ID_HEADER) or generate_request_id()
        request.state.request_id = request_id
        quiet = path.startswith(self.exclude_prefixes)

        with LogContext(request_id=request_id):
            if not quiet:
                log_request_start(method=request.method, path=path, request_id=request_id)

            start_time = time.time()
            try:
                response = await call_next(request)
            except Exception as e:
                self.logger.error(
                    "Request failed",
                    method=request.method,
                    path=path,
                    duration_ms=(time.time() - start_time) * 1000,
                    error=str(e),
                    error_type=type(e).__name__
                )
                raise

            duration_ms = (time.time() - start_time) * 1000
            if response.status_code >= 500:
                self.logger.error("Server error", method=request.method, path=path, status_code=response.status_code)
            elif response.status_code >= 400:
                self.logger.warning("Client error", method=request.method, path=path, status_code=response.status_code)
            elif not quiet:
                log_request_end(
                    method=request.method,
                    path=path,
                    request_id=request_id,
                    status_code=response.status_code,
                    duration_ms=duration_ms
                )

        response.headers[REQUEST_ID_HEADER] = request_id
        return response
