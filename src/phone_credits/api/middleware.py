"""
Request-scoped middleware.

Every request gets an id (taken from `X-Request-Id` when the caller sends
one), exposed as `request.state.request_id` so ledger entries written while
handling the request carry it as their correlation id. The id is echoed in
the response together with the processing time.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any, Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response


logger = logging.getLogger(__name__)


class RequestContextMiddleware(BaseHTTPMiddleware):
    def __init__(
        self,
        app: Any,
        *,
        request_id_header: str = "X-Request-Id",
        quiet_paths: tuple[str, ...] = ("/api/health",),
    ) -> None:
        super().__init__(app)
        self.request_id_header = request_id_header
        self.quiet_paths = quiet_paths

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Any]
    ) -> Response:
        request_id = request.headers.get(self.request_id_header) or uuid.uuid4().hex
        request.state.request_id = request_id[:64]

        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            process_time = time.perf_counter() - start_time
            logger.error(
                "Request failed after %.3fs: %s %s",
                process_time,
                request.method,
                request.url.path,
                extra={"request_id": request.state.request_id},
            )
            raise

        process_time = time.perf_counter() - start_time
        response.headers[self.request_id_header] = request.state.request_id
        response.headers["X-Process-Time"] = f"{process_time:.4f}"
        if request.url.path not in self.quiet_paths:
            logger.info(
                "%s %s -> %s in %.3fs",
                request.method,
                request.url.path,
                response.status_code,
                process_time,
                extra={"request_id": request.state.request_id},
            )
        return response
