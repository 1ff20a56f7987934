# FedGate - SAML Federated Authentication Test Backend
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
Request Context Middleware

Provides request ID propagation:
- Generates or accepts X-Request-ID header
- Propagates request ID through logging
- Logs request start/end with timing

Usage:
    from fedgate.gateway.request_context import RequestContextMiddleware

    app.add_middleware(RequestContextMiddleware)
"""

import logging
import secrets
import time
from collections.abc import Callable

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from ..observability.logging import request_id_var

logger = logging.getLogger(__name__)


def get_request_id() -> str:
    """
    Get the current request ID.

    Returns empty string if not in a request context.
    """
    return request_id_var.get() or ""


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Middleware for request ID propagation.

    Features:
    - Generates unique request ID or uses X-Request-ID header
    - Sets the request ID context variable read by the log formatters
    - Adds X-Request-ID to response headers
    - Logs request start/end with timing
    """

    def __init__(
        self,
        app,
        header_name: str = "X-Request-ID",
        generate_id: Callable[[], str] | None = None,
        log_requests: bool = True,
    ):
        super().__init__(app)
        self.header_name = header_name
        self.generate_id = generate_id or (lambda: secrets.token_hex(16))
        self.log_requests = log_requests

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        request_id = self._sanitize_request_id(
            request.headers.get(self.header_name) or self.generate_id()
        )
        started = time.perf_counter()

        token = request_id_var.set(request_id)
        request.state.request_id = request_id
        method, path = request.method, request.url.path

        try:
            if self.log_requests:
                logger.info(
                    f"Request started: {method} {path}",
                    extra={"method": method, "path": path},
                )

            response = await call_next(request)
            response.headers[self.header_name] = request_id

            if self.log_requests:
                duration_ms = (time.perf_counter() - started) * 1000
                logger.info(
                    f"Request completed: {method} {path} "
                    f"status={response.status_code} duration={duration_ms:.2f}ms",
                    extra={
                        "method": method,
                        "path": path,
                        "status_code": response.status_code,
                        "duration_ms": round(duration_ms, 2),
                    },
                )

            return response

        finally:
            request_id_var.reset(token)

    def _sanitize_request_id(self, request_id: str) -> str:
        """
        Sanitize request ID to prevent log injection.

        Only alphanumerics, dashes and underscores survive, up to 64 characters.
        """
        sanitized = "".join(c for c in request_id[:64] if c.isalnum() or c in "-_")
        return sanitized or self.generate_id()


__all__ = [
    "RequestContextMiddleware",
    "get_request_id",
]
