# FedGate - SAML Federated Authentication Test Backend
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
Exception handlers.

``FedGateError`` renders as ``ErrorBody`` with its own status. Any other
exception is the single fault boundary: it is logged and rendered as the
generic Panic code so no flow can take the process down.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from fedgate_core.exceptions import FedGateError, PanicError

from ..core.errors import to_error_body
from ..core.messages import parse_accept_language

logger = logging.getLogger(__name__)


def _languages(request: Request) -> list[str]:
    return parse_accept_language(request.headers.get("accept-language"))


def register_exception_handlers(app: FastAPI) -> None:
    """Install FedGate's exception handlers on ``app``."""

    @app.exception_handler(FedGateError)
    async def fedgate_error_handler(request: Request, exc: FedGateError):
        status_code, body = to_error_body(exc, _languages(request))
        if status_code >= 500:
            logger.error(
                f"Request failed: {exc}",
                exc_info=(type(exc), exc, exc.__traceback__),
                extra={"error_code": exc.hex_code, "path": request.url.path},
            )
        else:
            logger.warning(
                f"Rejected request: {exc}",
                extra={"error_code": exc.hex_code, "path": request.url.path},
            )
        return JSONResponse(status_code=status_code, content=body.model_dump())

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": exc.detail,
                "status_code": exc.status_code,
                "request_id": getattr(request.state, "request_id", None),
            },
        )

    @app.exception_handler(Exception)
    async def panic_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled exception: {exc}")
        status_code, body = to_error_body(
            PanicError("Unhandled fault", cause=exc), _languages(request)
        )
        return JSONResponse(status_code=status_code, content=body.model_dump())


__all__ = ["register_exception_handlers"]
