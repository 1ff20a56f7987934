# FedGate - SAML Federated Authentication Test Backend
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
SAML Routes

Endpoints:
- GET  /saml/login     Start login (auto-submit AuthnRequest to the IdP)
- POST /saml/acs       Assertion consumer service
- GET  /saml/logout    Start SP-initiated logout
- POST /saml/slo       Single logout endpoint (IdP requests and responses)
- GET  /saml/error     Read the outcome of the last ACS/SLO completion once
- GET  /saml/metadata  This service's SP metadata

Login and logout take their redirect targets as the ``x-redirect-url`` and
``x-redirect-url-on-error`` query parameters.
"""

import logging
from urllib.parse import urlsplit

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response

from fedgate_core.exceptions import (
    ConfigError,
    ForbiddenCharacterError,
    InvalidParameterError,
    ParameterMissingError,
)

from ..auth.provider import SamlLibraryError
from ..auth.saml import SamlOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/saml", tags=["SAML"])

REDIRECT_URL_PARAM = "x-redirect-url"
REDIRECT_URL_ON_ERROR_PARAM = "x-redirect-url-on-error"


# ============================================================
# DEPENDENCIES
# ============================================================


def get_orchestrator(request: Request) -> SamlOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise ConfigError("SAML orchestrator is not initialized")
    return orchestrator


def redirect_target(request: Request, name: str) -> str:
    """
    Read an absolute http(s) redirect target from the query string.

    Raises:
        ParameterMissingError: If the parameter is absent or empty
        ForbiddenCharacterError: If it contains control characters
        InvalidParameterError: If it is not an absolute http(s) URL
    """
    value = request.query_params.get(name)
    if not value:
        raise ParameterMissingError(f"Query parameter {name} is missing", name)
    if any(ord(c) < 0x20 or ord(c) == 0x7F for c in value):
        raise ForbiddenCharacterError(f"Query parameter {name} has control characters", name)

    parts = urlsplit(value)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise InvalidParameterError(f"Query parameter {name} is not an absolute http(s) URL", name)
    return value


# ============================================================
# ROUTES
# ============================================================


@router.get("/login")
async def saml_login(
    request: Request,
    orchestrator: SamlOrchestrator = Depends(get_orchestrator),
) -> Response:
    """Start a federated login."""
    return await orchestrator.execute_saml_login(
        request,
        redirect_target(request, REDIRECT_URL_PARAM),
        redirect_target(request, REDIRECT_URL_ON_ERROR_PARAM),
    )


@router.post("/acs")
async def saml_acs(
    request: Request,
    orchestrator: SamlOrchestrator = Depends(get_orchestrator),
) -> Response:
    return await orchestrator.execute_saml_acs(request)


@router.get("/logout")
async def saml_logout(
    request: Request,
    orchestrator: SamlOrchestrator = Depends(get_orchestrator),
) -> Response:
    """Start a logout initiated by this service."""
    return await orchestrator.execute_saml_logout(
        request,
        redirect_target(request, REDIRECT_URL_PARAM),
        redirect_target(request, REDIRECT_URL_ON_ERROR_PARAM),
    )


@router.post("/slo")
async def saml_slo(
    request: Request,
    orchestrator: SamlOrchestrator = Depends(get_orchestrator),
) -> Response:
    return await orchestrator.execute_saml_slo(request)


@router.get("/error")
async def saml_error(
    request: Request,
    orchestrator: SamlOrchestrator = Depends(get_orchestrator),
) -> Response:
    return await orchestrator.execute_saml_error(request)


@router.get("/metadata")
async def saml_metadata(
    orchestrator: SamlOrchestrator = Depends(get_orchestrator),
) -> Response:
    """SP metadata for registering this service at the IdP."""
    try:
        metadata = orchestrator.provider.get_sp_metadata()
    except SamlLibraryError as e:
        raise ConfigError(f"Failed to generate SP metadata: {e}", cause=e) from e
    return Response(content=metadata, media_type="application/samlmetadata+xml")


__all__ = [
    "router",
    "get_orchestrator",
    "redirect_target",
    "REDIRECT_URL_PARAM",
    "REDIRECT_URL_ON_ERROR_PARAM",
]
