# FedGate - SAML Federated Authentication Test Backend
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
FastAPI Gateway Application

Main entry point for the FedGate API.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from fedgate_core.security import SessionSecrets

from ..auth.metadata import IdpMetadataLoader
from ..auth.saml import SamlOrchestrator
from ..auth.sessions import SessionStore
from ..core.errors import set_message_catalog
from ..core.messages import MessageCatalog
from ..core.settings import Settings, get_settings
from ..data.postgres import close_database, init_database
from ..data.repositories import UserRepository
from ..observability.logging import configure_logging
from .errors import register_exception_handlers
from .request_context import RequestContextMiddleware
from .saml_routes import router as saml_router

logger = logging.getLogger(__name__)


# ============================================================
# LIFECYCLE
# ============================================================


async def build_orchestrator(settings: Settings) -> SamlOrchestrator:
    """Open the database, generate session secrets and load IdP metadata."""
    session_factory = await init_database(settings.database)
    return await SamlOrchestrator.create(
        sp_config=settings.service_provider(),
        sessions=SessionStore.build(SessionSecrets.generate(), settings.cookies),
        users=UserRepository(session_factory),
        loader=IdpMetadataLoader(
            settings.saml.idp_metadata_url,
            attempts=settings.saml.metadata_attempts,
            base_timeout=settings.saml.metadata_base_timeout_seconds,
        ),
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """FastAPI lifespan context manager."""
    settings: Settings = app.state.settings
    configure_logging(
        level="DEBUG" if settings.debug else settings.observability.level,
        format=settings.observability.format,
    )

    owns_orchestrator = getattr(app.state, "orchestrator", None) is None
    if owns_orchestrator:
        app.state.orchestrator = await build_orchestrator(settings)
        logger.info("SAML orchestrator initialized")

    try:
        yield
    finally:
        if owns_orchestrator:
            await close_database()
            app.state.orchestrator = None


# ============================================================
# APPLICATION
# ============================================================


def create_app(
    settings: Settings | None = None,
    orchestrator: SamlOrchestrator | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Application settings (defaults to get_settings())
        orchestrator: Prebuilt orchestrator; built during startup when omitted
    """
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="SAML Federated Authentication Test Backend",
        version=settings.app_version,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.orchestrator = orchestrator

    set_message_catalog(MessageCatalog(default_language=settings.default_language))

    # --------------------------------------------------------
    # MIDDLEWARE
    # --------------------------------------------------------

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.security.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_middleware(
        RequestContextMiddleware,
        header_name="X-Request-ID",
        log_requests=True,
    )

    # --------------------------------------------------------
    # EXCEPTION HANDLERS
    # --------------------------------------------------------

    register_exception_handlers(app)

    # --------------------------------------------------------
    # ROUTES
    # --------------------------------------------------------

    app.include_router(saml_router)

    return app


# Create app instance
app = create_app()


# ============================================================
# EXPORTS
# ============================================================

__all__ = ["app", "create_app", "build_orchestrator", "lifespan"]
