# FedGate - SAML Federated Authentication Test Backend
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
SAML Orchestrator

Redirect-driven SSO/SLO state machine. One operation runs per inbound
request; correlation state travels between hops in signed cookies.

Login:
    Idle -> AwaitingIdPResponse (SSO cookie) -> Authenticated | Failed

SP-initiated logout:
    Idle -> AwaitingIdPLogoutResponse (SLO cookie) -> LoggedOut | Failed

IdP-initiated ("other SP") logout is stateless and single-shot.

ACS and the SP-initiated logout callback end in a single exit step that
always consumes the correlation cookie, writes the error cookie (empty on
success) and redirects to the caller's success or error URL.
"""

import base64
import binascii
import logging
from collections.abc import Callable

from sqlalchemy.ext.asyncio import AsyncSession
from starlette.datastructures import FormData
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from fedgate_core.exceptions import (
    Base64SamlRequestError,
    Base64SamlResponseError,
    ConfigError,
    CookieNoneError,
    EmptyLogoutRequestIdError,
    EmptyNameIdError,
    FedGateError,
    InvalidNameIdError,
    OperationNotAllowedError,
    QueryError,
    QueryResultError,
    RequestParseError,
    SamlLogoutResponseCreationError,
    SessionError,
    SLOAuthnRequestError,
    SLOValidationError,
    SSOAuthnRequestError,
    SSOParseResponseError,
    UnexpectedAssertionError,
    UnmarshalSamlRequestError,
    UnmarshalSamlResponseError,
)

from ..core.errors import to_error_body
from ..core.messages import parse_accept_language
from ..core.settings import ServiceProviderConfig
from ..data.repositories import UserRepository
from ..observability.logging import audit_logger, bind_user
from .forms import SAML_REQUEST_FORM, SAML_RESPONSE_FORM
from .metadata import IdentityProviderMetadata, IdpMetadataLoader
from .provider import SamlLibraryError, SamlProvider, SamlServiceProvider
from .sessions import (
    AuthSessionPayload,
    SamlErrorPayload,
    SessionStore,
    SLOSessionPayload,
    SSOSessionPayload,
)

logger = logging.getLogger(__name__)

SAML_REQUEST_FIELD = "SAMLRequest"
SAML_RESPONSE_FIELD = "SAMLResponse"
ERROR_FLAG = "saml_error=1"

ProviderFactory = Callable[[ServiceProviderConfig, IdentityProviderMetadata], SamlProvider]


def with_error_flag(url: str) -> str:
    """Append ``saml_error=1`` to a redirect target."""
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{ERROR_FLAG}"


def _decode(value: str, error: type[FedGateError]) -> bytes:
    """Decode a posted SAML payload; IdPs may wrap it across lines."""
    try:
        return base64.b64decode("".join(value.split()), validate=True)
    except (binascii.Error, ValueError) as e:
        raise error(f"{error.default_message}: {e}", cause=e) from e


class SamlOrchestrator:
    """
    Login, ACS, logout and logout-callback flows.

    Usage:
        orchestrator = await SamlOrchestrator.create(sp_config, sessions, users, loader)
        response = await orchestrator.execute_saml_login(request, redirect_url, error_url)
    """

    def __init__(
        self,
        sp_config: ServiceProviderConfig,
        idp_metadata: IdentityProviderMetadata,
        provider: SamlProvider,
        sessions: SessionStore,
        users: UserRepository,
    ):
        self.sp_config = sp_config
        self.idp_metadata = idp_metadata
        self.provider = provider
        self.sessions = sessions
        self.users = users

    @classmethod
    async def create(
        cls,
        sp_config: ServiceProviderConfig,
        sessions: SessionStore,
        users: UserRepository,
        loader: IdpMetadataLoader,
        provider_factory: ProviderFactory = SamlServiceProvider,
    ) -> "SamlOrchestrator":
        """
        Load IdP metadata and build the orchestrator.

        Raises:
            ConfigError, DiskError, InvalidMetadataError, DownloadError
        """
        idp_metadata = await loader.fetch_idp_metadata()
        try:
            provider = provider_factory(sp_config, idp_metadata)
        except SamlLibraryError as e:
            raise ConfigError(f"Invalid SAML configuration: {e}", cause=e) from e
        return cls(sp_config, idp_metadata, provider, sessions, users)

    # ============================================================
    # HELPERS
    # ============================================================

    @staticmethod
    async def _read_form(request: Request) -> FormData:
        try:
            return await request.form()
        except Exception as e:
            raise RequestParseError(f"Failed to parse form: {e}", cause=e) from e

    def _write_error(self, request: Request, response: Response, error: Exception) -> None:
        """Stash the rendered error in the error cookie."""
        languages = parse_accept_language(request.headers.get("accept-language"))
        _, body = to_error_body(error, languages)
        self.sessions.error.create(response, SamlErrorPayload(code=body.code, message=body.message))

    def _finish(
        self,
        request: Request,
        response: Response,
        error: Exception | None,
        redirect_url: str,
        redirect_url_on_error: str,
        flow: str,
    ) -> Response:
        if error is not None:
            logger.error(
                f"SAML {flow} failed: {error}",
                exc_info=(type(error), error, error.__traceback__),
            )
            self._write_error(request, response, error)
            response.headers["location"] = with_error_flag(redirect_url_on_error)
        else:
            self.sessions.error.create(response, SamlErrorPayload())
            response.headers["location"] = redirect_url
        return response

    # ============================================================
    # LOGIN
    # ============================================================

    async def execute_saml_login(
        self, request: Request, redirect_url: str, redirect_url_on_error: str
    ) -> Response:
        """
        Start a login: post an AuthnRequest to the IdP.

        Raises:
            SSOAuthnRequestError: If the request cannot be built
            HtmlWritingError: If the form cannot be rendered
        """
        try:
            message = self.provider.make_authentication_request()
        except SamlLibraryError as e:
            raise SSOAuthnRequestError(f"Failed to build AuthnRequest: {e}", cause=e) from e

        response = SAML_REQUEST_FORM.response(self.provider.get_sso_binding_location(), message.payload)
        self.sessions.sso.create(
            response,
            SSOSessionPayload(
                authn_request_id=message.id,
                redirect_url=redirect_url,
                redirect_url_on_error=redirect_url_on_error,
            ),
        )
        logger.info("SAML login initiated", extra={"authn_request_id": message.id})
        return response

    async def execute_saml_acs(self, request: Request) -> Response:
        """
        Consume the IdP's authentication response.

        Fails without a redirect only when the form cannot be read or the SSO
        cookie is absent or invalid; every later failure redirects to the
        caller's error URL.
        """
        form = await self._read_form(request)
        sso = self.sessions.sso.get(request)

        response = Response(status_code=302)
        error: Exception | None = None
        try:
            await self._consume_assertion(form, sso, response)
        except Exception as e:
            error = e

        self.sessions.sso.delete(response)
        return self._finish(request, response, error, sso.redirect_url, sso.redirect_url_on_error, "ACS")

    async def _consume_assertion(self, form: FormData, sso: SSOSessionPayload, response: Response) -> None:
        saml_response = form.get(SAML_RESPONSE_FIELD)
        if not isinstance(saml_response, str) or not saml_response:
            raise SSOParseResponseError("SAMLResponse is missing")

        try:
            assertion = self.provider.parse_response(saml_response, sso.authn_request_id)
        except SamlLibraryError as e:
            raise SSOParseResponseError(f"Failed to parse SAML response: {e}", cause=e) from e

        if assertion.subject is None:
            raise UnexpectedAssertionError("Assertion has no subject")
        if assertion.subject.name_id is None:
            raise UnexpectedAssertionError("Assertion subject has no NameID")
        email = assertion.subject.name_id.value
        if not email:
            raise UnexpectedAssertionError("Assertion NameID is empty")

        created = False
        async with self.users.transaction() as tx:
            user = await self.users.select_by_email(tx, email)
            if user is None:
                user = await self.users.create_user(tx, email)
                created = True
            bind_user(user.id)
            tokens = self.sessions.auth.issue(AuthSessionPayload(user_id=user.id, email=email))
            await self.users.update_token(tx, user.id, tokens.access_token, tokens.refresh_token)

        self.sessions.auth.write(response, tokens)
        if created:
            audit_logger.create("user", str(user.id), {"email": email})
        audit_logger.login(str(user.id))

    # ============================================================
    # LOGOUT
    # ============================================================

    async def execute_saml_logout(
        self, request: Request, redirect_url: str, redirect_url_on_error: str
    ) -> Response:
        """
        Start an SP-initiated logout: post a LogoutRequest to the IdP.

        Raises:
            CookieNoneError / SessionError: If no one is signed in
            SLOAuthnRequestError: If the request cannot be built
            HtmlWritingError: If the form cannot be rendered
        """
        auth = self.sessions.auth.get(request)
        bind_user(auth.user_id)

        slo_location = self.provider.get_slo_binding_location()
        if not slo_location:
            raise SLOAuthnRequestError("IdP metadata has no HTTP-POST SLO endpoint")
        try:
            message = self.provider.make_logout_request(auth.email)
        except SamlLibraryError as e:
            raise SLOAuthnRequestError(f"Failed to build LogoutRequest: {e}", cause=e) from e

        response = SAML_REQUEST_FORM.response(slo_location, message.payload)
        self.sessions.slo.create(
            response,
            SLOSessionPayload(
                user_id=auth.user_id,
                authn_request_id=message.id,
                redirect_url=redirect_url,
                redirect_url_on_error=redirect_url_on_error,
            ),
        )
        logger.info("SAML logout initiated", extra={"authn_request_id": message.id})
        return response

    async def execute_saml_slo(self, request: Request) -> Response:
        """
        SLO endpoint with two entry points.

        A posted SAMLRequest is a logout initiated elsewhere; a posted
        SAMLResponse answers a logout this service initiated.

        Raises:
            OperationNotAllowedError: If the form carries neither
        """
        form = await self._read_form(request)

        if form.get(SAML_REQUEST_FIELD):
            return await self._slo_from_other_sp(request, form)
        if form.get(SAML_RESPONSE_FIELD):
            return await self._slo_from_self(request, form)

        raise OperationNotAllowedError("SLO request carries neither SAMLRequest nor SAMLResponse")

    async def _slo_from_other_sp(self, request: Request, form: FormData) -> Response:
        slo_location = self.provider.get_slo_binding_location()
        if not slo_location:
            raise SamlLogoutResponseCreationError("IdP metadata has no HTTP-POST SLO endpoint")

        async with self.users.transaction() as tx:
            xml = _decode(str(form[SAML_REQUEST_FIELD]), Base64SamlRequestError)
            try:
                logout_request = self.provider.unmarshal_logout_request(xml)
            except SamlLibraryError as e:
                raise UnmarshalSamlRequestError(f"Failed to read LogoutRequest: {e}", cause=e) from e

            if logout_request.name_id is None or not logout_request.name_id.value:
                raise EmptyNameIdError("LogoutRequest has no NameID")

            cleared = await self._release_matching_user(request, tx, logout_request.name_id.value)

            try:
                message = self.provider.make_logout_response(logout_request.id)
            except SamlLibraryError as e:
                raise SamlLogoutResponseCreationError(
                    f"Failed to build LogoutResponse: {e}", cause=e
                ) from e

        response = SAML_RESPONSE_FORM.response(slo_location, message.payload)
        if cleared:
            self.sessions.auth.delete(response)
        return response

    async def _release_matching_user(self, request: Request, tx: AsyncSession, name_id: str) -> bool:
        """
        Clear the signed-in user's tokens if they are the one being logged out.

        Anything short of a cleared token pair is only a warning; the IdP
        still gets a successful logout response. Returns whether the
        session's auth cookies should be deleted.
        """
        try:
            auth = self.sessions.auth.get(request)
        except (CookieNoneError, SessionError) as e:
            logger.warning(f"IdP-initiated logout without an active session: {e}")
            return False

        if auth.email != name_id:
            logger.warning(
                "IdP-initiated logout for a different user than the active session",
                extra={"session_user_id": auth.user_id},
            )
            return False

        bind_user(auth.user_id)
        try:
            await self.users.update_token(tx, auth.user_id, "", "")
        except (QueryError, QueryResultError) as e:
            logger.warning(f"IdP-initiated logout could not clear stored tokens: {e}")
            audit_logger.logout(str(auth.user_id), initiator="idp", success=False)
            return True

        audit_logger.logout(str(auth.user_id), initiator="idp")
        return True

    async def _slo_from_self(self, request: Request, form: FormData) -> Response:
        slo = self.sessions.slo.get(request)
        bind_user(slo.user_id)

        response = Response(status_code=302)
        error: Exception | None = None
        try:
            await self._complete_logout(form, slo)
        except Exception as e:
            error = e

        self.sessions.slo.delete(response)
        if error is None:
            self.sessions.auth.delete(response)
            audit_logger.logout(str(slo.user_id), initiator="sp")
        return self._finish(request, response, error, slo.redirect_url, slo.redirect_url_on_error, "SLO")

    async def _complete_logout(self, form: FormData, slo: SLOSessionPayload) -> None:
        saml_response = str(form[SAML_RESPONSE_FIELD])

        async with self.users.transaction() as tx:
            xml = _decode(saml_response, Base64SamlResponseError)
            try:
                logout_response = self.provider.unmarshal_logout_response(xml)
            except SamlLibraryError as e:
                raise UnmarshalSamlResponseError(f"Failed to read LogoutResponse: {e}", cause=e) from e

            if not logout_response.in_response_to:
                raise EmptyLogoutRequestIdError("LogoutResponse has no InResponseTo")
            if logout_response.in_response_to != slo.authn_request_id:
                raise InvalidNameIdError(
                    "LogoutResponse does not answer the pending LogoutRequest",
                    details={
                        "in_response_to": logout_response.in_response_to,
                        "expected": slo.authn_request_id,
                    },
                )

            try:
                self.provider.validate_logout_response(saml_response, slo.authn_request_id)
            except SamlLibraryError as e:
                raise SLOValidationError(f"LogoutResponse validation failed: {e}", cause=e) from e

            await self.users.update_token(tx, slo.user_id, "", "")

    # ============================================================
    # ERROR
    # ============================================================

    async def execute_saml_error(self, request: Request) -> Response:
        """
        Deliver the outcome of the last ACS/SLO completion, at most once.

        Raises:
            CookieNoneError: If there is nothing to deliver
        """
        payload = self.sessions.error.get(request)
        response = JSONResponse(payload.model_dump(mode="json"))
        self.sessions.error.delete(response)
        return response


__all__ = [
    "SamlOrchestrator",
    "with_error_flag",
]
