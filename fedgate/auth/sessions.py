# FedGate - SAML Federated Authentication Test Backend
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
Cookie-carried sessions.

All protocol state lives in signed cookies instead of a server-side store.
Each kind has its own cookie name, signing secret, lifetime and a path
scoped to the one endpoint that consumes it:

    SSO      sso_token           ACS endpoint      60 min
    SLO      slo_token           SLO endpoint      60 min
    Access   access_token        /                 15 min
    Refresh  refresh_token       refresh endpoint  7 days
    Error    saml_error_token    error endpoint    5 min

Cookies are always HttpOnly, Secure and SameSite=None, since the IdP posts
back cross-site.
"""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Generic, TypeVar

from pydantic import BaseModel, Field, ValidationError
from starlette.requests import Request
from starlette.responses import Response

from fedgate_core.exceptions import CookieNoneError, SessionError
from fedgate_core.security import SessionSecrets, generate_token, verify_token

from ..core.settings import CookieSettings

SSO_COOKIE = "sso_token"
SLO_COOKIE = "slo_token"
ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"
ERROR_COOKIE = "saml_error_token"

SSO_LIFETIME = timedelta(minutes=60)
SLO_LIFETIME = timedelta(minutes=60)
ACCESS_LIFETIME = timedelta(minutes=15)
REFRESH_LIFETIME = timedelta(days=7)
ERROR_LIFETIME = timedelta(minutes=5)


# ============================================================
# PAYLOADS
# ============================================================


class SSOSessionPayload(BaseModel):
    """Correlation state of a login awaiting the IdP's response."""

    authn_request_id: str
    redirect_url: str
    redirect_url_on_error: str


class SLOSessionPayload(BaseModel):
    """Correlation state of a logout this service initiated."""

    user_id: int
    authn_request_id: str
    redirect_url: str
    redirect_url_on_error: str


class AuthSessionPayload(BaseModel):
    user_id: int
    email: str


class SamlErrorPayload(BaseModel):
    """Outcome of the last ACS/SLO completion. Empty code and message mean success."""

    code: int | None = None
    message: str | None = None
    timestamp: int = Field(default_factory=lambda: int(datetime.now(UTC).timestamp()))


P = TypeVar("P", bound=BaseModel)


# ============================================================
# COOKIE SESSION
# ============================================================


class CookieSession(Generic[P]):
    """
    One session kind: sign a payload into a cookie, read it back, expire it.

    Usage:
        sso = CookieSession("sso_token", "/saml/acs", SSO_LIFETIME, secret, SSOSessionPayload)
        sso.create(response, payload)
        payload = sso.get(request)
        sso.delete(response)
    """

    def __init__(
        self,
        name: str,
        path: str,
        lifetime: timedelta,
        secret: bytes,
        model: type[P],
    ):
        self.name = name
        self.path = path
        self.lifetime = lifetime
        self._secret = secret
        self._model = model

    def issue(self, payload: P) -> str:
        """Sign a payload without attaching it to a response."""
        return generate_token(payload.model_dump(mode="json"), self.lifetime, self._secret)

    def write(self, response: Response, token: str) -> None:
        response.set_cookie(
            self.name,
            token,
            max_age=int(self.lifetime.total_seconds()),
            path=self.path,
            secure=True,
            httponly=True,
            samesite="none",
        )

    def create(self, response: Response, payload: P) -> str:
        """
        Sign a payload and set it as this kind's cookie.

        Raises:
            SignError: If signing fails
        """
        token = self.issue(payload)
        self.write(response, token)
        return token

    def get(self, request: Request) -> P:
        """
        Read and verify this kind's cookie.

        Raises:
            CookieNoneError: If the cookie is absent
            SessionError: If the token is invalid, expired or of the wrong shape
        """
        token = request.cookies.get(self.name)
        if not token:
            raise CookieNoneError(f"Cookie {self.name} is not present", details={"cookie": self.name})

        value = verify_token(token, self._secret)
        try:
            return self._model.model_validate(value)
        except ValidationError as e:
            raise SessionError(f"Cookie {self.name} has an unexpected payload", cause=e) from e

    def delete(self, response: Response) -> None:
        """Overwrite the cookie with an immediately expired empty one on the same path."""
        response.delete_cookie(
            self.name,
            path=self.path,
            secure=True,
            httponly=True,
            samesite="none",
        )


# ============================================================
# AUTH SESSION
# ============================================================


@dataclass(frozen=True)
class AuthTokens:
    """Pair of access and refresh tokens."""

    access_token: str
    refresh_token: str


class AuthSession:
    """
    The signed-in user, carried as an access/refresh cookie pair.

    Both tokens carry the same payload; they differ in lifetime and path.
    """

    def __init__(self, access: CookieSession[AuthSessionPayload], refresh: CookieSession[AuthSessionPayload]):
        self.access = access
        self.refresh = refresh

    def issue(self, payload: AuthSessionPayload) -> AuthTokens:
        return AuthTokens(
            access_token=self.access.issue(payload),
            refresh_token=self.refresh.issue(payload),
        )

    def write(self, response: Response, tokens: AuthTokens) -> None:
        self.access.write(response, tokens.access_token)
        self.refresh.write(response, tokens.refresh_token)

    def create(self, response: Response, payload: AuthSessionPayload) -> AuthTokens:
        tokens = self.issue(payload)
        self.write(response, tokens)
        return tokens

    def get(self, request: Request) -> AuthSessionPayload:
        """Read the signed-in user from the access cookie."""
        return self.access.get(request)

    def delete(self, response: Response) -> None:
        self.access.delete(response)
        self.refresh.delete(response)


# ============================================================
# SESSION STORE
# ============================================================


class SessionStore:
    """All session kinds, built from one set of secrets and cookie paths."""

    def __init__(
        self,
        sso: CookieSession[SSOSessionPayload],
        slo: CookieSession[SLOSessionPayload],
        auth: AuthSession,
        error: CookieSession[SamlErrorPayload],
    ):
        self.sso = sso
        self.slo = slo
        self.auth = auth
        self.error = error

    @classmethod
    def build(cls, secrets: SessionSecrets, paths: CookieSettings | None = None) -> "SessionStore":
        paths = paths or CookieSettings()
        return cls(
            sso=CookieSession(SSO_COOKIE, paths.acs_path, SSO_LIFETIME, secrets.sso, SSOSessionPayload),
            slo=CookieSession(SLO_COOKIE, paths.slo_path, SLO_LIFETIME, secrets.slo, SLOSessionPayload),
            auth=AuthSession(
                access=CookieSession(
                    ACCESS_COOKIE, paths.access_path, ACCESS_LIFETIME, secrets.access, AuthSessionPayload
                ),
                refresh=CookieSession(
                    REFRESH_COOKIE, paths.refresh_path, REFRESH_LIFETIME, secrets.refresh, AuthSessionPayload
                ),
            ),
            error=CookieSession(ERROR_COOKIE, paths.error_path, ERROR_LIFETIME, secrets.error, SamlErrorPayload),
        )


__all__ = [
    "SSO_COOKIE",
    "SLO_COOKIE",
    "ACCESS_COOKIE",
    "REFRESH_COOKIE",
    "ERROR_COOKIE",
    "SSOSessionPayload",
    "SLOSessionPayload",
    "AuthSessionPayload",
    "SamlErrorPayload",
    "CookieSession",
    "AuthTokens",
    "AuthSession",
    "SessionStore",
]
