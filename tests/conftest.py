# FedGate - SAML Federated Authentication Test Backend
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
FedGate Test Suite - Shared Fixtures
"""

import base64
import sys
from http.cookies import SimpleCookie
from pathlib import Path
from urllib.parse import urlencode

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from starlette.requests import Request

# Ensure the project is on the path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from fedgate.auth.metadata import IdentityProviderMetadata  # noqa: E402
from fedgate.auth.provider import (  # noqa: E402
    Assertion,
    LogoutRequestMessage,
    LogoutResponseMessage,
    NameID,
    OutboundMessage,
    Subject,
)
from fedgate.auth.saml import SamlOrchestrator  # noqa: E402
from fedgate.auth.sessions import SessionStore  # noqa: E402
from fedgate.core.settings import ServiceProviderConfig  # noqa: E402
from fedgate.data.models import Base  # noqa: E402
from fedgate.data.repositories import UserRepository  # noqa: E402
from fedgate_core.security import SessionSecrets  # noqa: E402

IDP_ENTITY_ID = "https://idp.example.com"
IDP_SSO_URL = "https://idp.example.com/sso"
IDP_SLO_URL = "https://idp.example.com/slo"

STATUS_SUCCESS = "urn:oasis:names:tc:SAML:2.0:status:Success"

# Placeholder; tests that verify signatures substitute a generated certificate
IDP_SIGNING_CERT = "MIICmzCCAYMCBgGNexampleSigningCertificate"

IDP_METADATA_XML = f"""<?xml version="1.0"?>
<md:EntityDescriptor xmlns:md="urn:oasis:names:tc:SAML:2.0:metadata"
                     xmlns:ds="http://www.w3.org/2000/09/xmldsig#"
                     entityID="{IDP_ENTITY_ID}">
  <md:IDPSSODescriptor protocolSupportEnumeration="urn:oasis:names:tc:SAML:2.0:protocol">
    <md:KeyDescriptor use="signing">
      <ds:KeyInfo>
        <ds:X509Data>
          <ds:X509Certificate>{IDP_SIGNING_CERT}</ds:X509Certificate>
        </ds:X509Data>
      </ds:KeyInfo>
    </md:KeyDescriptor>
    <md:SingleLogoutService Binding="urn:oasis:names:tc:SAML:2.0:bindings:HTTP-Redirect"
                            Location="https://idp.example.com/slo-redirect"/>
    <md:SingleLogoutService Binding="urn:oasis:names:tc:SAML:2.0:bindings:HTTP-POST"
                            Location="{IDP_SLO_URL}"/>
    <md:NameIDFormat>urn:oasis:names:tc:SAML:1.1:nameid-format:emailAddress</md:NameIDFormat>
    <md:SingleSignOnService Binding="urn:oasis:names:tc:SAML:2.0:bindings:HTTP-Redirect"
                            Location="https://idp.example.com/sso-redirect"/>
    <md:SingleSignOnService Binding="urn:oasis:names:tc:SAML:2.0:bindings:HTTP-POST"
                            Location="{IDP_SSO_URL}"/>
  </md:IDPSSODescriptor>
</md:EntityDescriptor>
"""


def b64(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


# ============================================================
# FAKE SAML PROVIDER
# ============================================================


class FakeSamlProvider:
    """
    Scriptable stand-in for the python3-saml backed provider.

    Each attribute holds the value the matching call returns, or an
    exception it raises.
    """

    def __init__(self):
        self.sso_url = IDP_SSO_URL
        self.slo_url: str | None = IDP_SLO_URL
        self.authn_request = OutboundMessage(id="_authn-1", payload=b64("<samlp:AuthnRequest/>"))
        self.logout_request = OutboundMessage(id="_logout-1", payload=b64("<samlp:LogoutRequest/>"))
        self.logout_response = OutboundMessage(id="_logout-response-1", payload=b64("<samlp:LogoutResponse/>"))
        self.assertion: Assertion | Exception = Assertion(
            subject=Subject(name_id=NameID(value="alice@example.com"))
        )
        self.inbound_logout_request: LogoutRequestMessage | Exception = LogoutRequestMessage(
            id="_idp-logout-1",
            issuer=IDP_ENTITY_ID,
            name_id=NameID(value="alice@example.com"),
        )
        self.inbound_logout_response: LogoutResponseMessage | Exception = LogoutResponseMessage(
            id="_idp-response-1",
            issuer=IDP_ENTITY_ID,
            in_response_to="_logout-1",
            status=STATUS_SUCCESS,
        )
        self.validation_error: Exception | None = None
        self.calls: list[tuple] = []

    @staticmethod
    def _result(value):
        if isinstance(value, Exception):
            raise value
        return value

    def make_authentication_request(self) -> OutboundMessage:
        self.calls.append(("make_authentication_request",))
        return self._result(self.authn_request)

    def make_logout_request(self, name_id: str) -> OutboundMessage:
        self.calls.append(("make_logout_request", name_id))
        return self._result(self.logout_request)

    def make_logout_response(self, in_response_to: str) -> OutboundMessage:
        self.calls.append(("make_logout_response", in_response_to))
        return self._result(self.logout_response)

    def parse_response(self, saml_response: str, request_id: str) -> Assertion:
        self.calls.append(("parse_response", saml_response, request_id))
        return self._result(self.assertion)

    def unmarshal_logout_request(self, xml: bytes) -> LogoutRequestMessage:
        self.calls.append(("unmarshal_logout_request", xml))
        return self._result(self.inbound_logout_request)

    def unmarshal_logout_response(self, xml: bytes) -> LogoutResponseMessage:
        self.calls.append(("unmarshal_logout_response", xml))
        return self._result(self.inbound_logout_response)

    def validate_logout_response(self, saml_response: str, request_id: str) -> None:
        self.calls.append(("validate_logout_response", saml_response, request_id))
        if self.validation_error is not None:
            raise self.validation_error

    def get_sso_binding_location(self) -> str:
        return self.sso_url

    def get_slo_binding_location(self) -> str | None:
        return self.slo_url

    def get_sp_metadata(self) -> str:
        return '<md:EntityDescriptor entityID="fedgate"/>'


# ============================================================
# FIXTURES
# ============================================================


@pytest.fixture
def sp_config():
    return ServiceProviderConfig(
        entity_id="fedgate",
        acs_url="https://sp.example.com/saml/acs",
        slo_url="https://sp.example.com/saml/slo",
    )


@pytest.fixture
def idp_metadata():
    return IdentityProviderMetadata(
        entity_id=IDP_ENTITY_ID,
        sso_url=IDP_SSO_URL,
        slo_url=IDP_SLO_URL,
        signing_certificates=(IDP_SIGNING_CERT,),
    )


@pytest.fixture
def idp_metadata_file(tmp_path):
    path = tmp_path / "idp-metadata.xml"
    path.write_text(IDP_METADATA_XML, encoding="utf-8")
    return path


@pytest.fixture
def session_store():
    return SessionStore.build(SessionSecrets.generate())


@pytest.fixture
async def session_factory():
    """In-memory SQLite shared by every session of one test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def users(session_factory):
    return UserRepository(session_factory)


@pytest.fixture
def provider():
    return FakeSamlProvider()


@pytest.fixture
def orchestrator(sp_config, idp_metadata, provider, session_store, users):
    return SamlOrchestrator(sp_config, idp_metadata, provider, session_store, users)


@pytest.fixture
def make_request():
    """
    Build a Starlette request as the browser would send it.

    Usage:
        request = make_request("/saml/acs", form={"SAMLResponse": "..."}, cookies={"sso_token": token})
    """

    def _make(
        path: str,
        method: str = "POST",
        form: dict[str, str] | None = None,
        cookies: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
        body: bytes | None = None,
    ) -> Request:
        if body is None:
            body = urlencode(form or {}).encode("ascii")
        raw_headers = [(b"content-type", b"application/x-www-form-urlencoded")]
        if cookies:
            cookie_header = "; ".join(f"{name}={value}" for name, value in cookies.items())
            raw_headers.append((b"cookie", cookie_header.encode("latin-1")))
        for name, value in (headers or {}).items():
            raw_headers.append((name.lower().encode("latin-1"), value.encode("latin-1")))

        scope = {
            "type": "http",
            "http_version": "1.1",
            "method": method,
            "scheme": "https",
            "path": path,
            "raw_path": path.encode("ascii"),
            "root_path": "",
            "query_string": b"",
            "headers": raw_headers,
            "server": ("sp.example.com", 443),
            "client": ("203.0.113.10", 50000),
        }

        async def receive():
            return {"type": "http.request", "body": body, "more_body": False}

        return Request(scope, receive)

    return _make


@pytest.fixture
def set_cookies():
    """Parse a response's Set-Cookie headers into ``{name: Morsel}``."""

    def _parse(response) -> dict:
        jar = {}
        for header in response.headers.getlist("set-cookie"):
            cookie = SimpleCookie()
            cookie.load(header)
            jar.update(cookie)
        return jar

    return _parse
