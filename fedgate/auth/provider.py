# FedGate - SAML Federated Authentication Test Backend
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
SAML Service Provider

Thin adapter over python3-saml. It builds and parses the protocol
messages the login/logout flows exchange with the IdP; everything
cryptographic or XML-shaped happens here, never in the flows themselves.

All messages use the HTTP-POST binding, so payloads are plain base64
(no deflate). Any library failure surfaces as ``SamlLibraryError`` and
is mapped to a coded error by the caller.
"""

import logging
from dataclasses import dataclass
from typing import Any, Protocol
from urllib.parse import urlsplit

from onelogin.saml2.authn_request import OneLogin_Saml2_Authn_Request
from onelogin.saml2.constants import OneLogin_Saml2_Constants
from onelogin.saml2.logout_request import OneLogin_Saml2_Logout_Request
from onelogin.saml2.logout_response import OneLogin_Saml2_Logout_Response
from onelogin.saml2.response import OneLogin_Saml2_Response
from onelogin.saml2.settings import OneLogin_Saml2_Settings
from onelogin.saml2.utils import OneLogin_Saml2_Utils
from onelogin.saml2.xml_utils import OneLogin_Saml2_XML

from ..core.settings import ServiceProviderConfig
from .metadata import IdentityProviderMetadata

logger = logging.getLogger(__name__)

PROTOCOL_NS = OneLogin_Saml2_Constants.NS_SAMLP
NAMEID_FORMAT = OneLogin_Saml2_Constants.NAMEID_EMAIL_ADDRESS


class SamlLibraryError(Exception):
    """The SAML library rejected or failed to produce a message."""

    pass


# ============================================================
# MESSAGE TYPES
# ============================================================


@dataclass(frozen=True)
class OutboundMessage:
    """A message ready to be posted to the IdP."""

    id: str
    payload: str  # base64-encoded XML


@dataclass(frozen=True)
class NameID:
    value: str
    format: str | None = None


@dataclass(frozen=True)
class Subject:
    name_id: NameID | None


@dataclass(frozen=True)
class Assertion:
    """The parts of a validated assertion the login flow consumes."""

    subject: Subject | None


@dataclass(frozen=True)
class LogoutRequestMessage:
    id: str
    issuer: str | None
    name_id: NameID | None


@dataclass(frozen=True)
class LogoutResponseMessage:
    id: str
    issuer: str | None
    in_response_to: str | None
    status: str | None


def request_data_for(url: str, post_data: dict[str, str] | None = None) -> dict[str, Any]:
    """
    Build the request dict python3-saml validates against.

    Built from this service's configured endpoint URL rather than the
    inbound request, so Destination and Recipient checks hold behind
    reverse proxies.
    """
    parts = urlsplit(url)
    https = parts.scheme == "https"
    return {
        "http_host": parts.hostname or "localhost",
        "script_name": parts.path,
        "get_data": {},
        "post_data": post_data or {},
        "https": "on" if https else "off",
        "server_port": str(parts.port or (443 if https else 80)),
    }


# ============================================================
# CAPABILITY
# ============================================================


class SamlProvider(Protocol):
    """What the login/logout flows need from a SAML library."""

    def make_authentication_request(self) -> OutboundMessage: ...

    def make_logout_request(self, name_id: str) -> OutboundMessage: ...

    def make_logout_response(self, in_response_to: str) -> OutboundMessage: ...

    def parse_response(self, saml_response: str, request_id: str) -> Assertion: ...

    def unmarshal_logout_request(self, xml: bytes) -> LogoutRequestMessage: ...

    def unmarshal_logout_response(self, xml: bytes) -> LogoutResponseMessage: ...

    def validate_logout_response(self, saml_response: str, request_id: str) -> None: ...

    def get_sso_binding_location(self) -> str: ...

    def get_slo_binding_location(self) -> str | None: ...

    def get_sp_metadata(self) -> str: ...


class SamlServiceProvider:
    """
    python3-saml backed implementation of ``SamlProvider``.

    Usage:
        provider = SamlServiceProvider(sp_config, idp_metadata)
        message = provider.make_authentication_request()
    """

    def __init__(self, config: ServiceProviderConfig, idp: IdentityProviderMetadata):
        self.config = config
        self.idp = idp
        try:
            self._settings = OneLogin_Saml2_Settings(self._settings_dict())
        except Exception as e:
            raise SamlLibraryError(f"Invalid SAML settings: {e}") from e

    def _settings_dict(self) -> dict[str, Any]:
        sign = self.config.sign_requests
        sp: dict[str, Any] = {
            "entityId": self.config.entity_id,
            "assertionConsumerService": {
                "url": self.config.acs_url,
                "binding": OneLogin_Saml2_Constants.BINDING_HTTP_POST,
            },
            "singleLogoutService": {
                "url": self.config.slo_url,
                "binding": OneLogin_Saml2_Constants.BINDING_HTTP_POST,
            },
            "NameIDFormat": NAMEID_FORMAT,
        }
        if self.config.certificate:
            sp["x509cert"] = self.config.certificate
        if self.config.private_key:
            sp["privateKey"] = self.config.private_key

        return {
            "strict": True,
            "debug": False,
            "sp": sp,
            "idp": self.idp.to_saml_settings(),
            "security": {
                "authnRequestsSigned": sign,
                "logoutRequestSigned": sign,
                "logoutResponseSigned": sign,
                "wantAssertionsSigned": True,
                "wantMessagesSigned": False,
                # The NameID carries the email; attributes are not read
                "wantAttributeStatement": False,
                "requestedAuthnContext": False,
                "signatureAlgorithm": OneLogin_Saml2_Constants.RSA_SHA256,
                "digestAlgorithm": OneLogin_Saml2_Constants.SHA256,
            },
        }

    def _encode(self, xml: str) -> str:
        """Base64-encode a message, signing it first when request signing is on."""
        if self.config.sign_requests:
            xml = OneLogin_Saml2_Utils.add_sign(
                xml,
                self._settings.get_sp_key(),
                self._settings.get_sp_cert(),
                sign_algorithm=OneLogin_Saml2_Constants.RSA_SHA256,
                digest_algorithm=OneLogin_Saml2_Constants.SHA256,
            )
        return OneLogin_Saml2_Utils.b64encode(xml)

    # --------------------------------------------------------
    # OUTBOUND
    # --------------------------------------------------------

    def make_authentication_request(self) -> OutboundMessage:
        try:
            request = OneLogin_Saml2_Authn_Request(self._settings)
            return OutboundMessage(id=request.get_id(), payload=self._encode(request.get_xml()))
        except Exception as e:
            raise SamlLibraryError(f"Failed to build AuthnRequest: {e}") from e

    def make_logout_request(self, name_id: str) -> OutboundMessage:
        try:
            request = OneLogin_Saml2_Logout_Request(
                self._settings, name_id=name_id, name_id_format=NAMEID_FORMAT
            )
            return OutboundMessage(id=request.id, payload=self._encode(request.get_xml()))
        except Exception as e:
            raise SamlLibraryError(f"Failed to build LogoutRequest: {e}") from e

    def make_logout_response(self, in_response_to: str) -> OutboundMessage:
        try:
            response = OneLogin_Saml2_Logout_Response(self._settings)
            response.build(in_response_to)
            document = OneLogin_Saml2_XML.to_etree(response.get_xml())
            return OutboundMessage(id=document.get("ID", ""), payload=self._encode(response.get_xml()))
        except Exception as e:
            raise SamlLibraryError(f"Failed to build LogoutResponse: {e}") from e

    # --------------------------------------------------------
    # INBOUND
    # --------------------------------------------------------

    def parse_response(self, saml_response: str, request_id: str) -> Assertion:
        """
        Validate an ACS response and extract its assertion.

        Only a response to ``request_id`` is accepted.
        """
        request_data = request_data_for(self.config.acs_url, {"SAMLResponse": saml_response})
        try:
            response = OneLogin_Saml2_Response(self._settings, saml_response)
            response.is_valid(request_data, request_id=request_id, raise_exceptions=True)
        except Exception as e:
            raise SamlLibraryError(f"Invalid SAML response: {e}") from e

        return Assertion(subject=self._subject_of(response))

    @staticmethod
    def _subject_of(response: OneLogin_Saml2_Response) -> Subject | None:
        subjects = response._query_assertion("/saml:Subject")
        if not subjects:
            return None
        name_ids = OneLogin_Saml2_XML.query(subjects[0], "./saml:NameID")
        if not name_ids:
            return Subject(name_id=None)
        node = name_ids[0]
        return Subject(name_id=NameID(value=(node.text or "").strip(), format=node.get("Format")))

    def unmarshal_logout_request(self, xml: bytes) -> LogoutRequestMessage:
        document = self._to_etree(xml, "LogoutRequest")
        name_ids = OneLogin_Saml2_XML.query(document, "/samlp:LogoutRequest/saml:NameID")
        name_id = None
        if name_ids:
            node = name_ids[0]
            name_id = NameID(value=(node.text or "").strip(), format=node.get("Format"))
        return LogoutRequestMessage(
            id=document.get("ID", ""),
            issuer=self._issuer_of(document, "LogoutRequest"),
            name_id=name_id,
        )

    def unmarshal_logout_response(self, xml: bytes) -> LogoutResponseMessage:
        document = self._to_etree(xml, "LogoutResponse")
        status_codes = OneLogin_Saml2_XML.query(
            document, "/samlp:LogoutResponse/samlp:Status/samlp:StatusCode"
        )
        return LogoutResponseMessage(
            id=document.get("ID", ""),
            issuer=self._issuer_of(document, "LogoutResponse"),
            in_response_to=document.get("InResponseTo"),
            status=status_codes[0].get("Value") if status_codes else None,
        )

    def validate_logout_response(self, saml_response: str, request_id: str) -> None:
        """
        Validate a logout response to ``request_id`` and require a Success status.
        """
        request_data = request_data_for(self.config.slo_url, {"SAMLResponse": saml_response})
        try:
            response = OneLogin_Saml2_Logout_Response(self._settings, saml_response)
            response.is_valid(request_data, request_id=request_id, raise_exceptions=True)
            status = response.get_status()
        except Exception as e:
            raise SamlLibraryError(f"Invalid logout response: {e}") from e
        if status != OneLogin_Saml2_Constants.STATUS_SUCCESS:
            raise SamlLibraryError(f"Logout response status is {status}")

    @staticmethod
    def _to_etree(xml: bytes, root: str):
        try:
            document = OneLogin_Saml2_XML.to_etree(xml)
        except Exception as e:
            raise SamlLibraryError(f"Malformed {root}: {e}") from e
        if document.tag != f"{{{PROTOCOL_NS}}}{root}":
            raise SamlLibraryError(f"Expected {root}, got {document.tag}")
        return document

    @staticmethod
    def _issuer_of(document, root: str) -> str | None:
        issuers = OneLogin_Saml2_XML.query(document, f"/samlp:{root}/saml:Issuer")
        return (issuers[0].text or "").strip() if issuers else None

    # --------------------------------------------------------
    # LOCATIONS & METADATA
    # --------------------------------------------------------

    def get_sso_binding_location(self) -> str:
        return self.idp.sso_url

    def get_slo_binding_location(self) -> str | None:
        return self.idp.slo_url

    def get_sp_metadata(self) -> str:
        """Generate this service's SP metadata XML for registration at the IdP."""
        try:
            metadata = self._settings.get_sp_metadata()
            errors = self._settings.validate_metadata(metadata)
        except Exception as e:
            raise SamlLibraryError(f"Failed to generate SP metadata: {e}") from e
        if errors:
            raise SamlLibraryError(f"SP metadata validation failed: {', '.join(errors)}")
        return metadata.decode("utf-8") if isinstance(metadata, bytes) else str(metadata)


__all__ = [
    "SamlLibraryError",
    "OutboundMessage",
    "NameID",
    "Subject",
    "Assertion",
    "LogoutRequestMessage",
    "LogoutResponseMessage",
    "request_data_for",
    "SamlProvider",
    "SamlServiceProvider",
]
