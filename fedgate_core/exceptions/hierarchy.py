# FedGate - SAML Federated Authentication Test Backend
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
Exception Hierarchy

Structured exceptions for FedGate.

Every error carries a stable 32-bit code laid out as ``0x8abbcccc``:
- ``a``: 0 for server faults, 1 for client faults
- ``bb``: message type (selects the user-facing message)
- ``cccc``: sequence number

Internal detail (``message``, ``details``, the cause chain) is for logs only.
Clients only ever see the code and a localized message.
"""

from typing import Any

SERVER_ERROR_MASK = 0xFF000000
SERVER_ERROR_PREFIX = 0x80000000
CLIENT_ERROR_PREFIX = 0x81000000


class FedGateError(Exception):
    """
    Base exception for all FedGate errors.

    Attributes:
        code: Stable numeric error code
        message: Internal, human-readable error message (never sent to clients)
        arguments: Arguments substituted into the localized message
        details: Additional context as key-value pairs
        cause: Upstream error, also chained as ``__cause__``
    """

    code: int = 0x80000002
    message_key: str = "InternalServerError"
    default_message: str = "Unexpected error"

    def __init__(
        self,
        message: str | None = None,
        *arguments: Any,
        details: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ):
        self.message = message or self.default_message
        self.arguments = arguments
        self.details = details or {}
        self.cause = cause
        super().__init__(self.message)
        if cause is not None:
            self.__cause__ = cause

    def with_cause(self, cause: BaseException) -> "FedGateError":
        """Attach an upstream error and return self."""
        self.cause = cause
        self.__cause__ = cause
        return self

    @property
    def hex_code(self) -> str:
        return f"0x{self.code:x}"

    @property
    def is_client_error(self) -> bool:
        return self.code & SERVER_ERROR_MASK == CLIENT_ERROR_PREFIX

    @property
    def status_code(self) -> int:
        return 400 if self.is_client_error else 500

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for structured logging."""
        return {
            "error": self.__class__.__name__,
            "code": self.hex_code,
            "message": self.message,
            "arguments": [str(a) for a in self.arguments],
            "details": self.details,
            "cause": repr(self.cause) if self.cause is not None else None,
        }

    def __str__(self) -> str:
        text = f"[{self.hex_code}] {self.message}"
        if self.cause is not None:
            text = f"{text} (cause: {self.cause})"
        return text


def find_fedgate_error(error: BaseException | None) -> FedGateError | None:
    """
    Return the innermost FedGateError in an error's cause chain.

    Walks ``cause`` / ``__cause__`` links, so a FedGateError wrapping
    another FedGateError resolves to the one that originated the failure.
    """
    found: FedGateError | None = None
    seen: set[int] = set()
    while error is not None and id(error) not in seen:
        seen.add(id(error))
        if isinstance(error, FedGateError):
            found = error
            error = error.cause if error.cause is not None else error.__cause__
        else:
            error = error.__cause__
    return found


# ============================================================
# GENERAL ERRORS
# ============================================================


class PanicError(FedGateError):
    """Unhandled fault recovered at the top of the request chain."""

    code = 0x80000001
    default_message = "Unhandled fault"


class UnknownErrorObjectError(FedGateError):
    """A non-FedGate error reached the error renderer."""

    code = 0x80000002
    default_message = "Unknown error object"


class ConfigError(FedGateError):
    """Configuration is invalid or missing."""

    code = 0x80000003
    default_message = "Invalid configuration"


class DiskError(FedGateError):
    """Local file could not be read."""

    code = 0x80000004
    default_message = "Failed to read file"


# ============================================================
# IDENTITY PROVIDER METADATA ERRORS
# ============================================================


class InvalidMetadataError(FedGateError):
    """IdP metadata could not be parsed."""

    code = 0x80000005
    default_message = "Invalid identity provider metadata"


class DownloadError(FedGateError):
    """IdP metadata could not be downloaded."""

    code = 0x80000006
    default_message = "Failed to download identity provider metadata"


# ============================================================
# SAML PROTOCOL ERRORS
# ============================================================


class SSOAuthnRequestError(FedGateError):
    code = 0x80000007
    default_message = "Failed to build authentication request"


class HtmlWritingError(FedGateError):
    code = 0x80000008
    default_message = "Failed to write HTML response"


class CookieNoneError(FedGateError):
    """Expected session cookie is not present on the request."""

    code = 0x80000009
    default_message = "Session cookie is not present"


class SSOParseResponseError(FedGateError):
    code = 0x80000010
    default_message = "Failed to parse SAML response"


class RequestParseError(FedGateError):
    code = 0x80000011
    default_message = "Failed to parse request form"


class UnexpectedAssertionError(FedGateError):
    """Assertion lacks a subject, a NameID or a NameID value."""

    code = 0x80000012
    default_message = "Unexpected assertion"


# ============================================================
# DATABASE ERRORS
# ============================================================


class DBOpenError(FedGateError):
    code = 0x80000013
    default_message = "Failed to open database"


class DBBeginError(FedGateError):
    code = 0x80000014
    default_message = "Failed to begin transaction"


class DBRollbackError(FedGateError):
    code = 0x80000015
    default_message = "Failed to roll back transaction"


class DBCommitError(FedGateError):
    code = 0x80000016
    default_message = "Failed to commit transaction"


class QueryError(FedGateError):
    code = 0x80000017
    default_message = "Query failed"


class QueryResultError(FedGateError):
    """Query succeeded but returned an unexpected shape."""

    code = 0x80000018
    default_message = "Unexpected query result"


# ============================================================
# SESSION ERRORS
# ============================================================


class SessionError(FedGateError):
    """Session token is malformed, tampered with or expired."""

    code = 0x80000019
    default_message = "Invalid session"


class SignError(FedGateError):
    code = 0x80000022
    default_message = "Failed to sign token"


# ============================================================
# SINGLE LOGOUT ERRORS
# ============================================================


class SLOAuthnRequestError(FedGateError):
    code = 0x80000020
    default_message = "Failed to build logout request"


class SLOValidationError(FedGateError):
    code = 0x80000021
    default_message = "Logout response validation failed"


class Base64SamlRequestError(FedGateError):
    code = 0x80000023
    default_message = "SAMLRequest is not valid base64"


class Base64SamlResponseError(FedGateError):
    code = 0x80000024
    default_message = "SAMLResponse is not valid base64"


class UnmarshalSamlRequestError(FedGateError):
    code = 0x80000025
    default_message = "Failed to read logout request"


class UnmarshalSamlResponseError(FedGateError):
    code = 0x80000026
    default_message = "Failed to read logout response"


class SamlLogoutResponseCreationError(FedGateError):
    code = 0x80000027
    default_message = "Failed to build logout response"


class EmptyNameIdError(FedGateError):
    code = 0x80000028
    default_message = "Logout request has no NameID"


class InvalidNameIdError(FedGateError):
    """Logout response does not answer the pending logout request."""

    code = 0x80000029
    default_message = "InResponseTo does not match the pending logout request"


class EmptyLogoutRequestIdError(FedGateError):
    code = 0x80000030
    default_message = "Logout response has no InResponseTo"


class OperationNotAllowedError(FedGateError):
    code = 0x80000031
    default_message = "Operation not allowed"


# ============================================================
# CLIENT ERRORS
# ============================================================


class ClientError(FedGateError):
    """Base class for errors caused by the request itself (HTTP 400)."""

    code = 0x81000000


class ForbiddenCharacterError(ClientError):
    code = 0x81010001
    message_key = "ForbiddenCharacterError"
    default_message = "Parameter contains a forbidden character"


class ParameterMissingError(ClientError):
    """Required parameter is missing. The parameter name is the first argument."""

    code = 0x81010002
    message_key = "MissingParameterError"
    default_message = "Required parameter is missing"


class InvalidParameterError(ClientError):
    code = 0x81010003
    message_key = "InvalidParameterError"
    default_message = "Parameter is invalid"


class TooLargeMessageError(ClientError):
    code = 0x81010004
    message_key = "TooLargeMessageError"
    default_message = "Message is too large"


class InvalidRequestProtocolError(ClientError):
    code = 0x81010005
    message_key = "InvalidRequestProtocolError"
    default_message = "Request protocol is invalid"


# ============================================================
# EXPORTS
# ============================================================

__all__ = [
    # Base
    "FedGateError",
    "find_fedgate_error",
    "SERVER_ERROR_PREFIX",
    "CLIENT_ERROR_PREFIX",
    # General
    "PanicError",
    "UnknownErrorObjectError",
    "ConfigError",
    "DiskError",
    # Metadata
    "InvalidMetadataError",
    "DownloadError",
    # SAML
    "SSOAuthnRequestError",
    "HtmlWritingError",
    "CookieNoneError",
    "SSOParseResponseError",
    "RequestParseError",
    "UnexpectedAssertionError",
    # Database
    "DBOpenError",
    "DBBeginError",
    "DBRollbackError",
    "DBCommitError",
    "QueryError",
    "QueryResultError",
    # Session
    "SessionError",
    "SignError",
    # Logout
    "SLOAuthnRequestError",
    "SLOValidationError",
    "Base64SamlRequestError",
    "Base64SamlResponseError",
    "UnmarshalSamlRequestError",
    "UnmarshalSamlResponseError",
    "SamlLogoutResponseCreationError",
    "EmptyNameIdError",
    "InvalidNameIdError",
    "EmptyLogoutRequestIdError",
    "OperationNotAllowedError",
    # Client
    "ClientError",
    "ForbiddenCharacterError",
    "ParameterMissingError",
    "InvalidParameterError",
    "TooLargeMessageError",
    "InvalidRequestProtocolError",
]
