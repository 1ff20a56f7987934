# FedGate - SAML Federated Authentication Test Backend
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
Session Token Codec

Signs and verifies the small JSON payloads carried in session cookies.

Tokens are HS256 JWTs with claims ``{"value": payload, "exp", "iat"}``.
Each session kind signs with its own secret so a token minted for one
flow is rejected by every other flow.
"""

import secrets
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt

from ..exceptions.hierarchy import SessionError, SignError

ALGORITHM = "HS256"

# HMAC-SHA256 digest size
SECRET_SIZE = 32


def generate_token(
    payload: dict[str, Any],
    expires_in: timedelta,
    secret: bytes,
    now: datetime | None = None,
) -> str:
    """
    Sign a payload.

    Args:
        payload: JSON-serializable payload, stored under the ``value`` claim
        expires_in: Validity window measured from ``now``
        secret: Signing key of the session kind
        now: Issue time (defaults to the current UTC time)

    Raises:
        SignError: If the payload cannot be signed
    """
    issued_at = now or datetime.now(UTC)
    claims = {
        "value": payload,
        "exp": issued_at + expires_in,
        "iat": issued_at,
    }
    try:
        return jwt.encode(claims, secret, algorithm=ALGORITHM)
    except (jwt.PyJWTError, TypeError, ValueError) as e:
        raise SignError(f"Failed to sign token: {e}", cause=e) from e


def verify_token(token: str, secret: bytes) -> dict[str, Any]:
    """
    Verify a token and return its payload.

    Raises:
        SessionError: If the token is malformed, tampered with or expired
    """
    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=[ALGORITHM],
            options={"require": ["exp", "iat"]},
        )
    except jwt.ExpiredSignatureError as e:
        raise SessionError("Token has expired", cause=e) from e
    except jwt.InvalidTokenError as e:
        raise SessionError(f"Invalid token: {e}", cause=e) from e

    value = claims.get("value")
    if not isinstance(value, dict):
        raise SessionError("Token payload is not an object")
    return value


@dataclass(frozen=True)
class SessionSecrets:
    """
    Signing keys, one per session kind.

    Generated once per process and held in memory only, so sessions
    do not survive a restart.
    """

    sso: bytes
    slo: bytes
    access: bytes
    refresh: bytes
    error: bytes

    @classmethod
    def generate(cls) -> "SessionSecrets":
        return cls(
            sso=secrets.token_bytes(SECRET_SIZE),
            slo=secrets.token_bytes(SECRET_SIZE),
            access=secrets.token_bytes(SECRET_SIZE),
            refresh=secrets.token_bytes(SECRET_SIZE),
            error=secrets.token_bytes(SECRET_SIZE),
        )


__all__ = [
    "ALGORITHM",
    "SECRET_SIZE",
    "generate_token",
    "verify_token",
    "SessionSecrets",
]
