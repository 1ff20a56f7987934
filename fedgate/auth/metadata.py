# FedGate - SAML Federated Authentication Test Backend
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
Identity provider metadata loading.

Metadata is resolved once at startup from either a local file or a
network endpoint, selected by the URL scheme:

    file:///etc/fedgate/idp.xml          -> FileMetadataSource
    https://idp.example.com/descriptor   -> HttpMetadataSource
    anything else                        -> ConfigError

Network downloads retry with a growing timeout: attempt ``n`` times out
after ``base_timeout * n`` seconds and, when it fails, sleeps that same
duration before the next attempt.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, Protocol
from urllib.parse import unquote, urlsplit

import httpx
from onelogin.saml2.constants import OneLogin_Saml2_Constants
from onelogin.saml2.idp_metadata_parser import OneLogin_Saml2_IdPMetadataParser
from pydantic import BaseModel, ConfigDict

from fedgate_core.exceptions import (
    ConfigError,
    DiskError,
    DownloadError,
    InvalidMetadataError,
)

logger = logging.getLogger(__name__)

DEFAULT_ATTEMPTS = 2
DEFAULT_BASE_TIMEOUT = 5.0

Sleep = Callable[[float], Awaitable[Any]]


class IdentityProviderMetadata(BaseModel):
    """Binding locations and signing certificate of the IdP. Read-only after load."""

    model_config = ConfigDict(frozen=True)

    entity_id: str
    sso_url: str
    sso_binding: str = OneLogin_Saml2_Constants.BINDING_HTTP_POST
    slo_url: str | None = None
    slo_binding: str = OneLogin_Saml2_Constants.BINDING_HTTP_POST
    signing_certificates: tuple[str, ...] = ()

    def to_saml_settings(self) -> dict[str, Any]:
        """Render the ``idp`` section of python3-saml settings."""
        idp: dict[str, Any] = {
            "entityId": self.entity_id,
            "singleSignOnService": {"url": self.sso_url, "binding": self.sso_binding},
        }
        if self.slo_url:
            idp["singleLogoutService"] = {"url": self.slo_url, "binding": self.slo_binding}
        if len(self.signing_certificates) == 1:
            idp["x509cert"] = self.signing_certificates[0]
        elif self.signing_certificates:
            idp["x509certMulti"] = {"signing": list(self.signing_certificates)}
        return idp


def parse_idp_metadata(xml: str | bytes) -> IdentityProviderMetadata:
    """
    Parse an IdP metadata descriptor.

    Only HTTP-POST SSO/SLO bindings are used.

    Raises:
        InvalidMetadataError: If the descriptor cannot be parsed or has no SSO endpoint
    """
    try:
        data = OneLogin_Saml2_IdPMetadataParser.parse(
            xml,
            required_sso_binding=OneLogin_Saml2_Constants.BINDING_HTTP_POST,
            required_slo_binding=OneLogin_Saml2_Constants.BINDING_HTTP_POST,
        )
    except Exception as e:
        raise InvalidMetadataError(f"Failed to parse IdP metadata: {e}", cause=e) from e

    idp = data.get("idp") or {}
    entity_id = idp.get("entityId")
    sso_url = (idp.get("singleSignOnService") or {}).get("url")
    if not entity_id or not sso_url:
        raise InvalidMetadataError("IdP metadata has no entity id or HTTP-POST SSO endpoint")

    certificates: list[str] = []
    if idp.get("x509cert"):
        certificates.append(idp["x509cert"])
    certificates.extend(
        cert
        for cert in (idp.get("x509certMulti") or {}).get("signing", [])
        if cert not in certificates
    )

    return IdentityProviderMetadata(
        entity_id=entity_id,
        sso_url=sso_url,
        slo_url=(idp.get("singleLogoutService") or {}).get("url"),
        signing_certificates=tuple(certificates),
    )


# ============================================================
# SOURCES
# ============================================================


class MetadataSource(Protocol):
    """Where metadata bytes come from."""

    async def read(self) -> bytes: ...


class FileMetadataSource:
    """Reads metadata from a local file."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    async def read(self) -> bytes:
        try:
            return await asyncio.to_thread(self.path.read_bytes)
        except OSError as e:
            raise DiskError(f"Failed to read {self.path}: {e}", cause=e) from e


class HttpMetadataSource:
    """
    Downloads metadata with bounded retry.

    Args:
        url: Metadata endpoint
        client: Shared client; a short-lived one is created when omitted
        attempts: Number of attempts before giving up
        base_timeout: Timeout of the first attempt in seconds
        sleep: Awaitable sleep, replaceable in tests
    """

    def __init__(
        self,
        url: str,
        client: httpx.AsyncClient | None = None,
        attempts: int = DEFAULT_ATTEMPTS,
        base_timeout: float = DEFAULT_BASE_TIMEOUT,
        sleep: Sleep = asyncio.sleep,
    ):
        self.url = url
        self._client = client
        self.attempts = attempts
        self.base_timeout = base_timeout
        self._sleep = sleep

    async def read(self) -> bytes:
        if self._client is not None:
            return await self._download(self._client)
        async with httpx.AsyncClient(follow_redirects=True) as client:
            return await self._download(client)

    async def _download(self, client: httpx.AsyncClient) -> bytes:
        last_error: Exception | None = None
        for attempt in range(1, self.attempts + 1):
            timeout = self.base_timeout * attempt
            try:
                response = await client.get(self.url, timeout=timeout)
                response.raise_for_status()
                return response.content
            except httpx.HTTPError as e:
                last_error = e
                logger.warning(
                    f"IdP metadata download attempt {attempt}/{self.attempts} failed: {e}",
                    extra={"url": self.url, "attempt": attempt, "timeout_seconds": timeout},
                )
                if attempt < self.attempts:
                    await self._sleep(timeout)

        raise DownloadError(
            f"Failed to download IdP metadata from {self.url} after {self.attempts} attempts",
            cause=last_error,
        ) from last_error


def select_metadata_source(
    url: str,
    client: httpx.AsyncClient | None = None,
    attempts: int = DEFAULT_ATTEMPTS,
    base_timeout: float = DEFAULT_BASE_TIMEOUT,
    sleep: Sleep = asyncio.sleep,
) -> MetadataSource:
    """
    Pick the metadata source for a URL by its scheme.

    Raises:
        ConfigError: If the scheme is neither file, http nor https
    """
    parts = urlsplit(url)
    scheme = parts.scheme.lower()

    if scheme == "file":
        # file:///abs/path and file://relative/path
        return FileMetadataSource(unquote(parts.netloc + parts.path))
    if scheme in ("http", "https"):
        return HttpMetadataSource(
            url, client=client, attempts=attempts, base_timeout=base_timeout, sleep=sleep
        )

    raise ConfigError(f"Unsupported IdP metadata URL scheme: {scheme or '(none)'}")


class IdpMetadataLoader:
    """
    Resolves IdP metadata from a configured URL.

    Usage:
        loader = IdpMetadataLoader("https://idp.example.com/descriptor")
        metadata = await loader.fetch_idp_metadata()
    """

    def __init__(
        self,
        url: str,
        client: httpx.AsyncClient | None = None,
        attempts: int = DEFAULT_ATTEMPTS,
        base_timeout: float = DEFAULT_BASE_TIMEOUT,
        sleep: Sleep = asyncio.sleep,
    ):
        self.url = url
        self._client = client
        self._attempts = attempts
        self._base_timeout = base_timeout
        self._sleep = sleep

    async def fetch_idp_metadata(self) -> IdentityProviderMetadata:
        source = select_metadata_source(
            self.url,
            client=self._client,
            attempts=self._attempts,
            base_timeout=self._base_timeout,
            sleep=self._sleep,
        )
        xml = await source.read()
        metadata = parse_idp_metadata(xml)
        logger.info(
            "IdP metadata loaded",
            extra={"entity_id": metadata.entity_id, "sso_url": metadata.sso_url},
        )
        return metadata


__all__ = [
    "IdentityProviderMetadata",
    "parse_idp_metadata",
    "MetadataSource",
    "FileMetadataSource",
    "HttpMetadataSource",
    "select_metadata_source",
    "IdpMetadataLoader",
]
