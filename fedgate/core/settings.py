# FedGate - SAML Federated Authentication Test Backend
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
Application Settings

Configuration management using pydantic-settings.
Supports environment variables and .env files.
"""

from functools import lru_cache
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Relational store configuration."""

    model_config = SettingsConfigDict(env_prefix="DATABASE_")

    url: str = Field(
        default="sqlite+aiosqlite:///./fedgate.db",
        description="SQLAlchemy async connection URL",
    )
    pool_size: int = Field(default=10, ge=1, le=100)
    max_overflow: int = Field(default=20, ge=0, le=100)
    pool_recycle_seconds: int = Field(default=300, ge=1, description="Connection max life time")
    echo: bool = Field(default=False, description="Echo SQL queries")


class SamlSettings(BaseSettings):
    """SAML service provider configuration."""

    model_config = SettingsConfigDict(env_prefix="SAML_")

    idp_metadata_url: str = Field(
        default="http://localhost:8080/realms/fedgate/protocol/saml/descriptor",
        description="IdP metadata location (file://, http:// or https://)",
    )
    entity_id: str = Field(default="fedgate")
    backend_url: str = Field(
        default="https://localhost:8000",
        description="Public base URL of this service, used to build ACS/SLO endpoints",
    )
    sign_requests: bool = Field(default=False)
    sp_cert_path: str | None = Field(default=None, description="PEM certificate for signing")
    sp_key_path: str | None = Field(default=None, description="PEM private key for signing")

    # Metadata download
    metadata_attempts: int = Field(default=2, ge=1, le=10)
    metadata_base_timeout_seconds: float = Field(default=5.0, gt=0)

    @field_validator("backend_url")
    @classmethod
    def validate_backend_url(cls, v: str) -> str:
        if urlsplit(v).scheme not in ("http", "https"):
            raise ValueError("SAML_BACKEND_URL must be an absolute http(s) URL")
        return v.rstrip("/")


class CookieSettings(BaseSettings):
    """Path scope of each session cookie."""

    model_config = SettingsConfigDict(env_prefix="COOKIE_")

    acs_path: str = Field(default="/saml/acs")
    slo_path: str = Field(default="/saml/slo")
    access_path: str = Field(default="/")
    refresh_path: str = Field(default="/api/auth/refresh")
    error_path: str = Field(default="/saml/error")


class SecuritySettings(BaseSettings):
    """Security configuration."""

    model_config = SettingsConfigDict(env_prefix="SECURITY_")

    # CORS
    cors_origins: list[str] = Field(default=["http://localhost:3000"])


class ObservabilitySettings(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(env_prefix="LOG_")

    level: str = Field(default="INFO")
    format: str = Field(default="json")  # json or human


class ServiceProviderConfig(BaseModel):
    """This service's own SAML identity. Immutable once loaded."""

    model_config = ConfigDict(frozen=True)

    entity_id: str
    acs_url: str
    slo_url: str
    sign_requests: bool = False
    certificate: str | None = None
    private_key: str | None = None


class Settings(BaseSettings):
    """
    Main application settings.

    Usage:
        settings = get_settings()
        print(settings.saml.idp_metadata_url)
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="FedGate")
    app_version: str = Field(default="1.0.0")
    debug: bool = Field(default=False)
    environment: str = Field(default="development")  # development, staging, production
    default_language: str = Field(default="en")

    # Server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)
    workers: int = Field(default=1)

    # Sub-settings
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    saml: SamlSettings = Field(default_factory=SamlSettings)
    cookies: CookieSettings = Field(default_factory=CookieSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    def service_provider(self) -> ServiceProviderConfig:
        """
        Build this service's SAML identity.

        Reads the signing certificate and key when request signing is on.
        """
        certificate = None
        private_key = None
        if self.saml.sign_requests:
            if not self.saml.sp_cert_path or not self.saml.sp_key_path:
                raise ValueError(
                    "SAML_SP_CERT_PATH and SAML_SP_KEY_PATH are required when "
                    "SAML_SIGN_REQUESTS is enabled"
                )
            with open(self.saml.sp_cert_path, encoding="utf-8") as f:
                certificate = f.read()
            with open(self.saml.sp_key_path, encoding="utf-8") as f:
                private_key = f.read()

        return ServiceProviderConfig(
            entity_id=self.saml.entity_id,
            acs_url=self.saml.backend_url + self.cookies.acs_path,
            slo_url=self.saml.backend_url + self.cookies.slo_path,
            sign_requests=self.saml.sign_requests,
            certificate=certificate,
            private_key=private_key,
        )


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Settings are loaded once and cached for the application lifetime.
    """
    return Settings()


# ============================================================
# EXPORTS
# ============================================================

__all__ = [
    "Settings",
    "DatabaseSettings",
    "SamlSettings",
    "CookieSettings",
    "SecuritySettings",
    "ObservabilitySettings",
    "ServiceProviderConfig",
    "get_settings",
]
