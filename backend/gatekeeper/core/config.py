# backend/gatekeeper/core/config.py

import json
import logging
from typing import Literal
from urllib.parse import urlparse

from pydantic import (
    AliasChoices,
    Field,
    computed_field,
    field_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", case_sensitive=False
    )

    # --- Environment & Debug ---
    ENVIRONMENT: Literal["development", "testing", "staging", "production"] = Field(
        default="development", validation_alias="APP_ENV"
    )
    DEBUG: bool = Field(default=False, validation_alias=AliasChoices("DEBUG_MODE", "DEBUG"))
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
    )
    SECURITY_LOG_PATH: str | None = Field(
        default=None,
        description="File for security events (fail2ban format). Stderr only when unset.",
        validation_alias="SECURITY_LOG_PATH",
    )

    # --- Core Application Settings ---
    APP_NAME: str = Field(default="Gatekeeper", validation_alias="APP_NAME")
    APP_VERSION: str = Field(default="0.1.0", validation_alias="APP_VERSION")
    API_V1_STR: str = Field(default="/api/v1", validation_alias="API_V1_STR")
    FRONTEND_URL: str = Field(
        default="https://localhost:8443",
        description="Frontend URL for email links and the default WebAuthn origin",
        validation_alias="FRONTEND_URL",
    )
    BACKEND_CORS_ORIGINS: list[str] = Field(default=[], validation_alias="BACKEND_CORS_ORIGINS")

    # --- Secrets ---
    SECRET_KEY: str = Field(validation_alias=AliasChoices("JWT_SECRET_KEY", "SECRET_KEY"))
    TRUSTED_DEVICE_SECRET: str | None = Field(
        default=None,
        description="HMAC key for trusted-device cookies. Falls back to SECRET_KEY.",
        validation_alias="TRUSTED_DEVICE_SECRET",
    )
    DATA_ENCRYPTION_KEYS_ENV_STR: str | None = Field(
        default=None,
        validation_alias=AliasChoices("DATA_ENCRYPTION_KEYS", "DATA_ENCRYPTION_KEY"),
    )
    ALGORITHM: str = Field(default="HS256", validation_alias="ALGORITHM")

    # --- Token & Session Lifetimes ---
    ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(
        default=30, validation_alias="ACCESS_TOKEN_EXPIRE_MINUTES"
    )
    EMAIL_VERIFICATION_TOKEN_TTL_MINUTES: int = Field(
        default=60, validation_alias="EMAIL_VERIFICATION_TOKEN_TTL_MINUTES"
    )
    PASSWORD_RESET_TOKEN_TTL_MINUTES: int = Field(
        default=60, validation_alias="PASSWORD_RESET_TOKEN_TTL_MINUTES"
    )
    PENDING_LOGIN_TTL_SECONDS: int = Field(
        default=300, le=300, validation_alias="PENDING_LOGIN_TTL_SECONDS"
    )
    WEBAUTHN_CHALLENGE_TTL_SECONDS: int = Field(
        default=300, le=300, validation_alias="WEBAUTHN_CHALLENGE_TTL_SECONDS"
    )
    TOTP_SETUP_TTL_SECONDS: int = Field(default=600, validation_alias="TOTP_SETUP_TTL_SECONDS")
    TRUSTED_DEVICE_EXPIRY_DAYS: int = Field(default=30, validation_alias="TRUSTED_DEVICE_EXPIRY_DAYS")

    # --- Cookies ---
    TRUSTED_DEVICE_COOKIE_NAME: str = Field(
        default="gkTrustedDevice", validation_alias="TRUSTED_DEVICE_COOKIE_NAME"
    )
    COOKIE_SECURE: bool = Field(default=True, validation_alias="COOKIE_SECURE")
    COOKIE_SAMESITE: Literal["lax", "strict", "none"] = Field(
        default="strict", validation_alias="COOKIE_SAMESITE"
    )

    # --- Second Factor ---
    TOTP_ISSUER: str = Field(default="Gatekeeper", validation_alias="TOTP_ISSUER")
    BACKUP_CODE_COUNT: int = Field(default=10, ge=1, validation_alias="BACKUP_CODE_COUNT")

    # --- WebAuthn ---
    WEBAUTHN_RP_ID: str | None = Field(default=None, validation_alias="WEBAUTHN_RP_ID")
    WEBAUTHN_RP_NAME: str = Field(default="Gatekeeper", validation_alias="WEBAUTHN_RP_NAME")
    WEBAUTHN_ORIGINS: list[str] = Field(default=[], validation_alias="WEBAUTHN_ORIGINS")
    WEBAUTHN_TIMEOUT_MS: int = Field(default=60_000, validation_alias="WEBAUTHN_TIMEOUT_MS")

    # --- Breach Checker (Have I Been Pwned range API) ---
    BREACH_CHECK_ENABLED: bool = Field(default=True, validation_alias="BREACH_CHECK_ENABLED")
    BREACH_CHECK_API_URL: str = Field(
        default="https://api.pwnedpasswords.com/range/",
        validation_alias="BREACH_CHECK_API_URL",
    )
    BREACH_CHECK_TIMEOUT_SECONDS: float = Field(
        default=3.0, validation_alias="BREACH_CHECK_TIMEOUT_SECONDS"
    )

    # --- Mailgun Email Settings ---
    MAILGUN_API_KEY: str | None = Field(default=None, validation_alias="MAILGUN_API_KEY")
    MAILGUN_DOMAIN: str | None = Field(default=None, validation_alias="MAILGUN_DOMAIN")
    MAILGUN_FROM_EMAIL: str | None = Field(default=None, validation_alias="MAILGUN_FROM_EMAIL")
    MAILGUN_FROM_NAME: str = Field(default="Gatekeeper", validation_alias="MAILGUN_FROM_NAME")

    # --- Database & Redis ---
    DATABASE_URL: str = Field(
        default="postgresql+asyncpg://admin:Pa44w0rd@db:5432/gatekeeper",
        validation_alias=AliasChoices("ASYNC_SQLALCHEMY_DATABASE_URL", "DATABASE_URL"),
    )
    DB_ECHO: bool = Field(default=False, validation_alias="DB_ECHO")
    REDIS_URL: str = Field(default="redis://redis:6379/3", validation_alias="REDIS_URL")

    # --- Rate Limiting ---
    RATE_LIMIT_ENABLED: bool = Field(default=True, validation_alias="RATE_LIMIT_ENABLED")
    LOGIN_RATE_LIMIT: str = Field(default="5/minute", validation_alias="LOGIN_RATE_LIMIT")
    SECOND_FACTOR_RATE_LIMIT: str = Field(
        default="10/minute", validation_alias="SECOND_FACTOR_RATE_LIMIT"
    )

    # Validators to parse JSON strings for list fields from environment variables
    @field_validator("WEBAUTHN_ORIGINS", "BACKEND_CORS_ORIGINS", mode="before")
    @classmethod
    def parse_json_list(cls, v: str | list | None) -> list[str]:
        """Parse JSON array strings from env vars into Python lists."""
        if v is None:
            return []
        if isinstance(v, list):
            return v
        if isinstance(v, str):
            try:
                parsed = json.loads(v)
                if isinstance(parsed, list):
                    return parsed
            except json.JSONDecodeError:
                # Maybe comma-separated?
                return [item.strip() for item in v.split(",") if item.strip()]
        return []

    @computed_field
    @property
    def DATA_ENCRYPTION_KEYS(self) -> list[str]:
        """Keyring for encrypted columns; the first key encrypts, all keys decrypt."""
        raw = self.DATA_ENCRYPTION_KEYS_ENV_STR
        if not raw:
            return [self.SECRET_KEY]
        return [k.strip() for k in raw.split(",") if k.strip()]

    @computed_field
    @property
    def TRUSTED_DEVICE_SIGNING_KEY(self) -> str:
        return self.TRUSTED_DEVICE_SECRET or self.SECRET_KEY

    @computed_field
    @property
    def EFFECTIVE_WEBAUTHN_RP_ID(self) -> str:
        """Relying Party ID from settings, or the hostname of FRONTEND_URL."""
        if self.WEBAUTHN_RP_ID:
            return self.WEBAUTHN_RP_ID
        return urlparse(self.FRONTEND_URL).hostname or "localhost"

    @computed_field
    @property
    def EFFECTIVE_WEBAUTHN_ORIGINS(self) -> list[str]:
        if self.WEBAUTHN_ORIGINS:
            return self.WEBAUTHN_ORIGINS
        return [self.FRONTEND_URL.rstrip("/")]


settings = Settings()
