"""
Configuration module for the SSO Gateway.

This module uses Pydantic Settings to load and validate environment variables
for the OAuth2 identity provider, the user database, session cookies, and
the domain allow-list.

Environment variables are loaded from .env file or system environment.
The resulting Settings object is built once at startup and handed to every
component that needs it.
"""

from functools import lru_cache
from typing import Any, Dict, List, Optional
from urllib.parse import quote_plus

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


GOOGLE_AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All configuration for the identity provider, user database, sessions,
    and access policy is defined here.
    """

    # =========================================================================
    # Database Configuration
    # =========================================================================

    DATABASE_HOST: str = Field(
        default="localhost",
        description="PostgreSQL host",
    )

    DATABASE_PORT: int = Field(
        default=5432,
        description="PostgreSQL port",
        ge=1,
        le=65535,
    )

    DATABASE_USER: str = Field(
        default="postgres",
        description="PostgreSQL user",
    )

    DATABASE_PASSWORD: str = Field(
        default="",
        description="PostgreSQL password",
    )

    DATABASE_NAME: str = Field(
        default="sso",
        description="PostgreSQL database name",
    )

    DATABASE_URL: Optional[str] = Field(
        None,
        description="Full SQLAlchemy async URL; overrides the DATABASE_* parts when set",
    )

    DATABASE_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        description="Upper bound for a single user store operation",
        gt=0,
        le=60,
    )

    DATABASE_CREATE_TABLES: bool = Field(
        default=True,
        description="Create missing tables on startup",
    )

    # =========================================================================
    # OAuth2 Identity Provider Configuration
    # =========================================================================

    OAUTH_CLIENT_ID: str = Field(
        ...,
        description="OAuth client ID registered with the identity provider",
        min_length=1,
    )

    OAUTH_CLIENT_SECRET: str = Field(
        ...,
        description="OAuth client secret",
        min_length=1,
    )

    OAUTH_REDIRECT_URL: str = Field(
        ...,
        description="Redirect URL registered with the provider (e.g., https://sso.example.org/api/auth/callback)",
        min_length=1,
    )

    OAUTH_AUTHORIZE_URL: str = Field(
        default=GOOGLE_AUTHORIZE_URL,
        description="Provider authorization endpoint",
    )

    OAUTH_TOKEN_URL: str = Field(
        default=GOOGLE_TOKEN_URL,
        description="Provider token endpoint",
    )

    OAUTH_USERINFO_URL: str = Field(
        default=GOOGLE_USERINFO_URL,
        description="Provider profile (userinfo) endpoint",
    )

    OAUTH_SCOPES: str = Field(
        default="openid email profile",
        description="Space-separated scopes requested at login",
    )

    PROVIDER_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        description="Timeout for calls to the identity provider",
        gt=0,
        le=60,
    )

    PROVIDER_MAX_CONNECTIONS: int = Field(
        default=100,
        description="Connection pool size for the identity provider client",
        ge=1,
    )

    # =========================================================================
    # Domain-based Access Control
    # =========================================================================

    ALLOWED_DOMAIN: str = Field(
        default="mesika.org",
        description="The only email domain permitted to complete login",
        min_length=1,
    )

    # =========================================================================
    # Session Configuration
    # =========================================================================

    SESSION_SECRET: str = Field(
        ...,
        description="Secret key for signing session cookies (must be cryptographically secure)",
        min_length=32,
    )

    SESSION_COOKIE_NAME: str = Field(
        default="auth-session",
        description="Name of the session cookie",
    )

    SESSION_COOKIE_SECURE: bool = Field(
        default=True,
        description="Send the session cookie over HTTPS only",
    )

    PENDING_STATE_TTL_SECONDS: int = Field(
        default=300,
        description="Lifetime of a pending login (state issued, callback not yet received)",
        ge=30,
        le=3600,
    )

    SESSION_TTL_SECONDS: int = Field(
        default=86400,
        description="Lifetime of an authenticated session",
        ge=300,
        le=86400 * 7,
    )

    # =========================================================================
    # Server Configuration
    # =========================================================================

    HOST: str = Field(
        default="0.0.0.0",
        description="Host to bind the server",
    )

    PORT: int = Field(
        default=8080,
        description="Port to bind the server",
        ge=1,
        le=65535,
    )

    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level",
    )

    ALLOWED_ORIGINS: Optional[str] = Field(
        None,
        description="Comma-separated list of allowed CORS origins (leave empty for no CORS)",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def database_url(self) -> str:
        """
        SQLAlchemy async URL for the user database.

        Returns:
            DATABASE_URL if set, otherwise an asyncpg URL built from the parts.
        """
        if self.DATABASE_URL:
            return self.DATABASE_URL

        user = quote_plus(self.DATABASE_USER)
        password = quote_plus(self.DATABASE_PASSWORD)
        credentials = f"{user}:{password}" if password else user
        return (
            f"postgresql+asyncpg://{credentials}@{self.DATABASE_HOST}:"
            f"{self.DATABASE_PORT}/{self.DATABASE_NAME}"
        )

    @property
    def scopes_list(self) -> List[str]:
        return [scope for scope in self.OAUTH_SCOPES.split() if scope]

    @property
    def allowed_origins_list(self) -> List[str]:
        """
        Parse and return ALLOWED_ORIGINS as a list.

        Returns:
            List of allowed origin URLs, or empty list if not configured.
        """
        if not self.ALLOWED_ORIGINS:
            return []

        return [
            origin.strip()
            for origin in self.ALLOWED_ORIGINS.split(",")
            if origin.strip()
        ]

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("ALLOWED_DOMAIN")
    @classmethod
    def validate_allowed_domain(cls, v: str) -> str:
        """
        Validate and normalize the allow-listed domain.

        Raises:
            ValueError: If the domain is malformed
        """
        domain = v.strip().lower()

        if "." not in domain or " " in domain or "@" in domain:
            raise ValueError(
                f"Invalid domain format: '{v}'. "
                "Expected format: 'example.org'"
            )

        return domain

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

        level = v.upper()
        if level not in allowed_levels:
            raise ValueError(
                f"LOG_LEVEL must be one of {allowed_levels}, got: {v}"
            )

        return level


# =============================================================================
# Settings Factory
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Load Settings from the environment once.

    Only the application factory calls this; components receive the
    resulting object through their constructors.

    Raises:
        ValidationError: If required environment variables are missing
                        or invalid.
    """
    return Settings()


# =============================================================================
# Configuration Helpers
# =============================================================================

def validate_configuration(settings: Settings) -> Dict[str, Any]:
    """
    Validate critical configuration settings and return a status report.

    Called during application startup to surface risky configuration.

    Returns:
        Dictionary with validation status and any warnings.

    Example:
        >>> status = validate_configuration(settings)
        >>> if not status["valid"]:
        ...     print(status["errors"])
    """
    errors = []
    warnings = []

    if len(settings.SESSION_SECRET) < 32:
        errors.append("SESSION_SECRET is too short (minimum 32 characters)")

    for name in ("OAUTH_AUTHORIZE_URL", "OAUTH_TOKEN_URL", "OAUTH_USERINFO_URL"):
        if not getattr(settings, name).startswith("https://"):
            errors.append(f"{name} must use https")

    if not settings.SESSION_COOKIE_SECURE:
        warnings.append("SESSION_COOKIE_SECURE is disabled (cookies will be sent over plain HTTP)")

    if not settings.OAUTH_REDIRECT_URL.startswith("https://"):
        warnings.append("OAUTH_REDIRECT_URL is not https")

    if settings.database_url.startswith("sqlite"):
        warnings.append("Using SQLite for the user store (not suitable for multiple workers)")

    return {
        "valid": len(errors) == 0,
        "errors": errors,
        "warnings": warnings,
        "allowed_domain": settings.ALLOWED_DOMAIN,
        "session_ttl_seconds": settings.SESSION_TTL_SECONDS,
    }
