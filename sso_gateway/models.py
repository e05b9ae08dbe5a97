"""
Data Models Module

This module defines Pydantic models for the values that move through the
login flow and for request/response serialization.

Models are organized by functional area:
- Provider models (token and profile returned by the identity provider)
- User models (the local user record)
- Response models (JSON bodies returned by the API)
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Set

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


# Tokens are treated as expired slightly early to absorb clock skew
TOKEN_EXPIRY_DELTA = timedelta(seconds=10)


# ============================================================================
# Provider Models
# ============================================================================

class ProviderToken(BaseModel):
    """Access token obtained from the provider's token endpoint. Never persisted."""
    access_token: str = Field(..., description="Provider-opaque access token")
    token_type: str = Field(default="Bearer", description="Token type")
    expiry: Optional[datetime] = Field(None, description="Expiry time in UTC; None means no expiry was reported")
    scope: Set[str] = Field(default_factory=set, description="Granted scopes")

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        if not self.access_token:
            return False
        if self.expiry is None:
            return True
        now = now or datetime.now(timezone.utc)
        return self.expiry - TOKEN_EXPIRY_DELTA > now


class ProviderProfile(BaseModel):
    """Verified profile claims fetched from the provider's userinfo endpoint."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    subject_id: str = Field(
        ...,
        validation_alias=AliasChoices("subject_id", "sub", "id"),
        description="Provider-stable unique identifier",
        min_length=1,
    )
    email: str = Field(..., description="Email address reported by the provider")
    email_verified: bool = Field(
        default=False,
        validation_alias=AliasChoices("email_verified", "verified_email"),
        description="Whether the provider has verified the email",
    )
    display_name: str = Field(
        default="",
        validation_alias=AliasChoices("display_name", "name"),
        description="User display name",
    )
    hosted_domain: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("hosted_domain", "hd"),
        description="Hosted domain (Google Workspace accounts only)",
    )

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        email = v.strip()
        if email.count("@") != 1:
            raise ValueError("email must contain exactly one '@'")

        local, _, domain = email.partition("@")
        if not local or not domain:
            raise ValueError("email must contain a local part and a domain")
        return email


# ============================================================================
# User Models
# ============================================================================

class UserRecord(BaseModel):
    """Local user record, one per distinct email."""
    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = Field(None, description="Surrogate key; assigned on first insert and never changed")
    email: str = Field(..., description="Normalized email, unique")
    display_name: str = Field(default="", description="User display name")
    provider_subject_id: str = Field(default="", description="Provider subject identifier")
    role: str = Field(default="user", description="Authorization role")
    last_login_at: Optional[datetime] = Field(None, description="Time of the most recent successful login")
    created_at: Optional[datetime] = Field(None, description="Creation time; preserved across updates")
    updated_at: Optional[datetime] = Field(None, description="Time of the last update")


# ============================================================================
# Response Models
# ============================================================================

class UserSummary(BaseModel):
    """User fields exposed to clients."""
    email: str = Field(..., description="User email address")
    name: str = Field(default="", description="User display name")


class SessionUser(UserSummary):
    id: int = Field(..., description="User identifier")
    role: str = Field(..., description="Authorization role")


class LoginResponse(BaseModel):
    """Body returned by a successful callback."""
    message: str = Field(..., description="Outcome message")
    user: UserSummary


class VerifyResponse(BaseModel):
    """Body returned by a successful session check."""
    authenticated: bool = Field(default=True)
    user: SessionUser


class MessageResponse(BaseModel):
    message: str


class ErrorResponse(BaseModel):
    """Standardized error response model."""
    code: str = Field(..., description="Error kind")
    message: str = Field(..., description="Human-readable error message")


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(..., description="Service health status")
    service: str = Field(..., description="Service name")
    version: str = Field(..., description="Service version")
