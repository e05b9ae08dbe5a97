"""
Authentication error taxonomy.

Every step of the login flow fails with an AuthError carrying one
AuthErrorKind. Handlers branch on ``exc.kind``; the originating exception
(provider, network, database) is chained as ``__cause__`` for the logs and
never shown to the client.
"""

from enum import Enum
from typing import Dict, Optional

from fastapi import status


class AuthErrorKind(str, Enum):
    INVALID_STATE = "INVALID_STATE"
    TOKEN_EXCHANGE_FAILED = "TOKEN_EXCHANGE_FAILED"
    INVALID_TOKEN = "INVALID_TOKEN"
    NETWORK_FAILURE = "NETWORK_FAILURE"
    INVALID_RESPONSE = "INVALID_RESPONSE"
    UNVERIFIED_EMAIL = "UNVERIFIED_EMAIL"
    INVALID_DOMAIN = "INVALID_DOMAIN"
    USER_CREATION_FAILED = "USER_CREATION_FAILED"
    SESSION_ERROR = "SESSION_ERROR"
    SESSION_INVALID = "SESSION_INVALID"


STATUS_BY_KIND: Dict[AuthErrorKind, int] = {
    AuthErrorKind.INVALID_STATE: status.HTTP_400_BAD_REQUEST,
    AuthErrorKind.TOKEN_EXCHANGE_FAILED: status.HTTP_400_BAD_REQUEST,
    AuthErrorKind.INVALID_TOKEN: status.HTTP_401_UNAUTHORIZED,
    AuthErrorKind.NETWORK_FAILURE: status.HTTP_503_SERVICE_UNAVAILABLE,
    AuthErrorKind.INVALID_RESPONSE: status.HTTP_502_BAD_GATEWAY,
    AuthErrorKind.UNVERIFIED_EMAIL: status.HTTP_401_UNAUTHORIZED,
    AuthErrorKind.INVALID_DOMAIN: status.HTTP_401_UNAUTHORIZED,
    AuthErrorKind.USER_CREATION_FAILED: status.HTTP_500_INTERNAL_SERVER_ERROR,
    AuthErrorKind.SESSION_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
    AuthErrorKind.SESSION_INVALID: status.HTTP_401_UNAUTHORIZED,
}


class AuthError(Exception):
    """
    A rejected login or session check.

    Attributes:
        kind: Which rule rejected the request
        message: Human-readable message safe to return to the client
        detail: Diagnostic text for server logs only
    """

    def __init__(self, kind: AuthErrorKind, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.detail = detail

    @property
    def status_code(self) -> int:
        return STATUS_BY_KIND[self.kind]

    def __str__(self) -> str:
        text = f"{self.kind.value}: {self.message}"
        if self.detail:
            text = f"{text} ({self.detail})"
        if self.__cause__ is not None:
            text = f"{text} [{self.__cause__!r}]"
        return text

    def to_response(self) -> Dict[str, str]:
        return {"code": self.kind.value, "message": self.message}


__all__ = [
    "AuthErrorKind",
    "AuthError",
    "STATUS_BY_KIND",
]
