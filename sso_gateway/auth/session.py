"""
Session Management Module
=========================

Server-side sessions for the login flow.

The browser only ever holds a signed cookie (an HS256 JWT) carrying an
opaque session id. Everything else lives server-side in a session backend
keyed by that id:
- a pending session holds the CSRF state between /sso and /callback
- an authenticated session holds the user id and email after login

SessionGateway adapts the typed SessionData model to the backend's plain
key-value entries and owns the cookie attributes.
"""

import asyncio
import logging
import secrets
import weakref
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Dict, Optional, TypeVar

import jwt
from jwt.exceptions import InvalidTokenError
from pydantic import BaseModel, Field, ValidationError
from starlette.requests import Request
from starlette.responses import Response

from ..config import Settings
from .utils import states_match

logger = logging.getLogger(__name__)

COOKIE_ALGORITHM = "HS256"
COOKIE_ISSUER = "sso-gateway"

T = TypeVar("T")


# =============================================================================
# Exceptions
# =============================================================================

class SessionStoreError(Exception):
    """Raised when the session backend cannot be read or written."""
    pass


# =============================================================================
# Session Data
# =============================================================================

class SessionData(BaseModel):
    """Typed contents of one server-side session."""
    pending_state: Optional[str] = Field(None, description="CSRF state awaiting its callback")
    user_id: Optional[int] = Field(None, description="Authenticated user id")
    email: Optional[str] = Field(None, description="Authenticated user email")
    expires_at: datetime = Field(..., description="Absolute expiry in UTC")

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None


# =============================================================================
# In-memory Backend
# =============================================================================

class InMemorySessionBackend:
    """
    In-memory TTL key-value store for sessions.

    Thread-safe implementation using asyncio.Lock. Suitable for a single
    worker process; multi-worker deployments need a shared backend with the
    same get/set/delete interface.
    """

    def __init__(self):
        self._entries: Dict[str, Dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        """
        Return the entry for ``key`` if present and not expired.

        Expired entries are purged on every read.
        """
        async with self._lock:
            now = datetime.now(timezone.utc)
            expired_keys = [
                k for k, entry in self._entries.items()
                if entry["expires_at"] <= now
            ]
            for k in expired_keys:
                del self._entries[k]

            entry = self._entries.get(key)
            if entry is None:
                return None
            return dict(entry["data"])

    async def set(self, key: str, data: Dict[str, Any], ttl_seconds: int) -> None:
        async with self._lock:
            self._entries[key] = {
                "data": dict(data),
                "expires_at": datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds),
            }

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)


# =============================================================================
# Session Gateway
# =============================================================================

class SessionGateway:
    """
    Adapter between the login flow and the session backend.

    Operations that read-modify-write one session hold a per-session lock,
    so two concurrent callbacks for the same session cannot both consume
    its state.
    """

    def __init__(self, settings: Settings, backend: InMemorySessionBackend):
        self._settings = settings
        self._backend = backend
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    @property
    def pending_ttl(self) -> int:
        return self._settings.PENDING_STATE_TTL_SECONDS

    @property
    def session_ttl(self) -> int:
        return self._settings.SESSION_TTL_SECONDS

    # -------------------------------------------------------------------------
    # Cookie handling
    # -------------------------------------------------------------------------

    def encode_cookie(self, session_id: str, max_age: int) -> str:
        """
        Sign a session id into a cookie value.

        Raises:
            SessionStoreError: If the cookie cannot be signed
        """
        now = datetime.now(timezone.utc)
        try:
            return jwt.encode(
                {
                    "sid": session_id,
                    "iat": now,
                    "exp": now + timedelta(seconds=max_age),
                    "iss": COOKIE_ISSUER,
                },
                self._settings.SESSION_SECRET,
                algorithm=COOKIE_ALGORITHM,
            )
        except Exception as e:
            raise SessionStoreError(f"Failed to sign session cookie: {e}") from e

    def decode_cookie(self, value: str) -> Optional[str]:
        """Return the session id from a cookie value, or None if it does not verify."""
        try:
            claims = jwt.decode(
                value,
                self._settings.SESSION_SECRET,
                algorithms=[COOKIE_ALGORITHM],
                issuer=COOKIE_ISSUER,
                options={"require": ["exp", "iat", "sid"]},
            )
        except InvalidTokenError as e:
            logger.debug(f"Rejected session cookie: {e}")
            return None

        session_id = claims.get("sid")
        return session_id if isinstance(session_id, str) and session_id else None

    def read_session_id(self, request: Request) -> Optional[str]:
        value = request.cookies.get(self._settings.SESSION_COOKIE_NAME)
        if not value:
            return None
        return self.decode_cookie(value)

    def attach_cookie(self, response: Response, session_id: str, max_age: int) -> None:
        response.set_cookie(
            key=self._settings.SESSION_COOKIE_NAME,
            value=self.encode_cookie(session_id, max_age),
            max_age=max_age,
            path="/",
            secure=self._settings.SESSION_COOKIE_SECURE,
            httponly=True,
            samesite="strict",
        )

    def detach_cookie(self, response: Response) -> None:
        response.delete_cookie(
            key=self._settings.SESSION_COOKIE_NAME,
            path="/",
            secure=self._settings.SESSION_COOKIE_SECURE,
            httponly=True,
            samesite="strict",
        )

    # -------------------------------------------------------------------------
    # Session lifecycle
    # -------------------------------------------------------------------------

    async def load(self, session_id: str) -> Optional[SessionData]:
        """
        Load a session.

        Returns:
            SessionData, or None if the session is missing, expired, or
            unreadable

        Raises:
            SessionStoreError: If the backend fails
        """
        raw = await self._call(self._backend.get(session_id))
        if raw is None:
            return None

        try:
            data = SessionData.model_validate(raw)
        except ValidationError:
            logger.warning("Discarding malformed session entry")
            return None

        if data.expires_at <= datetime.now(timezone.utc):
            return None
        return data

    async def start_pending(self, previous_session_id: Optional[str], state: str) -> str:
        """
        Create a fresh pending session holding ``state``.

        Any previous session of this client is discarded.

        Returns:
            The new session id
        """
        if previous_session_id:
            await self._call(self._backend.delete(previous_session_id))

        session_id = self._new_session_id()
        await self._save(session_id, SessionData(pending_state=state, expires_at=self._expiry(self.pending_ttl)), self.pending_ttl)
        return session_id

    async def consume_state(self, session_id: str, received_state: Optional[str]) -> bool:
        """
        Check a callback state against the stored one and consume it on match.

        On mismatch the stored state is left untouched. On match it is
        removed before returning, so the same state can never be used again.

        Returns:
            True if the state matched and was consumed
        """
        async with self._lock_for(session_id):
            data = await self.load(session_id)
            if data is None or not states_match(received_state, data.pending_state):
                return False

            consumed = data.model_copy(update={"pending_state": None})
            remaining = max(1, int((data.expires_at - datetime.now(timezone.utc)).total_seconds()))
            await self._save(session_id, consumed, remaining)
            return True

    async def establish(self, previous_session_id: Optional[str], user_id: int, email: str) -> str:
        """
        Replace the client's session with a fresh authenticated one.

        Returns:
            The new session id
        """
        if previous_session_id:
            await self._call(self._backend.delete(previous_session_id))

        session_id = self._new_session_id()
        data = SessionData(user_id=user_id, email=email, expires_at=self._expiry(self.session_ttl))
        await self._save(session_id, data, self.session_ttl)
        return session_id

    async def clear(self, session_id: str) -> None:
        await self._call(self._backend.delete(session_id))

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _save(self, session_id: str, data: SessionData, ttl_seconds: int) -> None:
        await self._call(self._backend.set(session_id, data.model_dump(mode="json"), ttl_seconds))

    async def _call(self, operation: Awaitable[T]) -> T:
        try:
            return await operation
        except SessionStoreError:
            raise
        except Exception as e:
            raise SessionStoreError(f"Session backend failure: {e.__class__.__name__}") from e

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    @staticmethod
    def _new_session_id() -> str:
        return secrets.token_urlsafe(32)

    @staticmethod
    def _expiry(ttl_seconds: int) -> datetime:
        return datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds)


__all__ = [
    "SessionData",
    "SessionGateway",
    "SessionStoreError",
    "InMemorySessionBackend",
]
