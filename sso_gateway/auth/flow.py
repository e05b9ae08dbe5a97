"""
Login flow orchestration.

AuthFlowController drives one login through its states, strictly in order:

    IDLE -> STATE_ISSUED -> CALLBACK_RECEIVED -> TOKEN_EXCHANGED
         -> PROFILE_FETCHED -> AUTHORIZED -> SESSION_ESTABLISHED

Any failed check raises AuthError and ends the flow. Work already done
stays done: in particular a state consumed by a failed callback is gone,
and the client has to start again from /api/auth/sso.

The controller holds no per-login state of its own; everything shared
between the two requests of a login goes through the session gateway, and
everything shared between logins goes through the user store.
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

from pydantic import BaseModel, Field

from ..config import Settings
from ..models import ProviderProfile, UserRecord
from ..users.errors import PersistenceError
from ..users.store import UserStore, normalize_email
from .errors import AuthError, AuthErrorKind
from .provider import IdentityProviderClient
from .session import SessionGateway, SessionStoreError
from .utils import display_name_for, generate_state, is_email_domain_allowed

logger = logging.getLogger(__name__)

DEFAULT_ROLE = "user"


class FlowState(str, Enum):
    IDLE = "IDLE"
    STATE_ISSUED = "STATE_ISSUED"
    CALLBACK_RECEIVED = "CALLBACK_RECEIVED"
    TOKEN_EXCHANGED = "TOKEN_EXCHANGED"
    PROFILE_FETCHED = "PROFILE_FETCHED"
    AUTHORIZED = "AUTHORIZED"
    SESSION_ESTABLISHED = "SESSION_ESTABLISHED"


class LoginChallenge(BaseModel):
    """Result of starting a login: where to send the browser, and its pending session."""
    session_id: str = Field(..., description="New pending session id")
    authorization_url: str = Field(..., description="Provider URL to redirect the browser to")
    max_age: int = Field(..., description="Cookie lifetime in seconds")


class LoginResult(BaseModel):
    """Result of a completed login."""
    session_id: str = Field(..., description="New authenticated session id")
    user: UserRecord
    max_age: int = Field(..., description="Cookie lifetime in seconds")


class AuthFlowController:
    """
    Orchestrates the OAuth2 login state machine.

    Collaborators are injected so that each can be replaced in tests:
    - provider: exchanges codes and fetches profiles
    - users: persists the user record
    - sessions: stores pending state and authenticated identity
    - state_factory: produces CSRF state tokens
    """

    def __init__(
        self,
        settings: Settings,
        provider: IdentityProviderClient,
        users: UserStore,
        sessions: SessionGateway,
        state_factory: Callable[[], str] = generate_state,
    ):
        self._settings = settings
        self._provider = provider
        self._users = users
        self._sessions = sessions
        self._state_factory = state_factory

    # =========================================================================
    # IDLE -> STATE_ISSUED
    # =========================================================================

    async def begin_login(self, session_id: Optional[str] = None) -> LoginChallenge:
        """
        Issue a CSRF state and build the provider redirect.

        Args:
            session_id: The client's current session, if any; it is replaced

        Returns:
            LoginChallenge with the new pending session and authorization URL

        Raises:
            AuthError: SESSION_ERROR if the pending session cannot be saved
        """
        state = self._state_factory()

        try:
            new_session_id = await self._sessions.start_pending(session_id, state)
        except SessionStoreError as e:
            logger.error(f"Failed to save pending session: {e}")
            raise AuthError(AuthErrorKind.SESSION_ERROR, "Failed to save session") from e

        logger.info("Login started", extra={"flow_state": FlowState.STATE_ISSUED.value})
        return LoginChallenge(
            session_id=new_session_id,
            authorization_url=self._provider.authorization_url(state),
            max_age=self._sessions.pending_ttl,
        )

    # =========================================================================
    # STATE_ISSUED -> ... -> SESSION_ESTABLISHED
    # =========================================================================

    async def complete_login(
        self,
        session_id: Optional[str],
        received_state: Optional[str],
        code: Optional[str],
    ) -> LoginResult:
        """
        Run the callback half of the login.

        Args:
            session_id: Pending session from the client's cookie
            received_state: ``state`` query parameter from the provider redirect
            code: ``code`` query parameter, None if the provider sent none

        Returns:
            LoginResult with the new authenticated session and the user

        Raises:
            AuthError: with the kind of the first check that failed
        """
        flow_state = FlowState.STATE_ISSUED
        try:
            await self._consume_state(session_id, received_state)
            flow_state = FlowState.CALLBACK_RECEIVED

            if not code:
                raise AuthError(
                    AuthErrorKind.TOKEN_EXCHANGE_FAILED,
                    "Authorization was not granted by the identity provider",
                )

            token = await self._provider.exchange_code(code)
            if not token.is_valid():
                raise AuthError(AuthErrorKind.INVALID_TOKEN, "Access token is invalid or expired")
            flow_state = FlowState.TOKEN_EXCHANGED

            profile = await self._provider.fetch_profile(token)
            flow_state = FlowState.PROFILE_FETCHED

            self._authorize(profile)
            flow_state = FlowState.AUTHORIZED

            user = await self._reconcile(profile)
            new_session_id = await self._establish(session_id, user)
            flow_state = FlowState.SESSION_ESTABLISHED
        except AuthError as e:
            logger.warning(
                f"Login rejected: {e}",
                extra={"flow_state": flow_state.value, "error_kind": e.kind.value},
            )
            raise

        logger.info(
            "Login completed",
            extra={"flow_state": flow_state.value, "user_id": user.id},
        )
        return LoginResult(session_id=new_session_id, user=user, max_age=self._sessions.session_ttl)

    async def _consume_state(self, session_id: Optional[str], received_state: Optional[str]) -> None:
        if not session_id:
            raise AuthError(AuthErrorKind.INVALID_STATE, "Invalid state parameter", detail="no pending session")

        try:
            consumed = await self._sessions.consume_state(session_id, received_state)
        except SessionStoreError as e:
            raise AuthError(AuthErrorKind.SESSION_ERROR, "Failed to read session") from e

        if not consumed:
            raise AuthError(AuthErrorKind.INVALID_STATE, "Invalid state parameter")

    def _authorize(self, profile: ProviderProfile) -> None:
        if not profile.email_verified:
            raise AuthError(AuthErrorKind.UNVERIFIED_EMAIL, "Email address is not verified")

        if not is_email_domain_allowed(profile.email, self._settings.ALLOWED_DOMAIN):
            raise AuthError(
                AuthErrorKind.INVALID_DOMAIN,
                f"Only @{self._settings.ALLOWED_DOMAIN} email addresses are allowed",
            )

    async def _reconcile(self, profile: ProviderProfile) -> UserRecord:
        email = normalize_email(profile.email)
        candidate = UserRecord(
            email=email,
            display_name=display_name_for(profile.display_name, email),
            provider_subject_id=profile.subject_id,
            role=DEFAULT_ROLE,
            last_login_at=datetime.now(timezone.utc),
        )

        try:
            return await self._users.upsert(candidate)
        except PersistenceError as e:
            logger.error(f"User upsert failed: {e}")
            raise AuthError(AuthErrorKind.USER_CREATION_FAILED, "Failed to create or update user") from e

    async def _establish(self, previous_session_id: Optional[str], user: UserRecord) -> str:
        try:
            return await self._sessions.establish(previous_session_id, user.id, user.email)
        except SessionStoreError as e:
            logger.error(f"Failed to save authenticated session: {e}")
            raise AuthError(AuthErrorKind.SESSION_ERROR, "Failed to save session") from e

    # =========================================================================
    # Session checks
    # =========================================================================

    async def verify_session(self, session_id: Optional[str]) -> UserRecord:
        """
        Resolve an authenticated session to its user.

        Every failure (no session, no user, store error) is reported the
        same way so callers cannot tell them apart.

        Raises:
            AuthError: SESSION_INVALID
        """
        invalid = AuthError(AuthErrorKind.SESSION_INVALID, "Invalid or expired session")
        if not session_id:
            raise invalid

        try:
            data = await self._sessions.load(session_id)
            if data is None or data.user_id is None:
                raise invalid
            user = await self._users.find_by_id(data.user_id)
        except (SessionStoreError, PersistenceError) as e:
            logger.warning(f"Session lookup failed: {e}")
            raise invalid from e

        if user is None:
            raise invalid
        return user

    async def logout(self, session_id: Optional[str]) -> None:
        """
        Clear the session regardless of what it holds.

        Raises:
            AuthError: SESSION_ERROR if the backend cannot delete it
        """
        if not session_id:
            return

        try:
            await self._sessions.clear(session_id)
        except SessionStoreError as e:
            logger.error(f"Failed to clear session: {e}")
            raise AuthError(AuthErrorKind.SESSION_ERROR, "Failed to clear session") from e

        logger.info("Session cleared")
