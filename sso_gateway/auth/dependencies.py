from fastapi import Request

from .errors import AuthError, AuthErrorKind
from .flow import AuthFlowController
from .session import SessionGateway, SessionStoreError


def get_auth_controller(request: Request) -> AuthFlowController:
    return request.app.state.auth_controller


def get_session_gateway(request: Request) -> SessionGateway:
    return request.app.state.session_gateway


async def require_session(request: Request) -> str:
    """
    FastAPI dependency for routes that need a logged-in user.

    Returns:
        The authenticated session id

    Raises:
        AuthError: SESSION_INVALID if the request has no authenticated session
    """
    sessions = get_session_gateway(request)
    session_id = sessions.read_session_id(request)
    if not session_id:
        raise AuthError(AuthErrorKind.SESSION_INVALID, "Authentication required")

    try:
        data = await sessions.load(session_id)
    except SessionStoreError as e:
        raise AuthError(AuthErrorKind.SESSION_INVALID, "Authentication required") from e

    if data is None or not data.is_authenticated:
        raise AuthError(AuthErrorKind.SESSION_INVALID, "Authentication required")
    return session_id
