"""
Authentication routes for SSO login, callback, session check, and logout.

This module implements the HTTP surface of the OAuth 2.0 authorization code
flow. The routes only translate between HTTP and AuthFlowController: they
read the session cookie, call the controller, and write the cookie back.
Rejections raise AuthError, which the application-level handler turns into
a ``{"code", "message"}`` JSON body with the matching status.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse, RedirectResponse

from ..models import LoginResponse, MessageResponse, SessionUser, UserSummary, VerifyResponse
from .dependencies import get_auth_controller, get_session_gateway, require_session
from .flow import AuthFlowController
from .session import SessionGateway

logger = logging.getLogger(__name__)


# =============================================================================
# Router Setup
# =============================================================================

auth_router = APIRouter(
    prefix="/api/auth",
    tags=["authentication"],
)


# =============================================================================
# Login Endpoint
# =============================================================================

@auth_router.get("/sso", response_class=RedirectResponse)
async def initiate_sso(
    request: Request,
    controller: AuthFlowController = Depends(get_auth_controller),
    sessions: SessionGateway = Depends(get_session_gateway),
):
    """
    Start a login by redirecting to the identity provider.

    Issues a fresh CSRF state, stores it in a new pending session, and sets
    the session cookie for the pending phase.

    Returns:
        307 RedirectResponse to the provider authorization endpoint
    """
    challenge = await controller.begin_login(sessions.read_session_id(request))

    response = RedirectResponse(
        url=challenge.authorization_url,
        status_code=status.HTTP_307_TEMPORARY_REDIRECT,
    )
    sessions.attach_cookie(response, challenge.session_id, challenge.max_age)
    return response


# =============================================================================
# Callback Endpoint
# =============================================================================

@auth_router.get("/callback", response_model=LoginResponse)
async def callback(
    request: Request,
    code: Optional[str] = Query(None, description="Authorization code from the provider"),
    state: Optional[str] = Query(None, description="State parameter for CSRF protection"),
    error: Optional[str] = Query(None, description="Error code if the user denied access"),
    controller: AuthFlowController = Depends(get_auth_controller),
    sessions: SessionGateway = Depends(get_session_gateway),
):
    """
    Handle the provider redirect and finish the login.

    Query Parameters:
        code: Authorization code
        state: State parameter (must match the pending session)
        error: Set by the provider instead of code when login was denied

    Returns:
        200 with ``{message, user: {email, name}}`` and the authenticated
        session cookie
    """
    if error:
        logger.info("Provider returned an error on callback", extra={"provider_error": error})

    result = await controller.complete_login(
        sessions.read_session_id(request),
        state,
        None if error else code,
    )

    body = LoginResponse(
        message="Successfully authenticated",
        user=UserSummary(email=result.user.email, name=result.user.display_name),
    )
    response = JSONResponse(content=body.model_dump(), status_code=status.HTTP_200_OK)
    sessions.attach_cookie(response, result.session_id, result.max_age)
    return response


# =============================================================================
# Session Endpoints
# =============================================================================

@auth_router.get("/verify", response_model=VerifyResponse)
async def verify_session(
    session_id: str = Depends(require_session),
    controller: AuthFlowController = Depends(get_auth_controller),
):
    """
    Report the user behind the current session.

    Returns:
        200 with ``{authenticated: true, user}``; 401 otherwise
    """
    user = await controller.verify_session(session_id)
    return VerifyResponse(
        authenticated=True,
        user=SessionUser(id=user.id, email=user.email, name=user.display_name, role=user.role),
    )


@auth_router.post("/logout", response_model=MessageResponse)
async def logout(
    session_id: str = Depends(require_session),
    controller: AuthFlowController = Depends(get_auth_controller),
    sessions: SessionGateway = Depends(get_session_gateway),
):
    """
    Clear the current session and its cookie.
    """
    await controller.logout(session_id)

    response = JSONResponse(
        content=MessageResponse(message="Successfully logged out").model_dump(),
        status_code=status.HTTP_200_OK,
    )
    sessions.detach_cookie(response)
    return response
