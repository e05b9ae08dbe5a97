"""
OAuth2 identity provider client.

This module talks to the external identity provider (Google by default):
- Building the authorization URL the browser is redirected to
- Exchanging an authorization code for an access token
- Fetching the verified profile with that access token

All calls go through one shared httpx.AsyncClient so connections are pooled
and TLS settings are applied in a single place.
"""

import logging
import ssl
from datetime import datetime, timedelta, timezone
from typing import Any, Dict
from urllib.parse import urlencode

import httpx
from pydantic import ValidationError

from ..config import Settings
from ..models import ProviderProfile, ProviderToken
from .errors import AuthError, AuthErrorKind

logger = logging.getLogger(__name__)

# Longest provider body echoed into diagnostics
MAX_DIAGNOSTIC_BODY = 512


def create_http_client(settings: Settings) -> httpx.AsyncClient:
    """
    Create the pooled HTTPS client used for provider calls.

    TLS below 1.2 is refused, every request is bounded by
    PROVIDER_TIMEOUT_SECONDS, and redirects are not followed.
    """
    ssl_context = ssl.create_default_context()
    ssl_context.minimum_version = ssl.TLSVersion.TLSv1_2

    return httpx.AsyncClient(
        verify=ssl_context,
        timeout=httpx.Timeout(settings.PROVIDER_TIMEOUT_SECONDS),
        limits=httpx.Limits(
            max_connections=settings.PROVIDER_MAX_CONNECTIONS,
            max_keepalive_connections=settings.PROVIDER_MAX_CONNECTIONS,
            keepalive_expiry=90.0,
        ),
        follow_redirects=False,
    )


def _truncate(body: bytes) -> str:
    text = body.decode("utf-8", errors="replace")
    if len(text) > MAX_DIAGNOSTIC_BODY:
        return text[:MAX_DIAGNOSTIC_BODY] + "..."
    return text


class IdentityProviderClient:
    """
    Client for the provider's authorize, token, and userinfo endpoints.

    The authorization code is single-use, so exchange_code never retries.
    """

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client

    def authorization_url(self, state: str) -> str:
        """
        Build the provider URL that starts a login.

        Args:
            state: CSRF state token to be echoed back on the callback

        Returns:
            Authorization URL requesting the profile and email scopes
        """
        params = {
            "client_id": self._settings.OAUTH_CLIENT_ID,
            "redirect_uri": self._settings.OAUTH_REDIRECT_URL,
            "response_type": "code",
            "scope": " ".join(self._settings.scopes_list),
            "state": state,
            "access_type": "online",
            "hd": self._settings.ALLOWED_DOMAIN,
        }
        return f"{self._settings.OAUTH_AUTHORIZE_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> ProviderToken:
        """
        Exchange an authorization code for an access token.

        Args:
            code: Authorization code from the callback

        Returns:
            ProviderToken with expiry and granted scopes

        Raises:
            AuthError: TOKEN_EXCHANGE_FAILED on transport error, non-2xx
                status, or an unreadable token response
        """
        payload = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self._settings.OAUTH_REDIRECT_URL,
            "client_id": self._settings.OAUTH_CLIENT_ID,
            "client_secret": self._settings.OAUTH_CLIENT_SECRET,
        }

        try:
            response = await self._client.post(
                self._settings.OAUTH_TOKEN_URL,
                data=payload,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            raise AuthError(
                AuthErrorKind.TOKEN_EXCHANGE_FAILED,
                "Failed to exchange auth code for token",
            ) from e

        if not response.is_success:
            raise AuthError(
                AuthErrorKind.TOKEN_EXCHANGE_FAILED,
                "Failed to exchange auth code for token",
                detail=f"status={response.status_code} body={_truncate(response.content)}",
            )

        try:
            token_data = response.json()
        except ValueError as e:
            raise AuthError(
                AuthErrorKind.TOKEN_EXCHANGE_FAILED,
                "Failed to exchange auth code for token",
                detail="token response is not JSON",
            ) from e

        if not isinstance(token_data, dict):
            raise AuthError(
                AuthErrorKind.TOKEN_EXCHANGE_FAILED,
                "Failed to exchange auth code for token",
                detail="token response is not a JSON object",
            )

        return self._token_from_response(token_data)

    @staticmethod
    def _token_from_response(token_data: Dict[str, Any]) -> ProviderToken:
        expiry = None
        expires_in = token_data.get("expires_in")
        if expires_in is not None:
            try:
                expiry = datetime.now(timezone.utc) + timedelta(seconds=int(expires_in))
            except (TypeError, ValueError, OverflowError) as e:
                raise AuthError(
                    AuthErrorKind.TOKEN_EXCHANGE_FAILED,
                    "Failed to exchange auth code for token",
                    detail=f"invalid expires_in: {expires_in!r}",
                ) from e

        scope = token_data.get("scope") or ""
        return ProviderToken(
            access_token=str(token_data.get("access_token") or ""),
            token_type=str(token_data.get("token_type") or "Bearer"),
            expiry=expiry,
            scope=set(scope.split()) if isinstance(scope, str) else set(),
        )

    async def fetch_profile(self, token: ProviderToken) -> ProviderProfile:
        """
        Fetch the user's profile from the provider.

        The response body is read to the end and the response closed on
        every path, so the connection always goes back to the pool.

        Args:
            token: Access token from exchange_code

        Returns:
            Parsed ProviderProfile

        Raises:
            AuthError: NETWORK_FAILURE for request construction or transport
                errors, INVALID_RESPONSE for non-2xx statuses or bodies that
                do not decode into a profile
        """
        try:
            request = self._client.build_request(
                "GET",
                self._settings.OAUTH_USERINFO_URL,
                headers={
                    "Authorization": f"Bearer {token.access_token}",
                    "Accept": "application/json",
                },
            )
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
            raise AuthError(
                AuthErrorKind.NETWORK_FAILURE,
                "Failed to create request",
            ) from e

        try:
            response = await self._client.send(request, stream=True)
        except httpx.HTTPError as e:
            raise AuthError(
                AuthErrorKind.NETWORK_FAILURE,
                "Failed to fetch user info from identity provider",
            ) from e

        try:
            body = await response.aread()
        except httpx.HTTPError as e:
            raise AuthError(
                AuthErrorKind.NETWORK_FAILURE,
                "Failed to fetch user info from identity provider",
            ) from e
        finally:
            await response.aclose()

        if not response.is_success:
            raise AuthError(
                AuthErrorKind.INVALID_RESPONSE,
                f"Invalid response from identity provider (status: {response.status_code})",
                detail=_truncate(body),
            )

        try:
            return ProviderProfile.model_validate_json(body)
        except ValidationError as e:
            raise AuthError(
                AuthErrorKind.INVALID_RESPONSE,
                "Failed to decode user info response",
                detail=f"status={response.status_code} body={_truncate(body)}",
            ) from e

    async def aclose(self) -> None:
        await self._client.aclose()
