"""
Route Tests

Tests the HTTP surface of the gateway with the full application, an
in-memory user database, and mocked provider endpoints.
"""

from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from fastapi.testclient import TestClient

from sso_gateway.config import GOOGLE_AUTHORIZE_URL, GOOGLE_TOKEN_URL, GOOGLE_USERINFO_URL
from sso_gateway.main import create_app


TOKEN_RESPONSE = {
    "access_token": "ya29.mock-access-token",
    "token_type": "Bearer",
    "expires_in": 3599,
    "scope": "openid email profile",
}


def userinfo(email: str = "a@mesika.org", verified: bool = True) -> dict:
    return {"id": "1098765", "email": email, "verified_email": verified, "name": "Ama Mensah", "hd": "mesika.org"}


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def client(app):
    with TestClient(app, base_url="https://testserver") as client:
        yield client


@pytest.fixture
def token_route(provider_http):
    return provider_http.post(GOOGLE_TOKEN_URL).mock(return_value=httpx.Response(200, json=TOKEN_RESPONSE))


@pytest.fixture
def userinfo_route(provider_http):
    return provider_http.get(GOOGLE_USERINFO_URL).mock(return_value=httpx.Response(200, json=userinfo()))


def begin(client) -> str:
    """Start a login and return the issued state."""
    response = client.get("/api/auth/sso", follow_redirects=False)
    assert response.status_code == 307
    return parse_qs(urlparse(response.headers["location"]).query)["state"][0]


def set_cookie_attributes(response) -> list:
    return [part.strip() for part in response.headers["set-cookie"].lower().split(";")[1:]]


class TestSystemRoutes:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "service": "sso-gateway", "version": "1.0.0"}

    def test_login_page(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert "/api/auth/sso" in response.text
        assert "mesika.org" in response.text


class TestLoginRedirect:
    """Test suite for GET /api/auth/sso"""

    def test_redirects_to_provider(self, client):
        response = client.get("/api/auth/sso", follow_redirects=False)

        assert response.status_code == 307
        location = urlparse(response.headers["location"])
        assert f"{location.scheme}://{location.netloc}{location.path}" == GOOGLE_AUTHORIZE_URL

        params = parse_qs(location.query)
        assert params["client_id"] == ["test-client-id"]
        assert params["response_type"] == ["code"]
        assert len(params["state"][0]) >= 43

    def test_sets_pending_session_cookie(self, client):
        response = client.get("/api/auth/sso", follow_redirects=False)

        attributes = set_cookie_attributes(response)
        assert "httponly" in attributes
        assert "secure" in attributes
        assert "samesite=strict" in attributes
        assert "max-age=300" in attributes
        assert "path=/" in attributes

    def test_each_login_gets_fresh_state(self, client):
        assert begin(client) != begin(client)


class TestCallback:
    """Test suite for GET /api/auth/callback"""

    def test_full_login_verify_logout(self, client, token_route, userinfo_route):
        state = begin(client)

        response = client.get("/api/auth/callback", params={"code": "validcode", "state": state})

        assert response.status_code == 200
        assert response.json() == {
            "message": "Successfully authenticated",
            "user": {"email": "a@mesika.org", "name": "Ama Mensah"},
        }
        assert "max-age=86400" in set_cookie_attributes(response)
        assert token_route.call_count == 1
        assert userinfo_route.call_count == 1

        response = client.get("/api/auth/verify")
        assert response.status_code == 200
        body = response.json()
        assert body["authenticated"] is True
        assert body["user"]["email"] == "a@mesika.org"
        assert body["user"]["role"] == "user"
        assert isinstance(body["user"]["id"], int)

        session_cookie = client.cookies.get("auth-session")

        response = client.post("/api/auth/logout")
        assert response.status_code == 200
        assert response.json() == {"message": "Successfully logged out"}

        response = client.get("/api/auth/verify")
        assert response.status_code == 401

        response = client.get("/api/auth/verify", headers={"Cookie": f"auth-session={session_cookie}"})
        assert response.status_code == 401
        assert response.json()["code"] == "SESSION_INVALID"

    def test_disallowed_domain(self, app, client, token_route, provider_http):
        provider_http.get(GOOGLE_USERINFO_URL).mock(
            return_value=httpx.Response(200, json=userinfo(email="someone@gmail.com"))
        )
        state = begin(client)

        response = client.get("/api/auth/callback", params={"code": "validcode", "state": state})

        assert response.status_code == 401
        assert response.json() == {
            "code": "INVALID_DOMAIN",
            "message": "Only @mesika.org email addresses are allowed",
        }
        assert client.portal.call(app.state.user_store.find_by_email, "someone@gmail.com") is None
        assert client.get("/api/auth/verify").status_code == 401

    def test_unverified_email(self, client, token_route, provider_http):
        provider_http.get(GOOGLE_USERINFO_URL).mock(
            return_value=httpx.Response(200, json=userinfo(verified=False))
        )
        state = begin(client)

        response = client.get("/api/auth/callback", params={"code": "validcode", "state": state})

        assert response.status_code == 401
        assert response.json()["code"] == "UNVERIFIED_EMAIL"

    def test_token_exchange_failure_does_not_leak_provider_body(self, client, provider_http, userinfo_route):
        provider_http.post(GOOGLE_TOKEN_URL).mock(
            return_value=httpx.Response(500, text="secret provider diagnostics")
        )
        state = begin(client)

        response = client.get("/api/auth/callback", params={"code": "validcode", "state": state})

        assert response.status_code == 400
        assert response.json()["code"] == "TOKEN_EXCHANGE_FAILED"
        assert "secret provider diagnostics" not in response.text
        assert userinfo_route.call_count == 0

    def test_wrong_state_keeps_pending_login(self, client, token_route, userinfo_route):
        state = begin(client)

        response = client.get("/api/auth/callback", params={"code": "validcode", "state": "forged"})
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_STATE"
        assert token_route.call_count == 0

        response = client.get("/api/auth/callback", params={"code": "validcode", "state": state})
        assert response.status_code == 200

    def test_replayed_callback(self, client, token_route, userinfo_route):
        state = begin(client)
        assert client.get("/api/auth/callback", params={"code": "validcode", "state": state}).status_code == 200

        response = client.get("/api/auth/callback", params={"code": "validcode", "state": state})

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_STATE"
        assert token_route.call_count == 1

    def test_callback_without_session(self, client, token_route):
        response = client.get("/api/auth/callback", params={"code": "validcode", "state": "abc"})

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_STATE"
        assert token_route.call_count == 0

    def test_provider_denied_access(self, client, token_route):
        state = begin(client)

        response = client.get("/api/auth/callback", params={"error": "access_denied", "state": state})

        assert response.status_code == 400
        assert response.json()["code"] == "TOKEN_EXCHANGE_FAILED"
        assert token_route.call_count == 0

    def test_userinfo_error_status(self, client, token_route, provider_http):
        provider_http.get(GOOGLE_USERINFO_URL).mock(return_value=httpx.Response(500, text="oops"))
        state = begin(client)

        response = client.get("/api/auth/callback", params={"code": "validcode", "state": state})

        assert response.status_code == 502
        assert response.json() == {
            "code": "INVALID_RESPONSE",
            "message": "Invalid response from identity provider (status: 500)",
        }

    def test_userinfo_unreachable(self, client, token_route, provider_http):
        provider_http.get(GOOGLE_USERINFO_URL).mock(side_effect=httpx.ConnectError("unreachable"))
        state = begin(client)

        response = client.get("/api/auth/callback", params={"code": "validcode", "state": state})

        assert response.status_code == 503
        assert response.json()["code"] == "NETWORK_FAILURE"


class TestSessionRoutes:
    """Test suite for /api/auth/verify and /api/auth/logout without a session"""

    def test_verify_without_cookie(self, client):
        response = client.get("/api/auth/verify")

        assert response.status_code == 401
        assert response.json() == {"code": "SESSION_INVALID", "message": "Authentication required"}

    def test_verify_with_pending_session(self, client):
        begin(client)

        response = client.get("/api/auth/verify")

        assert response.status_code == 401

    def test_verify_with_forged_cookie(self, client):
        response = client.get("/api/auth/verify", headers={"Cookie": "auth-session=forged.value.here"})

        assert response.status_code == 401

    def test_logout_without_session(self, client):
        response = client.post("/api/auth/logout")

        assert response.status_code == 401
        assert response.json()["code"] == "SESSION_INVALID"
