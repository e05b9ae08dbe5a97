from typing import Iterator
from unittest.mock import AsyncMock, Mock

import pytest
import pytest_asyncio
import respx

from sso_gateway.auth.flow import AuthFlowController
from sso_gateway.auth.session import InMemorySessionBackend, SessionGateway
from sso_gateway.config import Settings
from sso_gateway.models import ProviderProfile, ProviderToken
from sso_gateway.users.db import create_engine, create_session_factory, create_tables
from sso_gateway.users.store import UserStore


TEST_SESSION_SECRET = "test-session-secret-0123456789abcdef"


@pytest.fixture
def settings() -> Settings:
    """Settings for an in-memory database and the default Google endpoints"""
    return Settings(
        _env_file=None,
        OAUTH_CLIENT_ID="test-client-id",
        OAUTH_CLIENT_SECRET="test-client-secret",
        OAUTH_REDIRECT_URL="https://testserver/api/auth/callback",
        SESSION_SECRET=TEST_SESSION_SECRET,
        DATABASE_URL="sqlite+aiosqlite:///:memory:",
        ALLOWED_DOMAIN="mesika.org",
    )


@pytest_asyncio.fixture
async def engine(settings):
    engine = create_engine(settings)
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def user_store(engine) -> UserStore:
    return UserStore(create_session_factory(engine), timeout_seconds=5.0)


@pytest.fixture
def session_backend() -> InMemorySessionBackend:
    return InMemorySessionBackend()


@pytest.fixture
def sessions(settings, session_backend) -> SessionGateway:
    return SessionGateway(settings, session_backend)


def make_profile(
    email: str = "a@mesika.org",
    email_verified: bool = True,
    name: str = "Ama Mensah",
    subject_id: str = "google-sub-123",
) -> ProviderProfile:
    return ProviderProfile(
        subject_id=subject_id,
        email=email,
        email_verified=email_verified,
        display_name=name,
    )


def make_token(access_token: str = "mock-access-token") -> ProviderToken:
    return ProviderToken(access_token=access_token, scope={"email", "profile"})


@pytest.fixture
def provider() -> Mock:
    """Identity provider double; tests override exchange_code/fetch_profile as needed"""
    provider = Mock()
    provider.authorization_url = Mock(side_effect=lambda state: f"https://idp.test/auth?state={state}")
    provider.exchange_code = AsyncMock(return_value=make_token())
    provider.fetch_profile = AsyncMock(return_value=make_profile())
    return provider


@pytest.fixture
def controller(settings, provider, user_store, sessions) -> AuthFlowController:
    return AuthFlowController(
        settings=settings,
        provider=provider,
        users=user_store,
        sessions=sessions,
        state_factory=lambda: "abc",
    )


@pytest.fixture
def provider_http() -> Iterator[respx.MockRouter]:
    """Mock all outbound HTTP to the identity provider"""
    with respx.mock(assert_all_called=False) as router:
        yield router
