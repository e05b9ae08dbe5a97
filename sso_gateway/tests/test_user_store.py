"""
User Store Tests

Tests creation, idempotent updates, and the concurrent-insert fallback of
the email-keyed upsert.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from sso_gateway.models import UserRecord
from sso_gateway.users.db import Base
from sso_gateway.users.errors import PersistenceError
from sso_gateway.users.store import UserStore, normalize_email


def candidate(email: str = "a@mesika.org", name: str = "Ama Mensah", **overrides) -> UserRecord:
    values = {
        "email": email,
        "display_name": name,
        "provider_subject_id": "google-sub-123",
        "role": "user",
        "last_login_at": datetime.now(timezone.utc),
    }
    values.update(overrides)
    return UserRecord(**values)


def test_normalize_email():
    assert normalize_email("  A.Mensah@Mesika.ORG ") == "a.mensah@mesika.org"


class TestUpsert:
    """Test suite for creating and reconciling users"""

    @pytest.mark.asyncio
    async def test_unknown_email_is_not_found(self, user_store):
        assert await user_store.find_by_email("nobody@mesika.org") is None

    @pytest.mark.asyncio
    async def test_creates_user(self, user_store):
        user = await user_store.upsert(candidate())

        assert user.id is not None
        assert user.email == "a@mesika.org"
        assert user.role == "user"
        assert user.created_at is not None
        assert user.created_at.tzinfo is not None

        stored = await user_store.find_by_email("a@mesika.org")
        assert stored == user

    @pytest.mark.asyncio
    async def test_second_upsert_updates_in_place(self, user_store):
        first = await user_store.upsert(candidate(name="Ama"))
        later = datetime.now(timezone.utc) + timedelta(minutes=5)

        second = await user_store.upsert(candidate(name="Ama Mensah", last_login_at=later))

        assert second.id == first.id
        assert second.created_at == first.created_at
        assert second.display_name == "Ama Mensah"
        assert second.last_login_at == later
        assert second.updated_at >= first.updated_at

    @pytest.mark.asyncio
    async def test_candidate_id_and_created_at_are_ignored(self, user_store):
        first = await user_store.upsert(candidate())

        second = await user_store.upsert(
            candidate(id=first.id + 100, created_at=datetime(2000, 1, 1, tzinfo=timezone.utc))
        )

        assert second.id == first.id
        assert second.created_at == first.created_at

    @pytest.mark.asyncio
    async def test_role_is_reset_on_login(self, user_store):
        await user_store.upsert(candidate(role="admin"))

        user = await user_store.upsert(candidate())

        assert user.role == "user"

    @pytest.mark.asyncio
    async def test_email_is_case_insensitive(self, user_store):
        first = await user_store.upsert(candidate(email="A.Mensah@Mesika.org"))
        second = await user_store.upsert(candidate(email="a.mensah@mesika.org"))

        assert first.email == "a.mensah@mesika.org"
        assert second.id == first.id
        assert (await user_store.find_by_email("A.MENSAH@MESIKA.ORG")).id == first.id

    @pytest.mark.asyncio
    async def test_find_by_id(self, user_store):
        user = await user_store.upsert(candidate())

        assert (await user_store.find_by_id(user.id)).email == "a@mesika.org"
        assert await user_store.find_by_id(user.id + 1) is None


class TestConcurrency:
    """Test suite for racing upserts of the same email"""

    @pytest.mark.asyncio
    async def test_concurrent_upserts_create_one_user(self, user_store):
        results = await asyncio.gather(*[
            user_store.upsert(candidate(name=f"Login {i}")) for i in range(10)
        ])

        assert len({user.id for user in results}) == 1
        assert {user.created_at for user in results} == {results[0].created_at}

    @pytest.mark.asyncio
    async def test_lost_insert_race_becomes_update(self, user_store, monkeypatch):
        existing = await user_store.upsert(candidate(name="First"))

        original = UserStore._select_for_update
        calls = []

        async def miss_first_lookup(session, email):
            calls.append(email)
            if len(calls) == 1:
                return None
            return await original(session, email)

        monkeypatch.setattr(UserStore, "_select_for_update", staticmethod(miss_first_lookup))

        user = await user_store.upsert(candidate(name="Second"))

        assert len(calls) == 2
        assert user.id == existing.id
        assert user.created_at == existing.created_at
        assert user.display_name == "Second"


class TestFailures:
    """Test suite for database failures"""

    @pytest.mark.asyncio
    async def test_timeout_raises_persistence_error(self, engine, user_store, monkeypatch):
        store = UserStore(user_store._session_factory, timeout_seconds=0.05)

        async def stalled(email, candidate):
            await asyncio.sleep(5)

        monkeypatch.setattr(store, "_upsert", stalled)

        with pytest.raises(PersistenceError, match="timed out"):
            await store.upsert(candidate())

    @pytest.mark.asyncio
    async def test_database_error_raises_persistence_error(self, engine, user_store):
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

        with pytest.raises(PersistenceError):
            await user_store.upsert(candidate())

        with pytest.raises(PersistenceError):
            await user_store.find_by_email("a@mesika.org")
