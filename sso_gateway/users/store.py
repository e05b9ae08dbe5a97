"""
User store with race-safe upsert keyed by email.

Reconciliation runs in one transaction: look up the row by email, then
either insert a new row or update the found row by its primary key. When
two processes insert the same new email at once, the unique constraint
rejects the loser, which rolls back and retries as an update of the winning
row. Within one process, upserts for the same email also queue on a
per-email asyncio.Lock.
"""

import asyncio
import logging
import weakref
from datetime import datetime, timezone
from typing import Awaitable, Optional, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..models import UserRecord
from .errors import PersistenceError
from .models import User

logger = logging.getLogger(__name__)

T = TypeVar("T")


def normalize_email(email: str) -> str:
    """
    Normalize an email address for storage and lookup.

    Emails are trimmed and lower-cased so that two logins differing only in
    letter case resolve to the same user record.
    """
    return email.strip().lower()


class UserStore:
    """
    Persists and reconciles user records by email.

    Every public operation is bounded by ``timeout_seconds`` and reports
    database failures as PersistenceError. "Not found" is returned as None.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        timeout_seconds: float = 10.0,
    ):
        self._session_factory = session_factory
        self._timeout = timeout_seconds
        self._email_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    # =========================================================================
    # Lookups
    # =========================================================================

    async def find_by_email(self, email: str) -> Optional[UserRecord]:
        return await self._bounded(self._find_by_email(normalize_email(email)), "find_by_email")

    async def find_by_id(self, user_id: int) -> Optional[UserRecord]:
        return await self._bounded(self._find_by_id(user_id), "find_by_id")

    async def _find_by_email(self, email: str) -> Optional[UserRecord]:
        async with self._session_factory() as session:
            user = await session.scalar(select(User).where(User.email == email))
            return UserRecord.model_validate(user) if user else None

    async def _find_by_id(self, user_id: int) -> Optional[UserRecord]:
        async with self._session_factory() as session:
            user = await session.get(User, user_id)
            return UserRecord.model_validate(user) if user else None

    # =========================================================================
    # Upsert
    # =========================================================================

    async def upsert(self, candidate: UserRecord) -> UserRecord:
        """
        Create the user for ``candidate.email`` or update the existing one.

        ``id`` and ``created_at`` of an existing row are never changed; the
        candidate's own ``id``/``created_at`` are ignored.

        Args:
            candidate: Desired user state from the latest login

        Returns:
            The stored UserRecord

        Raises:
            PersistenceError: If the transaction fails or times out
        """
        email = normalize_email(candidate.email)
        return await self._bounded(self._locked_upsert(email, candidate), "upsert")

    def _lock_for(self, email: str) -> asyncio.Lock:
        lock = self._email_locks.get(email)
        if lock is None:
            lock = asyncio.Lock()
            self._email_locks[email] = lock
        return lock

    async def _locked_upsert(self, email: str, candidate: UserRecord) -> UserRecord:
        lock = self._lock_for(email)
        async with lock:
            return await self._upsert(email, candidate)

    async def _upsert(self, email: str, candidate: UserRecord) -> UserRecord:
        now = datetime.now(timezone.utc)

        async with self._session_factory() as session:
            try:
                async with session.begin():
                    user = await self._select_for_update(session, email)
                    if user is None:
                        user = User(
                            email=email,
                            display_name=candidate.display_name,
                            provider_subject_id=candidate.provider_subject_id,
                            role=candidate.role,
                            last_login_at=candidate.last_login_at or now,
                            created_at=now,
                            updated_at=now,
                        )
                        session.add(user)
                        await session.flush()
                        logger.info("Created user", extra={"user_id": user.id})
                    else:
                        self._apply(user, candidate, now)
                        logger.info("Updated user", extra={"user_id": user.id})
                return UserRecord.model_validate(user)
            except IntegrityError:
                logger.info("Concurrent insert won the race; resolving as update")

            # The insert lost to a concurrent transaction: update the winner
            async with session.begin():
                user = await self._select_for_update(session, email)
                if user is None:
                    raise PersistenceError("User vanished after unique constraint conflict")
                self._apply(user, candidate, now)
                logger.info("Updated user", extra={"user_id": user.id})
            return UserRecord.model_validate(user)

    @staticmethod
    async def _select_for_update(session: AsyncSession, email: str) -> Optional[User]:
        return await session.scalar(
            select(User).where(User.email == email).with_for_update()
        )

    @staticmethod
    def _apply(user: User, candidate: UserRecord, now: datetime) -> None:
        user.display_name = candidate.display_name
        user.provider_subject_id = candidate.provider_subject_id
        user.role = candidate.role
        user.last_login_at = candidate.last_login_at or now
        user.updated_at = now

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _bounded(self, operation: Awaitable[T], name: str) -> T:
        try:
            return await asyncio.wait_for(operation, timeout=self._timeout)
        except asyncio.TimeoutError as e:
            raise PersistenceError(f"{name} timed out after {self._timeout}s") from e
        except SQLAlchemyError as e:
            raise PersistenceError(f"{name} failed: {e.__class__.__name__}") from e
