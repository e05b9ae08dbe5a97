"""
User persistence package.

Modules:
- db: async engine/session factory and shared column types
- models: SQLAlchemy ORM mapping for the users table
- store: UserStore with race-safe upsert keyed by email
- errors: PersistenceError
"""

from .errors import PersistenceError
from .store import UserStore, normalize_email

__all__ = [
    "PersistenceError",
    "UserStore",
    "normalize_email",
]
