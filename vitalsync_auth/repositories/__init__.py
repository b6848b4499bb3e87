"""
Repository Layer Package.

Provides data-access abstractions over the account directory.  Services
never touch ``db.sqlite`` for account data directly.

Usage:
    from vitalsync_auth.repositories import InMemoryAccountRepository
    from vitalsync_auth.repositories import SqliteAccountRepository
"""

from vitalsync_auth.repositories.base_repository import BaseRepository
from vitalsync_auth.repositories.account_repository import (
    AccountRepository,
    InMemoryAccountRepository,
    SqliteAccountRepository,
)

__all__ = [
    "BaseRepository",
    "AccountRepository",
    "InMemoryAccountRepository",
    "SqliteAccountRepository",
]
