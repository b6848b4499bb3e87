"""
Account Repository.

Directory of accounts keyed by normalised email, with the credential
stored beside (not inside) the public account record.

``AccountRepository`` is the seam the credential store depends on.  Two
implementations ship:

- :class:`InMemoryAccountRepository`: process-lifetime directory, used
  for development and tests.
- :class:`SqliteAccountRepository`: durable directory in the local
  SQLite database, with a UNIQUE index on ``accounts.email``.

Repositories are synchronous; the credential store runs them in a worker
thread.  Duplicate emails raise ``AuthError(DUPLICATE_ACCOUNT)`` from
:meth:`insert` so the uniqueness guarantee holds even without the
credential store's per-email locks.
"""

from __future__ import annotations

import sqlite3
import threading
from datetime import datetime
from typing import Optional, Protocol, runtime_checkable

from vitalsync_auth.database import DatabaseManager
from vitalsync_auth.errors import AuthError
from vitalsync_auth.logger import StructuredLogger
from vitalsync_auth.models.account import Account, AccountRecord, StoredCredential
from vitalsync_auth.models.auth_models import AuthErrorCode
from vitalsync_auth.repositories.base_repository import BaseRepository
from vitalsync_auth.utils.general import normalize_email


@runtime_checkable
class AccountRepository(Protocol):
    """Storage contract for the account directory."""

    def find_by_email(self, email: str) -> Optional[AccountRecord]: ...  # noqa: E704

    def find_by_id(self, account_id: str) -> Optional[AccountRecord]: ...  # noqa: E704

    def insert(self, record: AccountRecord) -> AccountRecord: ...  # noqa: E704

    def update_account(self, account: Account) -> Optional[Account]: ...  # noqa: E704

    def update_credential(self, credential: StoredCredential) -> bool: ...  # noqa: E704


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------

class InMemoryAccountRepository:
    """Thread-safe in-memory account directory."""

    def __init__(self) -> None:
        self._lock: threading.RLock = threading.RLock()
        self._by_id: dict[str, AccountRecord] = {}
        self._id_by_email: dict[str, str] = {}

    def find_by_email(self, email: str) -> Optional[AccountRecord]:
        with self._lock:
            account_id = self._id_by_email.get(normalize_email(email))
            return self._by_id.get(account_id) if account_id else None

    def find_by_id(self, account_id: str) -> Optional[AccountRecord]:
        with self._lock:
            return self._by_id.get(account_id)

    def insert(self, record: AccountRecord) -> AccountRecord:
        email = normalize_email(record.account.email)
        with self._lock:
            if email in self._id_by_email:
                raise AuthError(AuthErrorCode.DUPLICATE_ACCOUNT)
            self._by_id[record.account.id] = record
            self._id_by_email[email] = record.account.id
        return record

    def update_account(self, account: Account) -> Optional[Account]:
        with self._lock:
            existing = self._by_id.get(account.id)
            if existing is None:
                return None
            self._by_id[account.id] = existing.model_copy(update={"account": account})
            return account

    def update_credential(self, credential: StoredCredential) -> bool:
        with self._lock:
            existing = self._by_id.get(credential.account_id)
            if existing is None:
                return False
            self._by_id[credential.account_id] = existing.model_copy(
                update={"credential": credential},
            )
            return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_id)


# ---------------------------------------------------------------------------
# SQLite
# ---------------------------------------------------------------------------

class SqliteAccountRepository(BaseRepository):
    """Data access layer for accounts in the local SQLite database.

    **No ``delete()`` method.**  Accounts outlive sessions; removing one
    would orphan the audit trail.
    """

    TABLE = "accounts"

    _SELECT: str = """
        SELECT a.id, a.email, a.name, a.avatar, a.email_verified,
               a.created_at, a.last_login,
               c.password_hash, c.password_salt, c.iterations
        FROM accounts a
        JOIN credentials c ON c.account_id = a.id
    """

    def __init__(self, db: DatabaseManager, logger: StructuredLogger) -> None:
        super().__init__(db, logger)

    def find_by_email(self, email: str) -> Optional[AccountRecord]:
        """Fetch an account by email (case-insensitive lookup)."""
        row = self._db.fetch_one(
            f"{self._SELECT} WHERE a.email = ?", (normalize_email(email),),
        )
        return self._to_record(row) if row else None

    def find_by_id(self, account_id: str) -> Optional[AccountRecord]:
        row = self._db.fetch_one(f"{self._SELECT} WHERE a.id = ?", (account_id,))
        return self._to_record(row) if row else None

    def insert(self, record: AccountRecord) -> AccountRecord:
        """Insert an account and its credential in one transaction.

        Raises:
            AuthError: ``DUPLICATE_ACCOUNT`` when the normalised email is
                already taken.
        """
        account = record.account
        credential = record.credential
        try:
            with self._db.batch_write():
                self.sqlite.execute(
                    """
                    INSERT INTO accounts
                        (id, email, name, avatar, email_verified, created_at, last_login)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        account.id,
                        normalize_email(account.email),
                        account.name,
                        account.avatar,
                        int(account.email_verified),
                        account.created_at.isoformat(),
                        account.last_login.isoformat(),
                    ),
                )
                self.sqlite.execute(
                    """
                    INSERT INTO credentials
                        (account_id, password_hash, password_salt, iterations)
                    VALUES (?, ?, ?, ?)
                    """,
                    (
                        credential.account_id,
                        credential.password_hash,
                        credential.password_salt,
                        credential.iterations,
                    ),
                )
        except sqlite3.IntegrityError as exc:
            self._logger.info(
                "Rejected duplicate account for %s.", account.email,
            )
            raise AuthError(AuthErrorCode.DUPLICATE_ACCOUNT) from exc

        self._logger.info("Account inserted: %s", account.id)
        return record

    def update_account(self, account: Account) -> Optional[Account]:
        """Write the mutable account fields.  Returns ``None`` if missing."""
        with self._db.write_lock:
            cursor = self.sqlite.execute(
                f"""
                UPDATE {self.TABLE}
                SET name = ?, avatar = ?, email_verified = ?, last_login = ?
                WHERE id = ?
                """,
                (
                    account.name,
                    account.avatar,
                    int(account.email_verified),
                    account.last_login.isoformat(),
                    account.id,
                ),
            )
            self._commit()
        return account if cursor.rowcount else None

    def update_credential(self, credential: StoredCredential) -> bool:
        with self._db.write_lock:
            cursor = self.sqlite.execute(
                """
                UPDATE credentials
                SET password_hash = ?, password_salt = ?, iterations = ?
                WHERE account_id = ?
                """,
                (
                    credential.password_hash,
                    credential.password_salt,
                    credential.iterations,
                    credential.account_id,
                ),
            )
            self._commit()
        return bool(cursor.rowcount)

    @staticmethod
    def _to_record(row: sqlite3.Row) -> AccountRecord:
        account = Account(
            id=row["id"],
            email=row["email"],
            name=row["name"],
            avatar=row["avatar"],
            email_verified=bool(row["email_verified"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            last_login=datetime.fromisoformat(row["last_login"]),
        )
        credential = StoredCredential(
            account_id=row["id"],
            password_hash=row["password_hash"],
            password_salt=row["password_salt"],
            iterations=row["iterations"],
        )
        return AccountRecord(account=account, credential=credential)
