"""
Credential Store.

Directory of accounts and their secrets, shared by every session in the
process.  Wraps an injected :class:`AccountRepository` so production can
swap the in-memory directory for SQLite (or any database) without
touching the session state machine.

Security model
--------------
- Passwords are stored as PBKDF2-HMAC-SHA256 digests with a random
  32-byte salt per account; comparison uses ``hmac.compare_digest``.
- The credential never leaves this module: every public method returns
  an ``Account``.
- Writes to the same normalised email are serialised with a per-email
  ``asyncio.Lock`` so two simultaneous registrations for one address
  yield exactly one success and one ``DUPLICATE_ACCOUNT``.

All methods are coroutines.  Repository I/O and hashing run in a worker
thread; an optional simulated latency models the network hop of a remote
directory.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import os
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Optional

from vitalsync_auth.errors import AuthError
from vitalsync_auth.logger import StructuredLogger
from vitalsync_auth.models.account import Account, AccountRecord, StoredCredential
from vitalsync_auth.models.auth_models import AuthErrorCode
from vitalsync_auth.repositories.account_repository import AccountRepository
from vitalsync_auth.services.validation import require_valid, validate_password
from vitalsync_auth.utils.general import Clock, normalize_email, utc_now

_PROFILE_FIELDS: frozenset[str] = frozenset({"name", "avatar"})

_DEMO_ACCOUNTS: tuple[tuple[str, str, datetime], ...] = (
    ("demo@vitalsync.com", "Demo User", datetime(2024, 1, 1, tzinfo=timezone.utc)),
    ("john@example.com", "John Doe", datetime(2024, 1, 15, tzinfo=timezone.utc)),
)
_DEMO_PASSWORD: str = "password123"


class CredentialStore:
    """Account directory with salted-hash credential verification.

    Parameters
    ----------
    repository:
        Storage backend for accounts and credentials.
    logger:
        Structured logger.
    hash_iterations:
        PBKDF2 iteration count for newly hashed passwords.
    min_password_length:
        Password policy applied by :meth:`update_password`.
    latency_s:
        Seconds to suspend at every call boundary (0 disables).
    clock:
        Source of ``created_at`` / ``last_login`` timestamps.
    """

    def __init__(
        self,
        repository: AccountRepository,
        logger: StructuredLogger,
        *,
        hash_iterations: int = 600_000,
        min_password_length: int = 8,
        latency_s: float = 0.0,
        clock: Clock = utc_now,
    ) -> None:
        self._repo: AccountRepository = repository
        self._logger: StructuredLogger = logger
        self._hash_iterations: int = hash_iterations
        self._min_password_length: int = min_password_length
        self._latency_s: float = latency_s
        self._clock: Clock = clock
        self._email_locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def find_by_email(self, email: str) -> Optional[Account]:
        """Return the account registered under *email* (case-insensitive)."""
        await self._suspend()
        record = await asyncio.to_thread(self._repo.find_by_email, email)
        return record.account if record else None

    async def get_account(self, account_id: str) -> Account:
        """Return the account with *account_id*.

        Raises:
            AuthError: ``ACCOUNT_NOT_FOUND`` if the id is stale.
        """
        await self._suspend()
        record = await asyncio.to_thread(self._repo.find_by_id, account_id)
        if record is None:
            raise AuthError(AuthErrorCode.ACCOUNT_NOT_FOUND)
        return record.account

    async def verify(self, email: str, password: str) -> Account:
        """Check *password* against the credential stored for *email*.

        Raises:
            AuthError: ``ACCOUNT_NOT_FOUND`` when no account matches,
                ``INCORRECT_PASSWORD`` when the secret does not match.
        """
        await self._suspend()
        record = await asyncio.to_thread(self._repo.find_by_email, email)
        if record is None:
            raise AuthError(AuthErrorCode.ACCOUNT_NOT_FOUND)

        matches = await asyncio.to_thread(self._matches, record.credential, password)
        if not matches:
            self._logger.warning(
                "Password verification failed for %s.", record.account.email,
                extra={"event": "VERIFY_FAILED", "account_id": record.account.id},
            )
            raise AuthError(AuthErrorCode.INCORRECT_PASSWORD)
        return record.account

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def insert(self, account: Account, password: str) -> Account:
        """Add *account* with *password* as its credential.

        The email is normalised before storage.

        Raises:
            AuthError: ``DUPLICATE_ACCOUNT`` when the normalised email is
                already registered.
        """
        email = normalize_email(account.email)
        account = account.model_copy(update={"email": email})

        async with self._lock_for(email):
            await self._suspend()
            if await asyncio.to_thread(self._repo.find_by_email, email) is not None:
                raise AuthError(AuthErrorCode.DUPLICATE_ACCOUNT)

            credential = await asyncio.to_thread(self._new_credential, account.id, password)
            await asyncio.to_thread(
                self._repo.insert,
                AccountRecord(account=account, credential=credential),
            )

        self._logger.info(
            "Account created: %s", email,
            extra={"event": "ACCOUNT_CREATED", "account_id": account.id},
        )
        return account

    async def record_login(self, account_id: str, when: Optional[datetime] = None) -> Account:
        """Stamp ``last_login`` on the account and return the updated record."""
        return await self._update(account_id, {"last_login": when or self._clock()})

    async def update_profile(self, account_id: str, fields: dict[str, str]) -> Account:
        """Partially update ``name`` and/or ``avatar``.

        Other keys in *fields* are ignored.

        Raises:
            AuthError: ``ACCOUNT_NOT_FOUND`` if the id is stale.
        """
        changes: dict[str, str] = {
            key: value for key, value in fields.items() if key in _PROFILE_FIELDS
        }
        ignored = set(fields) - _PROFILE_FIELDS
        if ignored:
            self._logger.warning(
                "Ignoring non-profile fields in update: %s", sorted(ignored),
            )
        if "name" in changes:
            changes["name"] = changes["name"].strip()
        return await self._update(account_id, changes)

    async def update_password(
        self, account_id: str, old_password: str, new_password: str,
    ) -> None:
        """Replace the credential after checking the current one.

        Raises:
            AuthError: ``ACCOUNT_NOT_FOUND`` if the id is stale,
                ``INCORRECT_PASSWORD`` if *old_password* does not match,
                ``WEAK_PASSWORD`` if *new_password* fails the policy.
        """
        await self._suspend()
        record = await asyncio.to_thread(self._repo.find_by_id, account_id)
        if record is None:
            raise AuthError(AuthErrorCode.ACCOUNT_NOT_FOUND)

        async with self._lock_for(record.account.email):
            if not await asyncio.to_thread(self._matches, record.credential, old_password):
                raise AuthError(
                    AuthErrorCode.INCORRECT_PASSWORD, "Current password is incorrect.",
                )
            require_valid(validate_password(new_password, self._min_password_length))

            credential = await asyncio.to_thread(self._new_credential, account_id, new_password)
            if not await asyncio.to_thread(self._repo.update_credential, credential):
                raise AuthError(AuthErrorCode.ACCOUNT_NOT_FOUND)

        self._logger.info(
            "Password changed for %s.", record.account.email,
            extra={"event": "PASSWORD_CHANGED", "account_id": account_id},
        )

    async def seed_demo_accounts(self) -> list[Account]:
        """Register the development accounts if they are missing.

        Both use the password ``password123`` and are pre-verified.
        """
        seeded: list[Account] = []
        for email, name, created_at in _DEMO_ACCOUNTS:
            if await self.find_by_email(email) is not None:
                continue
            account = Account(
                id=str(uuid.uuid4()),
                email=email,
                name=name,
                email_verified=True,
                created_at=created_at,
                last_login=self._clock(),
            )
            try:
                seeded.append(await self.insert(account, _DEMO_PASSWORD))
            except AuthError as exc:
                if exc.code != AuthErrorCode.DUPLICATE_ACCOUNT:
                    raise
        if seeded:
            self._logger.info("Seeded %d demo account(s).", len(seeded))
        return seeded

    # ------------------------------------------------------------------
    # Hashing
    # ------------------------------------------------------------------

    @staticmethod
    def hash_password(password: str, iterations: int, salt: Optional[bytes] = None) -> tuple[str, str]:
        """Derive a PBKDF2-HMAC-SHA256 hash.

        Returns
        -------
        tuple[str, str]
            A ``(hex_hash, hex_salt)`` pair.  A fresh 32-byte salt is
            generated when *salt* is omitted.
        """
        salt = salt if salt is not None else os.urandom(32)
        pw_hash: str = hashlib.pbkdf2_hmac(
            "sha256",
            password.encode("utf-8"),
            salt,
            iterations=iterations,
        ).hex()
        return pw_hash, salt.hex()

    def _new_credential(self, account_id: str, password: str) -> StoredCredential:
        pw_hash, pw_salt = self.hash_password(password, self._hash_iterations)
        return StoredCredential(
            account_id=account_id,
            password_hash=pw_hash,
            password_salt=pw_salt,
            iterations=self._hash_iterations,
        )

    @classmethod
    def _matches(cls, credential: StoredCredential, password: str) -> bool:
        computed, _ = cls.hash_password(
            password, credential.iterations, bytes.fromhex(credential.password_salt),
        )
        return hmac.compare_digest(computed, credential.password_hash)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _update(self, account_id: str, changes: dict[str, object]) -> Account:
        await self._suspend()
        record = await asyncio.to_thread(self._repo.find_by_id, account_id)
        if record is None:
            raise AuthError(AuthErrorCode.ACCOUNT_NOT_FOUND)

        async with self._lock_for(record.account.email):
            current = await asyncio.to_thread(self._repo.find_by_id, account_id)
            if current is None:
                raise AuthError(AuthErrorCode.ACCOUNT_NOT_FOUND)
            updated = current.account.model_copy(update=changes)
            if await asyncio.to_thread(self._repo.update_account, updated) is None:
                raise AuthError(AuthErrorCode.ACCOUNT_NOT_FOUND)
        return updated

    @asynccontextmanager
    async def _lock_for(self, email: str) -> AsyncIterator[None]:
        """Serialise writers per normalised email.

        An entry is dropped once no holder or waiter remains.
        """
        key = normalize_email(email)
        lock = self._email_locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._email_locks[key]

    async def _suspend(self) -> None:
        if self._latency_s > 0:
            await asyncio.sleep(self._latency_s)
