"""
Session Store.

Durable key/value mirror of the *current* session: the access token, the
refresh token, and the account snapshot, under the keys ``auth_token``,
``refresh_token`` and ``auth_user``.  The account is written as camelCase
JSON with ISO-8601 timestamps and parsed back into ``datetime`` on read.

The triple is always written and cleared as one unit, so a crash can
never leave a token without its account (or vice versa).

Two implementations ship:

- :class:`InMemorySessionStore`: a dict swapped in a single assignment.
- :class:`SqliteSessionStore`: one row per key in ``session_store``,
  each value encrypted with AES-256-GCM, all rows written in a single
  transaction.

Security model (SQLite)
-----------------------
- The AES key is derived with PBKDF2-HMAC-SHA256 from
  ``SESSION_ENCRYPTION_KEY``, or from ``hostname:username`` when that is
  unset, and a random 32-byte salt kept in ``session_salt``.
- The derived key lives in memory only.
- The key name is bound as associated data, so ciphertexts cannot be
  swapped between rows.
- A row that fails to decrypt or parse is logged and read as absent.
"""

from __future__ import annotations

import asyncio
import getpass
import os
import socket
import sqlite3
import threading
from typing import Optional, Protocol, runtime_checkable

from Crypto.Cipher import AES
from Crypto.Hash import SHA256
from Crypto.Protocol.KDF import PBKDF2
from pydantic import SecretStr, ValidationError

from vitalsync_auth.database import DatabaseManager
from vitalsync_auth.logger import StructuredLogger
from vitalsync_auth.models.account import Account
from vitalsync_auth.models.auth_models import PersistedSession

AUTH_TOKEN_KEY: str = "auth_token"
REFRESH_TOKEN_KEY: str = "refresh_token"
AUTH_USER_KEY: str = "auth_user"

SESSION_KEYS: tuple[str, str, str] = (AUTH_TOKEN_KEY, REFRESH_TOKEN_KEY, AUTH_USER_KEY)


@runtime_checkable
class SessionStore(Protocol):
    """Persistence contract used by the session state machine."""

    async def save(self, token: str, refresh_token: str, account: Account) -> None: ...  # noqa: E704

    async def load(self) -> PersistedSession: ...  # noqa: E704

    async def clear(self) -> None: ...  # noqa: E704

    async def update_account(self, account: Account) -> None: ...  # noqa: E704


def _to_values(token: str, refresh_token: str, account: Account) -> dict[str, str]:
    return {
        AUTH_TOKEN_KEY: token,
        REFRESH_TOKEN_KEY: refresh_token,
        AUTH_USER_KEY: account.to_json(),
    }


def _parse_account(raw: Optional[str], logger: StructuredLogger) -> Optional[Account]:
    if raw is None:
        return None
    try:
        return Account.from_json(raw)
    except ValidationError as exc:
        logger.warning(
            "Persisted account snapshot is malformed: %s", exc,
            extra={"event": "SESSION_ACCOUNT_UNREADABLE"},
        )
        return None


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------

class InMemorySessionStore:
    """Process-lifetime session store.

    Values are kept as the same strings the SQLite store would encrypt,
    so the JSON round-trip of the account is exercised either way.
    """

    def __init__(self, logger: StructuredLogger, latency_s: float = 0.0) -> None:
        self._logger: StructuredLogger = logger
        self._latency_s: float = latency_s
        self._values: dict[str, str] = {}

    async def save(self, token: str, refresh_token: str, account: Account) -> None:
        await self._suspend()
        self._values = _to_values(token, refresh_token, account)

    async def load(self) -> PersistedSession:
        await self._suspend()
        values = self._values
        return PersistedSession(
            token=values.get(AUTH_TOKEN_KEY),
            refresh_token=values.get(REFRESH_TOKEN_KEY),
            account=_parse_account(values.get(AUTH_USER_KEY), self._logger),
        )

    async def clear(self) -> None:
        await self._suspend()
        self._values = {}

    async def update_account(self, account: Account) -> None:
        await self._suspend()
        self._values = {**self._values, AUTH_USER_KEY: account.to_json()}

    def keys(self) -> set[str]:
        """Names of the keys currently held."""
        return set(self._values)

    async def _suspend(self) -> None:
        if self._latency_s > 0:
            await asyncio.sleep(self._latency_s)


# ---------------------------------------------------------------------------
# SQLite (encrypted)
# ---------------------------------------------------------------------------

class SqliteSessionStore:
    """Encrypted session persistence in the local SQLite database.

    This store accesses SQLite directly rather than through a repository:
    the session triple is infrastructure state, not directory data.

    Parameters
    ----------
    db:
        Initialised ``DatabaseManager`` whose schema includes
        ``session_store`` and ``session_salt``.
    logger:
        Structured logger.
    encryption_key:
        Secret the AES key is derived from.  Empty means "derive from
        machine identity", which binds the database to this host and OS
        user.
    kdf_iterations:
        PBKDF2 iteration count for key derivation.
    """

    _KEY_LENGTH: int = 32  # 256 bits

    def __init__(
        self,
        db: DatabaseManager,
        logger: StructuredLogger,
        encryption_key: SecretStr = SecretStr(""),
        kdf_iterations: int = 600_000,
    ) -> None:
        self._db: DatabaseManager = db
        self._logger: StructuredLogger = logger
        self._encryption_key: SecretStr = encryption_key
        self._kdf_iterations: int = kdf_iterations
        self._key: Optional[bytes] = None
        self._key_lock: threading.Lock = threading.Lock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def save(self, token: str, refresh_token: str, account: Account) -> None:
        """Encrypt and write all three keys in one transaction."""
        await asyncio.to_thread(self._write, _to_values(token, refresh_token, account))

    async def load(self) -> PersistedSession:
        """Read and decrypt the triple.  Unreadable keys come back ``None``."""
        values = await asyncio.to_thread(self._read)
        return PersistedSession(
            token=values.get(AUTH_TOKEN_KEY),
            refresh_token=values.get(REFRESH_TOKEN_KEY),
            account=_parse_account(values.get(AUTH_USER_KEY), self._logger),
        )

    async def clear(self) -> None:
        """Delete all three keys in one transaction."""
        await asyncio.to_thread(self._delete)

    async def update_account(self, account: Account) -> None:
        """Re-persist the account snapshot without touching the tokens."""
        await asyncio.to_thread(self._write, {AUTH_USER_KEY: account.to_json()})

    # ------------------------------------------------------------------
    # Blocking helpers (run in a worker thread)
    # ------------------------------------------------------------------

    def _write(self, values: dict[str, str]) -> None:
        rows: list[tuple[str, bytes, bytes, bytes]] = []
        for name, value in values.items():
            ciphertext, nonce, tag = self._encrypt(name, value)
            rows.append((name, ciphertext, nonce, tag))

        with self._db.batch_write():
            self._db.sqlite.executemany(
                """
                INSERT INTO session_store (key, encrypted_value, nonce, tag, updated_at)
                VALUES (?, ?, ?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(key) DO UPDATE SET
                    encrypted_value = excluded.encrypted_value,
                    nonce           = excluded.nonce,
                    tag             = excluded.tag,
                    updated_at      = excluded.updated_at
                """,
                rows,
            )
        self._logger.debug(
            "Persisted session keys: %s", ", ".join(sorted(values)),
            extra={"event": "SESSION_PERSISTED"},
        )

    def _read(self) -> dict[str, str]:
        placeholders = ", ".join("?" for _ in SESSION_KEYS)
        rows = self._db.fetch_all(
            f"SELECT key, encrypted_value, nonce, tag FROM session_store "
            f"WHERE key IN ({placeholders})",
            SESSION_KEYS,
        )

        values: dict[str, str] = {}
        for row in rows:
            plaintext = self._decrypt(row["key"], row["encrypted_value"], row["nonce"], row["tag"])
            if plaintext is not None:
                values[row["key"]] = plaintext
        return values

    def _delete(self) -> None:
        placeholders = ", ".join("?" for _ in SESSION_KEYS)
        with self._db.batch_write():
            self._db.sqlite.execute(
                f"DELETE FROM session_store WHERE key IN ({placeholders})",
                SESSION_KEYS,
            )
        self._logger.info("Persisted session cleared.", extra={"event": "SESSION_CLEARED"})

    # ------------------------------------------------------------------
    # Crypto
    # ------------------------------------------------------------------

    def _encrypt(self, name: str, value: str) -> tuple[bytes, bytes, bytes]:
        cipher = AES.new(self._derive_key(), AES.MODE_GCM)
        cipher.update(name.encode("utf-8"))
        ciphertext, tag = cipher.encrypt_and_digest(value.encode("utf-8"))
        return ciphertext, cipher.nonce, tag

    def _decrypt(self, name: str, ciphertext: bytes, nonce: bytes, tag: bytes) -> Optional[str]:
        try:
            cipher = AES.new(self._derive_key(), AES.MODE_GCM, nonce=nonce)
            cipher.update(name.encode("utf-8"))
            return cipher.decrypt_and_verify(ciphertext, tag).decode("utf-8")
        except (ValueError, KeyError, UnicodeDecodeError) as exc:
            self._logger.warning(
                "Decryption of session key '%s' failed (corrupted data or "
                "key changed): %s",
                name,
                exc,
                extra={"event": "SESSION_DECRYPT_FAILED"},
            )
            return None

    def _derive_key(self) -> bytes:
        """Derive (once) the 256-bit AES key for this store."""
        with self._key_lock:
            if self._key is None:
                self._key = PBKDF2(
                    password=self._key_material(),
                    salt=self._get_or_create_salt(),
                    dkLen=self._KEY_LENGTH,
                    count=self._kdf_iterations,
                    hmac_hash_module=SHA256,
                )
            return self._key

    def _key_material(self) -> str:
        configured = self._encryption_key.get_secret_value()
        if configured:
            return configured
        try:
            username = getpass.getuser()
        except (KeyError, OSError):
            username = "unknown"
            self._logger.warning(
                "Could not determine the OS user; session key is bound to the host only.",
            )
        return f"{socket.gethostname()}:{username}"

    def _get_or_create_salt(self) -> bytes:
        with self._db.write_lock:
            row = self._db.fetch_one("SELECT salt FROM session_salt WHERE id = 1")
            if row is not None and len(row["salt"]) == 32:
                return bytes(row["salt"])
            if row is not None:
                self._logger.warning(
                    "Session salt has unexpected length (%d); regenerating.",
                    len(row["salt"]),
                )

            salt: bytes = os.urandom(32)
            try:
                with self._db.batch_write():
                    self._db.sqlite.execute(
                        """
                        INSERT INTO session_salt (id, salt) VALUES (1, ?)
                        ON CONFLICT(id) DO UPDATE SET salt = excluded.salt
                        """,
                        (salt,),
                    )
            except sqlite3.Error:
                self._logger.error("Failed to store the session salt.", exc_info=True)
                raise
            self._logger.info("Per-database session salt created.")
            return salt
