"""Tests for the in-memory and encrypted SQLite session stores."""

from datetime import datetime

import pytest
from pydantic import SecretStr

from vitalsync_auth.database import DatabaseManager
from vitalsync_auth.logger import StructuredLogger
from vitalsync_auth.models.account import Account
from vitalsync_auth.services.session_store import (
    AUTH_TOKEN_KEY,
    AUTH_USER_KEY,
    REFRESH_TOKEN_KEY,
    InMemorySessionStore,
    SessionStore,
    SqliteSessionStore,
)

from tests.conftest import make_account


@pytest.fixture
def account() -> Account:
    return make_account("ann@example.com", "Ann").model_copy(update={"avatar": "ann.png"})


@pytest.fixture
def memory_store(logger: StructuredLogger) -> InMemorySessionStore:
    return InMemorySessionStore(logger)


@pytest.fixture
def sqlite_store(db: DatabaseManager, logger: StructuredLogger) -> SqliteSessionStore:
    return SqliteSessionStore(db, logger, SecretStr("test-session-key"), kdf_iterations=1_000)


def _row_count(db: DatabaseManager) -> int:
    return db.sqlite.execute("SELECT COUNT(*) FROM session_store").fetchone()[0]


class TestInMemorySessionStore:
    """Tests for the process-lifetime store."""

    def test_satisfies_protocol(self, memory_store: InMemorySessionStore) -> None:
        assert isinstance(memory_store, SessionStore)

    @pytest.mark.asyncio
    async def test_round_trip_restores_datetimes(
        self, memory_store: InMemorySessionStore, account: Account,
    ) -> None:
        await memory_store.save("tok", "ref", account)

        loaded = await memory_store.load()

        assert loaded.token == "tok"
        assert loaded.refresh_token == "ref"
        assert loaded.account == account
        assert isinstance(loaded.account.created_at, datetime)

    @pytest.mark.asyncio
    async def test_empty_store_loads_empty_session(self, memory_store: InMemorySessionStore) -> None:
        assert (await memory_store.load()).is_empty

    @pytest.mark.asyncio
    async def test_clear_removes_all_three_keys(
        self, memory_store: InMemorySessionStore, account: Account,
    ) -> None:
        await memory_store.save("tok", "ref", account)
        assert memory_store.keys() == {AUTH_TOKEN_KEY, REFRESH_TOKEN_KEY, AUTH_USER_KEY}

        await memory_store.clear()

        assert memory_store.keys() == set()

    @pytest.mark.asyncio
    async def test_update_account_keeps_tokens(
        self, memory_store: InMemorySessionStore, account: Account,
    ) -> None:
        await memory_store.save("tok", "ref", account)

        await memory_store.update_account(account.model_copy(update={"name": "Ann B."}))

        loaded = await memory_store.load()
        assert loaded.token == "tok"
        assert loaded.account is not None and loaded.account.name == "Ann B."


class TestSqliteSessionStore:
    """Tests for the encrypted SQLite store."""

    def test_satisfies_protocol(self, sqlite_store: SqliteSessionStore) -> None:
        assert isinstance(sqlite_store, SessionStore)

    @pytest.mark.asyncio
    async def test_round_trip_restores_datetimes(
        self, sqlite_store: SqliteSessionStore, account: Account,
    ) -> None:
        await sqlite_store.save("tok", "ref", account)

        loaded = await sqlite_store.load()

        assert loaded.token == "tok"
        assert loaded.refresh_token == "ref"
        assert loaded.account == account
        assert loaded.account.last_login == account.last_login

    @pytest.mark.asyncio
    async def test_values_are_encrypted_at_rest(
        self, sqlite_store: SqliteSessionStore, db: DatabaseManager, account: Account,
    ) -> None:
        await sqlite_store.save("plain-token-value", "plain-refresh-value", account)

        blobs = b"".join(
            bytes(row[0]) for row in db.sqlite.execute("SELECT encrypted_value FROM session_store")
        )
        assert _row_count(db) == 3
        assert b"plain-token-value" not in blobs
        assert b"ann@example.com" not in blobs

    @pytest.mark.asyncio
    async def test_clear_removes_all_three_rows(
        self, sqlite_store: SqliteSessionStore, db: DatabaseManager, account: Account,
    ) -> None:
        await sqlite_store.save("tok", "ref", account)

        await sqlite_store.clear()

        assert _row_count(db) == 0
        assert (await sqlite_store.load()).is_empty

    @pytest.mark.asyncio
    async def test_save_overwrites_previous_triple(
        self, sqlite_store: SqliteSessionStore, db: DatabaseManager, account: Account,
    ) -> None:
        await sqlite_store.save("tok-1", "ref-1", account)
        await sqlite_store.save("tok-2", "ref-2", account)

        loaded = await sqlite_store.load()
        assert (loaded.token, loaded.refresh_token) == ("tok-2", "ref-2")
        assert _row_count(db) == 3

    @pytest.mark.asyncio
    async def test_corrupted_row_reads_as_absent(
        self, sqlite_store: SqliteSessionStore, db: DatabaseManager, account: Account,
    ) -> None:
        await sqlite_store.save("tok", "ref", account)
        db.sqlite.execute(
            "UPDATE session_store SET encrypted_value = ? WHERE key = ?",
            (b"tampered", AUTH_TOKEN_KEY),
        )
        db.sqlite.commit()

        loaded = await sqlite_store.load()

        assert loaded.token is None
        assert loaded.refresh_token == "ref"
        assert loaded.account == account

    @pytest.mark.asyncio
    async def test_rows_cannot_be_swapped_between_keys(
        self, sqlite_store: SqliteSessionStore, db: DatabaseManager, account: Account,
    ) -> None:
        await sqlite_store.save("tok", "ref", account)
        db.sqlite.execute(
            """
            UPDATE session_store
            SET (encrypted_value, nonce, tag) = (
                SELECT encrypted_value, nonce, tag FROM session_store WHERE key = ?
            )
            WHERE key = ?
            """,
            (REFRESH_TOKEN_KEY, AUTH_TOKEN_KEY),
        )
        db.sqlite.commit()

        assert (await sqlite_store.load()).token is None

    @pytest.mark.asyncio
    async def test_different_key_cannot_read_session(
        self,
        sqlite_store: SqliteSessionStore,
        db: DatabaseManager,
        logger: StructuredLogger,
        account: Account,
    ) -> None:
        await sqlite_store.save("tok", "ref", account)
        other = SqliteSessionStore(db, logger, SecretStr("some-other-key"), kdf_iterations=1_000)

        assert (await other.load()).is_empty

    @pytest.mark.asyncio
    async def test_same_key_reads_session_from_new_instance(
        self,
        sqlite_store: SqliteSessionStore,
        db: DatabaseManager,
        logger: StructuredLogger,
        account: Account,
    ) -> None:
        await sqlite_store.save("tok", "ref", account)
        reopened = SqliteSessionStore(db, logger, SecretStr("test-session-key"), kdf_iterations=1_000)

        assert (await reopened.load()).token == "tok"

    @pytest.mark.asyncio
    async def test_update_account_only_rewrites_account_row(
        self, sqlite_store: SqliteSessionStore, account: Account,
    ) -> None:
        await sqlite_store.save("tok", "ref", account)

        await sqlite_store.update_account(account.model_copy(update={"name": "Ann B."}))

        loaded = await sqlite_store.load()
        assert loaded.token == "tok"
        assert loaded.account is not None and loaded.account.name == "Ann B."
