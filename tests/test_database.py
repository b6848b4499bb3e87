"""Tests for DatabaseManager transactions and schema creation."""

import sqlite3

import pytest

from vitalsync_auth.database import DatabaseManager
from vitalsync_auth.logger import StructuredLogger
from vitalsync_auth.schema import CURRENT_SCHEMA_VERSION, initialize_schema


def _audit_count(db: DatabaseManager) -> int:
    row = db.fetch_one("SELECT COUNT(*) AS n FROM audit_log")
    assert row is not None
    return int(row["n"])


def _insert_audit(db: DatabaseManager, action: str) -> None:
    db.sqlite.execute(
        "INSERT INTO audit_log (timestamp, action, account_id) VALUES (?, ?, ?)",
        ("2025-03-01T12:00:00+00:00", action, "acct-1"),
    )


class TestBatchWrite:
    """Tests for the single-transaction write helper."""

    def test_commits_all_statements(self, db: DatabaseManager) -> None:
        with db.batch_write():
            _insert_audit(db, "LOGIN")
            _insert_audit(db, "LOGOUT")

        assert _audit_count(db) == 2
        assert not db.in_batch

    def test_rolls_back_everything_on_error(self, db: DatabaseManager) -> None:
        with pytest.raises(RuntimeError):
            with db.batch_write():
                _insert_audit(db, "LOGIN")
                raise RuntimeError("crash mid-write")

        assert _audit_count(db) == 0
        assert not db.in_batch

    def test_nested_block_joins_the_outer_transaction(self, db: DatabaseManager) -> None:
        with pytest.raises(RuntimeError):
            with db.batch_write():
                with db.batch_write():
                    _insert_audit(db, "LOGIN")
                assert db.in_batch
                raise RuntimeError("outer fails")

        assert _audit_count(db) == 0


class TestFetch:
    """Tests for the locked read helpers."""

    def test_fetch_one_and_all(self, db: DatabaseManager) -> None:
        with db.batch_write():
            _insert_audit(db, "LOGIN")
            _insert_audit(db, "LOGOUT")

        rows = db.fetch_all("SELECT action FROM audit_log ORDER BY id")
        assert [row["action"] for row in rows] == ["LOGIN", "LOGOUT"]
        assert db.fetch_one("SELECT action FROM audit_log WHERE action = ?", ("REGISTER",)) is None


class TestLifecycle:
    """Tests for closing the connection."""

    def test_close_is_idempotent(self, logger: StructuredLogger) -> None:
        db = DatabaseManager(":memory:", logger)
        db.close()
        db.close()

        with pytest.raises(sqlite3.ProgrammingError):
            db.sqlite.execute("SELECT 1")


class TestSchema:
    """Tests for ``initialize_schema``."""

    def test_second_run_is_a_no_op(self, db: DatabaseManager, logger: StructuredLogger) -> None:
        with db.batch_write():
            _insert_audit(db, "LOGIN")

        assert initialize_schema(db.sqlite, logger) == CURRENT_SCHEMA_VERSION
        assert _audit_count(db) == 1

    def test_creates_expected_tables(self, db: DatabaseManager) -> None:
        names = {
            row["name"]
            for row in db.fetch_all("SELECT name FROM sqlite_master WHERE type = 'table'")
        }
        assert {"schema_version", "accounts", "credentials", "session_store", "session_salt", "audit_log"} <= names
